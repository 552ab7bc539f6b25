"""Application configuration via environment variables."""
import os
from pathlib import Path

from pydantic_settings import BaseSettings

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    app_name: str = "Nodeflow"
    debug: bool = True
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]
    workflows_dir: Path = PROJECT_ROOT / "data" / "workflows"
    max_executions: int = 100
    strict_expressions: bool = False
    expression_cache_size: int = 1000
    # Process env vars with this prefix are visible to expressions as `env`
    public_env_prefix: str = "NODEFLOW_PUBLIC_"
    http_timeout_ms: int = 30000

    model_config = {"env_prefix": "NODEFLOW_"}

    def public_env(self) -> dict[str, str]:
        prefix = self.public_env_prefix
        if not prefix:
            return {}
        return {
            key[len(prefix):]: value
            for key, value in os.environ.items()
            if key.startswith(prefix) and len(key) > len(prefix)
        }


settings = Settings()
settings.workflows_dir.mkdir(parents=True, exist_ok=True)
