"""Credential types, validation and resolution during execution."""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError

from .errors import CredentialAccessDeniedError, CredentialNotFoundError, CredentialResolutionError

logger = logging.getLogger(__name__)


class CredentialType(str, Enum):
    API_KEY = "api_key"
    BASIC_AUTH = "basic_auth"
    BEARER_TOKEN = "bearer_token"
    OAUTH2 = "oauth2"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE_AI = "google_ai"


class _CredentialModel(BaseModel):
    model_config = {"populate_by_name": True}


class ApiKeyCredential(_CredentialModel):
    api_key: str = Field(alias="apiKey", min_length=1)


class BasicAuthCredential(_CredentialModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class BearerTokenCredential(_CredentialModel):
    token: str = Field(min_length=1)


class OAuth2Credential(_CredentialModel):
    client_id: str = Field(alias="clientId", min_length=1)
    client_secret: str = Field(alias="clientSecret", min_length=1)
    access_token: str | None = Field(default=None, alias="accessToken")
    refresh_token: str | None = Field(default=None, alias="refreshToken")


class OpenAICredential(_CredentialModel):
    api_key: str = Field(alias="apiKey", min_length=1)
    organization: str | None = None


class AnthropicCredential(_CredentialModel):
    api_key: str = Field(alias="apiKey", min_length=1)


class GoogleAICredential(_CredentialModel):
    api_key: str = Field(alias="apiKey", min_length=1)


CREDENTIAL_MODELS: dict[CredentialType, type[_CredentialModel]] = {
    CredentialType.API_KEY: ApiKeyCredential,
    CredentialType.BASIC_AUTH: BasicAuthCredential,
    CredentialType.BEARER_TOKEN: BearerTokenCredential,
    CredentialType.OAUTH2: OAuth2Credential,
    CredentialType.OPENAI: OpenAICredential,
    CredentialType.ANTHROPIC: AnthropicCredential,
    CredentialType.GOOGLE_AI: GoogleAICredential,
}

CREDENTIAL_LABELS: dict[CredentialType, str] = {
    CredentialType.API_KEY: "API Key",
    CredentialType.BASIC_AUTH: "Basic Auth",
    CredentialType.BEARER_TOKEN: "Bearer Token",
    CredentialType.OAUTH2: "OAuth2",
    CredentialType.OPENAI: "OpenAI",
    CredentialType.ANTHROPIC: "Anthropic",
    CredentialType.GOOGLE_AI: "Google AI",
}


@dataclass
class CredentialValidation:
    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None


def validate_credential_data(credential_type: str, data: Any) -> CredentialValidation:
    """Check ``data`` against the model for ``credential_type``.

    On success ``data`` holds the parsed fields under their wire names
    (``apiKey``, ``clientId``...); on failure ``error`` is a readable summary.
    """
    try:
        ctype = CredentialType(credential_type)
    except ValueError:
        return CredentialValidation(False, error=f"Unknown credential type: {credential_type}")

    try:
        parsed = CREDENTIAL_MODELS[ctype].model_validate(data)
    except ValidationError as exc:
        messages = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        ]
        return CredentialValidation(False, error="; ".join(messages))
    return CredentialValidation(True, data=parsed.model_dump(by_alias=True, exclude_none=True))


def required_fields(credential_type: CredentialType) -> list[str]:
    model = CREDENTIAL_MODELS[credential_type]
    return [
        info.alias or name
        for name, info in model.model_fields.items()
        if info.is_required()
    ]


@dataclass
class DecryptedCredential:
    id: str
    name: str
    type: CredentialType
    data: dict[str, Any] = field(default_factory=dict)


class CredentialResolver(Protocol):
    async def resolve(self, credential_id: str, workflow_id: str) -> DecryptedCredential:
        ...


@dataclass
class _StoredCredential:
    credential: DecryptedCredential
    owner_id: str


class InMemoryCredentialStore:
    """Resolver backed by a dict; a workflow may only use its owner's credentials."""

    def __init__(self):
        self._credentials: dict[str, _StoredCredential] = {}
        self._workflow_owners: dict[str, str] = {}

    def add(
        self,
        credential_id: str,
        credential_type: CredentialType | str,
        data: dict[str, Any],
        owner_id: str,
        name: str = "",
    ) -> DecryptedCredential:
        result = validate_credential_data(str(CredentialType(credential_type).value), data)
        if not result.success:
            raise ValueError(result.error)
        credential = DecryptedCredential(
            id=credential_id,
            name=name or credential_id,
            type=CredentialType(credential_type),
            data=result.data,
        )
        self._credentials[credential_id] = _StoredCredential(credential, owner_id)
        return credential

    def set_workflow_owner(self, workflow_id: str, owner_id: str) -> None:
        self._workflow_owners[workflow_id] = owner_id

    def remove(self, credential_id: str) -> None:
        self._credentials.pop(credential_id, None)

    async def resolve(self, credential_id: str, workflow_id: str) -> DecryptedCredential:
        stored = self._credentials.get(credential_id)
        if stored is None:
            raise CredentialNotFoundError(credential_id)

        owner = self._workflow_owners.get(workflow_id)
        if owner is None:
            raise CredentialResolutionError(credential_id, f"Workflow not found: {workflow_id}")
        if owner != stored.owner_id:
            raise CredentialAccessDeniedError(credential_id)

        logger.info("Credential %s accessed by workflow %s", credential_id, workflow_id)
        return stored.credential
