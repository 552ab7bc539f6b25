"""HTTP Request node, performed with httpx."""
import base64
import json
import logging
import math
from typing import Any

import httpx

from ..credentials import CredentialType, DecryptedCredential
from ..errors import ExecutorRuntimeError
from .base import BaseNode, ConfigSpec, FieldType, NodeRunContext, NodeType
from .registry import NodeRegistry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000
BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def _pairs(items: Any) -> list[tuple[str, str]]:
    """Enabled ``{key, value, enabled}`` rows, or a plain mapping, as pairs."""
    if isinstance(items, dict):
        return [(str(k), "" if v is None else str(v)) for k, v in items.items()]
    pairs = []
    for item in items or []:
        if not isinstance(item, dict) or not item.get("key"):
            continue
        if item.get("enabled", True) is False:
            continue
        value = item.get("value")
        pairs.append((str(item["key"]), "" if value is None else str(value)))
    return pairs


def _parse_lines(body: str) -> list[tuple[str, str]]:
    """``key=value`` per line, as typed into the editor's form body field."""
    pairs = []
    for line in body.splitlines():
        line = line.strip()
        if not line or "=" not in line:
            continue
        key, value = line.split("=", 1)
        if key.strip():
            pairs.append((key.strip(), value.strip()))
    return pairs


def credential_headers(credential: DecryptedCredential) -> dict[str, str]:
    data = credential.data
    if credential.type == CredentialType.BEARER_TOKEN:
        return {"Authorization": f"Bearer {data['token']}"}
    if credential.type == CredentialType.BASIC_AUTH:
        token = base64.b64encode(f"{data['username']}:{data['password']}".encode()).decode()
        return {"Authorization": f"Basic {token}"}
    if credential.type == CredentialType.API_KEY:
        return {"X-API-Key": data["apiKey"]}
    raise ExecutorRuntimeError(
        f"Unsupported credential type for HTTP request: {credential.type.value}. "
        f"Supported types: {CredentialType.BEARER_TOKEN.value}, "
        f"{CredentialType.BASIC_AUTH.value}, {CredentialType.API_KEY.value}",
        retriable=False,
    )


def build_headers(config: dict[str, Any], credential: DecryptedCredential | None = None) -> dict[str, str]:
    headers = dict(_pairs(config.get("headers")))

    body_type = config.get("bodyType") or "none"
    if body_type == "text":
        headers["Content-Type"] = "text/plain"
    elif body_type == "x-www-form-urlencoded":
        headers["Content-Type"] = "application/x-www-form-urlencoded"

    auth_type = config.get("authType")
    if auth_type == "credential" and credential is not None:
        headers.update(credential_headers(credential))
    elif auth_type == "bearer" and config.get("authToken"):
        headers["Authorization"] = f"Bearer {config['authToken']}"
    elif auth_type == "basic" and config.get("authUsername") and config.get("authPassword"):
        token = base64.b64encode(f"{config['authUsername']}:{config['authPassword']}".encode()).decode()
        headers["Authorization"] = f"Basic {token}"
    elif auth_type == "api-key" and config.get("apiKeyHeader") and config.get("apiKeyValue"):
        headers[config["apiKeyHeader"]] = str(config["apiKeyValue"])
    return headers


def build_body(config: dict[str, Any]) -> dict[str, Any]:
    """Keyword arguments for ``httpx.AsyncClient.request`` carrying the body."""
    body = config.get("body")
    body_type = config.get("bodyType") or "none"
    if body_type == "none" or body is None or body == "":
        return {}

    if body_type == "json":
        if not isinstance(body, str):
            return {"json": body}
        try:
            return {"json": json.loads(body)}
        except json.JSONDecodeError:
            return {"content": body}
    if body_type == "form-data":
        fields = body.items() if isinstance(body, dict) else _parse_lines(str(body))
        # (None, value) parts force multipart encoding without files
        return {"files": {k: (None, str(v)) for k, v in fields}}
    if body_type == "x-www-form-urlencoded":
        fields = body.items() if isinstance(body, dict) else _parse_lines(str(body))
        return {"data": {k: str(v) for k, v in fields}}
    return {"content": body if isinstance(body, str) else json.dumps(body)}


def decode_response(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    if content_type.startswith("text/"):
        return response.text
    return base64.b64encode(response.content).decode()


def parse_timeout(value: Any, default_ms: float) -> float:
    """Timeout in milliseconds; numeric text such as ``"5000"`` is accepted."""
    if value is None or value == "" or value == 0:
        return default_ms
    try:
        timeout_ms = float(value)
    except (TypeError, ValueError):
        timeout_ms = math.nan
    if isinstance(value, bool) or not math.isfinite(timeout_ms) or timeout_ms <= 0:
        raise ExecutorRuntimeError(f"Invalid timeout: {value!r}", retriable=False)
    return timeout_ms


@NodeRegistry.register(NodeType.HTTP_REQUEST)
class HttpRequestNode(BaseNode):
    CATEGORY = "Actions"
    DISPLAY_NAME = "HTTP Request"
    DESCRIPTION = "Call an HTTP endpoint and emit its status, body and headers"

    # Swapped for httpx.MockTransport in tests
    transport: httpx.AsyncBaseTransport | None = None
    default_timeout_ms: int = DEFAULT_TIMEOUT_MS

    @classmethod
    def CONFIG_TYPES(cls):
        return {
            "name": ConfigSpec(FieldType.STRING, default="HTTP Request", required=True),
            "url": ConfigSpec(FieldType.STRING, required=True),
            "method": ConfigSpec(FieldType.SELECT, default="GET",
                                 choices=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]),
            "queryParams": ConfigSpec(FieldType.LIST, default=[]),
            "headers": ConfigSpec(FieldType.LIST, default=[]),
            "bodyType": ConfigSpec(FieldType.SELECT, default="none",
                                   choices=["none", "json", "text", "form-data", "x-www-form-urlencoded"]),
            "body": ConfigSpec(FieldType.STRING),
            "authType": ConfigSpec(FieldType.SELECT, default="none",
                                   choices=["none", "bearer", "basic", "api-key", "credential"]),
            "credentialId": ConfigSpec(FieldType.CREDENTIAL),
            "timeout": ConfigSpec(FieldType.NUMBER, default=DEFAULT_TIMEOUT_MS),
            "followRedirects": ConfigSpec(FieldType.BOOLEAN, default=True),
        }

    async def _credential(self, ctx: NodeRunContext) -> DecryptedCredential | None:
        credential_id = ctx.config.get("credentialId")
        if ctx.config.get("authType") != "credential" or not credential_id:
            return None
        if ctx.credentials is None:
            raise ExecutorRuntimeError("No credential resolver configured", retriable=False)
        return await ctx.credentials.resolve(credential_id, ctx.workflow_id)

    async def execute(self, ctx: NodeRunContext) -> dict:
        config = ctx.config
        url = config.get("url")
        if not url or not isinstance(url, str):
            raise ExecutorRuntimeError("URL is required", retriable=False)

        method = str(config.get("method") or "GET").upper()
        timeout_ms = parse_timeout(config.get("timeout"), self.default_timeout_ms)
        credential = await self._credential(ctx)

        kwargs: dict[str, Any] = {"headers": build_headers(config, credential)}
        params = _pairs(config.get("queryParams"))
        if params:
            kwargs["params"] = params
        if method in BODY_METHODS:
            kwargs.update(build_body(config))

        logger.info("HTTP %s %s (node %s)", method, url, ctx.node.id)
        try:
            async with httpx.AsyncClient(
                timeout=timeout_ms / 1000,
                follow_redirects=config.get("followRedirects", True) is not False,
                transport=self.transport,
            ) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            raise ExecutorRuntimeError(f"Request timed out after {timeout_ms:g}ms", retriable=False)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise ExecutorRuntimeError(f"Invalid URL {url}: {exc}", retriable=False)
        except httpx.HTTPError as exc:
            raise ExecutorRuntimeError(f"Request failed: {exc}")

        return {
            "status": response.status_code,
            "data": decode_response(response),
            "headers": dict(response.headers),
        }
