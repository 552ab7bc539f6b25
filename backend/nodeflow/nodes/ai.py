"""AI Generate node: one text completion from OpenAI, Anthropic or Google AI over httpx."""
import logging
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from ..credentials import CredentialType, DecryptedCredential
from ..errors import ExecutorRuntimeError
from .base import BaseNode, ConfigSpec, FieldType, NodeRunContext, NodeType
from .http import parse_timeout
from .registry import NodeRegistry

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"
DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
DEFAULT_TIMEOUT_MS = 60000
# Anthropic requires max_tokens on every request
ANTHROPIC_MAX_TOKENS = 1024
ANTHROPIC_VERSION = "2023-06-01"


def provider_for_model(model: str) -> CredentialType | None:
    if model.startswith(("gpt-", "o1", "o3", "o4")):
        return CredentialType.OPENAI
    if model.startswith("claude-"):
        return CredentialType.ANTHROPIC
    if model.startswith("gemini-"):
        return CredentialType.GOOGLE_AI
    return None


@dataclass
class Completion:
    text: str
    input_tokens: int | None
    output_tokens: int | None
    finish_reason: str | None

    def to_dict(self) -> dict[str, Any]:
        total = None
        if self.input_tokens is not None and self.output_tokens is not None:
            total = self.input_tokens + self.output_tokens
        return {
            "text": self.text,
            "usage": {
                "inputTokens": self.input_tokens,
                "outputTokens": self.output_tokens,
                "totalTokens": total,
            },
            "finishReason": self.finish_reason,
        }


@dataclass
class ProviderRequest:
    url: str
    headers: dict[str, str]
    payload: dict[str, Any]
    parse: Callable[[dict[str, Any]], Completion]


def _openai(credential, model, system, prompt, temperature, max_tokens) -> ProviderRequest:
    headers = {"Authorization": f"Bearer {credential.data['apiKey']}"}
    if credential.data.get("organization"):
        headers["OpenAI-Organization"] = credential.data["organization"]
    payload: dict[str, Any] = {
        "model": model,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
        "temperature": temperature,
    }
    if max_tokens:
        payload["max_tokens"] = max_tokens

    def parse(body):
        choice = body["choices"][0]
        usage = body.get("usage") or {}
        return Completion(
            text=choice["message"].get("content") or "",
            input_tokens=usage.get("prompt_tokens"),
            output_tokens=usage.get("completion_tokens"),
            finish_reason=choice.get("finish_reason"),
        )

    return ProviderRequest("https://api.openai.com/v1/chat/completions", headers, payload, parse)


def _anthropic(credential, model, system, prompt, temperature, max_tokens) -> ProviderRequest:
    headers = {"x-api-key": credential.data["apiKey"], "anthropic-version": ANTHROPIC_VERSION}
    payload = {
        "model": model,
        "system": system,
        "messages": [{"role": "user", "content": prompt}],
        "temperature": temperature,
        "max_tokens": max_tokens or ANTHROPIC_MAX_TOKENS,
    }

    def parse(body):
        usage = body.get("usage") or {}
        return Completion(
            text="".join(b.get("text", "") for b in body["content"] if b.get("type") == "text"),
            input_tokens=usage.get("input_tokens"),
            output_tokens=usage.get("output_tokens"),
            finish_reason=body.get("stop_reason"),
        )

    return ProviderRequest("https://api.anthropic.com/v1/messages", headers, payload, parse)


def _google(credential, model, system, prompt, temperature, max_tokens) -> ProviderRequest:
    headers = {"x-goog-api-key": credential.data["apiKey"]}
    generation: dict[str, Any] = {"temperature": temperature}
    if max_tokens:
        generation["maxOutputTokens"] = max_tokens
    payload = {
        "systemInstruction": {"parts": [{"text": system}]},
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": generation,
    }

    def parse(body):
        candidate = body["candidates"][0]
        usage = body.get("usageMetadata") or {}
        return Completion(
            text="".join(p.get("text", "") for p in candidate.get("content", {}).get("parts", [])),
            input_tokens=usage.get("promptTokenCount"),
            output_tokens=usage.get("candidatesTokenCount"),
            finish_reason=candidate.get("finishReason"),
        )

    url = f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
    return ProviderRequest(url, headers, payload, parse)


PROVIDERS = {
    CredentialType.OPENAI: _openai,
    CredentialType.ANTHROPIC: _anthropic,
    CredentialType.GOOGLE_AI: _google,
}


def resolve_input(variable: str, node_results: dict[str, Any]) -> Any:
    """A result key, or a dotted path into the node results."""
    if variable in node_results:
        return node_results[variable]
    value: Any = node_results
    for part in variable.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def _number(config: dict[str, Any], key: str, default: float | None) -> float | None:
    value = config.get(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ExecutorRuntimeError(f"Invalid {key}: {value!r}", retriable=False)


@NodeRegistry.register(NodeType.AI_GENERATE)
class AiGenerateNode(BaseNode):
    CATEGORY = "AI"
    DISPLAY_NAME = "AI Generate"
    DESCRIPTION = "Generate text with an OpenAI, Anthropic or Google AI model"

    # Swapped for httpx.MockTransport in tests
    transport: httpx.AsyncBaseTransport | None = None

    @classmethod
    def CONFIG_TYPES(cls):
        return {
            "name": ConfigSpec(FieldType.STRING, default="AI Generate", required=True),
            "model": ConfigSpec(FieldType.STRING, default=DEFAULT_MODEL, required=True),
            "credentialId": ConfigSpec(FieldType.CREDENTIAL, required=True),
            "systemPrompt": ConfigSpec(FieldType.STRING, default=DEFAULT_SYSTEM_PROMPT),
            "prompt": ConfigSpec(FieldType.STRING, default=""),
            "inputVariable": ConfigSpec(FieldType.STRING,
                                        description="Result key or dotted path used when prompt is empty"),
            "temperature": ConfigSpec(FieldType.NUMBER, default=0.7),
            "maxTokens": ConfigSpec(FieldType.NUMBER),
            "timeout": ConfigSpec(FieldType.NUMBER, default=DEFAULT_TIMEOUT_MS),
        }

    async def _credential(self, ctx: NodeRunContext, model: str) -> DecryptedCredential:
        credential_id = ctx.config.get("credentialId")
        if not credential_id:
            raise ExecutorRuntimeError("An AI credential is required", retriable=False)
        if ctx.credentials is None:
            raise ExecutorRuntimeError("No credential resolver configured", retriable=False)
        credential = await ctx.credentials.resolve(credential_id, ctx.workflow_id)

        expected = provider_for_model(model)
        if expected is not None and credential.type != expected:
            raise ExecutorRuntimeError(
                f"Credential type mismatch: expected {expected.value} for model {model}, "
                f"got {credential.type.value}",
                retriable=False,
            )
        if credential.type not in PROVIDERS:
            raise ExecutorRuntimeError(
                f"Unsupported credential type for AI: {credential.type.value}", retriable=False,
            )
        return credential

    def _prompt(self, ctx: NodeRunContext) -> str:
        prompt = ctx.config.get("prompt")
        if isinstance(prompt, str) and prompt.strip():
            return prompt
        variable = ctx.config.get("inputVariable")
        if isinstance(variable, str) and variable.strip():
            value = resolve_input(variable.strip(), ctx.node_results)
            if value is None or value == "":
                raise ExecutorRuntimeError(
                    f'Input variable "{variable}" not found in context', retriable=False,
                )
            return value if isinstance(value, str) else str(value)
        raise ExecutorRuntimeError("No prompt or input variable configured", retriable=False)

    async def execute(self, ctx: NodeRunContext) -> dict:
        config = ctx.config
        model = str(config.get("model") or DEFAULT_MODEL)
        prompt = self._prompt(ctx)
        credential = await self._credential(ctx, model)

        max_tokens = _number(config, "maxTokens", None)
        request = PROVIDERS[credential.type](
            credential,
            model,
            str(config.get("systemPrompt") or DEFAULT_SYSTEM_PROMPT),
            prompt,
            _number(config, "temperature", 0.7),
            int(max_tokens) if max_tokens else None,
        )
        timeout_ms = parse_timeout(config.get("timeout"), DEFAULT_TIMEOUT_MS)

        logger.info("AI generate with %s via %s (node %s)", model, credential.type.value, ctx.node.id)
        try:
            async with httpx.AsyncClient(timeout=timeout_ms / 1000, transport=self.transport) as client:
                response = await client.post(request.url, headers=request.headers, json=request.payload)
        except httpx.TimeoutException:
            raise ExecutorRuntimeError(f"Model request timed out after {timeout_ms:g}ms")
        except httpx.HTTPError as exc:
            raise ExecutorRuntimeError(f"Model request failed: {exc}")

        if response.status_code >= 400:
            # 429 and 5xx are retriable
            retriable = response.status_code == 429 or response.status_code >= 500
            raise ExecutorRuntimeError(
                f"{credential.type.value} returned {response.status_code}: {response.text[:500]}",
                retriable=retriable,
            )

        try:
            completion = request.parse(response.json())
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ExecutorRuntimeError(f"Unexpected model response: {exc!r}", retriable=False)

        result = completion.to_dict()
        result["model"] = model
        return result
