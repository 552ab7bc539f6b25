"""Tests for the HTTP Request node using httpx's mock transport."""
import base64
import json

import httpx
import pytest

from nodeflow.credentials import CredentialType, DecryptedCredential, InMemoryCredentialStore
from nodeflow.errors import CredentialAccessDeniedError, ExecutorRuntimeError
from nodeflow.nodes.http import (
    HttpRequestNode, build_body, build_headers, credential_headers, decode_response, parse_timeout,
)


@pytest.fixture
def captured(monkeypatch):
    """Route HttpRequestNode through a MockTransport, recording each request."""
    requests: list[httpx.Request] = []
    responses = {"next": httpx.Response(200, json={"ok": True})}

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return responses["next"]

    monkeypatch.setattr(HttpRequestNode, "transport", httpx.MockTransport(handler))
    return requests, responses


def _ctx(make_run_ctx, **config):
    return make_run_ctx("HTTP_REQUEST", {"name": "Call", **config})


class TestHeadersAndBody:
    def test_enabled_rows_only(self):
        headers = build_headers({"headers": [
            {"key": "X-A", "value": "1"},
            {"key": "X-B", "value": "2", "enabled": False},
            {"key": "", "value": "ignored"},
        ]})
        assert headers == {"X-A": "1"}

    def test_bearer_auth(self):
        assert build_headers({"authType": "bearer", "authToken": "t0k"}) == {"Authorization": "Bearer t0k"}

    def test_basic_auth(self):
        headers = build_headers({"authType": "basic", "authUsername": "u", "authPassword": "p"})
        assert headers["Authorization"] == "Basic " + base64.b64encode(b"u:p").decode()

    def test_api_key_header(self):
        headers = build_headers({"authType": "api-key", "apiKeyHeader": "X-Key", "apiKeyValue": 42})
        assert headers == {"X-Key": "42"}

    def test_content_type_from_body_type(self):
        assert build_headers({"bodyType": "text"})["Content-Type"] == "text/plain"

    def test_credential_headers(self):
        bearer = DecryptedCredential("c1", "c", CredentialType.BEARER_TOKEN, {"token": "abc"})
        api_key = DecryptedCredential("c2", "c", CredentialType.API_KEY, {"apiKey": "k"})
        assert credential_headers(bearer) == {"Authorization": "Bearer abc"}
        assert credential_headers(api_key) == {"X-API-Key": "k"}

    def test_unsupported_credential_type(self):
        oauth = DecryptedCredential("c3", "c", CredentialType.OAUTH2, {"clientId": "i", "clientSecret": "s"})
        with pytest.raises(ExecutorRuntimeError, match="Unsupported credential type") as exc_info:
            credential_headers(oauth)
        assert not exc_info.value.retriable

    def test_json_body(self):
        assert build_body({"bodyType": "json", "body": '{"a": 1}'}) == {"json": {"a": 1}}
        assert build_body({"bodyType": "json", "body": {"a": 1}}) == {"json": {"a": 1}}
        assert build_body({"bodyType": "json", "body": "not json"}) == {"content": "not json"}

    def test_form_bodies(self):
        assert build_body({"bodyType": "x-www-form-urlencoded", "body": "a=1\nb = 2\nbad"}) == {
            "data": {"a": "1", "b": "2"},
        }
        assert build_body({"bodyType": "form-data", "body": {"f": 1}}) == {"files": {"f": (None, "1")}}

    def test_no_body(self):
        assert build_body({"bodyType": "none", "body": "x"}) == {}
        assert build_body({"bodyType": "json", "body": ""}) == {}

    def test_decode_response(self):
        assert decode_response(httpx.Response(200, json={"a": 1})) == {"a": 1}
        assert decode_response(httpx.Response(200, text="hi")) == "hi"
        binary = httpx.Response(200, content=b"\x00\x01", headers={"content-type": "image/png"})
        assert decode_response(binary) == base64.b64encode(b"\x00\x01").decode()

    def test_parse_timeout(self):
        assert parse_timeout(None, 30000) == 30000
        assert parse_timeout("", 30000) == 30000
        assert parse_timeout("5000", 30000) == 5000
        assert parse_timeout(250.5, 30000) == 250.5
        for bad in ("abc", -1, "inf", True, [5]):
            with pytest.raises(ExecutorRuntimeError, match="Invalid timeout") as exc_info:
                parse_timeout(bad, 30000)
            assert not exc_info.value.retriable


class TestHttpRequestNode:
    @pytest.mark.asyncio
    async def test_get_with_query_params(self, make_run_ctx, captured):
        requests, _ = captured
        ctx = _ctx(make_run_ctx, url="https://api.test/items",
                   queryParams=[{"key": "page", "value": "2"}])
        result = await HttpRequestNode().execute(ctx)

        assert result["status"] == 200
        assert result["data"] == {"ok": True}
        assert result["headers"]["content-type"] == "application/json"
        assert requests[0].method == "GET"
        assert str(requests[0].url) == "https://api.test/items?page=2"

    @pytest.mark.asyncio
    async def test_post_json(self, make_run_ctx, captured):
        requests, _ = captured
        ctx = _ctx(make_run_ctx, url="https://api.test/items", method="post",
                   bodyType="json", body='{"name": "widget"}')
        await HttpRequestNode().execute(ctx)

        assert requests[0].method == "POST"
        assert json.loads(requests[0].content) == {"name": "widget"}

    @pytest.mark.asyncio
    async def test_get_ignores_body(self, make_run_ctx, captured):
        requests, _ = captured
        ctx = _ctx(make_run_ctx, url="https://api.test/items", bodyType="json", body='{"a": 1}')
        await HttpRequestNode().execute(ctx)
        assert requests[0].content == b""

    @pytest.mark.asyncio
    async def test_error_status_is_not_raised(self, make_run_ctx, captured):
        _, responses = captured
        responses["next"] = httpx.Response(404, text="nope")
        result = await HttpRequestNode().execute(_ctx(make_run_ctx, url="https://api.test/x"))
        assert result["status"] == 404
        assert result["data"] == "nope"

    @pytest.mark.asyncio
    async def test_missing_url(self, make_run_ctx, captured):
        with pytest.raises(ExecutorRuntimeError, match="URL is required") as exc_info:
            await HttpRequestNode().execute(_ctx(make_run_ctx))
        assert not exc_info.value.retriable

    @pytest.mark.asyncio
    async def test_timeout_not_retriable(self, make_run_ctx, monkeypatch):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        monkeypatch.setattr(HttpRequestNode, "transport", httpx.MockTransport(handler))
        with pytest.raises(ExecutorRuntimeError, match="timed out after 500ms") as exc_info:
            await HttpRequestNode().execute(_ctx(make_run_ctx, url="https://api.test/x", timeout=500))
        assert not exc_info.value.retriable

    @pytest.mark.asyncio
    async def test_timeout_given_as_text(self, make_run_ctx, captured):
        requests, _ = captured
        await HttpRequestNode().execute(_ctx(make_run_ctx, url="https://api.test/x", timeout="5000"))
        assert requests[0].extensions["timeout"]["read"] == 5.0

    @pytest.mark.asyncio
    async def test_unparseable_timeout(self, make_run_ctx, captured):
        requests, _ = captured
        with pytest.raises(ExecutorRuntimeError, match="Invalid timeout: 'abc'") as exc_info:
            await HttpRequestNode().execute(_ctx(make_run_ctx, url="https://api.test/x", timeout="abc"))
        assert not exc_info.value.retriable
        assert requests == []

    @pytest.mark.asyncio
    async def test_connection_error_retriable(self, make_run_ctx, monkeypatch):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        monkeypatch.setattr(HttpRequestNode, "transport", httpx.MockTransport(handler))
        with pytest.raises(ExecutorRuntimeError, match="Request failed") as exc_info:
            await HttpRequestNode().execute(_ctx(make_run_ctx, url="https://api.test/x"))
        assert exc_info.value.retriable

    @pytest.mark.asyncio
    async def test_credential_auth(self, make_run_ctx, captured):
        requests, _ = captured
        store = InMemoryCredentialStore()
        store.add("cred-1", CredentialType.BEARER_TOKEN, {"token": "secret"}, owner_id="user-1")
        store.set_workflow_owner("wf-1", "user-1")

        ctx = make_run_ctx(
            "HTTP_REQUEST",
            {"name": "Call", "url": "https://api.test/me", "authType": "credential", "credentialId": "cred-1"},
            credentials=store,
        )
        await HttpRequestNode().execute(ctx)
        assert requests[0].headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_credential_of_other_owner(self, make_run_ctx, captured):
        store = InMemoryCredentialStore()
        store.add("cred-1", CredentialType.API_KEY, {"apiKey": "k"}, owner_id="user-2")
        store.set_workflow_owner("wf-1", "user-1")

        ctx = make_run_ctx(
            "HTTP_REQUEST",
            {"name": "Call", "url": "https://api.test/me", "authType": "credential", "credentialId": "cred-1"},
            credentials=store,
        )
        with pytest.raises(CredentialAccessDeniedError):
            await HttpRequestNode().execute(ctx)
