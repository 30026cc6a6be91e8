"""Tests for the httpx transport and system selection."""

import base64
import json

import httpx
import pytest

from apirunner.config import SystemConfig, SystemCredentials
from apirunner.exceptions import ConfigurationError, NetworkError
from apirunner.transport import HttpxTransport, SystemRegistry
from apirunner.transport.httpx_transport import basic_auth, token_url


def registry(**systems: SystemConfig) -> SystemRegistry:
    return SystemRegistry(systems)


class Recorder:
    """httpx handler answering API and token requests, remembering every request."""

    def __init__(self):
        self.requests = []
        self.token_requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "auth.test":
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": "issued-token", "expires_in": 3600, "scope": "read"})
        if request.url.path == "/text":
            return httpx.Response(200, text="plain body", headers={"Content-Type": "text/plain"})
        if request.url.path == "/empty":
            return httpx.Response(204)
        if request.url.path == "/down":
            raise httpx.ConnectError("connection refused", request=request)
        body = request.content.decode() or None
        return httpx.Response(200, json={"path": request.url.path, "body": body}, headers={"X-Request-Id": "r-1"})


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.mark.asyncio
async def test_basic_auth_request(recorder):
    systems = registry(default=SystemConfig(
        api_url="http://api.test/v1/",
        type="basic",
        credentials=SystemCredentials(username="ada", password="secret"),
        language="de",
    ))

    async with HttpxTransport(systems, transport=httpx.MockTransport(recorder)) as transport:
        response = await transport.send(None, "users", "post", {"name": "ada"}, headers={"X-Trace": "t-1"})

    request = recorder.requests[0]
    assert request.method == "POST"
    assert str(request.url) == "http://api.test/v1/users"
    assert request.headers["Authorization"] == "Basic " + base64.b64encode(b"ada:secret").decode()
    assert request.headers["Accept-Language"] == "de"
    assert request.headers["X-Trace"] == "t-1"

    assert response.status == 200
    assert response.body["path"] == "/v1/users"
    assert json.loads(response.body["body"]) == {"name": "ada"}
    assert response.headers["x-request-id"] == "r-1"
    assert response.full_url == "http://api.test/v1/users"
    assert response.timing["total"] >= 0


@pytest.mark.asyncio
async def test_bearer_token_and_language_override(recorder):
    systems = registry(default=SystemConfig(
        api_url="http://api.test",
        type="bearer",
        credentials=SystemCredentials(token="static-token"),
    ))

    async with HttpxTransport(systems, transport=httpx.MockTransport(recorder)) as transport:
        await transport.send("default", "/me", "GET", language="fr")

    request = recorder.requests[0]
    assert request.headers["Authorization"] == "Bearer static-token"
    assert request.headers["Accept-Language"] == "fr"
    assert request.content == b""


@pytest.mark.asyncio
async def test_explicit_auth_overrides_system_credentials(recorder):
    systems = registry(default=SystemConfig(api_url="http://api.test", type="none"))

    async with HttpxTransport(systems, transport=httpx.MockTransport(recorder)) as transport:
        await transport.send(None, "/me", "GET", auth="Custom abc")

    assert recorder.requests[0].headers["Authorization"] == "Custom abc"


@pytest.mark.asyncio
async def test_oauth2_token_is_fetched_once(recorder):
    systems = registry(default=SystemConfig(
        api_url="http://api.test",
        type="client-credentials",
        oauth_url="http://auth.test",
        credentials=SystemCredentials(clientid="client", secret="s3cret"),
    ))

    async with HttpxTransport(systems, transport=httpx.MockTransport(recorder)) as transport:
        await transport.send(None, "/a", "GET")
        await transport.send(None, "/b", "GET")

    assert recorder.token_requests == 1
    token_request = recorder.requests[0]
    assert str(token_request.url) == "http://auth.test/oauth/token?grant_type=client_credentials"
    assert token_request.headers["Authorization"] == basic_auth("client", "s3cret")
    assert [request.headers["Authorization"] for request in recorder.requests[1:]] == [
        "Bearer issued-token",
        "Bearer issued-token",
    ]


@pytest.mark.asyncio
async def test_missing_credentials_are_network_errors(recorder):
    systems = registry(default=SystemConfig(api_url="http://api.test", type="basic"))

    async with HttpxTransport(systems, transport=httpx.MockTransport(recorder)) as transport:
        with pytest.raises(NetworkError, match="username and password"):
            await transport.send(None, "/a", "GET")


@pytest.mark.asyncio
async def test_unconfigured_system(recorder):
    async with HttpxTransport(SystemRegistry(), transport=httpx.MockTransport(recorder)) as transport:
        with pytest.raises(NetworkError, match="No system configured"):
            await transport.send(None, "/a", "GET")


@pytest.mark.asyncio
async def test_connection_errors_become_network_errors(recorder):
    systems = registry(default=SystemConfig(api_url="http://api.test"))

    async with HttpxTransport(systems, transport=httpx.MockTransport(recorder)) as transport:
        with pytest.raises(NetworkError, match="connection refused"):
            await transport.send(None, "/down", "GET")


@pytest.mark.asyncio
async def test_invalid_urls_become_network_errors(recorder):
    systems = registry(default=SystemConfig(api_url="http://api.test"))

    async with HttpxTransport(systems, transport=httpx.MockTransport(recorder)) as transport:
        with pytest.raises(NetworkError, match="Request error"):
            await transport.send(None, "/users/a\nb", "GET")

    assert recorder.requests == []


@pytest.mark.asyncio
async def test_non_json_bodies_are_returned_as_text(recorder):
    systems = registry(default=SystemConfig(api_url="http://api.test"))

    async with HttpxTransport(systems, transport=httpx.MockTransport(recorder)) as transport:
        text = await transport.send(None, "/text", "GET")
        empty = await transport.send(None, "/empty", "DELETE")

    assert text.body == "plain body"
    assert empty.status == 204
    assert empty.body == ""


@pytest.mark.parametrize("oauth_url, expected", [
    ("http://auth.test", "http://auth.test/oauth/token?grant_type=client_credentials"),
    ("http://auth.test/", "http://auth.test/oauth/token?grant_type=client_credentials"),
    ("http://auth.test/oauth/token?tenant=1", "http://auth.test/oauth/token?tenant=1&grant_type=client_credentials"),
    ("http://auth.test/token?grant_type=password", "http://auth.test/token?grant_type=password"),
])
def test_token_url(oauth_url, expected):
    assert token_url(oauth_url) == expected


def test_system_selection():
    systems = registry(
        default=SystemConfig(api_url="http://default.test"),
        staging=SystemConfig(api_url="http://staging.test", variables={"tenant": "s1"}),
    )

    assert systems.default == "default"
    assert systems.resolve_name("unknown") == "default"

    systems.select({"default": "staging", "legacy": "default"})

    assert systems.resolve_name(None) == "staging"
    assert systems.resolve_name("legacy") == "default"
    assert systems.variables(None) == {"tenant": "s1"}


def test_selecting_an_unknown_system_fails():
    systems = registry(default=SystemConfig(api_url="http://default.test"))

    with pytest.raises(ConfigurationError, match="not configured"):
        systems.select({"default": "production"})


def test_first_system_is_the_default_without_a_default_entry():
    systems = registry(qa=SystemConfig(api_url="http://qa.test"), prod=SystemConfig(api_url="http://prod.test"))
    assert systems.default == "qa"
