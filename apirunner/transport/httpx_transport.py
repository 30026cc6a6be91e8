"""
HTTP transport implementation using httpx.

Handles system selection and the supported authentication schemes:
Basic (username/password), static bearer tokens and OAuth2 client
credentials with token caching until expiry.
"""

import asyncio
import base64
import time
from typing import Any, Dict, Optional, Tuple

import httpx

from apirunner.config import SystemConfig, settings
from apirunner.constants import AUTH_TYPES
from apirunner.exceptions import NetworkError
from apirunner.logger import get_logger
from apirunner.transport.base import HttpTransport, TransportResponse
from apirunner.transport.systems import SystemRegistry
from apirunner.utils.async_utils import Stopwatch, retry_async

logger = get_logger(__name__)

DEFAULT_TOKEN_LIFETIME = 300  # seconds
TOKEN_EXPIRY_MARGIN = 5  # seconds


def basic_auth(username: str, password: str) -> str:
    """Basic authorization header value."""
    encoded = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {encoded}"


def token_url(oauth_url: str) -> str:
    """Client-credentials token URL for a system's ``oauth_url``."""
    url = oauth_url
    if "grant_type" in url:
        return url
    if "/oauth/token" not in url:
        url = url.rstrip("/") + "/oauth/token"
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}grant_type=client_credentials"


class HttpxTransport(HttpTransport):
    """
    ``HttpTransport`` backed by ``httpx.AsyncClient``.

    Usage:
        async with HttpxTransport(registry) as transport:
            response = await transport.send("default", "/users", "GET")
    """

    def __init__(
        self,
        systems: SystemRegistry,
        timeout: Optional[float] = None,
        verify_ssl: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            systems: Registry of target systems
            timeout: Request timeout in seconds (defaults to settings)
            verify_ssl: Verify TLS certificates (defaults to settings)
            transport: Custom httpx transport, e.g. ``httpx.MockTransport`` in tests
        """
        self.systems = systems
        self.timeout = timeout or settings.http_timeout
        self.verify_ssl = settings.verify_ssl if verify_ssl is None else verify_ssl
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._tokens: Dict[str, Tuple[str, float]] = {}
        self._token_lock = asyncio.Lock()

    async def __aenter__(self) -> "HttpxTransport":
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                verify=self.verify_ssl,
                transport=self._transport,
                follow_redirects=True
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(
        self,
        system: Optional[str],
        url: str,
        method: str,
        payload: Any = None,
        auth: Optional[str] = None,
        language: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> TransportResponse:
        name, config = self.systems.get(system)
        if config is None:
            raise NetworkError(f"No system configured for '{system or 'default'}'")

        if not url.startswith("/"):
            url = f"/{url}"
        full_url = config.api_url.rstrip("/") + url

        request_headers = {
            "Accept-Language": language or config.language,
            "Content-Type": "application/json",
        }
        authorization = auth if auth is not None else await self.authorization(name, config)
        if authorization:
            request_headers["Authorization"] = authorization
        request_headers.update(headers or {})

        stopwatch = Stopwatch()
        try:
            response = await self._get_client().request(
                method.upper(),
                full_url,
                json=payload,
                headers=request_headers
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timeout for {method.upper()} {full_url}: {e}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NetworkError(f"Request error for {method.upper()} {full_url}: {e}") from e
        total = stopwatch.stop()

        content_type = response.headers.get("content-type")
        logger.debug(f"{method.upper()} {full_url} -> {response.status_code} in {total}ms")
        return TransportResponse(
            status=response.status_code,
            body=self._parse_body(response, content_type),
            headers={key.lower(): value for key, value in response.headers.items()},
            timing={"total": total},
            full_url=full_url,
            content_type=content_type
        )

    @staticmethod
    def _parse_body(response: httpx.Response, content_type: Optional[str]) -> Any:
        if response.status_code != 204 and content_type and "json" in content_type.lower() and response.content:
            try:
                return response.json()
            except ValueError:
                logger.warning(f"Response declared as JSON could not be parsed (url={response.url})")
        return response.text

    async def authorization(self, name: str, config: SystemConfig) -> Optional[str]:
        """
        Authorization header value for a system.

        Raises:
            NetworkError: If the system lacks the credentials its type requires
        """
        auth_type = (config.type or "none").lower()
        credentials = config.credentials

        if auth_type in AUTH_TYPES["basic"]:
            if not credentials.username or not credentials.password:
                raise NetworkError(f"System {name} requires a username and password for basic authentication")
            return basic_auth(credentials.username, credentials.password)

        if auth_type in AUTH_TYPES["bearer"]:
            if not credentials.token:
                raise NetworkError(f"System {name} requires a token for bearer authentication")
            return f"Bearer {credentials.token}"

        if auth_type in AUTH_TYPES["oauth2"]:
            return f"Bearer {await self._oauth_token(name, config)}"

        return None

    async def _oauth_token(self, name: str, config: SystemConfig) -> str:
        credentials = config.credentials
        if not credentials.clientid or not credentials.secret or not config.oauth_url:
            raise NetworkError(f"System {name} requires clientid, secret and oauth_url for OAuth2")

        async with self._token_lock:
            cached = self._tokens.get(name)
            if cached and cached[1] > time.monotonic():
                return cached[0]

            try:
                data = await self._fetch_token(token_url(config.oauth_url), credentials.clientid, credentials.secret)
            except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
                raise NetworkError(f"Could not fetch OAuth2 token for system {name}: {e}") from e

            token = data.get("access_token")
            if not token:
                raise NetworkError(f"OAuth2 token response for system {name} has no access_token")
            lifetime = float(data.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
            self._tokens[name] = (token, time.monotonic() + max(lifetime - TOKEN_EXPIRY_MARGIN, 0))
            logger.info(f"Fetched OAuth2 token for system {name} (scopes={data.get('scope')})")
            return token

    @retry_async(max_attempts=3, delay=0.5, exceptions=(httpx.TransportError,))
    async def _fetch_token(self, url: str, client_id: str, secret: str) -> Dict[str, Any]:
        response = await self._get_client().get(url, headers={"Authorization": basic_auth(client_id, secret)})
        response.raise_for_status()
        return response.json()
