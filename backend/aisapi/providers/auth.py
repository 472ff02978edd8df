import asyncio
import base64
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import httpx
import structlog

from aisapi.core.config import settings
from aisapi.core.errors import AuthFailure, ConfigurationError, RequestTimeout, TransientNetworkError

logger = structlog.get_logger()

ERNIE_TOKEN_URL = "https://aip.baidubce.com/oauth/2.0/token"
DEFAULT_TOKEN_LIFETIME_SECONDS = 30 * 24 * 60 * 60


class AuthStrategy(Protocol):
    async def prepare(self, request: httpx.Request, client: httpx.AsyncClient) -> httpx.Request:
        """Attach credentials to ``request``. Called once per attempt."""
        ...


class StaticTokenAuth:
    """A long-lived credential sent verbatim on every call, as a header or a query parameter."""

    def __init__(
        self,
        token: Optional[str],
        *,
        provider: str,
        header: str = "Authorization",
        scheme: Optional[str] = "Bearer",
        query_param: Optional[str] = None,
    ):
        self.token = token
        self.provider = provider
        self.header = header
        self.scheme = scheme
        self.query_param = query_param

    async def prepare(self, request: httpx.Request, client: httpx.AsyncClient) -> httpx.Request:
        if not self.token:
            raise ConfigurationError("an API key is required", provider=self.provider)
        if self.query_param:
            request.url = request.url.copy_merge_params({self.query_param: self.token})
        else:
            request.headers[self.header] = f"{self.scheme} {self.token}" if self.scheme else self.token
        return request


class HmacSignatureAuth:
    """
    Per-request HMAC-SHA256 signature over ``host``, ``date`` and the request
    line. Nothing is cached: every attempt gets a fresh timestamp.
    """

    algorithm = "hmac-sha256"

    def __init__(
        self,
        api_key: Optional[str],
        app_id: Optional[str],
        api_secret: Optional[str],
        *,
        provider: str,
        ttl: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.api_key = api_key
        self.app_id = app_id
        self.api_secret = api_secret
        self.provider = provider
        self.ttl = ttl if ttl is not None else settings.SIGNATURE_TTL_SECONDS
        self._clock = clock

    @staticmethod
    def canonical_string(host: str, timestamp: int, method: str, path: str) -> str:
        return f"host: {host}\ndate: {timestamp}\n{method} {path} HTTP/1.1"

    def sign(self, canonical: str) -> str:
        digest = hmac.new(self.api_secret.encode(), canonical.encode(), hashlib.sha256).digest()
        return base64.b64encode(digest).decode()

    def authorization(self, host: str, method: str, path: str) -> str:
        timestamp = int(self._clock())
        signature = self.sign(self.canonical_string(host, timestamp, method, path))
        return (
            f'api_key="{self.api_key}", app_id="{self.app_id}", algorithm="{self.algorithm}", '
            f'headers="host date request-line", signature="{signature}", '
            f'date="{timestamp}", expire_time="{timestamp + self.ttl}"'
        )

    async def prepare(self, request: httpx.Request, client: httpx.AsyncClient) -> httpx.Request:
        missing = [
            label
            for label, value in (("api_key", self.api_key), ("app_id", self.app_id), ("api_secret", self.api_secret))
            if not value
        ]
        if missing:
            raise ConfigurationError(f"missing credentials: {', '.join(missing)}", provider=self.provider)
        request.headers["Authorization"] = self.authorization(request.url.host, request.method, request.url.path)
        request.headers["X-AppId"] = self.app_id
        return request


@dataclass(frozen=True)
class CredentialState:
    token: str
    expires_at: float


class TokenExchangeAuth:
    """
    Exchanges an API key/secret pair for a short-lived access token and caches
    it until ``expires_at - refresh_margin``. Concurrent callers share a single
    exchange.
    """

    def __init__(
        self,
        api_key: Optional[str],
        secret_key: Optional[str],
        *,
        provider: str,
        token_url: str = ERNIE_TOKEN_URL,
        query_param: str = "access_token",
        refresh_margin: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.api_key = api_key
        self.secret_key = secret_key
        self.provider = provider
        self.token_url = token_url
        self.query_param = query_param
        self.refresh_margin = settings.TOKEN_REFRESH_MARGIN_SECONDS if refresh_margin is None else refresh_margin
        self._clock = clock
        self._state: Optional[CredentialState] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> Optional[CredentialState]:
        return self._state

    def _fresh(self) -> bool:
        return self._state is not None and self._clock() < self._state.expires_at - self.refresh_margin

    def invalidate(self) -> None:
        self._state = None

    async def token(self, client: httpx.AsyncClient) -> str:
        if self._fresh():
            return self._state.token
        async with self._lock:
            # another caller may have finished the exchange while we waited
            if not self._fresh():
                self._state = await self._exchange(client)
            return self._state.token

    async def _exchange(self, client: httpx.AsyncClient) -> CredentialState:
        if not self.api_key or not self.secret_key:
            raise ConfigurationError("api_key and secret_key are required", provider=self.provider)
        params = {
            "grant_type": "client_credentials",
            "client_id": self.api_key,
            "client_secret": self.secret_key,
        }
        try:
            response = await client.post(self.token_url, params=params, headers={"Accept": "application/json"})
        except httpx.TimeoutException as e:
            raise RequestTimeout("token exchange timed out", provider=self.provider) from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"token exchange failed: {e}", provider=self.provider) from e

        if response.status_code >= 500:
            raise TransientNetworkError(
                f"token endpoint returned {response.status_code}", provider=self.provider, status_code=response.status_code
            )
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if response.is_error or not data.get("access_token"):
            detail = data.get("error_description") or data.get("error") or response.text
            logger.warning("token_exchange_failed", provider=self.provider, status=response.status_code, detail=detail)
            raise AuthFailure(f"token exchange failed: {detail}", provider=self.provider, status_code=response.status_code)

        lifetime = data.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS
        logger.info("token_exchanged", provider=self.provider, expires_in=lifetime)
        return CredentialState(token=data["access_token"], expires_at=self._clock() + lifetime)

    async def prepare(self, request: httpx.Request, client: httpx.AsyncClient) -> httpx.Request:
        token = await self.token(client)
        request.url = request.url.copy_merge_params({self.query_param: token})
        return request
