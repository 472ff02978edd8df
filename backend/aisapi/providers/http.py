import asyncio
import time
from typing import Any, Callable, Dict, Optional, Tuple

import httpx
import structlog

from aisapi.core.config import settings
from aisapi.core.errors import (
    AuthFailure,
    MalformedResponse,
    NonTransientRequestError,
    RateLimited,
    RequestTimeout,
    TransientNetworkError,
)
from aisapi.observability import PROVIDER_LATENCY, PROVIDER_REQUESTS
from aisapi.providers.auth import AuthStrategy
from aisapi.utils.retry import RetryExecutor, RetryPolicy
from aisapi.utils.streaming import ByteStream

logger = structlog.get_logger()


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
        for key in ("message", "error_msg", "msg"):
            if data.get(key):
                return str(data[key])
    return str(data)[:500]


def raise_for_status(response: httpx.Response, provider: str) -> None:
    """Map a vendor status code onto the error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    detail = _error_detail(response)
    if status in (401, 403):
        raise AuthFailure(f"authentication failed ({status}): {detail}", provider=provider, status_code=status)
    if status == 429:
        raise RateLimited(
            f"rate limited: {detail}", provider=provider, retry_after=response.headers.get("retry-after")
        )
    if status >= 500:
        raise TransientNetworkError(f"server error ({status}): {detail}", provider=provider, status_code=status)
    raise NonTransientRequestError(f"request rejected ({status}): {detail}", provider=provider, status_code=status, body=detail)


class HttpTransport:
    """
    Shared HTTP-call helper composed into each adapter: builds the request,
    lets the auth strategy sign it, sends it under the retry executor and
    classifies the outcome.
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        *,
        auth: AuthStrategy,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.timeout = timeout or settings.DEFAULT_TIMEOUT_SECONDS
        self.retry = RetryExecutor(provider, retry_policy)
        self._client = client
        self._owns_client = client is None
        self._headers = headers or {}

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}{path}"

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        stream: bool = False,
    ) -> httpx.Response:
        request = self.client.build_request(
            method, self.url(path), json=json, params=params, headers={**self._headers, **(headers or {})}
        )
        request = await self.auth.prepare(request, self.client)
        start = time.perf_counter()
        outcome = "error"
        try:
            async with asyncio.timeout(self.timeout):
                response = await self.client.send(request, stream=stream)
            outcome = str(response.status_code)
        except (TimeoutError, httpx.TimeoutException) as e:
            outcome = "timeout"
            raise RequestTimeout(f"request timed out after {self.timeout}s", provider=self.provider) from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"network error: {e!r}", provider=self.provider) from e
        finally:
            PROVIDER_REQUESTS.labels(self.provider, outcome).inc()
            PROVIDER_LATENCY.labels(self.provider).observe(time.perf_counter() - start)

        if response.is_error:
            if stream:
                await response.aread()
                await response.aclose()
            logger.warning(
                "provider_request_failed", provider=self.provider, status=response.status_code, path=request.url.path
            )
            raise_for_status(response, self.provider)
        return response

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        decode: Optional[Callable[[Any], Any]] = None,
    ) -> Any:
        """Send, check status and decode JSON as one retried unit. ``decode`` runs inside the attempt."""

        async def attempt() -> Any:
            response = await self._send(method, path, json=json, params=params, headers=headers)
            try:
                data = response.json()
            except ValueError as e:
                raise MalformedResponse(
                    "response body is not JSON", provider=self.provider, status_code=response.status_code, body=response.text
                ) from e
            return decode(data) if decode else data

        return await self.retry.run(attempt)

    async def post_json(self, path: str, body: Any, **kwargs: Any) -> Any:
        return await self.request_json("POST", path, json=body, **kwargs)

    async def stream(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> ByteStream:
        """
        Open a streaming response. Only the open is retried, never the consumption.
        The first-chunk deadline counts from the start of the attempt that opened it.
        """

        async def attempt() -> Tuple[httpx.Response, float]:
            started = asyncio.get_running_loop().time()
            response = await self._send(method, path, json=json, params=params, headers=headers, stream=True)
            return response, started

        response, started = await self.retry.run(attempt)
        return ByteStream(
            response.aiter_bytes(), response.aclose, provider=self.provider, deadline=started + self.timeout
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
