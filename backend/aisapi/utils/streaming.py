import asyncio
import codecs
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx
import structlog

from aisapi.core.errors import RequestTimeout, TransientNetworkError

logger = structlog.get_logger()


class ByteStream:
    """
    Forward-only, single-pass sequence of raw transport chunks.

    The vendor's event framing is left to the caller. The first chunk must
    arrive before ``deadline`` (event-loop time), otherwise the connection is
    closed and RequestTimeout is raised. Exhaustion, errors, ``aclose()`` and
    leaving ``async with`` all release the connection.
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        close: Callable[[], Awaitable[None]],
        *,
        provider: str,
        deadline: Optional[float] = None,
    ):
        self.provider = provider
        self._chunks = chunks
        self._close = close
        self._deadline = deadline
        self._started = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._started:
            raise RuntimeError("stream has already been consumed")
        self._started = True
        return self._iterate()

    async def _next_chunk(self, first: bool) -> bytes:
        if first and self._deadline is not None:
            async with asyncio.timeout_at(self._deadline):
                return await anext(self._chunks)
        return await anext(self._chunks)

    async def _iterate(self) -> AsyncIterator[bytes]:
        first = True
        try:
            while True:
                try:
                    chunk = await self._next_chunk(first)
                except StopAsyncIteration:
                    return
                except (TimeoutError, httpx.TimeoutException) as e:
                    raise RequestTimeout("stream timed out waiting for data", provider=self.provider) from e
                except httpx.TransportError as e:
                    raise TransientNetworkError(f"stream interrupted: {e}", provider=self.provider) from e
                first = False
                if chunk:
                    yield chunk
        finally:
            await self.aclose()

    async def read(self) -> bytes:
        return b"".join([chunk async for chunk in self])

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._close()
        logger.debug("stream_closed", provider=self.provider)

    async def __aenter__(self) -> "ByteStream":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


async def iter_lines(stream: ByteStream) -> AsyncIterator[str]:
    """Decode a byte stream into text lines, joining lines and characters split across chunks."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    async for chunk in stream:
        buffer += decoder.decode(chunk)
        *lines, buffer = buffer.split("\n")
        for line in lines:
            yield line.rstrip("\r")
    buffer += decoder.decode(b"", final=True)
    if buffer:
        yield buffer.rstrip("\r")


async def iter_sse_data(stream: ByteStream) -> AsyncIterator[str]:
    """Yield ``data:`` payloads from a server-sent-events stream until ``[DONE]``, which releases the connection."""
    async for line in iter_lines(stream):
        if not line.startswith("data:"):
            continue  # event:, id:, comments and blank separators
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            await stream.aclose()
            return
        yield data
