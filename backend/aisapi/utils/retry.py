import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

import structlog
from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception, stop_after_attempt, wait_exponential

from aisapi.core.config import settings
from aisapi.core.errors import RetriesExhausted, is_transient
from aisapi.observability import PROVIDER_RETRIES

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = field(default_factory=lambda: settings.MAX_RETRIES)
    base_delay: float = field(default_factory=lambda: settings.RETRY_BASE_DELAY_SECONDS)
    max_delay: float = field(default_factory=lambda: settings.RETRY_MAX_DELAY_SECONDS)


def resolve_policy(max_retries: Optional[int] = None, policy: Optional[RetryPolicy] = None) -> RetryPolicy:
    if policy is not None:
        return policy
    if max_retries is not None:
        return RetryPolicy(max_retries=max_retries)
    return RetryPolicy()


class RetryExecutor:
    """
    Runs one logical vendor call (signing, send, status check, decode) with
    exponential backoff. Only transient errors are retried; everything else
    propagates from the first attempt.
    """

    def __init__(
        self,
        provider: str,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.provider = provider
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def _before_sleep(self, state: RetryCallState) -> None:
        PROVIDER_RETRIES.labels(self.provider).inc()
        logger.warning(
            "provider_retry",
            provider=self.provider,
            attempt=state.attempt_number,
            delay=state.next_action.sleep if state.next_action else None,
            error=str(state.outcome.exception()) if state.outcome else None,
        )

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_retries + 1),
            wait=wait_exponential(multiplier=self.policy.base_delay, max=self.policy.max_delay),
            retry=retry_if_exception(is_transient),
            before_sleep=self._before_sleep,
            sleep=self._sleep,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await operation()
        except RetryError as e:
            last_error = e.last_attempt.exception()
            attempts = e.last_attempt.attempt_number
            logger.error("provider_retries_exhausted", provider=self.provider, attempts=attempts, error=str(last_error))
            raise RetriesExhausted(attempts, last_error, provider=self.provider) from last_error
        raise AssertionError("retry loop exited without an outcome")
