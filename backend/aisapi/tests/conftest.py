import pytest

from aisapi.utils.retry import RetryPolicy


@pytest.fixture
def no_retry() -> RetryPolicy:
    return RetryPolicy(max_retries=0)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_retries=3, base_delay=0, max_delay=0)
