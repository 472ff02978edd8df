from typing import Any, Optional


class AisAPIError(Exception):
    """Base error. Rendered as ``[Provider] message`` when a provider is known."""

    def __init__(self, message: str, *, provider: Optional[str] = None):
        self.message = message
        self.provider = provider
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.provider:
            return f"[{self.provider}] {self.message}"
        return self.message


class ConfigurationError(AisAPIError):
    pass


class AuthFailure(AisAPIError):
    def __init__(self, message: str, *, provider: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, provider=provider)


class TokenRejected(AuthFailure):
    """An exchanged access token was refused by the vendor and has been dropped from the cache."""


class TransientNetworkError(AisAPIError):
    """Timeouts, connection failures, 429 and 5xx. Safe to retry."""

    def __init__(self, message: str, *, provider: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, provider=provider)


class RequestTimeout(TransientNetworkError):
    pass


class RateLimited(TransientNetworkError):
    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = 429,
        retry_after: Optional[str] = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, provider=provider, status_code=status_code)


class NonTransientRequestError(AisAPIError):
    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        body: Any = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message, provider=provider)


class MalformedResponse(NonTransientRequestError):
    pass


class JsonDecodeFailure(NonTransientRequestError):
    def __init__(self, message: str, *, raw_text: str, provider: Optional[str] = None):
        self.raw_text = raw_text
        super().__init__(message, provider=provider, body=raw_text)


class UnsupportedCapability(AisAPIError):
    def __init__(self, capability: str, *, provider: Optional[str] = None):
        self.capability = capability
        super().__init__(f"provider does not support capability '{capability}'", provider=provider)


class ProviderNotFound(AisAPIError):
    pass


class RetriesExhausted(AisAPIError):
    def __init__(self, attempts: int, last_error: BaseException, *, provider: Optional[str] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"gave up after {attempts} attempts: {getattr(last_error, 'message', last_error)}", provider=provider
        )


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransientNetworkError)
