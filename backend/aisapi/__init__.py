from aisapi.core.errors import (
    AisAPIError,
    AuthFailure,
    ConfigurationError,
    JsonDecodeFailure,
    MalformedResponse,
    NonTransientRequestError,
    ProviderNotFound,
    RateLimited,
    RequestTimeout,
    RetriesExhausted,
    TokenRejected,
    TransientNetworkError,
    UnsupportedCapability,
)
from aisapi.main import AisAPI, AisAPIOptions, ProviderOptions, create_aisapi
from aisapi.observability import configure_logging, metrics_payload
from aisapi.providers import PROVIDER_CLASSES, create_provider
from aisapi.providers.base import Capability
from aisapi.schemas import (
    ChatCompletionRequest,
    ChatMessage,
    GenerationRequest,
    GenerationResult,
    JsonResult,
    MediaSource,
    MultimodalRequest,
    Usage,
)
from aisapi.utils.streaming import ByteStream, iter_lines, iter_sse_data

__all__ = [
    "AisAPI",
    "AisAPIError",
    "AisAPIOptions",
    "AuthFailure",
    "ByteStream",
    "Capability",
    "ChatCompletionRequest",
    "ChatMessage",
    "ConfigurationError",
    "GenerationRequest",
    "GenerationResult",
    "JsonDecodeFailure",
    "JsonResult",
    "MalformedResponse",
    "MediaSource",
    "MultimodalRequest",
    "NonTransientRequestError",
    "PROVIDER_CLASSES",
    "ProviderNotFound",
    "ProviderOptions",
    "RateLimited",
    "RequestTimeout",
    "RetriesExhausted",
    "TokenRejected",
    "TransientNetworkError",
    "UnsupportedCapability",
    "Usage",
    "configure_logging",
    "create_aisapi",
    "create_provider",
    "iter_lines",
    "iter_sse_data",
    "metrics_payload",
]
