import logging
from typing import Optional, Tuple

import structlog
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

from aisapi.core.config import settings

logger = structlog.get_logger()

PROVIDER_REQUESTS = Counter(
    "aisapi_provider_requests_total", "Vendor HTTP attempts", ["provider", "outcome"]
)
PROVIDER_LATENCY = Histogram(
    "aisapi_provider_request_latency_seconds", "Vendor request latency", ["provider"]
)
PROVIDER_RETRIES = Counter("aisapi_provider_retries_total", "Retried vendor calls", ["provider"])


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Configure structlog for the embedding application. Never called on import."""
    level = (level or settings.LOG_LEVEL).upper()
    json_logs = settings.LOG_JSON if json_logs is None else json_logs
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_logs:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level, logging.INFO)),
        cache_logger_on_first_use=True,
    )


def metrics_payload() -> Tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
