import json

import pytest
import structlog

from aisapi.observability import configure_logging, metrics_payload
from aisapi.providers import GrokProvider
from aisapi.schemas import GenerationRequest
from aisapi.tests.utils.http import MockVendor, chat_completion, json_response


@pytest.fixture
def reset_structlog():
    yield
    structlog.reset_defaults()


def test_json_logging(capsys, reset_structlog):
    configure_logging("info", json_logs=True)
    structlog.get_logger().info("provider_registered", name="grok")
    structlog.get_logger().debug("filtered_out")

    lines = [line for line in capsys.readouterr().out.splitlines() if line]
    assert len(lines) == 1
    event = json.loads(lines[0])
    assert event["event"] == "provider_registered"
    assert event["name"] == "grok"
    assert event["level"] == "info"
    assert "timestamp" in event


@pytest.mark.asyncio
async def test_vendor_calls_are_counted(no_retry):
    vendor = MockVendor(json_response(chat_completion("ok")))
    async with vendor.client() as client:
        provider = GrokProvider("k", retry_policy=no_retry, http_client=client)
        await provider.generate_text(GenerationRequest(prompt="hi"))

    payload, content_type = metrics_payload()
    assert content_type.startswith("text/plain")
    assert b'aisapi_provider_requests_total{provider="Grok",outcome="200"}' in payload
    assert b"aisapi_provider_request_latency_seconds" in payload
