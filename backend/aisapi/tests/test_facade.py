import httpx
import pytest

from aisapi import AisAPI, create_aisapi
from aisapi.core.errors import JsonDecodeFailure, ProviderNotFound, UnsupportedCapability
from aisapi.main import AisAPIOptions
from aisapi.providers import AnthropicProvider, DeepSeekProvider, GrokProvider, QwenDashScopeProvider, SparkProvider
from aisapi.providers.base import JSON_INSTRUCTION
from aisapi.schemas import (
    ChatCompletionRequest,
    ChatMessage,
    GenerationRequest,
    ImageGenerationRequest,
    MediaSource,
    MultimodalRequest,
)
from aisapi.tests.utils.http import EchoProvider, MockVendor, chat_completion, json_response
from aisapi.utils.streaming import iter_sse_data


def hi_chat():
    return ChatCompletionRequest(messages=[ChatMessage(role="user", content="hi")])


@pytest.mark.asyncio
async def test_routes_to_default_and_named_providers():
    api = AisAPI()
    api.register("one", EchoProvider("One"))
    api.register("two", EchoProvider("Two"))

    assert (await api.generate_text(GenerationRequest(prompt="ping"))).text == "ping"
    assert (await api.chat_completion(hi_chat(), "TWO")).text == "hi"
    assert api.list_providers() == {"one", "two"}
    assert api.get_provider("two").name == "Two"


@pytest.mark.asyncio
async def test_unknown_provider():
    api = AisAPI()
    with pytest.raises(ProviderNotFound):
        await api.generate_text(GenerationRequest(prompt="ping"))
    api.register("one", EchoProvider())
    with pytest.raises(ProviderNotFound):
        await api.generate_text(GenerationRequest(prompt="ping"), "missing")


@pytest.mark.asyncio
async def test_streaming_on_spark_is_unsupported():
    vendor = MockVendor(json_response({}))
    async with vendor.client() as client:
        api = AisAPI()
        api.register("spark", SparkProvider("k", app_id="a", api_secret="s", http_client=client))

        with pytest.raises(UnsupportedCapability) as exc_info:
            await api.create_streaming_chat_completion(hi_chat())
        assert exc_info.value.capability == "streaming"
        assert str(exc_info.value) == "[Spark] provider does not support capability 'streaming'"

        with pytest.raises(UnsupportedCapability):
            await api.generate_text(GenerationRequest(prompt="hi", stream=True))

    assert vendor.requests == []


@pytest.mark.asyncio
async def test_image_generation_on_chat_only_vendor(no_retry):
    api = AisAPI()
    api.register("deepseek", DeepSeekProvider("k", retry_policy=no_retry))
    with pytest.raises(UnsupportedCapability, match="image_generation"):
        await api.generate_image(ImageGenerationRequest(prompt="a cat"))


@pytest.mark.asyncio
async def test_multimodal_input_on_text_only_vendor(no_retry):
    api = AisAPI()
    api.register("deepseek", DeepSeekProvider("k", retry_policy=no_retry))
    request = MultimodalRequest(prompt="what is this?", image=MediaSource(url="https://img.example/1.png"))
    with pytest.raises(UnsupportedCapability) as exc_info:
        await api.generate_text_with_image(request)
    assert exc_info.value.capability == "multimodal"


@pytest.mark.asyncio
async def test_multimodal_input_routes_to_anthropic(no_retry):
    vendor = MockVendor(json_response({"content": [{"type": "text", "text": "a lighthouse"}]}))
    async with vendor.client() as client:
        api = AisAPI()
        api.register("anthropic", AnthropicProvider("sk-ant", retry_policy=no_retry, http_client=client))
        result = await api.generate_text_with_image(
            MultimodalRequest(prompt="what is this?", image=MediaSource(url="https://img.example/1.png"))
        )

    assert result.text == "a lighthouse"
    assert vendor.body()["messages"][-1]["content"][0]["type"] == "image"


@pytest.mark.asyncio
async def test_key_validation_on_vendor_without_it(no_retry):
    api = AisAPI()
    api.register("grok", GrokProvider("k", retry_policy=no_retry))
    with pytest.raises(UnsupportedCapability, match="key_validation"):
        await api.validate_api_key()
    with pytest.raises(UnsupportedCapability, match="list_models"):
        await api.get_model("grok-3-beta")


@pytest.mark.asyncio
async def test_generate_json_failure_keeps_raw_text(no_retry):
    vendor = MockVendor(json_response(chat_completion("not-json")))
    async with vendor.client() as client:
        api = AisAPI()
        api.register("deepseek", DeepSeekProvider("k", retry_policy=no_retry, http_client=client))
        with pytest.raises(JsonDecodeFailure) as exc_info:
            await api.generate_json(GenerationRequest(prompt="give me json"))

    assert exc_info.value.raw_text == "not-json"
    assert len(vendor.requests) == 1
    body = vendor.body()
    assert body["response_format"] == {"type": "json_object"}
    assert JSON_INSTRUCTION in body["messages"][0]["content"]


@pytest.mark.asyncio
async def test_generate_text_stream_flag_returns_stream(no_retry):
    vendor = MockVendor(httpx.Response(200, content=b'data: {"id": 1}\n\ndata: [DONE]\n\n'))
    async with vendor.client() as client:
        api = AisAPI()
        api.register("grok", GrokProvider("k", retry_policy=no_retry, http_client=client))
        result = await api.generate_text(GenerationRequest(prompt="hi", stream=True))

        assert result.text == ""
        assert result.usage.total_tokens == 0
        assert [event async for event in iter_sse_data(result.stream)] == ['{"id": 1}']
        assert result.stream.closed

    assert vendor.body()["stream"] is True


@pytest.mark.asyncio
async def test_cache_stats_through_facade(no_retry):
    vendor = MockVendor(
        json_response(chat_completion("ok", prompt_cache_hit_tokens=30, prompt_cache_miss_tokens=10))
    )
    async with vendor.client() as client:
        api = AisAPI()
        api.register("deepseek", DeepSeekProvider("k", retry_policy=no_retry, http_client=client))
        api.register("echo", EchoProvider())
        await api.generate_text(GenerationRequest(prompt="hi"))

        stats = api.get_cache_stats()
        assert stats.request_count == 1
        assert stats.hit_rate == pytest.approx(0.75)
        api.reset_cache_stats("deepseek")
        assert api.get_cache_stats().request_count == 0
        with pytest.raises(UnsupportedCapability):
            api.get_cache_stats("echo")


def test_create_from_options_registers_in_priority_order():
    api = create_aisapi(
        qwen={"api_key": "q", "api_mode": "dashscope"},
        deepseek={"api_key": "d"},
        grok={"api_key": "g", "model": "grok-2"},
    )

    assert api.list_providers() == {"deepseek", "grok", "qwen"}
    assert api.registry.default_name == "deepseek"
    assert isinstance(api.get_provider("qwen"), QwenDashScopeProvider)
    assert api.get_provider("grok").model == "grok-2"


def test_explicit_default_provider():
    api = AisAPI.from_options(
        AisAPIOptions(deepseek={"api_key": "d"}, grok={"api_key": "g"}, default_provider="grok")
    )
    assert api.registry.default_name == "grok"


def test_unregistered_default_keeps_first():
    api = create_aisapi(deepseek={"api_key": "d"}, default_provider="anthropic")
    assert api.registry.default_name == "deepseek"


@pytest.mark.asyncio
async def test_aclose_closes_every_provider():
    one, two = EchoProvider("One"), EchoProvider("Two")
    async with AisAPI() as api:
        api.register("one", one)
        api.register("two", two)
    assert one.closed and two.closed
