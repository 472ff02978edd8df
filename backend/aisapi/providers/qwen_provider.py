from typing import Any, Dict, Optional

import httpx

from aisapi.core.errors import MalformedResponse, NonTransientRequestError
from aisapi.providers.auth import StaticTokenAuth
from aisapi.providers.base import Capability, parse_json_text, with_json_instruction
from aisapi.providers.http import HttpTransport
from aisapi.providers.openai_compat import ChatCompletionsEndpoint
from aisapi.schemas import ChatCompletionRequest, GenerationRequest, GenerationResult, JsonResult, Usage
from aisapi.utils.retry import RetryPolicy, resolve_policy
from aisapi.utils.streaming import ByteStream

DEFAULT_MODEL = "qwen-turbo"
COMPATIBLE_BASE_URL = "https://dashscope-intl.aliyuncs.com/compatible-mode/v1"
DASHSCOPE_BASE_URL = "https://dashscope-intl.aliyuncs.com/api/v1"
GENERATION_PATH = "/services/aigc/text-generation/generation"


class QwenProvider:
    """Alibaba Qwen through DashScope's OpenAI-compatible endpoint."""

    name = "Qwen"
    capabilities = frozenset({Capability.CHAT, Capability.JSON, Capability.STREAMING})
    default_model = DEFAULT_MODEL

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.model = model or self.default_model
        self._transport = HttpTransport(
            self.name,
            base_url or COMPATIBLE_BASE_URL,
            auth=StaticTokenAuth(api_key, provider=self.name),
            timeout=timeout,
            retry_policy=resolve_policy(max_retries, retry_policy),
            client=http_client,
        )
        self._chat = ChatCompletionsEndpoint(self._transport, default_temperature=1.0, json_temperature=0.1)

    async def generate_text(self, request: GenerationRequest) -> GenerationResult:
        return await self.chat_completion(request.to_chat_request())

    async def chat_completion(self, request: ChatCompletionRequest) -> GenerationResult:
        return await self._chat.complete(request, request.model or self.model)

    async def generate_json(self, request: GenerationRequest) -> JsonResult:
        result = await self._chat.complete_json_mode(request, request.model or self.model)
        return self._chat.to_json_result(result)

    async def create_streaming_chat_completion(self, request: ChatCompletionRequest) -> ByteStream:
        return await self._chat.stream(request, request.model or self.model)

    async def aclose(self) -> None:
        await self._transport.aclose()


class QwenDashScopeProvider:
    """Qwen through DashScope's native text-generation API. No streaming in this mode."""

    name = "Qwen"
    capabilities = frozenset({Capability.CHAT, Capability.JSON})
    default_model = DEFAULT_MODEL

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.model = model or self.default_model
        self._transport = HttpTransport(
            self.name,
            base_url or DASHSCOPE_BASE_URL,
            auth=StaticTokenAuth(api_key, provider=self.name),
            timeout=timeout,
            retry_policy=resolve_policy(max_retries, retry_policy),
            client=http_client,
        )

    def build_body(self, request: ChatCompletionRequest) -> Dict[str, Any]:
        parameters = {
            "result_format": "message",
            "max_tokens": request.max_tokens,
            "temperature": request.temperature if request.temperature is not None else 1.0,
            "top_p": request.top_p,
            "stop": request.stop,
        }
        return {
            "model": request.model or self.model,
            "input": {"messages": [m.model_dump(exclude_none=True) for m in request.messages]},
            "parameters": {k: v for k, v in parameters.items() if v is not None},
        }

    def parse(self, data: Dict[str, Any]) -> GenerationResult:
        if data.get("code"):
            raise NonTransientRequestError(
                f"{data.get('code')}: {data.get('message')}", provider=self.name, body=data
            )
        try:
            choice = data["output"]["choices"][0]
            text = choice["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponse(f"unexpected DashScope response shape: {e!r}", provider=self.name, body=data) from e
        usage = data.get("usage") or {}
        return GenerationResult(
            text=text,
            usage=Usage.from_counts(usage.get("input_tokens"), usage.get("output_tokens"), usage.get("total_tokens")),
            finish_reason=choice.get("finish_reason"),
            raw=data,
        )

    async def generate_text(self, request: GenerationRequest) -> GenerationResult:
        return await self.chat_completion(request.to_chat_request())

    async def chat_completion(self, request: ChatCompletionRequest) -> GenerationResult:
        result = await self._transport.post_json(GENERATION_PATH, self.build_body(request), decode=self.parse)
        result.model = request.model or self.model
        return result

    async def generate_json(self, request: GenerationRequest) -> JsonResult:
        temperature = request.temperature if request.temperature is not None else 0.1
        chat = with_json_instruction(request).to_chat_request(temperature=temperature)
        result = await self.chat_completion(chat)
        return JsonResult(data=parse_json_text(result.text, self.name), text=result.text, usage=result.usage)

    async def aclose(self) -> None:
        await self._transport.aclose()
