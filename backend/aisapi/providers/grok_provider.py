from typing import Optional

import httpx

from aisapi.providers.auth import StaticTokenAuth
from aisapi.providers.base import Capability
from aisapi.providers.http import HttpTransport
from aisapi.providers.openai_compat import ChatCompletionsEndpoint
from aisapi.schemas import ChatCompletionRequest, GenerationRequest, GenerationResult, JsonResult
from aisapi.utils.retry import RetryPolicy, resolve_policy
from aisapi.utils.streaming import ByteStream


class GrokProvider:
    name = "Grok"
    capabilities = frozenset({Capability.CHAT, Capability.JSON, Capability.STREAMING})
    default_base_url = "https://api.x.ai/v1"
    default_model = "grok-3-beta"

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
            base_url or self.default_base_url,
            auth=StaticTokenAuth(api_key, provider=self.name),
            timeout=timeout,
            retry_policy=resolve_policy(max_retries, retry_policy),
            client=http_client,
        )
        self._chat = ChatCompletionsEndpoint(self._transport, default_temperature=0.7)

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
