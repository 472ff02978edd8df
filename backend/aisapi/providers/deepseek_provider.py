from typing import Optional

import httpx
import structlog

from aisapi.providers.auth import StaticTokenAuth
from aisapi.providers.base import Capability
from aisapi.providers.http import HttpTransport
from aisapi.providers.openai_compat import ChatCompletionsEndpoint
from aisapi.schemas import ChatCompletionRequest, GenerationRequest, GenerationResult, JsonResult
from aisapi.utils.retry import RetryPolicy, resolve_policy
from aisapi.utils.streaming import ByteStream
from aisapi.utils.usage import DEEPSEEK_PRICES, CacheAccountant, UsageSnapshot

logger = structlog.get_logger()

REASONER_MODEL = "deepseek-reasoner"
REASONING_INSTRUCTION = (
    "Think through the problem step by step: analyse it first, then lay out "
    "the reasoning in detail, and finish with a conclusion."
)


class DeepSeekProvider:
    """
    DeepSeek chat models. Responses split prompt tokens into cache hits and
    misses, which feed a per-instance cost ledger.
    """

    name = "DeepSeek"
    capabilities = frozenset(
        {
            Capability.CHAT,
            Capability.JSON,
            Capability.STREAMING,
            Capability.REASONING,
            Capability.CACHE_ACCOUNTING,
        }
    )
    default_base_url = "https://api.deepseek.com"
    default_model = "deepseek-chat"

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
        enable_cache_monitoring: bool = True,
    ):
        self.model = model or self.default_model
        self.enable_cache_monitoring = enable_cache_monitoring
        self.accountant = CacheAccountant(DEEPSEEK_PRICES, default_model=self.default_model)
        self._transport = HttpTransport(
            self.name,
            base_url or self.default_base_url,
            auth=StaticTokenAuth(api_key, provider=self.name),
            timeout=timeout,
            retry_policy=resolve_policy(max_retries, retry_policy),
            client=http_client,
        )
        self._chat = ChatCompletionsEndpoint(
            self._transport, default_temperature=0.7, default_max_tokens=2000, json_temperature=0.3
        )

    def _account(self, result: GenerationResult, model: str) -> GenerationResult:
        usage = (result.raw or {}).get("usage") or {}
        hit = usage.get("prompt_cache_hit_tokens")
        miss = usage.get("prompt_cache_miss_tokens")
        if hit is None and miss is None:
            return result
        hit, miss = hit or 0, miss or 0
        result.cache_info = self.accountant.compute(hit, miss, model)
        if self.enable_cache_monitoring:
            self.accountant.record(hit, miss, result.usage.completion_tokens, model)
            logger.debug(
                "deepseek_cache_usage", hit_tokens=hit, miss_tokens=miss, hit_rate=result.cache_info.hit_rate
            )
        return result

    async def generate_text(self, request: GenerationRequest) -> GenerationResult:
        return await self.chat_completion(request.to_chat_request())

    async def chat_completion(self, request: ChatCompletionRequest) -> GenerationResult:
        model = request.model or self.model
        result = await self._chat.complete(request, model)
        return self._account(result, model)

    async def generate_json(self, request: GenerationRequest) -> JsonResult:
        model = request.model or self.model
        result = self._account(await self._chat.complete_json_mode(request, model), model)
        return self._chat.to_json_result(result)

    async def create_streaming_chat_completion(self, request: ChatCompletionRequest) -> ByteStream:
        return await self._chat.stream(request, request.model or self.model)

    async def chain_of_thought(self, request: GenerationRequest) -> GenerationResult:
        """Answer with the reasoning model, prompting for explicit step-by-step reasoning."""
        reasoning = request.model_copy(
            update={
                "model": REASONER_MODEL,
                "system_message": request.system_message or REASONING_INSTRUCTION,
                "stream": False,
            }
        )
        return await self.generate_text(reasoning)

    def cache_stats(self) -> UsageSnapshot:
        return self.accountant.snapshot()

    def reset_cache_stats(self) -> None:
        self.accountant.reset()

    async def aclose(self) -> None:
        await self._transport.aclose()
