from typing import Any, Dict, List, Optional, Tuple

import httpx
import structlog

from aisapi.core.errors import MalformedResponse, NonTransientRequestError, RateLimited, TokenRejected
from aisapi.providers.auth import ERNIE_TOKEN_URL, TokenExchangeAuth
from aisapi.providers.base import Capability, parse_json_text, with_json_instruction
from aisapi.providers.http import HttpTransport
from aisapi.schemas import ChatCompletionRequest, ChatMessage, GenerationRequest, GenerationResult, JsonResult, Usage
from aisapi.utils.retry import RetryPolicy, resolve_policy

logger = structlog.get_logger()

# ernie-bot is served at /chat/completions; every other model at /chat/<model>
MODEL_PATHS = {"ernie-bot": "completions"}

TOKEN_ERROR_CODES = {110, 111}  # access token invalid / expired
RATE_LIMIT_ERROR_CODES = {4, 17, 18}


def model_path(model: str) -> str:
    return MODEL_PATHS.get(model, model)


class ErnieProvider:
    """Baidu ERNIE (Wenxin Workshop). Authenticates with an exchanged, cached access token."""

    name = "Ernie"
    capabilities = frozenset({Capability.CHAT, Capability.JSON})
    default_base_url = "https://aip.baidubce.com/rpc/2.0/ai_custom/v1/wenxinworkshop"
    default_model = "ernie-bot"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        secret_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        token_url: str = ERNIE_TOKEN_URL,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.model = model or self.default_model
        self.auth = TokenExchangeAuth(api_key, secret_key, provider=self.name, token_url=token_url)
        self._transport = HttpTransport(
            self.name,
            base_url or self.default_base_url,
            auth=self.auth,
            timeout=timeout,
            retry_policy=resolve_policy(max_retries, retry_policy),
            client=http_client,
        )

    @staticmethod
    def _split_messages(messages: List[ChatMessage]) -> Tuple[Optional[str], List[Dict[str, str]]]:
        system = "\n".join(m.content for m in messages if m.role == "system") or None
        turns = [
            {"role": "assistant" if m.role == "assistant" else "user", "content": m.content}
            for m in messages
            if m.role != "system"
        ]
        return system, turns

    def build_body(self, request: ChatCompletionRequest) -> Dict[str, Any]:
        system, turns = self._split_messages(request.messages)
        body = {
            "messages": turns,
            "system": system,
            "temperature": request.temperature if request.temperature is not None else 0.7,
            "top_p": request.top_p if request.top_p is not None else 0.9,
            "max_output_tokens": request.max_tokens,
            "stop": request.stop,
            "user_id": request.user,
        }
        return {k: v for k, v in body.items() if v is not None}

    def parse(self, data: Dict[str, Any]) -> GenerationResult:
        code = data.get("error_code")
        if code:
            message = f"{data.get('error_msg')} (code {code})"
            if code in TOKEN_ERROR_CODES:
                self.auth.invalidate()
                raise TokenRejected(message, provider=self.name)
            if code in RATE_LIMIT_ERROR_CODES:
                raise RateLimited(message, provider=self.name, status_code=None)
            raise NonTransientRequestError(message, provider=self.name, body=data)
        if "result" not in data:
            raise MalformedResponse("response has no result field", provider=self.name, body=data)
        usage = data.get("usage") or {}
        return GenerationResult(
            text=data["result"] or "",
            usage=Usage.from_counts(usage.get("prompt_tokens"), usage.get("completion_tokens"), usage.get("total_tokens")),
            finish_reason=data.get("finish_reason"),
            raw=data,
        )

    async def generate_text(self, request: GenerationRequest) -> GenerationResult:
        return await self.chat_completion(request.to_chat_request())

    async def chat_completion(self, request: ChatCompletionRequest) -> GenerationResult:
        model = request.model or self.model
        path, body = f"/chat/{model_path(model)}", self.build_body(request)
        # vendor errors arrive with HTTP 200, so parse inside the retried attempt
        try:
            result = await self._transport.post_json(path, body, decode=self.parse)
        except TokenRejected:
            # one fresh exchange per call; a second rejection propagates
            logger.info("ernie_token_rejected", model=model)
            result = await self._transport.post_json(path, body, decode=self.parse)
        result.model = model
        return result

    async def generate_json(self, request: GenerationRequest) -> JsonResult:
        temperature = request.temperature if request.temperature is not None else 0.1
        result = await self.chat_completion(with_json_instruction(request).to_chat_request(temperature=temperature))
        return JsonResult(data=parse_json_text(result.text, self.name), text=result.text, usage=result.usage)

    async def aclose(self) -> None:
        await self._transport.aclose()
