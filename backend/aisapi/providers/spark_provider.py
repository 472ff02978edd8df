import uuid
from typing import Any, Dict, List, Optional

import httpx

from aisapi.core.errors import MalformedResponse, NonTransientRequestError
from aisapi.providers.auth import HmacSignatureAuth
from aisapi.providers.base import Capability, parse_json_text, with_json_instruction
from aisapi.providers.http import HttpTransport
from aisapi.schemas import ChatCompletionRequest, ChatMessage, GenerationRequest, GenerationResult, JsonResult, Usage
from aisapi.utils.retry import RetryPolicy, resolve_policy

# model name -> Spark "domain" parameter
SPARK_DOMAINS = {
    "spark-lite": "generalv3.5",
    "spark-pro": "generalv3",
    "spark-pro-128k": "generalv3.5",
    "spark-max": "generalv2",
    "spark-max-32k": "generalv2.5",
    "spark-ultra": "generalv4.0",
}
DEFAULT_DOMAIN = "generalv3"


def spark_domain(model: str) -> str:
    return SPARK_DOMAINS.get(model, DEFAULT_DOMAIN)


class SparkProvider:
    """iFlytek Spark over HTTP. Every request carries a fresh HMAC signature."""

    name = "Spark"
    capabilities = frozenset({Capability.CHAT, Capability.JSON})
    default_base_url = "https://spark-api.xf-yun.com/v3.5"
    default_model = "spark-pro"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        app_id: Optional[str] = None,
        api_secret: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.app_id = app_id
        self.model = model or self.default_model
        self._transport = HttpTransport(
            self.name,
            base_url or self.default_base_url,
            auth=HmacSignatureAuth(api_key, app_id, api_secret, provider=self.name),
            timeout=timeout,
            retry_policy=resolve_policy(max_retries, retry_policy),
            client=http_client,
        )

    @staticmethod
    def _messages(messages: List[ChatMessage]) -> List[Dict[str, str]]:
        # Spark accepts system, user and assistant; anything else is sent as user
        return [
            {"role": m.role if m.role in ("system", "assistant") else "user", "content": m.content}
            for m in messages
        ]

    def build_body(self, request: ChatCompletionRequest) -> Dict[str, Any]:
        return {
            "header": {"app_id": self.app_id, "uid": f"user_{uuid.uuid4().hex[:16]}"},
            "parameter": {
                "chat": {
                    "domain": spark_domain(request.model or self.model),
                    "temperature": request.temperature if request.temperature is not None else 0.7,
                    "top_k": 4,
                    "max_tokens": request.max_tokens or 2048,
                    "auditing": "default",
                }
            },
            "payload": {"message": {"text": self._messages(request.messages)}},
        }

    def parse(self, data: Dict[str, Any]) -> GenerationResult:
        header = data.get("header") or {}
        if header.get("code", 0) != 0:
            raise NonTransientRequestError(
                f"{header.get('message')} (code {header.get('code')})", provider=self.name, body=data
            )
        try:
            payload = data["payload"]
            text = payload["choices"]["text"][0]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponse(f"unexpected Spark response shape: {e!r}", provider=self.name, body=data) from e
        usage = (payload.get("usage") or {}).get("text") or {}
        return GenerationResult(
            text=text,
            usage=Usage.from_counts(
                usage.get("prompt_tokens"), usage.get("completion_tokens"), usage.get("total_tokens")
            ),
            raw=data,
        )

    async def generate_text(self, request: GenerationRequest) -> GenerationResult:
        return await self.chat_completion(request.to_chat_request())

    async def chat_completion(self, request: ChatCompletionRequest) -> GenerationResult:
        result = await self._transport.post_json("", self.build_body(request), decode=self.parse)
        result.model = request.model or self.model
        return result

    async def generate_json(self, request: GenerationRequest) -> JsonResult:
        temperature = request.temperature if request.temperature is not None else 0.1
        result = await self.chat_completion(with_json_instruction(request).to_chat_request(temperature=temperature))
        return JsonResult(data=parse_json_text(result.text, self.name), text=result.text, usage=result.usage)

    async def aclose(self) -> None:
        await self._transport.aclose()
