from typing import Any, Dict, List, Optional

import httpx

from aisapi.core.errors import MalformedResponse
from aisapi.providers.auth import StaticTokenAuth
from aisapi.providers.base import Capability, parse_json_text, with_json_instruction
from aisapi.providers.http import HttpTransport
from aisapi.schemas import ChatCompletionRequest, ChatMessage, GenerationRequest, GenerationResult, JsonResult, Usage
from aisapi.utils.retry import RetryPolicy, resolve_policy
from aisapi.utils.streaming import ByteStream


class GeminiProvider:
    """Google Gemini generateContent API, authenticated with a ``key`` query parameter."""

    name = "Gemini"
    capabilities = frozenset({Capability.CHAT, Capability.JSON, Capability.STREAMING})
    default_model = "gemini-2.0-flash-001"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: Optional[str] = None,
        api_version: str = "v1beta",
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.model = model or self.default_model
        self._transport = HttpTransport(
            self.name,
            base_url or f"https://generativelanguage.googleapis.com/{api_version}",
            auth=StaticTokenAuth(api_key, provider=self.name, query_param="key"),
            timeout=timeout,
            retry_policy=resolve_policy(max_retries, retry_policy),
            client=http_client,
        )

    @staticmethod
    def _contents(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
        return [
            {"role": "model" if m.role == "assistant" else "user", "parts": [{"text": m.content}]}
            for m in messages
            if m.role != "system"
        ]

    def build_body(self, request: ChatCompletionRequest, *, json_mode: bool = False) -> Dict[str, Any]:
        config = {
            "temperature": request.temperature if request.temperature is not None else 0.7,
            "topP": request.top_p if request.top_p is not None else 0.95,
            "maxOutputTokens": request.max_tokens or 2048,
            "stopSequences": request.stop,
        }
        if json_mode:
            config["responseMimeType"] = "application/json"
        body: Dict[str, Any] = {
            "contents": self._contents(request.messages),
            "generationConfig": {k: v for k, v in config.items() if v is not None},
        }
        system = "\n\n".join(m.content for m in request.messages if m.role == "system")
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        return body

    def parse(self, data: Dict[str, Any]) -> GenerationResult:
        candidates = data.get("candidates") or []
        if not candidates:
            reason = (data.get("promptFeedback") or {}).get("blockReason", "no candidates returned")
            raise MalformedResponse(f"empty response: {reason}", provider=self.name, body=data)
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        usage = data.get("usageMetadata") or {}
        return GenerationResult(
            text="".join(part.get("text", "") for part in parts),
            usage=Usage.from_counts(
                usage.get("promptTokenCount"), usage.get("candidatesTokenCount"), usage.get("totalTokenCount")
            ),
            model=data.get("modelVersion"),
            finish_reason=candidate.get("finishReason"),
            raw=data,
        )

    async def _generate(self, request: ChatCompletionRequest, *, json_mode: bool = False) -> GenerationResult:
        model = request.model or self.model
        return await self._transport.post_json(
            f"/models/{model}:generateContent", self.build_body(request, json_mode=json_mode), decode=self.parse
        )

    async def generate_text(self, request: GenerationRequest) -> GenerationResult:
        return await self.chat_completion(request.to_chat_request())

    async def chat_completion(self, request: ChatCompletionRequest) -> GenerationResult:
        return await self._generate(request)

    async def generate_json(self, request: GenerationRequest) -> JsonResult:
        temperature = request.temperature if request.temperature is not None else 0.3
        chat = with_json_instruction(request).to_chat_request(temperature=temperature)
        result = await self._generate(chat, json_mode=True)
        return JsonResult(data=parse_json_text(result.text, self.name), text=result.text, usage=result.usage)

    async def create_streaming_chat_completion(self, request: ChatCompletionRequest) -> ByteStream:
        model = request.model or self.model
        return await self._transport.stream(
            "POST", f"/models/{model}:streamGenerateContent", json=self.build_body(request)
        )

    async def aclose(self) -> None:
        await self._transport.aclose()
