from typing import Any, Dict, Optional

from aisapi.core.errors import MalformedResponse
from aisapi.providers.base import parse_json_text, with_json_instruction
from aisapi.providers.http import HttpTransport
from aisapi.schemas import ChatCompletionRequest, GenerationRequest, GenerationResult, JsonResult, Usage
from aisapi.utils.streaming import ByteStream

JSON_OBJECT = {"type": "json_object"}

# Sampling fields copied verbatim into the body when set
_PASSTHROUGH = (
    "top_p",
    "n",
    "stop",
    "presence_penalty",
    "frequency_penalty",
    "logit_bias",
    "user",
    "response_format",
    "tools",
)


def chat_usage(usage: Optional[Dict[str, Any]]) -> Usage:
    usage = usage or {}
    return Usage.from_counts(usage.get("prompt_tokens"), usage.get("completion_tokens"), usage.get("total_tokens"))


def parse_chat_completion(data: Any, provider: str) -> GenerationResult:
    try:
        choice = data["choices"][0]
        content = choice["message"].get("content") or ""
    except (KeyError, IndexError, TypeError, AttributeError) as e:
        raise MalformedResponse(f"unexpected chat completion shape: {e!r}", provider=provider, body=data) from e
    return GenerationResult(
        text=content,
        usage=chat_usage(data.get("usage")),
        model=data.get("model"),
        finish_reason=choice.get("finish_reason"),
        raw=data,
    )


class ChatCompletionsEndpoint:
    """Request shaping and parsing for vendors speaking the OpenAI chat-completions dialect."""

    def __init__(
        self,
        transport: HttpTransport,
        *,
        path: str = "/chat/completions",
        default_temperature: Optional[float] = None,
        default_max_tokens: Optional[int] = None,
        json_temperature: Optional[float] = None,
        supports_json_mode: bool = True,
    ):
        self.transport = transport
        self.path = path
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens
        self.json_temperature = json_temperature
        self.supports_json_mode = supports_json_mode

    @property
    def provider(self) -> str:
        return self.transport.provider

    def build_body(self, request: ChatCompletionRequest, model: str, *, stream: bool = False) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": model,
            "messages": [m.model_dump(exclude_none=True) for m in request.messages],
            "temperature": request.temperature if request.temperature is not None else self.default_temperature,
            "max_tokens": request.max_tokens or self.default_max_tokens,
        }
        for field in _PASSTHROUGH:
            body[field] = getattr(request, field)
        if stream:
            body["stream"] = True
        return {k: v for k, v in body.items() if v is not None}

    async def complete(self, request: ChatCompletionRequest, model: str) -> GenerationResult:
        data = await self.transport.post_json(self.path, self.build_body(request, model))
        return parse_chat_completion(data, self.provider)

    async def stream(self, request: ChatCompletionRequest, model: str) -> ByteStream:
        return await self.transport.stream("POST", self.path, json=self.build_body(request, model, stream=True))

    async def complete_json_mode(self, request: GenerationRequest, model: str) -> GenerationResult:
        """Run a JSON-constrained completion. Parsing is left to ``to_json_result``."""
        overrides: Dict[str, Any] = {"stream": False}
        if request.temperature is None and self.json_temperature is not None:
            overrides["temperature"] = self.json_temperature
        if self.supports_json_mode:
            overrides["response_format"] = JSON_OBJECT
        chat = with_json_instruction(request).to_chat_request(**overrides)
        return await self.complete(chat, model)

    def to_json_result(self, result: GenerationResult) -> JsonResult:
        return JsonResult(
            data=parse_json_text(result.text, self.provider),
            text=result.text,
            usage=result.usage,
            cache_info=result.cache_info,
        )
