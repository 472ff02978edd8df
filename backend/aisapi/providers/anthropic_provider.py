from typing import Any, Dict, List, Optional, Tuple

import httpx

from aisapi.core.errors import MalformedResponse
from aisapi.providers.auth import StaticTokenAuth
from aisapi.providers.base import Capability, parse_json_text, with_json_instruction
from aisapi.providers.http import HttpTransport
from aisapi.schemas import (
    ChatCompletionRequest,
    ChatMessage,
    GenerationRequest,
    GenerationResult,
    JsonResult,
    MediaSource,
    MultimodalRequest,
    TokenCount,
    Usage,
)
from aisapi.utils.retry import RetryPolicy, resolve_policy
from aisapi.utils.streaming import ByteStream

DEFAULT_MAX_TOKENS = 1000
DEFAULT_IMAGE_TYPE = "image/jpeg"
DEFAULT_DOCUMENT_TYPE = "application/pdf"


def media_block(kind: str, source: MediaSource, default_type: str) -> Dict[str, Any]:
    if source.url:
        return {"type": kind, "source": {"type": "url", "url": source.url}}
    return {
        "type": kind,
        "source": {"type": "base64", "media_type": source.mime_type or default_type, "data": source.base64_data},
    }


class AnthropicProvider:
    """Anthropic Messages API. System prompts travel in the top-level ``system`` field."""

    name = "Anthropic"
    capabilities = frozenset(
        {Capability.CHAT, Capability.JSON, Capability.STREAMING, Capability.TOKEN_COUNT, Capability.MULTIMODAL}
    )
    default_base_url = "https://api.anthropic.com/v1"
    default_model = "claude-3-7-sonnet-20250219"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: Optional[str] = None,
        anthropic_version: str = "2023-06-01",
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
            auth=StaticTokenAuth(api_key, provider=self.name, header="x-api-key", scheme=None),
            timeout=timeout,
            retry_policy=resolve_policy(max_retries, retry_policy),
            client=http_client,
            headers={"anthropic-version": anthropic_version},
        )

    @staticmethod
    def _split_messages(messages: List[ChatMessage]) -> Tuple[Optional[str], List[Dict[str, str]]]:
        system = "\n\n".join(m.content for m in messages if m.role == "system") or None
        turns = [
            # tool and function results are replayed as user turns
            {"role": "assistant" if m.role == "assistant" else "user", "content": m.content}
            for m in messages
            if m.role != "system"
        ]
        return system, turns

    def build_body(self, request: ChatCompletionRequest, *, stream: bool = False) -> Dict[str, Any]:
        system, turns = self._split_messages(request.messages)
        body = {
            "model": request.model or self.model,
            "messages": turns,
            "system": system,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": request.temperature,
            "top_p": request.top_p,
            "stop_sequences": request.stop,
            "tools": request.tools,
            "stream": True if stream else None,
        }
        return {k: v for k, v in body.items() if v is not None}

    def parse(self, data: Dict[str, Any]) -> GenerationResult:
        content = data.get("content")
        if not isinstance(content, list):
            raise MalformedResponse("response has no content blocks", provider=self.name, body=data)
        text = "".join(block.get("text", "") for block in content if block.get("type") == "text")
        usage = data.get("usage") or {}
        return GenerationResult(
            text=text,
            usage=Usage.from_counts(usage.get("input_tokens"), usage.get("output_tokens")),
            model=data.get("model"),
            finish_reason=data.get("stop_reason"),
            raw=data,
        )

    async def generate_text(self, request: GenerationRequest) -> GenerationResult:
        return await self.chat_completion(request.to_chat_request())

    async def chat_completion(self, request: ChatCompletionRequest) -> GenerationResult:
        return await self._transport.post_json("/messages", self.build_body(request), decode=self.parse)

    async def generate_json(self, request: GenerationRequest) -> JsonResult:
        result = await self.chat_completion(with_json_instruction(request).to_chat_request())
        return JsonResult(data=parse_json_text(result.text, self.name), text=result.text, usage=result.usage)

    async def create_streaming_chat_completion(self, request: ChatCompletionRequest) -> ByteStream:
        return await self._transport.stream("POST", "/messages", json=self.build_body(request, stream=True))

    async def generate_text_with_image(self, request: MultimodalRequest) -> GenerationResult:
        """Send an image and/or document ahead of the text of the last user turn."""
        body = self.build_body(request.to_chat_request())
        blocks = []
        if request.image:
            blocks.append(media_block("image", request.image, DEFAULT_IMAGE_TYPE))
        if request.document:
            blocks.append(media_block("document", request.document, DEFAULT_DOCUMENT_TYPE))
        last = body["messages"][-1]
        last["content"] = blocks + [{"type": "text", "text": last["content"]}]
        return await self._transport.post_json("/messages", body, decode=self.parse)

    async def count_tokens(self, request: ChatCompletionRequest) -> TokenCount:
        system, turns = self._split_messages(request.messages)
        body = {"model": request.model or self.model, "messages": turns}
        if system:
            body["system"] = system
        data = await self._transport.post_json("/messages/count_tokens", body)
        return TokenCount(input_tokens=data.get("input_tokens", 0))

    async def aclose(self) -> None:
        await self._transport.aclose()
