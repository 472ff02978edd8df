import json
from typing import Any, Callable, Dict, List, Union

import httpx

from aisapi.providers.base import Capability
from aisapi.schemas import GenerationResult, Usage

Reply = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


def json_response(data: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=data)


def chat_completion(text: str, prompt_tokens: int = 12, completion_tokens: int = 8, **usage: Any) -> Dict[str, Any]:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "test-model",
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": text}, "finish_reason": "stop"}
        ],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
            **usage,
        },
    }


class MockVendor:
    """
    Serves queued replies through httpx.MockTransport and records every
    request. The last reply is repeated once the queue runs dry.
    """

    def __init__(self, *replies: Reply):
        self.replies: List[Reply] = list(replies)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(request)
        # fresh copy so a repeated reply can be read again
        return httpx.Response(reply.status_code, headers=reply.headers, content=reply.content)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def body(self, index: int = -1) -> Any:
        return json.loads(self.requests[index].content)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


class EchoProvider:
    """Minimal in-memory adapter for registry and facade tests."""

    capabilities = frozenset({Capability.CHAT})

    def __init__(self, name: str = "Echo"):
        self.name = name
        self.closed = False

    async def generate_text(self, request):
        return GenerationResult(text=request.prompt or "", usage=Usage.from_counts(1, 1))

    async def chat_completion(self, request):
        return GenerationResult(text=request.messages[-1].content)

    async def aclose(self):
        self.closed = True
