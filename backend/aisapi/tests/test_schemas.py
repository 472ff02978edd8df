import pytest
from pydantic import ValidationError

from aisapi.schemas import ChatMessage, GenerationRequest, Usage


def test_generation_request_needs_prompt_or_messages():
    with pytest.raises(ValidationError):
        GenerationRequest()
    with pytest.raises(ValidationError):
        GenerationRequest(prompt="", messages=[])


def test_to_messages_puts_system_first_and_prompt_last():
    request = GenerationRequest(
        prompt="and now?",
        system_message="be brief",
        messages=[
            ChatMessage(role="user", content="first"),
            ChatMessage(role="assistant", content="second"),
        ],
    )
    assert [(m.role, m.content) for m in request.to_messages()] == [
        ("system", "be brief"),
        ("user", "first"),
        ("assistant", "second"),
        ("user", "and now?"),
    ]


def test_to_chat_request_carries_sampling_controls():
    chat = GenerationRequest(prompt="hi", temperature=0.2, top_p=0.5, max_tokens=64, model="m").to_chat_request(
        temperature=0.9
    )
    assert chat.temperature == 0.9
    assert chat.top_p == 0.5
    assert chat.max_tokens == 64
    assert chat.model == "m"
    assert chat.messages[-1].content == "hi"


class TestUsage:
    def test_total_is_sum_when_both_counts_reported(self):
        usage = Usage.from_counts(30, 12, 999)
        assert usage.total_tokens == 42

    def test_vendor_total_kept_when_split_missing(self):
        assert Usage.from_counts(None, None, 17).total_tokens == 17

    def test_missing_counts_default_to_zero(self):
        usage = Usage.from_counts()
        assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (0, 0, 0)

    def test_camel_case_dump(self):
        dumped = Usage.from_counts(1, 2).model_dump(by_alias=True)
        assert dumped == {"promptTokens": 1, "completionTokens": 2, "totalTokens": 3}
