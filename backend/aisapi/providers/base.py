import json
from enum import Enum
from typing import Any, Dict, FrozenSet, Protocol, runtime_checkable

from aisapi.core.errors import ConfigurationError, JsonDecodeFailure
from aisapi.schemas import GenerationRequest, GenerationResult

JSON_INSTRUCTION = "Respond with valid JSON only. Do not include any additional text."


class Capability(str, Enum):
    CHAT = "chat"
    JSON = "json"
    STREAMING = "streaming"
    IMAGE_GENERATION = "image_generation"
    IMAGE_EDIT = "image_edit"
    IMAGE_VARIATION = "image_variation"
    AUDIO_TRANSCRIPTION = "audio_transcription"
    TEXT_TO_SPEECH = "text_to_speech"
    EMBEDDINGS = "embeddings"
    LIST_MODELS = "list_models"
    KEY_VALIDATION = "key_validation"
    MULTIMODAL = "multimodal"
    REASONING = "reasoning"
    TOKEN_COUNT = "token_count"
    CACHE_ACCOUNTING = "cache_accounting"

    def __str__(self) -> str:
        return self.value


# Operations an adapter must define for each capability it declares
CAPABILITY_METHODS: Dict[Capability, tuple] = {
    Capability.CHAT: ("chat_completion",),
    Capability.JSON: ("generate_json",),
    Capability.STREAMING: ("create_streaming_chat_completion",),
    Capability.IMAGE_GENERATION: ("generate_image",),
    Capability.IMAGE_EDIT: ("edit_image",),
    Capability.IMAGE_VARIATION: ("create_image_variation",),
    Capability.AUDIO_TRANSCRIPTION: ("transcribe_audio",),
    Capability.TEXT_TO_SPEECH: ("text_to_speech",),
    Capability.EMBEDDINGS: ("create_embedding",),
    Capability.LIST_MODELS: ("list_models", "get_model"),
    Capability.KEY_VALIDATION: ("validate_api_key",),
    Capability.MULTIMODAL: ("generate_text_with_image",),
    Capability.REASONING: ("chain_of_thought",),
    Capability.TOKEN_COUNT: ("count_tokens",),
    Capability.CACHE_ACCOUNTING: ("cache_stats", "reset_cache_stats"),
}


@runtime_checkable
class Provider(Protocol):
    """
    The one mandatory operation every vendor adapter implements. Optional
    operations are listed in ``capabilities`` and defined only when declared.
    """

    name: str
    capabilities: FrozenSet[Capability]

    async def generate_text(self, request: GenerationRequest) -> GenerationResult: ...

    async def aclose(self) -> None: ...


def validate_capabilities(provider: Any) -> None:
    name = getattr(provider, "name", None) or type(provider).__name__
    if not callable(getattr(provider, "generate_text", None)):
        raise ConfigurationError("adapter does not implement generate_text", provider=name)
    missing = [
        method
        for capability in getattr(provider, "capabilities", frozenset())
        for method in CAPABILITY_METHODS[Capability(capability)]
        if not callable(getattr(provider, method, None))
    ]
    if missing:
        raise ConfigurationError(f"declared capabilities without operations: {', '.join(missing)}", provider=name)


def with_json_instruction(request: GenerationRequest) -> GenerationRequest:
    system = f"{request.system_message}\n\n{JSON_INSTRUCTION}" if request.system_message else JSON_INSTRUCTION
    return request.model_copy(update={"system_message": system, "stream": False})


def parse_json_text(text: str, provider: str) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError) as e:
        raise JsonDecodeFailure(f"response is not valid JSON: {e}", raw_text=text, provider=provider) from e
