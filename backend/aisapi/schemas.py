from typing import List, Optional, Any, Dict, Union
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CanonicalModel(BaseModel):
    # snake_case attributes, camelCase when dumped with by_alias=True
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatMessage(CanonicalModel):
    role: str  # "system" | "user" | "assistant" | "tool"
    content: str
    name: Optional[str] = None


class Usage(CanonicalModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(
        cls,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None,
        total_tokens: Optional[int] = None,
    ) -> "Usage":
        """Build a usage record from vendor counts, any of which may be missing."""
        prompt = prompt_tokens or 0
        completion = completion_tokens or 0
        if prompt_tokens is not None and completion_tokens is not None:
            total = prompt + completion
        else:
            total = total_tokens or (prompt + completion)
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


class CacheInfo(CanonicalModel):
    hit_tokens: int = 0
    miss_tokens: int = 0
    hit_rate: float = 0.0
    estimated_savings: float = 0.0


class GenerationRequest(CanonicalModel):
    prompt: Optional[str] = None
    messages: List[ChatMessage] = Field(default_factory=list)
    system_message: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    stop: Optional[List[str]] = None
    model: Optional[str] = None
    stream: bool = False

    @model_validator(mode="after")
    def _require_input(self) -> "GenerationRequest":
        if not self.prompt and not self.messages:
            raise ValueError("either prompt or messages is required")
        return self

    def to_messages(self) -> List[ChatMessage]:
        messages: List[ChatMessage] = []
        if self.system_message:
            messages.append(ChatMessage(role="system", content=self.system_message))
        messages.extend(self.messages)
        if self.prompt:
            messages.append(ChatMessage(role="user", content=self.prompt))
        return messages

    def to_chat_request(self, **overrides: Any) -> "ChatCompletionRequest":
        fields: Dict[str, Any] = {
            "messages": self.to_messages(),
            "model": self.model,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "max_tokens": self.max_tokens,
            "stop": self.stop,
            "stream": self.stream,
        }
        fields.update(overrides)
        return ChatCompletionRequest(**fields)


class ChatCompletionRequest(CanonicalModel):
    messages: List[ChatMessage] = Field(min_length=1)
    model: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    n: Optional[int] = None
    stream: bool = False
    stop: Optional[List[str]] = None
    presence_penalty: Optional[float] = None
    frequency_penalty: Optional[float] = None
    logit_bias: Optional[Dict[str, float]] = None
    user: Optional[str] = None
    response_format: Optional[Dict[str, Any]] = None
    tools: Optional[List[Dict[str, Any]]] = None


class GenerationResult(CanonicalModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, arbitrary_types_allowed=True)

    text: str = ""
    usage: Usage = Field(default_factory=Usage)
    cache_info: Optional[CacheInfo] = None
    model: Optional[str] = None
    finish_reason: Optional[str] = None
    raw: Any = Field(default=None, exclude=True, repr=False)
    stream: Any = Field(default=None, exclude=True, repr=False)  # ByteStream when streaming


class JsonResult(CanonicalModel):
    data: Any
    text: str
    usage: Usage = Field(default_factory=Usage)
    cache_info: Optional[CacheInfo] = None


# Multimodal input
class MediaSource(CanonicalModel):
    """An image or document given either by URL or as base64 data."""

    url: Optional[str] = None
    base64_data: Optional[str] = None
    mime_type: Optional[str] = None

    @model_validator(mode="after")
    def _require_source(self) -> "MediaSource":
        if not self.url and not self.base64_data:
            raise ValueError("either url or base64_data is required")
        return self


class MultimodalRequest(GenerationRequest):
    image: Optional[MediaSource] = None
    document: Optional[MediaSource] = None


# Images
class ImageGenerationRequest(CanonicalModel):
    prompt: str
    model: Optional[str] = None
    n: int = 1
    size: str = "1024x1024"
    quality: Optional[str] = None
    style: Optional[str] = None
    response_format: str = "url"
    user: Optional[str] = None


class ImageEditRequest(CanonicalModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, arbitrary_types_allowed=True)

    image: Any  # bytes, file object or (filename, bytes, content_type)
    prompt: str
    mask: Any = None
    model: Optional[str] = None
    n: int = 1
    size: str = "1024x1024"
    response_format: str = "url"
    user: Optional[str] = None


class ImageVariationRequest(CanonicalModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, arbitrary_types_allowed=True)

    image: Any
    model: Optional[str] = None
    n: int = 1
    size: str = "1024x1024"
    response_format: str = "url"
    user: Optional[str] = None


class ImageResult(CanonicalModel):
    urls: List[str] = Field(default_factory=list)
    b64_json: List[str] = Field(default_factory=list)
    raw: Any = Field(default=None, exclude=True, repr=False)


# Audio
class TranscriptionRequest(CanonicalModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, arbitrary_types_allowed=True)

    file: Any
    model: str = "whisper-1"
    language: Optional[str] = None
    prompt: Optional[str] = None
    response_format: str = "json"
    temperature: Optional[float] = None


class TranscriptionResult(CanonicalModel):
    text: str
    raw: Any = Field(default=None, exclude=True, repr=False)


class SpeechRequest(CanonicalModel):
    input: str
    model: str = "tts-1"
    voice: str = "alloy"
    response_format: str = "mp3"
    speed: float = 1.0


class SpeechResult(CanonicalModel):
    audio: bytes
    format: str


# Embeddings
class EmbeddingRequest(CanonicalModel):
    input: Union[str, List[str]]
    model: Optional[str] = None
    user: Optional[str] = None


class EmbeddingItem(CanonicalModel):
    index: int
    embedding: List[float]


class EmbeddingResult(CanonicalModel):
    data: List[EmbeddingItem]
    model: str
    usage: Usage = Field(default_factory=Usage)


# Models
class ModelInfo(CanonicalModel):
    id: str
    created: Optional[int] = None
    owned_by: Optional[str] = None


class ModelList(CanonicalModel):
    data: List[ModelInfo] = Field(default_factory=list)


class TokenCount(CanonicalModel):
    input_tokens: int
