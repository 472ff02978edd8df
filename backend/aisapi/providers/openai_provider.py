import asyncio
from contextlib import AsyncExitStack
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx
import openai
import structlog
from openai import AsyncOpenAI

from aisapi.core.config import settings
from aisapi.core.errors import (
    AuthFailure,
    ConfigurationError,
    MalformedResponse,
    NonTransientRequestError,
    RateLimited,
    RequestTimeout,
    TransientNetworkError,
)
from aisapi.providers.base import Capability, parse_json_text, with_json_instruction
from aisapi.providers.openai_compat import JSON_OBJECT
from aisapi.schemas import (
    ChatCompletionRequest,
    EmbeddingItem,
    EmbeddingRequest,
    EmbeddingResult,
    GenerationRequest,
    GenerationResult,
    ImageEditRequest,
    ImageGenerationRequest,
    ImageResult,
    ImageVariationRequest,
    JsonResult,
    ModelInfo,
    ModelList,
    SpeechRequest,
    SpeechResult,
    TranscriptionRequest,
    TranscriptionResult,
    Usage,
)
from aisapi.utils.retry import RetryExecutor, RetryPolicy, resolve_policy
from aisapi.utils.streaming import ByteStream

logger = structlog.get_logger()

T = TypeVar("T")

LEGACY_MAX_TOKENS = 150


def _strip_none(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _usage(usage: Any) -> Usage:
    return Usage.from_counts(
        getattr(usage, "prompt_tokens", None),
        getattr(usage, "completion_tokens", None),
        getattr(usage, "total_tokens", None),
    )


class OpenAIProvider:
    """
    OpenAI through the official SDK. The SDK's own retries are disabled so the
    shared retry executor and error taxonomy apply.
    """

    name = "OpenAI"
    capabilities = frozenset(
        {
            Capability.CHAT,
            Capability.JSON,
            Capability.STREAMING,
            Capability.IMAGE_GENERATION,
            Capability.IMAGE_EDIT,
            Capability.IMAGE_VARIATION,
            Capability.AUDIO_TRANSCRIPTION,
            Capability.TEXT_TO_SPEECH,
            Capability.EMBEDDINGS,
            Capability.LIST_MODELS,
            Capability.KEY_VALIDATION,
        }
    )
    default_base_url = "https://api.openai.com/v1"
    default_model = "gpt-3.5-turbo"
    default_image_model = "dall-e-3"
    default_embedding_model = "text-embedding-3-small"

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        organization: Optional[str] = None,
        model: Optional[str] = None,
        legacy_model: str = "gpt-3.5-turbo-instruct",
        prefer_legacy_completions: bool = False,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.organization = organization
        self.model = model or self.default_model
        self.legacy_model = legacy_model
        self.prefer_legacy_completions = prefer_legacy_completions
        self.base_url = base_url or self.default_base_url
        self.timeout = timeout or settings.DEFAULT_TIMEOUT_SECONDS
        self.retry = RetryExecutor(self.name, resolve_policy(max_retries, retry_policy))
        self._http_client = http_client
        self._client: Optional[AsyncOpenAI] = None

    def _build_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError("an API key is required", provider=self.name)
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                organization=self.organization,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
                http_client=self._http_client,
            )
        return self._client

    def _translate(self, e: openai.OpenAIError) -> Exception:
        if isinstance(e, openai.APITimeoutError):
            return RequestTimeout(f"request timed out after {self.timeout}s", provider=self.name)
        if isinstance(e, openai.APIConnectionError):
            return TransientNetworkError(f"network error: {e}", provider=self.name)
        if isinstance(e, openai.RateLimitError):
            return RateLimited(f"rate limited: {e.message}", provider=self.name)
        if isinstance(e, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return AuthFailure(f"authentication failed: {e.message}", provider=self.name, status_code=e.status_code)
        if isinstance(e, openai.APIStatusError):
            if e.status_code >= 500:
                return TransientNetworkError(
                    f"server error ({e.status_code}): {e.message}", provider=self.name, status_code=e.status_code
                )
            return NonTransientRequestError(
                f"request rejected ({e.status_code}): {e.message}",
                provider=self.name,
                status_code=e.status_code,
                body=e.body,
            )
        return MalformedResponse(str(e), provider=self.name)

    async def _call(self, operation: Callable[[AsyncOpenAI], Awaitable[T]]) -> T:
        client = self._build_client()

        async def attempt() -> T:
            try:
                return await operation(client)
            except openai.OpenAIError as e:
                raise self._translate(e) from e

        return await self.retry.run(attempt)

    def _chat_body(self, request: ChatCompletionRequest) -> Dict[str, Any]:
        return _strip_none(
            {
                "model": request.model or self.model,
                "messages": [m.model_dump(exclude_none=True) for m in request.messages],
                "temperature": request.temperature,
                "top_p": request.top_p,
                "max_tokens": request.max_tokens,
                "n": request.n,
                "stop": request.stop,
                "presence_penalty": request.presence_penalty,
                "frequency_penalty": request.frequency_penalty,
                "logit_bias": request.logit_bias,
                "user": request.user,
                "response_format": request.response_format,
                "tools": request.tools,
            }
        )

    async def generate_text(self, request: GenerationRequest) -> GenerationResult:
        if self.prefer_legacy_completions and not request.system_message and not request.messages:
            return await self._legacy_completion(request)
        return await self.chat_completion(request.to_chat_request())

    async def _legacy_completion(self, request: GenerationRequest) -> GenerationResult:
        body = _strip_none(
            {
                "model": request.model or self.legacy_model,
                "prompt": request.prompt,
                "max_tokens": request.max_tokens or LEGACY_MAX_TOKENS,
                "temperature": request.temperature,
                "top_p": request.top_p,
                "stop": request.stop,
            }
        )
        resp = await self._call(lambda client: client.completions.create(**body))
        if not resp.choices:
            raise MalformedResponse("completion has no choices", provider=self.name)
        return GenerationResult(
            text=resp.choices[0].text.strip(),
            usage=_usage(resp.usage),
            model=resp.model,
            finish_reason=resp.choices[0].finish_reason,
            raw=resp.model_dump(),
        )

    async def chat_completion(self, request: ChatCompletionRequest) -> GenerationResult:
        body = self._chat_body(request)
        resp = await self._call(lambda client: client.chat.completions.create(**body))
        if not resp.choices:
            raise MalformedResponse("chat completion has no choices", provider=self.name)
        choice = resp.choices[0]
        return GenerationResult(
            text=choice.message.content or "",
            usage=_usage(resp.usage),
            model=resp.model,
            finish_reason=choice.finish_reason,
            raw=resp.model_dump(),
        )

    async def generate_json(self, request: GenerationRequest) -> JsonResult:
        chat = with_json_instruction(request).to_chat_request(response_format=JSON_OBJECT)
        result = await self.chat_completion(chat)
        return JsonResult(data=parse_json_text(result.text, self.name), text=result.text, usage=result.usage)

    async def create_streaming_chat_completion(self, request: ChatCompletionRequest) -> ByteStream:
        body = self._chat_body(request)

        async def open_stream(client: AsyncOpenAI) -> ByteStream:
            started = asyncio.get_running_loop().time()
            stack = AsyncExitStack()
            response = await stack.enter_async_context(
                client.chat.completions.with_streaming_response.create(**body, stream=True)
            )
            return ByteStream(
                response.iter_bytes(), stack.aclose, provider=self.name, deadline=started + self.timeout
            )

        return await self._call(open_stream)

    async def generate_image(self, request: ImageGenerationRequest) -> ImageResult:
        body = _strip_none(
            {
                "prompt": request.prompt,
                "model": request.model or self.default_image_model,
                "n": request.n,
                "size": request.size,
                "quality": request.quality,
                "style": request.style,
                "response_format": request.response_format,
                "user": request.user,
            }
        )
        resp = await self._call(lambda client: client.images.generate(**body))
        return self._image_result(resp)

    async def edit_image(self, request: ImageEditRequest) -> ImageResult:
        body = _strip_none(
            {
                "image": request.image,
                "mask": request.mask,
                "prompt": request.prompt,
                "model": request.model,
                "n": request.n,
                "size": request.size,
                "response_format": request.response_format,
                "user": request.user,
            }
        )
        resp = await self._call(lambda client: client.images.edit(**body))
        return self._image_result(resp)

    async def create_image_variation(self, request: ImageVariationRequest) -> ImageResult:
        body = _strip_none(
            {
                "image": request.image,
                "model": request.model,
                "n": request.n,
                "size": request.size,
                "response_format": request.response_format,
                "user": request.user,
            }
        )
        resp = await self._call(lambda client: client.images.create_variation(**body))
        return self._image_result(resp)

    @staticmethod
    def _image_result(resp: Any) -> ImageResult:
        data = resp.data or []
        return ImageResult(
            urls=[item.url for item in data if item.url],
            b64_json=[item.b64_json for item in data if item.b64_json],
            raw=resp.model_dump(),
        )

    async def transcribe_audio(self, request: TranscriptionRequest) -> TranscriptionResult:
        body = _strip_none(
            {
                "file": request.file,
                "model": request.model,
                "language": request.language,
                "prompt": request.prompt,
                "response_format": request.response_format,
                "temperature": request.temperature,
            }
        )
        resp = await self._call(lambda client: client.audio.transcriptions.create(**body))
        # text, srt and vtt formats come back as a bare string
        if isinstance(resp, str):
            return TranscriptionResult(text=resp, raw=resp)
        return TranscriptionResult(text=resp.text, raw=resp.model_dump())

    async def text_to_speech(self, request: SpeechRequest) -> SpeechResult:
        resp = await self._call(
            lambda client: client.audio.speech.create(
                input=request.input,
                model=request.model,
                voice=request.voice,
                response_format=request.response_format,
                speed=request.speed,
            )
        )
        return SpeechResult(audio=resp.content, format=request.response_format)

    async def create_embedding(self, request: EmbeddingRequest) -> EmbeddingResult:
        body = _strip_none(
            {
                "input": request.input,
                "model": request.model or self.default_embedding_model,
                "user": request.user,
            }
        )
        resp = await self._call(lambda client: client.embeddings.create(**body))
        return EmbeddingResult(
            data=[EmbeddingItem(index=item.index, embedding=item.embedding) for item in resp.data],
            model=resp.model,
            usage=Usage.from_counts(
                getattr(resp.usage, "prompt_tokens", None), 0, getattr(resp.usage, "total_tokens", None)
            ),
        )

    async def list_models(self) -> ModelList:
        page = await self._call(lambda client: client.models.list())
        models: List[ModelInfo] = [
            ModelInfo(id=m.id, created=getattr(m, "created", None), owned_by=getattr(m, "owned_by", None))
            for m in page.data
        ]
        return ModelList(data=models)

    async def get_model(self, model_id: str) -> ModelInfo:
        m = await self._call(lambda client: client.models.retrieve(model_id))
        return ModelInfo(id=m.id, created=getattr(m, "created", None), owned_by=getattr(m, "owned_by", None))

    async def validate_api_key(self) -> bool:
        """True when the configured key can list models. Only an auth rejection reads as False."""
        try:
            await self.list_models()
        except AuthFailure as e:
            logger.info("api_key_rejected", provider=self.name, status_code=e.status_code)
            return False
        return True

    async def aclose(self) -> None:
        # an injected http client belongs to the caller
        if self._client is not None and self._http_client is None:
            await self._client.close()
        self._client = None
