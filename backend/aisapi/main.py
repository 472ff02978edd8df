from typing import Any, Optional

import structlog
from pydantic import BaseModel, ConfigDict

from aisapi.core.errors import UnsupportedCapability
from aisapi.providers import PROVIDER_CLASSES, create_provider
from aisapi.providers.base import Capability, Provider
from aisapi.schemas import (
    ChatCompletionRequest,
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
    MultimodalRequest,
    SpeechRequest,
    SpeechResult,
    TokenCount,
    TranscriptionRequest,
    TranscriptionResult,
    Usage,
)
from aisapi.services.router import ProviderRegistry
from aisapi.utils.streaming import ByteStream
from aisapi.utils.usage import UsageSnapshot

logger = structlog.get_logger()


class ProviderOptions(BaseModel):
    """Per-vendor construction options. Vendor-specific credentials ride along as extras."""

    model_config = ConfigDict(extra="allow")

    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: Optional[float] = None
    model: Optional[str] = None
    max_retries: Optional[int] = None


class AisAPIOptions(BaseModel):
    openai: Optional[ProviderOptions] = None
    anthropic: Optional[ProviderOptions] = None
    gemini: Optional[ProviderOptions] = None
    deepseek: Optional[ProviderOptions] = None
    grok: Optional[ProviderOptions] = None
    doubao: Optional[ProviderOptions] = None
    moonshot: Optional[ProviderOptions] = None
    spark: Optional[ProviderOptions] = None
    zhipu: Optional[ProviderOptions] = None
    ernie: Optional[ProviderOptions] = None
    qwen: Optional[ProviderOptions] = None
    default_provider: Optional[str] = None


class AisAPI:
    """
    Unified entry point. Resolves an adapter by name (or the default), checks
    that it has the requested capability and delegates.
    """

    def __init__(self, registry: Optional[ProviderRegistry] = None):
        self.registry = registry or ProviderRegistry()

    @classmethod
    def from_options(cls, options: AisAPIOptions) -> "AisAPI":
        api = cls()
        for name in PROVIDER_CLASSES:
            vendor_options = getattr(options, name)
            if vendor_options is None:
                continue
            api.register(name, create_provider(name, **vendor_options.model_dump(exclude_none=True)))
        if options.default_provider and not api.set_default(options.default_provider):
            logger.warning("default_provider_not_registered", name=options.default_provider)
        return api

    def register(self, name: str, provider: Provider) -> None:
        self.registry.register(name, provider)

    def set_default(self, name: str) -> bool:
        return self.registry.set_default(name)

    def list_providers(self) -> set:
        return self.registry.list_names()

    def get_provider(self, name: Optional[str] = None) -> Provider:
        return self.registry.resolve(name)

    def _require(self, provider_name: Optional[str], capability: Capability) -> Any:
        provider = self.registry.resolve(provider_name)
        if capability not in provider.capabilities:
            raise UnsupportedCapability(str(capability), provider=provider.name)
        return provider

    async def generate_text(self, request: GenerationRequest, provider_name: Optional[str] = None) -> GenerationResult:
        if request.stream:
            provider = self._require(provider_name, Capability.STREAMING)
            stream = await provider.create_streaming_chat_completion(request.to_chat_request())
            return GenerationResult(text="", usage=Usage(), stream=stream)
        provider = self.registry.resolve(provider_name)
        return await provider.generate_text(request)

    async def chat_completion(
        self, request: ChatCompletionRequest, provider_name: Optional[str] = None
    ) -> GenerationResult:
        return await self._require(provider_name, Capability.CHAT).chat_completion(request)

    async def create_streaming_chat_completion(
        self, request: ChatCompletionRequest, provider_name: Optional[str] = None
    ) -> ByteStream:
        return await self._require(provider_name, Capability.STREAMING).create_streaming_chat_completion(request)

    async def generate_json(self, request: GenerationRequest, provider_name: Optional[str] = None) -> JsonResult:
        return await self._require(provider_name, Capability.JSON).generate_json(request)

    async def generate_image(self, request: ImageGenerationRequest, provider_name: Optional[str] = None) -> ImageResult:
        return await self._require(provider_name, Capability.IMAGE_GENERATION).generate_image(request)

    async def edit_image(self, request: ImageEditRequest, provider_name: Optional[str] = None) -> ImageResult:
        return await self._require(provider_name, Capability.IMAGE_EDIT).edit_image(request)

    async def create_image_variation(
        self, request: ImageVariationRequest, provider_name: Optional[str] = None
    ) -> ImageResult:
        return await self._require(provider_name, Capability.IMAGE_VARIATION).create_image_variation(request)

    async def transcribe_audio(
        self, request: TranscriptionRequest, provider_name: Optional[str] = None
    ) -> TranscriptionResult:
        return await self._require(provider_name, Capability.AUDIO_TRANSCRIPTION).transcribe_audio(request)

    async def text_to_speech(self, request: SpeechRequest, provider_name: Optional[str] = None) -> SpeechResult:
        return await self._require(provider_name, Capability.TEXT_TO_SPEECH).text_to_speech(request)

    async def create_embedding(self, request: EmbeddingRequest, provider_name: Optional[str] = None) -> EmbeddingResult:
        return await self._require(provider_name, Capability.EMBEDDINGS).create_embedding(request)

    async def list_models(self, provider_name: Optional[str] = None) -> ModelList:
        return await self._require(provider_name, Capability.LIST_MODELS).list_models()

    async def get_model(self, model_id: str, provider_name: Optional[str] = None) -> ModelInfo:
        return await self._require(provider_name, Capability.LIST_MODELS).get_model(model_id)

    async def validate_api_key(self, provider_name: Optional[str] = None) -> bool:
        return await self._require(provider_name, Capability.KEY_VALIDATION).validate_api_key()

    async def generate_text_with_image(
        self, request: MultimodalRequest, provider_name: Optional[str] = None
    ) -> GenerationResult:
        return await self._require(provider_name, Capability.MULTIMODAL).generate_text_with_image(request)

    async def chain_of_thought(self, request: GenerationRequest, provider_name: Optional[str] = None) -> GenerationResult:
        return await self._require(provider_name, Capability.REASONING).chain_of_thought(request)

    async def count_tokens(self, request: ChatCompletionRequest, provider_name: Optional[str] = None) -> TokenCount:
        return await self._require(provider_name, Capability.TOKEN_COUNT).count_tokens(request)

    def get_cache_stats(self, provider_name: Optional[str] = None) -> UsageSnapshot:
        return self._require(provider_name, Capability.CACHE_ACCOUNTING).cache_stats()

    def reset_cache_stats(self, provider_name: Optional[str] = None) -> None:
        self._require(provider_name, Capability.CACHE_ACCOUNTING).reset_cache_stats()

    async def aclose(self) -> None:
        for name, provider in self.registry.items():
            await provider.aclose()
            logger.debug("provider_closed", name=name)

    async def __aenter__(self) -> "AisAPI":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def create_aisapi(options: Optional[AisAPIOptions] = None, **vendors: Any) -> AisAPI:
    """
    Build a facade from options, e.g.
    ``create_aisapi(deepseek={"api_key": "..."}, default_provider="deepseek")``.
    """
    if options is None:
        options = AisAPIOptions(**vendors)
    return AisAPI.from_options(options)
