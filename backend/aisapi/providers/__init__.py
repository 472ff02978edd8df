from typing import Any, Dict

from aisapi.core.errors import ProviderNotFound
from aisapi.providers.anthropic_provider import AnthropicProvider
from aisapi.providers.base import Capability, Provider
from aisapi.providers.deepseek_provider import DeepSeekProvider
from aisapi.providers.doubao_provider import DoubaoProvider
from aisapi.providers.ernie_provider import ErnieProvider
from aisapi.providers.gemini_provider import GeminiProvider
from aisapi.providers.grok_provider import GrokProvider
from aisapi.providers.moonshot_provider import MoonshotProvider
from aisapi.providers.openai_provider import OpenAIProvider
from aisapi.providers.qwen_provider import QwenDashScopeProvider, QwenProvider
from aisapi.providers.spark_provider import SparkProvider
from aisapi.providers.zhipu_provider import ZhipuProvider

# Registration order doubles as default-provider priority
PROVIDER_CLASSES: Dict[str, Any] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "deepseek": DeepSeekProvider,
    "grok": GrokProvider,
    "doubao": DoubaoProvider,
    "moonshot": MoonshotProvider,
    "spark": SparkProvider,
    "zhipu": ZhipuProvider,
    "ernie": ErnieProvider,
    "qwen": QwenProvider,
}


def create_provider(name: str, **options: Any) -> Provider:
    """Build an adapter by vendor name. Qwen takes ``api_mode="dashscope"`` for the native API."""
    key = name.lower()
    if key == "qwen" and options.pop("api_mode", "openai") == "dashscope":
        return QwenDashScopeProvider(**options)
    options.pop("api_mode", None)
    try:
        cls = PROVIDER_CLASSES[key]
    except KeyError:
        raise ProviderNotFound(f"unknown provider type '{name}'") from None
    return cls(**options)


__all__ = [
    "PROVIDER_CLASSES",
    "AnthropicProvider",
    "Capability",
    "DeepSeekProvider",
    "DoubaoProvider",
    "ErnieProvider",
    "GeminiProvider",
    "GrokProvider",
    "MoonshotProvider",
    "OpenAIProvider",
    "Provider",
    "QwenDashScopeProvider",
    "QwenProvider",
    "SparkProvider",
    "ZhipuProvider",
    "create_provider",
]
