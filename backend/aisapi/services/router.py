from typing import Dict, Iterator, Optional, Set, Tuple

import structlog

from aisapi.core.errors import ProviderNotFound
from aisapi.providers.base import Provider, validate_capabilities

logger = structlog.get_logger()


class ProviderRegistry:
    """
    Named adapter instances. Names are case-insensitive and the last
    registration under a name wins. Without an explicit default the first
    registered adapter is used.
    """

    def __init__(self) -> None:
        self._providers: Dict[str, Provider] = {}
        self._default: Optional[str] = None

    def register(self, name: str, provider: Provider) -> None:
        validate_capabilities(provider)
        key = name.lower()
        self._providers[key] = provider
        if self._default is None:
            self._default = key
        logger.info(
            "provider_registered",
            name=key,
            provider=provider.name,
            capabilities=sorted(str(c) for c in provider.capabilities),
        )

    def resolve(self, name: Optional[str] = None) -> Provider:
        if name is None:
            if self._default is None:
                raise ProviderNotFound("no provider has been registered")
            return self._providers[self._default]
        try:
            return self._providers[name.lower()]
        except KeyError:
            raise ProviderNotFound(f"provider '{name}' is not registered") from None

    def set_default(self, name: str) -> bool:
        key = name.lower()
        if key not in self._providers:
            return False
        self._default = key
        return True

    @property
    def default_name(self) -> Optional[str]:
        return self._default

    def list_names(self) -> Set[str]:
        return set(self._providers)

    def items(self) -> Iterator[Tuple[str, Provider]]:
        return iter(list(self._providers.items()))

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._providers

    def __len__(self) -> int:
        return len(self._providers)
