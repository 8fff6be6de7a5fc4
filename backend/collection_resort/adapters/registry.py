"""
AdapterRegistry — Resolves the catalog adapter for a given platform.

The resort service does not say "call Shopify". It asks for the adapter of
the merchant's platform and calls the BaseCatalogAdapter methods on whatever
comes back. New platforms are registered here.
"""

from typing import Dict, Type, List
from collection_resort.adapters.base import BaseCatalogAdapter


class UnsupportedPlatformError(Exception):
    """Raised when a merchant's platform is not in the registry."""
    pass


class AdapterRegistry:
    _REGISTRY: Dict[str, Type[BaseCatalogAdapter]] = {}

    @classmethod
    def register(cls, name: str, adapter_cls: Type[BaseCatalogAdapter]):
        """Register a new platform adapter."""
        cls._REGISTRY[name] = adapter_cls

    @classmethod
    def get_adapter(cls, platform_name: str) -> BaseCatalogAdapter:
        """
        Return an instance of the correct adapter for the given platform.

        Raises:
            UnsupportedPlatformError if the platform is not in the registry.
        """
        # Lazy import keeps the registry importable without httpx configured
        if platform_name == "shopify" and "shopify" not in cls._REGISTRY:
            from collection_resort.adapters.shopify import ShopifyCatalogAdapter
            cls.register("shopify", ShopifyCatalogAdapter)

        adapter_class = cls._REGISTRY.get(platform_name)
        if adapter_class is None:
            raise UnsupportedPlatformError(
                f"Platform '{platform_name}' is not supported. "
                f"Supported platforms: {cls.supported_platforms()}"
            )
        return adapter_class()

    @classmethod
    def supported_platforms(cls) -> List[str]:
        """Return the list of currently supported platform names."""
        return list(cls._REGISTRY.keys()) or ["shopify"]
