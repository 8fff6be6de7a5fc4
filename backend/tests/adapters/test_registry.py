import pytest
from collection_resort.adapters.registry import AdapterRegistry, UnsupportedPlatformError
from collection_resort.adapters.shopify import ShopifyCatalogAdapter
from collection_resort.adapters.base import BaseCatalogAdapter

def test_registry_resolution():
    """Verify AdapterRegistry resolves Shopify correctly."""
    adapter = AdapterRegistry.get_adapter("shopify")
    assert isinstance(adapter, ShopifyCatalogAdapter)
    assert isinstance(adapter, BaseCatalogAdapter)
    assert adapter.platform_name == "shopify"

def test_registry_resolution_case_insensitive():
    """Verify registry raises error for unknown casing (default behavior)."""
    with pytest.raises(UnsupportedPlatformError):
         AdapterRegistry.get_adapter("Shopify")

def test_registry_unknown_platform():
    """Verify unknown platform raises error."""
    with pytest.raises(UnsupportedPlatformError):
        AdapterRegistry.get_adapter("woocommerce")

def test_supported_platforms_lists_shopify():
    AdapterRegistry.get_adapter("shopify")
    assert "shopify" in AdapterRegistry.supported_platforms()
