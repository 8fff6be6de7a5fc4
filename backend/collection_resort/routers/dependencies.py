"""
Router Dependencies
====================

Shared FastAPI dependencies: the calling shop's identity and the services
scoped to it. Session handling happens upstream; the shop domain and access
token arrive as headers.
"""

from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException

from collection_resort.adapters.base import BaseCatalogAdapter
from collection_resort.adapters.registry import AdapterRegistry, UnsupportedPlatformError
from collection_resort.services.reports import ReportService
from collection_resort.services.resort import ResortService
from collection_resort.services.result_cache import ResultCache
from collection_resort.services.settings_repository import SettingsRepository


@dataclass(frozen=True)
class ShopContext:
    shop_domain: str
    access_token: str
    platform: str = "shopify"

    @property
    def merchant_context(self) -> dict:
        return {"shop_id": self.shop_domain, "access_token": self.access_token}


async def get_shop_context(
    x_shop_domain: str = Header(..., alias="X-Shop-Domain"),
    x_shopify_access_token: str = Header(..., alias="X-Shopify-Access-Token"),
) -> ShopContext:
    """
    Resolve the calling shop from request headers.

    Raises:
        HTTPException(401): If either header is blank.
    """
    shop_domain = x_shop_domain.strip().lower()
    if not shop_domain or not x_shopify_access_token.strip():
        raise HTTPException(status_code=401, detail="Missing shop credentials")
    return ShopContext(shop_domain=shop_domain, access_token=x_shopify_access_token.strip())


def get_catalog_adapter(shop: ShopContext = Depends(get_shop_context)) -> BaseCatalogAdapter:
    try:
        return AdapterRegistry.get_adapter(shop.platform)
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=400, detail=str(e))


def get_settings_repository(shop: ShopContext = Depends(get_shop_context)) -> SettingsRepository:
    return SettingsRepository(shop.shop_domain)


def get_result_cache(shop: ShopContext = Depends(get_shop_context)) -> ResultCache:
    return ResultCache(shop.shop_domain)


def get_resort_service(
    shop: ShopContext = Depends(get_shop_context),
    adapter: BaseCatalogAdapter = Depends(get_catalog_adapter),
    repository: SettingsRepository = Depends(get_settings_repository),
    cache: ResultCache = Depends(get_result_cache),
) -> ResortService:
    return ResortService(
        shop.shop_domain,
        shop.access_token,
        adapter=adapter,
        repository=repository,
        cache=cache,
    )


def get_report_service(
    shop: ShopContext = Depends(get_shop_context),
    adapter: BaseCatalogAdapter = Depends(get_catalog_adapter),
    cache: ResultCache = Depends(get_result_cache),
) -> ReportService:
    return ReportService(shop.shop_domain, shop.access_token, adapter=adapter, cache=cache)
