"""
Collections API Router.

Preview, apply and configure the resort of a single manual collection.
"""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from collection_resort.adapters.base import BaseCatalogAdapter, CatalogAPIError, CatalogTransportError
from collection_resort.domain import (
    BehaviorRules,
    CollectionConfig,
    CollectionSettings,
    FeaturedEntry,
    FeaturedMode,
    OrderStatusFilter,
    OutOfStockPriority,
    SortCriterion,
    SortDirection,
    TagOutOfStockPriority,
    TagPlacementRule,
    TagZone,
)
from collection_resort.routers.dependencies import (
    ShopContext,
    get_catalog_adapter,
    get_resort_service,
    get_settings_repository,
    get_shop_context,
)
from collection_resort.services.resort import ResortService
from collection_resort.services.settings_repository import ConfigurationError, SettingsRepository

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(get_shop_context)])


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class SortSettingsModel(BaseModel):
    primary_criterion: SortCriterion = SortCriterion.REVENUE
    direction: SortDirection = SortDirection.DESCENDING
    lookback_days: int = 180
    order_status: OrderStatusFilter = OrderStatusFilter.ALL
    include_discounts: bool = True


class BehaviorRulesModel(BaseModel):
    push_new_up: bool = True
    new_threshold_days: int = 7
    push_out_of_stock_down: bool = True
    new_vs_out_of_stock: OutOfStockPriority = OutOfStockPriority.PUSH_DOWN
    featured_vs_out_of_stock: OutOfStockPriority = OutOfStockPriority.PUSH_DOWN
    tags_vs_out_of_stock: TagOutOfStockPriority = TagOutOfStockPriority.KEEP_POSITION


class TagRuleModel(BaseModel):
    tag_name: str
    zone: TagZone


class FeaturedEntryModel(BaseModel):
    product_id: str
    position: int
    mode: FeaturedMode = FeaturedMode.MANUAL
    start_date: Optional[datetime] = None
    duration_days: Optional[int] = None


class CollectionConfigModel(BaseModel):
    """Full collection configuration as sent and returned by the API."""
    settings: SortSettingsModel = Field(default_factory=SortSettingsModel)
    behavior: BehaviorRulesModel = Field(default_factory=BehaviorRulesModel)
    tag_rules: List[TagRuleModel] = Field(default_factory=list)
    featured: List[FeaturedEntryModel] = Field(default_factory=list)
    limit_featured: int = 0

    def to_domain(self) -> CollectionConfig:
        return CollectionConfig(
            settings=CollectionSettings(**self.settings.model_dump()),
            behavior=BehaviorRules(**self.behavior.model_dump()),
            tag_rules=tuple(TagPlacementRule(**r.model_dump()) for r in self.tag_rules),
            featured=tuple(FeaturedEntry(**f.model_dump()) for f in self.featured),
            limit_featured=self.limit_featured,
        )

    @classmethod
    def from_domain(cls, config: CollectionConfig) -> "CollectionConfigModel":
        return cls(
            settings=SortSettingsModel(**asdict(config.settings)),
            behavior=BehaviorRulesModel(**asdict(config.behavior)),
            tag_rules=[TagRuleModel(**asdict(r)) for r in config.tag_rules],
            featured=[FeaturedEntryModel(**asdict(f)) for f in config.featured],
            limit_featured=config.limit_featured,
        )


class PreviewRowResponse(BaseModel):
    position: int
    product_id: str
    title: str
    placement: str
    units_sold: int
    revenue: float
    inventory: int


class PreviewResponse(BaseModel):
    collection_id: str
    rows: List[PreviewRowResponse]


class ResortResponse(BaseModel):
    outcome: str
    message: str
    job_id: Optional[str] = None
    product_count: int = 0


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

async def _catalog_tags(adapter: BaseCatalogAdapter, shop: ShopContext) -> Optional[List[str]]:
    """Catalog tags for tag-rule validation, or None to skip the existence check."""
    try:
        return await adapter.fetch_product_tags(shop.merchant_context)
    except (CatalogTransportError, CatalogAPIError) as e:
        logger.warning(f"Could not load catalog tags for {shop.shop_domain}, skipping tag check: {e}")
        return None


async def _preview(
    service: ResortService,
    collection_id: str,
    config: Optional[CollectionConfig],
    top_n: int,
    known_tags: Optional[List[str]] = None,
):
    try:
        rows = await service.preview_order(collection_id, config_override=config, top_n=top_n, known_tags=known_tags)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=e.errors)
    return PreviewResponse(
        collection_id=collection_id,
        rows=[
            PreviewRowResponse(
                position=r.position,
                product_id=r.product_id,
                title=r.title,
                placement=r.placement.value,
                units_sold=r.units_sold,
                revenue=float(r.revenue),
                inventory=r.inventory,
            )
            for r in rows
        ],
    )


@router.get("/{collection_id}/preview", response_model=PreviewResponse)
async def preview_saved_order(
    collection_id: str,
    top_n: int = Query(20, ge=1, le=250),
    service: ResortService = Depends(get_resort_service),
):
    """Top of the order the next resort would apply with the saved configuration."""
    return await _preview(service, collection_id, None, top_n)


@router.post("/{collection_id}/preview", response_model=PreviewResponse)
async def preview_unsaved_order(
    collection_id: str,
    config: CollectionConfigModel = Body(...),
    top_n: int = Query(20, ge=1, le=250),
    shop: ShopContext = Depends(get_shop_context),
    adapter: BaseCatalogAdapter = Depends(get_catalog_adapter),
    service: ResortService = Depends(get_resort_service),
):
    """
    Preview with an unsaved configuration (e.g. while the merchant edits rules).

    The configuration is checked exactly as a save would check it.
    """
    known_tags = await _catalog_tags(adapter, shop)
    return await _preview(service, collection_id, config.to_domain(), top_n, known_tags)


@router.post("/{collection_id}/resort", response_model=ResortResponse)
async def resort_collection(
    collection_id: str,
    service: ResortService = Depends(get_resort_service),
):
    """
    Rank the collection and push the order to the platform.

    A failed resort is still a 200 with outcome="failed"; the message says why.
    """
    result = await service.resort_collection(collection_id)
    return ResortResponse(
        outcome=result.outcome.value,
        message=result.message,
        job_id=result.job_id,
        product_count=result.product_count,
    )


@router.get("/{collection_id}/settings", response_model=CollectionConfigModel)
async def get_collection_settings(
    collection_id: str,
    repository: SettingsRepository = Depends(get_settings_repository),
):
    config = await repository.load(collection_id)
    return CollectionConfigModel.from_domain(config)


@router.put("/{collection_id}/settings", response_model=CollectionConfigModel)
async def save_collection_settings(
    collection_id: str,
    config: CollectionConfigModel = Body(...),
    shop: ShopContext = Depends(get_shop_context),
    adapter: BaseCatalogAdapter = Depends(get_catalog_adapter),
    repository: SettingsRepository = Depends(get_settings_repository),
):
    """
    Validate and save the configuration.

    Tag rules are checked against the catalog's tags; if the tag list cannot
    be read the existence check is skipped rather than blocking the save.
    Cached rankings need no clearing: the saved configuration is part of
    their fingerprint.
    """
    known_tags = await _catalog_tags(adapter, shop)
    try:
        saved = await repository.save(collection_id, config.to_domain(), known_tags=known_tags)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=e.errors)

    return CollectionConfigModel.from_domain(saved)
