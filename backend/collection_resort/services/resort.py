# collection_resort/services/resort.py
"""
Resort Service
==============
Wires the four parts of a resort together for one shop:

    settings repository -> metrics aggregator -> ranking engine -> reorder executor

with the result cache in front of the aggregator and the ranking pass.
Sales metrics and catalog membership are fetched concurrently; neither
depends on the other.
"""

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from collection_resort.adapters.base import BaseCatalogAdapter, CatalogAPIError, CatalogTransportError
from collection_resort.adapters.registry import AdapterRegistry
from collection_resort.config import get_settings
from collection_resort.domain import (
    CollectionConfig,
    PreviewRow,
    RankedOrder,
    ReorderOutcome,
    ResortResult,
)
from collection_resort.services.metrics_aggregator import CatalogSnapshot, MetricsAggregator, SalesSnapshot
from collection_resort.services.ranking import rank
from collection_resort.services.reorder_executor import EMPTY_ORDER_MESSAGE, ReorderExecutor
from collection_resort.services.result_cache import (
    NAMESPACE_RANKING,
    NAMESPACE_SNAPSHOT,
    ResultCache,
    RotationCounter,
    compute_fingerprint,
    dataset_version,
)
from collection_resort.services.settings_repository import SettingsRepository, validate_config

logger = logging.getLogger(__name__)


class ResortService:
    """
    Preview and apply collection resorts for one shop.

    Collaborators default to the production ones; tests inject doubles.
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        platform: str = "shopify",
        adapter: Optional[BaseCatalogAdapter] = None,
        repository: Optional[SettingsRepository] = None,
        cache: Optional[ResultCache] = None,
        rotation: Optional[RotationCounter] = None,
        aggregator: Optional[MetricsAggregator] = None,
        executor: Optional[ReorderExecutor] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = get_settings()
        self.shop_domain = shop_domain
        self.merchant_context = {"shop_id": shop_domain, "access_token": access_token}
        self.adapter = adapter or AdapterRegistry.get_adapter(platform)
        self.repository = repository or SettingsRepository(shop_domain)
        self.cache = cache or ResultCache(shop_domain)
        self.rotation = rotation or RotationCounter(shop_domain)
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.aggregator = aggregator or MetricsAggregator(self.adapter, self.merchant_context, now=self._now)
        self.executor = executor or ReorderExecutor(self.adapter, self.merchant_context)

    # --- Inputs ---

    def snapshot_fingerprint(self, collection_id: str, config: CollectionConfig, now: datetime) -> str:
        s = config.settings
        return compute_fingerprint(
            collection_id,
            s.lookback_days,
            s.order_status,
            s.include_discounts,
            version=dataset_version(now, self.settings.RESULT_CACHE_BUCKET_SECONDS),
        )

    async def load_inputs(
        self,
        collection_id: str,
        config: CollectionConfig,
        now: Optional[datetime] = None,
    ) -> Tuple[SalesSnapshot, CatalogSnapshot]:
        """Sales metrics for the configured window plus the collection's products, cached."""
        s = config.settings
        fingerprint = self.snapshot_fingerprint(collection_id, config, now or self._now())
        cached = await self.cache.get(NAMESPACE_SNAPSHOT, fingerprint)
        if cached:
            return (
                SalesSnapshot.from_dict(cached.payload["sales"]),
                CatalogSnapshot.from_dict(cached.payload["catalog"]),
            )

        sales, catalog = await asyncio.gather(
            self.aggregator.aggregate(s.lookback_days, s.order_status, s.include_discounts),
            self.aggregator.fetch_all_products(
                max_pages=self.settings.CATALOG_MAX_PAGES,
                max_products=min(self.settings.CATALOG_MAX_PRODUCTS, self.settings.REORDER_MAX_MOVES),
                collection_id=collection_id,
            ),
        )
        await self.cache.put(
            NAMESPACE_SNAPSHOT,
            fingerprint,
            {"sales": sales.to_dict(), "catalog": catalog.to_dict()},
        )
        return sales, catalog

    async def compute_order(
        self,
        collection_id: str,
        config: CollectionConfig,
        rotation_index: int,
    ) -> Tuple[RankedOrder, SalesSnapshot, CatalogSnapshot]:
        # One clock reading keys both cache entries, and the ranking key
        # includes the snapshot key it was ranked from
        now = self._now()
        snapshot_fp = self.snapshot_fingerprint(collection_id, config, now)
        sales, catalog = await self.load_inputs(collection_id, config, now)
        fingerprint = compute_fingerprint(
            snapshot_fp,
            config,
            rotation_index,
            version=dataset_version(now, self.settings.RESULT_CACHE_BUCKET_SECONDS),
        )
        cached = await self.cache.get(NAMESPACE_RANKING, fingerprint)
        if cached:
            ranked = RankedOrder.from_dict(cached.payload)
            if set(ranked.product_ids) == {p.id for p in catalog.products}:
                return ranked, sales, catalog
            logger.info(f"Cached ranking for {collection_id} does not match the collection's products, re-ranking")

        ranked = rank(catalog.products, sales, config, now, rotation_index)
        await self.cache.put(NAMESPACE_RANKING, fingerprint, ranked.to_dict())
        return ranked, sales, catalog

    # --- Operations ---

    async def preview_order(
        self,
        collection_id: str,
        config_override: Optional[CollectionConfig] = None,
        top_n: Optional[int] = None,
        known_tags: Optional[List[str]] = None,
    ) -> List[PreviewRow]:
        """
        First `top_n` positions of the order the next resort would apply.

        The rotation index is peeked, not consumed, so previewing does not
        change which featured products the next resort pins.

        Raises:
            ConfigurationError: If `config_override` would be rejected on save.
        """
        if config_override is not None:
            validate_config(config_override, known_tags)
            config = config_override
        else:
            config = await self.repository.load(collection_id)
        rotation_index = await self.rotation.peek(collection_id)
        ranked, sales, catalog = await self.compute_order(collection_id, config, rotation_index)

        products = {p.id: p for p in catalog.products}
        include_discounts = config.settings.include_discounts
        rows = []
        for position, product_id in enumerate(ranked.product_ids[: top_n or self.settings.PREVIEW_TOP_N]):
            product = products[product_id]
            metric = sales.get(product_id)
            rows.append(PreviewRow(
                position=position,
                product_id=product_id,
                title=product.title,
                placement=ranked.placements[product_id],
                units_sold=metric.units_sold if metric else 0,
                revenue=metric.revenue(include_discounts) if metric else Decimal("0"),
                inventory=product.inventory_on_hand,
            ))
        return rows

    async def resort_collection(self, collection_id: str) -> ResortResult:
        """Rank the collection with its saved configuration and apply the order."""
        try:
            collection = await self.adapter.fetch_collection(self.merchant_context, collection_id)
        except (CatalogTransportError, CatalogAPIError) as e:
            logger.error(f"❌ Could not read collection {collection_id}: {e}")
            return ResortResult(outcome=ReorderOutcome.FAILED, message=f"Could not read collection: {e}")

        if collection is None:
            return ResortResult(outcome=ReorderOutcome.FAILED, message="Collection not found")
        if not collection.is_manual:
            return ResortResult(
                outcome=ReorderOutcome.FAILED,
                message=(
                    f"Collection '{collection.title}' uses {collection.sort_order} sorting; "
                    "set it to manual sorting before resorting"
                ),
            )

        config = await self.repository.load(collection_id)
        rotation_index = await self.rotation.advance(collection_id)
        ranked, _, catalog = await self.compute_order(collection_id, config, rotation_index)
        if not ranked:
            return ResortResult(outcome=ReorderOutcome.FAILED, message=EMPTY_ORDER_MESSAGE)
        if catalog.truncated:
            logger.warning(
                f"Collection {collection_id} listing stopped early ({catalog.stop_reason}); "
                f"reordering the first {len(ranked)} products"
            )

        job = await self.executor.apply(collection.id, ranked)
        logger.info(f"Resort of {collection_id} for {self.shop_domain}: {job.outcome.value}")
        return ResortResult(
            outcome=job.outcome,
            message=job.message,
            job_id=job.external_job_id,
            product_count=len(ranked),
        )
