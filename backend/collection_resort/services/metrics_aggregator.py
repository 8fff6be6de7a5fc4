# collection_resort/services/metrics_aggregator.py
"""
Metrics Aggregator
==================
Builds per-product sales metrics from the paginated order feed and lists
catalog membership, both under hard budgets.

Large shops can have far more orders than a ranking signal needs, so
pagination stops at whichever comes first: the record budget or the
wall-clock budget. A page that fails to load ends pagination too. In every
case the metrics accumulated so far are returned; partial sales data is an
acceptable ranking signal, a hung request is not.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, time as day_start_time
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from collection_resort.adapters.base import (
    BaseCatalogAdapter,
    CatalogAPIError,
    CatalogOrder,
    CatalogProduct,
    CatalogTransportError,
)
from collection_resort.config import get_settings
from collection_resort.domain import OrderStatusFilter, SalesMetric

logger = logging.getLogger(__name__)


STOP_MAX_RECORDS = "max_records"
STOP_MAX_TIME = "max_time"
STOP_MAX_PAGES = "max_pages"
STOP_PAGE_ERROR = "page_error"

ORDER_STATUS_QUERIES = {
    OrderStatusFilter.ALL: None,
    OrderStatusFilter.PAID_ONLY: "financial_status:paid",
    OrderStatusFilter.FULFILLED_ONLY: "fulfillment_status:fulfilled",
}


@dataclass
class SalesSnapshot:
    """Per-product sales metrics plus how the aggregation run ended."""
    metrics: Dict[str, SalesMetric] = field(default_factory=dict)
    orders_processed: int = 0
    pages_fetched: int = 0
    truncated: bool = False
    stop_reason: Optional[str] = None

    def get(self, product_id: str) -> Optional[SalesMetric]:
        return self.metrics.get(product_id)

    def __len__(self) -> int:
        return len(self.metrics)

    def __contains__(self, product_id: str) -> bool:
        return product_id in self.metrics

    def to_dict(self) -> Dict:
        return {
            "metrics": [m.to_dict() for m in self.metrics.values()],
            "orders_processed": self.orders_processed,
            "pages_fetched": self.pages_fetched,
            "truncated": self.truncated,
            "stop_reason": self.stop_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "SalesSnapshot":
        metrics = [SalesMetric.from_dict(m) for m in data.get("metrics", [])]
        return cls(
            metrics={m.product_id: m for m in metrics},
            orders_processed=data.get("orders_processed", 0),
            pages_fetched=data.get("pages_fetched", 0),
            truncated=data.get("truncated", False),
            stop_reason=data.get("stop_reason"),
        )


@dataclass
class CatalogSnapshot:
    """Catalog (or collection) membership in listing order."""
    products: List[CatalogProduct] = field(default_factory=list)
    pages_fetched: int = 0
    truncated: bool = False
    stop_reason: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "products": [p.to_dict() for p in self.products],
            "pages_fetched": self.pages_fetched,
            "truncated": self.truncated,
            "stop_reason": self.stop_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "CatalogSnapshot":
        return cls(
            products=[CatalogProduct.from_dict(p) for p in data.get("products", [])],
            pages_fetched=data.get("pages_fetched", 0),
            truncated=data.get("truncated", False),
            stop_reason=data.get("stop_reason"),
        )


def _search_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_orders_query(start: datetime, end: Optional[datetime], order_status: OrderStatusFilter) -> str:
    """Server-side order search: creation window plus the status filter."""
    parts = [f"created_at:>='{_search_timestamp(start)}'"]
    if end is not None:
        parts.append(f"created_at:<'{_search_timestamp(end)}'")
    status_clause = ORDER_STATUS_QUERIES.get(order_status)
    if status_clause:
        parts.append(status_clause)
    return " AND ".join(parts)


def accumulate_order(metrics: Dict[str, SalesMetric], order: CatalogOrder, include_discounts: bool) -> None:
    """
    Fold one order's line items into the running per-product metrics.

    Any line item that still references a product counts, whether or not that
    product is in the collection being ranked. Ranking only reads metrics for
    the products it is given, and the sales-driven reports resolve these ids
    to products afterwards.
    """
    for item in order.line_items:
        if not item.product_id:
            continue
        metric = metrics.get(item.product_id)
        if metric is None:
            metric = metrics[item.product_id] = SalesMetric(product_id=item.product_id)

        metric.units_sold += max(0, item.quantity)
        metric.gross_revenue += item.gross_amount
        if include_discounts and item.discounted_amount is not None:
            metric.discounted_revenue += item.discounted_amount
        else:
            metric.discounted_revenue += item.gross_amount

        if metric.last_sale_at is None or order.created_at > metric.last_sale_at:
            metric.last_sale_at = order.created_at


class MetricsAggregator:
    """
    Time-boxed sales aggregation and catalog listing for one merchant.

    Args:
        adapter: Catalog adapter for the merchant's platform.
        merchant_context: shop_id / access_token passed to every adapter call.
        max_orders: Record budget for order pagination.
        max_time_ms: Wall-clock budget shared by each pagination run.
        clock: Monotonic seconds source, injectable for tests.
        now: Current UTC time source, injectable for tests.
    """

    def __init__(
        self,
        adapter: BaseCatalogAdapter,
        merchant_context: Dict,
        max_orders: Optional[int] = None,
        max_time_ms: Optional[int] = None,
        page_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Optional[Callable[[], datetime]] = None,
    ):
        settings = get_settings()
        self.adapter = adapter
        self.merchant_context = merchant_context
        self.max_orders = max_orders if max_orders is not None else settings.AGGREGATOR_MAX_ORDERS
        self.max_time_ms = max_time_ms if max_time_ms is not None else settings.AGGREGATOR_MAX_TIME_MS
        self.page_size = page_size or settings.AGGREGATOR_PAGE_SIZE
        self.catalog_page_size = settings.CATALOG_PAGE_SIZE
        self._clock = clock
        self._now = now or (lambda: datetime.now(timezone.utc))

    def _elapsed_ms(self, started: float) -> float:
        return (self._clock() - started) * 1000

    async def aggregate(
        self,
        lookback_days: int,
        order_status: OrderStatusFilter = OrderStatusFilter.ALL,
        include_discounts: bool = True,
    ) -> SalesSnapshot:
        """Sales metrics for orders created within the last `lookback_days`."""
        start = self._now() - timedelta(days=lookback_days)
        return await self.aggregate_window(start, None, order_status, include_discounts)

    async def aggregate_day(
        self,
        days_ago: int = 0,
        order_status: OrderStatusFilter = OrderStatusFilter.PAID_ONLY,
        include_discounts: bool = True,
    ) -> SalesSnapshot:
        """
        Sales metrics for exactly one calendar day in the shop's timezone.

        days_ago=0 is "today", days_ago=1 is "yesterday".
        """
        tz = await self._shop_timezone()
        local_today = self._now().astimezone(tz).date()
        day = local_today - timedelta(days=days_ago)
        start = datetime.combine(day, day_start_time.min, tzinfo=tz)
        end = datetime.combine(day + timedelta(days=1), day_start_time.min, tzinfo=tz)
        return await self.aggregate_window(start, end, order_status, include_discounts)

    async def _shop_timezone(self):
        try:
            tz_name = await self.adapter.fetch_shop_timezone(self.merchant_context)
            return ZoneInfo(tz_name)
        except (CatalogTransportError, CatalogAPIError) as e:
            logger.warning(f"Could not read shop timezone, using UTC: {e}")
        except ZoneInfoNotFoundError:
            logger.warning("Shop reported an unknown timezone, using UTC")
        return timezone.utc

    async def aggregate_window(
        self,
        start: datetime,
        end: Optional[datetime],
        order_status: OrderStatusFilter = OrderStatusFilter.ALL,
        include_discounts: bool = True,
    ) -> SalesSnapshot:
        """Paginate orders in [start, end) newest first, within both budgets."""
        snapshot = SalesSnapshot()
        search_query = build_orders_query(start, end, order_status)
        cursor = None
        started = self._clock()

        while True:
            if snapshot.orders_processed >= self.max_orders:
                snapshot.truncated, snapshot.stop_reason = True, STOP_MAX_RECORDS
                break
            if self._elapsed_ms(started) >= self.max_time_ms:
                snapshot.truncated, snapshot.stop_reason = True, STOP_MAX_TIME
                logger.info(f"⏰ Sales aggregation time budget reached after {snapshot.orders_processed} orders")
                break

            remaining = self.max_orders - snapshot.orders_processed
            try:
                page = await self.adapter.fetch_orders_page(
                    self.merchant_context,
                    search_query,
                    first=min(self.page_size, remaining),
                    after=cursor,
                    include_discounts=include_discounts,
                )
            except (CatalogTransportError, CatalogAPIError) as e:
                logger.warning(
                    f"Order page fetch failed after {snapshot.orders_processed} orders, "
                    f"returning partial sales data: {e}"
                )
                snapshot.truncated, snapshot.stop_reason = True, STOP_PAGE_ERROR
                break

            snapshot.pages_fetched += 1
            orders = page.items
            if len(orders) > remaining:
                orders = orders[:remaining]
                snapshot.truncated, snapshot.stop_reason = True, STOP_MAX_RECORDS

            for order in orders:
                accumulate_order(snapshot.metrics, order, include_discounts)
            snapshot.orders_processed += len(orders)

            if snapshot.truncated or not page.has_next_page or not page.end_cursor:
                break
            cursor = page.end_cursor

        logger.info(
            f"✅ Aggregated {snapshot.orders_processed} orders into {len(snapshot)} products "
            f"({snapshot.pages_fetched} pages, stop={snapshot.stop_reason or 'complete'})"
        )
        return snapshot

    async def fetch_all_products(
        self,
        max_pages: int,
        max_products: int,
        collection_id: Optional[str] = None,
        newest_first: bool = False,
    ) -> CatalogSnapshot:
        """
        List the catalog (or one collection, in its current order) under the
        page, product and time budgets. The whole catalog comes oldest first
        unless `newest_first` is set.
        """
        snapshot = CatalogSnapshot()
        cursor = None
        started = self._clock()

        while True:
            if snapshot.pages_fetched >= max_pages:
                snapshot.truncated, snapshot.stop_reason = True, STOP_MAX_PAGES
                break
            if len(snapshot.products) >= max_products:
                snapshot.truncated, snapshot.stop_reason = True, STOP_MAX_RECORDS
                break
            if self._elapsed_ms(started) >= self.max_time_ms:
                snapshot.truncated, snapshot.stop_reason = True, STOP_MAX_TIME
                break

            remaining = max_products - len(snapshot.products)
            try:
                page = await self.adapter.fetch_products_page(
                    self.merchant_context,
                    first=min(self.catalog_page_size, remaining),
                    after=cursor,
                    collection_id=collection_id,
                    newest_first=newest_first,
                )
            except (CatalogTransportError, CatalogAPIError) as e:
                logger.warning(
                    f"Product page fetch failed after {len(snapshot.products)} products, "
                    f"returning partial catalog: {e}"
                )
                snapshot.truncated, snapshot.stop_reason = True, STOP_PAGE_ERROR
                break

            snapshot.pages_fetched += 1
            products = page.items
            if len(products) > remaining:
                products = products[:remaining]
                snapshot.truncated, snapshot.stop_reason = True, STOP_MAX_RECORDS
            snapshot.products.extend(products)

            if snapshot.truncated or not page.has_next_page or not page.end_cursor:
                break
            cursor = page.end_cursor

        logger.info(
            f"📦 Fetched {len(snapshot.products)} products "
            f"({snapshot.pages_fetched} pages, stop={snapshot.stop_reason or 'complete'})"
        )
        return snapshot

    async def lookup_products(self, product_ids: List[str], max_products: int) -> CatalogSnapshot:
        """
        Resolve specific products (e.g. the best sellers of a window) in the
        order given, under the product and time budgets.

        Ids beyond `max_products` are not looked up. Deleted products simply
        drop out of the result.
        """
        snapshot = CatalogSnapshot()
        wanted = list(dict.fromkeys(product_ids))
        if len(wanted) > max_products:
            wanted = wanted[:max_products]
            snapshot.truncated, snapshot.stop_reason = True, STOP_MAX_RECORDS
        started = self._clock()

        for start in range(0, len(wanted), self.catalog_page_size):
            if self._elapsed_ms(started) >= self.max_time_ms:
                snapshot.truncated, snapshot.stop_reason = True, STOP_MAX_TIME
                break
            chunk = wanted[start:start + self.catalog_page_size]
            try:
                products = await self.adapter.fetch_products_by_ids(self.merchant_context, chunk)
            except (CatalogTransportError, CatalogAPIError) as e:
                logger.warning(
                    f"Product lookup failed after {len(snapshot.products)} products, "
                    f"returning partial catalog: {e}"
                )
                snapshot.truncated, snapshot.stop_reason = True, STOP_PAGE_ERROR
                break
            snapshot.pages_fetched += 1
            snapshot.products.extend(products)

        logger.info(
            f"📦 Looked up {len(snapshot.products)} of {len(wanted)} products "
            f"({snapshot.pages_fetched} requests, stop={snapshot.stop_reason or 'complete'})"
        )
        return snapshot
