# collection_resort/services/reports.py
"""
Merchandising Reports
=====================
Store-wide product views built from the same sales aggregation the resort
uses:

- bestsellers: units sold on one shop-local day (today / yesterday), paid orders
- trending: units over the last N days vs the N days before, with a direction
- aging: old products that barely sell
- new_arrivals: products created within the last N days, newest first

Each report is computed in full, cached per filter fingerprint, and paged
from the cached rows.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional

from collection_resort.adapters.base import BaseCatalogAdapter, CatalogProduct, parse_timestamp
from collection_resort.adapters.registry import AdapterRegistry
from collection_resort.config import get_settings
from collection_resort.domain import OrderStatusFilter, SortCriterion, SortDirection, ensure_utc
from collection_resort.services.metrics_aggregator import MetricsAggregator, SalesSnapshot
from collection_resort.services.ranking import sort_by_criterion
from collection_resort.services.result_cache import (
    ResultCache,
    compute_fingerprint,
    dataset_version,
    report_namespace,
)

logger = logging.getLogger(__name__)


class ReportKind(str, Enum):
    BESTSELLERS = "bestsellers"
    TRENDING = "trending"
    AGING = "aging"
    NEW_ARRIVALS = "new_arrivals"


TREND_UP = "up"
TREND_DOWN = "down"
TREND_FLAT = "flat"

DEFAULT_WINDOW_DAYS = {
    ReportKind.BESTSELLERS: 1,
    ReportKind.TRENDING: 7,
    ReportKind.AGING: 60,
    ReportKind.NEW_ARRIVALS: 7,
}

# Bestseller rows are flagged "new" inside this age
BESTSELLER_NEW_DAYS = 10

# Reports whose rows are the products that sold in the window
SALES_DRIVEN_KINDS = (ReportKind.BESTSELLERS, ReportKind.TRENDING)


@dataclass(frozen=True)
class ReportParams:
    kind: ReportKind
    window_days: Optional[int] = None
    days_ago: int = 0                     # bestsellers: 0 = today, 1 = yesterday
    search: Optional[str] = None
    exclude_out_of_stock: bool = False
    min_age_days: int = 30
    max_sales: int = 10
    require_inventory: bool = False
    page: int = 1
    page_size: int = 25

    @property
    def effective_window_days(self) -> int:
        return self.window_days or DEFAULT_WINDOW_DAYS[self.kind]

    def cache_scope(self) -> "ReportParams":
        """Same filters, paging stripped: every page shares one cached row set."""
        return replace(self, page=1, page_size=0)


@dataclass
class ReportRow:
    product_id: str
    title: str
    vendor: Optional[str]
    units_sold: int
    revenue: Decimal
    inventory: int
    created_at: Optional[datetime]
    age_days: Optional[int] = None
    is_new: bool = False
    trend: Optional[str] = None
    previous_units: Optional[int] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["revenue"] = str(self.revenue)
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "ReportRow":
        return cls(**{
            **data,
            "revenue": Decimal(data.get("revenue") or "0"),
            "created_at": parse_timestamp(data.get("created_at")),
        })


@dataclass
class ReportPage:
    kind: ReportKind
    rows: List[ReportRow] = field(default_factory=list)
    page: int = 1
    page_size: int = 25
    total: int = 0
    truncated: bool = False

    @property
    def has_next(self) -> bool:
        return self.page * self.page_size < self.total

    @property
    def has_previous(self) -> bool:
        return self.page > 1


def matches_search(product: CatalogProduct, search: Optional[str]) -> bool:
    """Case-insensitive substring match on title, vendor or any tag."""
    if not search:
        return True
    needle = search.strip().casefold()
    haystack = [product.title, product.vendor or "", *product.tags]
    return any(needle in value.casefold() for value in haystack)


def trend_direction(current: int, previous: int) -> str:
    if current > previous:
        return TREND_UP
    if current < previous:
        return TREND_DOWN
    return TREND_FLAT


def top_seller_ids(sales: SalesSnapshot) -> List[str]:
    """Ids with at least one unit sold, most units first, ties by id."""
    sold = [m for m in sales.metrics.values() if m.units_sold > 0]
    sold.sort(key=lambda m: (-m.units_sold, m.product_id))
    return [m.product_id for m in sold]


def _age_days(product: CatalogProduct, now: datetime) -> Optional[int]:
    if product.created_at is None:
        return None
    return (now - ensure_utc(product.created_at)).days


def _row(product: CatalogProduct, sales: SalesSnapshot, now: datetime) -> ReportRow:
    metric = sales.get(product.id)
    age = _age_days(product, now)
    return ReportRow(
        product_id=product.id,
        title=product.title,
        vendor=product.vendor,
        units_sold=metric.units_sold if metric else 0,
        revenue=metric.revenue(True) if metric else Decimal("0"),
        inventory=product.inventory_on_hand,
        created_at=product.created_at,
        age_days=age,
        is_new=age is not None and age < BESTSELLER_NEW_DAYS,
    )


def build_report_rows(
    params: ReportParams,
    products: List[CatalogProduct],
    sales: SalesSnapshot,
    now: datetime,
    previous: Optional[SalesSnapshot] = None,
) -> List[ReportRow]:
    """Filter and order the full row set for one report. No I/O."""
    candidates = [
        p for p in products
        if matches_search(p, params.search)
        and not (params.exclude_out_of_stock and p.inventory_on_hand <= 0)
    ]

    if params.kind in (ReportKind.BESTSELLERS, ReportKind.TRENDING):
        sold = [p for p in candidates if sales.get(p.id) and sales.get(p.id).units_sold > 0]
        ordered = sort_by_criterion(sold, sales, SortCriterion.UNITS_SOLD, SortDirection.DESCENDING)
        rows = [_row(p, sales, now) for p in ordered]
        if params.kind is ReportKind.TRENDING:
            for row in rows:
                prior = previous.get(row.product_id) if previous else None
                row.previous_units = prior.units_sold if prior else 0
                row.trend = trend_direction(row.units_sold, row.previous_units)
        return rows

    if params.kind is ReportKind.AGING:
        aged = []
        for p in candidates:
            age = _age_days(p, now)
            metric = sales.get(p.id)
            units = metric.units_sold if metric else 0
            if age is None or age < params.min_age_days or units > params.max_sales:
                continue
            if params.require_inventory and p.inventory_on_hand <= 0:
                continue
            aged.append(p)
        # Oldest first
        ordered = sort_by_criterion(aged, sales, SortCriterion.CREATION_DATE, SortDirection.ASCENDING)
        return [_row(p, sales, now) for p in ordered]

    cutoff = now - timedelta(days=params.effective_window_days)
    recent = [p for p in candidates if p.created_at is not None and ensure_utc(p.created_at) >= cutoff]
    ordered = sort_by_criterion(recent, sales, SortCriterion.CREATION_DATE, SortDirection.DESCENDING)
    return [_row(p, sales, now) for p in ordered]


class ReportService:
    """Computes and caches report views for one shop."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        platform: str = "shopify",
        adapter: Optional[BaseCatalogAdapter] = None,
        cache: Optional[ResultCache] = None,
        aggregator: Optional[MetricsAggregator] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = get_settings()
        self.merchant_context = {"shop_id": shop_domain, "access_token": access_token}
        self.adapter = adapter or AdapterRegistry.get_adapter(platform)
        self.cache = cache or ResultCache(shop_domain)
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.aggregator = aggregator or MetricsAggregator(self.adapter, self.merchant_context, now=self._now)

    async def _sales_for(self, params: ReportParams, now: datetime):
        window = timedelta(days=params.effective_window_days)
        if params.kind is ReportKind.BESTSELLERS:
            return await self.aggregator.aggregate_day(params.days_ago), None
        if params.kind is ReportKind.TRENDING:
            current, previous = await asyncio.gather(
                self.aggregator.aggregate_window(now - window, None, OrderStatusFilter.ALL),
                self.aggregator.aggregate_window(now - 2 * window, now - window, OrderStatusFilter.ALL),
            )
            return current, previous
        if params.kind is ReportKind.AGING:
            return await self.aggregator.aggregate_window(now - window, None, OrderStatusFilter.ALL), None
        # New arrivals only need sales for display
        return await self.aggregator.aggregate_window(now - window, None, OrderStatusFilter.ALL), None

    async def compute_report(self, params: ReportParams) -> ReportPage:
        now = self._now()
        namespace = report_namespace(params.kind.value)
        fingerprint = compute_fingerprint(
            params.cache_scope(),
            version=dataset_version(now, self.settings.RESULT_CACHE_BUCKET_SECONDS),
        )

        cached = await self.cache.get(namespace, fingerprint)
        if cached:
            rows = [ReportRow.from_dict(r) for r in cached.payload["rows"]]
            truncated = cached.payload.get("truncated", False)
        else:
            if params.kind in SALES_DRIVEN_KINDS:
                # Rows come from what sold, so look those products up directly
                sales, previous = await self._sales_for(params, now)
                catalog = await self.aggregator.lookup_products(
                    top_seller_ids(sales),
                    max_products=self.settings.REPORT_MAX_PRODUCTS,
                )
            else:
                catalog, (sales, previous) = await asyncio.gather(
                    self.aggregator.fetch_all_products(
                        max_pages=self.settings.REPORT_MAX_PAGES,
                        max_products=self.settings.REPORT_MAX_PRODUCTS,
                        newest_first=params.kind is ReportKind.NEW_ARRIVALS,
                    ),
                    self._sales_for(params, now),
                )
            rows = build_report_rows(params, catalog.products, sales, now, previous)
            truncated = catalog.truncated or sales.truncated or bool(previous and previous.truncated)
            await self.cache.put(
                namespace,
                fingerprint,
                {"rows": [r.to_dict() for r in rows], "truncated": truncated},
            )
            logger.info(f"📊 {params.kind.value} report: {len(rows)} rows (truncated={truncated})")

        page = max(1, params.page)
        page_size = max(1, params.page_size)
        start = (page - 1) * page_size
        return ReportPage(
            kind=params.kind,
            rows=rows[start:start + page_size],
            page=page,
            page_size=page_size,
            total=len(rows),
            truncated=truncated,
        )
