# backend/tests/services/test_reports.py
"""
Tests for the report views: row building per kind, paging and caching.
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from collection_resort.adapters.base import CatalogOrder, OrderLineItem, Page
from collection_resort.services.metrics_aggregator import CatalogSnapshot, SalesSnapshot
from collection_resort.services.reports import (
    TREND_DOWN,
    TREND_FLAT,
    TREND_UP,
    ReportKind,
    ReportParams,
    ReportService,
    build_report_rows,
)
from collection_resort.services.result_cache import ResultCache
from factories import NOW, make_metric, make_product


def _sales(**units):
    return SalesSnapshot(metrics={pid: make_metric(pid, units=u, revenue=str(u * 10)) for pid, u in units.items()})


PRODUCTS = [
    make_product("A", days_old=200, title="Linen Shirt", tags=["summer"]),
    make_product("B", days_old=3, title="Wool Coat", vendor="Northwind"),
    make_product("C", days_old=45, inventory=0, title="Canvas Tote"),
    make_product("D", days_old=400, title="Straw Hat", tags=["summer"]),
]


def test_bestsellers_only_sold_products_by_units():
    rows = build_report_rows(ReportParams(ReportKind.BESTSELLERS), PRODUCTS, _sales(A=2, B=9), NOW)

    assert [r.product_id for r in rows] == ["B", "A"]
    assert rows[0].is_new
    assert not rows[1].is_new


def test_trending_compares_with_previous_window():
    rows = build_report_rows(
        ReportParams(ReportKind.TRENDING),
        PRODUCTS,
        _sales(A=5, B=3, C=4),
        NOW,
        previous=_sales(A=2, B=3, C=9),
    )

    trends = {r.product_id: r.trend for r in rows}
    assert trends == {"A": TREND_UP, "B": TREND_FLAT, "C": TREND_DOWN}
    assert [r.product_id for r in rows] == ["A", "C", "B"]


def test_aging_filters_by_age_sales_and_inventory():
    params = ReportParams(ReportKind.AGING, min_age_days=30, max_sales=3)

    rows = build_report_rows(params, PRODUCTS, _sales(A=10, C=1), NOW)
    assert [r.product_id for r in rows] == ["D", "C"]

    stocked = build_report_rows(
        ReportParams(ReportKind.AGING, min_age_days=30, max_sales=3, require_inventory=True),
        PRODUCTS,
        _sales(A=10, C=1),
        NOW,
    )
    assert [r.product_id for r in stocked] == ["D"]


def test_new_arrivals_within_window_newest_first():
    rows = build_report_rows(ReportParams(ReportKind.NEW_ARRIVALS, window_days=60), PRODUCTS, _sales(), NOW)
    assert [r.product_id for r in rows] == ["B", "C"]


def test_search_and_out_of_stock_filters():
    rows = build_report_rows(
        ReportParams(ReportKind.AGING, search="SUMMER", min_age_days=0, max_sales=100),
        PRODUCTS,
        _sales(),
        NOW,
    )
    assert {r.product_id for r in rows} == {"A", "D"}

    rows = build_report_rows(
        ReportParams(ReportKind.NEW_ARRIVALS, window_days=60, exclude_out_of_stock=True),
        PRODUCTS,
        _sales(),
        NOW,
    )
    assert [r.product_id for r in rows] == ["B"]

    rows = build_report_rows(ReportParams(ReportKind.BESTSELLERS, search="northwind"), PRODUCTS, _sales(B=1), NOW)
    assert [r.product_id for r in rows] == ["B"]


@pytest.fixture
def aggregator():
    aggregator = MagicMock()
    by_id = {p.id: p for p in PRODUCTS}
    aggregator.fetch_all_products = AsyncMock(return_value=CatalogSnapshot(products=list(PRODUCTS)))
    aggregator.lookup_products = AsyncMock(
        side_effect=lambda ids, max_products: CatalogSnapshot(products=[by_id[i] for i in ids if i in by_id])
    )
    aggregator.aggregate_window = AsyncMock(return_value=_sales(A=1, B=2, C=3, D=4))
    aggregator.aggregate_day = AsyncMock(return_value=_sales(A=1, B=2, C=3, D=4))
    return aggregator


@pytest.fixture
def report_service(aggregator, fake_redis):
    return ReportService(
        "demo.myshopify.com",
        "shpat_test",
        adapter=MagicMock(),
        cache=ResultCache("demo.myshopify.com", redis_client=fake_redis, now=lambda: NOW),
        aggregator=aggregator,
        now=lambda: NOW,
    )


@pytest.mark.asyncio
async def test_pagination(report_service):
    first = await report_service.compute_report(ReportParams(ReportKind.BESTSELLERS, page=1, page_size=3))
    second = await report_service.compute_report(ReportParams(ReportKind.BESTSELLERS, page=2, page_size=3))

    assert [r.product_id for r in first.rows] == ["D", "C", "B"]
    assert first.total == 4
    assert first.has_next and not first.has_previous
    assert [r.product_id for r in second.rows] == ["A"]
    assert second.has_previous and not second.has_next


@pytest.mark.asyncio
async def test_pages_share_cached_rows(report_service, aggregator):
    await report_service.compute_report(ReportParams(ReportKind.BESTSELLERS, page=1, page_size=2))
    await report_service.compute_report(ReportParams(ReportKind.BESTSELLERS, page=2, page_size=2))

    assert aggregator.lookup_products.await_count == 1
    assert aggregator.aggregate_day.await_count == 1
    aggregator.fetch_all_products.assert_not_awaited()


@pytest.mark.asyncio
async def test_trending_fetches_both_windows(report_service, aggregator):
    page = await report_service.compute_report(ReportParams(ReportKind.TRENDING))

    assert aggregator.aggregate_window.await_count == 2
    assert all(r.trend == TREND_FLAT for r in page.rows)


# 600 products older than a year plus 3 from yesterday: more than one report
# listing budget (REPORT_MAX_PRODUCTS) can hold
LARGE_CATALOG = (
    [make_product(f"old{i:03d}", days_old=400 + i) for i in range(600)]
    + [make_product(f"new{i}", days_old=1) for i in range(3)]
)


def _paging_adapter(products, orders=()):
    """Adapter double that pages the catalog by creation date like the platform."""
    by_created = sorted(products, key=lambda p: p.created_at)
    by_id = {p.id: p for p in products}

    async def fetch_products_page(merchant_context, first, after=None, collection_id=None, newest_first=False):
        listing = list(reversed(by_created)) if newest_first else by_created
        start = int(after or 0)
        items = listing[start:start + first]
        end = start + len(items)
        return Page(items=items, has_next_page=end < len(listing), end_cursor=str(end))

    async def fetch_products_by_ids(merchant_context, product_ids):
        return [by_id[pid] for pid in product_ids if pid in by_id]

    adapter = MagicMock()
    adapter.fetch_products_page = AsyncMock(side_effect=fetch_products_page)
    adapter.fetch_products_by_ids = AsyncMock(side_effect=fetch_products_by_ids)
    adapter.fetch_orders_page = AsyncMock(return_value=Page(items=list(orders)))
    adapter.fetch_shop_timezone = AsyncMock(return_value="UTC")
    return adapter


def _large_catalog_service(adapter, fake_redis):
    return ReportService(
        "demo.myshopify.com",
        "shpat_test",
        adapter=adapter,
        cache=ResultCache("demo.myshopify.com", redis_client=fake_redis, now=lambda: NOW),
        now=lambda: NOW,
    )


@pytest.mark.asyncio
async def test_new_arrivals_found_beyond_listing_budget(fake_redis):
    adapter = _paging_adapter(LARGE_CATALOG)

    page = await _large_catalog_service(adapter, fake_redis).compute_report(ReportParams(ReportKind.NEW_ARRIVALS))

    assert [r.product_id for r in page.rows] == ["new0", "new1", "new2"]
    assert adapter.fetch_products_page.await_args.kwargs["newest_first"] is True


@pytest.mark.asyncio
async def test_bestsellers_include_products_outside_listing_budget(fake_redis):
    # old005 is among the 100 oldest-listed products a 500-product listing never reaches
    order = CatalogOrder(
        id="gid://shopify/Order/1",
        created_at=NOW - timedelta(hours=1),
        line_items=[
            OrderLineItem(product_id="new0", quantity=3, gross_amount=Decimal("30.00")),
            OrderLineItem(product_id="old005", quantity=1, gross_amount=Decimal("12.00")),
            OrderLineItem(product_id="gid://shopify/Product/deleted", quantity=5, gross_amount=Decimal("50.00")),
        ],
    )
    adapter = _paging_adapter(LARGE_CATALOG, orders=[order])

    page = await _large_catalog_service(adapter, fake_redis).compute_report(ReportParams(ReportKind.BESTSELLERS))

    assert [r.product_id for r in page.rows] == ["new0", "old005"]
    assert not page.truncated
    adapter.fetch_products_page.assert_not_awaited()
