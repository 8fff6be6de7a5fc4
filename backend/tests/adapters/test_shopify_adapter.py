# backend/tests/adapters/test_shopify_adapter.py
"""
Tests for the Shopify adapter against canned Admin GraphQL responses
(httpx.MockTransport, no network).
"""

import json
from decimal import Decimal

import httpx
import pytest

from collection_resort.adapters.base import CatalogAPIError, CatalogTransportError
from collection_resort.adapters.shopify import ShopifyCatalogAdapter, to_collection_gid

CONTEXT = {"shop_id": "demo.myshopify.com", "access_token": "shpat_test"}


def _adapter(handler):
    return ShopifyCatalogAdapter(api_version="2025-01", transport=httpx.MockTransport(handler))


def _json(payload, status=200):
    return httpx.Response(status, json=payload)


def test_collection_gid_conversion():
    assert to_collection_gid("42") == "gid://shopify/Collection/42"
    assert to_collection_gid("gid://shopify/Collection/42") == "gid://shopify/Collection/42"


@pytest.mark.asyncio
async def test_request_shape_and_orders_parsing():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["token"] = request.headers["X-Shopify-Access-Token"]
        seen["body"] = json.loads(request.content)
        return _json({"data": {"orders": {
            "edges": [{"node": {
                "id": "gid://shopify/Order/1",
                "createdAt": "2025-06-14T10:00:00Z",
                "lineItems": {"edges": [
                    {"node": {
                        "quantity": 2,
                        "product": {"id": "gid://shopify/Product/7"},
                        "originalTotalSet": {"shopMoney": {"amount": "40.00"}},
                        "discountedTotalSet": {"shopMoney": {"amount": "32.00"}},
                    }},
                    {"node": {
                        "quantity": 1,
                        "product": None,
                        "originalTotalSet": {"shopMoney": {"amount": "5.00"}},
                    }},
                ]},
            }}],
            "pageInfo": {"hasNextPage": True, "endCursor": "cur1"},
        }}})

    page = await _adapter(handler).fetch_orders_page(CONTEXT, "created_at:>='2025-06-01'", first=50)

    assert seen["url"] == "https://demo.myshopify.com/admin/api/2025-01/graphql.json"
    assert seen["token"] == "shpat_test"
    assert seen["body"]["variables"]["first"] == 50
    assert seen["body"]["variables"]["withDiscounts"] is True
    assert page.has_next_page and page.end_cursor == "cur1"
    first, custom = page.items[0].line_items
    assert first.product_id == "gid://shopify/Product/7"
    assert first.gross_amount == Decimal("40.00")
    assert first.discounted_amount == Decimal("32.00")
    assert custom.product_id is None
    assert custom.discounted_amount is None


@pytest.mark.asyncio
async def test_collection_products_parsing():
    def handler(request):
        body = json.loads(request.content)
        assert body["variables"]["id"] == "gid://shopify/Collection/42"
        return _json({"data": {"collection": {"products": {
            "edges": [{"node": {
                "id": "gid://shopify/Product/1",
                "title": "Linen Shirt",
                "createdAt": "2025-01-01T00:00:00Z",
                "publishedAt": None,
                "vendor": "Acme",
                "status": "ACTIVE",
                "tags": ["summer", "sale"],
                "totalInventory": -2,
                "priceRangeV2": {"minVariantPrice": {"amount": "19.90"}},
            }}],
            "pageInfo": {"hasNextPage": False, "endCursor": None},
        }}}})

    page = await _adapter(handler).fetch_products_page(CONTEXT, first=250, collection_id="42")

    product = page.items[0]
    assert product.tags == frozenset({"summer", "sale"})
    assert product.unit_price == Decimal("19.90")
    assert product.inventory_on_hand == -2
    assert product.available_inventory == 0
    assert product.published_at is None
    assert not page.has_next_page


@pytest.mark.asyncio
async def test_missing_collection_raises_api_error():
    adapter = _adapter(lambda request: _json({"data": {"collection": None}}))
    with pytest.raises(CatalogAPIError):
        await adapter.fetch_products_page(CONTEXT, first=10, collection_id="404")


@pytest.mark.asyncio
async def test_non_200_is_transport_error():
    adapter = _adapter(lambda request: httpx.Response(502, text="Bad gateway"))
    with pytest.raises(CatalogTransportError):
        await adapter.fetch_collection(CONTEXT, "42")


@pytest.mark.asyncio
async def test_network_failure_is_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CatalogTransportError):
        await _adapter(handler).fetch_shop_timezone(CONTEXT)


@pytest.mark.asyncio
async def test_graphql_errors_surface_first_message():
    adapter = _adapter(lambda request: _json({"errors": [{"message": "Throttled"}, {"message": "other"}]}))
    with pytest.raises(CatalogAPIError) as exc:
        await adapter.fetch_collection(CONTEXT, "42")
    assert str(exc.value) == "Throttled"


@pytest.mark.asyncio
async def test_malformed_page_is_transport_error():
    adapter = _adapter(lambda request: _json({"data": {"orders": {"edges": [{"node": {"id": "x"}}]}}}))
    with pytest.raises(CatalogTransportError):
        await adapter.fetch_orders_page(CONTEXT, "", first=10)


@pytest.mark.asyncio
async def test_collection_info():
    adapter = _adapter(lambda request: _json({"data": {"collection": {
        "id": "gid://shopify/Collection/42",
        "title": "Summer",
        "sortOrder": "MANUAL",
        "productsCount": {"count": 12},
    }}}))

    info = await adapter.fetch_collection(CONTEXT, "42")

    assert info.is_manual
    assert info.products_count == 12


@pytest.mark.asyncio
async def test_reorder_submission_and_user_errors():
    def handler(request):
        body = json.loads(request.content)
        assert body["variables"]["moves"] == [{"id": "gid://shopify/Product/1", "newPosition": "0"}]
        return _json({"data": {"collectionReorderProducts": {
            "job": {"id": "gid://shopify/Job/9", "done": False},
            "userErrors": [{"field": ["moves"], "message": "Collection is not manually sorted"}],
        }}})

    submission = await _adapter(handler).reorder_collection(
        CONTEXT, "42", [{"id": "gid://shopify/Product/1", "newPosition": "0"}],
    )

    assert submission.job_id == "gid://shopify/Job/9"
    assert not submission.done
    assert submission.user_errors == ["Collection is not manually sorted"]


@pytest.mark.asyncio
async def test_job_status_and_tags_pagination():
    calls = {"tags": 0}

    def handler(request):
        body = json.loads(request.content)
        if "job(" in body["query"]:
            return _json({"data": {"job": {"id": body["variables"]["id"], "done": True}}})
        calls["tags"] += 1
        if body["variables"]["after"] is None:
            return _json({"data": {"shop": {"productTags": {
                "edges": [{"node": "summer"}],
                "pageInfo": {"hasNextPage": True, "endCursor": "t1"},
            }}}})
        return _json({"data": {"shop": {"productTags": {
            "edges": [{"node": "sale"}],
            "pageInfo": {"hasNextPage": False, "endCursor": None},
        }}}})

    adapter = _adapter(handler)

    assert await adapter.get_job_status(CONTEXT, "gid://shopify/Job/9") is True
    assert await adapter.fetch_product_tags(CONTEXT) == ["summer", "sale"]
    assert calls["tags"] == 2


@pytest.mark.asyncio
async def test_catalog_listing_direction():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content)["variables"])
        return _json({"data": {"products": {"edges": [], "pageInfo": {"hasNextPage": False}}}})

    adapter = _adapter(handler)
    await adapter.fetch_products_page(CONTEXT, first=250)
    await adapter.fetch_products_page(CONTEXT, first=250, newest_first=True)

    assert [v["reverse"] for v in seen] == [False, True]


@pytest.mark.asyncio
async def test_products_by_ids_skips_missing_nodes():
    def handler(request):
        ids = json.loads(request.content)["variables"]["ids"]
        assert ids == ["gid://shopify/Product/1", "gid://shopify/Product/2", "gid://shopify/Collection/3"]
        return _json({"data": {"nodes": [
            {"id": "gid://shopify/Product/1", "title": "Linen Shirt", "createdAt": "2025-01-01T00:00:00Z",
             "totalInventory": 4, "tags": [], "priceRangeV2": {"minVariantPrice": {"amount": "19.90"}}},
            None,
            {},
        ]}})

    products = await _adapter(handler).fetch_products_by_ids(
        CONTEXT, ["gid://shopify/Product/1", "gid://shopify/Product/2", "gid://shopify/Collection/3"],
    )

    assert [p.id for p in products] == ["gid://shopify/Product/1"]
    assert products[0].inventory_on_hand == 4


@pytest.mark.asyncio
async def test_products_by_ids_chunks_requests():
    calls = []

    def handler(request):
        ids = json.loads(request.content)["variables"]["ids"]
        calls.append(len(ids))
        return _json({"data": {"nodes": [{"id": pid, "title": pid} for pid in ids]}})

    ids = [f"gid://shopify/Product/{i}" for i in range(300)]
    products = await _adapter(handler).fetch_products_by_ids(CONTEXT, ids)

    assert calls == [250, 50]
    assert [p.id for p in products] == ids
