"""
ShopifyCatalogAdapter — Shopify Admin GraphQL implementation of BaseCatalogAdapter.

This class consolidates ALL Shopify-specific code the resort engine needs:
  - Order and product listing (cursor pagination)
  - Collection metadata and catalog tags
  - collectionReorderProducts and job status polling

The services never import this file. They receive a BaseCatalogAdapter
resolved at runtime via the AdapterRegistry.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

import httpx

from collection_resort.adapters.base import (
    BaseCatalogAdapter,
    CatalogAPIError,
    CatalogOrder,
    CatalogProduct,
    CatalogTransportError,
    CollectionInfo,
    OrderLineItem,
    Page,
    ReorderSubmission,
    parse_timestamp,
)
from collection_resort.config import get_settings

logger = logging.getLogger(__name__)


PRODUCT_FIELDS = """
  id
  title
  createdAt
  publishedAt
  vendor
  status
  tags
  totalInventory
  priceRangeV2 {
    minVariantPrice {
      amount
    }
  }
"""

GET_ORDERS = """
  query ResortOrders($first: Int!, $after: String, $query: String, $withDiscounts: Boolean!) {
    orders(first: $first, after: $after, query: $query, sortKey: CREATED_AT, reverse: true) {
      pageInfo {
        hasNextPage
        endCursor
      }
      edges {
        node {
          id
          createdAt
          lineItems(first: 100) {
            edges {
              node {
                quantity
                product {
                  id
                }
                originalTotalSet {
                  shopMoney {
                    amount
                  }
                }
                discountedTotalSet @include(if: $withDiscounts) {
                  shopMoney {
                    amount
                  }
                }
              }
            }
          }
        }
      }
    }
  }
"""

GET_PRODUCTS = """
  query ResortProducts($first: Int!, $after: String, $reverse: Boolean!) {
    products(first: $first, after: $after, sortKey: CREATED_AT, reverse: $reverse) {
      pageInfo {
        hasNextPage
        endCursor
      }
      edges {
        node {%s}
      }
    }
  }
""" % PRODUCT_FIELDS

GET_COLLECTION_PRODUCTS = """
  query ResortCollectionProducts($id: ID!, $first: Int!, $after: String) {
    collection(id: $id) {
      products(first: $first, after: $after, sortKey: COLLECTION_DEFAULT) {
        pageInfo {
          hasNextPage
          endCursor
        }
        edges {
          node {%s}
        }
      }
    }
  }
""" % PRODUCT_FIELDS

GET_PRODUCTS_BY_IDS = """
  query ResortProductsByIds($ids: [ID!]!) {
    nodes(ids: $ids) {
      ... on Product {%s}
    }
  }
""" % PRODUCT_FIELDS

GET_COLLECTION = """
  query ResortCollection($id: ID!) {
    collection(id: $id) {
      id
      title
      sortOrder
      productsCount {
        count
      }
    }
  }
"""

GET_PRODUCT_TAGS = """
  query ResortProductTags($first: Int!, $after: String) {
    shop {
      productTags(first: $first, after: $after) {
        pageInfo {
          hasNextPage
          endCursor
        }
        edges {
          node
        }
      }
    }
  }
"""

GET_SHOP_TIMEZONE = """
  query ResortShopTimezone {
    shop {
      ianaTimezone
    }
  }
"""

REORDER_COLLECTION = """
  mutation collectionReorderProducts($id: ID!, $moves: [MoveInput!]!) {
    collectionReorderProducts(id: $id, moves: $moves) {
      job {
        id
        done
      }
      userErrors {
        field
        message
      }
    }
  }
"""

GET_JOB_STATUS = """
  query GetJobStatus($id: ID!) {
    job(id: $id) {
      id
      done
    }
  }
"""


def to_collection_gid(collection_id: str) -> str:
    """Accept a numeric collection id or a full GID."""
    if collection_id.startswith("gid://"):
        return collection_id
    return f"gid://shopify/Collection/{collection_id}"


def _money(money_set: Optional[Dict]) -> Optional[Decimal]:
    if not money_set:
        return None
    return Decimal(str(money_set["shopMoney"]["amount"]))


class ShopifyCatalogAdapter(BaseCatalogAdapter):

    TAG_PAGE_SIZE = 250
    TAG_MAX_PAGES = 20
    # `nodes` accepts at most 250 ids per query
    NODES_MAX_IDS = 250

    def __init__(
        self,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self.timeout = timeout or settings.SHOPIFY_REQUEST_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def platform_name(self) -> str:
        return "shopify"

    async def _graphql(self, merchant_context: Dict, query: str, variables: Optional[Dict] = None) -> Dict:
        """POST a GraphQL document and return its `data` block."""
        shop = merchant_context["shop_id"]
        token = merchant_context["access_token"]
        url = f"https://{shop}/admin/api/{self.api_version}/graphql.json"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    json={"query": query, "variables": variables or {}},
                    headers={
                        "X-Shopify-Access-Token": token,
                        "Content-Type": "application/json",
                    },
                )
        except httpx.HTTPError as e:
            raise CatalogTransportError(f"Shopify request failed: {e}") from e

        if response.status_code != 200:
            raise CatalogTransportError(f"Shopify returned {response.status_code}: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as e:
            raise CatalogTransportError("Shopify returned a non-JSON body") from e

        if not isinstance(body, dict):
            raise CatalogTransportError("Shopify returned an unexpected body")

        errors = body.get("errors")
        if errors:
            if isinstance(errors, list):
                raise CatalogAPIError([
                    err.get("message", str(err)) if isinstance(err, dict) else str(err)
                    for err in errors
                ])
            raise CatalogAPIError([str(errors)])

        data = body.get("data")
        if not isinstance(data, dict):
            raise CatalogTransportError("Shopify response has no data block")
        return data

    # --- Reads ---

    async def fetch_orders_page(
        self,
        merchant_context: Dict,
        search_query: str,
        first: int,
        after: Optional[str] = None,
        include_discounts: bool = True,
    ) -> Page:
        data = await self._graphql(merchant_context, GET_ORDERS, {
            "first": first,
            "after": after,
            "query": search_query or None,
            "withDiscounts": include_discounts,
        })
        try:
            connection = data["orders"]
            orders = [self._parse_order(edge["node"]) for edge in connection["edges"]]
            page_info = connection.get("pageInfo") or {}
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise CatalogTransportError(f"Malformed orders page: {e!r}") from e

        return Page(
            items=orders,
            has_next_page=bool(page_info.get("hasNextPage")),
            end_cursor=page_info.get("endCursor"),
        )

    async def fetch_products_page(
        self,
        merchant_context: Dict,
        first: int,
        after: Optional[str] = None,
        collection_id: Optional[str] = None,
        newest_first: bool = False,
    ) -> Page:
        if collection_id:
            data = await self._graphql(merchant_context, GET_COLLECTION_PRODUCTS, {
                "id": to_collection_gid(collection_id),
                "first": first,
                "after": after,
            })
            collection = data.get("collection")
            if collection is None:
                raise CatalogAPIError([f"Collection {collection_id} not found"])
            connection = collection.get("products")
        else:
            data = await self._graphql(merchant_context, GET_PRODUCTS, {
                "first": first,
                "after": after,
                "reverse": newest_first,
            })
            connection = data.get("products")

        try:
            products = [self._parse_product(edge["node"]) for edge in connection["edges"]]
            page_info = connection.get("pageInfo") or {}
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise CatalogTransportError(f"Malformed products page: {e!r}") from e

        return Page(
            items=products,
            has_next_page=bool(page_info.get("hasNextPage")),
            end_cursor=page_info.get("endCursor"),
        )

    async def fetch_products_by_ids(self, merchant_context: Dict, product_ids: List[str]) -> List[CatalogProduct]:
        products: List[CatalogProduct] = []
        for start in range(0, len(product_ids), self.NODES_MAX_IDS):
            chunk = product_ids[start:start + self.NODES_MAX_IDS]
            data = await self._graphql(merchant_context, GET_PRODUCTS_BY_IDS, {"ids": chunk})
            try:
                # Deleted ids come back as null, non-product ids as {}
                products.extend(
                    self._parse_product(node)
                    for node in data["nodes"]
                    if node and node.get("id")
                )
            except (KeyError, TypeError, ValueError, InvalidOperation) as e:
                raise CatalogTransportError(f"Malformed product lookup: {e!r}") from e
        return products

    async def fetch_collection(self, merchant_context: Dict, collection_id: str) -> Optional[CollectionInfo]:
        data = await self._graphql(merchant_context, GET_COLLECTION, {"id": to_collection_gid(collection_id)})
        node = data.get("collection")
        if not node:
            return None
        return CollectionInfo(
            id=node["id"],
            title=node.get("title", ""),
            sort_order=node.get("sortOrder") or "",
            products_count=int((node.get("productsCount") or {}).get("count") or 0),
        )

    async def fetch_product_tags(self, merchant_context: Dict) -> List[str]:
        tags: List[str] = []
        after = None
        for _ in range(self.TAG_MAX_PAGES):
            data = await self._graphql(merchant_context, GET_PRODUCT_TAGS, {
                "first": self.TAG_PAGE_SIZE,
                "after": after,
            })
            try:
                connection = data["shop"]["productTags"]
                tags.extend(edge["node"] for edge in connection["edges"])
                page_info = connection.get("pageInfo") or {}
            except (KeyError, TypeError) as e:
                raise CatalogTransportError(f"Malformed product tags page: {e!r}") from e
            if not page_info.get("hasNextPage"):
                break
            after = page_info.get("endCursor")
        return tags

    async def fetch_shop_timezone(self, merchant_context: Dict) -> str:
        data = await self._graphql(merchant_context, GET_SHOP_TIMEZONE)
        return (data.get("shop") or {}).get("ianaTimezone") or "UTC"

    # --- Reorder ---

    async def reorder_collection(
        self,
        merchant_context: Dict,
        collection_id: str,
        moves: List[Dict[str, str]],
    ) -> ReorderSubmission:
        data = await self._graphql(merchant_context, REORDER_COLLECTION, {
            "id": to_collection_gid(collection_id),
            "moves": moves,
        })
        payload = data.get("collectionReorderProducts") or {}
        user_errors = [err.get("message", "") for err in payload.get("userErrors") or []]
        job = payload.get("job") or {}
        return ReorderSubmission(
            job_id=job.get("id"),
            done=bool(job.get("done")),
            user_errors=user_errors,
        )

    async def get_job_status(self, merchant_context: Dict, job_id: str) -> bool:
        data = await self._graphql(merchant_context, GET_JOB_STATUS, {"id": job_id})
        job = data.get("job") or {}
        return bool(job.get("done"))

    # --- Normalization ---

    def _parse_product(self, node: Dict) -> CatalogProduct:
        price_range = node.get("priceRangeV2") or {}
        min_price = (price_range.get("minVariantPrice") or {}).get("amount") or "0"
        return CatalogProduct(
            id=node["id"],
            title=node.get("title") or "",
            created_at=parse_timestamp(node.get("createdAt")),
            published_at=parse_timestamp(node.get("publishedAt")),
            unit_price=Decimal(str(min_price)),
            inventory_on_hand=int(node.get("totalInventory") or 0),
            vendor=node.get("vendor"),
            tags=frozenset(node.get("tags") or ()),
            status=node.get("status") or "ACTIVE",
        )

    def _parse_order(self, node: Dict) -> CatalogOrder:
        line_items = []
        for edge in (node.get("lineItems") or {}).get("edges", []):
            item = edge["node"]
            product = item.get("product") or {}
            line_items.append(OrderLineItem(
                product_id=product.get("id"),
                quantity=int(item.get("quantity") or 0),
                gross_amount=_money(item.get("originalTotalSet")) or Decimal("0"),
                discounted_amount=_money(item.get("discountedTotalSet")),
            ))
        return CatalogOrder(
            id=node["id"],
            created_at=parse_timestamp(node["createdAt"]),
            line_items=line_items,
        )
