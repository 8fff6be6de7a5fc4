"""
BaseCatalogAdapter — The interface the resort engine needs from a catalog platform.

The aggregator, the reorder executor and the settings validation never import
a platform-specific module. They receive an adapter resolved through the
AdapterRegistry and call methods on it with the merchant context
(shop_id + access_token) they were given.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any
from decimal import Decimal
from dataclasses import dataclass, field
from datetime import datetime


class CatalogTransportError(Exception):
    """Network failure, non-200 status or unreadable body from the platform."""
    pass


class CatalogAPIError(Exception):
    """The platform answered but reported errors (GraphQL `errors` or `userErrors`)."""

    def __init__(self, messages: List[str]):
        self.messages = messages or ["Unknown catalog API error"]
        super().__init__(self.messages[0])


# ---------------------------------------------------------------------------
# Standardized data models — platform-neutral
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CatalogProduct:
    """A product as seen by the resort engine. Read-only during a ranking pass."""
    id: str
    title: str
    created_at: Optional[datetime]
    published_at: Optional[datetime]
    unit_price: Decimal
    inventory_on_hand: int
    vendor: Optional[str] = None
    tags: frozenset = frozenset()
    status: str = "ACTIVE"

    @property
    def available_inventory(self) -> int:
        """Negative stock counts as zero."""
        return max(0, self.inventory_on_hand)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "unit_price": str(self.unit_price),
            "inventory_on_hand": self.inventory_on_hand,
            "vendor": self.vendor,
            "tags": sorted(self.tags),
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "CatalogProduct":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            created_at=parse_timestamp(data.get("created_at")),
            published_at=parse_timestamp(data.get("published_at")),
            unit_price=Decimal(data.get("unit_price") or "0"),
            inventory_on_hand=int(data.get("inventory_on_hand") or 0),
            vendor=data.get("vendor"),
            tags=frozenset(data.get("tags") or ()),
            status=data.get("status") or "ACTIVE",
        )


@dataclass(frozen=True)
class OrderLineItem:
    product_id: Optional[str]      # None for custom items or deleted products
    quantity: int
    gross_amount: Decimal
    discounted_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class CatalogOrder:
    id: str
    created_at: datetime
    line_items: List[OrderLineItem] = field(default_factory=list)


@dataclass
class Page:
    """One page of a cursor-paginated listing."""
    items: List[Any]
    has_next_page: bool = False
    end_cursor: Optional[str] = None


@dataclass(frozen=True)
class CollectionInfo:
    id: str
    title: str
    sort_order: str
    products_count: int = 0

    @property
    def is_manual(self) -> bool:
        return self.sort_order.upper() == "MANUAL"


@dataclass
class ReorderSubmission:
    """What the platform returned for a reorder mutation."""
    job_id: Optional[str]
    done: bool = False
    user_errors: List[str] = field(default_factory=list)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse platform ISO-8601 timestamps ("Z" suffix included)."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class BaseCatalogAdapter(ABC):
    """
    Abstract base class for catalog platform adapters.

    Every method that talks to the platform raises CatalogTransportError for
    transport-level problems and CatalogAPIError for structured errors. The
    callers decide whether that is recoverable.
    """

    @property
    @abstractmethod
    def platform_name(self) -> str:
        """Unique identifier: 'shopify', etc."""
        pass

    # --- Reads ---

    @abstractmethod
    async def fetch_orders_page(
        self,
        merchant_context: Dict,
        search_query: str,
        first: int,
        after: Optional[str] = None,
        include_discounts: bool = True,
    ) -> Page:
        """
        Fetch one page of orders, newest first, filtered server-side by
        `search_query`. Items are CatalogOrder objects.
        """
        pass

    @abstractmethod
    async def fetch_products_page(
        self,
        merchant_context: Dict,
        first: int,
        after: Optional[str] = None,
        collection_id: Optional[str] = None,
        newest_first: bool = False,
    ) -> Page:
        """
        Fetch one page of CatalogProduct objects. With a collection id the
        products come in the collection's current order; otherwise by
        creation date, oldest first unless `newest_first` is set.
        """
        pass

    @abstractmethod
    async def fetch_products_by_ids(self, merchant_context: Dict, product_ids: List[str]) -> List[CatalogProduct]:
        """
        Look up products by id, in the order requested. Ids that no longer
        resolve to a product are left out.
        """
        pass

    @abstractmethod
    async def fetch_collection(self, merchant_context: Dict, collection_id: str) -> Optional[CollectionInfo]:
        """Collection title, sort order and product count, or None if missing."""
        pass

    @abstractmethod
    async def fetch_product_tags(self, merchant_context: Dict) -> List[str]:
        """Every tag currently used in the catalog."""
        pass

    @abstractmethod
    async def fetch_shop_timezone(self, merchant_context: Dict) -> str:
        """The shop's canonical IANA timezone name."""
        pass

    # --- Reorder ---

    @abstractmethod
    async def reorder_collection(
        self,
        merchant_context: Dict,
        collection_id: str,
        moves: List[Dict[str, str]],
    ) -> ReorderSubmission:
        """
        Submit position moves for a manual collection in a single request.

        `userErrors` are returned on the submission rather than raised so the
        executor can surface the first message.
        """
        pass

    @abstractmethod
    async def get_job_status(self, merchant_context: Dict, job_id: str) -> bool:
        """Return True once the asynchronous job reports done."""
        pass
