"""
Merchandising domain types.

Everything the ranking pass consumes or produces that is not owned by the
external catalog lives here: the per-collection configuration (sort settings,
behavior rules, tag placement rules, featured list), the sales metrics built
by the aggregator, and the ranked order handed to the reorder executor.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple


class SortCriterion(str, Enum):
    REVENUE = "revenue"
    UNITS_SOLD = "units_sold"
    CREATION_DATE = "creation_date"
    PUBLISH_DATE = "publish_date"
    PRICE = "price"
    INVENTORY = "inventory"
    MANUAL = "manual"


class SortDirection(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


class OrderStatusFilter(str, Enum):
    ALL = "all"
    PAID_ONLY = "paid_only"
    FULFILLED_ONLY = "fulfilled_only"


class OutOfStockPriority(str, Enum):
    """Resolution when a new or featured product is also out of stock."""
    PUSH_DOWN = "push_down"              # into the out-of-stock segment
    PUSH_DOWN_LATER = "push_down_later"  # below the regular out-of-stock items
    PUSH_UP = "push_up"                  # keep the new / featured placement


class TagOutOfStockPriority(str, Enum):
    KEEP_POSITION = "keep_position"
    PUSH_DOWN = "push_down"


class TagZone(str, Enum):
    TOP = "top"
    AFTER_NEW = "after_new"
    BEFORE_OUT_OF_STOCK = "before_out_of_stock"
    BOTTOM = "bottom"


class Placement(str, Enum):
    """
    Ordered segments of a ranked collection.

    The declaration order is the output order. Tag zones (top, after_new,
    before_out_of_stock, bottom) keep their relative order; the new and
    out-of-stock overlays sit in the segments between them.
    """
    FEATURED = "featured"
    TOP = "top"
    NEW = "new"
    AFTER_NEW = "after_new"
    NONE = "none"
    BEFORE_OUT_OF_STOCK = "before_out_of_stock"
    OUT_OF_STOCK = "out_of_stock"
    OUT_OF_STOCK_LATER = "out_of_stock_later"
    BOTTOM = "bottom"

    @property
    def rank(self) -> int:
        return _PLACEMENT_ORDER.index(self)

    @classmethod
    def for_zone(cls, zone: TagZone) -> "Placement":
        return cls(zone.value)


_PLACEMENT_ORDER = list(Placement)


class FeaturedMode(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class ReorderOutcome(str, Enum):
    SUCCESS = "success"
    ACCEPTED_UNCONFIRMED = "accepted_unconfirmed"
    FAILED = "failed"


class JobStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"
    UNKNOWN_TIMEOUT = "unknown_timeout"

    @property
    def outcome(self) -> ReorderOutcome:
        if self is JobStatus.DONE:
            return ReorderOutcome.SUCCESS
        if self is JobStatus.UNKNOWN_TIMEOUT:
            return ReorderOutcome.ACCEPTED_UNCONFIRMED
        return ReorderOutcome.FAILED


# ---------------------------------------------------------------------------
# Per-collection configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CollectionSettings:
    primary_criterion: SortCriterion = SortCriterion.REVENUE
    direction: SortDirection = SortDirection.DESCENDING
    lookback_days: int = 180
    order_status: OrderStatusFilter = OrderStatusFilter.ALL
    include_discounts: bool = True


@dataclass(frozen=True)
class BehaviorRules:
    push_new_up: bool = True
    new_threshold_days: int = 7
    push_out_of_stock_down: bool = True
    new_vs_out_of_stock: OutOfStockPriority = OutOfStockPriority.PUSH_DOWN
    featured_vs_out_of_stock: OutOfStockPriority = OutOfStockPriority.PUSH_DOWN
    tags_vs_out_of_stock: TagOutOfStockPriority = TagOutOfStockPriority.KEEP_POSITION


@dataclass(frozen=True)
class TagPlacementRule:
    tag_name: str
    zone: TagZone


@dataclass(frozen=True)
class FeaturedEntry:
    product_id: str
    position: int
    mode: FeaturedMode = FeaturedMode.MANUAL
    start_date: Optional[datetime] = None
    duration_days: Optional[int] = None

    def is_active(self, now: datetime) -> bool:
        """Manual entries are always active; scheduled ones only inside their window."""
        if self.mode == FeaturedMode.MANUAL:
            return True
        if self.start_date is None or not self.duration_days:
            return False
        start = ensure_utc(self.start_date)
        return start <= ensure_utc(now) < start + timedelta(days=self.duration_days)

    def schedule_applied(self, now: datetime) -> bool:
        return self.mode == FeaturedMode.SCHEDULED and self.is_active(now)


@dataclass(frozen=True)
class CollectionConfig:
    """The full configuration tuple read at the start of every resort."""
    settings: CollectionSettings = field(default_factory=CollectionSettings)
    behavior: BehaviorRules = field(default_factory=BehaviorRules)
    tag_rules: Tuple[TagPlacementRule, ...] = ()
    featured: Tuple[FeaturedEntry, ...] = ()
    limit_featured: int = 0


# ---------------------------------------------------------------------------
# Aggregation and ranking results
# ---------------------------------------------------------------------------

@dataclass
class SalesMetric:
    product_id: str
    units_sold: int = 0
    gross_revenue: Decimal = Decimal("0")
    discounted_revenue: Decimal = Decimal("0")
    last_sale_at: Optional[datetime] = None

    def revenue(self, include_discounts: bool) -> Decimal:
        return self.discounted_revenue if include_discounts else self.gross_revenue

    def to_dict(self) -> Dict:
        return {
            "product_id": self.product_id,
            "units_sold": self.units_sold,
            "gross_revenue": str(self.gross_revenue),
            "discounted_revenue": str(self.discounted_revenue),
            "last_sale_at": self.last_sale_at.isoformat() if self.last_sale_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "SalesMetric":
        last_sale = data.get("last_sale_at")
        return cls(
            product_id=data["product_id"],
            units_sold=int(data.get("units_sold", 0)),
            gross_revenue=Decimal(data.get("gross_revenue", "0")),
            discounted_revenue=Decimal(data.get("discounted_revenue", "0")),
            last_sale_at=datetime.fromisoformat(last_sale) if last_sale else None,
        )


@dataclass(frozen=True)
class RankedOrder:
    """Final order of product ids; immutable once produced."""
    product_ids: Tuple[str, ...]
    placements: Dict[str, Placement] = field(default_factory=dict, compare=False)

    def __len__(self) -> int:
        return len(self.product_ids)

    def position_of(self, product_id: str) -> int:
        return self.product_ids.index(product_id)

    def to_dict(self) -> Dict:
        return {
            "product_ids": list(self.product_ids),
            "placements": {pid: p.value for pid, p in self.placements.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "RankedOrder":
        return cls(
            product_ids=tuple(data.get("product_ids", [])),
            placements={pid: Placement(p) for pid, p in data.get("placements", {}).items()},
        )


@dataclass
class ReorderJob:
    external_job_id: Optional[str]
    status: JobStatus
    message: str = ""
    attempts: int = 0

    @property
    def outcome(self) -> ReorderOutcome:
        return self.status.outcome


@dataclass
class ResortResult:
    outcome: ReorderOutcome
    message: str
    job_id: Optional[str] = None
    product_count: int = 0


@dataclass
class PreviewRow:
    position: int
    product_id: str
    title: str
    placement: Placement
    units_sold: int
    revenue: Decimal
    inventory: int


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes from the database are stored as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def featured_in_manual_order(entries: List[FeaturedEntry]) -> List[FeaturedEntry]:
    """Sort by merchant position, dropping repeated product ids (first wins)."""
    seen = set()
    ordered = []
    for entry in sorted(entries, key=lambda e: (e.position, e.product_id)):
        if entry.product_id in seen:
            continue
        seen.add(entry.product_id)
        ordered.append(entry)
    return ordered
