# collection_resort/services/ranking.py
"""
Ranking Engine
==============
Pure function from (products, metrics, configuration, now, rotation index)
to a total order of product ids. No I/O; identical inputs give identical
output.

Order of operations:
1. Base key: primary criterion + direction, ties by product id.
2. Tag zone: first matching tag rule in declared order.
3. New / out-of-stock overlays resolved through the merchant's tie-breaks.
4. Segments concatenated in Placement order; inside a segment the base
   order from step 1 is kept.
5. Active featured entries (rotated when capped) are pinned to the front in
   their manual order.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from collection_resort.adapters.base import CatalogProduct
from collection_resort.domain import (
    BehaviorRules,
    CollectionConfig,
    FeaturedEntry,
    OutOfStockPriority,
    Placement,
    RankedOrder,
    SalesMetric,
    SortCriterion,
    SortDirection,
    TagOutOfStockPriority,
    TagPlacementRule,
    TagZone,
    ensure_utc,
    featured_in_manual_order,
)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Where an out-of-stock product goes for each tie-break; None keeps the
# competing placement (new / featured).
_OUT_OF_STOCK_PLACEMENT = {
    OutOfStockPriority.PUSH_DOWN: Placement.OUT_OF_STOCK,
    OutOfStockPriority.PUSH_DOWN_LATER: Placement.OUT_OF_STOCK_LATER,
    OutOfStockPriority.PUSH_UP: None,
}


def _metric(metrics: Mapping[str, SalesMetric], product_id: str) -> Optional[SalesMetric]:
    return metrics.get(product_id) if metrics is not None else None


def base_key(
    criterion: SortCriterion,
    metrics: Mapping[str, SalesMetric],
    include_discounts: bool = True,
) -> Callable[[CatalogProduct], object]:
    """Numeric or date sort key for a criterion. Missing data sorts as 0 / epoch."""
    if criterion is SortCriterion.REVENUE:
        def key(p):
            m = _metric(metrics, p.id)
            return m.revenue(include_discounts) if m else Decimal("0")
    elif criterion is SortCriterion.UNITS_SOLD:
        def key(p):
            m = _metric(metrics, p.id)
            return m.units_sold if m else 0
    elif criterion is SortCriterion.CREATION_DATE:
        def key(p):
            return ensure_utc(p.created_at) or EPOCH
    elif criterion is SortCriterion.PUBLISH_DATE:
        def key(p):
            return ensure_utc(p.published_at) or EPOCH
    elif criterion is SortCriterion.PRICE:
        def key(p):
            return p.unit_price
    elif criterion is SortCriterion.INVENTORY:
        def key(p):
            return p.available_inventory
    else:
        raise ValueError(f"No sort key for criterion {criterion!r}")
    return key


def sort_by_criterion(
    products: Iterable[CatalogProduct],
    metrics: Mapping[str, SalesMetric],
    criterion: SortCriterion,
    direction: SortDirection = SortDirection.DESCENDING,
    include_discounts: bool = True,
) -> List[CatalogProduct]:
    """
    Criteria-only ordering (step 1), also used by the report views.

    `manual` keeps the incoming order. Otherwise equal keys fall back to
    ascending product id in both directions (sorted() keeps stability under
    reverse=True).
    """
    products = list(products)
    if criterion is SortCriterion.MANUAL:
        return products
    by_id = sorted(products, key=lambda p: p.id)
    return sorted(
        by_id,
        key=base_key(criterion, metrics, include_discounts),
        reverse=direction is SortDirection.DESCENDING,
    )


def tag_zone_for(product: CatalogProduct, tag_rules: Sequence[TagPlacementRule]) -> Optional[TagZone]:
    """First rule whose tag the product carries wins. Tags compare case-insensitively."""
    if not product.tags:
        return None
    product_tags = {tag.casefold() for tag in product.tags}
    for rule in tag_rules:
        if rule.tag_name.casefold() in product_tags:
            return rule.zone
    return None


def is_new_product(product: CatalogProduct, behavior: BehaviorRules, now: datetime) -> bool:
    if not behavior.push_new_up or product.created_at is None:
        return False
    return now - ensure_utc(product.created_at) < timedelta(days=behavior.new_threshold_days)


def is_out_of_stock(product: CatalogProduct, behavior: BehaviorRules) -> bool:
    return behavior.push_out_of_stock_down and product.inventory_on_hand <= 0


def resolve_placement(
    product: CatalogProduct,
    tag_rules: Sequence[TagPlacementRule],
    behavior: BehaviorRules,
    now: datetime,
) -> Placement:
    """Steps 2 and 3: tag zone, then the new / out-of-stock overlays."""
    zone = tag_zone_for(product, tag_rules)
    out_of_stock = is_out_of_stock(product, behavior)

    if zone is not None:
        if out_of_stock and behavior.tags_vs_out_of_stock is TagOutOfStockPriority.PUSH_DOWN:
            return Placement.OUT_OF_STOCK
        return Placement.for_zone(zone)

    new = is_new_product(product, behavior, now)
    if out_of_stock:
        if new:
            return _OUT_OF_STOCK_PLACEMENT[behavior.new_vs_out_of_stock] or Placement.NEW
        return Placement.OUT_OF_STOCK
    if new:
        return Placement.NEW
    return Placement.NONE


def select_featured_rotation(
    entries: Sequence[FeaturedEntry],
    limit: int,
    rotation_index: int,
) -> List[FeaturedEntry]:
    """
    Pick at most `limit` entries from a list already in manual order.

    With n entries and limit k < n, rotation index i takes the window of k
    entries starting at i mod n (wrapping), then restores manual order. Each
    consecutive index shifts the window by one, so consecutive resorts never
    pin the same subset.
    """
    entries = list(entries)
    if limit <= 0 or len(entries) <= limit:
        return entries
    start = rotation_index % len(entries)
    chosen = {(start + offset) % len(entries) for offset in range(limit)}
    return [entry for idx, entry in enumerate(entries) if idx in chosen]


def rank(
    products: Iterable[CatalogProduct],
    metrics: Mapping[str, SalesMetric],
    config: CollectionConfig,
    now: datetime,
    rotation_index: int = 0,
) -> RankedOrder:
    """Compute the final collection order. The output is a permutation of the input ids."""
    now = ensure_utc(now)
    unique: Dict[str, CatalogProduct] = {}
    for product in products:
        unique.setdefault(product.id, product)

    settings = config.settings
    behavior = config.behavior
    ordered = sort_by_criterion(
        unique.values(),
        metrics,
        settings.primary_criterion,
        settings.direction,
        settings.include_discounts,
    )
    placements = {
        p.id: resolve_placement(p, config.tag_rules, behavior, now)
        for p in ordered
    }

    eligible = []
    for entry in featured_in_manual_order(list(config.featured)):
        product = unique.get(entry.product_id)
        if product is None or not entry.is_active(now):
            continue
        if is_out_of_stock(product, behavior):
            forced = _OUT_OF_STOCK_PLACEMENT[behavior.featured_vs_out_of_stock]
            if forced is not None:
                placements[product.id] = forced
                continue
        eligible.append(entry)

    pinned = [e.product_id for e in select_featured_rotation(eligible, config.limit_featured, rotation_index)]
    pinned_set = set(pinned)
    for product_id in pinned:
        placements[product_id] = Placement.FEATURED

    # Stable sort: segment order first, base order inside each segment
    body = sorted(
        (p for p in ordered if p.id not in pinned_set),
        key=lambda p: placements[p.id].rank,
    )
    return RankedOrder(
        product_ids=tuple(pinned + [p.id for p in body]),
        placements=placements,
    )
