"""
Collection merchandising models - per-collection sort settings, behavior rules,
tag placement rules and featured products.

Single-row tables are unique on (shop_domain, collection_id) so saves are
upserts by key. Tag rules and featured products are ordered lists.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Boolean, Integer, DateTime, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from collection_resort.models.base import Base, UUIDMixin, TimestampMixin, CollectionScopeMixin


class CollectionSetting(Base, UUIDMixin, TimestampMixin, CollectionScopeMixin):
    """Primary sort criterion and the sales window it is computed over."""
    __tablename__ = "collection_settings"

    primary_criterion: Mapped[str] = mapped_column(String(50), default="revenue")
    direction: Mapped[str] = mapped_column(String(20), default="descending")
    lookback_days: Mapped[int] = mapped_column(Integer, default=180)
    order_status: Mapped[str] = mapped_column(String(50), default="all")
    include_discounts: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        UniqueConstraint("shop_domain", "collection_id", name="uq_collection_settings_scope"),
    )


class ProductBehaviorRule(Base, UUIDMixin, TimestampMixin, CollectionScopeMixin):
    """Push-new-up / push-out-of-stock-down flags and their tie-breaks."""
    __tablename__ = "product_behavior_rules"

    push_new_up: Mapped[bool] = mapped_column(Boolean, default=True)
    new_threshold_days: Mapped[int] = mapped_column(Integer, default=7)
    push_out_of_stock_down: Mapped[bool] = mapped_column(Boolean, default=True)
    new_vs_out_of_stock: Mapped[str] = mapped_column(String(50), default="push_down")
    featured_vs_out_of_stock: Mapped[str] = mapped_column(String(50), default="push_down")
    tags_vs_out_of_stock: Mapped[str] = mapped_column(String(50), default="keep_position")

    __table_args__ = (
        UniqueConstraint("shop_domain", "collection_id", name="uq_behavior_rules_scope"),
    )


class TagSortingRule(Base, UUIDMixin, TimestampMixin, CollectionScopeMixin):
    """A tag mapped to a placement zone; `rule_order` is the declared order."""
    __tablename__ = "tag_sorting_rules"

    tag_name: Mapped[str] = mapped_column(String(255), nullable=False)
    zone: Mapped[str] = mapped_column(String(50), nullable=False)
    rule_order: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        Index("idx_tag_rules_scope", "shop_domain", "collection_id"),
    )


class FeaturedProduct(Base, UUIDMixin, TimestampMixin, CollectionScopeMixin):
    """A pinned product. Scheduled entries are active for `duration_days` from `start_date`."""
    __tablename__ = "featured_products"

    product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    mode: Mapped[str] = mapped_column(String(20), default="manual")
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    duration_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("idx_featured_scope", "shop_domain", "collection_id"),
    )


class FeaturedSettings(Base, UUIDMixin, TimestampMixin, CollectionScopeMixin):
    """Rotation cap for the featured list (0 = show all)."""
    __tablename__ = "featured_settings"

    limit_featured: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("shop_domain", "collection_id", name="uq_featured_settings_scope"),
    )
