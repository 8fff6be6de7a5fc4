"""
SQLAlchemy Models for the Collection Resort Engine.

- base.py: Base class and mixins
- collection.py: per-collection settings, behavior rules, tag rules, featured products

All models are re-exported from this module.
"""

from collection_resort.models.base import Base, UUIDMixin, TimestampMixin, CollectionScopeMixin
from collection_resort.models.collection import (
    CollectionSetting,
    ProductBehaviorRule,
    TagSortingRule,
    FeaturedProduct,
    FeaturedSettings,
)

__all__ = [
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "CollectionScopeMixin",
    "CollectionSetting",
    "ProductBehaviorRule",
    "TagSortingRule",
    "FeaturedProduct",
    "FeaturedSettings",
]
