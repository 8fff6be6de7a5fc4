# collection_resort/services/settings_repository.py
"""
Settings Repository
===================
Loads and saves the per-collection configuration (sort settings, behavior
rules, tag rules, featured list, rotation cap).

Configuration is validated when it is saved, never during a ranking pass:
a resort always reads a configuration that already passed `validate_config`.
An unsaved configuration sent for preview goes through the same check
before it is ranked.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import delete, select

from collection_resort.domain import (
    BehaviorRules,
    CollectionConfig,
    CollectionSettings,
    FeaturedEntry,
    FeaturedMode,
    OrderStatusFilter,
    OutOfStockPriority,
    SortCriterion,
    SortDirection,
    TagOutOfStockPriority,
    TagPlacementRule,
    TagZone,
    ensure_utc,
)
from collection_resort.models import (
    CollectionSetting,
    FeaturedProduct,
    FeaturedSettings,
    ProductBehaviorRule,
    TagSortingRule,
)

logger = logging.getLogger(__name__)

MIN_LOOKBACK_DAYS = 1
MAX_LOOKBACK_DAYS = 365


class ConfigurationError(Exception):
    """Raised when a collection configuration is rejected at save time."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


def _check_enum(enum_cls, value, label: str, errors: list):
    if not isinstance(value, enum_cls):
        try:
            enum_cls(value)
        except ValueError:
            errors.append(f"Unknown {label}: {value!r}")


def validate_config(config: CollectionConfig, known_tags: Optional[Iterable[str]] = None) -> None:
    """
    Reject configurations the ranking engine cannot honor.

    `known_tags` is the catalog's tag list; when None, tag existence is not
    checked (the catalog could not be read).
    """
    errors = []
    settings = config.settings
    behavior = config.behavior

    if not MIN_LOOKBACK_DAYS <= settings.lookback_days <= MAX_LOOKBACK_DAYS:
        errors.append(f"lookback_days must be between {MIN_LOOKBACK_DAYS} and {MAX_LOOKBACK_DAYS}")
    if behavior.new_threshold_days <= 0:
        errors.append("new_threshold_days must be positive")
    if config.limit_featured < 0:
        errors.append("limit_featured cannot be negative")

    _check_enum(SortCriterion, settings.primary_criterion, "sort criterion", errors)
    _check_enum(SortDirection, settings.direction, "sort direction", errors)
    _check_enum(OrderStatusFilter, settings.order_status, "order status filter", errors)
    _check_enum(OutOfStockPriority, behavior.new_vs_out_of_stock, "new vs out-of-stock priority", errors)
    _check_enum(OutOfStockPriority, behavior.featured_vs_out_of_stock, "featured vs out-of-stock priority", errors)
    _check_enum(TagOutOfStockPriority, behavior.tags_vs_out_of_stock, "tag vs out-of-stock priority", errors)

    catalog_tags = {t.casefold() for t in known_tags} if known_tags is not None else None
    seen_tags = set()
    for rule in config.tag_rules:
        _check_enum(TagZone, rule.zone, "tag zone", errors)
        key = rule.tag_name.casefold()
        if key in seen_tags:
            errors.append(f"Duplicate tag rule for '{rule.tag_name}'")
        seen_tags.add(key)
        if catalog_tags is not None and key not in catalog_tags:
            errors.append(f"Tag '{rule.tag_name}' does not exist in the catalog")

    seen_products = set()
    for entry in config.featured:
        if entry.product_id in seen_products:
            errors.append(f"Product {entry.product_id} is featured more than once")
        seen_products.add(entry.product_id)
        if entry.mode == FeaturedMode.SCHEDULED:
            if entry.start_date is None:
                errors.append(f"Scheduled featured product {entry.product_id} has no start date")
            if not entry.duration_days or entry.duration_days <= 0:
                errors.append(f"Scheduled featured product {entry.product_id} needs a positive duration")

    if errors:
        raise ConfigurationError(errors)


class SettingsRepository:
    """Per-shop access to collection configuration rows."""

    def __init__(self, shop_domain: str, session_maker=None):
        if session_maker is None:
            from collection_resort.database import async_session_maker as session_maker
        self.shop_domain = shop_domain
        self.session_maker = session_maker

    def _scoped(self, model, collection_id: str):
        return select(model).where(
            model.shop_domain == self.shop_domain,
            model.collection_id == collection_id,
        )

    async def load(self, collection_id: str) -> CollectionConfig:
        """Saved configuration, or the defaults for any part never saved."""
        async with self.session_maker() as session:
            setting = (await session.execute(self._scoped(CollectionSetting, collection_id))).scalar_one_or_none()
            behavior = (await session.execute(self._scoped(ProductBehaviorRule, collection_id))).scalar_one_or_none()
            featured_settings = (
                await session.execute(self._scoped(FeaturedSettings, collection_id))
            ).scalar_one_or_none()
            tag_rows = (
                await session.execute(self._scoped(TagSortingRule, collection_id).order_by(TagSortingRule.rule_order))
            ).scalars().all()
            featured_rows = (
                await session.execute(self._scoped(FeaturedProduct, collection_id).order_by(FeaturedProduct.position))
            ).scalars().all()

        return CollectionConfig(
            settings=_settings_from_row(setting) if setting else CollectionSettings(),
            behavior=_behavior_from_row(behavior) if behavior else BehaviorRules(),
            tag_rules=tuple(TagPlacementRule(tag_name=r.tag_name, zone=TagZone(r.zone)) for r in tag_rows),
            featured=tuple(
                FeaturedEntry(
                    product_id=r.product_id,
                    position=r.position,
                    mode=FeaturedMode(r.mode),
                    start_date=ensure_utc(r.start_date),
                    duration_days=r.duration_days,
                )
                for r in featured_rows
            ),
            limit_featured=featured_settings.limit_featured if featured_settings else 0,
        )

    async def save(
        self,
        collection_id: str,
        config: CollectionConfig,
        known_tags: Optional[Iterable[str]] = None,
    ) -> CollectionConfig:
        """Validate, then upsert the single-row tables and replace the ordered lists."""
        validate_config(config, known_tags)

        async with self.session_maker() as session:
            try:
                setting = (await session.execute(self._scoped(CollectionSetting, collection_id))).scalar_one_or_none()
                if setting is None:
                    setting = CollectionSetting(shop_domain=self.shop_domain, collection_id=collection_id)
                    session.add(setting)
                s = config.settings
                setting.primary_criterion = SortCriterion(s.primary_criterion).value
                setting.direction = SortDirection(s.direction).value
                setting.lookback_days = s.lookback_days
                setting.order_status = OrderStatusFilter(s.order_status).value
                setting.include_discounts = s.include_discounts

                behavior = (
                    await session.execute(self._scoped(ProductBehaviorRule, collection_id))
                ).scalar_one_or_none()
                if behavior is None:
                    behavior = ProductBehaviorRule(shop_domain=self.shop_domain, collection_id=collection_id)
                    session.add(behavior)
                b = config.behavior
                behavior.push_new_up = b.push_new_up
                behavior.new_threshold_days = b.new_threshold_days
                behavior.push_out_of_stock_down = b.push_out_of_stock_down
                behavior.new_vs_out_of_stock = OutOfStockPriority(b.new_vs_out_of_stock).value
                behavior.featured_vs_out_of_stock = OutOfStockPriority(b.featured_vs_out_of_stock).value
                behavior.tags_vs_out_of_stock = TagOutOfStockPriority(b.tags_vs_out_of_stock).value

                featured_settings = (
                    await session.execute(self._scoped(FeaturedSettings, collection_id))
                ).scalar_one_or_none()
                if featured_settings is None:
                    featured_settings = FeaturedSettings(shop_domain=self.shop_domain, collection_id=collection_id)
                    session.add(featured_settings)
                featured_settings.limit_featured = config.limit_featured

                for model in (TagSortingRule, FeaturedProduct):
                    await session.execute(
                        delete(model).where(
                            model.shop_domain == self.shop_domain,
                            model.collection_id == collection_id,
                        )
                    )
                for order, rule in enumerate(config.tag_rules):
                    session.add(TagSortingRule(
                        shop_domain=self.shop_domain,
                        collection_id=collection_id,
                        tag_name=rule.tag_name,
                        zone=TagZone(rule.zone).value,
                        rule_order=order,
                    ))
                for entry in config.featured:
                    start = ensure_utc(entry.start_date)
                    session.add(FeaturedProduct(
                        shop_domain=self.shop_domain,
                        collection_id=collection_id,
                        product_id=entry.product_id,
                        position=entry.position,
                        mode=FeaturedMode(entry.mode).value,
                        # Stored naive in UTC
                        start_date=start.replace(tzinfo=None) if start else None,
                        duration_days=entry.duration_days,
                    ))

                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.info(f"Saved configuration for {self.shop_domain}/{collection_id}")
        return config


def _settings_from_row(row: CollectionSetting) -> CollectionSettings:
    return CollectionSettings(
        primary_criterion=SortCriterion(row.primary_criterion),
        direction=SortDirection(row.direction),
        lookback_days=row.lookback_days,
        order_status=OrderStatusFilter(row.order_status),
        include_discounts=row.include_discounts,
    )


def _behavior_from_row(row: ProductBehaviorRule) -> BehaviorRules:
    return BehaviorRules(
        push_new_up=row.push_new_up,
        new_threshold_days=row.new_threshold_days,
        push_out_of_stock_down=row.push_out_of_stock_down,
        new_vs_out_of_stock=OutOfStockPriority(row.new_vs_out_of_stock),
        featured_vs_out_of_stock=OutOfStockPriority(row.featured_vs_out_of_stock),
        tags_vs_out_of_stock=TagOutOfStockPriority(row.tags_vs_out_of_stock),
    )
