# backend/tests/services/test_settings_repository.py
"""
Tests for configuration validation and the SQLAlchemy-backed repository
(in-memory SQLite through aiosqlite).
"""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from collection_resort.domain import (
    BehaviorRules,
    CollectionConfig,
    CollectionSettings,
    FeaturedEntry,
    FeaturedMode,
    OutOfStockPriority,
    SortCriterion,
    TagPlacementRule,
    TagZone,
)
from collection_resort.models import Base
from collection_resort.services.settings_repository import (
    ConfigurationError,
    SettingsRepository,
    validate_config,
)
from factories import NOW


async def _repository(shop_domain="demo.myshopify.com"):
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return SettingsRepository(shop_domain, session_maker=session_maker), engine


def test_valid_config_passes():
    config = CollectionConfig(
        tag_rules=(TagPlacementRule("Sale", TagZone.BOTTOM),),
        featured=(FeaturedEntry("p1", position=0),),
    )
    validate_config(config, known_tags=["sale", "new"])


@pytest.mark.parametrize("config,fragment", [
    (CollectionConfig(settings=CollectionSettings(lookback_days=0)), "lookback_days"),
    (CollectionConfig(settings=CollectionSettings(lookback_days=366)), "lookback_days"),
    (CollectionConfig(limit_featured=-1), "limit_featured"),
    (CollectionConfig(behavior=BehaviorRules(new_threshold_days=0)), "new_threshold_days"),
    (CollectionConfig(behavior=BehaviorRules(new_vs_out_of_stock="sideways")), "Unknown"),
    (
        CollectionConfig(tag_rules=(TagPlacementRule("sale", TagZone.TOP), TagPlacementRule("SALE", TagZone.BOTTOM))),
        "Duplicate tag rule",
    ),
    (CollectionConfig(tag_rules=(TagPlacementRule("ghost", TagZone.TOP),)), "does not exist"),
    (
        CollectionConfig(featured=(FeaturedEntry("p1", position=0), FeaturedEntry("p1", position=1))),
        "more than once",
    ),
    (
        CollectionConfig(featured=(FeaturedEntry("p1", position=0, mode=FeaturedMode.SCHEDULED, duration_days=3),)),
        "no start date",
    ),
    (
        CollectionConfig(featured=(
            FeaturedEntry("p1", position=0, mode=FeaturedMode.SCHEDULED, start_date=NOW, duration_days=0),
        )),
        "positive duration",
    ),
])
def test_invalid_config_rejected(config, fragment):
    with pytest.raises(ConfigurationError) as exc:
        validate_config(config, known_tags=["sale"])
    assert fragment in str(exc.value)


def test_tag_existence_skipped_without_catalog_tags():
    validate_config(CollectionConfig(tag_rules=(TagPlacementRule("ghost", TagZone.TOP),)), known_tags=None)


@pytest.mark.asyncio
async def test_load_returns_defaults_when_nothing_saved():
    repo, engine = await _repository()
    try:
        assert await repo.load("42") == CollectionConfig()
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_save_then_load_round_trip_and_upsert():
    repo, engine = await _repository()
    config = CollectionConfig(
        settings=CollectionSettings(primary_criterion=SortCriterion.UNITS_SOLD, lookback_days=30),
        behavior=BehaviorRules(featured_vs_out_of_stock=OutOfStockPriority.PUSH_UP),
        tag_rules=(TagPlacementRule("hero", TagZone.TOP), TagPlacementRule("sale", TagZone.BOTTOM)),
        featured=(
            FeaturedEntry("p2", position=1),
            FeaturedEntry("p1", position=0, mode=FeaturedMode.SCHEDULED,
                          start_date=NOW - timedelta(days=1), duration_days=7),
        ),
        limit_featured=1,
    )
    try:
        await repo.save("42", config)
        loaded = await repo.load("42")

        assert loaded.settings == config.settings
        assert loaded.behavior == config.behavior
        assert loaded.tag_rules == config.tag_rules
        assert [f.product_id for f in loaded.featured] == ["p1", "p2"]
        assert loaded.featured[0].start_date == NOW - timedelta(days=1)
        assert loaded.limit_featured == 1

        # Second save replaces the lists instead of appending
        await repo.save("42", CollectionConfig(tag_rules=(TagPlacementRule("sale", TagZone.TOP),)))
        reloaded = await repo.load("42")
        assert reloaded.tag_rules == (TagPlacementRule("sale", TagZone.TOP),)
        assert reloaded.featured == ()
        assert reloaded.settings == CollectionSettings()
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_configuration_is_scoped_per_shop_and_collection():
    repo, engine = await _repository()
    other_shop = SettingsRepository("other.myshopify.com", session_maker=repo.session_maker)
    try:
        await repo.save("42", CollectionConfig(limit_featured=3))

        assert (await repo.load("43")).limit_featured == 0
        assert (await other_shop.load("42")).limit_featured == 0
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_invalid_save_writes_nothing():
    repo, engine = await _repository()
    try:
        with pytest.raises(ConfigurationError):
            await repo.save("42", CollectionConfig(settings=CollectionSettings(lookback_days=999)))
        assert await repo.load("42") == CollectionConfig()
    finally:
        await engine.dispose()
