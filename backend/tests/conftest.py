# backend/tests/conftest.py
"""
Shared fixtures. Environment defaults are set before the package is imported
so get_settings() can be built without a real .env.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_collection_resort.db")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("DEBUG", "true")

import pytest

from factories import NOW, FakeRedis


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def now():
    return NOW
