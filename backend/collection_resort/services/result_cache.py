# collection_resort/services/result_cache.py
"""
Result Cache
============
Short-lived memoization of expensive results (sales snapshots, ranked orders,
report rows) keyed by a fingerprint of everything that affects them.

An entry is valid only while `now - created_at < ttl`. Redis expiry removes
stale keys eventually; the stored `created_at` makes the cutoff exact.
The fingerprint folds in a coarse dataset version (a time bucket) so
a ranking computed over one sales window is not reused across buckets.

Redis is an optimization here, never a dependency: on any Redis error the
cache behaves as a miss and the caller recomputes.

Also holds the per-collection featured rotation counter.
"""

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from redis.exceptions import RedisError

from collection_resort.config import get_settings
from collection_resort.redis import get_redis_client

logger = logging.getLogger(__name__)

NAMESPACE_SNAPSHOT = "snapshot"
NAMESPACE_RANKING = "ranking"


def report_namespace(kind: str) -> str:
    return f"report:{kind}"


def dataset_version(now: datetime, bucket_seconds: Optional[int] = None) -> int:
    """Coarse recency bucket: every `bucket_seconds` the version moves on."""
    bucket = bucket_seconds or get_settings().RESULT_CACHE_BUCKET_SECONDS
    return int(now.timestamp() // bucket)


def _canonical(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return _canonical(asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_canonical(v) for v in value]
        return sorted(items, key=json.dumps) if isinstance(value, (set, frozenset)) else items
    return value


def compute_fingerprint(*parts: Any, version: int = 0) -> str:
    """SHA-256 over canonical JSON of the inputs plus the dataset version."""
    body = json.dumps(
        {"parts": [_canonical(p) for p in parts], "version": version},
        sort_keys=True,
        default=str,
        separators=(",", ":"),
    )
    return hashlib.sha256(body.encode()).hexdigest()


@dataclass
class CacheEntry:
    payload: Any
    created_at: datetime
    fingerprint: str


class ResultCache:
    """
    Redis-backed result cache scoped to one shop.

    Key format: resort_cache:{shop_domain}:{namespace}:{fingerprint}
    """

    PREFIX = "resort_cache"

    def __init__(
        self,
        shop_domain: str,
        ttl_seconds: Optional[int] = None,
        redis_client=None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.shop_domain = shop_domain
        self.ttl_seconds = ttl_seconds or get_settings().RESULT_CACHE_TTL_SECONDS
        self.redis = redis_client if redis_client is not None else get_redis_client()
        self._now = now or (lambda: datetime.now(timezone.utc))

    def _key(self, namespace: str, fingerprint: str) -> str:
        return f"{self.PREFIX}:{self.shop_domain}:{namespace}:{fingerprint}"

    async def get(self, namespace: str, fingerprint: str) -> Optional[CacheEntry]:
        try:
            raw = self.redis.get(self._key(namespace, fingerprint))
        except RedisError as e:
            logger.warning(f"Result cache read failed, treating as miss: {e}")
            return None
        if not raw:
            return None

        try:
            stored = json.loads(raw)
            created_at = datetime.fromisoformat(stored["created_at"])
            ttl = int(stored.get("ttl", self.ttl_seconds))
        except (ValueError, KeyError, TypeError):
            logger.warning(f"Discarding unreadable cache entry {namespace}:{fingerprint[:8]}")
            return None

        if (self._now() - created_at).total_seconds() >= ttl:
            return None
        logger.debug(f"Result cache hit {namespace}:{fingerprint[:8]}")
        return CacheEntry(payload=stored.get("payload"), created_at=created_at, fingerprint=fingerprint)

    async def put(self, namespace: str, fingerprint: str, payload: Any, ttl_seconds: Optional[int] = None) -> bool:
        ttl = ttl_seconds or self.ttl_seconds
        body = json.dumps(
            {"created_at": self._now().isoformat(), "ttl": ttl, "payload": payload},
            default=str,
        )
        try:
            self.redis.set(self._key(namespace, fingerprint), body, ex=ttl)
            return True
        except RedisError as e:
            logger.warning(f"Result cache write failed for {namespace}: {e}")
            return False

    async def invalidate(self, namespace: Optional[str] = None) -> int:
        """
        Drop every entry for this shop, or only one namespace.

        Settings saves do not need this: a changed configuration produces a
        new fingerprint and simply misses.
        """
        scope = f"{namespace}:*" if namespace else "*"
        pattern = f"{self.PREFIX}:{self.shop_domain}:{scope}"
        try:
            keys = list(self.redis.scan_iter(match=pattern))
            deleted = self.redis.delete(*keys) if keys else 0
        except RedisError as e:
            logger.warning(f"Result cache invalidation failed for {pattern}: {e}")
            return 0
        if deleted:
            logger.info(f"Invalidated {deleted} cached results for {self.shop_domain}")
        return deleted


class RotationCounter:
    """
    Per-collection featured rotation index.

    Each resort consumes one index (INCR); previews peek at the one the next
    resort will use.
    """

    PREFIX = "featured_rotation"

    def __init__(self, shop_domain: str, redis_client=None):
        self.shop_domain = shop_domain
        self.redis = redis_client if redis_client is not None else get_redis_client()

    def _key(self, collection_id: str) -> str:
        return f"{self.PREFIX}:{self.shop_domain}:{collection_id}"

    async def peek(self, collection_id: str) -> int:
        try:
            value = self.redis.get(self._key(collection_id))
        except RedisError as e:
            logger.warning(f"Rotation counter read failed, using 0: {e}")
            return 0
        return int(value) if value else 0

    async def advance(self, collection_id: str) -> int:
        """Return the index for this resort and move the counter on."""
        try:
            return int(self.redis.incr(self._key(collection_id))) - 1
        except RedisError as e:
            logger.warning(f"Rotation counter update failed, using 0: {e}")
            return 0
