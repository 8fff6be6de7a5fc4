# collection_resort/redis.py
"""
Redis Client Setup.
"""

import redis
from collection_resort.config import get_settings


def get_redis_client():
    """Returns a synchronous Redis client."""
    return redis.from_url(get_settings().REDIS_URL, decode_responses=True)
