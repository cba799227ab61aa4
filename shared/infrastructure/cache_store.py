"""
Cache Store

Key/value and lock primitives on top of Django's cache framework. In
production the cache is django-redis, so `add()` maps onto Redis SET NX and
the lock is shared by every worker process; tests run against locmem.

Locks are owned by a random token. `release()` only deletes the lock if the
caller still owns it, so a worker whose lock expired cannot drop the lock of
the worker that acquired it next.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

import structlog
from django.core.cache import BaseCache, caches  # type: ignore

from shared.conf import booking_settings

logger = structlog.get_logger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class CacheStore:
    """acquire/release/get/put over a Django cache backend."""

    def __init__(self, cache: Optional[BaseCache] = None, *, alias: str = "default", atomic_release: bool = False):
        self.cache = cache if cache is not None else caches[alias]
        self.atomic_release = atomic_release

    def acquire(self, key: str, ttl: int) -> Optional[str]:
        """Take the lock and return its owner token, or None if it is held."""

        token = uuid.uuid4().hex
        if self.cache.add(key, token, timeout=ttl):
            return token
        return None

    def release(self, key: str, token: str) -> bool:
        if self.atomic_release:
            return self._release_atomically(key, token)

        if self.cache.get(key) != token:
            logger.warning("cache_store.lock_not_owned", key=key)
            return False
        self.cache.delete(key)
        return True

    def _release_atomically(self, key: str, token: str) -> bool:
        # Requires django_redis.cache.RedisCache; values are stored encoded.
        client = self.cache.client
        redis = client.get_client(write=True)
        released = redis.eval(_RELEASE_SCRIPT, 1, client.make_key(key), client.encode(token))
        if not released:
            logger.warning("cache_store.lock_not_owned", key=key)
        return bool(released)

    def get(self, key: str) -> Any:
        return self.cache.get(key)

    def put(self, key: str, value: Any, ttl: int) -> None:
        self.cache.set(key, value, timeout=ttl)

    def delete(self, key: str) -> None:
        self.cache.delete(key)


def build_cache_store() -> CacheStore:
    """Build the store described by BOOKING["IDEMPOTENCY"]."""

    config = booking_settings("IDEMPOTENCY")
    return CacheStore(alias=config["CACHE_ALIAS"], atomic_release=bool(config["ATOMIC_RELEASE"]))
