"""Short-TTL caching of recommendation results and recent ratings.

Values live in Redis as JSON text under one namespace::

    hybridrec:recommendations:{user_id}:{options}   ranked results
    hybridrec:recent_ratings:{user_id}              newest-first rating list
"""

from __future__ import annotations

import math
import re
from typing import Any, Sequence, Type

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.retry import Retry

from hybridrec.core.contracts import KeyValueCache, RecommendationItem, RecommendationOptions
from hybridrec.logging import get_logger
from hybridrec.storage.json_utils import safe_json_dumps, safe_json_loads

logger = get_logger(__name__)

NAMESPACE = "hybridrec:"
RECOMMENDATIONS_PREFIX = "recommendations"
RECENT_RATINGS_PREFIX = "recent_ratings"
RECENT_RATINGS_MAX = 100
RECENT_RATINGS_TTL = 24 * 3600

_RETRY_ERRORS: Sequence[Type[Exception]] = (
    RedisConnectionError,
    RedisTimeoutError,
    ConnectionResetError,
)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def make_redis_client(redis_url: str) -> Redis:
    """Text-mode async client with retries on dropped connections."""
    return redis.from_url(
        redis_url,
        decode_responses=True,
        health_check_interval=10,
        socket_keepalive=True,
        socket_connect_timeout=2,
        socket_timeout=5,
        retry=Retry(ExponentialBackoff(cap=0.5, base=0.05), retries=3),
        retry_on_error=list(_RETRY_ERRORS),
    )


def _ttl(seconds: float) -> int:
    return max(1, int(math.ceil(seconds)))


class RedisCache:
    """KeyValueCache on a shared Redis client.

    The client must be created with ``decode_responses=True``.
    """

    def __init__(self, client: Redis, namespace: str = NAMESPACE) -> None:
        self._r = client
        self._ns = namespace

    def _key(self, key: str) -> str:
        return f"{self._ns}{key}"

    async def get(self, key: str) -> Any | None:
        raw = await self._r.get(self._key(key))
        if raw is None:
            return None
        return safe_json_loads(raw, default=None)

    async def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        await self._r.set(
            self._key(key),
            safe_json_dumps(value, default="null"),
            ex=_ttl(ttl_seconds),
        )

    async def delete_prefix(self, prefix: str) -> int:
        pattern = _GLOB_SPECIAL.sub(r"\\\1", self._key(prefix)) + "*"
        keys = [key async for key in self._r.scan_iter(match=pattern, count=500)]
        if not keys:
            return 0
        return int(await self._r.delete(*keys))

    async def push_list(self, key: str, value: Any, max_length: int, ttl_seconds: float) -> None:
        """Prepend to a list, trim it to max_length and refresh its TTL."""
        full_key = self._key(key)
        pipe = self._r.pipeline()
        pipe.lpush(full_key, safe_json_dumps(value, default="null"))
        pipe.ltrim(full_key, 0, max_length - 1)
        pipe.expire(full_key, _ttl(ttl_seconds))
        await pipe.execute()

    async def get_list(self, key: str) -> list[Any]:
        raw_items = await self._r.lrange(self._key(key), 0, -1)
        items = [safe_json_loads(raw, default=None) for raw in raw_items]
        return [item for item in items if item is not None]


class RecommendationCache:
    """Per-user memoization of ranked results on top of a KeyValueCache.

    Every invalidation bumps a per-user generation. A result computed
    under an older generation is not written back, so a rating that lands
    while ranking is in progress cannot be shadowed by a stale list.
    """

    def __init__(self, store: KeyValueCache, ttl_seconds: float = 300) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._generations: dict[str, int] = {}

    @staticmethod
    def key_for(user_id: str, options: RecommendationOptions) -> str:
        return f"{RECOMMENDATIONS_PREFIX}:{user_id}:{options.cache_key()}"

    def generation(self, user_id: str) -> int:
        return self._generations.get(user_id, 0)

    async def get(
        self,
        user_id: str,
        options: RecommendationOptions,
    ) -> list[RecommendationItem] | None:
        data = await self.store.get(self.key_for(user_id, options))
        if not isinstance(data, list):
            return None
        try:
            return [RecommendationItem.from_dict(entry) for entry in data]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Dropping malformed cached recommendations for {user_id}: {e}")
            return None

    async def set(
        self,
        user_id: str,
        options: RecommendationOptions,
        items: list[RecommendationItem],
        generation: int | None = None,
    ) -> bool:
        """Store results unless the user was invalidated since ``generation``."""
        if generation is not None and generation != self.generation(user_id):
            logger.debug(f"Not caching results for {user_id}: invalidated during ranking")
            return False
        await self.store.set(
            self.key_for(user_id, options),
            [item.to_dict() for item in items],
            self.ttl_seconds,
        )
        return True

    async def invalidate_user(self, user_id: str) -> int:
        """Drop every cached result of a user, whatever the options."""
        self._generations[user_id] = self.generation(user_id) + 1
        removed = await self.store.delete_prefix(f"{RECOMMENDATIONS_PREFIX}:{user_id}:")
        if removed:
            logger.debug(f"Invalidated {removed} cached result sets for {user_id}")
        return removed

    async def push_recent_rating(self, user_id: str, item_id: str, rating: float, timestamp: float) -> None:
        await self.store.push_list(
            f"{RECENT_RATINGS_PREFIX}:{user_id}",
            {"item_id": item_id, "rating": rating, "timestamp": timestamp},
            RECENT_RATINGS_MAX,
            RECENT_RATINGS_TTL,
        )

    async def recent_ratings(self, user_id: str) -> list[dict[str, Any]]:
        entries = await self.store.get_list(f"{RECENT_RATINGS_PREFIX}:{user_id}")
        return [e for e in entries if isinstance(e, dict)]

    async def recently_rated_ids(self, user_id: str) -> set[str]:
        return {str(e["item_id"]) for e in await self.recent_ratings(user_id) if "item_id" in e}
