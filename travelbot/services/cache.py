"""
Redis cache for query embeddings.

Search phrases such as "beach tropical" or "luxury resort" recur across
users, and every miss costs an embedding call. Vectors are stored as JSON
under

    travelbot:{namespace}:{embedding model}:{sha256 of the text}

The recommender builds the part after the namespace. Redis errors and
unreadable entries count as misses; the cache never fails a request.
"""
from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from travelbot.core.config import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "travelbot"
_DELETE_CHUNK = 500


@lru_cache
def get_redis() -> Redis:
    return Redis.from_url(settings.REDIS_URL, decode_responses=True, max_connections=20)


def _as_vector(raw: str) -> Optional[List[float]]:
    try:
        value = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(value, list) or not value:
        return None
    if not all(isinstance(v, (int, float)) for v in value):
        return None
    return [float(v) for v in value]


class QueryVectorCache:
    def __init__(self, namespace: str = "query_vectors", ttl_seconds: int = 3600, client: Redis | None = None):
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds
        self._client = client
        self.hits = 0
        self.misses = 0

    @property
    def client(self) -> Redis:
        return self._client if self._client is not None else get_redis()

    @property
    def pattern(self) -> str:
        return f"{KEY_PREFIX}:{self.namespace}:*"

    def _key(self, key: str) -> str:
        return f"{KEY_PREFIX}:{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[List[float]]:
        try:
            raw = await self.client.get(self._key(key))
        except RedisError as exc:
            logger.warning("query vector cache read failed: %s", exc)
            self.misses += 1
            return None
        vector = _as_vector(raw) if raw is not None else None
        if vector is None:
            if raw is not None:
                logger.warning("Discarding unreadable cached vector %s", key[:40])
            self.misses += 1
            return None
        self.hits += 1
        return vector

    async def set(self, key: str, value: List[float], ttl_seconds: Optional[int] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        try:
            await self.client.set(self._key(key), json.dumps(list(value)), ex=ttl)
        except RedisError as exc:
            logger.warning("query vector cache write failed: %s", exc)

    async def clear(self) -> int:
        """Delete every cached vector in this namespace; returns how many were removed."""
        removed = 0
        batch: List[str] = []
        try:
            async for key in self.client.scan_iter(match=self.pattern, count=_DELETE_CHUNK):
                batch.append(key)
                if len(batch) >= _DELETE_CHUNK:
                    removed += await self.client.unlink(*batch)
                    batch = []
            if batch:
                removed += await self.client.unlink(*batch)
        except RedisError as exc:
            logger.warning("query vector cache clear failed after %d keys: %s", removed, exc)
        logger.info("Cleared %d cached query vectors", removed)
        return removed

    async def stats(self) -> dict:
        stats = {
            "cache": self.namespace,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
        }
        try:
            stats["live_entries"] = sum([1 async for _ in self.client.scan_iter(match=self.pattern)])
        except RedisError as exc:
            stats["error"] = str(exc)
        return stats


query_vector_cache = QueryVectorCache(ttl_seconds=settings.QUERY_VECTOR_CACHE_TTL_SECONDS)
