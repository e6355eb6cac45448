"""
Value-set expansion caches.

Expanded value sets are read-mostly: the validator looks them up on every
bound element, while the terminology server changes them rarely. Two
backends share one small async interface: an in-process TTL map, and a
Redis-backed cache for several validator processes behind one server.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Any, Dict, List, Optional, Protocol, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..core.schemas import Concept

logger = logging.getLogger(__name__)


class ValueSetCache(Protocol):
    async def get(self, value_set_url: str) -> Optional[List[Concept]]: ...

    async def set(self, value_set_url: str, concepts: List[Concept], ttl: int) -> None: ...


class MemoryValueSetCache:
    """Process-local TTL cache keyed by value-set URL."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Tuple[Concept, ...]]] = {}

    async def get(self, value_set_url: str) -> Optional[List[Concept]]:
        entry = self._entries.get(value_set_url)
        if entry is None:
            return None
        expires_at, concepts = entry
        if self._clock() >= expires_at:
            # expired entries are refreshed by the next lookup
            self._entries.pop(value_set_url, None)
            return None
        return list(concepts)

    async def set(self, value_set_url: str, concepts: List[Concept], ttl: int) -> None:
        self._entries[value_set_url] = (self._clock() + ttl, tuple(concepts))

    def __len__(self) -> int:
        return len(self._entries)


class RedisValueSetCache:
    """
    Redis-backed value-set cache.

    Payloads are stored as JSON lists of concepts with a Redis-side TTL.
    Redis failures degrade to a cache miss so terminology lookups fall
    through to the server.
    """

    def __init__(self, client: Any, prefix: str = "fhirval:valueset"):
        self._redis = client
        self.prefix = prefix

    @classmethod
    def from_settings(cls, settings: Any) -> "RedisValueSetCache":
        client = Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD,
            decode_responses=True,
        )
        logger.info(f"Value-set cache using Redis at {settings.REDIS_HOST}:{settings.REDIS_PORT}")
        return cls(client)

    def _key(self, value_set_url: str) -> str:
        digest = hashlib.sha256(value_set_url.encode()).hexdigest()[:16]
        return f"{self.prefix}:{digest}"

    async def get(self, value_set_url: str) -> Optional[List[Concept]]:
        try:
            cached = await self._redis.get(self._key(value_set_url))
            if cached:
                return [Concept(**item) for item in json.loads(cached)]
            return None
        except (RedisError, ValueError, TypeError) as e:
            logger.warning(f"Value-set cache get failed for {value_set_url}: {e}")
            return None

    async def set(self, value_set_url: str, concepts: List[Concept], ttl: int) -> None:
        try:
            payload = json.dumps([c.model_dump(exclude_none=True) for c in concepts])
            await self._redis.set(self._key(value_set_url), payload, ex=ttl)
        except (RedisError, TypeError) as e:
            logger.warning(f"Value-set cache set failed for {value_set_url}: {e}")
