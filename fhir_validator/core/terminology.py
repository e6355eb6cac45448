from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

import httpx

from ..cache.value_set_cache import MemoryValueSetCache, RedisValueSetCache, ValueSetCache
from ..config import Settings, get_settings
from .exceptions import TerminologyUnavailable
from .metrics import ValidatorMetrics, metrics as default_metrics
from .schemas import Concept
from .tracing import trace_terminology_lookup

logger = logging.getLogger(__name__)


class TerminologyResolver(Protocol):
    """Expands value sets. ``None`` means the terminology service is unavailable."""

    async def lookup(self, value_set_url: str) -> Optional[List[Concept]]: ...


def _concepts_from(payload: Any) -> List[Concept]:
    """Accept a ValueSet with an expansion, or a bare list of concepts."""
    if isinstance(payload, list):
        entries = payload
    elif isinstance(payload, dict) and isinstance(payload.get("expansion"), dict):
        entries = payload["expansion"].get("contains") or []
    else:
        raise TerminologyUnavailable("Response is not a value-set expansion")

    concepts: List[Concept] = []
    stack = list(reversed(entries))
    while stack:
        entry = stack.pop()
        if not isinstance(entry, dict):
            raise TerminologyUnavailable(f"Malformed expansion entry: {entry!r}")
        if entry.get("code"):
            concepts.append(Concept(code=entry["code"], display=entry.get("display"), system=entry.get("system")))
        stack.extend(reversed(entry.get("contains") or []))
    return concepts


class StaticTerminologyResolver:
    """Offline resolver over a fixed mapping of value-set URL to concepts."""

    def __init__(self, value_sets: Optional[Mapping[str, Iterable[Any]]] = None):
        self._value_sets: Dict[str, List[Concept]] = {}
        for url, members in (value_sets or {}).items():
            self.register(url, members)

    def register(self, value_set_url: str, members: Iterable[Any]) -> None:
        self._value_sets[value_set_url] = [
            m if isinstance(m, Concept) else Concept(**m) if isinstance(m, dict) else Concept(code=str(m))
            for m in members
        ]

    async def lookup(self, value_set_url: str) -> Optional[List[Concept]]:
        concepts = self._value_sets.get(value_set_url)
        return list(concepts) if concepts is not None else None


class HttpTerminologyResolver:
    """
    Value-set expansion against a FHIR terminology server.

    Uses ``ValueSet/$expand``, optionally authenticated with a bearer token
    obtained through an OAuth2 password grant. Every lookup carries its own
    timeout; timeouts, HTTP errors and malformed payloads all come back as
    ``None`` so the validator treats the binding as unverifiable.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[ValidatorMetrics] = None,
    ):
        self.settings = settings or get_settings()
        self.enabled = self.settings.TERMINOLOGY_ENABLED
        self.base_url = self.settings.TERMINOLOGY_BASE_URL.rstrip("/")
        self.timeout = self.settings.TERMINOLOGY_TIMEOUT
        self._transport = transport
        self._metrics = metrics or default_metrics

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def get_token(self, client: httpx.AsyncClient) -> Optional[str]:
        """Password-grant access token, or None when no token endpoint is configured."""
        if not self.settings.TERMINOLOGY_TOKEN_URL:
            return None
        response = await client.post(
            self.settings.TERMINOLOGY_TOKEN_URL,
            headers={"Accept": "application/json"},
            data={
                "username": self.settings.TERMINOLOGY_USERNAME or "",
                "password": self.settings.TERMINOLOGY_PASSWORD or "",
                "client_id": self.settings.TERMINOLOGY_CLIENT_ID,
                "client_secret": "",
                "grant_type": "password",
            },
        )
        if response.status_code == 401:
            raise TerminologyUnavailable("Unauthorized")
        response.raise_for_status()
        return response.json()["access_token"]

    async def _expand(self, value_set_url: str) -> List[Concept]:
        async with self._client() as client:
            headers = {"Accept": "application/fhir+json"}
            token = await self.get_token(client)
            if token:
                headers["Authorization"] = f"Bearer {token}"
            response = await client.get(
                f"{self.base_url}/ValueSet/$expand",
                params={"url": value_set_url},
                headers=headers,
            )
            if response.status_code >= 400:
                raise TerminologyUnavailable(f"Terminology server error: {response.status_code}")
            return _concepts_from(response.json())

    async def lookup(self, value_set_url: str) -> Optional[List[Concept]]:
        if not self.enabled:
            return None

        with trace_terminology_lookup(value_set_url) as span:
            try:
                concepts = await asyncio.wait_for(self._expand(value_set_url), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Terminology lookup timed out after {self.timeout}s for {value_set_url}")
                self._metrics.record_terminology_lookup("timeout")
                span.set_attribute("fhir.terminology.status", "timeout")
                return None
            except (httpx.HTTPError, TerminologyUnavailable, ValueError, KeyError) as e:
                logger.warning(f"Terminology lookup failed for {value_set_url}: {e}")
                self._metrics.record_terminology_lookup("error")
                span.set_attribute("fhir.terminology.status", "error")
                return None

            self._metrics.record_terminology_lookup("ok")
            span.set_attribute("fhir.terminology.status", "ok")
            return concepts


class CachedTerminologyResolver:
    """
    Read-through cache in front of another resolver.

    Concurrent misses for the same URL wait on one shared lookup.
    Unavailable results are never cached, so the next call retries.
    """

    def __init__(
        self,
        inner: TerminologyResolver,
        ttl: int = 3600,
        backend: Optional[ValueSetCache] = None,
        metrics: Optional[ValidatorMetrics] = None,
    ):
        self.inner = inner
        self.ttl = ttl
        self.backend: ValueSetCache = backend if backend is not None else MemoryValueSetCache()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._metrics = metrics or default_metrics

    async def lookup(self, value_set_url: str) -> Optional[List[Concept]]:
        cached = await self.backend.get(value_set_url)
        if cached is not None:
            self._metrics.record_terminology_cache_hit()
            return cached

        lock = self._locks.setdefault(value_set_url, asyncio.Lock())
        try:
            async with lock:
                cached = await self.backend.get(value_set_url)
                if cached is not None:
                    self._metrics.record_terminology_cache_hit()
                    return cached

                concepts = await self.inner.lookup(value_set_url)
                if concepts is not None:
                    await self.backend.set(value_set_url, concepts, self.ttl)
                return concepts
        finally:
            # waiters keep their reference; later misses get a fresh lock on their own loop
            if self._locks.get(value_set_url) is lock:
                del self._locks[value_set_url]


def build_terminology_resolver(settings: Optional[Settings] = None) -> TerminologyResolver:
    """Resolver stack from settings: HTTP expansion behind a value-set cache."""
    settings = settings or get_settings()
    backend: Optional[ValueSetCache] = None
    if settings.REDIS_ENABLED:
        backend = RedisValueSetCache.from_settings(settings)
    return CachedTerminologyResolver(
        HttpTerminologyResolver(settings),
        ttl=settings.TERMINOLOGY_CACHE_TTL,
        backend=backend,
    )
