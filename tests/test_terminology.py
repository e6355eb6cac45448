import asyncio
import json

import httpx
from redis.exceptions import ConnectionError as RedisConnectionError

from fhir_validator.cache import MemoryValueSetCache, RedisValueSetCache
from fhir_validator.config import Settings
from fhir_validator.core.metrics import ValidatorMetrics
from fhir_validator.core.schemas import Concept
from fhir_validator.core.terminology import (
    CachedTerminologyResolver,
    HttpTerminologyResolver,
    StaticTerminologyResolver,
    build_terminology_resolver,
)

GENDER_VS = "http://hl7.org/fhir/ValueSet/administrative-gender"

EXPANSION = {
    "resourceType": "ValueSet",
    "expansion": {
        "contains": [
            {"system": "http://hl7.org/fhir/administrative-gender", "code": "male", "display": "Male"},
            {
                "system": "http://hl7.org/fhir/administrative-gender",
                "code": "other",
                "display": "Other",
                "contains": [{"code": "non-binary", "display": "Non-binary"}],
            },
        ]
    },
}


def _settings(**overrides):
    values = {
        "TERMINOLOGY_ENABLED": True,
        "TERMINOLOGY_BASE_URL": "https://tx.example.org/fhir",
        "TERMINOLOGY_TIMEOUT": 2.0,
    }
    values.update(overrides)
    return Settings(**values)


def test_http_resolver_expands_value_set():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=EXPANSION)

    metrics = ValidatorMetrics()
    resolver = HttpTerminologyResolver(_settings(), transport=httpx.MockTransport(handler), metrics=metrics)
    concepts = asyncio.run(resolver.lookup(GENDER_VS))

    assert [c.code for c in concepts] == ["male", "other", "non-binary"]
    assert seen[0].url.path == "/fhir/ValueSet/$expand"
    assert seen[0].url.params["url"] == GENDER_VS
    assert "Authorization" not in seen[0].headers
    assert metrics.registry.get_sample_value("fhir_terminology_lookups_total", {"status": "ok"}) == 1.0


def test_http_resolver_uses_password_grant_token():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            form = dict(pair.split("=") for pair in request.content.decode().split("&"))
            assert form["grant_type"] == "password"
            assert form["username"] == "validator"
            return httpx.Response(200, json={"access_token": "abc123"})
        assert request.headers["Authorization"] == "Bearer abc123"
        return httpx.Response(200, json=EXPANSION)

    settings = _settings(
        TERMINOLOGY_TOKEN_URL="https://auth.example.org/token",
        TERMINOLOGY_USERNAME="validator",
        TERMINOLOGY_PASSWORD="secret",
    )
    resolver = HttpTerminologyResolver(settings, transport=httpx.MockTransport(handler), metrics=ValidatorMetrics())
    assert len(asyncio.run(resolver.lookup(GENDER_VS))) == 3


def test_http_resolver_fails_open_on_errors():
    metrics = ValidatorMetrics()

    def server_error(request):
        return httpx.Response(500, json={"resourceType": "OperationOutcome"})

    def not_an_expansion(request):
        return httpx.Response(200, json={"resourceType": "ValueSet"})

    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    for handler in (server_error, not_an_expansion, unreachable):
        resolver = HttpTerminologyResolver(_settings(), transport=httpx.MockTransport(handler), metrics=metrics)
        assert asyncio.run(resolver.lookup(GENDER_VS)) is None

    assert metrics.registry.get_sample_value("fhir_terminology_lookups_total", {"status": "error"}) == 3.0


def test_http_resolver_times_out():
    async def slow(request):
        await asyncio.sleep(1)
        return httpx.Response(200, json=EXPANSION)

    metrics = ValidatorMetrics()
    resolver = HttpTerminologyResolver(
        _settings(TERMINOLOGY_TIMEOUT=0.05), transport=httpx.MockTransport(slow), metrics=metrics
    )
    assert asyncio.run(resolver.lookup(GENDER_VS)) is None
    assert metrics.registry.get_sample_value("fhir_terminology_lookups_total", {"status": "timeout"}) == 1.0


def test_disabled_resolver_never_calls_out():
    def handler(request):
        raise AssertionError("no request expected")

    resolver = HttpTerminologyResolver(_settings(TERMINOLOGY_ENABLED=False), transport=httpx.MockTransport(handler))
    assert asyncio.run(resolver.lookup(GENDER_VS)) is None


class CountingResolver:
    def __init__(self, result):
        self.result = result
        self.calls = 0

    async def lookup(self, value_set_url):
        self.calls += 1
        await asyncio.sleep(0.01)
        return self.result


def test_cache_serves_repeat_lookups():
    inner = CountingResolver([Concept(code="male")])
    metrics = ValidatorMetrics()
    cached = CachedTerminologyResolver(inner, ttl=60, metrics=metrics)

    async def run():
        first = await cached.lookup(GENDER_VS)
        second = await cached.lookup(GENDER_VS)
        return first, second

    first, second = asyncio.run(run())
    assert first == second == [Concept(code="male")]
    assert inner.calls == 1
    assert metrics.registry.get_sample_value("fhir_terminology_cache_hits_total") == 1.0


def test_concurrent_misses_share_one_lookup():
    inner = CountingResolver([Concept(code="male")])
    cached = CachedTerminologyResolver(inner, ttl=60, metrics=ValidatorMetrics())

    async def run():
        return await asyncio.gather(*(cached.lookup(GENDER_VS) for _ in range(10)))

    results = asyncio.run(run())
    assert all(r == [Concept(code="male")] for r in results)
    assert inner.calls == 1


def test_unavailable_results_are_not_cached():
    inner = CountingResolver(None)
    cached = CachedTerminologyResolver(inner, ttl=60, metrics=ValidatorMetrics())

    async def run():
        await cached.lookup(GENDER_VS)
        await cached.lookup(GENDER_VS)

    asyncio.run(run())
    assert inner.calls == 2


def test_locks_are_released_after_each_lookup():
    inner = CountingResolver(None)
    cached = CachedTerminologyResolver(inner, ttl=60, metrics=ValidatorMetrics())

    asyncio.run(cached.lookup(GENDER_VS))
    assert cached._locks == {}

    # a second event loop gets its own lock
    asyncio.run(cached.lookup(GENDER_VS))
    assert cached._locks == {}
    assert inner.calls == 2


def test_cache_entries_expire():
    now = [100.0]
    backend = MemoryValueSetCache(clock=lambda: now[0])
    inner = CountingResolver([Concept(code="male")])
    cached = CachedTerminologyResolver(inner, ttl=60, backend=backend, metrics=ValidatorMetrics())

    async def run():
        await cached.lookup(GENDER_VS)
        assert len(backend) == 1
        now[0] += 61
        await cached.lookup(GENDER_VS)

    asyncio.run(run())
    assert inner.calls == 2


class FakeRedis:
    def __init__(self, fail=False):
        self.data = {}
        self.expiry = {}
        self.fail = fail

    async def get(self, key):
        if self.fail:
            raise RedisConnectionError("redis down")
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        if self.fail:
            raise RedisConnectionError("redis down")
        self.data[key] = value
        self.expiry[key] = ex


def test_redis_cache_round_trip():
    client = FakeRedis()
    cache = RedisValueSetCache(client)

    async def run():
        await cache.set(GENDER_VS, [Concept(code="male", display="Male")], 300)
        return await cache.get(GENDER_VS)

    assert asyncio.run(run()) == [Concept(code="male", display="Male")]
    key = next(iter(client.data))
    assert key.startswith("fhirval:valueset:")
    assert client.expiry[key] == 300
    assert json.loads(client.data[key]) == [{"code": "male", "display": "Male"}]


def test_redis_errors_degrade_to_a_miss():
    cache = RedisValueSetCache(FakeRedis(fail=True))

    async def run():
        await cache.set(GENDER_VS, [Concept(code="male")], 300)
        return await cache.get(GENDER_VS)

    assert asyncio.run(run()) is None


def test_static_resolver_and_factory():
    static = StaticTerminologyResolver({GENDER_VS: ["male", {"code": "female", "display": "Female"}]})
    assert [c.label() for c in asyncio.run(static.lookup(GENDER_VS))] == ["male", "female"]
    assert asyncio.run(static.lookup("http://example.org/unknown")) is None

    resolver = build_terminology_resolver(_settings())
    assert isinstance(resolver, CachedTerminologyResolver)
    assert isinstance(resolver.inner, HttpTerminologyResolver)
    assert isinstance(resolver.backend, MemoryValueSetCache)
