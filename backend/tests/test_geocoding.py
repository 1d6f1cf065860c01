"""Tests for fallback chains and geocoding enrichment."""
import asyncio

from app.services.cache import TTLCache
from app.services.fallback import Strategy, resolve_with_fallback
from app.services.geocoding import GeocodingService
from factories import ORIGIN, FakeGeocoder, make_candidate, north_of


def test_fallback_skips_failures_and_misses():
    calls = []

    async def broken(key):
        calls.append("broken")
        raise RuntimeError("provider down")

    async def miss(key):
        calls.append("miss")
        return None

    async def hit(key):
        calls.append("hit")
        return f"value for {key}"

    async def never(key):
        calls.append("never")
        return "too late"

    resolved = asyncio.run(
        resolve_with_fallback(
            "k",
            [Strategy("broken", broken), Strategy("miss", miss), Strategy("hit", hit), Strategy("never", never)],
        )
    )

    assert resolved.value == "value for k"
    assert resolved.strategy == "hit"
    assert calls == ["broken", "miss", "hit"]


def test_fallback_returns_none_when_every_strategy_misses():
    async def miss(key):
        return None

    assert asyncio.run(resolve_with_fallback("k", [Strategy("a", miss), Strategy("b", miss)])) is None
    assert asyncio.run(resolve_with_fallback("k", [])) is None


def test_geocoder_results_are_cached():
    place = north_of(ORIGIN, 1)
    geocoder = FakeGeocoder({"1 Main St": place})
    service = GeocodingService([geocoder], cache=TTLCache(ttl_seconds=60))

    first = asyncio.run(service.resolve("1 Main St"))
    second = asyncio.run(service.resolve("  1 main st "))

    assert first == second == place
    assert geocoder.calls == ["1 Main St"]


def test_secondary_geocoder_used_when_primary_misses():
    place = north_of(ORIGIN, 2)
    primary = FakeGeocoder({}, name="primary")
    secondary = FakeGeocoder({"2 Side St": place}, name="secondary")
    service = GeocodingService([primary, secondary])

    assert asyncio.run(service.resolve("2 Side St")) == place
    assert primary.calls == ["2 Side St"]
    assert secondary.calls == ["2 Side St"]


def test_blank_address_is_not_looked_up():
    geocoder = FakeGeocoder({})
    service = GeocodingService([geocoder])

    assert asyncio.run(service.resolve("   ")) is None
    assert geocoder.calls == []


def test_enrich_is_bounded_and_keeps_order():
    known = {f"{i} Main St": north_of(ORIGIN, i / 10) for i in range(6)}
    geocoder = FakeGeocoder(known, delay=0.01)
    service = GeocodingService([geocoder], concurrency=2)
    candidates = [make_candidate(f"p:{i}", miles=None, address=f"{i} Main St") for i in range(6)]
    candidates.append(make_candidate("p:located", miles=0.5))

    enriched = asyncio.run(service.enrich(candidates))

    assert [c.id for c in enriched] == [c.id for c in candidates]
    assert all(c.has_coordinates for c in enriched)
    assert geocoder.max_in_flight <= 2
    assert len(geocoder.calls) == 6
