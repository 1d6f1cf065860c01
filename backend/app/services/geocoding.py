"""
Address -> coordinates enrichment for candidates that arrive without a position.

Providers are pluggable through the `Geocoder` protocol and tried in order
behind a cache. Lookups for a batch run concurrently, bounded by a semaphore so
a large batch cannot flood the provider.
"""
import asyncio
import logging
from typing import List, Optional, Protocol, Sequence

from app.schemas.candidate import Coordinates, UnifiedCandidate
from app.services.cache import TTLCache
from app.services.fallback import Strategy, resolve_with_fallback

logger = logging.getLogger(__name__)


class Geocoder(Protocol):
    name: str

    async def geocode(self, address: str) -> Optional[Coordinates]:
        ...


def _cache_key(address: str) -> str:
    return " ".join(address.lower().split())


class GeocodingService:
    def __init__(
        self,
        geocoders: Sequence[Geocoder] = (),
        cache: Optional[TTLCache[Coordinates]] = None,
        concurrency: int = 5,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.geocoders = list(geocoders)
        self.cache = cache if cache is not None else TTLCache(ttl_seconds=7 * 24 * 3600)
        self.concurrency = concurrency

    def _strategies(self) -> List[Strategy[str, Coordinates]]:
        async def from_cache(address: str) -> Optional[Coordinates]:
            return self.cache.get(_cache_key(address))

        strategies = [Strategy(name="cache", resolve=from_cache)]
        for geocoder in self.geocoders:
            strategies.append(Strategy(name=geocoder.name, resolve=geocoder.geocode))
        return strategies

    async def resolve(self, address: str) -> Optional[Coordinates]:
        if not address or not address.strip():
            return None
        resolved = await resolve_with_fallback(address, self._strategies())
        if resolved is None:
            logger.debug("Geocoding miss: address=%s", address)
            return None
        if resolved.strategy != "cache":
            self.cache.set(_cache_key(address), resolved.value)
        return resolved.value

    async def enrich(self, candidates: Sequence[UnifiedCandidate]) -> List[UnifiedCandidate]:
        """
        Fill in missing coordinates.

        Returns the candidates in their original order. Candidates that still
        have no coordinates after lookup are returned unchanged; callers drop
        them.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def enrich_one(candidate: UnifiedCandidate) -> UnifiedCandidate:
            if candidate.has_coordinates:
                return candidate
            async with semaphore:
                coordinates = await self.resolve(candidate.address)
            if coordinates is None:
                return candidate
            return candidate.model_copy(update={"coordinates": coordinates})

        return list(await asyncio.gather(*(enrich_one(c) for c in candidates)))
