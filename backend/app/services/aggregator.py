"""
Candidate aggregation.

Fans one geographic query out to every available source adapter, merges the
results and widens the radius when too few unique candidates came back.

Failure model:
- An adapter that raises or exceeds its timeout is logged and counted as a
  failed source; the others carry on.
- When the overall deadline passes, whatever was collected so far is returned.
- Nothing here raises for "no results"; the worst case is an empty list.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from app.core.config import settings
from app.schemas.candidate import Coordinates, UnifiedCandidate
from app.services.geocoding import GeocodingService
from app.services.sources.base import SourceAdapter

logger = logging.getLogger(__name__)

DEFAULT_PER_SOURCE_LIMIT = 20


@dataclass
class AggregationResult:
    candidates: List[UnifiedCandidate] = field(default_factory=list)
    rounds: int = 0
    final_radius_meters: int = 0
    failed_sources: List[str] = field(default_factory=list)
    timed_out: bool = False


class CandidateAggregator:
    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        geocoder: Optional[GeocodingService] = None,
        adapter_timeout: float = settings.ADAPTER_TIMEOUT_SECONDS,
        overall_timeout: float = settings.AGGREGATION_TIMEOUT_SECONDS,
        target_count: int = settings.TARGET_CANDIDATE_COUNT,
        max_radius_meters: int = settings.MAX_SEARCH_RADIUS_METERS,
        max_expansion_rounds: int = 3,
        expansion_step: float = 0.5,
    ):
        self.adapters = list(adapters)
        self.geocoder = geocoder
        self.adapter_timeout = adapter_timeout
        self.overall_timeout = overall_timeout
        self.target_count = target_count
        self.max_radius_meters = max_radius_meters
        self.max_expansion_rounds = max_expansion_rounds
        self.expansion_step = expansion_step

    def available_adapters(self) -> List[SourceAdapter]:
        available = []
        for adapter in self.adapters:
            try:
                if adapter.is_available():
                    available.append(adapter)
                else:
                    logger.info("Source %s unavailable (not configured), skipping", adapter.name)
            except Exception as e:
                logger.warning("Source %s availability check failed: %s", adapter.name, str(e), exc_info=True)
        return available

    async def aggregate(
        self,
        center: Coordinates,
        radius_meters: int,
        interest_hints: Sequence[str] = (),
        limit: int = DEFAULT_PER_SOURCE_LIMIT,
    ) -> AggregationResult:
        adapters = self.available_adapters()
        result = AggregationResult(final_radius_meters=radius_meters)
        if not adapters:
            logger.warning("No source adapters available, returning no candidates")
            return result

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.overall_timeout
        merged: Dict[str, UnifiedCandidate] = {}
        failed: List[str] = []

        def merge(batch: List[UnifiedCandidate]) -> int:
            added = 0
            for candidate in batch:
                if candidate.id not in merged:
                    merged[candidate.id] = candidate
                    added += 1
            return added

        current_radius = radius_meters
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                result.timed_out = True
                break

            batch, round_failed, round_timed_out = await self._query_round(
                adapters, center, current_radius, interest_hints, limit, remaining
            )
            batch, located_in_time = await self._locate(
                [c for c in batch if c.id not in merged],
                deadline - loop.time(),
            )
            round_timed_out = round_timed_out or not located_in_time
            result.rounds += 1
            result.final_radius_meters = current_radius
            for name in round_failed:
                if name not in failed:
                    failed.append(name)
            added = merge(batch)
            logger.info(
                "Aggregation round %d: radius=%dm, new=%d, total=%d",
                result.rounds,
                current_radius,
                added,
                len(merged),
            )

            if round_timed_out:
                result.timed_out = True
                break
            if len(merged) >= self.target_count:
                break
            attempt = result.rounds  # expansion attempts made so far + 1
            if attempt > self.max_expansion_rounds or current_radius >= self.max_radius_meters:
                break
            if attempt > 1 and added == 0:
                break
            current_radius = int(min(radius_meters * (1 + self.expansion_step * attempt), self.max_radius_meters))

        result.candidates = list(merged.values())
        result.failed_sources = failed
        if len(failed) == len(adapters):
            logger.warning("All %d source adapters failed", len(adapters))
        return result

    async def _query_round(
        self,
        adapters: List[SourceAdapter],
        center: Coordinates,
        radius_meters: int,
        interest_hints: Sequence[str],
        limit: int,
        remaining: float,
    ) -> Tuple[List[UnifiedCandidate], List[str], bool]:
        tasks = [
            asyncio.create_task(self._run_adapter(adapter, center, radius_meters, interest_hints, limit))
            for adapter in adapters
        ]
        done, pending = await asyncio.wait(tasks, timeout=remaining)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        batch: List[UnifiedCandidate] = []
        failed: List[str] = []
        # Merge in adapter order so "first wins" does not depend on network timing
        for adapter, task in zip(adapters, tasks):
            if task in pending:
                logger.warning("Source %s still running at aggregation deadline, cancelled", adapter.name)
                failed.append(adapter.name)
                continue
            candidates = task.result()
            if candidates is None:
                failed.append(adapter.name)
                continue
            batch.extend(candidates)
        return batch, failed, bool(pending)

    async def _run_adapter(
        self,
        adapter: SourceAdapter,
        center: Coordinates,
        radius_meters: int,
        interest_hints: Sequence[str],
        limit: int,
    ) -> Optional[List[UnifiedCandidate]]:
        """Return the adapter's candidates, or None when the source failed."""
        try:
            candidates = await asyncio.wait_for(
                adapter.search(center, radius_meters, list(interest_hints), limit),
                timeout=self.adapter_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Source %s timed out after %.1fs", adapter.name, self.adapter_timeout)
            return None
        except Exception as e:
            logger.warning("Source %s failed: %s", adapter.name, str(e), exc_info=True)
            return None
        return list(candidates or [])

    async def _locate(
        self,
        candidates: List[UnifiedCandidate],
        remaining: float,
    ) -> Tuple[List[UnifiedCandidate], bool]:
        """
        Geocode candidates that arrived without coordinates and drop the ones
        that stay unplaced.

        Runs within what is left of the aggregation deadline. If geocoding
        overruns it, the candidates that already had coordinates are kept and
        the second value is False.
        """
        in_time = True
        if self.geocoder is not None and any(not c.has_coordinates for c in candidates):
            try:
                candidates = await asyncio.wait_for(self.geocoder.enrich(candidates), timeout=max(remaining, 0))
            except asyncio.TimeoutError:
                logger.warning("Geocoding still running at aggregation deadline, skipping unplaced candidates")
                in_time = False

        usable = [c for c in candidates if c.has_coordinates]
        if len(usable) < len(candidates):
            logger.info("Dropped %d candidate(s) without coordinates", len(candidates) - len(usable))
        return usable, in_time
