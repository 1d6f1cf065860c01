"""
One recommendation cycle, end to end:

    aggregate -> load per-user signals -> score -> business rules -> save

The pipeline owns the long-lived pieces (adapters, caches, rules) and is built
once per process by `build_default_pipeline`. Database access goes through the
request's session, off the event loop.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.schemas.candidate import SponsorTier, UnifiedCandidate
from app.schemas.recommendation import GenerateRecommendationsRequest, RecommendationItem
from app.services.aggregator import AggregationResult, CandidateAggregator
from app.services.business_rules import RankingRules, apply_business_rules
from app.services.cache import TTLCache
from app.services.categories import normalize_interests
from app.services.feedback_service import summarize_feedback
from app.services.geocoding import GeocodingService
from app.services.recommendation_store import RecommendationStore
from app.services.resurfacing import DEFAULT_POLICY, CooldownPolicy
from app.services.scoring import ScoredCandidate, ScoringContext, score_candidates
from app.services.sources.eventbrite import EventbriteAdapter
from app.services.sources.google_places import GooglePlacesAdapter
from app.services.sources.openstreetmap import OpenStreetMapAdapter
from app.utils.geo import miles_to_meters
from app.utils.instrumentation import log_event
from app.utils.timing import hours_between, stage_timer, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

RECENTLY_SHOWN_CACHE_TTL_SECONDS = 60


@dataclass
class PipelineResult:
    request_id: str
    items: List[ScoredCandidate]
    persisted: bool
    aggregation: AggregationResult
    timings: Dict[str, float] = field(default_factory=dict)

    def debug_info(self) -> Dict[str, object]:
        return {
            "rounds": self.aggregation.rounds,
            "final_radius_meters": self.aggregation.final_radius_meters,
            "failed_sources": self.aggregation.failed_sources,
            "timed_out": self.aggregation.timed_out,
            "candidate_count": len(self.aggregation.candidates),
            "timings_ms": self.timings,
        }


def to_item(scored: ScoredCandidate, debug: bool = False) -> RecommendationItem:
    candidate = scored.candidate
    return RecommendationItem(
        candidate_id=candidate.id,
        source=candidate.source,
        name=candidate.name,
        category=scored.category,
        address=candidate.address,
        latitude=candidate.coordinates.latitude if candidate.coordinates else None,
        longitude=candidate.coordinates.longitude if candidate.coordinates else None,
        distance_miles=scored.distance_miles,
        score=scored.final_score,
        rating=candidate.rating,
        rating_count=candidate.rating_count,
        price_level=candidate.price_level,
        photos=candidate.photos,
        is_event=candidate.is_event,
        event_starts_at=candidate.event_window.starts_at if candidate.event_window else None,
        sponsored=candidate.sponsored,
        why_recommended=scored.why_recommended,
        score_breakdown=scored.breakdown.to_dict() if debug else None,
    )


class RecommendationPipeline:
    def __init__(
        self,
        aggregator: CandidateAggregator,
        rules: Optional[RankingRules] = None,
        policy: CooldownPolicy = DEFAULT_POLICY,
        sponsorships: Optional[Mapping[str, SponsorTier]] = None,
        recently_shown_cache: Optional[TTLCache[Dict[str, datetime]]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.aggregator = aggregator
        self.rules = rules or RankingRules()
        self.policy = policy
        # candidate id -> tier, from the sponsorship collaborator
        self.sponsorships = dict(sponsorships or {})
        if recently_shown_cache is None:
            recently_shown_cache = TTLCache(ttl_seconds=RECENTLY_SHOWN_CACHE_TTL_SECONDS)
        self.recently_shown_cache = recently_shown_cache
        # Stamps stored records; the request clock only drives scoring
        self.clock = clock

    def purge_caches(self) -> int:
        purged = self.recently_shown_cache.purge_expired()
        geocoder = self.aggregator.geocoder
        if geocoder is not None:
            purged += geocoder.cache.purge_expired()
        return purged

    def _mark_sponsored(self, candidates: List[UnifiedCandidate]) -> List[UnifiedCandidate]:
        marked = []
        for candidate in candidates:
            tier = self.sponsorships.get(candidate.id)
            if tier is not None and tier != SponsorTier.ORGANIC:
                candidate = candidate.model_copy(update={"sponsored": True, "sponsor_tier": tier})
            marked.append(candidate)
        return marked

    def _recently_shown(self, store: RecommendationStore, user_id: str) -> Dict[str, datetime]:
        cached = self.recently_shown_cache.get(user_id)
        if cached is not None:
            return cached
        shown = store.recently_shown(user_id, hours_back=self.policy.recency_horizon_hours)
        self.recently_shown_cache.set(user_id, shown)
        return shown

    # The helpers below hit the database and run in the threadpool, off the event loop

    def _load_history(self, store: RecommendationStore, user_id: str) -> Tuple[Set[str], Dict[str, datetime]]:
        try:
            return store.blocked_ids(user_id), self._recently_shown(store, user_id)
        except SQLAlchemyError as e:
            # Scoring still works without history, it just cannot demote repeats
            logger.warning("Failed to load history for user_id=%s: %s", user_id, str(e), exc_info=True)
            store.db.rollback()
            return set(), {}

    def _persist(self, store: RecommendationStore, user_id: str, ranked: List[ScoredCandidate], request_id: str) -> bool:
        try:
            store.save(user_id, ranked)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to persist recommendations: user_id=%s, request_id=%s, error=%s",
                user_id,
                request_id,
                str(e),
                exc_info=True,
            )
            return False
        return True

    async def generate(
        self,
        db: Session,
        request: GenerateRecommendationsRequest,
        request_id: Optional[str] = None,
    ) -> PipelineResult:
        request_id = request_id or str(uuid.uuid4())
        profile = request.profile
        user_id = profile.id
        local_now = request.now or self.clock()
        now = to_naive_utc(local_now)
        timings: Dict[str, float] = {}
        store = RecommendationStore(db, policy=self.policy, clock=self.clock)

        radius = request.radius_meters or int(miles_to_meters(profile.max_distance_miles))
        hints = normalize_interests(request.category_hints or profile.interests)

        with stage_timer("aggregate", timings):
            aggregation = await self.aggregator.aggregate(
                center=request.location,
                radius_meters=radius,
                interest_hints=hints,
            )
        if not aggregation.candidates:
            logger.info("No candidates for user_id=%s (failed sources: %s)", user_id, aggregation.failed_sources)
            return PipelineResult(
                request_id=request_id,
                items=[],
                persisted=True,
                aggregation=aggregation,
                timings=timings,
            )

        with stage_timer("signals", timings):
            blocked, shown_at = await run_in_threadpool(self._load_history, store, user_id)
            candidates = [c for c in self._mark_sponsored(aggregation.candidates) if c.id not in blocked]
            feedback = await run_in_threadpool(summarize_feedback, db, user_id, [c.id for c in candidates])

        stored_now = self.clock()
        context = ScoringContext(
            now=now,
            local_now=local_now,
            user_location=request.location,
            recently_shown={cid: max(0.0, hours_between(at, stored_now)) for cid, at in shown_at.items()},
            commitments=request.commitments,
            feedback=feedback,
            signals=request.signals,
            policy=self.policy,
        )
        with stage_timer("score", timings):
            scored = [s for s in score_candidates(candidates, profile, context) if not s.excluded]
        with stage_timer("rank", timings):
            ranked = apply_business_rules(scored, request.max_results, self.rules)

        with stage_timer("save", timings):
            persisted = await run_in_threadpool(self._persist, store, user_id, ranked, request_id)
        self.recently_shown_cache.delete(user_id)

        logger.info(
            "Generated %d recommendation(s) for user_id=%s from %d candidate(s) in %d round(s)",
            len(ranked),
            user_id,
            len(aggregation.candidates),
            aggregation.rounds,
        )
        await run_in_threadpool(
            log_event,
            db,
            "recommendations_generated",
            user_id=user_id,
            properties={
                "count": len(ranked),
                "candidate_ids": [s.id for s in ranked],
                "candidate_pool": len(aggregation.candidates),
                "rounds": aggregation.rounds,
                "failed_sources": aggregation.failed_sources,
                "persisted": persisted,
            },
            request_id=request_id,
        )
        return PipelineResult(
            request_id=request_id,
            items=ranked,
            persisted=persisted,
            aggregation=aggregation,
            timings=timings,
        )


def build_default_pipeline() -> RecommendationPipeline:
    """Wire adapters, geocoding and rules from Settings."""
    adapters = [
        GooglePlacesAdapter(settings.GOOGLE_PLACES_API_KEY, timeout=settings.ADAPTER_TIMEOUT_SECONDS),
        EventbriteAdapter(settings.EVENTBRITE_API_TOKEN, timeout=settings.ADAPTER_TIMEOUT_SECONDS),
        OpenStreetMapAdapter(
            settings.OVERPASS_API_URL,
            enabled=settings.ENABLE_OVERPASS,
            timeout=settings.ADAPTER_TIMEOUT_SECONDS,
        ),
    ]
    geocoder = GeocodingService(
        geocoders=[],
        cache=TTLCache(ttl_seconds=settings.GEOCODE_CACHE_TTL_SECONDS),
        concurrency=settings.GEOCODE_CONCURRENCY,
    )
    aggregator = CandidateAggregator(adapters, geocoder=geocoder)
    return RecommendationPipeline(aggregator, rules=RankingRules.from_settings())
