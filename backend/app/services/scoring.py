"""
Candidate scoring.

Every candidate gets a ScoreBreakdown: one number per component, summed and
clamped into [0, SCORE_CEILING]. Components are independent functions so each
can be reasoned about (and tested) on its own:

    base            interest match + rating + review volume         (cap 50)
    location        distance, home/work proximity, commitments      (cap 25)
    time            preferred windows + category/time affinity      (cap 15)
    feedback        favourites, dislikes, this user's votes         (0..15)
    collaborative   other users' votes                              (0..10)
    event_urgency   how soon an event starts; huge negative if over
    data_boosts     visits, past ratings, likes, habits, budget
    recency         penalty for having been shown recently
    sponsored       boost for sponsored candidates only
"""
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence

from app.schemas.candidate import Coordinates, UnifiedCandidate
from app.schemas.profile import PersonalSignals, UpcomingCommitment, UserProfile
from app.services.categories import normalize_interest, normalize_interests, resolve_category, time_affinity
from app.services.resurfacing import DEFAULT_POLICY, CooldownPolicy, recency_penalty
from app.utils.geo import haversine_miles, time_of_day
from app.utils.timing import hours_between, to_naive_utc

logger = logging.getLogger(__name__)

SCORE_CEILING = 150.0

# Component caps
BASE_CAP = 50.0
LOCATION_CAP = 25.0
TIME_CAP = 15.0
FEEDBACK_MAX = 15.0
FEEDBACK_NEUTRAL = 5.0
COLLABORATIVE_MAX = 10.0

# Base
TOP_INTEREST_POINTS = 30.0
OTHER_INTEREST_POINTS = 20.0
NO_MATCH_POINTS = 10.0
NO_MATCH_POINTS_EXPLORE = 15.0
TOP_INTEREST_COUNT = 3
RATING_BANDS = ((4.5, 12.0), (4.0, 8.0), (3.5, 4.0))
REVIEW_BANDS = ((500, 8.0), (200, 5.0), (50, 2.0))

# Location (miles)
DISTANCE_BANDS = ((0.5, 20.0), (1.0, 15.0))
WITHIN_RANGE_POINTS = 10.0
OUT_OF_RANGE_DECAY_PER_MILE = 2.0
NEARBY_ANCHOR_MILES = 1.0
ANCHOR_POINTS = 5.0
COMMITMENT_BANDS = ((2.0, 8.0), (6.0, 5.0), (24.0, 2.0))  # hours until start -> bonus
UNKNOWN_DISTANCE_POINTS = 10.0

# Time
PREFERRED_WINDOW_POINTS = 5.0
AFFINITY_POINTS = {"perfect": 10.0, "good": 5.0, "acceptable": 2.0}

# Feedback
CATEGORY_PREFERENCE_POINTS = 5.0
VOTE_POINTS = 3.0
COLLABORATIVE_FULL_CONFIDENCE_VOTES = 5

# Events
EVENT_URGENCY_BANDS = ((6.0, 20.0), (24.0, 15.0), (72.0, 10.0), (168.0, 5.0))
EVENT_PASSED_PENALTY = -200.0

# Data-source boosts
VISIT_POINTS = 3.0
VISIT_POINTS_MAX = 9.0
LIKED_RATING_POINTS = 8.0
DISLIKED_RATING_POINTS = -8.0
EXTERNAL_LIKE_POINTS = 6.0
SCHEDULE_PATTERN_POINTS = 5.0
BUDGET_MATCH_POINTS = 4.0
OVER_BUDGET_POINTS = -4.0

# Sponsorship
SPONSOR_BOOST_RATE = 0.3
SPONSOR_FULL_BOOST_THRESHOLD = 40.0
SPONSOR_SMALL_BOOST_CAP = 10.0


@dataclass
class FeedbackSummary:
    """Vote counts on one candidate: this user's and everyone else's."""
    user_up: int = 0
    user_down: int = 0
    others_up: int = 0
    others_down: int = 0


@dataclass
class ScoringContext:
    now: datetime  # naive UTC
    user_location: Coordinates
    local_now: Optional[datetime] = None  # user's wall clock, for time-of-day; defaults to now
    recently_shown: Mapping[str, float] = field(default_factory=dict)  # candidate id -> hours since shown
    commitments: Sequence[UpcomingCommitment] = ()
    feedback: Mapping[str, FeedbackSummary] = field(default_factory=dict)
    signals: Optional[PersonalSignals] = None
    policy: CooldownPolicy = DEFAULT_POLICY

    @property
    def part_of_day(self) -> str:
        return time_of_day(self.local_now or self.now)


@dataclass
class ScoreBreakdown:
    base: float = 0.0
    location: float = 0.0
    time: float = 0.0
    feedback: float = FEEDBACK_NEUTRAL
    collaborative: float = 0.0
    event_urgency: float = 0.0
    data_boosts: Dict[str, float] = field(default_factory=dict)
    recency: float = 0.0
    sponsored: float = 0.0
    final: float = 0.0

    @property
    def pre_boost_total(self) -> float:
        return (
            self.base
            + self.location
            + self.time
            + self.feedback
            + self.collaborative
            + self.event_urgency
            + sum(self.data_boosts.values())
        )

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass
class ScoredCandidate:
    candidate: UnifiedCandidate
    category: str
    distance_miles: Optional[float]
    breakdown: ScoreBreakdown
    why_recommended: str = ""

    @property
    def id(self) -> str:
        return self.candidate.id

    @property
    def final_score(self) -> float:
        return self.breakdown.final

    @property
    def confidence(self) -> float:
        return min(1.0, max(0.0, self.breakdown.final / SCORE_CEILING))

    @property
    def is_event(self) -> bool:
        return self.candidate.is_event

    @property
    def sponsored(self) -> bool:
        return self.candidate.sponsored

    @property
    def excluded(self) -> bool:
        """Events that already started or ended are never recommended."""
        return self.breakdown.event_urgency < 0


def _band(value: float, bands, default: float = 0.0) -> float:
    """First (threshold, points) band with value >= threshold."""
    for threshold, points in bands:
        if value >= threshold:
            return points
    return default


def _upper_band(value: float, bands, default: float = 0.0) -> float:
    """First (limit, points) band with value <= limit."""
    for limit, points in bands:
        if value <= limit:
            return points
    return default


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def score_base(candidate: UnifiedCandidate, category: str, profile: UserProfile) -> float:
    interests = normalize_interests(profile.interests)
    favorites = normalize_interests(profile.favorite_categories)
    top = set(interests[:TOP_INTEREST_COUNT]) | set(favorites)

    if category in top:
        points = TOP_INTEREST_POINTS
    elif category in interests:
        points = OTHER_INTEREST_POINTS
    elif profile.discovery_mode == "explore":
        points = NO_MATCH_POINTS_EXPLORE
    else:
        points = NO_MATCH_POINTS

    if candidate.rating is not None:
        points += _band(candidate.rating, RATING_BANDS)
    points += _band(candidate.rating_count, REVIEW_BANDS)
    return min(points, BASE_CAP)


def score_distance(distance_miles: Optional[float], max_distance_miles: float) -> float:
    if distance_miles is None:
        return UNKNOWN_DISTANCE_POINTS
    points = _upper_band(distance_miles, DISTANCE_BANDS, default=-1.0)
    if points >= 0:
        return points
    if distance_miles <= max_distance_miles:
        return WITHIN_RANGE_POINTS
    return max(0.0, WITHIN_RANGE_POINTS - OUT_OF_RANGE_DECAY_PER_MILE * (distance_miles - max_distance_miles))


def score_commitments(coordinates: Optional[Coordinates], commitments: Sequence[UpcomingCommitment], now: datetime) -> float:
    """Best bonus for being near an upcoming commitment."""
    if coordinates is None:
        return 0.0
    best = 0.0
    for commitment in commitments:
        hours_until = hours_between(now, commitment.starts_at)
        if hours_until < 0:
            continue
        if haversine_miles(coordinates, commitment.location) > NEARBY_ANCHOR_MILES:
            continue
        best = max(best, _upper_band(hours_until, COMMITMENT_BANDS))
    return best


def score_location(
    candidate: UnifiedCandidate,
    distance_miles: Optional[float],
    profile: UserProfile,
    context: ScoringContext,
) -> float:
    points = score_distance(distance_miles, profile.max_distance_miles)
    if candidate.coordinates is not None:
        for anchor in (profile.home_location, profile.work_location):
            if anchor is not None and haversine_miles(candidate.coordinates, anchor) <= NEARBY_ANCHOR_MILES:
                points += ANCHOR_POINTS
    points += score_commitments(candidate.coordinates, context.commitments, context.now)
    return min(points, LOCATION_CAP)


def score_time(category: str, profile: UserProfile, part_of_day: str) -> float:
    points = 0.0
    if part_of_day in profile.preferred_time_windows:
        points += PREFERRED_WINDOW_POINTS
    points += AFFINITY_POINTS[time_affinity(category, part_of_day)]
    return min(points, TIME_CAP)


def score_feedback(category: str, profile: UserProfile, summary: Optional[FeedbackSummary]) -> float:
    points = FEEDBACK_NEUTRAL
    if category in normalize_interests(profile.favorite_categories):
        points += CATEGORY_PREFERENCE_POINTS
    if category in normalize_interests(profile.disliked_categories):
        points -= CATEGORY_PREFERENCE_POINTS
    if summary is not None:
        points += VOTE_POINTS * summary.user_up
        points -= VOTE_POINTS * summary.user_down
    return _clamp(points, 0.0, FEEDBACK_MAX)


def score_collaborative(summary: Optional[FeedbackSummary]) -> float:
    if summary is None:
        return 0.0
    total = summary.others_up + summary.others_down
    if total == 0:
        return 0.0
    net_ratio = (summary.others_up - summary.others_down) / total
    confidence = min(1.0, total / COLLABORATIVE_FULL_CONFIDENCE_VOTES)
    return round(_clamp(COLLABORATIVE_MAX * net_ratio * confidence, 0.0, COLLABORATIVE_MAX), 2)


def score_event_urgency(candidate: UnifiedCandidate, now: datetime) -> float:
    window = candidate.event_window
    if window is None:
        return 0.0
    if window.ends_at is not None and to_naive_utc(window.ends_at) <= now:
        return EVENT_PASSED_PENALTY
    hours_until = hours_between(now, window.starts_at)
    if hours_until < 0:
        return EVENT_PASSED_PENALTY
    return _upper_band(hours_until, EVENT_URGENCY_BANDS)


def score_data_boosts(
    candidate: UnifiedCandidate,
    category: str,
    profile: UserProfile,
    context: ScoringContext,
) -> Dict[str, float]:
    """Only sources that actually have data for this candidate show up in the result."""
    boosts: Dict[str, float] = {}
    signals = context.signals

    if signals is not None:
        visits = signals.visit_counts.get(candidate.id, 0)
        if visits > 0:
            boosts["prior_visits"] = min(VISIT_POINTS_MAX, VISIT_POINTS * visits)

        past_rating = signals.past_ratings.get(candidate.id)
        if past_rating is not None:
            if past_rating >= 4:
                boosts["prior_rating"] = LIKED_RATING_POINTS
            elif past_rating <= 2:
                boosts["prior_rating"] = DISLIKED_RATING_POINTS
            else:
                boosts["prior_rating"] = 0.0

        liked = {like.strip().lower() for like in signals.external_likes}
        if liked and (candidate.name.strip().lower() in liked or category in {normalize_interest(l) for l in liked}):
            boosts["external_likes"] = EXTERNAL_LIKE_POINTS

        local_now = context.local_now or context.now
        for pattern in signals.schedule_patterns:
            if (
                normalize_interest(pattern.category) == category
                and pattern.time_of_day == context.part_of_day
                and (pattern.weekday is None or pattern.weekday == local_now.weekday())
            ):
                boosts["schedule_pattern"] = SCHEDULE_PATTERN_POINTS
                break

    # 0 is free (or a free event), which is always within budget
    if candidate.price_level is not None:
        if candidate.price_level <= profile.budget_level:
            boosts["price_preference"] = BUDGET_MATCH_POINTS
        else:
            boosts["price_preference"] = OVER_BUDGET_POINTS

    return boosts


def sponsored_boost(candidate: UnifiedCandidate, pre_boost_total: float) -> float:
    if not candidate.sponsored:
        return 0.0
    base = max(0.0, pre_boost_total)
    boost = SPONSOR_BOOST_RATE * base
    if base < SPONSOR_FULL_BOOST_THRESHOLD:
        boost = min(SPONSOR_SMALL_BOOST_CAP, boost)
    return round(boost, 2)


def build_why_recommended(scored: "ScoredCandidate", profile: UserProfile, part_of_day: str) -> str:
    """Short human-readable reasons, most specific first."""
    reasons: List[str] = []
    breakdown = scored.breakdown
    candidate = scored.candidate

    if candidate.is_event and breakdown.event_urgency >= 15:
        reasons.append("Happening soon")
    if scored.distance_miles is not None:
        if scored.distance_miles <= 0.5:
            reasons.append("Right around the corner")
        elif scored.distance_miles <= profile.max_distance_miles:
            reasons.append(f"{scored.distance_miles:.1f} mi away")

    interests = normalize_interests(profile.interests) + normalize_interests(profile.favorite_categories)
    if scored.category in interests:
        reasons.append(f"Matches your interest in {scored.category.replace('_', ' ')}")
    elif profile.discovery_mode == "explore":
        reasons.append("Something new to explore")

    if time_affinity(scored.category, part_of_day) == "perfect":
        reasons.append(f"Great for the {part_of_day}")
    if candidate.rating is not None and candidate.rating >= 4.5 and candidate.rating_count >= 50:
        reasons.append(f"Highly rated ({candidate.rating:.1f})")
    if breakdown.data_boosts.get("prior_visits"):
        reasons.append("One of your regular spots")
    if breakdown.data_boosts.get("schedule_pattern"):
        reasons.append("Fits your routine")

    if not reasons:
        return "Recommended for you"
    return " · ".join(reasons[:3])


def score_candidate(candidate: UnifiedCandidate, profile: UserProfile, context: ScoringContext) -> ScoredCandidate:
    category = resolve_category(candidate.category_tags)
    distance = (
        round(haversine_miles(context.user_location, candidate.coordinates), 2)
        if candidate.coordinates is not None
        else None
    )

    breakdown = ScoreBreakdown(
        base=score_base(candidate, category, profile),
        location=score_location(candidate, distance, profile, context),
        time=score_time(category, profile, context.part_of_day),
        feedback=score_feedback(category, profile, context.feedback.get(candidate.id)),
        collaborative=score_collaborative(context.feedback.get(candidate.id)),
        event_urgency=score_event_urgency(candidate, context.now),
        data_boosts=score_data_boosts(candidate, category, profile, context),
        recency=recency_penalty(context.recently_shown.get(candidate.id), context.policy),
    )
    breakdown.sponsored = sponsored_boost(candidate, breakdown.pre_boost_total)
    total = breakdown.pre_boost_total + breakdown.recency + breakdown.sponsored
    breakdown.final = round(_clamp(total, 0.0, SCORE_CEILING), 2)

    scored = ScoredCandidate(candidate=candidate, category=category, distance_miles=distance, breakdown=breakdown)
    scored.why_recommended = build_why_recommended(scored, profile, context.part_of_day)
    return scored


def score_candidates(
    candidates: Sequence[UnifiedCandidate],
    profile: UserProfile,
    context: ScoringContext,
) -> List[ScoredCandidate]:
    """Score every candidate, highest first (ties broken by id for stable output)."""
    scored = [score_candidate(candidate, profile, context) for candidate in candidates]
    scored.sort(key=lambda s: (-s.final_score, s.id))
    logger.debug(
        "Scored %d candidate(s), top=%s",
        len(scored),
        [(s.id, s.final_score) for s in scored[:5]],
    )
    return scored
