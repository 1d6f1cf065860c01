"""
Cooldown and resurfacing rules.

Pure functions over a record's status and timestamps. The recommendation store
uses them to decide what a load may return; the scorer uses the recency bands
to push recently shown candidates down.

Cooldowns:
    declined        eligible again 3 days after it was last shown
    viewed/expired  eligible again 7 days after it was last shown
    accepted        never (terminal)
    not_interested  never (terminal; the user blocked it)
"""
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Optional, Tuple

from app.models import RecommendationStatus

# Hours since last shown -> score penalty. Checked in order, first band that fits wins.
DEFAULT_RECENCY_BANDS: Tuple[Tuple[float, float], ...] = (
    (6, -40.0),
    (12, -30.0),
    (24, -25.0),
    (48, -12.0),
    (72, -5.0),
)

FRESHNESS_BY_TIER: Dict[str, timedelta] = {
    "free": timedelta(hours=24),
    "plus": timedelta(hours=12),
    "premium": timedelta(hours=6),
}

TERMINAL_STATUSES: FrozenSet[RecommendationStatus] = frozenset(
    {RecommendationStatus.ACCEPTED, RecommendationStatus.NOT_INTERESTED}
)

# Allowed user-driven moves. Saving a candidate again (pending) and block/unblock
# are handled by the store and do not go through this table.
ALLOWED_TRANSITIONS: Dict[RecommendationStatus, FrozenSet[RecommendationStatus]] = {
    RecommendationStatus.PENDING: frozenset(
        {
            RecommendationStatus.VIEWED,
            RecommendationStatus.ACCEPTED,
            RecommendationStatus.DECLINED,
            RecommendationStatus.NOT_INTERESTED,
            RecommendationStatus.EXPIRED,
        }
    ),
    RecommendationStatus.VIEWED: frozenset(
        {
            RecommendationStatus.ACCEPTED,
            RecommendationStatus.DECLINED,
            RecommendationStatus.NOT_INTERESTED,
            RecommendationStatus.EXPIRED,
        }
    ),
    # Resurfaced records can be acted on again
    RecommendationStatus.DECLINED: frozenset(
        {
            RecommendationStatus.VIEWED,
            RecommendationStatus.ACCEPTED,
            RecommendationStatus.NOT_INTERESTED,
        }
    ),
    RecommendationStatus.EXPIRED: frozenset(
        {
            RecommendationStatus.VIEWED,
            RecommendationStatus.ACCEPTED,
            RecommendationStatus.DECLINED,
            RecommendationStatus.NOT_INTERESTED,
        }
    ),
    RecommendationStatus.ACCEPTED: frozenset(),
    RecommendationStatus.NOT_INTERESTED: frozenset(),
}


@dataclass(frozen=True)
class CooldownPolicy:
    declined_cooldown: timedelta = timedelta(days=3)
    ignored_cooldown: timedelta = timedelta(days=7)  # viewed or expired without a response
    freshness_window: timedelta = timedelta(hours=24)
    record_lifetime: timedelta = timedelta(days=7)
    recency_bands: Tuple[Tuple[float, float], ...] = DEFAULT_RECENCY_BANDS

    @property
    def recency_horizon_hours(self) -> float:
        return max(hours for hours, _ in self.recency_bands) if self.recency_bands else 0.0

    def for_tier(self, tier: Optional[str]) -> "CooldownPolicy":
        """Same policy with the freshness window of the user's subscription tier."""
        if not tier or tier not in FRESHNESS_BY_TIER:
            return self
        return replace(self, freshness_window=FRESHNESS_BY_TIER[tier])


DEFAULT_POLICY = CooldownPolicy()


def recency_penalty(hours_since_shown: Optional[float], policy: CooldownPolicy = DEFAULT_POLICY) -> float:
    """Penalty for a candidate shown `hours_since_shown` ago; 0 when never shown or long ago."""
    if hours_since_shown is None:
        return 0.0
    for upper_hours, penalty in policy.recency_bands:
        if hours_since_shown < upper_hours:
            return penalty
    return 0.0


def can_transition(current: RecommendationStatus, target: RecommendationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def is_resurfaceable(
    status: RecommendationStatus,
    last_shown_at: datetime,
    created_at: datetime,
    expires_at: Optional[datetime],
    now: datetime,
    policy: CooldownPolicy = DEFAULT_POLICY,
    blocked: bool = False,
) -> bool:
    """
    May a stored record be returned by a load at `now`?

    All datetimes are naive UTC.
    """
    if blocked or status in TERMINAL_STATUSES:
        return False
    if expires_at is not None and expires_at <= now:
        return False
    if created_at < now - policy.freshness_window:
        return False

    if status == RecommendationStatus.PENDING:
        return True
    if status == RecommendationStatus.DECLINED:
        return last_shown_at < now - policy.declined_cooldown
    if status in (RecommendationStatus.VIEWED, RecommendationStatus.EXPIRED):
        return last_shown_at < now - policy.ignored_cooldown
    return False
