"""
Recommendation store: the durable record of what was shown to whom and how
the user responded.

One row per (user_id, candidate_id). Saving a candidate that was shown before
updates its row in place. Status changes go through the transition table in
app.services.resurfacing; what a load may return is decided by
`is_resurfaceable` from the same module.

Every method commits its own unit of work. SQLAlchemy errors roll the session
back and propagate to the caller.
"""
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Set

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import BlockedCandidate, RecommendationRecord, RecommendationStatus
from app.services.resurfacing import DEFAULT_POLICY, CooldownPolicy, can_transition, is_resurfaceable
from app.services.scoring import ScoredCandidate
from app.utils.timing import utcnow

logger = logging.getLogger(__name__)

DEFAULT_LOAD_LIMIT = 10

# Records a new save must leave alone
_SAVE_PROTECTED = {RecommendationStatus.ACCEPTED, RecommendationStatus.NOT_INTERESTED}


class RecordNotFoundError(Exception):
    def __init__(self, user_id: str, candidate_id: str):
        super().__init__(f"No recommendation for user={user_id} candidate={candidate_id}")
        self.user_id = user_id
        self.candidate_id = candidate_id


class InvalidTransitionError(Exception):
    def __init__(self, current: RecommendationStatus, target: RecommendationStatus):
        super().__init__(f"Cannot move recommendation from {current.value} to {target.value}")
        self.current = current
        self.target = target


class SchedulingLinker(Protocol):
    """Downstream scheduler that consumes accepted recommendations (calendar entries, plans, ...)."""

    def link(self, user_id: str, candidate_id: str, entity_id: Optional[str]) -> Optional[str]:
        ...


class RecommendationStore:
    def __init__(
        self,
        db: Session,
        policy: CooldownPolicy = DEFAULT_POLICY,
        clock: Callable[[], datetime] = utcnow,
        scheduling_linker: Optional[SchedulingLinker] = None,
    ):
        self.db = db
        self.policy = policy
        self.clock = clock
        self.scheduling_linker = scheduling_linker

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    # --- writes -------------------------------------------------------------

    def save(self, user_id: str, ranked: Sequence[ScoredCandidate]) -> int:
        """
        Upsert the shown candidates as pending.

        Accepted and not-interested records are never reverted, and blocked
        candidates are skipped. Returns the number of records written.
        """
        if not ranked:
            return 0
        try:
            return self._save(user_id, ranked)
        except IntegrityError:
            # A concurrent save inserted one of our rows first; last writer wins
            self.db.rollback()
            logger.info("Concurrent recommendation save for user_id=%s, retrying as update", user_id)
            return self._save(user_id, ranked)

    def _save(self, user_id: str, ranked: Sequence[ScoredCandidate]) -> int:
        now = self.clock()
        expires_at = now + self.policy.record_lifetime
        candidate_ids = [item.id for item in ranked]
        blocked = self.blocked_ids(user_id)
        existing = {
            record.candidate_id: record
            for record in self.db.query(RecommendationRecord).filter(
                RecommendationRecord.user_id == user_id,
                RecommendationRecord.candidate_id.in_(candidate_ids),
            )
        }

        written = 0
        for item in ranked:
            if item.id in blocked:
                continue
            record = existing.get(item.id)
            if record is not None and record.status in _SAVE_PROTECTED:
                continue
            if record is None:
                record = RecommendationRecord(user_id=user_id, candidate_id=item.id)
                self.db.add(record)
                existing[item.id] = record
            record.source = item.candidate.source
            record.candidate_name = item.candidate.name[:255]
            record.category = item.category
            record.status = RecommendationStatus.PENDING
            record.confidence_score = round(item.confidence, 4)
            record.last_shown_at = now
            record.created_at = now
            record.expires_at = expires_at
            record.refresh_count = 0
            record.viewed_at = None
            record.responded_at = None
            record.decline_reason = None
            written += 1

        self._commit()
        logger.info("Saved %d recommendation(s) for user_id=%s", written, user_id)
        return written

    def _get(self, user_id: str, candidate_id: str) -> RecommendationRecord:
        record = (
            self.db.query(RecommendationRecord)
            .filter(
                RecommendationRecord.user_id == user_id,
                RecommendationRecord.candidate_id == candidate_id,
            )
            .first()
        )
        if record is None:
            raise RecordNotFoundError(user_id, candidate_id)
        return record

    def get(self, user_id: str, candidate_id: str) -> RecommendationRecord:
        return self._get(user_id, candidate_id)

    def _transition(self, user_id: str, candidate_id: str, target: RecommendationStatus) -> RecommendationRecord:
        record = self._get(user_id, candidate_id)
        if record.status != target and not can_transition(record.status, target):
            raise InvalidTransitionError(record.status, target)
        record.status = target
        return record

    def mark_viewed(self, user_id: str, candidate_id: str) -> RecommendationRecord:
        record = self._get(user_id, candidate_id)
        if record.status == RecommendationStatus.VIEWED:
            return record
        record = self._transition(user_id, candidate_id, RecommendationStatus.VIEWED)
        record.viewed_at = self.clock()
        self._commit()
        return record

    def mark_accepted(
        self,
        user_id: str,
        candidate_id: str,
        linked_entity_id: Optional[str] = None,
    ) -> RecommendationRecord:
        record = self._transition(user_id, candidate_id, RecommendationStatus.ACCEPTED)
        now = self.clock()
        record.responded_at = now
        if record.viewed_at is None:
            record.viewed_at = now

        if self.scheduling_linker is not None:
            try:
                linked_entity_id = self.scheduling_linker.link(user_id, candidate_id, linked_entity_id) or linked_entity_id
            except Exception as e:
                # The acceptance stands even if the downstream link fails
                logger.warning(
                    "Failed to link accepted recommendation: user_id=%s, candidate_id=%s, error=%s",
                    user_id,
                    candidate_id,
                    str(e),
                    exc_info=True,
                )
        record.linked_entity_id = linked_entity_id
        self._commit()
        return record

    def mark_declined(self, user_id: str, candidate_id: str, reason: Optional[str] = None) -> RecommendationRecord:
        record = self._transition(user_id, candidate_id, RecommendationStatus.DECLINED)
        record.responded_at = self.clock()
        record.decline_reason = reason
        self._commit()
        return record

    def mark_not_interested(
        self,
        user_id: str,
        candidate_id: str,
        reason: Optional[str] = None,
    ) -> RecommendationRecord:
        record = self._transition(user_id, candidate_id, RecommendationStatus.NOT_INTERESTED)
        record.responded_at = self.clock()
        record.block_reason = reason
        self._commit()
        return record

    def clear_pending(self, user_id: str) -> int:
        """Decline everything still pending (user asked for a fresh list)."""
        now = self.clock()
        count = (
            self.db.query(RecommendationRecord)
            .filter(
                RecommendationRecord.user_id == user_id,
                RecommendationRecord.status == RecommendationStatus.PENDING,
            )
            .update(
                {
                    RecommendationRecord.status: RecommendationStatus.DECLINED,
                    RecommendationRecord.last_shown_at: now,
                    RecommendationRecord.responded_at: now,
                },
                synchronize_session=False,
            )
        )
        self._commit()
        logger.info("Cleared %d pending recommendation(s) for user_id=%s", count, user_id)
        return count

    def block(
        self,
        user_id: str,
        candidate_id: str,
        candidate_name: str,
        reason: Optional[str] = None,
    ) -> BlockedCandidate:
        now = self.clock()
        blocked = (
            self.db.query(BlockedCandidate)
            .filter(BlockedCandidate.user_id == user_id, BlockedCandidate.candidate_id == candidate_id)
            .first()
        )
        if blocked is None:
            blocked = BlockedCandidate(
                user_id=user_id,
                candidate_id=candidate_id,
                candidate_name=candidate_name[:255],
                reason=reason,
                blocked_at=now,
            )
            self.db.add(blocked)
        else:
            blocked.reason = reason

        record = (
            self.db.query(RecommendationRecord)
            .filter(
                RecommendationRecord.user_id == user_id,
                RecommendationRecord.candidate_id == candidate_id,
            )
            .first()
        )
        if record is not None:
            record.status = RecommendationStatus.NOT_INTERESTED
            record.block_reason = reason
            record.responded_at = now

        self._commit()
        logger.info("Blocked candidate_id=%s for user_id=%s", candidate_id, user_id)
        return blocked

    def unblock(self, user_id: str, candidate_id: str) -> bool:
        """Remove from the blocked list; the record goes back to declined. False if it was not blocked."""
        deleted = (
            self.db.query(BlockedCandidate)
            .filter(BlockedCandidate.user_id == user_id, BlockedCandidate.candidate_id == candidate_id)
            .delete(synchronize_session=False)
        )
        record = (
            self.db.query(RecommendationRecord)
            .filter(
                RecommendationRecord.user_id == user_id,
                RecommendationRecord.candidate_id == candidate_id,
            )
            .first()
        )
        if record is not None and record.status == RecommendationStatus.NOT_INTERESTED:
            record.status = RecommendationStatus.DECLINED
            record.block_reason = None
        self._commit()
        return bool(deleted)

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        """Pending records past their expiry become expired. Returns how many."""
        now = now or self.clock()
        count = (
            self.db.query(RecommendationRecord)
            .filter(
                RecommendationRecord.status == RecommendationStatus.PENDING,
                RecommendationRecord.expires_at <= now,
            )
            .update({RecommendationRecord.status: RecommendationStatus.EXPIRED}, synchronize_session=False)
        )
        self._commit()
        if count:
            logger.info("Expired %d stale recommendation(s)", count)
        return count

    # --- reads --------------------------------------------------------------

    def load(
        self,
        user_id: str,
        limit: int = DEFAULT_LOAD_LIMIT,
        subscription_tier: Optional[str] = None,
    ) -> List[RecommendationRecord]:
        """Records eligible to show again, highest confidence first."""
        now = self.clock()
        policy = self.policy.for_tier(subscription_tier)
        blocked = self.blocked_ids(user_id)
        rows = (
            self.db.query(RecommendationRecord)
            .filter(
                RecommendationRecord.user_id == user_id,
                RecommendationRecord.status.notin_(
                    [RecommendationStatus.ACCEPTED, RecommendationStatus.NOT_INTERESTED]
                ),
                RecommendationRecord.expires_at > now,
                RecommendationRecord.created_at >= now - policy.freshness_window,
            )
            .order_by(RecommendationRecord.confidence_score.desc(), RecommendationRecord.candidate_id)
            .all()
        )
        eligible = [
            record
            for record in rows
            if is_resurfaceable(
                record.status,
                record.last_shown_at,
                record.created_at,
                record.expires_at,
                now,
                policy,
                blocked=record.candidate_id in blocked,
            )
        ]
        return eligible[:limit]

    def blocked(self, user_id: str) -> List[BlockedCandidate]:
        return (
            self.db.query(BlockedCandidate)
            .filter(BlockedCandidate.user_id == user_id)
            .order_by(BlockedCandidate.blocked_at.desc())
            .all()
        )

    def blocked_ids(self, user_id: str) -> Set[str]:
        return {
            candidate_id
            for (candidate_id,) in self.db.query(BlockedCandidate.candidate_id).filter(
                BlockedCandidate.user_id == user_id
            )
        }

    def recently_shown(self, user_id: str, hours_back: Optional[float] = None) -> Dict[str, datetime]:
        """candidate id -> when it was last shown, for records shown within `hours_back`."""
        now = self.clock()
        horizon = hours_back if hours_back is not None else self.policy.recency_horizon_hours
        rows = self.db.query(RecommendationRecord.candidate_id, RecommendationRecord.last_shown_at).filter(
            RecommendationRecord.user_id == user_id,
            RecommendationRecord.last_shown_at >= now - timedelta(hours=horizon),
        )
        return {candidate_id: last_shown_at for candidate_id, last_shown_at in rows}

    def stats(self, user_id: str) -> Dict[str, float]:
        statuses = Counter(
            status
            for (status,) in self.db.query(RecommendationRecord.status).filter(
                RecommendationRecord.user_id == user_id
            )
        )
        total = sum(statuses.values())
        accepted = statuses[RecommendationStatus.ACCEPTED]
        declined = statuses[RecommendationStatus.DECLINED]
        not_interested = statuses[RecommendationStatus.NOT_INTERESTED]
        responded = accepted + declined + not_interested
        return {
            "total": total,
            "accepted": accepted,
            "declined": declined,
            "not_interested": not_interested,
            "acceptance_rate": round(accepted / responded, 3) if responded else 0.0,
        }
