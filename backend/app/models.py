from sqlalchemy import Column, String, Integer, Text, DateTime, Float, JSON, Uuid, UniqueConstraint
import uuid
import enum
import sqlalchemy as sa
from app.database import Base
from app.utils.timing import utcnow


class RecommendationStatus(str, enum.Enum):
    PENDING = "pending"
    VIEWED = "viewed"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    NOT_INTERESTED = "not_interested"
    EXPIRED = "expired"


class FeedbackRating(str, enum.Enum):
    UP = "up"
    DOWN = "down"


class RecommendationRecord(Base):
    """
    One tracking row per (user, candidate) pair.

    Saving the same candidate again updates this row in place; the status column
    drives resurfacing (see app.services.resurfacing).
    """
    __tablename__ = "recommendation_tracking"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False, index=True)
    candidate_id = Column(String(255), nullable=False)
    source = Column(String(50), nullable=False)
    candidate_name = Column(String(255), nullable=False)
    category = Column(String(100), nullable=False)
    status = Column(
        sa.Enum(
            RecommendationStatus,
            name="recommendationstatus",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        default=RecommendationStatus.PENDING,
    )
    confidence_score = Column(Float, nullable=False, default=0.0)
    last_shown_at = Column(DateTime, nullable=False, default=utcnow)
    refresh_count = Column(Integer, nullable=False, default=0)
    viewed_at = Column(DateTime, nullable=True)
    responded_at = Column(DateTime, nullable=True)
    decline_reason = Column(String(100), nullable=True)
    block_reason = Column(Text, nullable=True)
    linked_entity_id = Column(String(255), nullable=True)  # downstream calendar/schedule entry
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "candidate_id", name="uq_recommendation_tracking_user_candidate"),
        sa.Index("idx_recommendation_tracking_user_status", "user_id", "status", "last_shown_at"),
        sa.CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 1",
            name="ck_recommendation_tracking_confidence",
        ),
    )


class BlockedCandidate(Base):
    """Permanent "never show again" list, kept in sync with status=not_interested."""
    __tablename__ = "blocked_candidates"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False, index=True)
    candidate_id = Column(String(255), nullable=False)
    candidate_name = Column(String(255), nullable=False)
    reason = Column(Text, nullable=True)
    blocked_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "candidate_id", name="uq_blocked_candidates_user_candidate"),
    )


class FeedbackRecord(Base):
    """
    Thumbs up/down on a candidate.

    Rows are written by the feedback ingestion service; this backend only reads
    aggregated counts when scoring.
    """
    __tablename__ = "candidate_feedback"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False, index=True)
    candidate_id = Column(String(255), nullable=False, index=True)
    rating = Column(
        sa.Enum(
            FeedbackRating,
            name="feedbackrating",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
    )
    tags = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    event_name = Column(String, nullable=False, index=True)
    properties = Column(JSON, nullable=True)
    request_id = Column(String, nullable=True)
