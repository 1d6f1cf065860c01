"""
Feedback service: read-side view of thumbs up/down for scoring.

Feedback rows are written by the feedback ingestion service. Here we only
aggregate counts per candidate, split into "this user" and "everyone else".
"""
import logging
from typing import Dict, Iterable

from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import FeedbackRating, FeedbackRecord
from app.services.scoring import FeedbackSummary

logger = logging.getLogger(__name__)


def summarize_feedback(
    db: Session,
    user_id: str,
    candidate_ids: Iterable[str],
) -> Dict[str, FeedbackSummary]:
    """
    Vote counts for the given candidates.

    Args:
        db: Database session
        user_id: The user being scored for
        candidate_ids: Candidates in the current cycle

    Returns:
        candidate id -> FeedbackSummary, only for candidates with any feedback

    Rules:
        - Never throws an exception outward; a failed read scores everyone
          as if there were no feedback
    """
    ids = list(set(candidate_ids))
    if not ids:
        return {}

    is_user = FeedbackRecord.user_id == user_id
    is_up = FeedbackRecord.rating == FeedbackRating.UP
    is_down = FeedbackRecord.rating == FeedbackRating.DOWN

    try:
        rows = (
            db.query(
                FeedbackRecord.candidate_id,
                func.sum(case((is_user & is_up, 1), else_=0)),
                func.sum(case((is_user & is_down, 1), else_=0)),
                func.sum(case((~is_user & is_up, 1), else_=0)),
                func.sum(case((~is_user & is_down, 1), else_=0)),
            )
            .filter(FeedbackRecord.candidate_id.in_(ids))
            .group_by(FeedbackRecord.candidate_id)
            .all()
        )
    except SQLAlchemyError as e:
        logger.warning("Failed to load feedback summary: user_id=%s, error=%s", user_id, str(e), exc_info=True)
        db.rollback()
        return {}

    return {
        candidate_id: FeedbackSummary(
            user_up=int(user_up or 0),
            user_down=int(user_down or 0),
            others_up=int(others_up or 0),
            others_down=int(others_down or 0),
        )
        for candidate_id, user_up, user_down, others_up, others_down in rows
    }
