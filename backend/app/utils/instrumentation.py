"""
Server-side event logging helper.

Logs events to both the database (for querying) and structured logs (for immediate visibility).
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import OperationalError, ProgrammingError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import EventLog

logger = logging.getLogger(__name__)


def log_event(
    db: Session,
    event_name: str,
    user_id: Optional[str] = None,
    properties: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> bool:
    """
    Log an event to the database and structured logs, committing on its own.

    Call this after the business transaction has been committed: a failure
    here rolls back only the event row.

    Args:
        db: Database session
        event_name: Name of the event (e.g., "recommendations_generated")
        user_id: Optional user ID
        properties: Optional dict of event properties
        request_id: Optional request ID for correlating events

    Returns:
        True if the event row was written. This function never raises.
    """
    log_data = {
        "event_name": event_name,
        "user_id": user_id,
        "request_id": request_id,
        "properties": properties,
    }
    try:
        db.add(
            EventLog(
                event_name=event_name,
                user_id=user_id,
                properties=properties,
                request_id=request_id,
            )
        )
        db.commit()
        logger.info("event_logged", extra=log_data)
        return True
    except (OperationalError, ProgrammingError) as e:
        db.rollback()
        error_str = str(e).lower()
        if "does not exist" in error_str or "no such table" in error_str:
            logger.warning(
                "event_logs table missing, run alembic upgrade head. "
                "Event logging disabled until migration is applied."
            )
        else:
            logger.warning(
                "Failed to log event (database error): event_name=%s, user_id=%s, error=%s",
                event_name,
                user_id,
                str(e),
                exc_info=True,
            )
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(
            "Failed to log event: event_name=%s, user_id=%s, error=%s",
            event_name,
            user_id,
            str(e),
            exc_info=True,
        )
    return False
