"""
Background scheduler for periodic housekeeping.

Uses APScheduler to run tasks in the background:
- pending recommendations past their expiry become expired
- expired entries are purged from the in-process caches
"""
import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.services.recommendation_pipeline import RecommendationPipeline
from app.services.recommendation_store import RecommendationStore

logger = logging.getLogger(__name__)

HOUSEKEEPING_INTERVAL_MINUTES = 30

# Global scheduler instance
scheduler = None


def expire_stale_recommendations_job(session_factory=SessionLocal) -> int:
    """
    Scheduled job to expire pending recommendations past expires_at.
    Runs every 30 minutes.
    """
    db: Session = session_factory()
    try:
        expired = RecommendationStore(db).expire_stale()
        logger.info(f"Expire job completed: {expired} record(s) expired")
        return expired
    except SQLAlchemyError as e:
        logger.exception(f"Expire job failed: {e}")
        return 0
    finally:
        db.close()


def purge_caches_job(pipeline: RecommendationPipeline) -> int:
    purged = pipeline.purge_caches()
    logger.debug(f"Cache purge completed: {purged} expired entries removed")
    return purged


def start_scheduler(pipeline: Optional[RecommendationPipeline] = None):
    """
    Start the background scheduler with all configured jobs.
    Call this from the FastAPI startup event.
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return

    logger.info("Starting background scheduler")
    scheduler = BackgroundScheduler()

    scheduler.add_job(
        expire_stale_recommendations_job,
        trigger=IntervalTrigger(minutes=HOUSEKEEPING_INTERVAL_MINUTES),
        id='expire_stale_recommendations',
        name='Expire stale pending recommendations',
        replace_existing=True
    )
    if pipeline is not None:
        scheduler.add_job(
            purge_caches_job,
            trigger=IntervalTrigger(minutes=HOUSEKEEPING_INTERVAL_MINUTES),
            args=[pipeline],
            id='purge_caches',
            name='Purge expired cache entries',
            replace_existing=True
        )

    scheduler.start()
    logger.info("Background scheduler started with housekeeping jobs")


def stop_scheduler():
    """
    Stop the background scheduler.
    Call this from the FastAPI shutdown event.
    """
    global scheduler

    if scheduler is not None:
        logger.info("Stopping background scheduler")
        scheduler.shutdown()
        scheduler = None
