"""Clock helpers and lightweight stage timing for the recommendation pipeline."""
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Optional, Callable
import logging

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """
    Naive UTC "now".

    All persisted timestamps are naive UTC so that SQLite (tests) and Postgres
    (production) compare them the same way.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def hours_between(earlier: datetime, later: datetime) -> float:
    return (to_naive_utc(later) - to_naive_utc(earlier)).total_seconds() / 3600.0


def now_ms() -> float:
    """Return current time in milliseconds using high-resolution timer."""
    return time.perf_counter() * 1000


@contextmanager
def stage_timer(
    label: str,
    timings: Optional[Dict[str, float]] = None,
    log_fn: Optional[Callable[[str], None]] = None,
):
    """
    Time one pipeline stage.

    The elapsed milliseconds are logged (debug by default) and, when a timings
    dict is passed, stored under `label` so callers can return them in debug
    payloads.

    Example:
        timings = {}
        with stage_timer("score", timings):
            scored = scorer.score_all(...)
    """
    start = now_ms()
    try:
        yield
    finally:
        elapsed = now_ms() - start
        if timings is not None:
            timings[label] = round(elapsed, 2)
        (log_fn or logger.debug)(f"{label}: {elapsed:.2f}ms")
