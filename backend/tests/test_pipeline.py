"""End-to-end tests for one recommendation cycle, with fake sources and the SQLite database."""
import asyncio
import threading
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from app.models import EventLog, FeedbackRating, FeedbackRecord, RecommendationRecord, RecommendationStatus
from app.schemas.candidate import SponsorTier
from app.schemas.recommendation import GenerateRecommendationsRequest
from app.services.aggregator import CandidateAggregator
from app.services.recommendation_pipeline import RecommendationPipeline, to_item
from app.services.recommendation_store import RecommendationStore
from factories import NOW, ORIGIN, Clock, FakeAdapter, make_candidate, make_profile

USER = "user-1"
POOL_TAGS = [
    "cafe", "restaurant", "bar", "park", "museum", "gym",
    "art_gallery", "movie_theater", "night_club", "stadium", "bakery", "pub",
]


def _pool():
    return [
        make_candidate(f"google:{i}", tags=[tag], miles=0.2 + i * 0.1, rating=4.5, rating_count=200)
        for i, tag in enumerate(POOL_TAGS)
    ]


def _pipeline(*adapters, **kwargs):
    adapters = adapters or (FakeAdapter("places", _pool()),)
    kwargs.setdefault("clock", Clock())
    return RecommendationPipeline(CandidateAggregator(list(adapters)), **kwargs)


def _request(**overrides):
    values = {
        "profile": make_profile(interests=["coffee", "outdoor"]),
        "location": ORIGIN,
        "radius_meters": 2000,
        "max_results": 10,
        "now": NOW,
    }
    values.update(overrides)
    return GenerateRecommendationsRequest(**values)


def _generate(pipeline, db, **overrides):
    return asyncio.run(pipeline.generate(db, _request(**overrides), request_id="req-1"))


def test_generate_ranks_persists_and_logs(db):
    result = _generate(_pipeline(), db)

    assert len(result.items) == 10
    assert result.persisted
    scores = [item.final_score for item in result.items]
    assert all(0 <= score <= 150 for score in scores)

    records = db.query(RecommendationRecord).filter(RecommendationRecord.user_id == USER).all()
    assert {r.candidate_id for r in records} == {item.id for item in result.items}
    assert all(r.status == RecommendationStatus.PENDING for r in records)

    event = db.query(EventLog).filter(EventLog.event_name == "recommendations_generated").one()
    assert event.request_id == "req-1"
    assert event.user_id == USER
    assert event.properties["count"] == 10
    assert event.properties["persisted"] is True


def test_generate_returns_debug_timings(db):
    result = _generate(_pipeline(), db)

    info = result.debug_info()
    assert info["candidate_count"] == 12
    assert info["failed_sources"] == []
    assert {"aggregate", "signals", "score", "rank", "save"} <= set(info["timings_ms"])


def test_items_convert_for_the_api(db):
    result = _generate(_pipeline(), db)

    item = to_item(result.items[0])
    assert item.candidate_id == result.items[0].id
    assert item.why_recommended
    assert item.score_breakdown is None
    assert "final" in to_item(result.items[0], debug=True).score_breakdown


def test_recently_shown_candidates_are_penalized(db):
    clock = Clock()
    pipeline = _pipeline(clock=clock)
    first = _generate(pipeline, db)
    shown = {item.id for item in first.items}

    clock.advance(hours=1)
    second = _generate(pipeline, db, now=NOW + timedelta(hours=1))

    for item in second.items:
        if item.id in shown:
            assert item.breakdown.recency == -40.0
        else:
            assert item.breakdown.recency == 0.0


def test_blocked_candidates_are_never_returned(db):
    RecommendationStore(db).block(USER, "google:0", "Cafe")

    result = _generate(_pipeline(), db, max_results=20)

    assert "google:0" not in {item.id for item in result.items}
    assert len(result.items) == 11


def test_past_events_are_excluded(db):
    past = make_candidate(
        "eventbrite:past", tags=["concert_hall"],
        starts_at=NOW - timedelta(hours=3), ends_at=NOW - timedelta(hours=1),
    )
    tonight = make_candidate("eventbrite:tonight", tags=["concert_hall"], starts_at=NOW + timedelta(hours=5))
    adapters = (FakeAdapter("places", _pool()), FakeAdapter("events", [past, tonight]))

    result = _generate(_pipeline(*adapters), db, max_results=20)

    ids = {item.id for item in result.items}
    assert "eventbrite:past" not in ids
    assert "eventbrite:tonight" in ids


def test_feedback_from_other_users_is_used(db):
    for i in range(5):
        db.add(FeedbackRecord(user_id=f"other-{i}", candidate_id="google:9", rating=FeedbackRating.UP))
    db.commit()

    result = _generate(_pipeline(), db, max_results=20)

    liked = next(item for item in result.items if item.id == "google:9")
    assert liked.breakdown.collaborative == 10.0


def test_sponsored_candidates_are_marked(db):
    pipeline = _pipeline(sponsorships={"google:5": SponsorTier.PREMIUM, "google:6": SponsorTier.ORGANIC})

    result = _generate(pipeline, db, max_results=20)

    by_id = {item.id: item for item in result.items}
    assert by_id["google:5"].sponsored
    assert by_id["google:5"].breakdown.sponsored > 0
    assert not by_id["google:6"].sponsored


def test_save_failure_still_returns_recommendations(db, monkeypatch):
    def broken_save(self, user_id, ranked):
        raise SQLAlchemyError("database is down")

    monkeypatch.setattr(RecommendationStore, "save", broken_save)

    result = _generate(_pipeline(), db)

    assert len(result.items) == 10
    assert result.persisted is False
    assert db.query(RecommendationRecord).count() == 0


def test_all_sources_failing_gives_empty_result(db):
    pipeline = _pipeline(FakeAdapter("a", error=RuntimeError("down")), FakeAdapter("b", error=RuntimeError("down")))

    result = _generate(pipeline, db)

    assert result.items == []
    assert sorted(result.aggregation.failed_sources) == ["a", "b"]
    assert db.query(RecommendationRecord).count() == 0


def test_profile_distance_used_when_no_radius_given(db):
    adapter = FakeAdapter("places", _pool())

    _generate(_pipeline(adapter), db, radius_meters=None, profile=make_profile(max_distance_miles=2.0))

    assert adapter.radii[0] == 3218


def test_request_time_does_not_stamp_stored_records(db):
    _generate(_pipeline(), db, now=datetime(2099, 1, 1, 12, 0))

    records = db.query(RecommendationRecord).filter(RecommendationRecord.user_id == USER).all()
    assert len(records) == 10
    assert {r.last_shown_at for r in records} == {NOW}
    assert {r.expires_at for r in records} == {NOW + timedelta(days=7)}
    assert RecommendationStore(db, clock=Clock(NOW + timedelta(days=30))).load(USER) == []


def test_database_work_runs_off_the_event_loop(db, monkeypatch):
    loop_threads = []
    save_threads = []

    def results(radius_meters):
        loop_threads.append(threading.get_ident())
        return _pool()

    original_save = RecommendationStore.save

    def recording_save(self, user_id, ranked):
        save_threads.append(threading.get_ident())
        return original_save(self, user_id, ranked)

    monkeypatch.setattr(RecommendationStore, "save", recording_save)

    result = _generate(_pipeline(FakeAdapter("places", results)), db)

    assert result.persisted
    assert len(save_threads) == 1
    assert save_threads[0] != loop_threads[0]
