"""Tests for the recommendation store against the SQLite test database."""
from datetime import timedelta

import pytest

from app.models import BlockedCandidate, RecommendationRecord, RecommendationStatus as Status
from app.services.recommendation_store import InvalidTransitionError, RecommendationStore, RecordNotFoundError
from app.services.resurfacing import CooldownPolicy
from factories import NOW, Clock, make_scored

USER = "user-1"
LONG_LIVED = CooldownPolicy(freshness_window=timedelta(days=30), record_lifetime=timedelta(days=30))


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(db, clock):
    return RecommendationStore(db, clock=clock)


def _ranked(*ids, score=90.0):
    return [make_scored(candidate_id, score - i) for i, candidate_id in enumerate(ids)]


def test_save_creates_pending_records(store, db):
    written = store.save(USER, _ranked("a", "b"))

    assert written == 2
    record = store.get(USER, "a")
    assert record.status == Status.PENDING
    assert record.candidate_name == "a"
    assert record.category == "coffee"
    assert record.confidence_score == pytest.approx(90 / 150, abs=1e-3)
    assert record.last_shown_at == NOW
    assert record.expires_at == NOW + timedelta(days=7)


def test_save_updates_existing_record_in_place(store, db, clock):
    store.save(USER, _ranked("a"))
    first_id = store.get(USER, "a").id
    store.mark_viewed(USER, "a")

    clock.advance(hours=2)
    store.save(USER, _ranked("a", score=60.0))

    record = store.get(USER, "a")
    assert record.id == first_id
    assert record.status == Status.PENDING
    assert record.last_shown_at == NOW + timedelta(hours=2)
    assert record.viewed_at is None
    assert db.query(RecommendationRecord).count() == 1


def test_save_leaves_accepted_and_blocked_alone(store, db):
    store.save(USER, _ranked("accepted", "blocked", "other"))
    store.mark_accepted(USER, "accepted")
    store.block(USER, "blocked", "Blocked place")

    written = store.save(USER, _ranked("accepted", "blocked", "other", "new"))

    assert written == 2
    assert store.get(USER, "accepted").status == Status.ACCEPTED
    assert store.get(USER, "blocked").status == Status.NOT_INTERESTED


def test_save_skips_blocked_candidates_without_records(store, db):
    store.block(USER, "never-shown", "Never shown")

    assert store.save(USER, _ranked("never-shown")) == 0
    with pytest.raises(RecordNotFoundError):
        store.get(USER, "never-shown")


def test_load_returns_pending_by_confidence(store):
    store.save(USER, [make_scored("low", 30), make_scored("high", 120), make_scored("mid", 75)])

    assert [r.candidate_id for r in store.load(USER)] == ["high", "mid", "low"]
    assert [r.candidate_id for r in store.load(USER, limit=2)] == ["high", "mid"]


def test_load_is_scoped_to_the_user(store):
    store.save(USER, _ranked("a"))
    store.save("someone-else", _ranked("b"))

    assert [r.candidate_id for r in store.load(USER)] == ["a"]


def test_load_excludes_terminal_and_cooling_records(store, clock):
    store.save(USER, _ranked("accepted", "declined", "viewed", "not-interested", "pending"))
    store.mark_accepted(USER, "accepted")
    store.mark_declined(USER, "declined", reason="too far")
    store.mark_viewed(USER, "viewed")
    store.mark_not_interested(USER, "not-interested")

    clock.advance(hours=1)

    assert [r.candidate_id for r in store.load(USER)] == ["pending"]


def test_load_respects_freshness_window(store, clock):
    store.save(USER, _ranked("a"))

    clock.advance(hours=23)
    assert len(store.load(USER)) == 1
    assert store.load(USER, subscription_tier="premium") == []

    clock.advance(hours=2)
    assert store.load(USER) == []


def test_declined_record_resurfaces_after_cooldown(db, clock):
    store = RecommendationStore(db, policy=LONG_LIVED, clock=clock)
    store.save(USER, _ranked("a"))
    record_id = store.get(USER, "a").id
    store.mark_declined(USER, "a")

    clock.advance(days=2)
    assert store.load(USER) == []

    clock.advance(days=2)
    resurfaced = store.load(USER)
    assert [r.id for r in resurfaced] == [record_id]
    assert resurfaced[0].status == Status.DECLINED


def test_viewed_record_resurfaces_after_seven_days(db, clock):
    store = RecommendationStore(db, policy=LONG_LIVED, clock=clock)
    store.save(USER, _ranked("a"))
    store.mark_viewed(USER, "a")

    clock.advance(days=6)
    assert store.load(USER) == []

    clock.advance(days=2)
    assert [r.candidate_id for r in store.load(USER)] == ["a"]


def test_mark_viewed_is_idempotent(store, clock):
    store.save(USER, _ranked("a"))
    store.mark_viewed(USER, "a")
    first_viewed_at = store.get(USER, "a").viewed_at

    clock.advance(minutes=5)
    record = store.mark_viewed(USER, "a")

    assert record.status == Status.VIEWED
    assert record.viewed_at == first_viewed_at


def test_accepted_is_terminal(store):
    store.save(USER, _ranked("a"))
    store.mark_accepted(USER, "a")

    with pytest.raises(InvalidTransitionError):
        store.mark_declined(USER, "a")
    with pytest.raises(InvalidTransitionError):
        store.mark_viewed(USER, "a")


def test_unknown_record_raises_not_found(store):
    with pytest.raises(RecordNotFoundError):
        store.mark_viewed(USER, "missing")


def test_decline_records_reason_and_time(store, clock):
    store.save(USER, _ranked("a"))
    clock.advance(minutes=10)

    record = store.mark_declined(USER, "a", reason="too expensive")

    assert record.status == Status.DECLINED
    assert record.decline_reason == "too expensive"
    assert record.responded_at == NOW + timedelta(minutes=10)


class RecordingLinker:
    def __init__(self, result="calendar-42", error=None):
        self.result = result
        self.error = error
        self.calls = []

    def link(self, user_id, candidate_id, entity_id):
        self.calls.append((user_id, candidate_id, entity_id))
        if self.error is not None:
            raise self.error
        return self.result


def test_accept_links_to_scheduler(db, clock):
    linker = RecordingLinker()
    store = RecommendationStore(db, clock=clock, scheduling_linker=linker)
    store.save(USER, _ranked("a"))

    record = store.mark_accepted(USER, "a")

    assert linker.calls == [(USER, "a", None)]
    assert record.linked_entity_id == "calendar-42"
    assert record.viewed_at == NOW
    assert record.responded_at == NOW


def test_accept_stands_when_linking_fails(db, clock):
    linker = RecordingLinker(error=RuntimeError("calendar down"))
    store = RecommendationStore(db, clock=clock, scheduling_linker=linker)
    store.save(USER, _ranked("a"))

    record = store.mark_accepted(USER, "a", linked_entity_id="plan-1")

    assert record.status == Status.ACCEPTED
    assert record.linked_entity_id == "plan-1"


def test_clear_pending_declines_only_pending(store, clock):
    store.save(USER, _ranked("a", "b", "c"))
    store.mark_accepted(USER, "c")
    clock.advance(hours=1)

    assert store.clear_pending(USER) == 2

    assert store.get(USER, "a").status == Status.DECLINED
    assert store.get(USER, "a").last_shown_at == NOW + timedelta(hours=1)
    assert store.get(USER, "c").status == Status.ACCEPTED
    assert store.load(USER) == []


def test_block_and_unblock(store, db):
    store.save(USER, _ranked("a"))

    store.block(USER, "a", "Cafe A", reason="rude staff")
    store.block(USER, "a", "Cafe A", reason="still rude")

    assert db.query(BlockedCandidate).count() == 1
    assert [b.reason for b in store.blocked(USER)] == ["still rude"]
    assert store.blocked_ids(USER) == {"a"}
    assert store.get(USER, "a").status == Status.NOT_INTERESTED
    assert store.load(USER) == []

    assert store.unblock(USER, "a") is True
    assert store.blocked_ids(USER) == set()
    assert store.get(USER, "a").status == Status.DECLINED
    assert store.unblock(USER, "a") is False


def test_recently_shown_window(store, clock):
    store.save(USER, _ranked("old"))
    clock.advance(hours=80)
    store.save(USER, _ranked("recent"))
    clock.advance(hours=1)

    shown = store.recently_shown(USER)

    assert set(shown) == {"recent"}
    assert shown["recent"] == NOW + timedelta(hours=80)
    assert set(store.recently_shown(USER, hours_back=100)) == {"old", "recent"}


def test_expire_stale(store, clock):
    store.save(USER, _ranked("a", "b"))
    store.mark_viewed(USER, "b")

    assert store.expire_stale() == 0
    clock.advance(days=8)
    assert store.expire_stale() == 1

    assert store.get(USER, "a").status == Status.EXPIRED
    assert store.get(USER, "b").status == Status.VIEWED


def test_stats(store):
    store.save(USER, _ranked("a", "b", "c", "d", "e"))
    store.mark_accepted(USER, "a")
    store.mark_declined(USER, "b")
    store.mark_declined(USER, "c")
    store.mark_not_interested(USER, "d")

    stats = store.stats(USER)

    assert stats == {
        "total": 5,
        "accepted": 1,
        "declined": 2,
        "not_interested": 1,
        "acceptance_rate": 0.25,
    }


def test_stats_for_unknown_user(store):
    assert store.stats("nobody")["acceptance_rate"] == 0.0
