"""Tests for candidate scoring."""
from datetime import timedelta

import pytest

from app.schemas.profile import PersonalSignals, SchedulePattern, UpcomingCommitment
from app.services.scoring import (
    SCORE_CEILING,
    FeedbackSummary,
    ScoringContext,
    score_candidate,
    score_candidates,
    score_collaborative,
    score_distance,
    score_event_urgency,
    score_feedback,
    sponsored_boost,
)
from factories import NOW, ORIGIN, make_candidate, make_profile, north_of


def _context(**overrides) -> ScoringContext:
    values = {"now": NOW, "user_location": ORIGIN}
    values.update(overrides)
    return ScoringContext(**values)


def test_favorite_coffee_shop_nearby_scores_near_the_top():
    profile = make_profile(interests=["coffee"], favorite_categories=["coffee"])
    cafe = make_candidate("google:cafe", tags=["cafe"], rating=4.6, rating_count=600, miles=0.3)
    generic = make_candidate("google:store", tags=["clothing_store"], rating=3.9, rating_count=20, miles=3.0)

    scored = score_candidates([generic, cafe], profile, _context())

    top = scored[0]
    assert top.id == "google:cafe"
    assert top.category == "coffee"
    assert top.breakdown.base == 50
    assert top.breakdown.location == 20
    assert top.final_score >= 80
    assert top.final_score > scored[1].final_score


def test_final_score_is_always_within_bounds():
    profile = make_profile(
        interests=["coffee", "dining", "bars"],
        favorite_categories=["coffee"],
        home_location=ORIGIN,
        work_location=ORIGIN,
        preferred_time_windows=["afternoon"],
    )
    signals = PersonalSignals(
        visit_counts={"google:max": 10},
        past_ratings={"google:max": 5},
        external_likes=["max"],
        schedule_patterns=[SchedulePattern(time_of_day="afternoon", category="coffee")],
    )
    candidates = [
        make_candidate("google:max", tags=["cafe"], rating=5.0, rating_count=5000, miles=0.0, price_level=1, sponsored=True),
        make_candidate("google:far", tags=["zoo"], miles=80.0, price_level=4),
        make_candidate("eventbrite:over", tags=["music"], starts_at=NOW - timedelta(hours=3)),
        make_candidate("eventbrite:soon", tags=["music"], starts_at=NOW + timedelta(hours=1), sponsored=True),
    ]
    context = _context(
        signals=signals,
        recently_shown={"google:far": 1.0},
        feedback={"google:max": FeedbackSummary(user_up=5, others_up=50)},
        commitments=[UpcomingCommitment(starts_at=NOW + timedelta(hours=1), location=ORIGIN)],
    )

    for scored in score_candidates(candidates, profile, context):
        assert 0 <= scored.final_score <= SCORE_CEILING


def test_past_event_is_clamped_to_zero_and_excluded():
    profile = make_profile(interests=["live music"])
    event = make_candidate("eventbrite:1", tags=["music"], starts_at=NOW - timedelta(hours=2))

    scored = score_candidate(event, profile, _context())

    assert scored.breakdown.event_urgency < 0
    assert scored.final_score == 0
    assert scored.excluded


@pytest.mark.parametrize(
    "hours_until, expected",
    [(3, 20), (6, 20), (12, 15), (30, 10), (100, 5), (200, 0)],
)
def test_event_urgency_bands(hours_until, expected):
    event = make_candidate("eventbrite:1", starts_at=NOW + timedelta(hours=hours_until))
    assert score_event_urgency(event, NOW) == expected


def test_event_that_has_ended_is_penalized():
    event = make_candidate(
        "eventbrite:1",
        starts_at=NOW - timedelta(hours=5),
        ends_at=NOW - timedelta(hours=1),
    )
    assert score_event_urgency(event, NOW) == -200


def test_places_have_no_urgency():
    assert score_event_urgency(make_candidate(), NOW) == 0


def test_distance_bands():
    assert score_distance(0.2, 5) == 20
    assert score_distance(0.8, 5) == 15
    assert score_distance(4.0, 5) == 10
    assert score_distance(7.0, 5) == 6
    assert score_distance(20.0, 5) == 0


def test_commitment_and_home_bonuses_respect_location_cap():
    profile = make_profile(home_location=ORIGIN)
    candidate = make_candidate(miles=0.1)
    context = _context(commitments=[UpcomingCommitment(starts_at=NOW + timedelta(hours=1), location=ORIGIN)])

    scored = score_candidate(candidate, profile, context)

    # 20 (distance) + 5 (home) + 8 (commitment) capped at 25
    assert scored.breakdown.location == 25


def test_commitment_far_away_gives_no_bonus():
    profile = make_profile()
    candidate = make_candidate(miles=0.1)
    commitment = UpcomingCommitment(starts_at=NOW + timedelta(hours=1), location=north_of(ORIGIN, 10))

    scored = score_candidate(candidate, profile, _context(commitments=[commitment]))

    assert scored.breakdown.location == 20


def test_base_score_for_unmatched_category_depends_on_discovery_mode():
    candidate = make_candidate(tags=["museum"])
    curated = score_candidate(candidate, make_profile(interests=["coffee"]), _context())
    explore = score_candidate(candidate, make_profile(interests=["coffee"], discovery_mode="explore"), _context())

    assert curated.breakdown.base == 10
    assert explore.breakdown.base == 15


def test_other_listed_interest_scores_less_than_top_interest():
    profile = make_profile(interests=["coffee", "dining", "bars", "museums"])
    museum = score_candidate(make_candidate(tags=["museum"]), profile, _context())
    cafe = score_candidate(make_candidate(tags=["cafe"]), profile, _context())

    assert museum.breakdown.base == 20
    assert cafe.breakdown.base == 30


def test_feedback_component():
    profile = make_profile(favorite_categories=["coffee"], disliked_categories=["bars"])

    assert score_feedback("museum", profile, None) == 5
    assert score_feedback("coffee", profile, None) == 10
    assert score_feedback("bars", profile, None) == 0
    assert score_feedback("museum", profile, FeedbackSummary(user_up=2)) == 11
    assert score_feedback("coffee", profile, FeedbackSummary(user_up=5)) == 15
    assert score_feedback("bars", profile, FeedbackSummary(user_down=3)) == 0


def test_collaborative_component():
    assert score_collaborative(None) == 0
    assert score_collaborative(FeedbackSummary(others_up=10)) == 10
    assert score_collaborative(FeedbackSummary(others_up=1)) == 2
    assert score_collaborative(FeedbackSummary(others_up=2, others_down=8)) == 0


def test_data_boosts_only_present_when_data_exists():
    profile = make_profile(budget_level=2)
    bare = score_candidate(make_candidate(), profile, _context())
    assert bare.breakdown.data_boosts == {}

    signals = PersonalSignals(
        visit_counts={"google:cafe-1": 2},
        past_ratings={"google:cafe-1": 1},
        external_likes=["Cafe-1"],
        schedule_patterns=[SchedulePattern(weekday=NOW.weekday(), time_of_day="afternoon", category="coffee")],
    )
    rich = score_candidate(make_candidate(price_level=3), profile, _context(signals=signals))

    assert rich.breakdown.data_boosts == {
        "prior_visits": 6,
        "prior_rating": -8,
        "external_likes": 6,
        "schedule_pattern": 5,
        "price_preference": -4,
    }


def test_visit_boost_is_capped():
    signals = PersonalSignals(visit_counts={"google:cafe-1": 10})
    scored = score_candidate(make_candidate(), make_profile(), _context(signals=signals))
    assert scored.breakdown.data_boosts["prior_visits"] == 9


def test_recently_shown_candidate_is_penalized():
    profile = make_profile(interests=["coffee"])
    fresh = score_candidate(make_candidate(), profile, _context())
    repeat = score_candidate(make_candidate(), profile, _context(recently_shown={"google:cafe-1": 2.0}))

    assert repeat.breakdown.recency == -40
    assert repeat.final_score == pytest.approx(fresh.final_score - 40)


@pytest.mark.parametrize(
    "pre_boost, expected",
    [(0, 0), (20, 6), (30, 9), (35, 10), (60, 18)],
)
def test_sponsored_boost(pre_boost, expected):
    sponsored = make_candidate(sponsored=True)
    assert sponsored_boost(sponsored, pre_boost) == pytest.approx(expected)


def test_sponsored_boost_ignores_organic_candidates():
    assert sponsored_boost(make_candidate(), 80) == 0


def test_why_recommended_mentions_interest():
    profile = make_profile(interests=["coffee"])
    scored = score_candidate(make_candidate(rating=4.8, rating_count=300), profile, _context())

    assert "coffee" in scored.why_recommended
    assert "Highly rated" in scored.why_recommended
