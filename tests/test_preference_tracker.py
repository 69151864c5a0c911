import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from travelbot.schemas.preferences import (
    InteractionPayload,
    InteractionType,
    PreferenceProfile,
    WeightEntry,
)
from travelbot.schemas.search import EntityType
from travelbot.services.preference_tracker import (
    InMemoryPreferenceStore,
    PreferenceService,
    decay_multiplier,
    normalize_weights,
    normalized_preferences,
    summarize_budget,
    track_from_query,
    track_from_results,
    track_interaction,
)
from travelbot.services.query_normalizer import normalize_analysis
from travelbot.services.vector_search import Candidate

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _entry(weight, days_ago=0):
    return WeightEntry(weight=weight, updated_at=NOW - timedelta(days=days_ago))


def _beach_query(**budget):
    return normalize_analysis({
        "destination_preferences": {"destination_type": ["Beach"], "climate": ["tropical"]},
        "activity_preferences": ["snorkeling"],
        "amenity_requirements": ["spa"],
        "traveler_info": {"traveler_types": ["couple", "family"]},
        "budget": budget,
    })


def test_weak_entries_are_dropped():
    weights = {"beach": _entry(4), "mountain": _entry(1)}
    assert normalize_weights(weights, now=NOW, threshold=0.3, decay_days=180) == {"beach": 1.0}


def test_strongest_entry_is_one():
    weights = {"beach": _entry(3), "city": _entry(2), "lake": _entry(6)}
    normalized = normalize_weights(weights, now=NOW, threshold=0.3, decay_days=180)
    assert max(normalized.values()) == 1.0
    assert all(value >= 0.3 for value in normalized.values())
    assert list(normalized) == ["lake", "beach", "city"]


def test_empty_map_normalizes_to_empty():
    assert normalize_weights({}, now=NOW, threshold=0.3, decay_days=180) == {}


def test_stepped_decay():
    assert decay_multiplier(NOW - timedelta(days=100), NOW, 180) == 1.0
    assert decay_multiplier(NOW - timedelta(days=200), NOW, 180) == 0.5
    assert decay_multiplier(NOW - timedelta(days=400), NOW, 180) == 0.25
    naive = (NOW - timedelta(days=200)).replace(tzinfo=None)
    assert decay_multiplier(naive, NOW, 180) == 0.5


def test_old_entries_lose_to_fresh_ones():
    weights = {"beach": _entry(4, days_ago=200), "mountain": _entry(3)}
    normalized = normalize_weights(weights, now=NOW, threshold=0.3, decay_days=180)
    assert normalized["mountain"] == 1.0
    assert normalized["beach"] == pytest.approx(2 / 3)


def test_track_from_query_bumps_explicit_facets():
    profile = track_from_query(PreferenceProfile(user_id=1), _beach_query(), now=NOW)
    profile = track_from_query(profile, _beach_query(), now=NOW)
    assert profile.destination_types["beach"].weight == 2.0
    assert profile.climates["tropical"].weight == 2.0
    assert profile.activities["snorkeling"].weight == 2.0
    assert profile.amenities["spa"].weight == 2.0
    assert set(profile.traveler_types) == {"couple"}
    assert profile.updated_at == NOW


def test_tracking_does_not_mutate_input():
    original = PreferenceProfile(user_id=1)
    track_from_query(original, _beach_query(max_per_day=120), now=NOW)
    assert original.destination_types == {}
    assert original.budget_history == []


def test_budget_history_is_bounded():
    profile = PreferenceProfile(user_id=1)
    for amount in range(1, 15):
        profile = track_from_query(profile, _beach_query(max_per_day=amount * 10), now=NOW, history_size=10)
    assert len(profile.budget_history) == 10
    assert profile.budget_history[0].amount == 50.0
    assert profile.budget_history[-1].amount == 140.0


def test_budget_summary():
    profile = PreferenceProfile(user_id=1)
    for amount in (100, 300, 200):
        profile = track_from_query(profile, _beach_query(max_per_day=amount), now=NOW)
    summary = summarize_budget(profile)
    assert (summary.min, summary.max, summary.median, summary.mean) == (100, 300, 200, 200)
    assert summary.currency == "USD"
    assert summarize_budget(PreferenceProfile()).mean is None


def test_interaction_weights_are_ordered():
    profile = PreferenceProfile(user_id=1)
    profile = track_interaction(
        profile, InteractionType.booking_intent, InteractionPayload(destination_type="beach"), now=NOW
    )
    profile = track_interaction(
        profile, InteractionType.destination_view, InteractionPayload(tags=["city"]), now=NOW
    )
    profile = track_interaction(
        profile, "amenity_interest", InteractionPayload(amenity="Spa"), now=NOW
    )
    profile = track_interaction(
        profile, InteractionType.property_view,
        InteractionPayload(category="Boutique Hotel", star_rating=4), now=NOW,
    )
    assert profile.destination_types["beach"].weight == 3.0
    assert profile.destination_types["city"].weight == 2.0
    assert profile.property_categories["boutique hotel"].weight == 1.5
    assert profile.star_ratings["4"].weight == 1.5
    assert profile.amenities["spa"].weight == 1.0


def test_booking_intent_records_budget():
    profile = track_interaction(
        PreferenceProfile(user_id=1),
        InteractionType.booking_intent,
        InteractionPayload(destination_type="beach", budget_per_day=180.0, currency="EUR"),
        now=NOW,
    )
    assert profile.budget_history[0].amount == 180.0
    assert profile.budget_history[0].currency == "EUR"


def test_unknown_interaction_type_rejected():
    with pytest.raises(ValueError):
        track_interaction(PreferenceProfile(user_id=1), "wishlist")


def test_normalized_preferences_view():
    profile = PreferenceProfile(
        user_id=1,
        destination_types={"beach": _entry(4), "mountain": _entry(1)},
        climates={"tropical": _entry(1)},
    )
    prefs = normalized_preferences(profile, now=NOW, threshold=0.3, decay_days=180)
    assert prefs.destination_types == {"beach": 1.0}
    assert prefs.climates == {"tropical": 1.0}
    assert prefs.activities == {}
    assert not prefs.is_empty()


def test_service_round_trip():
    service = PreferenceService(InMemoryPreferenceStore())
    assert asyncio.run(service.track_query(7, _beach_query(max_per_day=150))) is True
    prefs = asyncio.run(service.preferences(7))
    assert prefs.destination_types == {"beach": 1.0}
    assert prefs.budget.median == 150.0


def test_new_user_has_empty_preferences():
    prefs = asyncio.run(PreferenceService(InMemoryPreferenceStore()).preferences(42))
    assert prefs.is_empty()


class _BrokenStore:
    async def load(self, user_id):
        raise ConnectionError("database is down")

    async def save(self, profile):
        raise ConnectionError("database is down")


def test_service_swallows_store_failures():
    service = PreferenceService(_BrokenStore())
    assert asyncio.run(service.track_query(1, _beach_query())) is False
    assert asyncio.run(service.track_interaction(1, InteractionType.destination_view)) is False
    assert asyncio.run(service.preferences(1)) is None


def test_naive_now_is_treated_as_utc():
    profile = PreferenceProfile(user_id=1, destination_types={"beach": _entry(2, days_ago=200)})
    prefs = normalized_preferences(profile, now=NOW.replace(tzinfo=None), threshold=0.3, decay_days=180)
    assert prefs.destination_types == {"beach": 1.0}
    assert decay_multiplier(NOW - timedelta(days=200), NOW.replace(tzinfo=None), 180) == 0.5


def _place(country):
    return Candidate(id=1, entity_type=EntityType.destination, name="x", country=country)


def test_results_bump_top_three_countries():
    returned = [_place("Thailand"), _place("Greece"), _place("Thailand"), _place("Peru")]
    profile = track_from_results(PreferenceProfile(user_id=1), returned, now=NOW)
    assert profile.countries["thailand"].weight == 1.0
    assert profile.countries["greece"].weight == 0.5
    assert "peru" not in profile.countries
    assert profile.updated_at == NOW


def test_results_without_country_are_ignored():
    original = PreferenceProfile(user_id=1)
    profile = track_from_results(original, [_place(None)], now=NOW)
    assert profile.countries == {}
    assert original.updated_at is None


def test_service_tracks_results():
    service = PreferenceService(InMemoryPreferenceStore())
    assert asyncio.run(service.track_results(4, [_place("Greece")])) is True
    assert asyncio.run(service.preferences(4)).countries == {"greece": 1.0}


def test_user_locks_are_released():
    service = PreferenceService(InMemoryPreferenceStore())

    async def many_updates():
        await asyncio.gather(*(service.track_query(user_id % 3, _beach_query()) for user_id in range(9)))

    asyncio.run(many_updates())
    assert service._locks == {}
    assert asyncio.run(service.track_query(1, _beach_query())) is True
    assert service._locks == {}
    assert asyncio.run(service.track_query(2, _beach_query())) is True
    profile = asyncio.run(service.store.load(0))
    assert profile.destination_types["beach"].weight == 3.0


def test_user_lock_released_after_store_failure():
    service = PreferenceService(_BrokenStore())
    assert asyncio.run(service.track_query(1, _beach_query())) is False
    assert service._locks == {}
