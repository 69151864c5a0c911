import asyncio
from datetime import date

import pytest

from tests.fakes import FakeEmbedder
from travelbot.schemas.query import SearchTerms
from travelbot.schemas.search import EntityType
from travelbot.services.context_builder import UserContext
from travelbot.services.preference_tracker import InMemoryPreferenceStore
from travelbot.services.query_normalizer import normalize_analysis
from travelbot.services.recommender import (
    broad_search_term,
    build_generation_messages,
    explain_recommendation,
    facet_plan,
    search_strategy,
)
from travelbot.services.vector_search import EmbeddingDimensionMismatch, InMemoryVectorStore

TODAY = date(2026, 10, 19)


class _FailingTypeStore(InMemoryVectorStore):
    def __init__(self, base, failing):
        super().__init__()
        self._records = base._records
        self.failing = failing

    async def nearest(self, entity_type, vector, **kwargs):
        if entity_type is self.failing:
            raise ConnectionError(f"{entity_type.value} index unavailable")
        return await super().nearest(entity_type, vector, **kwargs)


class _DictCache:
    def __init__(self):
        self.data = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ttl_seconds=None):
        self.data[key] = value


def test_search_strategy_and_terms():
    located = normalize_analysis({"destination_preferences": {"specific_locations": ["Bali"]}})
    assert search_strategy(located) == "specific_location_search"
    active = normalize_analysis({"activity_preferences": ["hiking"]})
    assert search_strategy(active) == "activity_based_search"
    assert broad_search_term(active) == "hiking destination"
    typed = normalize_analysis({"destination_preferences": {"destination_type": ["beach", "island"]}})
    assert search_strategy(typed) == "destination_type_search"
    assert broad_search_term(typed) == "beach island"
    assert broad_search_term(normalize_analysis({})) == "travel destination"


def test_facet_plan_routes_accommodation_to_properties_and_categories():
    plan = facet_plan(SearchTerms(accommodation="resort", amenities="spa"))
    assert set(plan) == {EntityType.property, EntityType.category, EntityType.amenity}
    assert plan[EntityType.property][0] == "resort"


def test_generation_messages():
    messages = build_generation_messages(
        "CONTEXT",
        "Somewhere warm?",
        history=[{"role": "user", "content": "hi"}, {"role": "system", "content": "ignored"}],
        follow_ups=["When are you planning to travel?"],
    )
    assert messages[0] == {"role": "user", "content": "CONTEXT"}
    assert messages[1] == {"role": "user", "content": "hi"}
    assert len(messages) == 3
    assert messages[-1]["content"].startswith("Somewhere warm?\n\nTo provide better recommendations")
    assert messages[-1]["content"].endswith("- When are you planning to travel?")


def test_full_pipeline(make_recommender, beach_payload):
    result = asyncio.run(
        make_recommender(beach_payload).recommend("Beach resort with a spa in December", today=TODAY)
    )
    assert result.search_terms.destination == "beach tropical"
    assert result.search_strategy == "activity_based_search"
    assert [s.candidate.name for s in result.ranked.destinations] == ["Phuket", "Santorini"]
    assert {s.candidate.name for s in result.ranked.amenities} == {"Spa", "Infinity Pool"}
    assert result.failed_entity_types == set()
    assert not result.broad_search
    assert not result.degraded
    assert result.follow_up_questions == []

    context = result.context
    assert "• Phuket (Phuket Town), Thailand" in context
    assert "    - Andaman Beach Resort (5★) - 240 rooms - Resort" in context
    assert "- Matching Accommodation Types: Resort" in context
    assert "RELEVANT AMENITIES (by preference match):" in context
    assert result.messages[0]["content"] == context
    assert result.messages[-1] == {"role": "user", "content": "Beach resort with a spa in December"}


def test_failed_amenity_search_still_recommends(make_recommender, beach_payload, catalog_store):
    store = _FailingTypeStore(catalog_store, EntityType.amenity)
    result = asyncio.run(make_recommender(beach_payload, store=store).recommend("beach", today=TODAY))
    assert result.failed_entity_types == {EntityType.amenity}
    assert result.ranked.amenities == []
    assert [s.candidate.name for s in result.ranked.destinations][0] == "Phuket"
    assert "RELEVANT AMENITIES" not in result.context
    assert "RELEVANT DESTINATIONS" in result.context
    assert explain_recommendation(result)["search_process"]["failed_entity_types"] == ["amenity"]


def test_failed_destination_search_uses_popular_destinations(make_recommender, beach_payload, catalog_store):
    store = _FailingTypeStore(catalog_store, EntityType.destination)
    result = asyncio.run(make_recommender(beach_payload, store=store).recommend("beach", today=TODAY))
    assert EntityType.destination in result.failed_entity_types
    names = [s.candidate.name for s in result.ranked.destinations]
    assert "Phuket" in names
    assert all(s.candidate.similarity == 0.5 for s in result.ranked.destinations)


def test_vague_query_runs_broad_search(make_recommender):
    result = asyncio.run(make_recommender().recommend("Where should I go?", today=TODAY))
    assert result.search_terms.is_empty()
    assert result.broad_search
    assert result.search_strategy == "broad_semantic_search"
    names = {s.candidate.name for s in result.ranked.destinations}
    assert {"Phuket", "Santorini"} <= names
    assert result.ranked.properties
    assert len(result.follow_up_questions) == 2
    assert "To provide better recommendations" in result.messages[-1]["content"]


def test_dimension_mismatch_is_fatal(make_recommender, beach_payload):
    recommender = make_recommender(beach_payload, embedder=FakeEmbedder(dim=6))
    with pytest.raises(EmbeddingDimensionMismatch):
        asyncio.run(recommender.recommend("beach", today=TODAY))


def test_preferences_are_learned_and_applied(make_recommender, beach_payload):
    store = InMemoryPreferenceStore()
    recommender = make_recommender(beach_payload, preference_store=store)
    result = asyncio.run(recommender.recommend("beach", user_id=5, today=TODAY))
    assert "beach" in store.profiles[5].destination_types
    assert result.ranked.preference_influence == "high"
    assert "- Learned Destination Types: beach" in result.context


def test_returned_destinations_teach_countries(make_recommender, beach_payload):
    store = InMemoryPreferenceStore()
    recommender = make_recommender(beach_payload, preference_store=store)
    asyncio.run(recommender.recommend("beach", user_id=5, today=TODAY))
    countries = store.profiles[5].countries
    assert {name: entry.weight for name, entry in countries.items()} == {"thailand": 0.5, "greece": 0.5}

    second = asyncio.run(recommender.recommend("beach", user_id=5, today=TODAY))
    assert "- Learned Countries: greece, thailand" in second.context
    assert store.profiles[5].countries["thailand"].weight == 1.0


def test_anonymous_requests_learn_nothing(make_recommender, beach_payload):
    store = InMemoryPreferenceStore()
    asyncio.run(make_recommender(beach_payload, preference_store=store).recommend("beach", today=TODAY))
    assert store.profiles == {}


def test_user_profile_and_query_log(make_recommender, beach_payload):
    logged = []

    async def load_user(user_id):
        return UserContext(name="Sam", budget_per_day=140.0)

    async def log_query(user_id, text, vector):
        logged.append((user_id, text, len(vector)))

    recommender = make_recommender(beach_payload, user_loader=load_user, query_logger=log_query)
    result = asyncio.run(recommender.recommend("beach", user_id=3, today=TODAY))
    assert "- Name: Sam" in result.context
    assert "- Preferred Budget: $140 per day" in result.context
    assert logged == [(3, "beach tropical", 4)]


def test_query_vectors_are_cached(make_recommender, beach_payload):
    embedder = FakeEmbedder()
    cache = _DictCache()
    recommender = make_recommender(beach_payload, embedder=embedder, vector_cache=cache)
    asyncio.run(recommender.recommend("beach", today=TODAY))
    calls = len(embedder.calls)
    asyncio.run(recommender.recommend("beach", today=TODAY))
    assert len(embedder.calls) == calls
    assert all(key.startswith("fake-embedder:") for key in cache.data)


def test_explanation_shape(make_recommender, beach_payload):
    result = asyncio.run(make_recommender(beach_payload).recommend("beach", today=TODAY))
    explanation = explain_recommendation(result)
    assert explanation["query_understanding"]["detected_preferences"]["season"] == "winter"
    assert explanation["ranking"]["method"] == "composite"
    assert explanation["top_recommendation"]["name"] == "Phuket"
    assert set(explanation["top_recommendation"]["criteria"]) >= {"semantic_similarity", "budget_match"}


def test_personalized_without_history_uses_popular(make_recommender):
    results = asyncio.run(make_recommender().personalized(99, limit=2))
    assert [s.candidate.name for s in results] == ["Phuket", "Santorini"]


def test_personalized_follows_learned_tastes(make_recommender, beach_payload):
    store = InMemoryPreferenceStore()
    recommender = make_recommender(beach_payload, preference_store=store)
    asyncio.run(recommender.recommend("beach", user_id=8, today=TODAY))
    results = asyncio.run(recommender.personalized(8, limit=3))
    assert results[0].candidate.name == "Phuket"
    assert "Zermatt" not in {s.candidate.name for s in results}
