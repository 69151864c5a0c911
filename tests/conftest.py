import pytest

from tests.fakes import DIM, FakeEmbedder, FakeIntentProvider
from travelbot.schemas.search import EntityType
from travelbot.services.preference_tracker import InMemoryPreferenceStore, PreferenceService
from travelbot.services.query_analyzer import QueryAnalyzer
from travelbot.services.recommender import TravelRecommender
from travelbot.services.vector_search import Candidate, InMemoryVectorStore, SimilaritySearch


@pytest.fixture
def catalog_store():
    store = InMemoryVectorStore()
    store.add(
        Candidate(
            id=1, entity_type=EntityType.destination, name="Phuket", country="Thailand",
            city="Phuket Town", description="Island beaches and warm water.",
            tags=("beach", "island"), climate=("tropical",), popularity_score=90,
            average_cost_per_day=120.0,
        ),
        [1.0, 0.1, 0.0, 0.0],
    )
    store.add(
        Candidate(
            id=2, entity_type=EntityType.destination, name="Santorini", country="Greece",
            description="Whitewashed villages over the caldera.",
            tags=("beach", "island"), climate=("dry",), popularity_score=85,
            average_cost_per_day=260.0,
        ),
        [0.8, 0.0, 0.3, 0.0],
    )
    store.add(
        Candidate(
            id=3, entity_type=EntityType.destination, name="Zermatt", country="Switzerland",
            tags=("mountain",), climate=("cold",), popularity_score=70,
        ),
        [0.0, 1.0, 0.0, 0.0],
    )
    store.add(
        Candidate(id=4, entity_type=EntityType.destination, name="Unembedded", country="Nowhere"),
        None,
    )
    store.add(
        Candidate(
            id=10, entity_type=EntityType.property, name="Andaman Beach Resort",
            star_rating=5, total_rooms=240, destination_id=1, destination_name="Phuket",
            destination_country="Thailand", category_name="Resort",
            amenity_names=("Spa", "Infinity Pool", "Beach Bar", "Kids Club"),
        ),
        [0.3, 0.0, 1.0, 0.0],
    )
    store.add(
        Candidate(
            id=11, entity_type=EntityType.property, name="Caldera Villas",
            star_rating=4, total_rooms=20, destination_id=2, destination_name="Santorini",
            destination_country="Greece", category_name="Villa",
        ),
        [0.2, 0.0, 1.0, 0.1],
    )
    store.add(
        Candidate(id=20, entity_type=EntityType.category, name="Resort"),
        [0.0, 0.0, 1.0, 0.0],
    )
    store.add(
        Candidate(id=30, entity_type=EntityType.amenity, name="Spa", amenity_type="Wellness"),
        [0.0, 0.0, 0.0, 1.0],
    )
    store.add(
        Candidate(id=31, entity_type=EntityType.amenity, name="Infinity Pool", amenity_type="Recreation"),
        [0.1, 0.0, 0.0, 0.9],
    )
    return store


@pytest.fixture
def beach_payload():
    return {
        "travel_dates": {"start_date": "2026-12-10", "end_date": "2026-12-20", "season": None},
        "budget": {"max_per_day": 150, "currency": "usd"},
        "destination_preferences": {"destination_type": ["beach"], "climate": ["tropical"]},
        "traveler_info": {"group_size": [2], "traveler_types": ["couple"]},
        "activity_preferences": ["relaxation"],
        "amenity_requirements": ["spa"],
        "accommodation_preferences": {"property_type": ["resort"]},
        "urgency": "planning",
        "query_intent": "recommendation",
    }


@pytest.fixture
def make_recommender(catalog_store):
    def _make(payload=None, store=None, preference_store=None, embedder=None, **kwargs):
        return TravelRecommender(
            analyzer=QueryAnalyzer(FakeIntentProvider(payload) if payload is not None else None),
            search=SimilaritySearch(store or catalog_store, dimension=DIM, timeout_seconds=1.0),
            embedder=embedder or FakeEmbedder(),
            preferences=PreferenceService(preference_store or InMemoryPreferenceStore()),
            **kwargs,
        )
    return _make
