from datetime import date

import pytest

from travelbot.schemas.preferences import BudgetSummary, NormalizedPreferences
from travelbot.schemas.search import EntityType
from travelbot.services.context_builder import (
    TRUNCATION_MARKER,
    ContextBuilder,
    UserContext,
    clip_text,
    months_until,
    truncate_context,
)
from travelbot.services.query_normalizer import default_analysis, normalize_analysis
from travelbot.services.ranker import RankedResults, ResultRanker
from travelbot.services.vector_search import Candidate

TODAY = date(2026, 10, 19)


def _ranked(destinations=(), properties=(), categories=(), amenities=(), degraded=False):
    ranked = ResultRanker().rank(
        {
            EntityType.destination: list(destinations),
            EntityType.property: list(properties),
            EntityType.category: list(categories),
            EntityType.amenity: list(amenities),
        },
        default_analysis(),
    )
    ranked.degraded = degraded
    return ranked


PHUKET = Candidate(
    id=1, entity_type=EntityType.destination, name="Phuket", country="Thailand",
    city="Phuket Town", similarity=0.95, description="Island beaches and warm water.",
    average_cost_per_day=120.0,
)
RESORT = Candidate(
    id=10, entity_type=EntityType.property, name="Andaman Beach Resort", similarity=0.8,
    star_rating=5, total_rooms=240, destination_id=1, destination_name="Phuket",
    destination_country="Thailand", category_name="Resort",
    amenity_names=("Spa", "Infinity Pool", "Beach Bar", "Kids Club"),
)
HOSTEL = Candidate(
    id=11, entity_type=EntityType.property, name="Old Town Hostel", similarity=0.7,
    star_rating=2, destination_id=99, destination_name="Lisbon", destination_country="Portugal",
)


def _analysis():
    return normalize_analysis({
        "travel_dates": {"start_date": "2026-12-10", "end_date": "2026-12-20"},
        "budget": {"max_per_day": 150},
        "destination_preferences": {"destination_type": ["beach"]},
        "amenity_requirements": ["spa"],
    })


def test_identical_inputs_give_identical_text():
    ranked = _ranked([PHUKET], [RESORT, HOSTEL])
    builder = ContextBuilder()
    first = builder.build(ranked, _analysis(), today=TODAY)
    second = builder.build(ranked, _analysis(), today=TODAY)
    assert first == second


def test_sections_in_fixed_order():
    amenities = [Candidate(id=30, entity_type=EntityType.amenity, name="Spa", amenity_type="Wellness", similarity=0.9)]
    context = ContextBuilder().build(
        _ranked([PHUKET], [RESORT, HOSTEL], amenities=amenities),
        _analysis(),
        today=TODAY,
        user=UserContext(name="Sam", interests=("diving",)),
    )
    headers = [
        "You are TravelBot",
        "USER PROFILE:",
        "CURRENT QUERY ANALYSIS:",
        "RELEVANT DESTINATIONS (ranked by relevance):",
        "RELEVANT PROPERTIES (semantic matches):",
        "RELEVANT AMENITIES (by preference match):",
        "SEASONAL CONSIDERATIONS:",
        "RECOMMENDATION GUIDELINES:",
    ]
    positions = [context.index(h) for h in headers]
    assert positions == sorted(positions)
    assert context.endswith("\n")


def test_empty_sections_are_omitted():
    context = ContextBuilder().build(_ranked([PHUKET]), default_analysis(), today=TODAY)
    assert "RELEVANT AMENITIES" not in context
    assert "RELEVANT PROPERTIES" not in context
    assert "USER PROFILE:" not in context
    assert "CURRENT QUERY ANALYSIS:" not in context
    assert "SEASONAL CONSIDERATIONS:" in context


def test_destination_line_and_nested_properties():
    context = ContextBuilder().build(_ranked([PHUKET], [RESORT, HOSTEL]), _analysis(), today=TODAY)
    assert "• Phuket (Phuket Town), Thailand [Match: 95.0%]" in context
    assert "  Featured Properties:" in context
    assert "    - Andaman Beach Resort (5★) - 240 rooms - Resort" in context
    assert "      Amenities: Spa, Infinity Pool, Beach Bar" in context
    # nested under Phuket, so not listed again as a standalone match
    assert context.count("Andaman Beach Resort") == 1
    assert "• Old Town Hostel - Lisbon, Portugal [Match: 70.0%]" in context


def test_featured_properties_override_nesting():
    context = ContextBuilder().build(
        _ranked([PHUKET], [RESORT]), _analysis(), today=TODAY, featured_properties={}
    )
    assert "Featured Properties:" not in context
    assert "• Andaman Beach Resort - Phuket, Thailand" in context


def test_categories_merge_into_property_section():
    categories = [Candidate(id=20, entity_type=EntityType.category, name="Resort", similarity=0.9)]
    context = ContextBuilder().build(_ranked(categories=categories), default_analysis(), today=TODAY)
    assert "RELEVANT PROPERTIES (semantic matches):\n- Matching Accommodation Types: Resort" in context


def test_amenities_grouped_by_type():
    amenities = [
        Candidate(id=i, entity_type=EntityType.amenity, name=f"Pool {i}", amenity_type="Recreation", similarity=0.9)
        for i in range(6)
    ]
    context = ContextBuilder().build(_ranked(amenities=amenities), default_analysis(), today=TODAY)
    assert "• Recreation: Pool 0, Pool 1, Pool 2, Pool 3 and 2 more" in context


def test_learned_preferences_in_profile():
    prefs = NormalizedPreferences(
        destination_types={"beach": 1.0, "island": 0.5},
        budget=BudgetSummary(min=100, max=200, median=150, mean=150, currency="USD"),
    )
    context = ContextBuilder().build(_ranked([PHUKET]), default_analysis(), today=TODAY, preferences=prefs)
    assert "- Learned Destination Types: beach, island" in context
    assert "- Typical Daily Budget: $150 (range $100-$200)" in context


def test_guidelines_follow_analysis():
    analysis = normalize_analysis({
        "urgency": "immediate",
        "query_intent": "comparison",
        "traveler_info": {"special_needs": ["wheelchair access"]},
    })
    context = ContextBuilder().build(_ranked([PHUKET], degraded=True), analysis, today=TODAY)
    assert "- Provide detailed comparisons between options" in context
    assert "- Focus on immediate availability and booking urgency" in context
    assert "- IMPORTANT: Address special needs and accessibility requirements" in context
    assert "- Ranking is approximate for this request" in context


def test_seasonal_section():
    context = ContextBuilder().build(_ranked([PHUKET]), _analysis(), today=TODAY)
    assert "- Current Season: Fall" in context
    assert "- Planning Timeline: Short notice - limited availability" in context
    summer = normalize_analysis({"travel_dates": {"season": "summer"}})
    context = ContextBuilder().build(_ranked([PHUKET]), summer, today=TODAY)
    assert "- Requested Season: Summer" in context


def test_months_until():
    assert months_until(date(2027, 6, 1), TODAY) == 7
    assert months_until(date(2026, 11, 10), TODAY) == 0
    assert months_until(date(2026, 12, 19), TODAY) == 2


def test_long_context_is_truncated_on_a_line_boundary():
    destinations = [
        Candidate(
            id=i, entity_type=EntityType.destination, name=f"Destination {i}", country="Somewhere",
            similarity=0.9 - i * 0.01, description="A very long description of sandy beaches " * 10,
        )
        for i in range(8)
    ]
    ranked = _ranked(destinations)
    full = ContextBuilder(max_chars=100_000).build(ranked, _analysis(), today=TODAY)
    clipped = ContextBuilder(max_chars=900).build(ranked, _analysis(), today=TODAY)

    assert len(full) > 900
    assert len(clipped) <= 900
    assert clipped.endswith("\n\n" + TRUNCATION_MARKER + "\n")
    body = clipped[: -len(TRUNCATION_MARKER) - 3]
    assert full.startswith(body)
    assert full[len(body)] == "\n"


def test_truncate_context_short_text_unchanged():
    assert truncate_context("short\n", 100) == "short\n"
    with pytest.raises(ValueError):
        truncate_context("x" * 50, 10)


def test_clip_text_word_boundary():
    assert clip_text("  many   spaces here ", 100) == "many spaces here"
    assert clip_text("alpha beta gamma delta", 14) == "alpha beta..."
    assert len(clip_text("word " * 100, 50)) <= 50
