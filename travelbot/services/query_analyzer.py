from __future__ import annotations

import json
import logging
from datetime import date as date_type
from typing import Optional

from travelbot.schemas.query import QueryAnalysis
from travelbot.services.intent_extraction import IntentExtractionProvider
from travelbot.services.query_normalizer import (
    IntentParseError,
    default_analysis,
    normalize_analysis,
    parse_analysis_text,
)

logger = logging.getLogger(__name__)

_FORMAT_EXAMPLE = {
    "travel_dates": {
        "start_date": "YYYY-MM-DD or null",
        "end_date": "YYYY-MM-DD or null",
        "flexible": "true/false",
        "season": "spring/summer/fall/winter or null",
        "duration_days": "number or null",
    },
    "budget": {
        "min_per_day": "number or null",
        "max_per_day": "number or null",
        "total_budget": "number or null",
        "currency": "USD/EUR/etc or null",
        "budget_level": "budget/mid-range/luxury or null",
    },
    "destination_preferences": {
        "destination_type": ["beach", "city", "mountain", "countryside", "island", "desert"],
        "climate": ["tropical", "temperate", "cold", "dry", "humid"],
        "specific_locations": ["location names mentioned"],
        "avoid_locations": ["locations to avoid"],
    },
    "traveler_info": {
        "group_size": "number or null",
        "traveler_types": ["solo", "couple", "family", "friends", "business"],
        "ages": ["adult", "children", "elderly"],
        "special_needs": ["accessibility", "dietary", "medical"],
    },
    "activity_preferences": [
        "adventure", "relaxation", "culture", "nightlife", "nature",
        "wellness", "sports", "shopping", "food",
    ],
    "amenity_requirements": [
        "spa", "pool", "gym", "restaurant", "bar", "wifi", "parking",
        "pet-friendly", "all-inclusive",
    ],
    "accommodation_preferences": {
        "star_rating": "number or null",
        "room_type": ["suite", "villa", "standard", "apartment"],
        "property_type": ["resort", "hotel", "boutique", "hostel", "vacation-rental"],
    },
    "urgency": "immediate/planning/flexible",
    "query_intent": "recommendation/information/booking/comparison",
}


def build_analysis_prompt(message: str, today: date_type) -> str:
    return f"""Analyze this travel query and extract structured information. Respond with ONLY valid JSON, no explanations.

Current date: {today.isoformat()}

User query: {json.dumps(message)}

Extract the following information and respond with JSON in this exact format:
{json.dumps(_FORMAT_EXAMPLE, indent=2)}

Rules:
- Use null for unknown/unmentioned values
- Use empty arrays [] for categories with no matches
- Be conservative - only extract explicitly mentioned information
- For dates, if relative terms like "next month" are used, calculate the actual date
- For budget, convert to USD daily rates when possible
- Extract destination types from context (e.g., "beach vacation" = ["beach"])"""


class QueryAnalyzer:
    """User message → validated QueryAnalysis. Never raises."""

    def __init__(self, provider: Optional[IntentExtractionProvider]):
        self.provider = provider

    async def analyze(self, message: str, today: date_type) -> QueryAnalysis:
        if self.provider is None:
            return default_analysis()
        try:
            raw_text = await self.provider.complete(build_analysis_prompt(message, today))
        except Exception as exc:
            logger.warning("Intent extraction call failed — using defaults: %s", exc)
            return default_analysis()

        try:
            raw = parse_analysis_text(raw_text)
        except IntentParseError as exc:
            logger.warning("Could not parse intent JSON — using defaults: %s", exc)
            return default_analysis()

        return normalize_analysis(raw)
