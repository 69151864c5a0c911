from __future__ import annotations

import enum
from datetime import date as date_type
from typing import List, Optional

from pydantic import BaseModel, Field


class Season(str, enum.Enum):
    spring = "spring"
    summer = "summer"
    fall = "fall"
    winter = "winter"


class BudgetLevel(str, enum.Enum):
    budget = "budget"
    mid_range = "mid-range"
    luxury = "luxury"


class Urgency(str, enum.Enum):
    immediate = "immediate"
    planning = "planning"
    flexible = "flexible"


class QueryIntent(str, enum.Enum):
    recommendation = "recommendation"
    information = "information"
    booking = "booking"
    comparison = "comparison"


class TravelDates(BaseModel):
    start_date: Optional[date_type] = None
    end_date: Optional[date_type] = None
    flexible: bool = True
    season: Optional[Season] = None
    duration_days: Optional[int] = None


class Budget(BaseModel):
    min_per_day: Optional[float] = None
    max_per_day: Optional[float] = None
    total_budget: Optional[float] = None
    currency: str = "USD"
    budget_level: Optional[BudgetLevel] = None


class DestinationPreferences(BaseModel):
    destination_type: List[str] = Field(default_factory=list)
    climate: List[str] = Field(default_factory=list)
    specific_locations: List[str] = Field(default_factory=list)
    avoid_locations: List[str] = Field(default_factory=list)


class TravelerInfo(BaseModel):
    group_size: Optional[int] = None
    traveler_types: List[str] = Field(default_factory=list)
    ages: List[str] = Field(default_factory=list)
    special_needs: List[str] = Field(default_factory=list)


class AccommodationPreferences(BaseModel):
    star_rating: Optional[int] = None
    room_type: List[str] = Field(default_factory=list)
    property_type: List[str] = Field(default_factory=list)


class QueryAnalysis(BaseModel):
    """Normalised travel intent. Built by services.query_normalizer only."""

    travel_dates: TravelDates = Field(default_factory=TravelDates)
    budget: Budget = Field(default_factory=Budget)
    destination_preferences: DestinationPreferences = Field(default_factory=DestinationPreferences)
    traveler_info: TravelerInfo = Field(default_factory=TravelerInfo)
    activity_preferences: List[str] = Field(default_factory=list)
    amenity_requirements: List[str] = Field(default_factory=list)
    accommodation_preferences: AccommodationPreferences = Field(
        default_factory=AccommodationPreferences
    )
    urgency: Urgency = Urgency.flexible
    query_intent: QueryIntent = QueryIntent.recommendation


class SearchTerms(BaseModel):
    """Flattened per-facet query strings; a facet is absent when empty."""

    destination: Optional[str] = None
    amenities: Optional[str] = None
    activities: Optional[str] = None
    accommodation: Optional[str] = None

    def is_empty(self) -> bool:
        return not any((self.destination, self.amenities, self.activities, self.accommodation))
