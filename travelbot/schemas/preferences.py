from __future__ import annotations

import enum
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

# Weighted maps carried by every profile, in display order.
PREFERENCE_MAPS = (
    "destination_types",
    "climates",
    "countries",
    "activities",
    "amenities",
    "property_categories",
    "star_ratings",
    "traveler_types",
)


class InteractionType(str, enum.Enum):
    destination_view = "destination_view"
    property_view = "property_view"
    amenity_interest = "amenity_interest"
    booking_intent = "booking_intent"


class WeightEntry(BaseModel):
    weight: float = Field(0.0, ge=0)
    updated_at: datetime


class BudgetSample(BaseModel):
    amount: float = Field(..., gt=0)
    currency: str = "USD"
    recorded_at: datetime


class PreferenceProfile(BaseModel):
    """
    Raw, additive preference weights for one user.
    Keys are lower-cased tags; star ratings are stored as "1".."5".
    """

    user_id: Optional[int] = None
    destination_types: Dict[str, WeightEntry] = Field(default_factory=dict)
    climates: Dict[str, WeightEntry] = Field(default_factory=dict)
    countries: Dict[str, WeightEntry] = Field(default_factory=dict)
    activities: Dict[str, WeightEntry] = Field(default_factory=dict)
    amenities: Dict[str, WeightEntry] = Field(default_factory=dict)
    property_categories: Dict[str, WeightEntry] = Field(default_factory=dict)
    star_ratings: Dict[str, WeightEntry] = Field(default_factory=dict)
    traveler_types: Dict[str, WeightEntry] = Field(default_factory=dict)
    budget_history: List[BudgetSample] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


class BudgetSummary(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None
    median: Optional[float] = None
    mean: Optional[float] = None
    currency: Optional[str] = None


class NormalizedPreferences(BaseModel):
    """Read view of a profile: each map scaled to max 1.0, weak entries dropped."""

    destination_types: Dict[str, float] = Field(default_factory=dict)
    climates: Dict[str, float] = Field(default_factory=dict)
    countries: Dict[str, float] = Field(default_factory=dict)
    activities: Dict[str, float] = Field(default_factory=dict)
    amenities: Dict[str, float] = Field(default_factory=dict)
    property_categories: Dict[str, float] = Field(default_factory=dict)
    star_ratings: Dict[str, float] = Field(default_factory=dict)
    traveler_types: Dict[str, float] = Field(default_factory=dict)
    budget: BudgetSummary = Field(default_factory=BudgetSummary)

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in PREFERENCE_MAPS) and self.budget.mean is None

    def top(self, name: str, n: int = 3) -> List[str]:
        return list(getattr(self, name))[:n]


class InteractionPayload(BaseModel):
    destination_id: Optional[int] = None
    tags: List[str] = Field(default_factory=list, examples=[["beach", "island"]])
    climate: List[str] = Field(default_factory=list, examples=[["tropical"]])
    property_id: Optional[int] = None
    category: Optional[str] = Field(None, examples=["boutique hotel"])
    star_rating: Optional[int] = Field(None, ge=1, le=5)
    amenity: Optional[str] = Field(None, examples=["spa"])
    destination_type: Optional[str] = Field(None, examples=["beach"])
    budget_per_day: Optional[float] = Field(None, gt=0, examples=[180.0])
    currency: Optional[str] = None


class InteractionRequest(BaseModel):
    interaction_type: InteractionType
    payload: InteractionPayload = Field(default_factory=InteractionPayload)


class InteractionResponse(BaseModel):
    user_id: int
    interaction_type: InteractionType
    tracked: bool
