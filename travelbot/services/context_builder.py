"""
Renders ranked candidates into the text block handed to the generation model.

Section order is fixed; a section whose input is empty is left out.
Output depends only on the arguments (including `today`), so identical
inputs give byte-identical text.
"""
from __future__ import annotations

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date as date_type
from typing import Dict, List, Mapping, Optional, Sequence

from travelbot.core.config import settings
from travelbot.schemas.preferences import NormalizedPreferences
from travelbot.schemas.query import QueryAnalysis, QueryIntent, Urgency
from travelbot.services.ranker import SEASON_BY_MONTH, RankedResults, ScoredCandidate
from travelbot.services.vector_search import Candidate

logger = logging.getLogger(__name__)

MAX_DESTINATIONS = 8
MAX_PROPERTIES_PER_DESTINATION = 4
MAX_STANDALONE_PROPERTIES = 6
MAX_AMENITIES_PER_TYPE = 4
MAX_NESTED_AMENITIES = 3
DESTINATION_DESCRIPTION_CHARS = 200
PROPERTY_DESCRIPTION_CHARS = 150
LEARNED_PREFERENCES_SHOWN = 3

TRUNCATION_MARKER = "[Context truncated to fit limits]"
_TRUNCATION_SUFFIX = "\n\n" + TRUNCATION_MARKER + "\n"

SYSTEM_FRAMING = (
    "You are TravelBot, an expert AI travel advisor with access to a comprehensive "
    "database of destinations, resorts, and amenities. Your recommendations are powered "
    "by semantic search and should be personalized, practical, and engaging."
)

_INTENT_GUIDELINES = {
    QueryIntent.comparison: "- Provide detailed comparisons between options",
    QueryIntent.information: "- Focus on educational content and destination details",
    QueryIntent.booking: "- Focus on concrete options the user can act on now",
    QueryIntent.recommendation: "- Provide balanced recommendations with options",
}

_LEARNED_LABELS = (
    ("destination_types", "Learned Destination Types"),
    ("climates", "Learned Climates"),
    ("countries", "Learned Countries"),
    ("activities", "Learned Activities"),
    ("amenities", "Learned Amenities"),
    ("property_categories", "Learned Accommodation Types"),
)


@dataclass(frozen=True)
class UserContext:
    name: Optional[str] = None
    budget_per_day: Optional[float] = None
    interests: Sequence[str] = field(default_factory=tuple)
    climate_preferences: Sequence[str] = field(default_factory=tuple)

    @classmethod
    def from_user(cls, user) -> "UserContext":
        return cls(
            name=user.full_name,
            budget_per_day=user.budget_per_day,
            interests=tuple(user.interests or ()),
            climate_preferences=tuple(user.climate_preferences or ()),
        )


# ── Text helpers ──────────────────────────────────────────────────────────────

def clip_text(text: Optional[str], limit: int) -> str:
    """Collapse whitespace and clip to `limit` chars at a word boundary."""
    clean = re.sub(r"\s+", " ", text or "").strip()
    if len(clean) <= limit:
        return clean
    head = clean[: max(limit - 3, 0)]
    space = head.rfind(" ")
    if space > 0:
        head = head[:space]
    return head.rstrip() + "..."


def truncate_context(context: str, max_chars: int) -> str:
    """Cut at the last complete line that fits, then append the marker."""
    if len(context) <= max_chars:
        return context
    budget = max_chars - len(_TRUNCATION_SUFFIX)
    if budget <= 0:
        raise ValueError(f"max_chars={max_chars} leaves no room for content")
    head = context[:budget]
    newline = head.rfind("\n")
    head = head[:newline].rstrip("\n") if newline >= 0 else ""
    return head + _TRUNCATION_SUFFIX


def _money(amount: float) -> str:
    return f"${amount:,.0f}"


def _percent(similarity: Optional[float]) -> str:
    if similarity is None:
        return "N/A"
    return f"{round(similarity * 100, 1)}%"


def season_name(month: int) -> str:
    return SEASON_BY_MONTH[month].value.capitalize()


def months_until(start: date_type, today: date_type) -> int:
    months = (start.year - today.year) * 12 + (start.month - today.month)
    if start.day < today.day:
        months -= 1
    return months


# ── Sections ──────────────────────────────────────────────────────────────────

def _user_section(user: Optional[UserContext], prefs: Optional[NormalizedPreferences]) -> List[str]:
    lines: List[str] = []
    if user is not None:
        if user.name:
            lines.append(f"- Name: {user.name}")
        if user.budget_per_day:
            lines.append(f"- Preferred Budget: {_money(user.budget_per_day)} per day")
        if user.interests:
            lines.append(f"- Interests: {', '.join(user.interests)}")
        if user.climate_preferences:
            lines.append(f"- Climate Preferences: {', '.join(user.climate_preferences)}")
    if prefs is not None:
        for name, label in _LEARNED_LABELS:
            top = prefs.top(name, LEARNED_PREFERENCES_SHOWN)
            if top:
                lines.append(f"- {label}: {', '.join(top)}")
        if prefs.budget.median is not None:
            lines.append(
                f"- Typical Daily Budget: {_money(prefs.budget.median)} "
                f"(range {_money(prefs.budget.min)}-{_money(prefs.budget.max)})"
            )
    return ["USER PROFILE:", *lines] if lines else []


def _query_section(analysis: QueryAnalysis) -> List[str]:
    dates = analysis.travel_dates
    budget = analysis.budget
    traveler = analysis.traveler_info
    prefs = analysis.destination_preferences
    lines: List[str] = []

    if dates.start_date:
        line = f"- Travel Dates: {dates.start_date.isoformat()}"
        if dates.end_date:
            line += f" to {dates.end_date.isoformat()}"
        if dates.duration_days:
            line += f" ({dates.duration_days} days)"
        lines.append(line)
    elif dates.season:
        lines.append(f"- Preferred Season: {dates.season.value.capitalize()}")
    if budget.budget_level:
        lines.append(f"- Budget Level: {budget.budget_level.value.capitalize()}")
    if budget.max_per_day:
        lines.append(f"- Max Daily Budget: {_money(budget.max_per_day)} {budget.currency}")
    if budget.total_budget:
        lines.append(f"- Total Budget: {_money(budget.total_budget)} {budget.currency}")
    if traveler.group_size:
        lines.append(f"- Group Size: {traveler.group_size} people")
    if traveler.traveler_types:
        lines.append(f"- Traveler Type: {', '.join(traveler.traveler_types)}")
    if prefs.destination_type:
        lines.append(f"- Destination Type: {', '.join(prefs.destination_type)}")
    if prefs.climate:
        lines.append(f"- Climate: {', '.join(prefs.climate)}")
    if prefs.specific_locations:
        lines.append(f"- Locations Mentioned: {', '.join(prefs.specific_locations)}")
    if prefs.avoid_locations:
        lines.append(f"- Avoid: {', '.join(prefs.avoid_locations)}")
    if analysis.activity_preferences:
        lines.append(f"- Activity Preferences: {', '.join(analysis.activity_preferences)}")
    if analysis.amenity_requirements:
        lines.append(f"- Required Amenities: {', '.join(analysis.amenity_requirements)}")
    return ["CURRENT QUERY ANALYSIS:", *lines] if lines else []


def _nested_property_lines(prop: Candidate) -> List[str]:
    line = f"    - {prop.name}"
    if prop.star_rating:
        line += f" ({prop.star_rating}★)"
    if prop.total_rooms:
        line += f" - {prop.total_rooms} rooms"
    if prop.category_name:
        line += f" - {prop.category_name}"
    lines = [line]
    if prop.amenity_names:
        lines.append(f"      Amenities: {', '.join(prop.amenity_names[:MAX_NESTED_AMENITIES])}")
    return lines


def _destination_section(
    destinations: Sequence[ScoredCandidate],
    featured: Mapping[int, Sequence[Candidate]],
) -> List[str]:
    if not destinations:
        return []
    lines = ["RELEVANT DESTINATIONS (ranked by relevance):"]
    for scored in destinations[:MAX_DESTINATIONS]:
        dest = scored.candidate
        line = f"• {dest.name}"
        if dest.city and dest.city != dest.name:
            line += f" ({dest.city})"
        if dest.country:
            line += f", {dest.country}"
        line += f" [Match: {_percent(dest.similarity)}]"
        lines.append(line)
        if dest.description:
            lines.append(f"  Description: {clip_text(dest.description, DESTINATION_DESCRIPTION_CHARS)}")
        if dest.average_cost_per_day:
            lines.append(f"  Average Cost: {_money(dest.average_cost_per_day)} per day")
        nested = list(featured.get(dest.id, ()))[:MAX_PROPERTIES_PER_DESTINATION]
        if nested:
            lines.append("  Featured Properties:")
            for prop in nested:
                lines.extend(_nested_property_lines(prop))
    return lines


def _property_section(properties: Sequence[ScoredCandidate]) -> List[str]:
    if not properties:
        return []
    lines = ["RELEVANT PROPERTIES (semantic matches):"]
    for scored in properties[:MAX_STANDALONE_PROPERTIES]:
        prop = scored.candidate
        line = f"• {prop.name}"
        if prop.destination_name:
            line += f" - {prop.destination_name}"
            if prop.destination_country:
                line += f", {prop.destination_country}"
        line += f" [Match: {_percent(prop.similarity)}]"
        lines.append(line)

        details = []
        if prop.star_rating:
            details.append(f"Rating: {prop.star_rating}★")
        if prop.total_rooms:
            details.append(f"Rooms: {prop.total_rooms}")
        if prop.category_name:
            details.append(f"Type: {prop.category_name}")
        if details:
            lines.append("  " + "  ".join(details))
        if prop.description:
            lines.append(f"  {clip_text(prop.description, PROPERTY_DESCRIPTION_CHARS)}")
    return lines


def _category_section(categories: Sequence[ScoredCandidate]) -> List[str]:
    names = [s.candidate.name for s in categories]
    return [f"- Matching Accommodation Types: {', '.join(names)}"] if names else []


def _amenity_section(amenities: Sequence[ScoredCandidate]) -> List[str]:
    if not amenities:
        return []
    grouped: "OrderedDict[str, List[str]]" = OrderedDict()
    for scored in amenities:
        grouped.setdefault(scored.candidate.amenity_type or "General", []).append(scored.candidate.name)

    lines = ["RELEVANT AMENITIES (by preference match):"]
    for amenity_type, names in grouped.items():
        line = f"• {amenity_type}: {', '.join(names[:MAX_AMENITIES_PER_TYPE])}"
        if len(names) > MAX_AMENITIES_PER_TYPE:
            line += f" and {len(names) - MAX_AMENITIES_PER_TYPE} more"
        lines.append(line)
    return lines


def _temporal_section(analysis: QueryAnalysis, today: date_type) -> List[str]:
    current = season_name(today.month)
    lines = ["SEASONAL CONSIDERATIONS:", f"- Current Season: {current}"]

    requested = analysis.travel_dates.season
    if requested is not None and requested.value.capitalize() != current:
        lines.append(f"- Requested Season: {requested.value.capitalize()}")
        lines.append("- Note: Consider seasonal variations in weather, pricing, and activities")

    start = analysis.travel_dates.start_date
    if start is not None:
        months = months_until(start, today)
        if months > 6:
            lines.append("- Planning Timeline: Far in advance - more options available")
        elif months > 2:
            lines.append("- Planning Timeline: Good advance planning window")
        elif months > 0:
            lines.append("- Planning Timeline: Short notice - limited availability")
        else:
            lines.append("- Planning Timeline: Immediate travel - very limited options")
    return lines


def _guidelines_section(analysis: QueryAnalysis, degraded: bool) -> List[str]:
    lines = [
        "RECOMMENDATION GUIDELINES:",
        "- Prioritize destinations and properties listed first; they are ranked best match first",
        "- Consider budget constraints and seasonal factors",
        "- Match amenities to stated requirements",
        "- Provide specific, actionable recommendations",
        "- Include practical details (costs, booking advice, best times)",
        _INTENT_GUIDELINES[analysis.query_intent],
    ]
    if analysis.urgency is Urgency.immediate:
        lines.append("- Focus on immediate availability and booking urgency")
    if analysis.traveler_info.special_needs:
        lines.append("- IMPORTANT: Address special needs and accessibility requirements")
    if analysis.destination_preferences.avoid_locations:
        lines.append("- Do not recommend the locations the user asked to avoid")
    if degraded:
        lines.append("- Ranking is approximate for this request; rely on descriptions over order")
    return lines


# ── Builder ───────────────────────────────────────────────────────────────────

def group_properties_by_destination(
    properties: Sequence[ScoredCandidate],
) -> Dict[int, List[Candidate]]:
    grouped: Dict[int, List[Candidate]] = {}
    for scored in properties:
        dest_id = scored.candidate.destination_id
        if dest_id is not None:
            grouped.setdefault(dest_id, []).append(scored.candidate)
    return grouped


class ContextBuilder:
    def __init__(self, max_chars: Optional[int] = None):
        self.max_chars = max_chars or settings.CONTEXT_MAX_CHARS
        if self.max_chars <= len(_TRUNCATION_SUFFIX):
            raise ValueError(f"CONTEXT_MAX_CHARS={self.max_chars} is too small")

    def build(
        self,
        ranked: RankedResults,
        analysis: QueryAnalysis,
        *,
        today: date_type,
        user: Optional[UserContext] = None,
        preferences: Optional[NormalizedPreferences] = None,
        featured_properties: Optional[Mapping[int, Sequence[Candidate]]] = None,
    ) -> str:
        """
        featured_properties maps destination id → properties to nest under it.
        When omitted, ranked properties are nested under their own destination.
        Properties shown nested are not repeated in the standalone section.
        """
        if featured_properties is None:
            featured_properties = group_properties_by_destination(ranked.properties)

        shown_destinations = ranked.destinations[:MAX_DESTINATIONS]
        nested_ids = {
            prop.id
            for scored in shown_destinations
            for prop in list(featured_properties.get(scored.candidate.id, ()))[
                :MAX_PROPERTIES_PER_DESTINATION
            ]
        }
        standalone = [s for s in ranked.properties if s.candidate.id not in nested_ids]

        property_lines = _property_section(standalone)
        category_lines = _category_section(ranked.categories)
        if category_lines:
            if property_lines:
                property_lines.extend(category_lines)
            else:
                property_lines = ["RELEVANT PROPERTIES (semantic matches):", *category_lines]

        sections = [
            [SYSTEM_FRAMING],
            _user_section(user, preferences),
            _query_section(analysis),
            _destination_section(shown_destinations, featured_properties),
            property_lines,
            _amenity_section(ranked.amenities),
            _temporal_section(analysis, today),
            _guidelines_section(analysis, ranked.degraded),
        ]
        context = "\n\n".join("\n".join(lines) for lines in sections if lines) + "\n"

        if len(context) > self.max_chars:
            logger.info("Context is %d chars — truncating to %d", len(context), self.max_chars)
            context = truncate_context(context, self.max_chars)
        return context
