"""
Normalisation of the structured travel intent returned by the extraction model.

The model's JSON is untrusted: keys go missing, scalars arrive wrapped in
one-element lists, dates come back in whatever format it felt like.  All of
that is repaired here, once, at the ingestion boundary.  Everything downstream
works with a validated QueryAnalysis and plain scalars.
"""
from __future__ import annotations

import copy
import json
import logging
import math
import re
from datetime import date as date_type
from datetime import datetime
from typing import Any, Dict, List, Optional, Type

from travelbot.core.config import settings
from travelbot.schemas.query import (
    BudgetLevel,
    QueryAnalysis,
    QueryIntent,
    SearchTerms,
    Season,
    Urgency,
)

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d"
MAX_FOLLOW_UPS = 2
# Follow-ups are only asked when at least this many core facets are unknown.
MIN_MISSING_FOR_FOLLOW_UP = 2


class IntentParseError(ValueError):
    """The extraction provider returned text that is not a JSON object."""


# ── Canonical skeleton ────────────────────────────────────────────────────────

_DEFAULT_ANALYSIS: Dict[str, Any] = {
    "travel_dates": {
        "start_date": None,
        "end_date": None,
        "flexible": True,
        "season": None,
        "duration_days": None,
    },
    "budget": {
        "min_per_day": None,
        "max_per_day": None,
        "total_budget": None,
        "currency": settings.DEFAULT_CURRENCY,
        "budget_level": None,
    },
    "destination_preferences": {
        "destination_type": [],
        "climate": [],
        "specific_locations": [],
        "avoid_locations": [],
    },
    "traveler_info": {
        "group_size": None,
        "traveler_types": [],
        "ages": [],
        "special_needs": [],
    },
    "activity_preferences": [],
    "amenity_requirements": [],
    "accommodation_preferences": {
        "star_rating": None,
        "room_type": [],
        "property_type": [],
    },
    "urgency": Urgency.flexible.value,
    "query_intent": QueryIntent.recommendation.value,
}


def default_analysis_dict() -> Dict[str, Any]:
    return copy.deepcopy(_DEFAULT_ANALYSIS)


def default_analysis() -> QueryAnalysis:
    return QueryAnalysis.model_validate(default_analysis_dict())


# ── Controlled vocabulary ─────────────────────────────────────────────────────

_SEASON_ALIASES = {"autumn": "fall"}

_BUDGET_LEVEL_ALIASES = {
    "mid": "mid-range",
    "midrange": "mid-range",
    "mid range": "mid-range",
    "moderate": "mid-range",
    "cheap": "budget",
    "economy": "budget",
    "low": "budget",
    "premium": "luxury",
    "high-end": "luxury",
}

_URGENCY_ALIASES = {"urgent": "immediate", "asap": "immediate", "planned": "planning"}

_INTENT_ALIASES = {"recommend": "recommendation", "info": "information", "compare": "comparison"}

_LIST_FIELDS = {
    "destination_preferences": ("destination_type", "climate", "specific_locations", "avoid_locations"),
    "traveler_info": ("traveler_types", "ages", "special_needs"),
    "accommodation_preferences": ("room_type", "property_type"),
}
_TOP_LEVEL_LIST_FIELDS = ("activity_preferences", "amenity_requirements")


# ── Boundary helpers ──────────────────────────────────────────────────────────

def first_scalar(value: Any) -> Any:
    """
    Collapse a maybe-list into a scalar.
    [x, ...] -> x, [] -> None, [[x]] -> x, anything else unchanged.
    """
    while isinstance(value, (list, tuple)):
        if not value:
            return None
        value = value[0]
    return value


def as_tag_list(value: Any) -> List[str]:
    """Flatten anything into a list of non-empty, de-duplicated strings."""
    if value is None or isinstance(value, (dict, bool)):
        return []
    if not isinstance(value, (list, tuple)):
        value = [value]

    out: List[str] = []
    seen = set()
    stack = list(reversed(value))
    while stack:
        item = stack.pop()
        if isinstance(item, (list, tuple)):
            stack.extend(reversed(item))
            continue
        if item is None or isinstance(item, (dict, bool)):
            continue
        text = str(item).strip()
        key = text.lower()
        if text and key not in seen:
            seen.add(key)
            out.append(text)
    return out


def _parse_date(value: Any) -> Optional[date_type]:
    value = first_scalar(value)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date_type):
        return value
    if not isinstance(value, str):
        return None
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT).date()
    except ValueError:
        return None


def _positive_float(value: Any) -> Optional[float]:
    value = first_scalar(value)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "").lstrip("$€£")
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def _positive_int(value: Any) -> Optional[int]:
    value = first_scalar(value)
    if isinstance(value, str):
        match = re.search(r"\d+", value)
        value = match.group() if match else None
    number = _positive_float(value)
    if number is None:
        return None
    return int(number)


def _enum_value(value: Any, enum_cls: Type, aliases: Dict[str, str]) -> Optional[str]:
    value = first_scalar(value)
    if isinstance(value, enum_cls):
        return value.value
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    key = aliases.get(key, key)
    valid = {member.value for member in enum_cls}
    return key if key in valid else None


def _as_bool(value: Any, default: bool) -> bool:
    value = first_scalar(value)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
    return default


def _currency(value: Any) -> str:
    value = first_scalar(value)
    if isinstance(value, str) and re.fullmatch(r"[A-Za-z]{3}", value.strip()):
        return value.strip().upper()
    return settings.DEFAULT_CURRENCY


def _deep_merge(defaults: Dict[str, Any], raw: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay raw onto defaults. A default dict is never replaced by a non-dict; [{...}] unwraps."""
    merged = copy.deepcopy(defaults)
    for key, value in raw.items():
        if key not in merged:
            continue
        if isinstance(merged[key], dict):
            value = first_scalar(value)
            if isinstance(value, dict):
                merged[key] = _deep_merge(merged[key], value)
            continue
        if value is None:
            continue
        merged[key] = value
    return merged


# ── Normalisation ─────────────────────────────────────────────────────────────

def _normalise_dates(section: Dict[str, Any]) -> Dict[str, Any]:
    start = _parse_date(section.get("start_date"))
    end = _parse_date(section.get("end_date"))
    if start and end and end < start:
        logger.debug("Dropping end_date %s before start_date %s", end, start)
        end = None

    duration = _positive_int(section.get("duration_days"))
    if start and end:
        duration = (end - start).days

    return {
        "start_date": start,
        "end_date": end,
        "flexible": _as_bool(section.get("flexible"), True),
        "season": _enum_value(section.get("season"), Season, _SEASON_ALIASES),
        "duration_days": duration,
    }


def _normalise_budget(section: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "min_per_day": _positive_float(section.get("min_per_day")),
        "max_per_day": _positive_float(section.get("max_per_day")),
        "total_budget": _positive_float(section.get("total_budget")),
        "currency": _currency(section.get("currency")),
        "budget_level": _enum_value(section.get("budget_level"), BudgetLevel, _BUDGET_LEVEL_ALIASES),
    }


def _normalise(merged: Dict[str, Any]) -> QueryAnalysis:
    for section, fields in _LIST_FIELDS.items():
        for field in fields:
            merged[section][field] = as_tag_list(merged[section].get(field))
    for field in _TOP_LEVEL_LIST_FIELDS:
        merged[field] = as_tag_list(merged.get(field))

    merged["travel_dates"] = _normalise_dates(merged["travel_dates"])
    merged["budget"] = _normalise_budget(merged["budget"])
    merged["traveler_info"]["group_size"] = _positive_int(merged["traveler_info"].get("group_size"))

    stars = _positive_int(merged["accommodation_preferences"].get("star_rating"))
    merged["accommodation_preferences"]["star_rating"] = stars if stars and stars <= 5 else None

    merged["urgency"] = (
        _enum_value(merged.get("urgency"), Urgency, _URGENCY_ALIASES) or Urgency.flexible.value
    )
    merged["query_intent"] = (
        _enum_value(merged.get("query_intent"), QueryIntent, _INTENT_ALIASES)
        or QueryIntent.recommendation.value
    )
    return QueryAnalysis.model_validate(merged)


def normalize_analysis(raw: Any) -> QueryAnalysis:
    """
    Repair a raw extraction result into a complete QueryAnalysis.
    Never raises: anything unusable yields the default analysis.
    """
    if not isinstance(raw, dict):
        logger.warning("Query analysis is %s, not an object — using defaults", type(raw).__name__)
        return default_analysis()
    try:
        return _normalise(_deep_merge(_DEFAULT_ANALYSIS, raw))
    except Exception as exc:
        logger.warning("Query analysis normalisation failed — using defaults: %s", exc)
        return default_analysis()


def parse_analysis_text(raw: str) -> Dict[str, Any]:
    """Extract the JSON object from model output, tolerating markdown fences."""
    clean = re.sub(r"```(?:json)?", "", raw or "").strip()
    try:
        parsed = json.loads(clean)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", clean, re.DOTALL)
        if not match:
            raise IntentParseError(f"No JSON object in model output: {clean[:200]!r}")
        try:
            parsed = json.loads(match.group())
        except json.JSONDecodeError as exc:
            raise IntentParseError(f"Malformed JSON in model output: {exc}") from exc
    if not isinstance(parsed, dict):
        raise IntentParseError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


# ── Derived views ─────────────────────────────────────────────────────────────

def _join(*tag_lists: List[str]) -> Optional[str]:
    text = " ".join(tag.strip() for tags in tag_lists for tag in tags).strip()
    return text or None


def extract_search_terms(analysis: QueryAnalysis) -> SearchTerms:
    prefs = analysis.destination_preferences
    accommodation = analysis.accommodation_preferences
    return SearchTerms(
        destination=_join(prefs.destination_type, prefs.climate, prefs.specific_locations),
        amenities=_join(analysis.amenity_requirements),
        activities=_join(analysis.activity_preferences),
        accommodation=_join(accommodation.property_type, accommodation.room_type),
    )


_FOLLOW_UP_QUESTIONS = {
    "dates": "When are you planning to travel?",
    "budget": "What's your approximate budget per day or total budget?",
    "destination_type": (
        "What type of destination interests you most - beach, city, mountains, "
        "or somewhere else?"
    ),
    "group_size": "How many people will be traveling?",
    "activities": (
        "What activities interest you most - relaxation, adventure, culture, or nightlife?"
    ),
}


def missing_facets(analysis: QueryAnalysis) -> List[str]:
    """Core facets that are still unknown, in follow-up priority order."""
    dates = analysis.travel_dates
    budget = analysis.budget
    prefs = analysis.destination_preferences
    traveler = analysis.traveler_info

    missing: List[str] = []
    if dates.start_date is None and dates.season is None:
        missing.append("dates")
    if (
        budget.budget_level is None
        and budget.min_per_day is None
        and budget.max_per_day is None
        and budget.total_budget is None
    ):
        missing.append("budget")
    if not prefs.destination_type and not prefs.specific_locations:
        missing.append("destination_type")
    if traveler.group_size is None and not traveler.traveler_types:
        missing.append("group_size")
    return missing


def follow_up_questions(analysis: QueryAnalysis) -> List[str]:
    missing = missing_facets(analysis)
    if len(missing) < MIN_MISSING_FOR_FOLLOW_UP:
        return []

    candidates = list(missing)
    if analysis.traveler_info.group_size is None and "group_size" not in candidates:
        candidates.append("group_size")
    if not analysis.activity_preferences:
        candidates.append("activities")

    ordered = [key for key in _FOLLOW_UP_QUESTIONS if key in candidates]
    return [_FOLLOW_UP_QUESTIONS[key] for key in ordered[:MAX_FOLLOW_UPS]]
