"""
Multi-criteria ranking of similarity-search candidates.

Each candidate gets six scores in [0, 1]; the composite is their weighted sum.
Scores come from lookup tables keyed on closed vocabularies (season, budget
tier, urgency); free-text substring matching is only used for category and
amenity names, where no structured tag exists.
"""
from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import date as date_type
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Union

from travelbot.schemas.preferences import NormalizedPreferences
from travelbot.schemas.query import BudgetLevel, QueryAnalysis, Season, Urgency
from travelbot.schemas.search import EntityType
from travelbot.services.vector_search import Candidate, SearchResults

logger = logging.getLogger(__name__)

NEUTRAL = 0.5
NO_BUDGET_SCORE = 0.7
UNKNOWN_COST_SCORE = 0.6
NO_SEASON_SCORE = 0.7


# ── Weights & scores ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RankingWeights:
    semantic_similarity: float = 0.40
    user_preference: float = 0.25
    popularity: float = 0.15
    budget_match: float = 0.10
    temporal_relevance: float = 0.05
    availability: float = 0.05

    def __post_init__(self) -> None:
        values = [getattr(self, f.name) for f in fields(self)]
        if any(v < 0 for v in values):
            raise ValueError(f"Ranking weights must be non-negative: {values}")
        if not math.isclose(sum(values), 1.0, abs_tol=1e-6):
            raise ValueError(f"Ranking weights must sum to 1.0, got {sum(values):.6f}")

    def with_overrides(self, **overrides: float) -> "RankingWeights":
        return replace(self, **overrides)

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


CRITERIA = tuple(f.name for f in fields(RankingWeights))

CRITERION_DESCRIPTIONS = {
    "semantic_similarity": "How well this matches your search query",
    "user_preference": "Alignment with your personal travel preferences",
    "popularity": "General popularity and ratings",
    "budget_match": "How well this fits your budget",
    "temporal_relevance": "Appropriateness for your travel dates/season",
    "availability": "Current availability and booking likelihood",
}


@dataclass(frozen=True)
class CriterionScores:
    semantic_similarity: float
    user_preference: float
    popularity: float
    budget_match: float
    temporal_relevance: float
    availability: float

    def weighted_sum(self, weights: RankingWeights) -> float:
        return sum(getattr(weights, name) * getattr(self, name) for name in CRITERIA)

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: Candidate
    scores: Optional[CriterionScores]
    composite_score: float


@dataclass
class RankedResults:
    by_type: Dict[EntityType, List[ScoredCandidate]] = field(default_factory=dict)
    weights: RankingWeights = field(default_factory=RankingWeights)
    degraded: bool = False
    ranking_method: str = "composite"
    preference_influence: str = "none"

    def get(self, entity_type: EntityType) -> List[ScoredCandidate]:
        return self.by_type.get(entity_type, [])

    @property
    def destinations(self) -> List[ScoredCandidate]:
        return self.get(EntityType.destination)

    @property
    def properties(self) -> List[ScoredCandidate]:
        return self.get(EntityType.property)

    @property
    def categories(self) -> List[ScoredCandidate]:
        return self.get(EntityType.category)

    @property
    def amenities(self) -> List[ScoredCandidate]:
        return self.get(EntityType.amenity)


# ── Lookup tables ─────────────────────────────────────────────────────────────

SEASON_BY_MONTH = {
    12: Season.winter, 1: Season.winter, 2: Season.winter,
    3: Season.spring, 4: Season.spring, 5: Season.spring,
    6: Season.summer, 7: Season.summer, 8: Season.summer,
    9: Season.fall, 10: Season.fall, 11: Season.fall,
}

MONTHS_BY_SEASON: Dict[Season, FrozenSet[int]] = {
    season: frozenset(m for m, s in SEASON_BY_MONTH.items() if s is season)
    for season in Season
}

# (upper bound of cost / daily budget, score); anything above the last bound is over budget
_BUDGET_RATIO_BANDS = ((0.8, 1.0), (1.0, 0.8), (1.2, 0.4))
_OVER_BUDGET_SCORE = 0.1

_STARS_BY_TIER = {
    BudgetLevel.budget: frozenset({1, 2, 3}),
    BudgetLevel.mid_range: frozenset({3, 4}),
    BudgetLevel.luxury: frozenset({4, 5}),
}
_DEFAULT_STARS = 3

# (exclusive upper bound of daily budget, tier)
_DAILY_BUDGET_TIERS = ((100.0, BudgetLevel.budget), (300.0, BudgetLevel.mid_range))

_AMENITY_TERMS_BY_TIER = {
    BudgetLevel.budget: ("wifi", "parking", "breakfast"),
    BudgetLevel.mid_range: ("pool", "gym", "restaurant", "bar"),
    BudgetLevel.luxury: ("spa", "concierge", "butler", "private"),
}

_AMENITY_TERMS_BY_SEASON = {
    Season.summer: ("pool", "beach", "water sport", "outdoor"),
    Season.winter: ("spa", "indoor", "fireplace", "heated"),
    Season.spring: ("garden", "outdoor", "terrace"),
    Season.fall: ("spa", "indoor", "wellness"),
}

# Peak seasons by country, used when a destination has no best-months data.
_PEAK_SEASONS_BY_COUNTRY = {
    "greece": frozenset({Season.spring, Season.summer}),
    "italy": frozenset({Season.spring, Season.fall}),
    "spain": frozenset({Season.spring, Season.summer, Season.fall}),
    "portugal": frozenset({Season.spring, Season.summer}),
    "thailand": frozenset({Season.winter}),
    "maldives": frozenset({Season.winter, Season.spring}),
    "mexico": frozenset({Season.winter, Season.spring}),
    "japan": frozenset({Season.spring, Season.fall}),
    "switzerland": frozenset({Season.winter, Season.summer}),
    "iceland": frozenset({Season.summer}),
}

_AVAILABILITY_BY_URGENCY = {
    Urgency.immediate: 0.6,
    Urgency.planning: 0.9,
    Urgency.flexible: 0.8,
}
_AMENITY_AVAILABILITY = 0.9

_SEASONAL_MATCH, _SEASONAL_MISS = 0.9, 0.5
_BEST_MONTH_MATCH, _BEST_MONTH_MISS = 0.9, 0.4
_STAR_TIER_MATCH, _STAR_TIER_MISS = 0.9, 0.4
_AMENITY_MATCH, _AMENITY_MISS = 0.8, 0.6
_INTRINSIC_POPULARITY = 0.7

IMPACT_BUCKETS = (
    (0.8, "Very Positive"),
    (0.6, "Positive"),
    (0.4, "Neutral"),
    (0.2, "Negative"),
)


# ── Query-side helpers ────────────────────────────────────────────────────────

def requested_season(analysis: QueryAnalysis) -> Optional[Season]:
    dates = analysis.travel_dates
    if dates.season is not None:
        return dates.season
    if dates.start_date is not None:
        return SEASON_BY_MONTH[dates.start_date.month]
    return None


def _months_between(start: date_type, end: date_type) -> FrozenSet[int]:
    months = set()
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month) and len(months) < 12:
        months.add(month)
        month = month % 12 + 1
        year += 1 if month == 1 else 0
    return frozenset(months)


def requested_months(analysis: QueryAnalysis) -> FrozenSet[int]:
    dates = analysis.travel_dates
    if dates.start_date is not None:
        return _months_between(dates.start_date, dates.end_date or dates.start_date)
    if dates.season is not None:
        return MONTHS_BY_SEASON[dates.season]
    return frozenset()


def daily_budget(analysis: QueryAnalysis) -> Optional[float]:
    budget = analysis.budget
    if budget.max_per_day is not None:
        return budget.max_per_day
    duration = analysis.travel_dates.duration_days
    if budget.total_budget is not None and duration:
        return budget.total_budget / duration
    return None


def budget_tier(analysis: QueryAnalysis) -> Optional[BudgetLevel]:
    if analysis.budget.budget_level is not None:
        return analysis.budget.budget_level
    per_day = daily_budget(analysis)
    if per_day is None:
        return None
    for bound, tier in _DAILY_BUDGET_TIERS:
        if per_day < bound:
            return tier
    return BudgetLevel.luxury


# ── Preference matching ───────────────────────────────────────────────────────

def _lookup(weights: Mapping[str, float], keys: Iterable[Optional[str]]) -> Optional[float]:
    found = [weights[k.strip().lower()] for k in keys if k and k.strip().lower() in weights]
    return max(found) if found else None


def _fuzzy_lookup(weights: Mapping[str, float], name: Optional[str]) -> Optional[float]:
    if not name:
        return None
    exact = _lookup(weights, [name])
    if exact is not None:
        return exact
    lowered = name.lower()
    found = [w for tag, w in weights.items() if tag in lowered or lowered in tag]
    return max(found) if found else None


def _preference_factors(candidate: Candidate, prefs: NormalizedPreferences) -> List[Optional[float]]:
    kind = candidate.entity_type
    if kind is EntityType.destination:
        return [
            _lookup(prefs.destination_types, candidate.tags),
            _lookup(prefs.climates, candidate.climate),
            _lookup(prefs.activities, candidate.activities),
            _lookup(prefs.countries, [candidate.country]),
        ]
    if kind is EntityType.property:
        stars = [str(candidate.star_rating)] if candidate.star_rating else []
        return [
            _lookup(prefs.star_ratings, stars),
            _fuzzy_lookup(prefs.property_categories, candidate.category_name),
        ]
    if kind is EntityType.category:
        return [_fuzzy_lookup(prefs.property_categories, candidate.name)]
    matches = [
        _fuzzy_lookup(prefs.amenities, candidate.name),
        _lookup(prefs.amenities, [candidate.amenity_type]),
    ]
    matched = [m for m in matches if m is not None]
    return [max(matched) if matched else None]


def preference_score(candidate: Candidate, prefs: Optional[NormalizedPreferences]) -> float:
    if prefs is None:
        return NEUTRAL
    matched = [f for f in _preference_factors(candidate, prefs) if f is not None]
    if not matched:
        return NEUTRAL
    return sum(matched) / len(matched)


# ── Criteria ──────────────────────────────────────────────────────────────────

def popularity_score(candidate: Candidate) -> float:
    kind = candidate.entity_type
    if kind is EntityType.destination:
        if candidate.popularity_score is None:
            return NEUTRAL
        return max(0.0, min(1.0, candidate.popularity_score / 100.0))
    if kind is EntityType.property:
        stars = candidate.star_rating or 0
        rooms = candidate.total_rooms or 0
        score = 0.5 + (stars / 5.0) * 0.3 + min(rooms / 500.0, 1.0) * 0.2
        return min(1.0, score)
    return _INTRINSIC_POPULARITY


def _mentions(candidate: Candidate, terms: Sequence[str]) -> bool:
    haystack = f"{candidate.name} {candidate.amenity_type or ''}".lower()
    return any(term in haystack for term in terms)


def budget_score(candidate: Candidate, analysis: QueryAnalysis) -> float:
    kind = candidate.entity_type
    if kind is EntityType.destination:
        per_day = daily_budget(analysis)
        if per_day is None:
            return NO_BUDGET_SCORE
        if candidate.average_cost_per_day is None:
            return UNKNOWN_COST_SCORE
        ratio = candidate.average_cost_per_day / per_day
        for bound, score in _BUDGET_RATIO_BANDS:
            if ratio <= bound:
                return score
        return _OVER_BUDGET_SCORE

    tier = budget_tier(analysis)
    if tier is None:
        return NO_BUDGET_SCORE
    if kind is EntityType.property:
        stars = candidate.star_rating or _DEFAULT_STARS
        return _STAR_TIER_MATCH if stars in _STARS_BY_TIER[tier] else _STAR_TIER_MISS
    if kind is EntityType.amenity:
        return _AMENITY_MATCH if _mentions(candidate, _AMENITY_TERMS_BY_TIER[tier]) else _AMENITY_MISS
    return NO_BUDGET_SCORE


def _regional_fit(country: Optional[str], season: Optional[Season]) -> float:
    peaks = _PEAK_SEASONS_BY_COUNTRY.get((country or "").strip().lower())
    if peaks is None or season is None:
        return NO_SEASON_SCORE
    return _SEASONAL_MATCH if season in peaks else _SEASONAL_MISS


def temporal_score(candidate: Candidate, analysis: QueryAnalysis) -> float:
    season = requested_season(analysis)
    if season is None:
        return NO_SEASON_SCORE
    kind = candidate.entity_type
    if kind is EntityType.destination:
        if candidate.best_months:
            months = requested_months(analysis)
            overlap = months & set(candidate.best_months)
            return _BEST_MONTH_MATCH if overlap else _BEST_MONTH_MISS
        return _regional_fit(candidate.country, season)
    if kind is EntityType.property:
        return _regional_fit(candidate.destination_country, season)
    if kind is EntityType.amenity:
        return _AMENITY_MATCH if _mentions(candidate, _AMENITY_TERMS_BY_SEASON[season]) else _AMENITY_MISS
    return NO_SEASON_SCORE


def availability_score(candidate: Candidate, analysis: QueryAnalysis) -> float:
    if candidate.entity_type is EntityType.amenity:
        return _AMENITY_AVAILABILITY
    return _AVAILABILITY_BY_URGENCY[analysis.urgency]


def impact_label(score: float) -> str:
    for floor, label in IMPACT_BUCKETS:
        if score >= floor:
            return label
    return "Very Negative"


# ── Ranker ────────────────────────────────────────────────────────────────────

class ResultRanker:
    def __init__(self, weights: Optional[RankingWeights] = None):
        self.weights = weights or RankingWeights()

    def score(
        self,
        candidate: Candidate,
        analysis: QueryAnalysis,
        preferences: Optional[NormalizedPreferences] = None,
        weights: Optional[RankingWeights] = None,
    ) -> ScoredCandidate:
        weights = weights or self.weights
        scores = CriterionScores(
            semantic_similarity=NEUTRAL if candidate.similarity is None else candidate.similarity,
            user_preference=preference_score(candidate, preferences),
            popularity=popularity_score(candidate),
            budget_match=budget_score(candidate, analysis),
            temporal_relevance=temporal_score(candidate, analysis),
            availability=availability_score(candidate, analysis),
        )
        return ScoredCandidate(
            candidate=candidate,
            scores=scores,
            composite_score=scores.weighted_sum(weights),
        )

    def rank(
        self,
        results: Union[SearchResults, Mapping[EntityType, Sequence[Candidate]]],
        analysis: QueryAnalysis,
        preferences: Optional[NormalizedPreferences] = None,
        weights: Optional[RankingWeights] = None,
    ) -> RankedResults:
        weights = weights or self.weights
        by_type = results.by_type if isinstance(results, SearchResults) else dict(results)
        prefs = preferences if preferences is not None and not preferences.is_empty() else None

        try:
            ranked = {
                entity_type: sorted(
                    (self.score(c, analysis, prefs, weights) for c in candidates),
                    key=lambda s: -s.composite_score,
                )
                for entity_type, candidates in by_type.items()
            }
        except Exception:
            logger.exception("Ranking failed — falling back to similarity-only ordering")
            return self._similarity_only(by_type, weights)

        logger.info(
            "Ranked %d candidates (preferences=%s)",
            sum(len(v) for v in ranked.values()), "yes" if prefs else "no",
        )
        return RankedResults(
            by_type=ranked,
            weights=weights,
            preference_influence="high" if prefs else "none",
        )

    @staticmethod
    def _similarity_only(
        by_type: Mapping[EntityType, Sequence[Candidate]],
        weights: RankingWeights,
    ) -> RankedResults:
        fallback = {
            entity_type: [
                ScoredCandidate(candidate=c, scores=None, composite_score=c.similarity or 0.0)
                for c in sorted(candidates, key=lambda c: -(c.similarity or 0.0))
            ]
            for entity_type, candidates in by_type.items()
        }
        return RankedResults(
            by_type=fallback,
            weights=weights,
            degraded=True,
            ranking_method="similarity_only",
        )

    @staticmethod
    def explain(scored: ScoredCandidate) -> dict:
        if scored.scores is None:
            return {
                "composite_score": round(scored.composite_score, 3),
                "criteria": {},
                "note": "Ranked by semantic similarity only",
            }
        return {
            "composite_score": round(scored.composite_score, 3),
            "criteria": {
                name: {
                    "score": round(value, 3),
                    "label": impact_label(value),
                    "description": CRITERION_DESCRIPTIONS[name],
                }
                for name, value in scored.scores.as_dict().items()
            },
        }
