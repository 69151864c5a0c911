"""
Recommendation pipeline:

  analyse → track preferences → embed facets → concurrent per-type search
  → (broad search) → rank → featured properties → context → follow-ups

Only EmbeddingDimensionMismatch escapes; every other failure narrows the
result and the pipeline carries on.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date as date_type
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Set

from travelbot.core.config import settings
from travelbot.schemas.preferences import NormalizedPreferences
from travelbot.schemas.query import QueryAnalysis, SearchTerms
from travelbot.schemas.search import EntityType
from travelbot.services.context_builder import MAX_DESTINATIONS, MAX_PROPERTIES_PER_DESTINATION, ContextBuilder, UserContext
from travelbot.services.embeddings import TASK_QUERY, EmbeddingProvider, text_cache_key
from travelbot.services.preference_tracker import PreferenceService
from travelbot.services.query_analyzer import QueryAnalyzer
from travelbot.services.query_normalizer import (
    default_analysis,
    extract_search_terms,
    follow_up_questions,
)
from travelbot.services.ranker import (
    RankedResults,
    RankingWeights,
    ResultRanker,
    ScoredCandidate,
    requested_season,
)
from travelbot.services.vector_search import (
    Candidate,
    EmbeddingDimensionMismatch,
    SearchRequest,
    SearchResults,
    SimilaritySearch,
)

logger = logging.getLogger(__name__)

BROAD_FALLBACK_TERM = "travel destination"
POPULAR_FALLBACK_SIMILARITY = 0.5
BROAD_LIMITS = {
    EntityType.destination: 10,
    EntityType.property: 15,
    EntityType.amenity: 10,
}

UserLoader = Callable[[int], Awaitable[Optional[UserContext]]]
QueryLogger = Callable[[Optional[int], str, List[float]], Awaitable[None]]


@dataclass
class RecommendationResult:
    analysis: QueryAnalysis
    search_terms: SearchTerms
    ranked: RankedResults
    context: str
    follow_up_questions: List[str]
    messages: List[Dict[str, str]]
    search_strategy: str
    failed_entity_types: Set[EntityType] = field(default_factory=set)
    broad_search: bool = False

    @property
    def degraded(self) -> bool:
        return self.ranked.degraded


# ── Pure helpers ──────────────────────────────────────────────────────────────

def search_strategy(analysis: QueryAnalysis) -> str:
    if analysis.destination_preferences.specific_locations:
        return "specific_location_search"
    if analysis.activity_preferences:
        return "activity_based_search"
    if analysis.destination_preferences.destination_type:
        return "destination_type_search"
    return "broad_semantic_search"


def broad_search_term(analysis: QueryAnalysis) -> str:
    types = analysis.destination_preferences.destination_type
    if types:
        return " ".join(types)
    if analysis.activity_preferences:
        return " ".join(analysis.activity_preferences) + " destination"
    return BROAD_FALLBACK_TERM


def facet_plan(terms: SearchTerms) -> Dict[EntityType, tuple]:
    """Entity type → (query text, limit) for every facet that has text."""
    plan: Dict[EntityType, tuple] = {}
    if terms.destination:
        plan[EntityType.destination] = (terms.destination, settings.DESTINATION_SEARCH_LIMIT)
    if terms.accommodation:
        plan[EntityType.property] = (terms.accommodation, settings.PROPERTY_SEARCH_LIMIT)
        plan[EntityType.category] = (terms.accommodation, settings.CATEGORY_SEARCH_LIMIT)
    if terms.amenities:
        plan[EntityType.amenity] = (terms.amenities, settings.AMENITY_SEARCH_LIMIT)
    return plan


def enhance_user_message(message: str, follow_ups: Sequence[str]) -> str:
    if not follow_ups:
        return message
    lines = [message, "", "To provide better recommendations, could you help with these details:"]
    lines.extend(f"- {q}" for q in follow_ups)
    return "\n".join(lines)


def build_generation_messages(
    context: str,
    message: str,
    history: Optional[Sequence[Mapping[str, str]]] = None,
    follow_ups: Sequence[str] = (),
) -> List[Dict[str, str]]:
    messages = [{"role": "user", "content": context}]
    for turn in history or ():
        role = turn.get("role")
        content = turn.get("content")
        if role in ("user", "assistant") and content:
            messages.append({"role": role, "content": content})
    messages.append({"role": "user", "content": enhance_user_message(message, follow_ups)})
    return messages


def detected_preferences(analysis: QueryAnalysis) -> dict:
    detected: dict = {}
    prefs = analysis.destination_preferences
    if prefs.destination_type:
        detected["destination_type"] = prefs.destination_type
    if prefs.specific_locations:
        detected["specific_locations"] = prefs.specific_locations
    if analysis.budget.budget_level:
        detected["budget_level"] = analysis.budget.budget_level.value
    if analysis.activity_preferences:
        detected["activities"] = analysis.activity_preferences
    season = requested_season(analysis)
    if season:
        detected["season"] = season.value
    return detected


def explain_recommendation(result: RecommendationResult) -> dict:
    ranked = result.ranked
    explanation = {
        "query_understanding": {
            "detected_preferences": detected_preferences(result.analysis),
            "search_strategy": result.search_strategy,
        },
        "search_process": {
            "destinations_found": len(ranked.destinations),
            "properties_found": len(ranked.properties),
            "categories_found": len(ranked.categories),
            "amenities_considered": len(ranked.amenities),
            "broad_search": result.broad_search,
            "failed_entity_types": sorted(t.value for t in result.failed_entity_types),
        },
        "ranking": {
            "method": ranked.ranking_method,
            "weights": ranked.weights.as_dict(),
            "preference_influence": ranked.preference_influence,
        },
    }
    if ranked.destinations:
        explanation["top_recommendation"] = {
            "name": ranked.destinations[0].candidate.name,
            **ResultRanker.explain(ranked.destinations[0]),
        }
    return explanation


# ── Pipeline ──────────────────────────────────────────────────────────────────

class TravelRecommender:
    def __init__(
        self,
        *,
        analyzer: QueryAnalyzer,
        search: SimilaritySearch,
        embedder: EmbeddingProvider,
        preferences: Optional[PreferenceService] = None,
        ranker: Optional[ResultRanker] = None,
        context_builder: Optional[ContextBuilder] = None,
        vector_cache=None,
        user_loader: Optional[UserLoader] = None,
        query_logger: Optional[QueryLogger] = None,
    ):
        self.analyzer = analyzer
        self.search = search
        self.embedder = embedder
        self.preferences = preferences
        self.ranker = ranker or ResultRanker()
        self.context_builder = context_builder or ContextBuilder()
        self.vector_cache = vector_cache
        self.user_loader = user_loader
        self.query_logger = query_logger

    async def _embed_query(self, text: str) -> List[float]:
        key = f"{self.embedder.model_name}:{text_cache_key(text)}"
        if self.vector_cache is not None:
            cached = await self.vector_cache.get(key)
            if cached is not None:
                return cached
        vector = await self.embedder.embed(text, task_type=TASK_QUERY)
        if self.vector_cache is not None:
            await self.vector_cache.set(key, vector)
        return vector

    async def _embed_plan(
        self, plan: Mapping[EntityType, tuple], threshold: float
    ) -> tuple[Dict[EntityType, SearchRequest], Set[EntityType], Dict[str, List[float]]]:
        vectors: Dict[str, List[float]] = {}
        failed: Set[EntityType] = set()
        requests: Dict[EntityType, SearchRequest] = {}
        for entity_type, (text, limit) in plan.items():
            if text not in vectors:
                try:
                    vectors[text] = await self._embed_query(text)
                except Exception as exc:
                    logger.warning("Embedding '%s' failed — skipping %s search: %s", text[:40], entity_type.value, exc)
                    failed.add(entity_type)
                    continue
            requests[entity_type] = SearchRequest(vectors[text], limit=limit, threshold=threshold)
        return requests, failed, vectors

    async def _run_search(self, plan: Mapping[EntityType, tuple], threshold: float) -> SearchResults:
        requests, embed_failed, _ = await self._embed_plan(plan, threshold)
        results = await self.search.search_all(requests) if requests else SearchResults()
        for entity_type in embed_failed:
            results.by_type[entity_type] = []
            results.failed.add(entity_type)
        return results

    async def _broad_search(self, analysis: QueryAnalysis, results: SearchResults) -> bool:
        term = broad_search_term(analysis)
        plan = {t: (term, limit) for t, limit in BROAD_LIMITS.items() if not results.get(t)}
        logger.info("No destination/property matches — broad search for '%s'", term)
        broad = await self._run_search(plan, settings.BROAD_SEARCH_THRESHOLD)
        for entity_type in plan:
            results.by_type[entity_type] = broad.get(entity_type)
            if entity_type in broad.failed:
                results.failed.add(entity_type)
            else:
                results.failed.discard(entity_type)
        return True

    async def _popular_fallback(self, results: SearchResults) -> None:
        try:
            popular = await self.search.store.popular_destinations(MAX_DESTINATIONS)
        except Exception as exc:
            logger.warning("Popular-destination fallback failed: %s", exc)
            return
        results.by_type[EntityType.destination] = [
            c.with_similarity(POPULAR_FALLBACK_SIMILARITY) for c in popular
        ]

    async def _featured_properties(self, ranked: RankedResults) -> Optional[Dict[int, List[Candidate]]]:
        ids = [s.candidate.id for s in ranked.destinations[:MAX_DESTINATIONS]]
        if not ids:
            return None
        try:
            return await self.search.store.properties_for_destinations(ids, MAX_PROPERTIES_PER_DESTINATION)
        except Exception as exc:
            logger.warning("Featured properties lookup failed — nesting ranked matches only: %s", exc)
            return None

    async def _load_user(self, user_id: Optional[int]) -> Optional[UserContext]:
        if user_id is None or self.user_loader is None:
            return None
        try:
            return await self.user_loader(user_id)
        except Exception as exc:
            logger.warning("Could not load user_id=%d: %s", user_id, exc)
            return None

    async def _load_preferences(self, user_id: Optional[int]) -> Optional[NormalizedPreferences]:
        if user_id is None or self.preferences is None:
            return None
        return await self.preferences.preferences(user_id)

    async def recommend(
        self,
        message: str,
        *,
        user_id: Optional[int] = None,
        history: Optional[Sequence[Mapping[str, str]]] = None,
        today: Optional[date_type] = None,
        weights: Optional[RankingWeights] = None,
    ) -> RecommendationResult:
        today = today or date_type.today()

        analysis = await self.analyzer.analyze(message, today)
        if user_id is not None and self.preferences is not None:
            await self.preferences.track_query(user_id, analysis)

        terms = extract_search_terms(analysis)
        results = await self._run_search(facet_plan(terms), settings.SEARCH_THRESHOLD)

        broad = False
        if not results.get(EntityType.destination) and not results.get(EntityType.property):
            broad = await self._broad_search(analysis, results)
        if EntityType.destination in results.failed:
            await self._popular_fallback(results)

        if self.query_logger is not None and terms.destination:
            await self._log_query(user_id, terms.destination)

        prefs = await self._load_preferences(user_id)
        ranked = self.ranker.rank(results, analysis, prefs, weights)
        if user_id is not None and self.preferences is not None and ranked.destinations:
            await self.preferences.track_results(user_id, [s.candidate for s in ranked.destinations])
        featured = await self._featured_properties(ranked)
        user = await self._load_user(user_id)

        context = self.context_builder.build(
            ranked,
            analysis,
            today=today,
            user=user,
            preferences=prefs,
            featured_properties=featured,
        )
        follow_ups = follow_up_questions(analysis)

        return RecommendationResult(
            analysis=analysis,
            search_terms=terms,
            ranked=ranked,
            context=context,
            follow_up_questions=follow_ups,
            messages=build_generation_messages(context, message, history, follow_ups),
            search_strategy=search_strategy(analysis),
            failed_entity_types=set(results.failed),
            broad_search=broad,
        )

    async def _log_query(self, user_id: Optional[int], text: str) -> None:
        try:
            vector = await self._embed_query(text)
            await self.query_logger(user_id, text, vector)
        except Exception as exc:
            logger.warning("Query embedding log skipped: %s", exc)

    async def personalized(self, user_id: int, limit: int = 5) -> List[ScoredCandidate]:
        """Destinations for a user's learned tastes; popular ones if none are known."""
        prefs = await self._load_preferences(user_id)
        parts = []
        if prefs is not None:
            for name in ("destination_types", "activities"):
                top = prefs.top(name, 2)
                if top:
                    parts.append(" ".join(top))

        analysis = default_analysis()
        if not parts:
            candidates = await self.search.store.popular_destinations(limit)
            candidates = [c.with_similarity(POPULAR_FALLBACK_SIMILARITY) for c in candidates]
        else:
            term = " ".join(parts)
            try:
                vector = await self._embed_query(term)
                candidates = await self.search.search(
                    EntityType.destination,
                    vector,
                    limit=limit,
                    threshold=settings.SEARCH_THRESHOLD,
                )
            except EmbeddingDimensionMismatch:
                raise
            except Exception as exc:
                logger.warning("Personalized search for user_id=%d failed: %s", user_id, exc)
                candidates = []

        ranked = self.ranker.rank({EntityType.destination: candidates}, analysis, prefs)
        return ranked.destinations[:limit]
