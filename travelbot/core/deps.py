"""
Process-wide service wiring for the API layer.

Everything is built lazily on first request so importing the app (tests,
alembic) never loads an embedding model or talks to a provider.
"""
from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from travelbot.core.config import settings
from travelbot.db.session import async_session_maker
from travelbot.models.user import User
from travelbot.services.cache import query_vector_cache
from travelbot.services.context_builder import UserContext
from travelbot.services.embeddings import get_embedding_provider
from travelbot.services.entity_embeddings import log_query_embedding
from travelbot.services.intent_extraction import build_intent_provider
from travelbot.services.preference_tracker import PreferenceService, PreferenceStore
from travelbot.services.query_analyzer import QueryAnalyzer
from travelbot.services.recommender import TravelRecommender
from travelbot.services.vector_search import PgVectorStore, SimilaritySearch


async def load_user_context(user_id: int) -> Optional[UserContext]:
    async with async_session_maker() as session:
        user = await session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return UserContext.from_user(user)


async def log_query_vector(user_id: Optional[int], text: str, vector: List[float]) -> None:
    async with async_session_maker() as session:
        await log_query_embedding(
            session,
            user_id=user_id,
            query_text=text,
            vector=vector,
            model_name=settings.EMBEDDING_MODEL,
        )


@lru_cache
def get_similarity_search() -> SimilaritySearch:
    return SimilaritySearch(PgVectorStore())


@lru_cache
def get_preference_service() -> PreferenceService:
    return PreferenceService(PreferenceStore())


@lru_cache
def get_recommender() -> TravelRecommender:
    return TravelRecommender(
        analyzer=QueryAnalyzer(build_intent_provider()),
        search=get_similarity_search(),
        embedder=get_embedding_provider(),
        preferences=get_preference_service(),
        vector_cache=query_vector_cache,
        user_loader=load_user_context,
        query_logger=log_query_vector,
    )
