"""
Similarity search over destination / property / category / amenity embeddings.

similarity = 1 - cosine_distance, clamped to [0, 1].
Results come back best-first; equal similarities keep storage order
(primary key ascending for Postgres, insertion order in memory).

Each entity type is searched independently.  search_all() fans the per-type
queries out concurrently, each bounded by SEARCH_TIMEOUT_SECONDS; a type that
errors or times out comes back empty and is listed in SearchResults.failed.
A query vector of the wrong dimension is never a per-type failure: it means
the embedding model and the stored vectors disagree, so it raises.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np
from sqlalchemy import func, select, text
from sqlalchemy.orm import selectinload

from travelbot.core.config import settings
from travelbot.db.session import async_session_maker
from travelbot.models import Amenity, Destination, Property, PropertyCategory
from travelbot.schemas.search import EntityType

logger = logging.getLogger(__name__)


class EmbeddingDimensionMismatch(RuntimeError):
    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Query vector has {actual} dimensions, vector store expects {expected}. "
            "EMBEDDING_MODEL / EMBEDDING_DIM do not match the stored embeddings."
        )
        self.expected = expected
        self.actual = actual


class EntityNotFoundError(LookupError):
    pass


class MissingEmbeddingError(LookupError):
    """Entity-to-entity search on an entity that has not been embedded."""


@dataclass(frozen=True)
class Candidate:
    id: int
    entity_type: EntityType
    name: str
    similarity: Optional[float] = None
    description: Optional[str] = None

    # destination
    country: Optional[str] = None
    city: Optional[str] = None
    tags: Tuple[str, ...] = ()
    climate: Tuple[str, ...] = ()
    activities: Tuple[str, ...] = ()
    best_months: Tuple[int, ...] = ()
    popularity_score: Optional[float] = None
    average_cost_per_day: Optional[float] = None

    # property
    star_rating: Optional[int] = None
    total_rooms: Optional[int] = None
    destination_id: Optional[int] = None
    destination_name: Optional[str] = None
    destination_country: Optional[str] = None
    category_name: Optional[str] = None
    amenity_names: Tuple[str, ...] = ()

    # amenity
    amenity_type: Optional[str] = None

    def with_similarity(self, similarity: Optional[float]) -> "Candidate":
        return replace(self, similarity=similarity)


@dataclass(frozen=True)
class SearchRequest:
    vector: Sequence[float]
    limit: int = 10
    threshold: float = 0.7


@dataclass
class SearchResults:
    by_type: Dict[EntityType, List[Candidate]] = field(default_factory=dict)
    failed: Set[EntityType] = field(default_factory=set)

    def get(self, entity_type: EntityType) -> List[Candidate]:
        return self.by_type.get(entity_type, [])

    @property
    def total(self) -> int:
        return sum(len(v) for v in self.by_type.values())


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector shapes differ: {va.shape} vs {vb.shape}")
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return _clamp(float(np.dot(va, vb) / denom))


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


# ── Store interface ───────────────────────────────────────────────────────────

class VectorStore(ABC):
    @abstractmethod
    async def nearest(
        self,
        entity_type: EntityType,
        vector: Sequence[float],
        *,
        limit: int,
        threshold: float,
        exclude_id: Optional[int] = None,
    ) -> List[Candidate]:
        """Top `limit` embedded entities with similarity >= threshold, best first."""

    @abstractmethod
    async def get_embedding(self, entity_type: EntityType, entity_id: int) -> Optional[List[float]]:
        """Stored vector, None if not embedded. Raises EntityNotFoundError."""

    @abstractmethod
    async def properties_for_destinations(
        self, destination_ids: Sequence[int], per_destination: int
    ) -> Dict[int, List[Candidate]]:
        """Highest-rated properties per destination, for context nesting."""

    @abstractmethod
    async def popular_destinations(self, limit: int) -> List[Candidate]: ...

    @abstractmethod
    async def embedding_stats(self) -> Dict[str, Dict[str, int]]: ...

    async def similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        return cosine_similarity(a, b)


# ── Postgres / pgvector ───────────────────────────────────────────────────────

_MODELS = {
    EntityType.destination: Destination,
    EntityType.property: Property,
    EntityType.category: PropertyCategory,
    EntityType.amenity: Amenity,
}

_PROPERTY_LOAD = (
    selectinload(Property.destination),
    selectinload(Property.category),
    selectinload(Property.amenities),
)


def _tuple(values: Optional[Iterable]) -> tuple:
    return tuple(values or ())


def candidate_from_row(entity_type: EntityType, row, similarity: Optional[float] = None) -> Candidate:
    """ORM row → Candidate. Relationships must already be loaded."""
    if entity_type is EntityType.destination:
        return Candidate(
            id=row.id,
            entity_type=entity_type,
            name=row.name,
            similarity=similarity,
            description=row.description,
            country=row.country,
            city=row.city,
            tags=_tuple(row.tags),
            climate=_tuple(row.climate),
            activities=_tuple(row.activities),
            best_months=tuple(int(m) for m in (row.best_months_to_visit or ())),
            popularity_score=row.popularity_score,
            average_cost_per_day=row.average_cost_per_day,
        )
    if entity_type is EntityType.property:
        destination = row.destination
        return Candidate(
            id=row.id,
            entity_type=entity_type,
            name=row.name,
            similarity=similarity,
            description=row.description,
            star_rating=row.star_rating,
            total_rooms=row.total_rooms,
            destination_id=row.destination_id,
            destination_name=destination.name if destination else None,
            destination_country=destination.country if destination else None,
            category_name=row.category.name if row.category else None,
            amenity_names=tuple(a.name for a in row.amenities),
        )
    if entity_type is EntityType.category:
        return Candidate(
            id=row.id,
            entity_type=entity_type,
            name=row.name,
            similarity=similarity,
            description=row.description,
        )
    return Candidate(
        id=row.id,
        entity_type=entity_type,
        name=row.name,
        similarity=similarity,
        description=row.description,
        amenity_type=row.type,
    )


class PgVectorStore(VectorStore):
    """
    pgvector-backed store. Every call opens its own session so the per-type
    searches can run concurrently (an AsyncSession is not concurrency-safe).
    """

    def __init__(self, session_maker=async_session_maker):
        self._session_maker = session_maker

    async def nearest(
        self,
        entity_type: EntityType,
        vector: Sequence[float],
        *,
        limit: int,
        threshold: float,
        exclude_id: Optional[int] = None,
    ) -> List[Candidate]:
        model = _MODELS[entity_type]
        distance = model.embedding.cosine_distance(list(vector))
        stmt = (
            select(model, (1 - distance).label("similarity"))
            .where(
                model.embedding.isnot(None),
                distance <= 1 - threshold,
            )
            .order_by(distance, model.id)
            .limit(limit)
        )
        if exclude_id is not None:
            stmt = stmt.where(model.id != exclude_id)
        if model is Property:
            stmt = stmt.options(*_PROPERTY_LOAD)

        async with self._session_maker() as session:
            rows = (await session.execute(stmt)).all()

        return [
            candidate_from_row(entity_type, entity, _clamp(float(sim)))
            for entity, sim in rows
        ]

    async def get_embedding(self, entity_type: EntityType, entity_id: int) -> Optional[List[float]]:
        model = _MODELS[entity_type]
        async with self._session_maker() as session:
            result = await session.execute(
                select(model.id, model.embedding).where(model.id == entity_id)
            )
            row = result.one_or_none()
        if row is None:
            raise EntityNotFoundError(f"{entity_type.value} {entity_id} not found")
        if row.embedding is None:
            return None
        return [float(x) for x in row.embedding]

    async def properties_for_destinations(
        self, destination_ids: Sequence[int], per_destination: int
    ) -> Dict[int, List[Candidate]]:
        if not destination_ids:
            return {}
        stmt = (
            select(Property)
            .where(Property.destination_id.in_(list(destination_ids)))
            .order_by(Property.star_rating.desc().nulls_last(), Property.id)
            .options(*_PROPERTY_LOAD)
        )
        async with self._session_maker() as session:
            rows = (await session.execute(stmt)).scalars().all()

        grouped: Dict[int, List[Candidate]] = defaultdict(list)
        for row in rows:
            bucket = grouped[row.destination_id]
            if len(bucket) < per_destination:
                bucket.append(candidate_from_row(EntityType.property, row))
        return dict(grouped)

    async def popular_destinations(self, limit: int) -> List[Candidate]:
        stmt = (
            select(Destination)
            .order_by(Destination.popularity_score.desc().nulls_last(), Destination.id)
            .limit(limit)
        )
        async with self._session_maker() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [candidate_from_row(EntityType.destination, row) for row in rows]

    async def embedding_stats(self) -> Dict[str, Dict[str, int]]:
        stats: Dict[str, Dict[str, int]] = {}
        async with self._session_maker() as session:
            for entity_type, model in _MODELS.items():
                total, embedded = (
                    await session.execute(
                        select(func.count(model.id), func.count(model.embedding))
                    )
                ).one()
                stats[entity_type.value] = {"total": total, "with_embeddings": embedded}
        return stats

    async def similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        async with self._session_maker() as session:
            result = await session.execute(
                text("SELECT 1 - (CAST(:a AS vector) <=> CAST(:b AS vector))"),
                {"a": _vector_literal(a), "b": _vector_literal(b)},
            )
            return _clamp(float(result.scalar_one()))


def _vector_literal(vector: Sequence[float]) -> str:
    return "[" + ",".join(repr(float(x)) for x in vector) + "]"


# ── In-memory store ───────────────────────────────────────────────────────────

class InMemoryVectorStore(VectorStore):
    """numpy brute-force store. Ties keep insertion order."""

    def __init__(self) -> None:
        self._records: Dict[EntityType, List[Tuple[Candidate, Optional[np.ndarray]]]] = defaultdict(list)

    def add(self, candidate: Candidate, embedding: Optional[Sequence[float]] = None) -> None:
        vector = None if embedding is None else np.asarray(embedding, dtype=np.float64)
        self._records[candidate.entity_type].append((candidate.with_similarity(None), vector))

    async def nearest(
        self,
        entity_type: EntityType,
        vector: Sequence[float],
        *,
        limit: int,
        threshold: float,
        exclude_id: Optional[int] = None,
    ) -> List[Candidate]:
        scored: List[Candidate] = []
        for candidate, embedding in self._records.get(entity_type, []):
            if embedding is None or candidate.id == exclude_id:
                continue
            sim = cosine_similarity(vector, embedding)
            if sim >= threshold:
                scored.append(candidate.with_similarity(sim))
        scored.sort(key=lambda c: -c.similarity)
        return scored[:limit]

    async def get_embedding(self, entity_type: EntityType, entity_id: int) -> Optional[List[float]]:
        for candidate, embedding in self._records.get(entity_type, []):
            if candidate.id == entity_id:
                return None if embedding is None else embedding.tolist()
        raise EntityNotFoundError(f"{entity_type.value} {entity_id} not found")

    async def properties_for_destinations(
        self, destination_ids: Sequence[int], per_destination: int
    ) -> Dict[int, List[Candidate]]:
        wanted = set(destination_ids)
        props = [c for c, _ in self._records.get(EntityType.property, []) if c.destination_id in wanted]
        props.sort(key=lambda c: -(c.star_rating or 0))
        grouped: Dict[int, List[Candidate]] = defaultdict(list)
        for prop in props:
            if len(grouped[prop.destination_id]) < per_destination:
                grouped[prop.destination_id].append(prop)
        return dict(grouped)

    async def popular_destinations(self, limit: int) -> List[Candidate]:
        destinations = [c for c, _ in self._records.get(EntityType.destination, [])]
        destinations.sort(key=lambda c: -(c.popularity_score or 0))
        return destinations[:limit]

    async def embedding_stats(self) -> Dict[str, Dict[str, int]]:
        return {
            entity_type.value: {
                "total": len(self._records.get(entity_type, [])),
                "with_embeddings": sum(
                    1 for _, e in self._records.get(entity_type, []) if e is not None
                ),
            }
            for entity_type in EntityType
        }


# ── Search service ────────────────────────────────────────────────────────────

def _validate_params(limit: int, threshold: float) -> None:
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"threshold must be within [0, 1], got {threshold}")


class SimilaritySearch:
    def __init__(
        self,
        store: VectorStore,
        *,
        dimension: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.store = store
        self.dimension = dimension or settings.EMBEDDING_DIM
        self.timeout_seconds = timeout_seconds or settings.SEARCH_TIMEOUT_SECONDS

    def check_dimension(self, vector: Sequence[float]) -> None:
        if len(vector) != self.dimension:
            raise EmbeddingDimensionMismatch(self.dimension, len(vector))

    async def search(
        self,
        entity_type: EntityType,
        vector: Sequence[float],
        *,
        limit: int = 10,
        threshold: float = 0.7,
    ) -> List[Candidate]:
        self.check_dimension(vector)
        _validate_params(limit, threshold)
        return await self.store.nearest(entity_type, vector, limit=limit, threshold=threshold)

    async def _search_one(
        self, entity_type: EntityType, request: SearchRequest
    ) -> Optional[List[Candidate]]:
        try:
            return await asyncio.wait_for(
                self.store.nearest(
                    entity_type,
                    request.vector,
                    limit=request.limit,
                    threshold=request.threshold,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "%s search timed out after %.1fs — continuing without it",
                entity_type.value, self.timeout_seconds,
            )
        except Exception as exc:
            logger.warning("%s search failed — continuing without it: %s", entity_type.value, exc)
        return None

    async def search_all(self, requests: Mapping[EntityType, SearchRequest]) -> SearchResults:
        """
        Run one search per entity type concurrently.
        Raises EmbeddingDimensionMismatch before any query is issued.
        """
        for request in requests.values():
            self.check_dimension(request.vector)
            _validate_params(request.limit, request.threshold)

        types = list(requests)
        outcomes = await asyncio.gather(
            *(self._search_one(t, requests[t]) for t in types)
        )

        results = SearchResults()
        for entity_type, found in zip(types, outcomes):
            if found is None:
                results.failed.add(entity_type)
                found = []
            results.by_type[entity_type] = found

        logger.info(
            "Similarity search: %s",
            ", ".join(f"{t.value}={len(results.get(t))}" for t in types) or "no facets",
        )
        return results

    async def find_similar(
        self,
        entity_type: EntityType,
        entity_id: int,
        *,
        target_type: Optional[EntityType] = None,
        limit: int = 10,
        threshold: Optional[float] = None,
    ) -> List[Candidate]:
        """Entities close to an existing entity's own embedding, excluding itself."""
        target_type = target_type or entity_type
        threshold = settings.SIMILAR_ENTITY_THRESHOLD if threshold is None else threshold
        _validate_params(limit, threshold)

        vector = await self.store.get_embedding(entity_type, entity_id)
        if vector is None:
            raise MissingEmbeddingError(f"{entity_type.value} {entity_id} has no embedding")
        self.check_dimension(vector)

        exclude_id = entity_id if target_type == entity_type else None
        return await self.store.nearest(
            target_type, vector, limit=limit, threshold=threshold, exclude_id=exclude_id
        )
