import asyncio

import pytest

from travelbot.schemas.search import EntityType
from travelbot.services.vector_search import (
    Candidate,
    EmbeddingDimensionMismatch,
    EntityNotFoundError,
    InMemoryVectorStore,
    MissingEmbeddingError,
    SearchRequest,
    SimilaritySearch,
    cosine_similarity,
)


def _search(store, dimension=4, timeout=1.0):
    return SimilaritySearch(store, dimension=dimension, timeout_seconds=timeout)


def test_cosine_similarity_bounds():
    assert cosine_similarity([1, 2, 3, 4], [1, 2, 3, 4]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == 0.0
    assert cosine_similarity([1, 0], [-1, 0]) == 0.0
    assert cosine_similarity([0, 0], [1, 0]) == 0.0


def test_identical_vector_scores_one(catalog_store):
    results = asyncio.run(
        _search(catalog_store).search(EntityType.destination, [0.0, 1.0, 0.0, 0.0], threshold=0.9)
    )
    assert [c.name for c in results] == ["Zermatt"]
    assert results[0].similarity == pytest.approx(1.0)


def test_results_best_first_and_above_threshold(catalog_store):
    results = asyncio.run(
        _search(catalog_store).search(EntityType.destination, [1.0, 0.0, 0.0, 0.0], threshold=0.6)
    )
    assert [c.name for c in results] == ["Phuket", "Santorini"]
    assert all(c.similarity >= 0.6 for c in results)
    assert results[0].similarity >= results[1].similarity


def test_unembedded_entities_are_never_returned(catalog_store):
    results = asyncio.run(
        _search(catalog_store).search(EntityType.destination, [0.5, 0.5, 0.5, 0.5], threshold=0.0, limit=50)
    )
    assert "Unembedded" not in {c.name for c in results}
    assert len(results) == 3


def test_limit_is_respected(catalog_store):
    results = asyncio.run(
        _search(catalog_store).search(EntityType.destination, [0.5, 0.5, 0.5, 0.5], threshold=0.0, limit=1)
    )
    assert len(results) == 1


def test_ties_keep_insertion_order():
    store = InMemoryVectorStore()
    for i, name in enumerate(["first", "second", "third"]):
        store.add(Candidate(id=i, entity_type=EntityType.amenity, name=name), [0.0, 1.0, 0.0, 0.0])
    results = asyncio.run(_search(store).search(EntityType.amenity, [0.0, 1.0, 0.0, 0.0]))
    assert [c.name for c in results] == ["first", "second", "third"]


def test_dimension_mismatch_raises(catalog_store):
    with pytest.raises(EmbeddingDimensionMismatch) as exc:
        asyncio.run(_search(catalog_store).search(EntityType.destination, [1.0, 0.0]))
    assert exc.value.expected == 4
    assert exc.value.actual == 2


def test_invalid_parameters_raise(catalog_store):
    search = _search(catalog_store)
    with pytest.raises(ValueError):
        asyncio.run(search.search(EntityType.destination, [1.0, 0.0, 0.0, 0.0], threshold=1.5))
    with pytest.raises(ValueError):
        asyncio.run(search.search(EntityType.destination, [1.0, 0.0, 0.0, 0.0], limit=0))


class _FlakyStore(InMemoryVectorStore):
    """Amenity search explodes, property search hangs."""

    def __init__(self, base, hang=False):
        super().__init__()
        self._records = base._records
        self.hang = hang
        self.calls = []

    async def nearest(self, entity_type, vector, **kwargs):
        self.calls.append(entity_type)
        if entity_type is EntityType.amenity:
            raise ConnectionError("amenity index unavailable")
        if self.hang and entity_type is EntityType.property:
            await asyncio.sleep(5)
        return await super().nearest(entity_type, vector, **kwargs)


def _requests(vector=(1.0, 0.0, 0.0, 0.0)):
    return {
        EntityType.destination: SearchRequest(list(vector), limit=5, threshold=0.5),
        EntityType.property: SearchRequest(list(vector), limit=5, threshold=0.0),
        EntityType.amenity: SearchRequest(list(vector), limit=5, threshold=0.0),
    }


def test_failing_type_is_isolated(catalog_store):
    results = asyncio.run(_search(_FlakyStore(catalog_store)).search_all(_requests()))
    assert results.failed == {EntityType.amenity}
    assert results.get(EntityType.amenity) == []
    assert [c.name for c in results.get(EntityType.destination)] == ["Phuket", "Santorini"]
    assert results.get(EntityType.property)


def test_timed_out_type_is_isolated(catalog_store):
    store = _FlakyStore(catalog_store, hang=True)
    results = asyncio.run(_search(store, timeout=0.05).search_all(_requests()))
    assert results.failed == {EntityType.amenity, EntityType.property}
    assert results.get(EntityType.property) == []
    assert results.get(EntityType.destination)


def test_search_all_checks_dimension_before_querying(catalog_store):
    store = _FlakyStore(catalog_store)
    requests = _requests()
    requests[EntityType.amenity] = SearchRequest([1.0, 0.0], limit=5, threshold=0.0)
    with pytest.raises(EmbeddingDimensionMismatch):
        asyncio.run(_search(store).search_all(requests))
    assert store.calls == []


def test_find_similar_excludes_source(catalog_store):
    results = asyncio.run(
        _search(catalog_store).find_similar(EntityType.destination, 1, threshold=0.5)
    )
    assert 1 not in {c.id for c in results}
    assert [c.name for c in results] == ["Santorini"]


def test_find_similar_across_types(catalog_store):
    results = asyncio.run(
        _search(catalog_store).find_similar(
            EntityType.destination, 1, target_type=EntityType.property, threshold=0.0
        )
    )
    assert {c.entity_type for c in results} == {EntityType.property}


def test_find_similar_requires_embedding(catalog_store):
    with pytest.raises(MissingEmbeddingError):
        asyncio.run(_search(catalog_store).find_similar(EntityType.destination, 4))
    with pytest.raises(EntityNotFoundError):
        asyncio.run(_search(catalog_store).find_similar(EntityType.destination, 999))


def test_embedding_stats(catalog_store):
    stats = asyncio.run(catalog_store.embedding_stats())
    assert stats["destination"] == {"total": 4, "with_embeddings": 3}
    assert stats["amenity"] == {"total": 2, "with_embeddings": 2}
