"""Tests for the FAISS-backed vector index."""
import numpy as np
import pytest

from docqa.errors import (
    DimensionMismatchError,
    EmptyBatchError,
    NotFoundError,
    ValidationError,
)


@pytest.fixture
async def scored_index(vector_index, make_fragment, vector_at):
    """Index holding three fragments at similarity 0.9, 0.5 and 0.1 to [1, 0, 0, 0]."""
    await vector_index.add([
        (make_fragment("low", index=0), vector_at(0.1)),
        (make_fragment("high", index=1), vector_at(0.9)),
        (make_fragment("mid", index=2), vector_at(0.5)),
    ])
    return vector_index


def test_search_empty_index_returns_nothing(vector_index, query_vector):
    assert vector_index.search(query_vector, top_k=5, threshold=0.0) == []


async def test_search_threshold_and_top_k(scored_index, query_vector):
    """Test the 0.9/0.5/0.1 scenario with top_k=2 and threshold=0.3."""
    results = scored_index.search(query_vector, top_k=2, threshold=0.3)

    assert [r.fragment.content for r in results] == ["high", "mid"]
    assert results[0].similarity == pytest.approx(0.9, abs=1e-5)
    assert results[1].similarity == pytest.approx(0.5, abs=1e-5)


async def test_search_orders_by_descending_similarity(scored_index, query_vector):
    results = scored_index.search(query_vector, top_k=10, threshold=-1.0)

    similarities = [r.similarity for r in results]
    assert similarities == sorted(similarities, reverse=True)
    assert len(results) == 3


async def test_threshold_excludes_everything(scored_index, query_vector):
    assert scored_index.search(query_vector, top_k=5, threshold=0.95) == []


async def test_top_k_truncates(scored_index, query_vector):
    results = scored_index.search(query_vector, top_k=1, threshold=0.0)

    assert [r.fragment.content for r in results] == ["high"]


async def test_ties_keep_insertion_order(vector_index, make_fragment, vector_at, query_vector):
    await vector_index.add([
        (make_fragment("first", index=0), vector_at(0.7)),
        (make_fragment("second", index=1), vector_at(0.7)),
        (make_fragment("third", index=2), vector_at(0.7)),
    ])

    results = vector_index.search(query_vector, top_k=3, threshold=0.0)

    assert [r.fragment.content for r in results] == ["first", "second", "third"]


async def test_self_similarity_ranks_first(vector_index, make_fragment, embedder):
    """Test that a stored fragment is its own best match with similarity 1."""
    texts = [
        "The invoice is due within thirty days of receipt",
        "Employees accrue vacation at two days per month",
        "The server restarts nightly at two in the morning",
    ]
    vectors = await embedder.embed_batch(texts)
    await vector_index.add([
        (make_fragment(text, index=i), vector) for i, (text, vector) in enumerate(zip(texts, vectors))
    ])

    for text, vector in zip(texts, vectors):
        results = vector_index.search(vector, top_k=3, threshold=0.0)
        assert results[0].fragment.content == text
        assert results[0].similarity == pytest.approx(1.0, abs=1e-5)


async def test_similarity_is_bounded(vector_index, make_fragment, vector_at):
    await vector_index.add([(make_fragment("x"), vector_at(0.3))])

    results = vector_index.search(-vector_at(0.3), top_k=1, threshold=-1.5)

    assert -1.0 <= results[0].similarity <= 1.0
    assert results[0].similarity == pytest.approx(-1.0, abs=1e-5)


async def test_zero_query_vector_scores_zero(scored_index):
    results = scored_index.search(np.zeros(4, dtype=np.float32), top_k=5, threshold=0.0)

    assert len(results) == 3
    assert all(r.similarity == 0.0 for r in results)


async def test_add_empty_batch_raises(vector_index):
    with pytest.raises(EmptyBatchError):
        await vector_index.add([])


async def test_dimension_fixed_by_first_insert(vector_index, make_fragment, vector_at):
    await vector_index.add([(make_fragment("a"), vector_at(0.5))])

    assert vector_index.dimension == 4

    with pytest.raises(DimensionMismatchError):
        await vector_index.add([(make_fragment("b", index=1), [1.0, 0.0, 0.0])])
    with pytest.raises(DimensionMismatchError):
        vector_index.search([1.0, 0.0], top_k=1)

    assert vector_index.count() == 1


async def test_mismatched_batch_is_not_partially_added(vector_index, make_fragment, vector_at):
    await vector_index.add([(make_fragment("a"), vector_at(0.5))])

    with pytest.raises(DimensionMismatchError):
        await vector_index.add([
            (make_fragment("b", index=1), vector_at(0.2)),
            (make_fragment("c", index=2), [1.0, 0.0]),
        ])

    assert vector_index.count() == 1


def test_top_k_must_be_positive(vector_index, query_vector):
    with pytest.raises(ValidationError):
        vector_index.search(query_vector, top_k=0)


async def test_remove_by_document(vector_index, make_fragment, vector_at, query_vector):
    await vector_index.add([
        (make_fragment("keep", document_id="doc-a"), vector_at(0.8)),
        (make_fragment("drop 1", document_id="doc-b", index=0), vector_at(0.9)),
        (make_fragment("drop 2", document_id="doc-b", index=1), vector_at(0.6)),
    ])

    removed = await vector_index.remove_by_document("doc-b")

    assert removed == 2
    assert vector_index.count() == 1
    assert vector_index.document_ids() == {"doc-a"}
    assert [r.fragment.content for r in vector_index.search(query_vector, top_k=5)] == ["keep"]
    assert await vector_index.remove_by_document("doc-unknown") == 0


async def test_get_fragment(scored_index):
    assert scored_index.get("doc-1-1").content == "high"

    with pytest.raises(NotFoundError):
        scored_index.get("missing")


async def test_clear_keeps_dimension(scored_index, query_vector):
    await scored_index.clear()

    assert scored_index.count() == 0
    assert scored_index.dimension == 4
    assert scored_index.search(query_vector, top_k=5) == []


async def test_stats(scored_index):
    stats = scored_index.get_stats()

    assert stats["vector_count"] == 3
    assert stats["dimension"] == 4
    assert stats["document_count"] == 1
