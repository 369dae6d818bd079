"""Tests for embedding backends."""
from unittest.mock import AsyncMock, Mock

import numpy as np
import pytest

from docqa.errors import ConfigurationError, EmbeddingProviderError
from docqa.rag.embeddings import (
    HashingEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
    create_embedder,
    normalize,
)


async def test_embed_is_deterministic(embedder):
    first = await embedder.embed("The quick brown fox")
    second = await embedder.embed("The quick brown fox")

    assert np.array_equal(first, second)


async def test_embedding_has_unit_norm(embedder):
    vector = await embedder.embed("Retrieval augmented generation with citations")

    assert vector.shape == (64,)
    assert np.linalg.norm(vector) == pytest.approx(1.0, abs=1e-6)


async def test_empty_text_embeds_to_zero_vector(embedder):
    vector = await embedder.embed("")

    assert vector.shape == (64,)
    assert not vector.any()


async def test_embedding_ignores_case(embedder):
    assert np.array_equal(await embedder.embed("Hello World"), await embedder.embed("hello world"))


async def test_different_texts_differ(embedder):
    assert not np.array_equal(await embedder.embed("apples"), await embedder.embed("oranges"))


async def test_embed_batch_preserves_order(embedder):
    texts = ["alpha", "beta gamma", "delta"]

    vectors = await embedder.embed_batch(texts)

    for text, vector in zip(texts, vectors):
        assert np.array_equal(vector, await embedder.embed(text))


def test_hash_token_is_stable():
    """Test the 32-bit rolling hash against hand-computed values."""
    assert HashingEmbedder._hash_token("a") == 97
    assert HashingEmbedder._hash_token("ab") == 3105
    assert HashingEmbedder._hash_token("") == 0


def test_hash_token_wraps_to_signed_32_bit():
    value = HashingEmbedder._hash_token("a much longer token that overflows")

    assert -2 ** 31 <= value < 2 ** 31


def test_dimension_too_small_rejected():
    with pytest.raises(ConfigurationError):
        HashingEmbedder(dimension=3)


def test_normalize():
    assert np.allclose(normalize([3.0, 4.0]), [0.6, 0.8])
    assert normalize([0.0, 0.0, 0.0]).tolist() == [0.0, 0.0, 0.0]
    assert normalize([1, 2]).dtype == np.float32


async def test_ollama_embedder_normalizes_response():
    client = Mock()
    client.embeddings = AsyncMock(return_value={"embedding": [3.0, 4.0]})

    vector = await OllamaEmbedder(client=client, model="test-embed").embed("hello")

    assert np.allclose(vector, [0.6, 0.8])
    client.embeddings.assert_awaited_once_with(prompt="hello", model="test-embed")


async def test_ollama_embedder_rejects_empty_embedding():
    client = Mock()
    client.embeddings = AsyncMock(return_value={"embedding": []})

    with pytest.raises(EmbeddingProviderError):
        await OllamaEmbedder(client=client, model="test-embed").embed("hello")


async def test_openai_embedder_orders_by_index_and_batches():
    """Test that batch results are re-ordered by index and requests are batched."""

    async def fake_embeddings(texts, model):
        data = [
            {"index": i, "embedding": [float(len(text)), 0.0]}
            for i, text in enumerate(texts)
        ]
        return {"data": list(reversed(data))}

    client = Mock()
    client.embeddings = AsyncMock(side_effect=fake_embeddings)
    embedder = OpenAIEmbedder(client=client, model="m", batch_size=2)

    vectors = await embedder.embed_batch(["a", "bb", "ccc"])

    assert len(vectors) == 3
    assert client.embeddings.await_count == 2
    assert all(np.allclose(v, [1.0, 0.0]) for v in vectors)


async def test_openai_embedder_rejects_short_response():
    client = Mock()
    client.embeddings = AsyncMock(return_value={"data": [{"index": 0, "embedding": [1.0]}]})

    with pytest.raises(EmbeddingProviderError):
        await OpenAIEmbedder(client=client, model="m").embed_batch(["a", "b"])


def test_create_embedder():
    assert isinstance(create_embedder("hash"), HashingEmbedder)
    assert isinstance(create_embedder("ollama"), OllamaEmbedder)

    with pytest.raises(ConfigurationError):
        create_embedder("word2vec")
