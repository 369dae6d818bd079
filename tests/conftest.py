"""Pytest configuration and shared fixtures."""
import asyncio
import math
from typing import Optional

import numpy as np
import pytest

from docqa.llm_client import AnswerGenerator
from docqa.rag.embeddings import HashingEmbedder
from docqa.rag.lifecycle import DocumentTracker
from docqa.rag.models import Fragment, FragmentMetadata, SearchResult
from docqa.rag.vector_index import VectorIndex


class FakeAnswerGenerator(AnswerGenerator):
    """Answer generator returning a canned answer and recording its prompts."""

    name = "fake"

    def __init__(
        self,
        answer: str = "The capital of France is Paris [Source 1].",
        error: Optional[Exception] = None,
        delay: float = 0.0,
        ready: bool = True,
    ):
        self.answer = answer
        self.error = error
        self.delay = delay
        self.ready = ready
        self.calls = []

    async def generate(self, prompt, system=None):
        self.calls.append({"prompt": prompt, "system": system})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.answer

    async def check_ready(self):
        return self.ready


@pytest.fixture
def fake_generator():
    """Factory for FakeAnswerGenerator instances."""
    return FakeAnswerGenerator


class GatedEmbedder(HashingEmbedder):
    """Hashing embedder that blocks each batch until released."""

    def __init__(self, dimension: int = 64):
        super().__init__(dimension=dimension)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def embed_batch(self, texts):
        self.entered.set()
        await self.release.wait()
        return await super().embed_batch(texts)


@pytest.fixture
def embedder():
    return HashingEmbedder(dimension=64)


@pytest.fixture
def gated_embedder():
    return GatedEmbedder()


@pytest.fixture
def vector_index():
    return VectorIndex()


@pytest.fixture
def tracker():
    return DocumentTracker()


@pytest.fixture
def make_fragment():
    """Factory building fragments with predictable ids and metadata."""

    def _make(content: str, document_id: str = "doc-1", index: int = 0, count: int = 1):
        return Fragment(
            id=f"{document_id}-{index}",
            content=content,
            metadata=FragmentMetadata(
                document_id=document_id,
                original_name=f"{document_id}.txt",
                mime_type="text/plain",
                fragment_index=index,
                fragment_count=count,
                length=len(content),
                created_at="2024-01-01T00:00:00+00:00",
            ),
        )

    return _make


@pytest.fixture
def vector_at():
    """Unit vector whose cosine similarity to [1, 0, 0, 0] is exactly ``similarity``."""

    def _make(similarity: float) -> np.ndarray:
        return np.array(
            [similarity, math.sqrt(1.0 - similarity ** 2), 0.0, 0.0],
            dtype=np.float32,
        )

    return _make


@pytest.fixture
def query_vector():
    return np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float32)


@pytest.fixture
def make_results(make_fragment):
    """Factory for ranked SearchResults, one fragment per similarity."""

    def _make(similarities):
        return [
            SearchResult(
                fragment=make_fragment(f"Fragment number {i}", index=i, count=len(similarities)),
                similarity=similarity,
            )
            for i, similarity in enumerate(similarities)
        ]

    return _make
