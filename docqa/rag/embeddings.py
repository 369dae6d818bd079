"""Embedding backends: text in, fixed-dimension unit vector out.

One backend is selected per process (``get_embedder``) and used for both
document fragments and queries. Mixing backends between indexing and
querying makes every similarity score meaningless.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np
import structlog

from docqa import config
from docqa.errors import ConfigurationError, EmbeddingProviderError
from docqa.llm_client import OllamaClient, OpenAICompatibleClient

logger = structlog.get_logger()


def normalize(vector: Sequence[float]) -> np.ndarray:
    """L2-normalize a vector as float32. The zero vector is returned unchanged."""
    array = np.asarray(vector, dtype=np.float32).reshape(-1)
    norm = float(np.linalg.norm(array))
    if norm == 0.0:
        return array
    return array / norm


class EmbeddingBackend(ABC):
    """Capability: map text to an L2-normalized vector, deterministically."""

    name = "embedding_backend"

    @abstractmethod
    async def embed(self, text: str) -> np.ndarray:
        """Embed a single text."""

    async def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Embed several texts, preserving order."""
        return [await self.embed(text) for text in texts]


class HashingEmbedder(EmbeddingBackend):
    """Deterministic token-hashing embedder with no semantic understanding.

    Each lowercase whitespace-delimited token is hashed to a base index, and
    ``len(token) * 0.1 + position * 0.01`` is added to that index and the four
    indices after it. Texts with similar token statistics score as similar
    even when unrelated; use a real provider for anything beyond demos.
    """

    name = "hash"
    SPREAD = 5

    def __init__(self, dimension: int = None):
        self.dimension = dimension or config.EMBEDDING_DIMENSION
        if self.dimension < self.SPREAD:
            raise ConfigurationError(
                f"Embedding dimension must be at least {self.SPREAD}, got {self.dimension}"
            )

    @staticmethod
    def _hash_token(token: str) -> int:
        """Stable 32-bit signed string hash (independent of PYTHONHASHSEED)."""
        value = 0
        for char in token:
            value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
        if value >= 0x80000000:
            value -= 0x100000000
        return value

    def embed_sync(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float64)

        for position, token in enumerate(text.lower().split()):
            base = abs(self._hash_token(token)) % self.dimension
            weight = len(token) * 0.1 + position * 0.01
            for offset in range(self.SPREAD):
                vector[(base + offset) % self.dimension] += weight

        return normalize(vector)

    async def embed(self, text: str) -> np.ndarray:
        return self.embed_sync(text)


class OllamaEmbedder(EmbeddingBackend):
    """Embeddings from a local Ollama model."""

    name = "ollama"

    def __init__(self, client: Optional[OllamaClient] = None, model: str = None):
        self.client = client or OllamaClient()
        self.model = model or config.EMBEDDING_MODEL

    async def embed(self, text: str) -> np.ndarray:
        response = await self.client.embeddings(prompt=text, model=self.model)
        embedding = response.get("embedding", [])

        if not embedding:
            raise EmbeddingProviderError("Empty embedding returned from Ollama")

        return normalize(embedding)


class OpenAIEmbedder(EmbeddingBackend):
    """Embeddings from an OpenAI-compatible /embeddings endpoint."""

    name = "openai"

    def __init__(
        self,
        client: Optional[OpenAICompatibleClient] = None,
        model: str = None,
        batch_size: int = 64,
    ):
        if client is None:
            if not config.OPENAI_API_KEY:
                raise ConfigurationError("OPENAI_API_KEY is required for the openai embedding provider")
            client = OpenAICompatibleClient(
                base_url=config.OPENAI_BASE_URL,
                api_key=config.OPENAI_API_KEY,
                provider="openai",
            )
        self.client = client
        self.model = model or config.OPENAI_EMBEDDING_MODEL
        self.batch_size = batch_size

    async def embed(self, text: str) -> np.ndarray:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        vectors: List[np.ndarray] = []

        for i in range(0, len(texts), self.batch_size):
            batch = list(texts[i : i + self.batch_size])
            response = await self.client.embeddings(batch, model=self.model)

            items = sorted(response.get("data") or [], key=lambda item: item.get("index", 0))
            if len(items) != len(batch) or any(not item.get("embedding") for item in items):
                raise EmbeddingProviderError(
                    f"Embedding provider returned {len(items)} vectors for {len(batch)} texts"
                )

            vectors.extend(normalize(item["embedding"]) for item in items)

            logger.debug(
                "embeddings_batch_generated",
                batch_size=len(batch),
                total_so_far=len(vectors),
            )

        return vectors


def create_embedder(provider: str = None) -> EmbeddingBackend:
    """Build the embedding backend named by configuration.

    Raises:
        ConfigurationError: If the provider name is unknown
    """
    provider = (provider or config.EMBEDDING_PROVIDER).lower()

    if provider == "hash":
        if config.ENVIRONMENT == "production":
            logger.warning("hash_embedder_in_production", hint="set EMBEDDING_PROVIDER")
        return HashingEmbedder()
    if provider == "ollama":
        return OllamaEmbedder()
    if provider == "openai":
        return OpenAIEmbedder()

    raise ConfigurationError(f"Unknown embedding provider: {provider}")


# Singleton instance, so indexing and querying share one strategy
_embedder_instance: Optional[EmbeddingBackend] = None


def get_embedder() -> EmbeddingBackend:
    """Get the process-wide embedding backend.

    Returns:
        EmbeddingBackend selected by config.EMBEDDING_PROVIDER
    """
    global _embedder_instance
    if _embedder_instance is None:
        _embedder_instance = create_embedder()
        logger.info("embedder_selected", provider=_embedder_instance.name)
    return _embedder_instance
