"""In-process FAISS vector index for fragment search.

Handles:
- Runtime dimension detection (fixed by the first insert)
- Cosine similarity search with threshold and top-K selection
- Removal of all fragments belonging to a document
- Serialized mutation under an asyncio lock
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

import faiss
import numpy as np
import structlog

from docqa import config
from docqa.errors import (
    DimensionMismatchError,
    EmptyBatchError,
    NotFoundError,
    ValidationError,
)
from docqa.rag.embeddings import normalize
from docqa.rag.models import Fragment, SearchResult

logger = structlog.get_logger()


class VectorIndex:
    """Exact (brute-force) cosine index over normalized fragment vectors.

    Vectors are stored L2-normalized in a ``faiss.IndexFlatIP`` wrapped in an
    ``IndexIDMap2``, so inner product equals cosine similarity and a zero
    vector scores 0 against everything. Labels are a monotonically increasing
    insertion sequence; ordering ties by label is ordering them by insertion.
    """

    def __init__(self, dimension: Optional[int] = None):
        """Initialize an empty index.

        Args:
            dimension: Vector dimension; detected from the first insert when None
        """
        self.dimension: Optional[int] = None
        self.index: Optional[faiss.IndexIDMap2] = None
        self._fragments: Dict[int, Fragment] = {}
        self._labels_by_id: Dict[str, int] = {}
        self._next_label = 0
        self._lock = asyncio.Lock()

        if dimension is not None:
            self._init_index(dimension)

        logger.info("vector_index_initialized", dimension=self.dimension)

    def _init_index(self, dimension: int) -> None:
        if dimension <= 0:
            raise DimensionMismatchError(f"Invalid embedding dimension: {dimension}")
        self.dimension = dimension
        self.index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))

    def _prepare(self, vector: Sequence[float]) -> np.ndarray:
        prepared = normalize(vector)
        if prepared.shape[0] != self.dimension:
            raise DimensionMismatchError(
                f"Embedding dimension mismatch: expected {self.dimension}, "
                f"got {prepared.shape[0]}"
            )
        return prepared

    async def add(
        self,
        entries: Sequence[Tuple[Fragment, Sequence[float]]],
        accept: Optional[Callable[[], bool]] = None,
    ) -> int:
        """Insert fragments with their vectors.

        Args:
            entries: (fragment, vector) pairs
            accept: Checked under the index lock; when it returns False
                nothing is inserted

        Returns:
            Number of entries inserted

        Raises:
            EmptyBatchError: If no entries are given
            DimensionMismatchError: If a vector disagrees with the index dimension
        """
        if not entries:
            raise EmptyBatchError("No fragments provided to add to the vector index")

        async with self._lock:
            if accept is not None and not accept():
                logger.warning("vectors_discarded", count=len(entries))
                return 0

            if self.index is None:
                first = np.asarray(entries[0][1]).reshape(-1)
                self._init_index(int(first.shape[0]))
                logger.info("index_dimension_detected", dimension=self.dimension)

            # Validate the whole batch before touching the index
            vectors = np.stack([self._prepare(vector) for _, vector in entries])
            labels = np.arange(
                self._next_label, self._next_label + len(entries), dtype=np.int64
            )

            self.index.add_with_ids(vectors, labels)
            for label, (fragment, _) in zip(labels.tolist(), entries):
                self._fragments[label] = fragment
                self._labels_by_id[fragment.id] = label
            self._next_label += len(entries)

        logger.info(
            "vectors_added",
            count=len(entries),
            total_vectors=self.count(),
        )
        return len(entries)

    def search(
        self,
        query_vector: Sequence[float],
        top_k: int = None,
        threshold: float = None,
    ) -> List[SearchResult]:
        """Rank stored fragments by cosine similarity to the query vector.

        Args:
            query_vector: Query embedding
            top_k: Maximum number of results (default from config)
            threshold: Minimum similarity to keep (default from config)

        Returns:
            SearchResults sorted by descending similarity, ties in insertion order

        Raises:
            ValidationError: If top_k is not positive
            DimensionMismatchError: If the query dimension differs from the index
        """
        top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k
        threshold = config.SIMILARITY_THRESHOLD if threshold is None else threshold

        if top_k < 1:
            raise ValidationError(f"top_k must be at least 1, got {top_k}")

        total = self.count()
        if total == 0:
            logger.info("vector_search_empty_index")
            return []

        query = self._prepare(query_vector).reshape(1, -1)

        # Score every entry; ranking below is done here so ties stay stable.
        scores, labels = self.index.search(query, total)
        scores = scores[0]
        labels = labels[0]

        keep = (labels >= 0) & (scores >= threshold)
        scores = scores[keep]
        labels = labels[keep]

        order = np.lexsort((labels, -scores))[:top_k]

        results = [
            SearchResult(
                fragment=self._fragments[int(labels[i])],
                similarity=float(np.clip(scores[i], -1.0, 1.0)),
            )
            for i in order
        ]

        logger.info(
            "vector_search_completed",
            top_k=top_k,
            threshold=threshold,
            results_found=len(results),
            top_similarity=results[0].similarity if results else 0,
        )
        return results

    async def remove_by_document(self, document_id: str) -> int:
        """Remove every fragment of a document.

        Returns:
            Number of entries removed (0 when the document has none)
        """
        async with self._lock:
            labels = [
                label
                for label, fragment in self._fragments.items()
                if fragment.metadata.document_id == document_id
            ]
            if not labels:
                return 0

            self.index.remove_ids(np.array(labels, dtype=np.int64))
            for label in labels:
                fragment = self._fragments.pop(label)
                self._labels_by_id.pop(fragment.id, None)

        logger.info(
            "document_removed_from_index",
            document_id=document_id,
            removed=len(labels),
            total_vectors=self.count(),
        )
        return len(labels)

    async def clear(self) -> None:
        """Drop every entry, keeping the detected dimension."""
        async with self._lock:
            if self.index is not None:
                self.index.reset()
            self._fragments.clear()
            self._labels_by_id.clear()

        logger.warning("vector_index_cleared")

    def count(self) -> int:
        return len(self._fragments)

    def get(self, fragment_id: str) -> Fragment:
        """Look up a stored fragment by id.

        Raises:
            NotFoundError: If no such fragment is indexed
        """
        label = self._labels_by_id.get(fragment_id)
        if label is None:
            raise NotFoundError(f"Fragment with ID {fragment_id} not found")
        return self._fragments[label]

    def document_ids(self) -> Set[str]:
        return {f.metadata.document_id for f in self._fragments.values()}

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the index.

        Returns:
            Dictionary with index statistics
        """
        return {
            "initialized": self.index is not None,
            "vector_count": self.count(),
            "dimension": self.dimension,
            "document_count": len(self.document_ids()),
            "index_type": "IndexFlatIP",
        }
