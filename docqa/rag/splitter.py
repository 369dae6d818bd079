"""Recursive text splitting with overlap for the RAG pipeline.

Splits on a hierarchy of separators (paragraphs, lines, words, characters)
so fragments break at the most natural boundary that keeps them under the
size limit. Character-based to avoid tokenizer dependencies.
"""
import uuid
from typing import Dict, List, Optional, Sequence

import structlog

from docqa import config
from docqa.errors import ConfigurationError, EmptyContentError
from docqa.rag.models import Fragment, FragmentMetadata, utc_now_iso

logger = structlog.get_logger()

DEFAULT_SEPARATORS = ("\n\n", "\n", " ", "")


class RecursiveTextSplitter:
    """Separator-hierarchy text splitter with a sliding overlap window."""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        separators: Sequence[str] = DEFAULT_SEPARATORS,
    ):
        """Initialize the splitter.

        Args:
            chunk_size: Maximum fragment size in characters (default from config)
            chunk_overlap: Characters shared by consecutive fragments (default from config)
            separators: Separators to try, highest priority first

        Raises:
            ConfigurationError: If the size/overlap combination is unusable
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        self.separators = list(separators)

        if self.chunk_size <= 0:
            raise ConfigurationError(f"Chunk size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0:
            raise ConfigurationError(f"Overlap must not be negative, got {self.chunk_overlap}")
        if self.chunk_overlap >= self.chunk_size:
            raise ConfigurationError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )
        if not self.separators:
            raise ConfigurationError("At least one separator is required")

        logger.info(
            "splitter_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def split_text(self, text: str) -> List[str]:
        """Split text into overlapping fragments.

        Args:
            text: Raw document text

        Returns:
            Fragment strings in document order, none of them blank

        Raises:
            EmptyContentError: If the text is empty or whitespace only
        """
        if not text or not text.strip():
            raise EmptyContentError("No text content to split")

        chunks = self._split(text, self.separators)

        logger.info(
            "text_split",
            text_length=len(text),
            fragment_count=len(chunks),
        )
        return chunks

    def create_fragments(
        self,
        text: str,
        document_id: str,
        original_name: str,
        mime_type: str,
    ) -> List[Fragment]:
        """Split text and wrap each piece in a Fragment with provenance metadata."""
        pieces = [piece.strip() for piece in self.split_text(text)]
        pieces = [piece for piece in pieces if piece]
        created_at = utc_now_iso()

        return [
            Fragment(
                id=str(uuid.uuid4()),
                content=piece,
                metadata=FragmentMetadata(
                    document_id=document_id,
                    original_name=original_name,
                    mime_type=mime_type,
                    fragment_index=index,
                    fragment_count=len(pieces),
                    length=len(piece),
                    created_at=created_at,
                ),
            )
            for index, piece in enumerate(pieces)
        ]

    def _split(self, text: str, separators: List[str]) -> List[str]:
        # First separator present in the text wins; "" always matches.
        separator = separators[-1]
        remaining: List[str] = []
        for i, candidate in enumerate(separators):
            if candidate == "":
                separator = candidate
                break
            if candidate in text:
                separator = candidate
                remaining = separators[i + 1:]
                break

        pieces = text.split(separator) if separator else list(text)
        pieces = [piece for piece in pieces if piece]

        chunks: List[str] = []
        small: List[str] = []
        for piece in pieces:
            if len(piece) <= self.chunk_size:
                small.append(piece)
                continue

            if small:
                chunks.extend(self._merge(small, separator))
                small = []
            if remaining:
                chunks.extend(self._split(piece, remaining))
            else:
                chunks.append(piece)

        if small:
            chunks.extend(self._merge(small, separator))
        return chunks

    def _merge(self, pieces: List[str], separator: str) -> List[str]:
        """Recombine small pieces into fragments, carrying the overlap window."""
        sep_len = len(separator)
        chunks: List[str] = []
        window: List[str] = []
        total = 0

        for piece in pieces:
            joined_len = total + len(piece) + (sep_len if window else 0)
            if joined_len > self.chunk_size and window:
                chunk = separator.join(window).strip()
                if chunk:
                    chunks.append(chunk)

                # Drop pieces from the front until only the overlap remains
                # and the next piece fits.
                while total > self.chunk_overlap or (
                    total + len(piece) + (sep_len if window else 0) > self.chunk_size
                    and total > 0
                ):
                    total -= len(window[0]) + (sep_len if len(window) > 1 else 0)
                    window.pop(0)

            window.append(piece)
            total += len(piece) + (sep_len if len(window) > 1 else 0)

        chunk = separator.join(window).strip()
        if chunk:
            chunks.append(chunk)
        return chunks

    def get_fragment_stats(self, fragments: List[Fragment]) -> Dict[str, int]:
        """Get statistics about a set of fragments.

        Args:
            fragments: Fragments produced by create_fragments

        Returns:
            Dictionary with fragment statistics
        """
        if not fragments:
            return {
                "fragment_count": 0,
                "total_chars": 0,
                "avg_fragment_size": 0,
                "min_fragment_size": 0,
                "max_fragment_size": 0,
            }

        sizes = [len(f.content) for f in fragments]

        return {
            "fragment_count": len(fragments),
            "total_chars": sum(sizes),
            "avg_fragment_size": sum(sizes) // len(fragments),
            "min_fragment_size": min(sizes),
            "max_fragment_size": max(sizes),
            "overlap": self.chunk_overlap,
        }
