"""Data model shared by the retrieval pipeline."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def excerpt(text: str, limit: int) -> str:
    """Truncate text to ``limit`` characters, marking truncation with '...'."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


@dataclass(frozen=True)
class FragmentMetadata:
    """Provenance of a fragment within its source document."""

    document_id: str
    original_name: str
    mime_type: str
    fragment_index: int
    fragment_count: int
    length: int
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "originalName": self.original_name,
            "mimeType": self.mime_type,
            "fragmentIndex": self.fragment_index,
            "fragmentCount": self.fragment_count,
            "length": self.length,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class Fragment:
    """A retrievable piece of a document. Immutable once created."""

    id: str
    content: str
    metadata: FragmentMetadata

    @property
    def document_id(self) -> str:
        return self.metadata.document_id


@dataclass(frozen=True)
class SearchResult:
    """A fragment ranked against a query vector."""

    fragment: Fragment
    similarity: float

    @property
    def distance(self) -> float:
        return 1.0 - self.similarity

    def to_dict(self, preview_chars: int = 200) -> Dict[str, Any]:
        return {
            "id": self.fragment.id,
            "content": excerpt(self.fragment.content, preview_chars),
            "similarity": round(self.similarity, 4),
            "distance": round(self.distance, 4),
            "metadata": {
                "documentId": self.fragment.metadata.document_id,
                "originalName": self.fragment.metadata.original_name,
                "fragmentIndex": self.fragment.metadata.fragment_index,
            },
        }


@dataclass(frozen=True)
class Citation:
    """A retrieved fragment referenced by (or attached to) a generated answer."""

    source_number: int
    fragment_id: str
    document_id: str
    document_name: str
    fragment_index: int
    similarity: float
    excerpt: str
    implicit: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceNumber": self.source_number,
            "fragmentId": self.fragment_id,
            "documentId": self.document_id,
            "documentName": self.document_name,
            "fragmentIndex": self.fragment_index,
            "similarity": round(self.similarity, 4),
            "excerpt": self.excerpt,
            "implicit": self.implicit,
        }


@dataclass
class IngestResult:
    """Outcome of indexing one document."""

    document_id: str
    fragment_count: int
    text_length: int
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "fragmentCount": self.fragment_count,
            "textLength": self.text_length,
            "success": self.success,
        }


@dataclass
class QueryResult:
    """Answer to a natural-language question, with its sources."""

    answer: str
    sources: List[Citation] = field(default_factory=list)
    context: List[SearchResult] = field(default_factory=list)
    confidence: float = 0.0
    degraded: bool = False
    processed_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "sources": [citation.to_dict() for citation in self.sources],
            "context": [result.to_dict() for result in self.context],
            "confidence": round(self.confidence, 4),
            "degraded": self.degraded,
            "queryProcessedAt": self.processed_at,
        }
