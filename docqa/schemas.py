"""Request models for the HTTP API."""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class QueryOptions(BaseModel):
    """Nested options object accepted by /api/chat/query."""

    model_config = ConfigDict(populate_by_name=True)

    max_results: Optional[int] = Field(default=None, alias="maxResults", ge=1, le=50)
    similarity_threshold: Optional[float] = Field(
        default=None, alias="similarityThreshold", ge=-1.0, le=1.0
    )


class QueryRequest(BaseModel):
    """Body of /api/chat/query. Top-level fields win over ``options``."""

    query: str = Field(default="", max_length=2000)
    max_results: Optional[int] = Field(default=None, ge=1, le=50)
    similarity_threshold: Optional[float] = Field(default=None, ge=-1.0, le=1.0)
    options: Optional[QueryOptions] = None

    def resolved_max_results(self) -> Optional[int]:
        if self.max_results is not None:
            return self.max_results
        return self.options.max_results if self.options else None

    def resolved_similarity_threshold(self) -> Optional[float]:
        if self.similarity_threshold is not None:
            return self.similarity_threshold
        return self.options.similarity_threshold if self.options else None


class ProcessRequest(BaseModel):
    """Body of /api/chat/process."""

    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(..., alias="documentId", min_length=1)
