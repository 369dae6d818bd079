"""Document lifecycle tracking.

Documents move through an explicit finite state machine:

    saved -> text_extracted -> chunked -> vectorizing -> completed
                  \\               \\            \\
                   `---------------`------------`-> failed

``failed`` is reachable from every non-terminal stage, and a failed
document may go back to ``saved`` to be retried. The tracker owns the
records; the ingestion pipeline only notifies it of transitions.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

import structlog

from docqa.errors import (
    AlreadyProcessedError,
    DocumentBusyError,
    InvalidTransitionError,
    NotFoundError,
)
from docqa.rag.models import utc_now_iso

logger = structlog.get_logger()


class DocumentStage(str, Enum):
    SAVED = "saved"
    TEXT_EXTRACTED = "text_extracted"
    CHUNKED = "chunked"
    VECTORIZING = "vectorizing"
    COMPLETED = "completed"
    FAILED = "failed"


TRANSITIONS: Dict[DocumentStage, FrozenSet[DocumentStage]] = {
    DocumentStage.SAVED: frozenset({DocumentStage.TEXT_EXTRACTED, DocumentStage.FAILED}),
    DocumentStage.TEXT_EXTRACTED: frozenset({DocumentStage.CHUNKED, DocumentStage.FAILED}),
    DocumentStage.CHUNKED: frozenset({DocumentStage.VECTORIZING, DocumentStage.FAILED}),
    DocumentStage.VECTORIZING: frozenset({DocumentStage.COMPLETED, DocumentStage.FAILED}),
    DocumentStage.COMPLETED: frozenset(),
    DocumentStage.FAILED: frozenset({DocumentStage.SAVED}),
}

STAGE_DESCRIPTIONS = {
    DocumentStage.SAVED: "File saved, ready for processing",
    DocumentStage.TEXT_EXTRACTED: "Text extracted, preparing chunks",
    DocumentStage.CHUNKED: "Text chunked, ready for vectorization",
    DocumentStage.VECTORIZING: "Creating embeddings and storing in vector index",
    DocumentStage.COMPLETED: "Fully processed and searchable",
    DocumentStage.FAILED: "Error occurred during processing",
}


def can_transition(current: DocumentStage, target: DocumentStage) -> bool:
    return target in TRANSITIONS[current]


@dataclass
class DocumentRecord:
    """Metadata of an uploaded document."""

    id: str
    original_name: str
    mime_type: str
    size: int = 0
    path: Optional[str] = None
    stage: DocumentStage = DocumentStage.SAVED
    uploaded_at: str = field(default_factory=utc_now_iso)
    processed_at: Optional[str] = None
    fragment_ids: List[str] = field(default_factory=list)
    text_length: int = 0
    error: Optional[str] = None
    processing: bool = False

    @property
    def vectorized(self) -> bool:
        return self.stage is DocumentStage.COMPLETED

    @property
    def status(self) -> str:
        if self.stage is DocumentStage.COMPLETED:
            return "processed"
        if self.stage is DocumentStage.FAILED:
            return "error"
        if self.processing:
            return "processing"
        return "uploaded"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "originalName": self.original_name,
            "mimeType": self.mime_type,
            "size": self.size,
            "uploadedAt": self.uploaded_at,
            "status": self.status,
            "processingStage": self.stage.value,
            "statusDescription": STAGE_DESCRIPTIONS[self.stage],
            "vectorized": self.vectorized,
            "chunkCount": len(self.fragment_ids),
            "textLength": self.text_length,
            "processedAt": self.processed_at,
            "error": self.error,
        }


class DocumentTracker:
    """In-memory registry of documents and their lifecycle stage."""

    def __init__(self):
        self._documents: Dict[str, DocumentRecord] = {}
        # Guards claims and removals; held across index removal by the pipeline
        self.lock = asyncio.Lock()

    def register(self, record: DocumentRecord) -> DocumentRecord:
        self._documents[record.id] = record
        logger.info(
            "document_registered",
            document_id=record.id,
            original_name=record.original_name,
        )
        return record

    def get(self, document_id: str) -> DocumentRecord:
        """Look up a document.

        Raises:
            NotFoundError: If the document is unknown
        """
        record = self._documents.get(document_id)
        if record is None:
            raise NotFoundError(f"Document with ID {document_id} not found")
        return record

    def list_documents(self) -> List[DocumentRecord]:
        return list(self._documents.values())

    def is_registered(self, record: DocumentRecord) -> bool:
        return self._documents.get(record.id) is record

    def ensure_idle(self, document_id: str) -> DocumentRecord:
        """Return the record if no ingestion currently holds it.

        Callers that go on to remove the document must hold ``lock``.

        Raises:
            NotFoundError: If the document is unknown
            DocumentBusyError: If the document is being processed
        """
        record = self.get(document_id)
        if record.processing:
            raise DocumentBusyError(
                "This document is currently being processed; try again once it finishes"
            )
        return record

    def remove(self, document_id: str) -> DocumentRecord:
        record = self.get(document_id)
        del self._documents[document_id]
        logger.info("document_unregistered", document_id=document_id)
        return record

    async def begin_processing(self, document_id: str) -> DocumentRecord:
        """Atomically claim a document for ingestion.

        The check and the claim happen under one lock, so two
        concurrent requests for the same document cannot both pass.

        Raises:
            NotFoundError: If the document is unknown
            AlreadyProcessedError: If it is completed or already being processed
        """
        async with self.lock:
            record = self.get(document_id)

            if record.vectorized:
                raise AlreadyProcessedError(
                    "This document has already been processed and vectorized"
                )
            if record.processing:
                raise AlreadyProcessedError("This document is already being processed")

            if record.stage is DocumentStage.FAILED:
                self._transition(record, DocumentStage.SAVED)
                record.error = None
            record.processing = True
            return record

    def finish_processing(self, document_id: str) -> None:
        """Release the ingestion claim taken by begin_processing."""
        record = self._documents.get(document_id)
        if record is not None:
            record.processing = False

    def advance(self, document_id: str, stage: DocumentStage) -> DocumentRecord:
        """Move a document to the next stage.

        Raises:
            InvalidTransitionError: If the transition table forbids it
        """
        record = self.get(document_id)
        self._transition(record, stage)
        if stage is DocumentStage.COMPLETED:
            record.processed_at = utc_now_iso()
        return record

    def fail(self, document_id: str, error: str) -> DocumentRecord:
        """Mark a document failed, recording a user-facing error message."""
        record = self.get(document_id)
        if record.stage is not DocumentStage.FAILED:
            self._transition(record, DocumentStage.FAILED)
        record.error = error
        return record

    def _transition(self, record: DocumentRecord, target: DocumentStage) -> None:
        if not can_transition(record.stage, target):
            raise InvalidTransitionError(
                f"Cannot move document {record.id} from "
                f"'{record.stage.value}' to '{target.value}'"
            )
        logger.info(
            "document_stage_changed",
            document_id=record.id,
            from_stage=record.stage.value,
            to_stage=target.value,
        )
        record.stage = target
