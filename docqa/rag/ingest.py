"""Ingest pipeline for indexing uploaded documents.

Orchestrates:
- Text extraction from the stored upload
- Recursive splitting into fragments
- Embedding generation
- Insertion into the vector index
- Lifecycle notifications to the document tracker
"""
import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import structlog

from docqa.errors import DocQAError, ExtractionError, NotFoundError, PipelineError
from docqa.rag.embeddings import EmbeddingBackend, get_embedder
from docqa.rag.extractor import TextExtractor
from docqa.rag.lifecycle import DocumentRecord, DocumentStage, DocumentTracker
from docqa.rag.models import Fragment, IngestResult
from docqa.rag.splitter import RecursiveTextSplitter
from docqa.rag.vector_index import VectorIndex

logger = structlog.get_logger()


class IngestPipeline:
    """Pipeline for ingesting documents into the vector index."""

    def __init__(
        self,
        vector_index: VectorIndex,
        tracker: DocumentTracker,
        embedder: Optional[EmbeddingBackend] = None,
        splitter: Optional[RecursiveTextSplitter] = None,
        extractor: Optional[TextExtractor] = None,
        batch_size: int = 10,
    ):
        """Initialize the ingest pipeline.

        Args:
            vector_index: Index the fragments are added to
            tracker: Lifecycle tracker notified of every stage change
            embedder: Embedding backend (default: process-wide backend)
            splitter: Text splitter (default: configured chunk size/overlap)
            extractor: Text extractor for stored uploads
            batch_size: Number of fragments embedded per provider call
        """
        self.vector_index = vector_index
        self.tracker = tracker
        self.embedder = embedder or get_embedder()
        self.splitter = splitter or RecursiveTextSplitter()
        self.extractor = extractor or TextExtractor()
        self.batch_size = batch_size

        self.stats = {
            "documents_processed": 0,
            "documents_failed": 0,
            "fragments_created": 0,
            "embeddings_generated": 0,
        }

        logger.info(
            "ingest_pipeline_initialized",
            embedder=self.embedder.name,
            chunk_size=self.splitter.chunk_size,
            chunk_overlap=self.splitter.chunk_overlap,
        )

    async def process_document(self, document_id: str) -> IngestResult:
        """Extract, split, embed and index a previously uploaded document.

        Raises:
            NotFoundError: If the document is unknown
            AlreadyProcessedError: If it was already vectorized or is in flight
            ExtractionError: If the stored file cannot be read or parsed
            EmptyContentError: If no text could be extracted
        """
        record = await self.tracker.begin_processing(document_id)
        logger.info(
            "document_processing_started",
            document_id=document_id,
            original_name=record.original_name,
        )

        stage = "extract"
        try:
            text = await self._extract(record)
            self.tracker.advance(document_id, DocumentStage.TEXT_EXTRACTED)
            return await self._index_text(record, text)
        except DocQAError as e:
            self._record_failure(record, e.message)
            raise e.with_stage(stage)
        except asyncio.CancelledError:
            self._record_failure(record, "Document processing was cancelled")
            raise
        except Exception as e:
            logger.exception("document_processing_crashed", document_id=document_id)
            self._record_failure(record, "Document processing failed")
            raise PipelineError("Document processing failed", stage=stage) from e
        finally:
            self.tracker.finish_processing(document_id)

    async def ingest_text(
        self,
        document_id: str,
        raw_text: str,
        mime_type: str,
        original_name: str,
    ) -> IngestResult:
        """Index already-extracted text for a document.

        Unknown document ids are registered on the fly.

        Raises:
            AlreadyProcessedError: If the document was already vectorized
            EmptyContentError: If the text is blank
        """
        try:
            self.tracker.get(document_id)
        except NotFoundError:
            self.tracker.register(
                DocumentRecord(
                    id=document_id,
                    original_name=original_name,
                    mime_type=mime_type,
                    size=len(raw_text.encode("utf-8")),
                )
            )

        record = await self.tracker.begin_processing(document_id)
        try:
            self.tracker.advance(document_id, DocumentStage.TEXT_EXTRACTED)
            return await self._index_text(record, raw_text)
        except DocQAError as e:
            self._record_failure(record, e.message)
            raise
        except asyncio.CancelledError:
            self._record_failure(record, "Document processing was cancelled")
            raise
        finally:
            self.tracker.finish_processing(document_id)

    async def remove_document(self, document_id: str) -> int:
        """Remove a document's fragments from the index and forget the document.

        Raises:
            NotFoundError: If the document is unknown
            DocumentBusyError: If the document is being processed
        """
        async with self.tracker.lock:
            self.tracker.ensure_idle(document_id)
            removed = await self.vector_index.remove_by_document(document_id)
            self.tracker.remove(document_id)
        return removed

    async def _extract(self, record: DocumentRecord) -> str:
        if not record.path:
            raise ExtractionError(f"Document {record.id} has no stored file")
        try:
            data = await asyncio.to_thread(Path(record.path).read_bytes)
        except OSError as e:
            logger.error("stored_file_unreadable", document_id=record.id, error=str(e))
            raise ExtractionError("Stored document file could not be read") from e
        return await self.extractor.extract(data, record.mime_type)

    async def _index_text(self, record: DocumentRecord, text: str) -> IngestResult:
        stage = "split"
        try:
            fragments = self.splitter.create_fragments(
                text,
                document_id=record.id,
                original_name=record.original_name,
                mime_type=record.mime_type,
            )
            self.tracker.advance(record.id, DocumentStage.CHUNKED)

            logger.info(
                "document_split",
                document_id=record.id,
                **self.splitter.get_fragment_stats(fragments),
            )

            stage = "embed"
            self.tracker.advance(record.id, DocumentStage.VECTORIZING)
            vectors = await self.generate_embeddings_batch(fragments)

            stage = "index"
            added = await self.vector_index.add(
                list(zip(fragments, vectors)),
                accept=lambda: self.tracker.is_registered(record),
            )
            if not added:
                raise NotFoundError(f"Document {record.id} was removed during processing")
        except DocQAError as e:
            raise e.with_stage(stage)
        except Exception as e:
            logger.exception("document_ingest_failed", document_id=record.id, stage=stage)
            raise PipelineError("Document ingestion failed", stage=stage) from e

        record.fragment_ids = [f.id for f in fragments]
        record.text_length = len(text)
        self.tracker.advance(record.id, DocumentStage.COMPLETED)

        self.stats["documents_processed"] += 1
        self.stats["fragments_created"] += len(fragments)

        logger.info(
            "document_ingested",
            document_id=record.id,
            fragment_count=len(fragments),
            text_length=len(text),
        )

        return IngestResult(
            document_id=record.id,
            fragment_count=len(fragments),
            text_length=len(text),
        )

    async def generate_embeddings_batch(self, fragments: List[Fragment]) -> List[np.ndarray]:
        """Embed fragment contents in provider-sized batches, preserving order."""
        vectors: List[np.ndarray] = []

        for i in range(0, len(fragments), self.batch_size):
            batch = [f.content for f in fragments[i : i + self.batch_size]]
            vectors.extend(await self.embedder.embed_batch(batch))
            self.stats["embeddings_generated"] += len(batch)

            logger.debug(
                "embeddings_batch_generated",
                batch_size=len(batch),
                total_so_far=len(vectors),
            )

        return vectors

    def _record_failure(self, record: DocumentRecord, message: str) -> None:
        self.stats["documents_failed"] += 1
        if self.tracker.is_registered(record):
            self.tracker.fail(record.id, message)
        logger.error(
            "document_processing_failed",
            document_id=record.id,
            error=message,
        )

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)
