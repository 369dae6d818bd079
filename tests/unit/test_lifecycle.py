"""Tests for document lifecycle tracking."""
import asyncio

import pytest

from docqa.errors import (
    AlreadyProcessedError,
    DocumentBusyError,
    InvalidTransitionError,
    NotFoundError,
)
from docqa.rag.lifecycle import (
    STAGE_DESCRIPTIONS,
    DocumentRecord,
    DocumentStage,
    can_transition,
)


@pytest.fixture
def record(tracker):
    return tracker.register(
        DocumentRecord(id="doc-1", original_name="notes.txt", mime_type="text/plain", size=12)
    )


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        (DocumentStage.SAVED, DocumentStage.TEXT_EXTRACTED, True),
        (DocumentStage.TEXT_EXTRACTED, DocumentStage.CHUNKED, True),
        (DocumentStage.CHUNKED, DocumentStage.VECTORIZING, True),
        (DocumentStage.VECTORIZING, DocumentStage.COMPLETED, True),
        (DocumentStage.CHUNKED, DocumentStage.FAILED, True),
        (DocumentStage.FAILED, DocumentStage.SAVED, True),
        (DocumentStage.SAVED, DocumentStage.COMPLETED, False),
        (DocumentStage.COMPLETED, DocumentStage.FAILED, False),
        (DocumentStage.COMPLETED, DocumentStage.SAVED, False),
        (DocumentStage.VECTORIZING, DocumentStage.CHUNKED, False),
    ],
)
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_every_stage_has_a_description():
    assert set(STAGE_DESCRIPTIONS) == set(DocumentStage)


def test_advance_through_happy_path(tracker, record):
    for stage in (
        DocumentStage.TEXT_EXTRACTED,
        DocumentStage.CHUNKED,
        DocumentStage.VECTORIZING,
        DocumentStage.COMPLETED,
    ):
        tracker.advance("doc-1", stage)

    assert record.stage is DocumentStage.COMPLETED
    assert record.vectorized
    assert record.processed_at is not None
    assert record.status == "processed"


def test_illegal_transition_raises(tracker, record):
    with pytest.raises(InvalidTransitionError):
        tracker.advance("doc-1", DocumentStage.COMPLETED)

    assert record.stage is DocumentStage.SAVED


def test_fail_records_error(tracker, record):
    tracker.advance("doc-1", DocumentStage.TEXT_EXTRACTED)
    tracker.fail("doc-1", "Embedding provider unavailable")

    assert record.stage is DocumentStage.FAILED
    assert record.status == "error"
    assert record.to_dict()["error"] == "Embedding provider unavailable"


def test_get_unknown_document(tracker):
    with pytest.raises(NotFoundError):
        tracker.get("missing")


async def test_begin_processing_claims_document(tracker, record):
    claimed = await tracker.begin_processing("doc-1")

    assert claimed is record
    assert record.processing
    assert record.status == "processing"

    with pytest.raises(AlreadyProcessedError):
        await tracker.begin_processing("doc-1")

    tracker.finish_processing("doc-1")
    assert not record.processing


async def test_concurrent_claims_only_one_wins(tracker, record):
    """Test that two simultaneous claims cannot both succeed."""
    outcomes = await asyncio.gather(
        tracker.begin_processing("doc-1"),
        tracker.begin_processing("doc-1"),
        return_exceptions=True,
    )

    assert sum(isinstance(o, DocumentRecord) for o in outcomes) == 1
    assert sum(isinstance(o, AlreadyProcessedError) for o in outcomes) == 1


async def test_completed_document_cannot_be_claimed(tracker, record):
    for stage in (
        DocumentStage.TEXT_EXTRACTED,
        DocumentStage.CHUNKED,
        DocumentStage.VECTORIZING,
        DocumentStage.COMPLETED,
    ):
        tracker.advance("doc-1", stage)

    with pytest.raises(AlreadyProcessedError):
        await tracker.begin_processing("doc-1")


async def test_failed_document_can_be_retried(tracker, record):
    tracker.fail("doc-1", "boom")

    await tracker.begin_processing("doc-1")

    assert record.stage is DocumentStage.SAVED
    assert record.error is None


def test_to_dict_shape(record):
    data = record.to_dict()

    assert data["id"] == "doc-1"
    assert data["originalName"] == "notes.txt"
    assert data["processingStage"] == "saved"
    assert data["status"] == "uploaded"
    assert data["statusDescription"] == STAGE_DESCRIPTIONS[DocumentStage.SAVED]
    assert data["vectorized"] is False
    assert data["chunkCount"] == 0


def test_remove(tracker, record):
    tracker.remove("doc-1")

    assert tracker.list_documents() == []
    with pytest.raises(NotFoundError):
        tracker.remove("doc-1")


async def test_claimed_document_is_not_idle(tracker, record):
    assert tracker.ensure_idle("doc-1") is record

    await tracker.begin_processing("doc-1")
    with pytest.raises(DocumentBusyError):
        tracker.ensure_idle("doc-1")

    tracker.finish_processing("doc-1")
    assert tracker.ensure_idle("doc-1") is record


def test_is_registered_compares_identity(tracker, record):
    assert tracker.is_registered(record)

    tracker.remove("doc-1")
    assert not tracker.is_registered(record)

    tracker.register(
        DocumentRecord(id="doc-1", original_name="other.txt", mime_type="text/plain", size=3)
    )
    assert not tracker.is_registered(record)
