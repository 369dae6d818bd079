"""Main Quart application for the document Q&A service."""
import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Type, TypeVar

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as RequestValidationError
from quart import Quart, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from docqa import config
from docqa.errors import (
    DocQAError,
    EmptyQueryError,
    InvalidUploadError,
    TransientUnavailableError,
    ValidationError,
)
from docqa.llm_client import AnswerGenerator, create_answer_generator
from docqa.logging_config import AVAILABLE_LEVELS, configure_logging, log_buffer
from docqa.rag.embeddings import EmbeddingBackend, get_embedder
from docqa.rag.engine import RAGEngine
from docqa.rag.ingest import IngestPipeline
from docqa.rag.lifecycle import DocumentRecord, DocumentTracker
from docqa.rag.models import utc_now_iso
from docqa.rag.vector_index import VectorIndex
from docqa.schemas import ProcessRequest, QueryRequest
from docqa.uploads import delete_upload, save_upload, validate_upload

logger = structlog.get_logger()

Model = TypeVar("Model", bound=BaseModel)


@dataclass
class Services:
    """Process-wide pipeline objects shared by every request."""

    vector_index: VectorIndex
    tracker: DocumentTracker
    pipeline: IngestPipeline
    engine: RAGEngine
    answer_generator: AnswerGenerator
    embedder: EmbeddingBackend
    upload_dir: Path


def _services() -> Services:
    return current_app.extensions["docqa"]


def _production() -> bool:
    return current_app.config["ENVIRONMENT"] == "production"


async def _parse_body(model: Type[Model]) -> Model:
    """Validate the JSON body against a pydantic model.

    Raises:
        ValidationError: If the body does not match the model
    """
    data = await request.get_json(silent=True) or {}
    try:
        return model.model_validate(data)
    except RequestValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid request body: {details}") from e


@asynccontextmanager
async def _request_timeout(operation: str):
    try:
        async with asyncio.timeout(current_app.config["REQUEST_TIMEOUT"]):
            yield
    except asyncio.TimeoutError:
        logger.error("request_timeout", operation=operation)
        raise TransientUnavailableError(
            f"The {operation} request timed out. Please try again.",
            stage=operation,
        )


def create_app(
    vector_index: Optional[VectorIndex] = None,
    embedder: Optional[EmbeddingBackend] = None,
    answer_generator: Optional[AnswerGenerator] = None,
    upload_dir: Optional[Path] = None,
    configure: bool = True,
) -> Quart:
    """Build the Quart application and its pipeline objects.

    Args:
        vector_index: Index to use (default: a fresh in-memory index)
        embedder: Embedding backend (default: selected by config)
        answer_generator: Answer generator (default: selected by config)
        upload_dir: Where uploads are stored (default: config.UPLOAD_DIR)
        configure: Whether to configure structured logging

    Returns:
        Configured Quart app
    """
    if configure:
        configure_logging()

    app = Quart(__name__)
    app.config["ENVIRONMENT"] = config.ENVIRONMENT
    app.config["REQUEST_TIMEOUT"] = config.REQUEST_TIMEOUT
    # Multipart overhead on top of the largest accepted file
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_FILE_SIZE + 1024 * 1024
    app.config["STARTED_AT"] = time.monotonic()

    vector_index = vector_index or VectorIndex()
    embedder = embedder or get_embedder()
    answer_generator = answer_generator or create_answer_generator()
    tracker = DocumentTracker()

    app.extensions["docqa"] = Services(
        vector_index=vector_index,
        tracker=tracker,
        pipeline=IngestPipeline(vector_index, tracker, embedder=embedder),
        engine=RAGEngine(vector_index, answer_generator, embedder=embedder),
        answer_generator=answer_generator,
        embedder=embedder,
        upload_dir=Path(upload_dir or config.UPLOAD_DIR),
    )

    _register_hooks(app)
    _register_error_handlers(app)
    _register_routes(app)

    logger.info(
        "app_created",
        environment=config.ENVIRONMENT,
        embedder=embedder.name,
        answer_generator=answer_generator.name,
    )
    return app


def _register_hooks(app: Quart) -> None:
    @app.before_request
    async def log_request():
        logger.info("request_received", method=request.method, path=request.path)

    @app.after_request
    async def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in config.ALLOWED_ORIGINS:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
            response.headers["Vary"] = "Origin"

        logger.info(
            "request_completed",
            method=request.method,
            path=request.path,
            status_code=response.status_code,
        )
        return response


def _register_error_handlers(app: Quart) -> None:
    @app.errorhandler(DocQAError)
    async def handle_docqa_error(error: DocQAError):
        log = logger.warning if error.status_code < 500 else logger.error
        log(
            "request_failed",
            kind=error.kind,
            stage=error.stage,
            status_code=error.status_code,
            error=error.message,
        )
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    async def not_found(error):
        return jsonify({
            "error": "not_found",
            "message": f"Route {request.method} {request.path} not found",
        }), 404

    @app.errorhandler(413)
    async def too_large(error):
        return jsonify({
            "error": "invalid_upload",
            "message": "Uploaded file exceeds the maximum allowed size",
        }), 413

    @app.errorhandler(Exception)
    async def internal_error(error):
        if isinstance(error, HTTPException):
            return error
        logger.exception("internal_server_error", error_type=type(error).__name__)
        return jsonify({
            "error": "internal_error",
            "message": "An error occurred processing your request. Please try again.",
        }), 500


def _register_routes(app: Quart) -> None:
    @app.route("/health")
    async def health():
        """Liveness probe - check if app is running."""
        return jsonify({
            "status": "healthy",
            "timestamp": utc_now_iso(),
            "uptime": round(time.monotonic() - current_app.config["STARTED_AT"], 3),
            "environment": current_app.config["ENVIRONMENT"],
        })

    @app.route("/health/ready")
    async def health_ready():
        """Readiness probe - check that the answer generator is reachable."""
        services = _services()
        checks = {
            "status": "healthy",
            "answer_generator": services.answer_generator.name,
            "embedder": services.embedder.name,
            "ready": False,
            "fragments_indexed": services.vector_index.count(),
        }

        try:
            checks["ready"] = await services.answer_generator.check_ready()
        except DocQAError as e:
            logger.error("health_check_failed", error=e.message)
            checks["error"] = e.message

        if not checks["ready"]:
            checks["status"] = "unhealthy"
            return jsonify(checks), 503
        return jsonify(checks), 200

    @app.route("/api")
    async def api_directory():
        return jsonify({
            "message": "Document Q&A API",
            "version": "1.0.0",
            "endpoints": {
                "health": "/health",
                "upload": "/api/documents/upload",
                "documents": "/api/documents",
                "process": "/api/chat/process",
                "query": "/api/chat/query",
                "logs": "/api/logs",
            },
        })

    @app.route("/api/documents/upload", methods=["POST"])
    async def upload_document():
        """Store an uploaded document (multipart field ``document``)."""
        services = _services()
        files = await request.files
        upload = files.get("document")

        if upload is None or not upload.filename:
            raise InvalidUploadError("No file uploaded. Please select a file to upload")

        data = upload.read()
        validation = validate_upload(upload.filename, upload.mimetype, len(data))
        if not validation.is_valid:
            raise InvalidUploadError("; ".join(validation.errors))

        path = await save_upload(data, upload.filename, services.upload_dir)
        record = services.tracker.register(
            DocumentRecord(
                id=str(uuid.uuid4()),
                original_name=upload.filename,
                mime_type=validation.mime_type,
                size=len(data),
                path=str(path),
            )
        )

        logger.info(
            "document_uploaded",
            document_id=record.id,
            original_name=record.original_name,
            size=record.size,
        )

        return jsonify({
            "message": "Document uploaded successfully",
            "document": {
                "id": record.id,
                "originalName": record.original_name,
                "size": record.size,
                "uploadedAt": record.uploaded_at,
                "status": record.status,
            },
        }), 201

    @app.route("/api/documents", methods=["GET"])
    async def list_documents():
        documents = [record.to_dict() for record in _services().tracker.list_documents()]
        return jsonify({"documents": documents, "total": len(documents)})

    @app.route("/api/documents/<document_id>/status", methods=["GET"])
    async def document_status(document_id: str):
        return jsonify(_services().tracker.get(document_id).to_dict())

    @app.route("/api/documents/<document_id>", methods=["DELETE"])
    async def delete_document(document_id: str):
        """Remove a document, its indexed fragments and its stored file."""
        services = _services()
        record = services.tracker.get(document_id)

        removed = await services.pipeline.remove_document(document_id)
        await delete_upload(record.path)

        return jsonify({
            "message": "Document deleted successfully",
            "documentId": document_id,
            "fragmentsRemoved": removed,
        })

    @app.route("/api/chat/process", methods=["POST"])
    async def process_document():
        """Extract, split, embed and index an uploaded document.

        Expects JSON body: {"documentId": "..."}
        """
        services = _services()
        payload = await _parse_body(ProcessRequest)

        logger.info("document_processing_requested", document_id=payload.document_id)

        async with _request_timeout("process"):
            result = await services.pipeline.process_document(payload.document_id)

        record = services.tracker.get(payload.document_id)
        return jsonify({
            "message": "Document processed successfully",
            "document": record.to_dict(),
            "result": result.to_dict(),
        })

    @app.route("/api/chat/query", methods=["POST"])
    async def chat_query():
        """Answer a question from the indexed documents.

        Expects JSON body:
        {
            "query": "question text",
            "max_results": 5,             // optional
            "similarity_threshold": 0.0,  // optional
            "options": {"maxResults": 5, "similarityThreshold": 0.0}  // optional
        }
        """
        services = _services()
        payload = await _parse_body(QueryRequest)

        if not payload.query.strip():
            raise EmptyQueryError("Query parameter is required and cannot be empty")

        fragment_count = services.vector_index.count()
        if fragment_count == 0:
            return jsonify({
                "error": "no_documents",
                "message": "Please upload and process documents before asking questions",
            }), 400

        logger.info("chat_query_received", query_preview=payload.query[:100])

        async with _request_timeout("query"):
            result = await services.engine.answer(
                payload.query,
                max_results=payload.resolved_max_results(),
                similarity_threshold=payload.resolved_similarity_threshold(),
            )

        return jsonify({
            "query": payload.query,
            **result.to_dict(),
            "metadata": {
                "documentsInIndex": len(services.vector_index.document_ids()),
                "fragmentsInIndex": fragment_count,
            },
        })

    @app.route("/api/chat/history", methods=["GET"])
    async def chat_history():
        return jsonify({
            "history": [],
            "message": "Chat history is not stored by this service",
        })

    @app.route("/api/logs", methods=["GET"])
    async def get_logs():
        """Recent log entries (development only)."""
        if _production():
            return jsonify({
                "error": "forbidden",
                "message": "Log access is only available in development mode",
            }), 403

        level = request.args.get("level") or None
        limit = request.args.get("limit", 50, type=int)
        entries = log_buffer.entries(level=level, limit=limit)

        return jsonify({
            "logs": entries,
            "total": len(log_buffer),
            "filtered": len(entries),
            "availableLevels": AVAILABLE_LEVELS,
        })

    @app.route("/api/logs/clear", methods=["POST"])
    async def clear_logs():
        if _production():
            return jsonify({
                "error": "forbidden",
                "message": "Log clearing is only available in development mode",
            }), 403

        cleared = log_buffer.clear()
        logger.info("log_entries_cleared", cleared_count=cleared)
        return jsonify({
            "message": "Log entries cleared successfully",
            "clearedCount": cleared,
        })


if __name__ == "__main__":
    # For development - use hypercorn "docqa.main:create_app()" in production
    create_app().run(host="0.0.0.0", port=config.API_PORT, debug=True)
