"""Upload validation and on-disk storage of uploaded documents."""
import asyncio
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import structlog

from docqa import config
from docqa.rag.extractor import DOCX, MSWORD, PDF, PLAIN_TEXT

logger = structlog.get_logger()

ALLOWED_MIME_TYPES = [PDF, PLAIN_TEXT, DOCX, MSWORD]
ALLOWED_EXTENSIONS = [".pdf", ".txt", ".docx", ".doc"]


@dataclass
class FileValidation:
    """Result of validating an upload; ``errors`` is empty when valid."""

    original_name: str
    mime_type: str
    size: int
    extension: str
    errors: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _megabytes(size: int) -> str:
    return f"{size / (1024 * 1024):.2f}MB"


def validate_upload(
    filename: Optional[str],
    mime_type: Optional[str],
    size: int,
    max_size: int = None,
) -> FileValidation:
    """Check name, size, MIME type and extension of an uploaded file.

    All problems are collected rather than stopping at the first one.
    """
    max_size = max_size or config.MAX_FILE_SIZE
    filename = filename or ""
    mime_type = mime_type or ""
    extension = Path(filename).suffix.lower()

    validation = FileValidation(
        original_name=filename,
        mime_type=mime_type,
        size=size,
        extension=extension,
    )

    if size > max_size:
        validation.errors.append(
            f"File size ({_megabytes(size)}) exceeds maximum allowed size ({_megabytes(max_size)})"
        )
    if size == 0:
        validation.errors.append("File is empty")
    if mime_type not in ALLOWED_MIME_TYPES:
        validation.errors.append(
            f"File type '{mime_type}' is not allowed. "
            f"Allowed types: {', '.join(ALLOWED_MIME_TYPES)}"
        )
    if extension not in ALLOWED_EXTENSIONS:
        validation.errors.append(
            f"File extension '{extension}' is not allowed. "
            f"Allowed extensions: {', '.join(ALLOWED_EXTENSIONS)}"
        )
    if not filename.strip():
        validation.errors.append("Invalid filename")

    return validation


def _write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


async def save_upload(data: bytes, original_name: str, upload_dir: Path = None) -> Path:
    """Store upload bytes as ``<uuid><ext>`` under the upload directory.

    Returns:
        Path of the stored file
    """
    upload_dir = Path(upload_dir or config.UPLOAD_DIR)
    path = upload_dir / f"{uuid.uuid4()}{Path(original_name).suffix}"

    await asyncio.to_thread(_write, path, data)

    logger.info("upload_saved", path=str(path), size=len(data))
    return path


async def delete_upload(path: Optional[str]) -> bool:
    """Delete a stored upload. Returns False if there was nothing to delete."""
    if not path:
        return False
    try:
        await asyncio.to_thread(Path(path).unlink)
    except FileNotFoundError:
        return False
    logger.info("upload_deleted", path=path)
    return True
