#!/usr/bin/env python
"""Index local documents in memory and ask a question about them.

Usage:
    python scripts/ask.py docs/ -q "What is the refund policy?"
    python scripts/ask.py report.pdf notes.txt -q "Who signed the contract?" --top-k 3
    python scripts/ask.py docs/ -q "..." --verbose    # Show pipeline logs
"""
import argparse
import asyncio
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import List

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from docqa import config
from docqa.errors import DocQAError
from docqa.llm_client import create_answer_generator
from docqa.logging_config import configure_logging
from docqa.rag.engine import RAGEngine
from docqa.rag.extractor import DOCX, MSWORD, PDF, PLAIN_TEXT
from docqa.rag.ingest import IngestPipeline
from docqa.rag.lifecycle import DocumentRecord, DocumentTracker
from docqa.rag.vector_index import VectorIndex

logger = structlog.get_logger()

MIME_TYPES = {
    ".pdf": PDF,
    ".txt": PLAIN_TEXT,
    ".docx": DOCX,
    ".doc": MSWORD,
}


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self):
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, file_path: Path, ok: bool):
        status = "ok" if ok else "FAILED"
        print(f"  ({current}/{total}) {file_path.name[:40]:<40} {status}")

    def finish(self, stats: dict, failed: int):
        elapsed = (datetime.now() - self.start_time).total_seconds()

        print(f"\n  Documents indexed:     {stats['documents_processed']}")
        print(f"  Documents failed:      {failed}")
        print(f"  Fragments created:     {stats['fragments_created']}")
        print(f"  Embeddings generated:  {stats['embeddings_generated']}")
        print(f"  Time elapsed:          {elapsed:.1f}s\n")


def collect_files(paths: List[Path]) -> List[Path]:
    """Expand directories into the supported files they contain."""
    files: List[Path] = []
    for path in paths:
        if path.is_dir():
            files.extend(
                sorted(p for p in path.rglob("*") if p.suffix.lower() in MIME_TYPES)
            )
        elif path.is_file():
            files.append(path)
        else:
            raise FileNotFoundError(f"No such file or directory: {path}")
    return files


async def index_files(
    files: List[Path],
    pipeline: IngestPipeline,
    tracker: DocumentTracker,
    progress: ProgressReporter,
) -> int:
    """Index every file, returning the number of failures."""
    failed = 0

    for current, file_path in enumerate(files, 1):
        mime_type = MIME_TYPES.get(file_path.suffix.lower())
        ok = False

        if mime_type is None:
            logger.warning("unsupported_file_skipped", path=str(file_path))
        else:
            record = tracker.register(
                DocumentRecord(
                    id=str(uuid.uuid4()),
                    original_name=file_path.name,
                    mime_type=mime_type,
                    size=file_path.stat().st_size,
                    path=str(file_path),
                )
            )
            try:
                await pipeline.process_document(record.id)
                ok = True
            except DocQAError as e:
                logger.error("file_index_failed", path=str(file_path), error=e.message)

        if not ok:
            failed += 1
        progress.update(current, len(files), file_path, ok)

    return failed


def print_answer(result) -> None:
    print(f"{'=' * 60}")
    print("  Answer" + ("  (degraded)" if result.degraded else ""))
    print(f"{'=' * 60}\n")
    print(result.answer)
    print(f"\n  Confidence: {result.confidence:.3f}\n")

    for citation in result.sources:
        marker = " (implicit)" if citation.implicit else ""
        print(
            f"  [Source {citation.source_number}] {citation.document_name} "
            f"#{citation.fragment_index} similarity={citation.similarity:.3f}{marker}"
        )
        if citation.excerpt:
            print(f"      {citation.excerpt[:120]}")
    print()


async def main():
    """Main entry point for the ask script."""
    parser = argparse.ArgumentParser(
        description="Index documents in memory and answer a question with citations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/ask.py docs/ -q "What is the refund policy?"
  python scripts/ask.py report.pdf -q "Summarize the findings" --top-k 3
        """,
    )

    parser.add_argument("paths", nargs="+", type=Path, help="Files or directories to index")
    parser.add_argument("--question", "-q", required=True, help="Question to answer")
    parser.add_argument(
        "--top-k",
        type=int,
        default=config.RETRIEVAL_TOP_K,
        help=f"Fragments to retrieve (default: {config.RETRIEVAL_TOP_K})",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=config.SIMILARITY_THRESHOLD,
        help=f"Minimum similarity (default: {config.SIMILARITY_THRESHOLD})",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show pipeline logs",
    )

    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else "WARNING")
    progress = ProgressReporter()

    try:
        print("\nConfiguration:")
        print(f"   Embedding provider:  {config.EMBEDDING_PROVIDER}")
        print(f"   Answer provider:     {config.ANSWER_PROVIDER}")
        print(f"   Chunk size:          {config.CHUNK_SIZE} chars")
        print(f"   Chunk overlap:       {config.CHUNK_OVERLAP} chars")

        files = collect_files(args.paths)
        if not files:
            print("\nNo supported documents found (.pdf, .txt, .docx, .doc).\n")
            sys.exit(1)

        vector_index = VectorIndex()
        tracker = DocumentTracker()
        pipeline = IngestPipeline(vector_index, tracker)
        engine = RAGEngine(vector_index, create_answer_generator())

        progress.start(f"Indexing {len(files)} document(s)")
        failed = await index_files(files, pipeline, tracker, progress)
        progress.finish(pipeline.get_stats(), failed)

        if vector_index.count() == 0:
            print("Nothing was indexed; cannot answer.\n")
            sys.exit(1)

        result = await engine.answer(
            args.question,
            max_results=args.top_k,
            similarity_threshold=args.threshold,
        )
        print_answer(result)

    except KeyboardInterrupt:
        print("\n\nCancelled by user.\n")
        sys.exit(1)

    except FileNotFoundError as e:
        print(f"\nError: {e}\n")
        sys.exit(1)

    except DocQAError as e:
        print(f"\nError ({e.kind}): {e.message}\n")
        logger.error("ask_script_failed", kind=e.kind, stage=e.stage, error=e.message)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
