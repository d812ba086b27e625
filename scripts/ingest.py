#!/usr/bin/env python
"""Ingest PDF study documents into a subject.

Usage:
    python scripts/ingest.py --user alice --subject-name Biology notes/*.pdf
    python scripts/ingest.py --user alice --subject-id <uuid> lecture1.pdf
    python scripts/ingest.py --user alice --subject-id <uuid> -v lecture1.pdf
"""
import argparse
import asyncio
import sys
from pathlib import Path
from datetime import datetime

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from kortex import config
from kortex.activity import ActivityLogger
from kortex.exceptions import KortexError
from kortex.library import LibraryManager
from kortex.llm_client import CloudflareEmbedder
from kortex.log_config import configure_logging
from kortex.rag.ingest import IngestPipeline
from kortex.rag.pdf_parser import PdfTextExtractor
import structlog

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None
        self.current_file = ""

    def start(self, message: str):
        """Start progress reporting."""
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int):
        """Update embedding progress for the current file."""
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {self.current_file[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, stats: dict):
        """Finish progress reporting."""
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Ingestion Complete!")
        print(f"{'=' * 60}\n")
        print(f"  📁 Files processed:  {stats['files_processed']}")
        print(f"  ❌ Files failed:     {stats['files_failed']}")
        print(f"  📝 Chunks created:   {stats['chunks_created']}")
        print(f"  ⏱️  Time elapsed:     {elapsed_seconds:.1f}s")

        if stats["chunks_created"] > 0 and elapsed_seconds > 0:
            rate = stats["chunks_created"] / elapsed_seconds
            print(f"  ⚡ Indexing rate:    {rate:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")

        if stats["files_failed"] > 0:
            print(f"⚠️  Warning: {stats['files_failed']} file(s) failed to ingest.")
            print("   Check logs for details.\n")


async def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Ingest PDF documents into a KORTEX subject",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/ingest.py --user alice --subject-name Biology notes/*.pdf
  python scripts/ingest.py --user alice --subject-id <uuid> lecture1.pdf
        """,
    )

    parser.add_argument("files", nargs="+", type=Path, help="PDF files to ingest")
    parser.add_argument("--user", required=True, help="Owner user id")

    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--subject-id", help="Existing subject to ingest into")
    target.add_argument("--subject-name", help="Create a new subject with this name")

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress output",
    )

    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else "WARNING")
    progress = ProgressReporter(verbose=args.verbose)

    library = LibraryManager()
    activity_logger = ActivityLogger()
    pipeline = IngestPipeline(
        extractor=PdfTextExtractor(),
        embedder=CloudflareEmbedder(),
        repository=library,
        activity_log=activity_logger,
    )

    stats = {"files_processed": 0, "files_failed": 0, "chunks_created": 0}

    try:
        if args.subject_name:
            subject = library.create_subject(args.user, args.subject_name)
        else:
            subject = library.get_subject(args.subject_id)

        print("\n📋 Configuration:")
        print(f"   Subject:          {subject.name} ({subject.id})")
        print(f"   Embedding model:  {config.EMBEDDING_MODEL}")
        print(f"   Chunk size:       {config.CHUNK_MAX_TOKENS} tokens")
        print(f"   Chunk overlap:    {config.CHUNK_OVERLAP_TOKENS} tokens")

        progress.start(f"Ingesting {len(args.files)} file(s)")

        for file_path in args.files:
            progress.current_file = file_path.name
            try:
                result = await pipeline.ingest_file(
                    file_path, subject.id, args.user, progress_callback=progress.update
                )
                stats["files_processed"] += 1
                stats["chunks_created"] += result.chunk_count
            except (KortexError, FileNotFoundError) as e:
                stats["files_failed"] += 1
                print(f"\n  ❌ {file_path.name}: {e}")

        await activity_logger.drain()
        progress.finish(stats)

        if stats["files_failed"] > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\n⚠️  Ingestion cancelled by user.\n")
        sys.exit(1)

    except KortexError as e:
        print(f"\n❌ Error: {e.message}\n")
        sys.exit(1)

    except Exception as e:
        print(f"\n❌ Error: {e}\n")
        logger.error("ingest_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
