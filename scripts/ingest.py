#!/usr/bin/env python
"""Bulk-ingest text and markdown files into the document index.

Usage:
    python scripts/ingest.py docs/                 # Ingest every supported file under docs/
    python scripts/ingest.py a.txt b.md            # Ingest specific files
    python scripts/ingest.py docs/ --rebuild       # Clear the index first
    python scripts/ingest.py docs/ --owner alice   # Tag documents with an owner
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import List

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from docqa import config
from docqa.log_config import configure_logging
from docqa.rag.extract import EXTENSION_TYPES
from docqa.rag.ingest import Upload
from docqa.services import build_services

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, name: str):
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {name[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, stats: dict):
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Ingestion Complete!")
        print(f"{'=' * 60}\n")
        print(f"  📁 Files processed:      {stats['files_processed']}")
        print(f"  ❌ Files failed:         {stats['files_failed']}")
        print(f"  📝 Chunks created:       {stats['chunks_created']}")
        print(f"  🧮 Embeddings generated: {stats['embeddings_generated']}")
        print(f"  ⏱️  Time elapsed:         {elapsed_seconds:.1f}s")

        if stats["chunks_created"] > 0 and elapsed_seconds > 0:
            rate = stats["chunks_created"] / elapsed_seconds
            print(f"  ⚡ Indexing rate:        {rate:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")

        if stats["files_failed"] > 0:
            print(f"⚠️  Warning: {stats['files_failed']} file(s) failed to index.")
            print("   Check logs for details.\n")


def discover_files(paths: List[Path]) -> List[Path]:
    """Expand directories into the supported files they contain, recursively.

    Raises:
        FileNotFoundError: If a path does not exist
    """
    files = []
    for path in paths:
        if not path.exists():
            raise FileNotFoundError(f"Path not found: {path}")
        if path.is_dir():
            files.extend(
                sorted(p for p in path.rglob("*") if p.suffix.lower() in EXTENSION_TYPES)
            )
        else:
            files.append(path)
    return files


async def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Ingest documents for question answering",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/ingest.py docs/              # Ingest a directory
  python scripts/ingest.py notes.md --verbose # Show detailed progress
        """,
    )
    parser.add_argument("paths", nargs="+", type=Path, help="Files or directories to ingest")
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Clear the vector index before ingesting",
    )
    parser.add_argument("--owner", default=None, help="Owner id recorded on each document")
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress output",
    )

    args = parser.parse_args()
    configure_logging(level="DEBUG" if args.verbose else "WARNING", fmt="console")

    progress = ProgressReporter(verbose=args.verbose)

    try:
        files = discover_files(args.paths)

        print("\n📋 Configuration:")
        print(f"   Vector store:      {config.VECTOR_STORE_BACKEND}")
        print(f"   Embedding backend: {config.EMBEDDING_PROVIDER}")
        print(f"   Chunk size:        {config.CHUNK_SIZE} chars")
        print(f"   Chunk overlap:     {config.CHUNK_OVERLAP} chars")
        print(f"   Files found:       {len(files)}")

        if not files:
            print("\nNothing to ingest.\n")
            return

        services = await build_services()

        if args.rebuild:
            print("\n⚠️  Rebuild mode: Will clear the existing vector index!")
            print("   Press Ctrl+C within 3 seconds to cancel...")
            await asyncio.sleep(3)
            await services.vector_store.clear()

        progress.start("Ingesting Documents")

        uploads = [
            Upload(name=path.name, data=path.read_bytes(), owner_id=args.owner)
            for path in files
        ]
        await services.pipeline.ingest_many(
            uploads,
            progress_callback=progress.update,
        )

        stats = services.pipeline.stats
        progress.finish(stats)

        if stats["files_failed"] > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\n⚠️  Ingestion cancelled by user.\n")
        sys.exit(1)

    except FileNotFoundError as e:
        print(f"\n❌ Error: {e}\n")
        sys.exit(1)

    except Exception as e:
        print(f"\n❌ Error: {e}\n")
        logger.error("ingest_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
