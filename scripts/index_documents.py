#!/usr/bin/env python
"""Index documents into a docrag collection.

Usage:
    python scripts/index_documents.py docs/                    # Index a folder into "default"
    python scripts/index_documents.py paper.pdf -c research    # Index one file
    python scripts/index_documents.py docs/ -c kb --rebuild    # Drop the collection first
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from docrag.config import Settings
from docrag.exceptions import RagError
from docrag.logs import configure_logging
from docrag.rag.service import BatchIndexResult, RAGService
from docrag.schemas import DEFAULT_COLLECTION

logger = structlog.get_logger()


class ProgressReporter:
    """Progress bar and summary for the terminal."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, file_path: Path):
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {file_path.name[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, result: BatchIndexResult, settings: Settings):
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Indexing Complete!")
        print(f"{'=' * 60}\n")
        print(f"  📁 Files indexed:        {result.success_count}")
        print(f"  ❌ Files failed:         {result.error_count}")
        print(f"  📝 Chunks created:       {result.total_chunks}")
        print(f"  ⏱️  Time elapsed:         {elapsed_seconds:.1f}s")

        if result.total_chunks > 0 and elapsed_seconds > 0:
            rate = result.total_chunks / elapsed_seconds
            print(f"  ⚡ Indexing rate:        {rate:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")

        for outcome in result.results:
            if outcome.error:
                print(f"  ⚠️  {outcome.file}: {outcome.error}")
        if result.error_count:
            print()

        if result.success_count > 0:
            print(f"✅ Collection '{result.collection}' stored in: {settings.vector_db_dir}\n")


async def main():
    parser = argparse.ArgumentParser(
        description="Index PDF, TXT and MD documents into a collection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/index_documents.py docs/
  python scripts/index_documents.py paper.pdf --collection research
  python scripts/index_documents.py docs/ --collection kb --rebuild
        """,
    )

    parser.add_argument("path", type=Path, help="File or directory to index")

    parser.add_argument(
        "--collection",
        "-c",
        default=DEFAULT_COLLECTION,
        help=f"Target collection (default: {DEFAULT_COLLECTION})",
    )

    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Delete the collection before indexing",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress output and debug logs",
    )

    args = parser.parse_args()

    progress = ProgressReporter(verbose=args.verbose)

    try:
        settings = Settings.from_env().validate()
        configure_logging("DEBUG" if args.verbose else "WARNING")

        print("\n📋 Configuration:")
        print(f"   Source:           {args.path}")
        print(f"   Collection:       {args.collection}")
        print(f"   Embedding model:  {settings.embedding_model}")
        print(f"   Chunk size:       {settings.chunk_size} chars")
        print(f"   Chunk overlap:    {settings.chunk_overlap} chars")

        service = RAGService(settings)
        await service.initialize()

        if args.rebuild:
            print(f"\n⚠️  Rebuild mode: collection '{args.collection}' will be deleted!")
            print("   Press Ctrl+C within 3 seconds to cancel...")
            await asyncio.sleep(3)
            await service.delete_collection(args.collection)

        progress.start(f"Indexing into '{args.collection}'")

        result = await service.index_path(
            args.path,
            args.collection,
            progress_callback=progress.update,
        )

        progress.finish(result, settings)

        if result.error_count > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\n⚠️  Indexing cancelled by user.\n")
        sys.exit(1)

    except RagError as e:
        print(f"\n❌ Error: {e.message}\n")
        logger.error("index_script_failed", error=str(e), code=e.code)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
