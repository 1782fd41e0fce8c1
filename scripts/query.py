#!/usr/bin/env python
"""Ask a question against an indexed collection.

Usage:
    python scripts/query.py "What is the refund policy?"
    python scripts/query.py "Who signed the contract?" -c legal --limit 3 --threshold 0.5
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from docrag.config import Settings
from docrag.exceptions import RagError
from docrag.logs import configure_logging
from docrag.rag.service import RAGService
from docrag.schemas import DEFAULT_COLLECTION


async def main():
    parser = argparse.ArgumentParser(description="Query an indexed document collection")
    parser.add_argument("question", help="Question to ask")
    parser.add_argument("--collection", "-c", default=DEFAULT_COLLECTION)
    parser.add_argument("--limit", "-n", type=int, default=None, help="Maximum passages")
    parser.add_argument("--threshold", "-t", type=float, default=None, help="Minimum score (0-1)")
    parser.add_argument("--sources", action="store_true", help="Print scored sources")
    args = parser.parse_args()

    configure_logging("WARNING")

    try:
        service = RAGService(Settings.from_env().validate())
        result = await service.query(
            args.question, args.collection, limit=args.limit, threshold=args.threshold
        )
    except RagError as e:
        print(f"\n❌ Error: {e.message}\n")
        sys.exit(1)

    print(f"\n{result.answer}\n")

    if args.sources:
        print(f"{'=' * 60}")
        for source in result.sources:
            print(
                f"  {source.score:.3f}  {source.metadata.get('source', 'unknown')}"
                f"  (page {source.metadata.get('page', 1)})"
            )
        print(f"{'=' * 60}")

    print(f"  ⏱️  {result.processing_time_ms}ms, {len(result.sources)} passage(s)\n")


if __name__ == "__main__":
    asyncio.run(main())
