#!/usr/bin/env python
"""Ask a question against one subject and print the X-Ray trace.

Usage:
    python scripts/ask.py --subject-id <uuid> "What is photosynthesis?"
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from kortex.exceptions import KortexError
from kortex.library import LibraryManager
from kortex.llm_client import CloudflareEmbedder, GroqClient
from kortex.log_config import configure_logging
from kortex.rag.orchestrator import RAGOrchestrator
from kortex.rag.retriever import Retriever


async def main():
    parser = argparse.ArgumentParser(description="Query a KORTEX subject")
    parser.add_argument("question", help="Question to answer")
    parser.add_argument("--subject-id", required=True, help="Subject to search")
    parser.add_argument("--threshold", type=float, default=None, help="Similarity cutoff")
    parser.add_argument("--max-chunks", type=int, default=None, help="Chunk limit")
    args = parser.parse_args()

    configure_logging("WARNING")

    library = LibraryManager()
    orchestrator = RAGOrchestrator(
        retriever=Retriever(CloudflareEmbedder(), library),
        generator=GroqClient(),
        similarity_threshold=args.threshold,
        max_chunks=args.max_chunks,
    )

    try:
        library.get_subject(args.subject_id)
        result = await orchestrator.query(args.question, args.subject_id)
    except KortexError as e:
        print(f"\n❌ {e.message}" + (f": {e.detail}" if e.detail else "") + "\n")
        sys.exit(1)

    print(f"\n{result.answer}\n")
    print(f"{'=' * 60}")
    print(f"  X-Ray: {result.outcome.value}, {len(result.retrieved_chunks)} chunk(s)")
    print(f"{'=' * 60}")
    for n, chunk in enumerate(result.retrieved_chunks, 1):
        preview = chunk.content[:100].replace("\n", " ")
        print(f"  [Source {n}] {chunk.source}  similarity={chunk.similarity:.3f}")
        print(f"      {preview}...")
    if result.tokens_used:
        print(f"\n  Tokens: {result.tokens_used.total} "
              f"(prompt: {result.tokens_used.prompt}, completion: {result.tokens_used.completion})")
    print()


if __name__ == "__main__":
    asyncio.run(main())
