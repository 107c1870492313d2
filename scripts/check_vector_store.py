#!/usr/bin/env python3
"""
Smoke-test the configured vector store against the live backend.

Runs initialize → upsert → query → delete_by_book with a throwaway book id,
retrying each step with exponential backoff. Uses the same settings as the
API (VECTORSTORE_TYPE, CHROMA_URL, PINECONE_API_KEY, ...).

Usage:
    uv run python scripts/check_vector_store.py
    uv run python scripts/check_vector_store.py --retries 5 --delay 2
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import TypeVar

from library.config import settings
from library.errors import LibraryError
from library.services.vectorstore import VectorRecord, get_vector_store

logger = logging.getLogger("check_vector_store")

T = TypeVar("T")

CHECK_BOOK_ID = "connection-check"


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``operation()`` up to ``max_retries`` times.

    The delay doubles after each failed attempt (1s, 2s, 4s, ...). The last
    error is re-raised once attempts run out.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")

    for attempt in range(max_retries):
        try:
            return await operation()
        except (LibraryError, OSError) as exc:
            if attempt == max_retries - 1:
                raise
            delay = initial_delay * 2**attempt
            logger.warning(
                "Attempt %d failed (%s), retrying in %.1fs...",
                attempt + 1, exc, delay,
            )
            await sleep(delay)

    raise AssertionError("unreachable")


async def run_check(max_retries: int, initial_delay: float) -> int:
    store = get_vector_store(settings)
    dims = settings.embedding_dimensions
    print(f"Checking {store.name} vector store ({dims} dimensions)...")

    def retry(operation):
        return retry_with_backoff(operation, max_retries, initial_delay)

    try:
        await retry(store.initialize)
        print("  initialize: ok")

        record = VectorRecord.for_chunk(
            book_id=CHECK_BOOK_ID,
            chunk_index=0,
            text="test document",
            embedding=[0.1] * dims,
            title="Connection Check",
            author="Library",
        )
        await retry(lambda: store.upsert([record]))
        print("  upsert: ok")

        matches = await retry(
            lambda: store.query([0.1] * dims, top_k=1, where={"bookId": CHECK_BOOK_ID})
        )
        print(f"  query: ok ({len(matches)} match)")

        removed = await retry(lambda: store.delete_by_book(CHECK_BOOK_ID))
        print(f"  delete: ok ({removed} removed)")
    except LibraryError as exc:
        print(f"FAILED: {exc}", file=sys.stderr)
        return 1
    finally:
        await store.aclose()

    print("Vector store is reachable.")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--retries", type=int, default=3, help="Attempts per step")
    parser.add_argument("--delay", type=float, default=1.0, help="Initial backoff in seconds")
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level.upper())
    sys.exit(asyncio.run(run_check(args.retries, args.delay)))


if __name__ == "__main__":
    main()
