# =============================================================================
# Ingestion Pipeline — Chunk → Embed → Upsert
# =============================================================================
#
# PIPELINE (one uploaded book):
#   1. Chunk the raw text into sentence-aligned pieces (api/books.py, so
#      the chunk rows and the 400 for empty text come before any remote call)
#   2. Embed every chunk (concurrent requests, index-aligned results)
#   3. Build one VectorRecord per chunk, id "{book_id}-{chunk_index}"
#      and upsert them in a single store call
#
# Any EmbeddingFailure or StoreWriteFailure propagates to the caller, which
# aborts the upload. Nothing is retried here.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass

from library.services.embedder import Embedder
from library.services.vectorstore import VectorRecord, VectorStore

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    """Summary of one indexed book."""

    book_id: str
    chunk_count: int
    dimensions: int


async def index_chunks(
    book_id: str,
    title: str,
    author: str,
    chunks: list[str],
    embedder: Embedder,
    store: VectorStore,
) -> IngestResult:
    """
    Embed ``chunks`` and upsert them as the vector records of one book.

    Re-indexing the same book overwrites records with the same chunk index.
    """
    if not chunks:
        raise ValueError(f"No chunks to index for book {book_id}")

    logger.info(
        "[%s] Step 2/3: Embedding %d chunks...", book_id, len(chunks),
    )
    embeddings = await embedder.embed_many(chunks)

    records = [
        VectorRecord.for_chunk(
            book_id=book_id,
            chunk_index=index,
            text=chunk,
            embedding=embedding,
            title=title,
            author=author,
        )
        for index, (chunk, embedding) in enumerate(
            zip(chunks, embeddings, strict=True)
        )
    ]

    logger.info(
        "[%s] Step 3/3: Upserting %d records to %s...",
        book_id, len(records), store.name,
    )
    await store.upsert(records)

    return IngestResult(
        book_id=book_id,
        chunk_count=len(records),
        dimensions=len(embeddings[0]),
    )

