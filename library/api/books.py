# =============================================================================
# Books API — Upload, List and Delete Book Summaries
# =============================================================================
#
# ENDPOINTS:
#   POST   /books        — Upload a .txt summary, index it, return the Book
#   GET    /books        — List books, newest first
#   DELETE /books/{id}   — Remove vectors, stored file and row
#
# DESIGN DECISION: Index inside the request (no background worker).
# Summaries are short plain text, so chunk → embed → upsert finishes in
# a few seconds. The caller gets a 201 only once the book is searchable.
#
# UPLOAD FAILURE HANDLING:
# The relational row, the stored file and the vector records live in three
# systems with no shared transaction. On any failure after validation:
#   1. The session is rolled back (get_async_session), so no Book row
#   2. The stored file is removed
#   3. delete_by_book runs to drop any vectors already written
# Steps 2 and 3 are best-effort; their failures are logged only.
#
# DELETE ORDER: vectors → file → row. The first two stages log and continue,
# so the row is always removed once the book exists.
# =============================================================================

import logging
import uuid

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from library.api.deps import get_current_user, get_embedder, get_storage, get_vector_store
from library.config import settings
from library.db.engine import get_async_session
from library.db.models import Book, BookChunk
from library.errors import LibraryError
from library.models.responses import BookListResponse, BookResponse, DeleteResponse
from library.services.chunker import chunk_text
from library.services.embedder import Embedder
from library.services.ingest import index_chunks
from library.services.storage import LocalFileStorage, build_file_path
from library.services.vectorstore import VectorStore, make_vector_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Books"])

ALLOWED_EXTENSION = ".txt"


# ---------------------------------------------------------------------------
# POST /books — Upload a book summary
# ---------------------------------------------------------------------------


@router.post(
    "/books",
    response_model=BookResponse,
    status_code=201,
    summary="Upload a book summary",
    description=(
        "Upload a UTF-8 .txt summary with its title and author. The text is "
        "chunked, embedded and indexed before the response is returned."
    ),
)
async def upload_book(
    file: UploadFile = File(..., description="Plain-text (.txt) book summary"),
    title: str = Form(..., min_length=1, max_length=500),
    author: str = Form(..., min_length=1, max_length=500),
    user_id: str = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    storage: LocalFileStorage = Depends(get_storage),
    embedder: Embedder = Depends(get_embedder),
    store: VectorStore = Depends(get_vector_store),
) -> BookResponse:
    # --- Validate file type ---
    if not file.filename or not file.filename.lower().endswith(ALLOWED_EXTENSION):
        raise HTTPException(
            status_code=400,
            detail="Only .txt files are accepted.",
        )

    # --- Read and validate file content ---
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")

    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds the {settings.max_upload_bytes} byte upload limit.",
        )

    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=400,
            detail="File must be UTF-8 encoded text.",
        ) from None

    title = title.strip()
    author = author.strip()
    if not title or not author:
        raise HTTPException(status_code=400, detail="Title and author are required.")

    chunks = chunk_text(text, max_chunk_size=settings.chunk_size)
    if not chunks:
        raise HTTPException(
            status_code=400,
            detail="No sentences found in the uploaded file.",
        )

    # --- Build the Book and its chunk rows ---
    book_id = str(uuid.uuid4())
    book = Book(
        id=book_id,
        title=title,
        author=author,
        file_path=build_file_path(title, file.filename),
    )
    book.chunks = [
        BookChunk(chunk_index=index, text=chunk, vector_id=make_vector_id(book_id, index))
        for index, chunk in enumerate(chunks)
    ]

    logger.info(
        "[%s] Step 1/3: User %s uploading '%s' by %s (%d bytes, %d chunks)",
        book_id, user_id, title, author, len(content), len(chunks),
    )

    file_saved = False
    try:
        await storage.save(book.file_path, content)
        file_saved = True

        session.add(book)
        await session.flush()

        result = await index_chunks(book_id, title, author, chunks, embedder, store)
    except Exception as exc:
        logger.exception("Upload of '%s' failed", title)
        await _discard_upload(book, file_saved, storage, store)
        raise HTTPException(
            status_code=502,
            detail="Failed to process book upload",
        ) from exc

    logger.info(
        "[%s] Indexed %d chunks (%d dimensions) in %s",
        result.book_id, result.chunk_count, result.dimensions, store.name,
    )
    return BookResponse.model_validate(book)


async def _discard_upload(
    book: Book,
    file_saved: bool,
    storage: LocalFileStorage,
    store: VectorStore,
) -> None:
    """Best-effort removal of the side effects of a failed upload."""
    if file_saved:
        try:
            await storage.remove(book.file_path)
        except (OSError, ValueError):
            logger.exception("Could not remove stored file %s", book.file_path)

    try:
        removed = await store.delete_by_book(book.id)
        if removed:
            logger.info("[%s] Removed %d vectors from failed upload", book.id, removed)
    except LibraryError:
        logger.exception("[%s] Could not remove vectors from failed upload", book.id)


# ---------------------------------------------------------------------------
# GET /books — List the library
# ---------------------------------------------------------------------------


@router.get(
    "/books",
    response_model=BookListResponse,
    summary="List all books",
)
async def list_books(
    user_id: str = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> BookListResponse:
    result = await session.execute(select(Book).order_by(Book.created_at.desc()))
    books = result.scalars().all()
    return BookListResponse(books=[BookResponse.model_validate(b) for b in books])


# ---------------------------------------------------------------------------
# DELETE /books/{book_id} — Remove a book
# ---------------------------------------------------------------------------


@router.delete(
    "/books/{book_id}",
    response_model=DeleteResponse,
    summary="Delete a book and its indexed content",
)
async def delete_book(
    book_id: str,
    user_id: str = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    storage: LocalFileStorage = Depends(get_storage),
    store: VectorStore = Depends(get_vector_store),
) -> DeleteResponse:
    book = await session.get(Book, book_id)
    if book is None:
        raise HTTPException(status_code=404, detail=f"Book {book_id} not found")

    # Stage 1: vectors
    try:
        removed = await store.delete_by_book(book_id)
        logger.info("[%s] Deleted %d vectors", book_id, removed)
    except LibraryError:
        logger.exception("[%s] Vector deletion failed; continuing", book_id)

    # Stage 2: stored file
    try:
        await storage.remove(book.file_path)
    except (OSError, ValueError):
        logger.exception("[%s] File deletion failed; continuing", book_id)

    # Stage 3: row (chunk rows cascade)
    await session.delete(book)
    logger.info("User %s deleted book %s ('%s')", user_id, book_id, book.title)

    return DeleteResponse(success=True)
