# =============================================================================
# Chat API — Retrieval-Augmented Answers About the Library
# =============================================================================
#
# POST /chat answers a question in one of two modes:
#
#   Library mode (is_library_query=true)
#     1. Load every Book row (newest first)
#     2. Empty library → fixed answer, no remote calls
#     3. Retrieve across all books, dropping vectors of deleted books
#     4. System prompt lists the library; titles come back as [[Title]]
#
#   Single-book mode (book_id set)
#     1. Load the Book (404 if unknown)
#     2. Retrieve with a bookId filter
#     3. System prompt scopes the assistant to that book
#
# Each request is counted against the caller's rate limit before any work
# is done. Upstream failures are logged with full detail and surface as a
# generic 500.
# =============================================================================

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from library.api.deps import get_current_user, get_llm, get_rate_limiter, get_retriever
from library.config import settings
from library.db.engine import get_async_session
from library.db.models import Book
from library.models.requests import ChatRequest
from library.models.responses import ChatResponse
from library.services.llm import LLMProvider, complete_with_context
from library.services.prompts import (
    EMPTY_LIBRARY_ANSWER,
    book_system_prompt,
    library_system_prompt,
)
from library.services.rate_limiter import RateLimiter, check_rate_limit
from library.services.retrieval import BookScope, LibraryScope, Retriever

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat"])


@router.post(
    "/chat",
    response_model=ChatResponse,
    summary="Ask a question about your library or one book",
)
async def chat(
    request: ChatRequest,
    user_id: str = Depends(get_current_user),
    limiter: RateLimiter = Depends(get_rate_limiter),
    session: AsyncSession = Depends(get_async_session),
    retriever: Retriever = Depends(get_retriever),
    llm: LLMProvider = Depends(get_llm),
) -> ChatResponse:
    await check_rate_limit(limiter, user_id, settings.rate_limit_window_seconds)

    if request.is_library_query:
        result = await session.execute(select(Book).order_by(Book.created_at.desc()))
        books = result.scalars().all()
        if not books:
            return ChatResponse(response=EMPTY_LIBRARY_ANSWER)

        scope = LibraryScope.of(book.id for book in books)
        system_prompt = library_system_prompt(books)
    elif request.book_id:
        book = await session.get(Book, request.book_id)
        if book is None:
            raise HTTPException(
                status_code=404,
                detail=f"Book {request.book_id} not found",
            )
        scope = BookScope(book.id)
        system_prompt = book_system_prompt(book)
    else:
        raise HTTPException(
            status_code=400,
            detail="Either book_id or is_library_query must be provided.",
        )

    try:
        context = await retriever.retrieve(request.message, scope)
        if not context:
            logger.info("No grounding context found for user %s", user_id)
        answer = await complete_with_context(llm, system_prompt, request.message, context)
    except Exception:
        logger.exception("Chat request failed for user %s", user_id)
        raise HTTPException(status_code=500, detail="Internal server error") from None

    return ChatResponse(response=answer)
