# =============================================================================
# System Prompts — Library-Wide and Single-Book Chat
# =============================================================================
#
# Library-wide answers mention books as [[Book Title]]; the presentation
# layer turns those into links. Only books in the user's library may be
# mentioned.
# =============================================================================

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

EMPTY_LIBRARY_ANSWER = (
    "You don't have any books in your library yet. "
    "Upload some books to get started!"
)


class BookLike(Protocol):
    title: str
    author: str


def library_summary(books: Iterable[BookLike]) -> str:
    return "\n".join(f"- {book.title} by {book.author}" for book in books)


def library_system_prompt(books: Iterable[BookLike]) -> str:
    """System prompt for questions about the whole library."""
    return (
        "You are a helpful library assistant. The user has the following "
        f"books in their library:\n{library_summary(books)}\n\n"
        "You can help users find books, provide summaries, and answer "
        "questions about their library.\n"
        "When mentioning a book, wrap its title in double square brackets "
        "like this: [[Book Title]].\n"
        "If a user asks about a specific book, mention it by name and provide "
        "relevant information.\n"
        "If they ask about multiple books, list the relevant books and their "
        "connections.\n"
        "Always be concise and direct in your responses.\n"
        "Only mention books that are in the user's library."
    )


def book_system_prompt(book: BookLike) -> str:
    """System prompt for questions about one book."""
    return (
        "You are a helpful assistant answering questions about the book "
        f'"{book.title}" by {book.author}.\n'
        "Use the following context to answer the user's questions. If the "
        "answer cannot be found in the context, say so.\n"
        "Always be concise and direct in your responses."
    )
