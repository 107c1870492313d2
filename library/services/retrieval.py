# =============================================================================
# Retrieval Orchestrator — Query → Context String
# =============================================================================
#
# FLOW:
#   1. Embed the user's question
#   2. Ask the vector store for the top-k nearest chunks
#      (single-book scope also passes a bookId filter to the store)
#   3. Drop matches missing bookId/title/author (orphaned entries)
#   4. Drop matches outside the requested scope
#   5. Join surviving texts with blank lines
#
# An empty string means "no grounding available". It is never an error.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from library.services.embedder import Embedder
from library.services.vectorstore import VectorMatch, VectorStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Scopes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LibraryScope:
    """Search the whole library, restricted to books that still exist."""

    valid_book_ids: frozenset[str]

    @classmethod
    def of(cls, book_ids: Iterable[str]) -> LibraryScope:
        return cls(valid_book_ids=frozenset(book_ids))

    def contains(self, book_id: str) -> bool:
        return book_id in self.valid_book_ids


@dataclass(frozen=True)
class BookScope:
    """Search a single book."""

    book_id: str

    def contains(self, book_id: str) -> bool:
        return book_id == self.book_id


Scope = LibraryScope | BookScope


# ---------------------------------------------------------------------------
# Retriever
# ---------------------------------------------------------------------------


class Retriever:
    """Embeds a question, searches the vector store, and builds LLM context."""

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        top_k: int = 5,
    ) -> None:
        self._embedder = embedder
        self._store = store
        self._top_k = top_k

    async def search(self, query: str, scope: Scope) -> list[VectorMatch]:
        """
        Return in-scope matches with complete metadata, best first.

        Raises:
            EmbeddingFailure: The question could not be embedded.
            StoreQueryFailure: The vector store query failed.
        """
        vector = await self._embedder.embed(query)

        where = {"bookId": scope.book_id} if isinstance(scope, BookScope) else None
        matches = await self._store.query(vector, top_k=self._top_k, where=where)

        valid = [m for m in matches if m.has_required_metadata()]
        in_scope = [m for m in valid if scope.contains(m.book_id)]

        logger.info(
            "Retrieved %d matches, %d with metadata, %d in scope (%s)",
            len(matches), len(valid), len(in_scope), type(scope).__name__,
        )
        return in_scope

    async def retrieve(self, query: str, scope: Scope) -> str:
        """Build the context string for ``query``; empty if nothing matched."""
        matches = await self.search(query, scope)
        return format_context(matches, with_titles=isinstance(scope, LibraryScope))


def format_context(matches: list[VectorMatch], with_titles: bool = False) -> str:
    """
    Join match texts with blank lines.

    Example (with_titles=True):
        From "Dune": Paul arrives on Arrakis.

        From "Emma": Emma meddles in matchmaking.
    """
    if with_titles:
        sections = [f'From "{m.metadata["title"]}": {m.text}' for m in matches]
    else:
        sections = [m.text for m in matches]
    return "\n\n".join(sections)
