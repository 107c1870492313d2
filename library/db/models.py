# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌──────────────┐       ┌──────────────────────────────────┐
# │  books       │       │  book_chunks                     │
# ├──────────────┤       ├──────────────────────────────────┤
# │ id (PK, uuid)│──1:N─▶│ id (PK)                          │
# │ title        │       │ book_id (FK → books.id, CASCADE) │
# │ author       │       │ chunk_index (int)                │
# │ file_path    │       │ text                             │
# │ created_at   │       │ vector_id ("{book_id}-{index}")  │
# └──────────────┘       └──────────────────────────────────┘
#
#                        ┌──────────────────────────────────┐
#                        │  api_keys                        │
#                        ├──────────────────────────────────┤
#                        │ id, name, key_prefix, key_hash   │
#                        │ is_active, expires_at            │
#                        │ last_used_at, created_at         │
#                        └──────────────────────────────────┘
#
# Embeddings live only in the vector store. book_chunks records what was
# indexed for each book so orphaned vectors can be traced back.
#
# Column types are portable (no JSONB/vector) so the schema also runs on
# SQLite in tests.
# =============================================================================

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class for all ORM models."""

    pass


class Book(Base):
    """
    An uploaded book summary.

    Owns its chunk rows; deleting a Book deletes its chunks. The matching
    vector records are removed separately (see api/books.py).
    """

    __tablename__ = "books"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    author: Mapped[str] = mapped_column(String(500), nullable=False)

    # Storage key of the raw upload, e.g. "summaries/dune-a1b2.txt"
    file_path: Mapped[str] = mapped_column(String(1000), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    # cascade="all, delete-orphan": chunks go with their book.
    # lazy="selectin": loads chunks eagerly, avoiding async lazy-load errors.
    chunks: Mapped[list["BookChunk"]] = relationship(
        "BookChunk",
        back_populates="book",
        cascade="all, delete-orphan",
        order_by="BookChunk.chunk_index",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Book(id={self.id}, title='{self.title}', author='{self.author}')>"


class BookChunk(Base):
    """One sentence-aligned chunk of a book, as it was sent to the vector store."""

    __tablename__ = "book_chunks"
    __table_args__ = (
        UniqueConstraint("book_id", "chunk_index", name="uq_book_chunk_index"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    book_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("books.id", ondelete="CASCADE"),
        nullable=False,
    )

    # 0-indexed position within the book
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)

    text: Mapped[str] = mapped_column(Text, nullable=False)

    # Id of the matching vector record: "{book_id}-{chunk_index}"
    vector_id: Mapped[str] = mapped_column(String(100), nullable=False)

    book: Mapped["Book"] = relationship("Book", back_populates="chunks")

    def __repr__(self) -> str:
        return f"<BookChunk(book_id={self.book_id}, index={self.chunk_index})>"


book_chunk_book_idx = Index("idx_book_chunk_book_id", BookChunk.book_id)


class ApiKey(Base):
    """
    An API key identifying a caller when auth is enabled.

    The key id is the user id for rate limiting. Only the SHA-256 hash of
    the key is stored; the raw key is shown once at creation.
    """

    __tablename__ = "api_keys"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True,
    )

    # Human-readable label (e.g., "web-frontend")
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # "lib-" plus 4 hex chars, safe to show in logs and listings
    key_prefix: Mapped[str] = mapped_column(String(20), nullable=False)

    # SHA-256 hash of the full key — never store plaintext
    key_hash: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True,
    )

    # Soft-disable without deletion
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False,
    )

    # Expiration (null = never expires)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    # Updated on each authenticated request
    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ApiKey(id={self.id}, name='{self.name}', prefix='{self.key_prefix}')>"
