# =============================================================================
# API Tests — Books and Chat Endpoints
# =============================================================================
#
# Runs the real routers through FastAPI's TestClient with:
#   - SQLite (aiosqlite) in a temp file instead of Postgres
#   - ChromaDB in-process (EphemeralClient) as the vector store
#   - A deterministic fake embedder and a recording fake LLM
#   - Local file storage under tmp_path
#
# The database uses NullPool, so every request opens a fresh connection on
# the event loop that serves it.
# =============================================================================

import asyncio
import itertools
import logging
from dataclasses import dataclass, field

import chromadb
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from library.api import books, chat, health
from library.db.engine import create_tables, get_async_session
from library.db.models import Book, BookChunk
from library.errors import CompletionFailure, EmbeddingFailure, StoreDeleteFailure, StoreWriteFailure
from library.services.llm import LLMResponse
from library.services.prompts import EMPTY_LIBRARY_ANSWER
from library.services.rate_limiter import InMemoryRateLimiter
from library.services.storage import LocalFileStorage
from library.services.vectorstore import ChromaVectorStore

_collections = itertools.count()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeEmbedder:
    """Deterministic 3-d embeddings; optionally fails every call."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingFailure("embedding service down", status_code=503)
        return [1.0, float(len(text) % 7) + 1.0, 0.5]

    async def embed_many(self, texts):
        return [await self.embed(t) for t in texts]

    async def aclose(self) -> None:
        pass


@dataclass
class FakeLLM:
    """Records every completion request and returns a canned answer."""

    answer: str = "It is about [[Dune]]."
    error: Exception | None = None
    calls: list[dict] = field(default_factory=list)

    async def complete(self, messages, system=None, temperature=None, max_tokens=None):
        self.calls.append({"messages": messages, "system": system})
        if self.error is not None:
            raise self.error
        return LLMResponse(content=self.answer, model="fake", input_tokens=1, output_tokens=1)

    async def aclose(self) -> None:
        pass


class FailingUpsertStore(ChromaVectorStore):
    """Writes the records, then reports a failure (a partial write)."""

    async def upsert(self, records) -> None:
        await super().upsert(records)
        raise StoreWriteFailure("index rejected the batch", status_code=500)


class FailingDeleteStore(ChromaVectorStore):
    async def delete_by_book(self, book_id: str) -> int:
        raise StoreDeleteFailure("index unavailable", status_code=503)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    app: FastAPI
    store: ChromaVectorStore
    embedder: FakeEmbedder
    llm: FakeLLM
    storage_root: object
    session_factory: async_sessionmaker

    def db(self, coro_fn):
        """Run ``coro_fn(session)`` against the test database."""
        async def _go():
            async with self.session_factory() as session:
                return await coro_fn(session)
        return asyncio.run(_go())


def _make_store(store_cls=ChromaVectorStore) -> ChromaVectorStore:
    return store_cls(
        client=chromadb.EphemeralClient(),
        collection_name=f"api_books_{next(_collections)}",
    )


@pytest.fixture
def harness(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'library.db'}",
        poolclass=NullPool,
    )
    asyncio.run(create_tables(engine))
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app = FastAPI()
    app.include_router(health.router)
    app.include_router(books.router)
    app.include_router(chat.router)
    app.dependency_overrides[get_async_session] = override_session

    store = _make_store()
    embedder = FakeEmbedder()
    llm = FakeLLM()
    app.state.vector_store = store
    app.state.embedder = embedder
    app.state.llm = llm
    app.state.rate_limiter = InMemoryRateLimiter(limit=5, window_seconds=60)
    app.state.storage = LocalFileStorage(tmp_path / "uploads")

    with TestClient(app) as client:
        yield ApiHarness(
            client=client,
            app=app,
            store=store,
            embedder=embedder,
            llm=llm,
            storage_root=tmp_path / "uploads",
            session_factory=session_factory,
        )

    asyncio.run(engine.dispose())


DUNE_TEXT = (
    "Paul Atreides moves to the desert planet Arrakis. "
    "The planet is the only source of the spice melange. "
    "House Harkonnen betrays the Atreides."
)


def _upload(client, title="Dune", author="Frank Herbert", content=DUNE_TEXT, filename="dune.txt"):
    if isinstance(content, str):
        content = content.encode("utf-8")
    return client.post(
        "/books",
        data={"title": title, "author": author},
        files={"file": (filename, content, "text/plain")},
    )


def _stored_files(root) -> list:
    return [p for p in root.rglob("*") if p.is_file()] if root.exists() else []


def _count(model):
    async def _go(session):
        return await session.scalar(select(func.count()).select_from(model))
    return _go


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_reports_backend(self, harness):
        response = harness.client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["vectorstore"] == "chroma"


# ---------------------------------------------------------------------------
# POST /books
# ---------------------------------------------------------------------------


class TestUploadBook:
    """Tests for POST /books."""

    def test_upload_indexes_book(self, harness):
        response = _upload(harness.client)

        assert response.status_code == 201
        book = response.json()
        assert book["title"] == "Dune"
        assert book["author"] == "Frank Herbert"
        assert book["file_path"].startswith("summaries/dune-")
        assert book["file_path"].endswith(".txt")

        stored = harness.storage_root / book["file_path"]
        assert stored.read_text() == DUNE_TEXT

        matches = asyncio.run(
            harness.store.query([1.0, 1.0, 0.5], top_k=10, where={"bookId": book["id"]})
        )
        assert sorted(m.id for m in matches) == [f"{book['id']}-0"]
        assert matches[0].metadata["title"] == "Dune"

        assert harness.db(_count(BookChunk)) == 1

    def test_upload_logs_indexing_summary(self, harness, caplog):
        caplog.set_level(logging.INFO, logger="library.api.books")

        book = _upload(harness.client).json()

        assert f"[{book['id']}] Indexed 1 chunks (3 dimensions) in chroma" in caplog.text

    def test_long_text_produces_several_chunks(self, harness):
        text = " ".join(f"Sentence {i} about the spice trade is here." for i in range(80))
        response = _upload(harness.client, content=text)
        assert response.status_code == 201

        chunk_count = harness.db(_count(BookChunk))
        assert chunk_count > 1

        async def vector_ids(session):
            rows = await session.scalars(select(BookChunk.vector_id).order_by(BookChunk.chunk_index))
            return list(rows)

        book_id = response.json()["id"]
        assert harness.db(vector_ids) == [f"{book_id}-{i}" for i in range(chunk_count)]

    @pytest.mark.parametrize(
        ("filename", "content"),
        [
            ("dune.pdf", DUNE_TEXT),
            ("dune.txt", b""),
            ("dune.txt", b"\xff\xfe\x00bad bytes."),
            ("dune.txt", "no sentence terminators here"),
        ],
        ids=["wrong-extension", "empty", "not-utf8", "no-sentences"],
    )
    def test_rejects_invalid_upload(self, harness, filename, content):
        response = _upload(harness.client, content=content, filename=filename)

        assert response.status_code == 400
        assert harness.db(_count(Book)) == 0
        assert _stored_files(harness.storage_root) == []
        assert harness.embedder.calls == []

    def test_embedding_failure_rolls_back(self, harness):
        harness.embedder.fail = True

        response = _upload(harness.client)

        assert response.status_code == 502
        assert response.json()["detail"] == "Failed to process book upload"
        assert harness.db(_count(Book)) == 0
        assert harness.db(_count(BookChunk)) == 0
        assert _stored_files(harness.storage_root) == []

    def test_partial_vector_write_is_cleaned_up(self, harness):
        store = _make_store(FailingUpsertStore)
        harness.app.state.vector_store = store

        response = _upload(harness.client)

        assert response.status_code == 502
        assert harness.db(_count(Book)) == 0
        assert asyncio.run(store.query([1.0, 1.0, 0.5], top_k=10)) == []
        assert _stored_files(harness.storage_root) == []


# ---------------------------------------------------------------------------
# GET /books
# ---------------------------------------------------------------------------


class TestListBooks:
    def test_empty_library(self, harness):
        response = harness.client.get("/books")
        assert response.status_code == 200
        assert response.json() == {"books": []}

    def test_newest_first(self, harness):
        _upload(harness.client, title="Dune")
        _upload(harness.client, title="Emma", author="Jane Austen")

        titles = [b["title"] for b in harness.client.get("/books").json()["books"]]
        assert titles == ["Emma", "Dune"]


# ---------------------------------------------------------------------------
# DELETE /books/{id}
# ---------------------------------------------------------------------------


class TestDeleteBook:
    """Tests for DELETE /books/{id}."""

    def test_removes_vectors_file_and_row(self, harness):
        book = _upload(harness.client).json()
        other = _upload(harness.client, title="Emma", author="Jane Austen").json()

        response = harness.client.delete(f"/books/{book['id']}")

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert asyncio.run(
            harness.store.query([1.0, 1.0, 0.5], top_k=10, where={"bookId": book["id"]})
        ) == []
        assert not (harness.storage_root / book["file_path"]).exists()
        assert (harness.storage_root / other["file_path"]).exists()
        remaining = [b["id"] for b in harness.client.get("/books").json()["books"]]
        assert remaining == [other["id"]]

        async def chunk_books(session):
            return set(await session.scalars(select(BookChunk.book_id)))

        assert harness.db(chunk_books) == {other["id"]}

    def test_unknown_book_returns_404(self, harness):
        assert harness.client.delete("/books/does-not-exist").status_code == 404

    def test_vector_failure_still_deletes_row(self, harness):
        book = _upload(harness.client).json()
        harness.app.state.vector_store = _make_store(FailingDeleteStore)

        response = harness.client.delete(f"/books/{book['id']}")

        assert response.status_code == 200
        assert harness.db(_count(Book)) == 0

    def test_missing_file_still_deletes_row(self, harness):
        book = _upload(harness.client).json()
        (harness.storage_root / book["file_path"]).unlink()

        response = harness.client.delete(f"/books/{book['id']}")

        assert response.status_code == 200
        assert harness.db(_count(Book)) == 0


# ---------------------------------------------------------------------------
# POST /chat
# ---------------------------------------------------------------------------


class TestChat:
    """Tests for POST /chat."""

    def test_empty_library_answers_without_remote_calls(self, harness):
        response = harness.client.post(
            "/chat", json={"message": "What should I read?", "is_library_query": True},
        )

        assert response.status_code == 200
        assert response.json() == {"response": EMPTY_LIBRARY_ANSWER}
        assert harness.llm.calls == []
        assert harness.embedder.calls == []

    def test_library_query_uses_library_prompt_and_titled_context(self, harness):
        _upload(harness.client)
        harness.embedder.calls.clear()

        response = harness.client.post(
            "/chat", json={"message": "Where is the spice?", "is_library_query": True},
        )

        assert response.status_code == 200
        assert response.json() == {"response": "It is about [[Dune]]."}
        call = harness.llm.calls[0]
        assert "- Dune by Frank Herbert" in call["system"]
        user_message = call["messages"][0]["content"]
        assert user_message.startswith('Context:\nFrom "Dune": Paul Atreides')
        assert user_message.endswith("\n\nQuestion: Where is the spice?")
        assert harness.embedder.calls == ["Where is the spice?"]

    def test_library_query_ignores_vectors_of_deleted_books(self, harness):
        book = _upload(harness.client).json()
        # Row removed without touching the vector store
        async def drop_row(session):
            await session.delete(await session.get(Book, book["id"]))
            await session.commit()
        harness.db(drop_row)
        _upload(harness.client, title="Emma", author="Jane Austen",
                content="Emma Woodhouse meddles in matchmaking.")

        response = harness.client.post(
            "/chat", json={"message": "Tell me about Arrakis", "is_library_query": True},
        )

        assert response.status_code == 200
        context = harness.llm.calls[0]["messages"][0]["content"]
        assert "Paul Atreides" not in context
        assert 'From "Emma"' in context

    def test_single_book_query(self, harness):
        dune = _upload(harness.client).json()
        _upload(harness.client, title="Emma", author="Jane Austen",
                content="Emma Woodhouse meddles in matchmaking.")

        response = harness.client.post(
            "/chat", json={"message": "Who betrays whom?", "book_id": dune["id"]},
        )

        assert response.status_code == 200
        call = harness.llm.calls[0]
        assert '"Dune" by Frank Herbert' in call["system"]
        context = call["messages"][0]["content"]
        assert "Paul Atreides" in context
        assert "Emma Woodhouse" not in context
        assert 'From "' not in context

    def test_unknown_book_returns_404(self, harness):
        response = harness.client.post(
            "/chat", json={"message": "Hi", "book_id": "missing"},
        )
        assert response.status_code == 404

    def test_no_mode_returns_400(self, harness):
        response = harness.client.post("/chat", json={"message": "Hi"})
        assert response.status_code == 400

    def test_empty_message_is_rejected(self, harness):
        response = harness.client.post(
            "/chat", json={"message": "", "is_library_query": True},
        )
        assert response.status_code == 422

    def test_llm_failure_returns_generic_500(self, harness):
        _upload(harness.client)
        harness.llm.error = CompletionFailure("upstream said no", status_code=502, body="secret")

        response = harness.client.post(
            "/chat", json={"message": "Hi", "is_library_query": True},
        )

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}

    def test_rate_limit_after_five_requests(self, harness):
        for _ in range(5):
            response = harness.client.post(
                "/chat", json={"message": "Hi", "is_library_query": True},
            )
            assert response.status_code == 200

        response = harness.client.post(
            "/chat", json={"message": "Hi", "is_library_query": True},
        )

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
