# =============================================================================
# Vector Store Abstraction — Pluggable Backend Protocol
# =============================================================================
#
# A common async interface for storing and searching book-chunk embeddings,
# with two implementations:
#
#   VectorStore (Protocol)
#   ├── ChromaVectorStore   — self-hosted ChromaDB server
#   │   └── sync client calls wrapped in asyncio.to_thread()
#   └── PineconeVectorStore — managed Pinecone index, REST data plane (httpx)
#
# RECORD IDENTITY:
# Every record id is "{book_id}-{chunk_index}". Re-uploading the same chunk
# overwrites the same record, and a book's records can be found from its id.
#
# DESIGN DECISION: Fetch-then-delete-by-id on both backends.
# Neither backend is asked to match a wildcard id pattern. Chroma looks up
# ids with a metadata filter; Pinecone lists ids by prefix and keeps only
# "{book_id}-<integer>" matches before deleting them explicitly.
#
# DESIGN DECISION: Explicit lifecycle, no module-level singleton.
# The application builds one store at startup, awaits initialize(), keeps it
# on app.state, and closes it at shutdown. initialize() is idempotent.
# =============================================================================

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlparse

import chromadb
import httpx

from library.config import Settings, settings
from library.errors import (
    LibraryError,
    StoreDeleteFailure,
    StoreInitFailure,
    StoreQueryFailure,
    StoreWriteFailure,
)

logger = logging.getLogger(__name__)

# Metadata keys every valid record carries
REQUIRED_METADATA_KEYS = ("bookId", "title", "author")

# Pinecone recommends at most 100 vectors per upsert request
_PINECONE_UPSERT_BATCH = 100
# Pinecone accepts at most 1000 ids per delete request
_PINECONE_DELETE_BATCH = 1000


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


def make_vector_id(book_id: str, chunk_index: int) -> str:
    """Deterministic record id for a book chunk."""
    return f"{book_id}-{chunk_index}"


@dataclass
class VectorRecord:
    """One embedded chunk, ready to be upserted."""

    id: str
    values: list[float]
    metadata: dict[str, Any]

    @classmethod
    def for_chunk(
        cls,
        book_id: str,
        chunk_index: int,
        text: str,
        embedding: list[float],
        title: str,
        author: str,
    ) -> VectorRecord:
        return cls(
            id=make_vector_id(book_id, chunk_index),
            values=embedding,
            metadata={
                "bookId": book_id,
                "title": title,
                "author": author,
                "chunkIndex": chunk_index,
                "text": text,
            },
        )

    @property
    def text(self) -> str:
        return self.metadata.get("text", "")


@dataclass
class VectorMatch:
    """
    A single similarity-search hit.

    score is cosine similarity (higher = more relevant).
    """

    id: str
    text: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def book_id(self) -> str | None:
        return self.metadata.get("bookId")

    def has_required_metadata(self) -> bool:
        """False for orphaned/corrupted entries missing book identity."""
        return all(self.metadata.get(key) for key in REQUIRED_METADATA_KEYS)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class VectorStore(Protocol):
    """
    Protocol defining the vector store interface.

    Both implementations raise the Store*Failure family from
    library.errors and never leak backend-specific exceptions.
    """

    name: str

    async def initialize(self) -> None:
        """Ensure the collection/index is reachable. Safe to call repeatedly."""
        ...

    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        """Write or overwrite records by id."""
        ...

    async def query(
        self,
        vector: list[float],
        top_k: int = 5,
        where: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """
        Find the nearest records to ``vector``.

        Args:
            vector: Query embedding.
            top_k: Maximum number of matches.
            where: Optional metadata equality filter, e.g. {"bookId": "b1"}.

        Returns:
            Matches sorted by similarity, highest first.
        """
        ...

    async def delete_by_book(self, book_id: str) -> int:
        """Remove every record of a book. Returns the number of ids deleted."""
        ...

    async def aclose(self) -> None:
        ...


# ---------------------------------------------------------------------------
# Implementation 1: ChromaDB (self-hosted)
# ---------------------------------------------------------------------------


class ChromaVectorStore:
    """
    ChromaDB-backed vector store.

    A single collection holds every book. Per-book queries and deletes use
    Chroma's metadata ``where`` clause on ``bookId``.

    Pass ``client`` to use an in-process client (tests) instead of the
    configured server.
    """

    name = "chroma"

    def __init__(
        self,
        client: Any | None = None,
        collection_name: str | None = None,
        url: str | None = None,
        username: str | None = None,
        password: str | None = None,
    ) -> None:
        self._client = client if client is not None else _make_chroma_http_client(
            url or settings.chroma_url,
            username if username is not None else settings.chroma_auth_username,
            password if password is not None else settings.chroma_auth_password,
        )
        self._collection_name = collection_name or settings.chroma_collection
        self._collection = None

    @classmethod
    def from_settings(cls, config: Settings) -> ChromaVectorStore:
        return cls(
            collection_name=config.chroma_collection,
            url=config.chroma_url,
            username=config.chroma_auth_username,
            password=config.chroma_auth_password,
        )

    async def initialize(self) -> None:
        if self._collection is not None:
            return

        def _get_or_create():
            return self._client.get_or_create_collection(
                name=self._collection_name,
                metadata={
                    "hnsw:space": "cosine",
                    "description": "Book summaries for Library",
                },
            )

        try:
            self._collection = await asyncio.to_thread(_get_or_create)
        except Exception as exc:
            raise StoreInitFailure(
                f"Failed to initialize Chroma collection "
                f"'{self._collection_name}': {exc}"
            ) from exc

        logger.info("Chroma collection ready: %s", self._collection_name)

    async def _get_collection(self):
        await self.initialize()
        return self._collection

    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        if not records:
            return

        collection = await self._get_collection()

        def _upsert() -> None:
            collection.upsert(
                ids=[r.id for r in records],
                embeddings=[r.values for r in records],
                documents=[r.text for r in records],
                metadatas=[_sanitise_chroma_metadata(r.metadata) for r in records],
            )

        try:
            await asyncio.to_thread(_upsert)
        except Exception as exc:
            raise StoreWriteFailure(
                f"Failed to upsert {len(records)} records to Chroma: {exc}"
            ) from exc

        logger.info("Upserted %d records to Chroma", len(records))

    async def query(
        self,
        vector: list[float],
        top_k: int = 5,
        where: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        collection = await self._get_collection()

        def _query() -> dict:
            return collection.query(
                query_embeddings=[vector],
                n_results=top_k,
                where=where or None,
                include=["documents", "metadatas", "distances"],
            )

        try:
            results = await asyncio.to_thread(_query)
        except Exception as exc:
            raise StoreQueryFailure(f"Chroma query failed: {exc}") from exc

        matches: list[VectorMatch] = []
        if not results or not results.get("ids") or not results["ids"][0]:
            return matches

        distances = results.get("distances")
        metadatas = results.get("metadatas")
        documents = results.get("documents")

        for i, record_id in enumerate(results["ids"][0]):
            metadata = dict((metadatas[0][i] if metadatas else None) or {})
            document = (documents[0][i] if documents else None) or ""
            distance = distances[0][i] if distances else 1.0
            matches.append(VectorMatch(
                id=record_id,
                text=metadata.get("text") or document,
                # Chroma cosine distance is in [0, 2]; convert to similarity
                score=round(1.0 - distance, 4),
                metadata=metadata,
            ))

        logger.debug(
            "Chroma query returned %d matches (top_k=%d, where=%s)",
            len(matches), top_k, where,
        )
        return matches

    async def delete_by_book(self, book_id: str) -> int:
        collection = await self._get_collection()

        def _delete() -> int:
            found = collection.get(where={"bookId": book_id}, include=[])
            ids = found.get("ids") or []
            if ids:
                collection.delete(ids=ids)
            return len(ids)

        try:
            deleted = await asyncio.to_thread(_delete)
        except Exception as exc:
            raise StoreDeleteFailure(
                f"Failed to delete Chroma records for book {book_id}: {exc}"
            ) from exc

        logger.info("Deleted %d Chroma records for book %s", deleted, book_id)
        return deleted

    async def aclose(self) -> None:
        self._collection = None


# ---------------------------------------------------------------------------
# Implementation 2: Pinecone (managed service, REST)
# ---------------------------------------------------------------------------


class PineconeVectorStore:
    """
    Pinecone-backed vector store talking to the index's data-plane host.

    Wire shapes:
        upsert  POST /vectors/upsert  {vectors: [{id, values, metadata}], namespace}
        query   POST /query           {vector, topK, includeMetadata, namespace[, filter]}
        list    GET  /vectors/list    ?prefix=&namespace=&paginationToken=
        delete  POST /vectors/delete  {ids: [...], namespace}

    /vectors/list is only available on serverless indexes.
    """

    name = "pinecone"

    def __init__(
        self,
        api_key: str | None = None,
        host: str | None = None,
        namespace: str | None = None,
        dimension: int | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        resolved_key = api_key if api_key is not None else settings.pinecone_api_key
        if not resolved_key:
            raise ValueError(
                "No Pinecone API key configured. Set PINECONE_API_KEY in .env"
            )
        resolved_host = host if host is not None else settings.pinecone_host
        if not resolved_host:
            raise ValueError(
                "No Pinecone index host configured. Set PINECONE_HOST in .env"
            )
        if not resolved_host.startswith(("http://", "https://")):
            resolved_host = f"https://{resolved_host}"

        self._base_url = resolved_host.rstrip("/")
        self._namespace = namespace if namespace is not None else settings.pinecone_namespace
        self._dimension = dimension if dimension is not None else settings.embedding_dimensions
        self._headers = {
            "Api-Key": resolved_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(
            timeout=timeout or settings.http_timeout_seconds,
        )
        self._initialized = False

    @classmethod
    def from_settings(cls, config: Settings) -> PineconeVectorStore:
        return cls(
            api_key=config.pinecone_api_key,
            host=config.pinecone_host,
            namespace=config.pinecone_namespace,
            dimension=config.embedding_dimensions,
            timeout=config.http_timeout_seconds,
        )

    async def _request(
        self,
        method: str,
        path: str,
        failure: type[LibraryError],
        **kwargs: Any,
    ) -> dict:
        """Send a request and return the decoded JSON body, or raise ``failure``."""
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(
                method, url, headers=self._headers, **kwargs,
            )
        except httpx.HTTPError as exc:
            raise failure(f"Pinecone {method} {path} failed: {exc}") from exc

        if response.is_error:
            logger.error(
                "Pinecone %s %s returned %d: %s",
                method, path, response.status_code, response.text[:500],
            )
            raise failure(
                f"Pinecone {method} {path} was rejected",
                status_code=response.status_code,
                body=response.text,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise failure(
                f"Pinecone {method} {path} returned invalid JSON",
                status_code=response.status_code,
                body=response.text,
            ) from exc

    async def initialize(self) -> None:
        if self._initialized:
            return

        stats = await self._request(
            "GET", "/describe_index_stats", StoreInitFailure,
        )
        index_dimension = stats.get("dimension")
        if index_dimension and index_dimension != self._dimension:
            raise StoreInitFailure(
                f"Pinecone index dimension {index_dimension} does not match "
                f"embedding dimension {self._dimension}"
            )

        self._initialized = True
        logger.info(
            "Connected to Pinecone index (vectors=%s, dimension=%s)",
            stats.get("totalVectorCount"), index_dimension,
        )

    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        for start in range(0, len(records), _PINECONE_UPSERT_BATCH):
            batch = records[start:start + _PINECONE_UPSERT_BATCH]
            await self._request(
                "POST",
                "/vectors/upsert",
                StoreWriteFailure,
                json={
                    "vectors": [
                        {"id": r.id, "values": r.values, "metadata": r.metadata}
                        for r in batch
                    ],
                    "namespace": self._namespace,
                },
            )

        logger.info("Upserted %d records to Pinecone", len(records))

    async def query(
        self,
        vector: list[float],
        top_k: int = 5,
        where: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        body: dict[str, Any] = {
            "vector": vector,
            "topK": top_k,
            "includeMetadata": True,
            "namespace": self._namespace,
        }
        if where:
            body["filter"] = {key: {"$eq": value} for key, value in where.items()}

        data = await self._request("POST", "/query", StoreQueryFailure, json=body)

        matches = [
            VectorMatch(
                id=match.get("id", ""),
                text=(match.get("metadata") or {}).get("text", ""),
                score=float(match.get("score") or 0.0),
                metadata=dict(match.get("metadata") or {}),
            )
            for match in data.get("matches") or []
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    async def _list_book_ids(self, book_id: str) -> list[str]:
        prefix = f"{book_id}-"
        ids: list[str] = []
        token: str | None = None

        while True:
            params: dict[str, Any] = {"prefix": prefix, "namespace": self._namespace}
            if token:
                params["paginationToken"] = token
            page = await self._request(
                "GET", "/vectors/list", StoreDeleteFailure, params=params,
            )
            for entry in page.get("vectors") or []:
                record_id = entry.get("id", "")
                # "abc-1" must not sweep up "abc-def-1"
                if record_id[len(prefix):].isdigit():
                    ids.append(record_id)
            token = (page.get("pagination") or {}).get("next")
            if not token:
                return ids

    async def delete_by_book(self, book_id: str) -> int:
        ids = await self._list_book_ids(book_id)

        for start in range(0, len(ids), _PINECONE_DELETE_BATCH):
            await self._request(
                "POST",
                "/vectors/delete",
                StoreDeleteFailure,
                json={
                    "ids": ids[start:start + _PINECONE_DELETE_BATCH],
                    "namespace": self._namespace,
                },
            )

        logger.info("Deleted %d Pinecone records for book %s", len(ids), book_id)
        return len(ids)

    async def aclose(self) -> None:
        await self._client.aclose()


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def get_vector_store(config: Settings | None = None) -> VectorStore:
    """
    Build the configured vector store backend (not yet initialized).

    Reads ``vectorstore_type``:
    - "chroma"   → ChromaVectorStore (default)
    - "pinecone" → PineconeVectorStore
    """
    config = config or settings
    store_type = config.vectorstore_type

    if store_type == "pinecone":
        logger.info("Using Pinecone vector store")
        return PineconeVectorStore.from_settings(config)
    if store_type == "chroma":
        logger.info("Using ChromaDB vector store")
        return ChromaVectorStore.from_settings(config)

    raise ValueError(
        f"Unknown vectorstore_type '{store_type}'. "
        "Supported types: ['chroma', 'pinecone']"
    )


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _make_chroma_http_client(
    url: str,
    username: str | None,
    password: str | None,
):
    """Create a Chroma HttpClient, adding Basic auth when credentials are set."""
    parsed = urlparse(url if "://" in url else f"http://{url}")
    headers: dict[str, str] = {}
    if username and password:
        token = base64.b64encode(f"{username}:{password}".encode()).decode()
        headers["Authorization"] = f"Basic {token}"

    return chromadb.HttpClient(
        host=parsed.hostname or "localhost",
        port=parsed.port or (443 if parsed.scheme == "https" else 8000),
        ssl=parsed.scheme == "https",
        headers=headers or None,
    )


def _sanitise_chroma_metadata(metadata: dict) -> dict:
    """
    Sanitise metadata for ChromaDB compatibility.

    ChromaDB requires all metadata values to be str, int, float, or bool:
    - None → empty string
    - list → comma-separated string
    - anything else → str()
    """
    sanitised = {}
    for key, value in metadata.items():
        if value is None:
            sanitised[key] = ""
        elif isinstance(value, list):
            sanitised[key] = ",".join(str(v) for v in value)
        elif isinstance(value, (str, int, float, bool)):
            sanitised[key] = value
        else:
            sanitised[key] = str(value)
    return sanitised
