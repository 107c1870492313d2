# =============================================================================
# Embedding Service — Hugging Face Feature Extraction
# =============================================================================
#
# Turns text into a fixed-length vector by calling the hosted
# feature-extraction pipeline for a sentence-embedding model
# (BAAI/bge-small-en-v1.5 → 384 dimensions).
#
# RESPONSE NORMALISATION:
#   - bare number          → [number]
#   - list                 → non-numeric entries replaced with 0.0
#   - [[...]] (one row)    → the single row, then as above
#   - anything else        → [0.0]
#
# DESIGN DECISION: One request per text, issued concurrently.
# embed_many() fires all requests with asyncio.gather and returns the
# vectors index-aligned with the input, whatever order they complete in.
# The first failure aborts the whole batch.
#
# No retries and no caching here. A failed call raises EmbeddingFailure.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any, Protocol

import httpx

from library.config import Settings, settings
from library.errors import EmbeddingFailure

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Anything that can embed a single string and a batch of strings."""

    async def embed(self, text: str) -> list[float]:
        ...

    async def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        ...


class HuggingFaceEmbedder:
    """
    Async client for the Hugging Face feature-extraction endpoint.

    The underlying httpx.AsyncClient is owned by this object unless one is
    passed in; call aclose() at shutdown either way.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        resolved_key = api_key if api_key is not None else settings.huggingface_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for embeddings. "
                "Set HUGGINGFACE_API_KEY in .env"
            )

        self._model = model or settings.embedding_model
        resolved_base = (base_url or settings.embedding_base_url).rstrip("/")
        self._url = f"{resolved_base}/{self._model}/pipeline/feature-extraction"
        self._headers = {
            "Authorization": f"Bearer {resolved_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(
            timeout=timeout or settings.http_timeout_seconds,
        )

        logger.info("Initialized embedding client (model=%s)", self._model)

    @classmethod
    def from_settings(cls, config: Settings) -> HuggingFaceEmbedder:
        return cls(
            api_key=config.huggingface_api_key,
            model=config.embedding_model,
            base_url=config.embedding_base_url,
            timeout=config.http_timeout_seconds,
        )

    @property
    def model(self) -> str:
        return self._model

    async def embed(self, text: str) -> list[float]:
        """
        Embed a single text.

        Raises:
            EmbeddingFailure: Transport error or non-2xx response.
        """
        try:
            response = await self._client.post(
                self._url,
                headers=self._headers,
                json={"inputs": text},
            )
        except httpx.HTTPError as exc:
            raise EmbeddingFailure(
                f"Embedding request failed: {exc}"
            ) from exc

        if response.is_error:
            raise EmbeddingFailure(
                "Embedding request was rejected",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise EmbeddingFailure(
                "Embedding response was not valid JSON",
                status_code=response.status_code,
                body=response.text,
            ) from exc

        return _to_vector(payload)

    async def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Embed several texts concurrently.

        Returns:
            Vectors in the same order as ``texts``.
        """
        if not texts:
            return []

        logger.info(
            "Embedding %d texts (model=%s)", len(texts), self._model,
        )
        vectors = await asyncio.gather(*(self.embed(t) for t in texts))
        return list(vectors)

    async def aclose(self) -> None:
        await self._client.aclose()


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_vector(payload: Any) -> list[float]:
    """Normalise a feature-extraction response into a flat float vector."""
    if _is_number(payload):
        return [float(payload)]

    if isinstance(payload, list):
        if len(payload) == 1 and isinstance(payload[0], list):
            payload = payload[0]
        return [float(v) if _is_number(v) else 0.0 for v in payload]

    logger.warning(
        "Unexpected embedding payload type %s, using [0.0]",
        type(payload).__name__,
    )
    return [0.0]
