# =============================================================================
# API Dependencies — Authentication and Service Injection
# =============================================================================
#
# Long-lived clients (vector store, embedder, LLM, rate limiter, storage)
# are built once in the application lifespan and kept on app.state. Route
# handlers receive them through the small getters below, which tests swap
# out with app.dependency_overrides.
#
# Authentication:
# - auth_enabled=False → every caller is the "anonymous" user
# - auth_enabled=True  → "Authorization: Bearer <key>" is required; the key
#   is SHA-256 hashed and looked up in api_keys. The key id is the user id.
# =============================================================================

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from library.config import settings
from library.db.engine import get_async_session
from library.db.models import ApiKey
from library.services.auth import hash_api_key
from library.services.embedder import Embedder
from library.services.llm import LLMProvider
from library.services.rate_limiter import RateLimiter
from library.services.retrieval import Retriever
from library.services.storage import LocalFileStorage
from library.services.vectorstore import VectorStore

logger = logging.getLogger(__name__)

ANONYMOUS_USER = "anonymous"

# Security scheme for OpenAPI docs (shows "Authorize" button in Swagger UI)
_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    session: AsyncSession = Depends(get_async_session),
) -> str:
    """
    Resolve the caller's user id.

    Raises:
        HTTPException 401: Missing or unknown API key
        HTTPException 403: Key is inactive or expired
    """
    if not settings.auth_enabled:
        return ANONYMOUS_USER

    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    stmt = select(ApiKey).where(ApiKey.key_hash == hash_api_key(credentials.credentials))
    result = await session.execute(stmt)
    api_key = result.scalar_one_or_none()

    if api_key is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid API key.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not api_key.is_active:
        raise HTTPException(status_code=403, detail="API key has been deactivated.")

    expires_at = api_key.expires_at
    if expires_at is not None:
        # SQLite hands back naive datetimes
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        if expires_at < datetime.now(UTC):
            raise HTTPException(status_code=403, detail="API key has expired.")

    api_key.last_used_at = datetime.now(UTC)
    return str(api_key.id)


def get_vector_store(request: Request) -> VectorStore:
    return request.app.state.vector_store


def get_embedder(request: Request) -> Embedder:
    return request.app.state.embedder


def get_llm(request: Request) -> LLMProvider:
    return request.app.state.llm


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_storage(request: Request) -> LocalFileStorage:
    return request.app.state.storage


def get_retriever(
    embedder: Embedder = Depends(get_embedder),
    store: VectorStore = Depends(get_vector_store),
) -> Retriever:
    return Retriever(embedder, store, top_k=settings.retrieval_top_k)
