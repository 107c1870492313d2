# =============================================================================
# Application Entrypoint
# =============================================================================
#
# Run with:  uvicorn library.main:app --reload
#
# LIFESPAN:
# Startup builds every long-lived client once and stores it on app.state:
#   1. Relational tables (create_all)
#   2. Vector store, initialized so a bad URL or key fails fast
#   3. Embedder, retriever collaborators, LLM provider
#   4. Rate limiter and file storage
# Shutdown closes them in reverse order. Route handlers reach them through
# the getters in library/api/deps.py.
# =============================================================================

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from library.api import books, chat, health
from library.config import settings
from library.db.engine import async_engine, create_tables
from library.services.embedder import HuggingFaceEmbedder
from library.services.llm import get_llm_provider
from library.services.rate_limiter import build_rate_limiter
from library.services.storage import LocalFileStorage
from library.services.vectorstore import get_vector_store

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    await create_tables()

    store = get_vector_store(settings)
    await store.initialize()
    logger.info("Vector store ready: %s", store.name)

    app.state.vector_store = store
    app.state.embedder = HuggingFaceEmbedder.from_settings(settings)
    app.state.llm = get_llm_provider(settings)
    app.state.rate_limiter = build_rate_limiter(settings)
    app.state.storage = LocalFileStorage(settings.upload_dir)

    logger.info("%s %s started", settings.app_name, settings.app_version)
    try:
        yield
    finally:
        await app.state.rate_limiter.aclose()
        await app.state.llm.aclose()
        await app.state.embedder.aclose()
        await store.aclose()
        await async_engine.dispose()
        logger.info("%s stopped", settings.app_name)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Upload book summaries and chat with your library",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(books.router)
    app.include_router(chat.router)
    return app


app = create_app()
