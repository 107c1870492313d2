# =============================================================================
# Health API
# =============================================================================

from fastapi import APIRouter, Depends

from library.api.deps import get_vector_store
from library.config import settings
from library.models.responses import HealthResponse
from library.services.vectorstore import VectorStore

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse, summary="Liveness check")
async def health(store: VectorStore = Depends(get_vector_store)) -> HealthResponse:
    return HealthResponse(
        version=settings.app_version,
        service=settings.app_name,
        vectorstore=store.name,
    )
