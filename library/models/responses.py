# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
#
# DESIGN DECISION: Separate response models from DB models
# Book rows carry their chunk rows; listing endpoints should not ship every
# chunk's text over the wire. Response models control exactly what's exposed.
# =============================================================================

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str
    vectorstore: str = Field(description="Active vector store backend")


class BookResponse(BaseModel):
    """A book in the library. Returned by upload and listing endpoints."""

    id: str
    title: str
    author: str
    file_path: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookListResponse(BaseModel):
    """Response for GET /books, newest first."""

    books: list[BookResponse]


class DeleteResponse(BaseModel):
    success: bool = True


class ChatResponse(BaseModel):
    """
    Response for POST /chat.

    In library mode the answer wraps book titles in [[Title]] so clients
    can link them.
    """

    response: str
