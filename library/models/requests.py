# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of JSON coming INTO the API. Book uploads
# are multipart form data and are validated in the route handler instead.
# =============================================================================

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """
    Request body for POST /chat.

    Exactly one mode should be selected:
    - is_library_query=true → answer from every book in the library
    - book_id="<id>"        → answer from a single book

    Example:
        {
            "message": "Which of my books deal with grief?",
            "is_library_query": true
        }
    """

    message: str = Field(
        ...,
        min_length=1,
        max_length=4000,
        description="The user's question",
        examples=["What is the main theme of Dune?"],
    )

    # If set (and is_library_query is false), retrieval is limited to this book
    book_id: str | None = Field(
        default=None,
        description="Restrict the conversation to one book.",
    )

    # Library mode wins when both are set
    is_library_query: bool = Field(
        default=False,
        description="Search across every book in the library.",
    )
