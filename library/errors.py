# =============================================================================
# Pipeline Error Taxonomy
# =============================================================================
#
# Each remote collaborator (embedding API, vector store, chat completion)
# wraps its transport and HTTP errors in one of these types at the client
# boundary. Route handlers decide what the end user sees:
#   - upload:  any failure aborts the upload (single user-facing error)
#   - delete:  failures are logged and swallowed stage by stage
#   - chat:    failures become a generic "Internal server error"
# =============================================================================

from __future__ import annotations


class LibraryError(Exception):
    """
    Base class for failures talking to a remote service.

    Attributes:
        status_code: Upstream HTTP status, when the service answered.
        body: Upstream response body (truncated), when available.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body[:2000] if body else body

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.message} (status={self.status_code}): {self.body or ''}"


class EmbeddingFailure(LibraryError):
    """The feature-extraction call failed or returned a non-2xx response."""


class StoreInitFailure(LibraryError):
    """The vector collection/index could not be created or reached."""


class StoreWriteFailure(LibraryError):
    """An upsert was rejected. Partial writes may have happened."""


class StoreQueryFailure(LibraryError):
    """A similarity query failed."""


class StoreDeleteFailure(LibraryError):
    """Listing or deleting a book's vector records failed."""


class CompletionFailure(LibraryError):
    """The chat completion failed or came back without an answer."""
