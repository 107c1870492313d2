# =============================================================================
# Library — Book Summary Q&A Service
# =============================================================================
# Upload plain-text book summaries, index them in a vector store, and ask
# questions about one book or the whole library via retrieval-augmented
# generation.
#
# Package structure:
#   library/
#   ├── api/          → FastAPI route handlers (books, chat, health)
#   ├── db/           → Database engine, session, and ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   └── services/     → Chunking, embedding, vector stores, retrieval,
#                        completion, rate limiting, file storage
# =============================================================================
