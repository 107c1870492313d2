# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Contains the core business logic, separated from API handlers:
#   - chunker.py: Sentence-aligned text chunking (character budget)
#   - embedder.py: Hugging Face feature-extraction embeddings
#   - vectorstore.py: Pluggable vector store protocol (Chroma, Pinecone)
#   - retrieval.py: Scoped retrieval and context formatting
#   - llm.py: Multi-provider LLM abstraction (OpenAI-compatible, Anthropic)
#   - prompts.py: System prompts for library and single-book chat
#   - ingest.py: Chunk → embed → upsert pipeline for one book
#   - storage.py: Raw upload storage on the local filesystem
#   - rate_limiter.py: Fixed-window chat rate limiting (memory, Redis)
#   - auth.py: API key generation and hashing
# =============================================================================
