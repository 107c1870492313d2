# =============================================================================
# Sentence-Aligned Text Chunker
# =============================================================================
#
# Splits an uploaded summary into character-bounded chunks that never cut a
# sentence in half. Each chunk becomes one vector record.
#
# ALGORITHM:
# 1. Find sentences: runs of non-terminators followed by one or more of .!?
# 2. Greedily append sentences to a buffer (joined by a single space)
# 3. When the next sentence would push the buffer past max_chunk_size,
#    emit the buffer and start a new one with that sentence
# 4. Emit the final buffer
#
# KNOWN LIMITATIONS:
# - Text without any terminator yields no chunks (no fallback splitting)
# - Text after the last terminator is dropped
# - A single sentence longer than max_chunk_size becomes one oversized chunk
# =============================================================================

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")


def split_sentences(text: str) -> list[str]:
    """Return the stripped, non-empty sentences found in ``text``."""
    sentences = (match.group(0).strip() for match in _SENTENCE_RE.finditer(text))
    return [s for s in sentences if s]


def chunk_text(text: str, max_chunk_size: int = 1000) -> list[str]:
    """
    Split text into sentence-aligned chunks of at most max_chunk_size chars.

    Args:
        text: Raw document text.
        max_chunk_size: Character budget per chunk. Only a lone sentence
            longer than this can produce a bigger chunk.

    Returns:
        Chunks in document order. Empty when the text has no sentences.

    Example:
        >>> chunk_text("Hello world. This is great!")
        ['Hello world. This is great!']
    """
    if max_chunk_size <= 0:
        raise ValueError("max_chunk_size must be positive")

    chunks: list[str] = []
    buffer = ""

    for sentence in split_sentences(text):
        candidate = f"{buffer} {sentence}" if buffer else sentence
        if buffer and len(candidate) > max_chunk_size:
            chunks.append(buffer)
            buffer = sentence
        else:
            buffer = candidate

    if buffer:
        chunks.append(buffer)

    logger.debug(
        "Chunked %d chars into %d chunks (max_chunk_size=%d)",
        len(text), len(chunks), max_chunk_size,
    )
    return chunks
