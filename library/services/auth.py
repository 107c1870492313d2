# =============================================================================
# Auth Service — Issuing and Looking Up Library API Keys
# =============================================================================
#
# A key is "lib-" followed by 64 hex chars. The api_keys table keeps:
#   - key_prefix: "lib-" plus the first 4 hex chars. Enough to tell keys
#     apart in logs and listings without revealing anything usable.
#   - key_hash:   SHA-256 of the full key, used for the lookup in
#     get_current_user. The raw key is never stored.
#
# Keys carry 256 random bits, so an unsalted fast hash is sufficient and
# keeps the lookup a single indexed equality match.
# =============================================================================

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from library.db.models import ApiKey

KEY_PREFIX = "lib-"
KEY_RANDOM_BYTES = 32
DISPLAY_PREFIX_LENGTH = len(KEY_PREFIX) + 4


@dataclass
class IssuedKey:
    """A freshly minted key: the raw value and its unsaved row."""

    raw_key: str
    record: ApiKey


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode()).hexdigest()


def display_prefix(raw_key: str) -> str:
    return raw_key[:DISPLAY_PREFIX_LENGTH]


def issue_api_key(
    name: str,
    expires_in_days: int | None = None,
    now: datetime | None = None,
) -> IssuedKey:
    """
    Mint a new key and build the ApiKey row for it.

    The caller adds ``record`` to a session and shows ``raw_key`` to the
    user exactly once.
    """
    raw_key = f"{KEY_PREFIX}{secrets.token_hex(KEY_RANDOM_BYTES)}"
    expires_at = None
    if expires_in_days:
        expires_at = (now or datetime.now(UTC)) + timedelta(days=expires_in_days)

    record = ApiKey(
        name=name,
        key_prefix=display_prefix(raw_key),
        key_hash=hash_api_key(raw_key),
        expires_at=expires_at,
    )
    return IssuedKey(raw_key=raw_key, record=record)
