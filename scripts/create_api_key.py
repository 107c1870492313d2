#!/usr/bin/env python3
"""
Create an API key for the Library API.

The raw key is printed once and never stored; only its SHA-256 hash goes
into the api_keys table. Keys are only checked when AUTH_ENABLED=true.

Usage:
    uv run python scripts/create_api_key.py web-frontend
    uv run python scripts/create_api_key.py ci --expires-days 30
"""

import argparse
import asyncio

from library.db.engine import async_engine, async_session_factory, create_tables
from library.services.auth import issue_api_key


async def create_key(name: str, expires_days: int | None) -> None:
    await create_tables()

    issued = issue_api_key(name, expires_in_days=expires_days)
    async with async_session_factory() as session:
        session.add(issued.record)
        await session.commit()
        key_id = issued.record.id

    await async_engine.dispose()

    print(f"Created API key #{key_id} ({name}, {issued.record.key_prefix}...)")
    if issued.record.expires_at:
        print(f"Expires: {issued.record.expires_at.isoformat()}")
    print()
    print(f"  {issued.raw_key}")
    print()
    print("Store it now. It will not be shown again.")


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a Library API key")
    parser.add_argument("name", help="Label for the key, e.g. web-frontend")
    parser.add_argument("--expires-days", type=int, default=None)
    args = parser.parse_args()
    asyncio.run(create_key(args.name, args.expires_days))


if __name__ == "__main__":
    main()
