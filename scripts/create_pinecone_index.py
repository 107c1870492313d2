#!/usr/bin/env python3
"""
Create the Pinecone serverless index used by the Library API.

Sends the create request to the Pinecone control plane, then polls until
the index reports ready and prints its data-plane host. The dimension is
EMBEDDING_DIMENSIONS so the index matches what the embedder produces. An
index that already exists is not an error; the script just waits for it.

Usage:
    uv run python scripts/create_pinecone_index.py
    uv run python scripts/create_pinecone_index.py --name book-summaries --poll-interval 10
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable

import httpx

from library.config import settings
from library.errors import StoreInitFailure

logger = logging.getLogger("create_pinecone_index")


def build_index_request(
    name: str,
    dimension: int,
    cloud: str,
    region: str,
    metric: str = "cosine",
) -> dict:
    return {
        "name": name,
        "dimension": dimension,
        "metric": metric,
        "spec": {"serverless": {"cloud": cloud, "region": region}},
    }


def make_control_client(
    api_key: str,
    base_url: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url,
        headers={
            "Api-Key": api_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
        },
        timeout=settings.http_timeout_seconds,
        transport=transport,
    )


async def create_index(client: httpx.AsyncClient, body: dict) -> bool:
    """
    POST /indexes.

    Returns True when the index was created and False when one with the
    same name already exists (409).
    """
    try:
        response = await client.post("/indexes", json=body)
    except httpx.HTTPError as exc:
        raise StoreInitFailure(f"Pinecone create index failed: {exc}") from exc

    if response.status_code == 409:
        logger.info("Index '%s' already exists", body["name"])
        return False
    if response.is_error:
        raise StoreInitFailure(
            f"Pinecone rejected index '{body['name']}'",
            status_code=response.status_code,
            body=response.text,
        )
    return True


async def wait_until_ready(
    client: httpx.AsyncClient,
    name: str,
    poll_interval: float = 5.0,
    max_polls: int = 60,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> dict:
    """
    Poll GET /indexes/{name} until ``status.ready`` is true.

    Returns the index description. Raises StoreInitFailure if the index is
    still not ready after ``max_polls`` checks.
    """
    for poll in range(1, max_polls + 1):
        try:
            response = await client.get(f"/indexes/{name}")
        except httpx.HTTPError as exc:
            raise StoreInitFailure(f"Pinecone describe index failed: {exc}") from exc
        if response.is_error:
            raise StoreInitFailure(
                f"Pinecone describe index '{name}' was rejected",
                status_code=response.status_code,
                body=response.text,
            )

        description = response.json()
        status = description.get("status") or {}
        if status.get("ready"):
            return description

        logger.info(
            "Index '%s' is %s (check %d/%d), waiting %.0fs...",
            name, status.get("state", "initializing"), poll, max_polls, poll_interval,
        )
        await sleep(poll_interval)

    raise StoreInitFailure(f"Index '{name}' was not ready after {max_polls} checks")


async def run_create(
    name: str,
    poll_interval: float,
    max_polls: int,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> int:
    if not settings.pinecone_api_key:
        print("PINECONE_API_KEY is not set.", file=sys.stderr)
        return 1

    body = build_index_request(
        name,
        dimension=settings.embedding_dimensions,
        cloud=settings.pinecone_cloud,
        region=settings.pinecone_region,
    )
    print(f"Creating index '{name}' ({body['dimension']} dimensions, {body['metric']})...")

    async with make_control_client(
        settings.pinecone_api_key, settings.pinecone_control_url, transport,
    ) as client:
        try:
            created = await create_index(client, body)
            print("  create: ok" if created else "  create: already exists")
            description = await wait_until_ready(
                client, name, poll_interval, max_polls, sleep,
            )
        except StoreInitFailure as exc:
            print(f"FAILED: {exc}", file=sys.stderr)
            return 1

    print("  ready: ok")
    print()
    print(f"PINECONE_HOST=https://{description.get('host', '')}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--name", default=settings.pinecone_index_name, help="Index name")
    parser.add_argument("--poll-interval", type=float, default=5.0, help="Seconds between readiness checks")
    parser.add_argument("--max-polls", type=int, default=60, help="Readiness checks before giving up")
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level.upper())
    sys.exit(asyncio.run(run_create(args.name, args.poll_interval, args.max_polls)))


if __name__ == "__main__":
    main()
