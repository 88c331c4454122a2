"""Connects to the configured server, pings it and disconnects."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

LOGGER = logging.getLogger("surreal_client.run")


async def _run(settings) -> None:
    from surreal_client import SurrealClient  # type: ignore

    async with SurrealClient(settings) as client:
        LOGGER.info("Connected to %s (status=%s)", client.connection.url, client.status.value)
        result = await client.ping()
        LOGGER.info("Ping result: %r", result)


def main() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root))

    # Lazy import after adjusting sys.path
    from surreal_client.config import get_settings  # type: ignore

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    asyncio.run(_run(settings))


if __name__ == "__main__":
    main()
