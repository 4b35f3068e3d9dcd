"""Utility to probe every configured API key once."""

from __future__ import annotations

import asyncio
import logging

from timemachine.core.config import settings
from timemachine.core.container import build_container
from timemachine.db.init_db import init_models
from timemachine.db.session import SessionLocal, engine


async def check_credentials() -> int:
    await init_models(engine)
    container = await build_container(settings, SessionLocal)
    try:
        if len(container.pool) == 0:
            print("No API keys configured.")
            return 1
        results = await container.router.check_all()
    finally:
        await container.aclose()

    for result in results:
        print(f"Key {result.position + 1} ({result.masked}): {result.status} - {result.message}")
    return 0 if any(result.status == "ok" for result in results) else 1


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=settings.log_level.upper())
    sys.exit(asyncio.run(check_credentials()))
