"""Entry point: `python run.py` serves the API, `python run.py sweep` expires due subscriptions."""

from __future__ import annotations

import argparse
import asyncio
import sys

import uvicorn

from backlify.core.config_core import get_settings
from backlify.core.database_core import dispose_engine, lifespan_session
from backlify.core.logging_core import get_logger
from backlify.crud.persistence import SqlPersistenceGateway
from backlify.services.subscriptions_service import SubscriptionsService

logger = get_logger("backlify.run")


async def _sweep() -> int:
    try:
        async with lifespan_session() as session:
            expired = await SubscriptionsService(SqlPersistenceGateway(session)).expire_due()
    finally:
        await dispose_engine()
    return expired


def sweep() -> int:
    """Run the expiry sweep once; exit code 0 on success, 1 on any failure."""
    try:
        expired = asyncio.run(_sweep())
    except Exception:
        logger.exception("Expiry sweep failed")
        return 1
    logger.info("Expiry sweep finished", extra={"expired": expired})
    return 0


def serve() -> None:
    """Run the FastAPI server."""
    settings = get_settings()
    uvicorn.run(
        "backlify:create_app",
        factory=True,
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        log_config=None,
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="backlify")
    parser.add_argument("command", nargs="?", default="serve", choices=("serve", "sweep"))
    args = parser.parse_args(argv)
    if args.command == "sweep":
        return sweep()
    serve()
    return 0


if __name__ == "__main__":
    sys.exit(main())
