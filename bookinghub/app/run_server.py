"""Runtime entrypoint for the booking API."""
import argparse
import asyncio
import logging
import os
from contextlib import suppress

import uvicorn

from bookinghub.config import get_setting
from bookinghub.app.core.db import dispose_engine, init_db
from bookinghub.app.core.logger import configure_logging
from bookinghub.app.services.repositories import SqlBookingStore
from bookinghub.app.workers.expiration import reap_expired

logger = logging.getLogger("bookinghub")


# ==============================================================
# BOOTSTRAP
# ==============================================================

async def maybe_create_schema() -> None:
    """Create tables from metadata when RUN_BOOTSTRAP is set (dev only; prod uses alembic)."""
    if os.getenv("RUN_BOOTSTRAP", "0").lower() not in {"1", "true", "yes"}:
        return
    logger.info("[bootstrap] Creating schema…")
    await init_db(force=False)
    logger.info("[bootstrap] Completed")


# ==============================================================
# MAIN
# ==============================================================

async def main(host: str | None = None, port: int | None = None) -> None:
    await maybe_create_schema()

    config = uvicorn.Config(
        "bookinghub.api.app:app",
        host=host or str(get_setting("host", "0.0.0.0")),
        port=int(port or get_setting("port", 8000)),
        log_config=None,
        proxy_headers=True,
    )
    server = uvicorn.Server(config)
    logger.info("Starting API on %s:%s…", config.host, config.port)
    await server.serve()


# ==============================================================
# CLI helpers: reap, init-db
# ==============================================================

async def _reap_once() -> int:
    try:
        result = await reap_expired(SqlBookingStore())
        print(f"Deleted {result.holds_deleted} holds, cancelled {result.pending_cancelled} pending placeholders.")
        return 0
    finally:
        await dispose_engine()


async def _init_db(force: bool) -> int:
    try:
        await init_db(force=force)
        print("Schema created.")
        return 0
    finally:
        await dispose_engine()


def cli(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="bookinghub")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="cmd")

    serve = sub.add_parser("serve", help="run the HTTP API (default)")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    sub.add_parser("reap", help="run one expiry sweep and exit")

    idb = sub.add_parser("init-db", help="create tables from metadata")
    idb.add_argument("--force", action="store_true", help="drop all tables first")

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.cmd == "reap":
        return asyncio.run(_reap_once())
    if args.cmd == "init-db":
        return asyncio.run(_init_db(args.force))

    # Default: serve
    with suppress(KeyboardInterrupt, SystemExit):
        asyncio.run(main(getattr(args, "host", None), getattr(args, "port", None)))
    return 0


if __name__ == "__main__":
    raise SystemExit(cli())
