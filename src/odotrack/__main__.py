"""Command-line entry point: ``odotrack`` / ``python -m odotrack``."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from collections.abc import Sequence

from odotrack.config import IngestConfig
from odotrack.exceptions import OdotrackError
from odotrack.service import IngestService
from odotrack.store import create_store

_LOG = logging.getLogger("odotrack")


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="odotrack",
        description="Ingest vehicle telemetry from MQTT and persist it with a reconciled odometer.",
    )
    parser.add_argument(
        "--store",
        choices=("sql", "memory"),
        default="sql",
        help="Persistence backend (memory keeps nothing across restarts).",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy URL (overrides ODOTRACK_DATABASE_URL).",
    )
    parser.add_argument(
        "--flush-interval",
        type=float,
        default=None,
        help="Seconds between buffer flushes (overrides ODOTRACK_FLUSH_INTERVAL).",
    )
    parser.add_argument(
        "--api",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Serve the read-only query API (overrides ODOTRACK_API_ENABLED).",
    )
    parser.add_argument(
        "--api-port",
        type=int,
        default=None,
        help="Query API port (overrides ODOTRACK_API_PORT).",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> IngestConfig:
    overrides: dict[str, object] = {}
    if args.database_url is not None:
        overrides["database_url"] = args.database_url
    if args.flush_interval is not None:
        overrides["flush_interval"] = args.flush_interval
    if args.api is not None:
        overrides["api_enabled"] = args.api
    if args.api_port is not None:
        overrides["api_port"] = args.api_port
    if args.verbose:
        overrides["log_level"] = "DEBUG"
    return IngestConfig.from_env(**overrides)


async def _run(config: IngestConfig, store_kind: str) -> None:
    store = create_store(store_kind, database_url=config.database_url)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    async with IngestService(config, store=store):
        _LOG.info("Ingesting telemetry on %s", config.topics.telemetry)
        await stop.wait()
        _LOG.info("Shutdown requested")


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        config = build_config(args)
    except OdotrackError as exc:
        print(f"odotrack: {exc}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        asyncio.run(_run(config, args.store))
    except OdotrackError as exc:
        _LOG.error("odotrack failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
