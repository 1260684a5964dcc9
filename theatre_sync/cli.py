"""Command line entrypoint for the offline sync agent.

Usage::

    python -m theatre_sync --base-url https://theatre.example run
    python -m theatre_sync --db .theatre_sync.db status
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any

from .config import OfflineSyncConfig, load_config
from .const import CONF_BASE_URL, CONF_STORE_PATH
from .exceptions import OfflineSyncError
from .manager import OfflineSyncManager

_LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3000"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Operating theatre offline sync agent")
    parser.add_argument("--config", help="YAML file with offline sync options")
    parser.add_argument(
        "--base-url",
        default=os.getenv("THEATRE_SYNC_BASE_URL"),
        help="Theatre management API base URL",
    )
    parser.add_argument("--db", dest="store_path", help="SQLite path for queue and cache")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Run the probe, drain and refresh loops until interrupted")
    sub.add_parser("status", help="Show connectivity, pending and cache status")
    sub.add_parser("drain", help="Replay queued requests once")
    sub.add_parser("prefetch", help="Refresh cached reference datasets once")
    sub.add_parser("dead-letters", help="List requests the server rejected")
    requeue = sub.add_parser("requeue", help="Move a dead-lettered request back into the queue")
    requeue.add_argument("request_id")
    discard = sub.add_parser("discard", help="Delete a dead-lettered request")
    discard.add_argument("request_id")
    return parser


def resolve_config(args: argparse.Namespace) -> OfflineSyncConfig:
    overrides = {CONF_BASE_URL: args.base_url, CONF_STORE_PATH: args.store_path}
    if args.config:
        return load_config(args.config, **overrides)
    options: dict[str, Any] = {CONF_BASE_URL: args.base_url or DEFAULT_BASE_URL}
    if args.store_path:
        options[CONF_STORE_PATH] = args.store_path
    return OfflineSyncConfig.from_options(options)


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def main_async(args: argparse.Namespace) -> int:
    config = resolve_config(args)
    manager = OfflineSyncManager(config)

    if args.command == "status":
        _print(manager.status())
        return 0
    if args.command == "dead-letters":
        _print([item.to_dict() for item in manager.queue.dead_letters()])
        return 0
    if args.command == "requeue":
        new_id = manager.queue.requeue_dead_letter(args.request_id)
        if new_id is None:
            _LOGGER.error("No dead-lettered request %s", args.request_id)
            return 1
        _print({"requeued": args.request_id, "id": new_id})
        return 0
    if args.command == "discard":
        if not manager.queue.discard_dead_letter(args.request_id):
            _LOGGER.error("No dead-lettered request %s", args.request_id)
            return 1
        _print({"discarded": args.request_id})
        return 0

    if args.command == "run":
        async with manager:
            _LOGGER.info("Offline sync agent running")
            await asyncio.Event().wait()
        return 0

    await manager.async_start(background=False)
    try:
        result = await manager.async_sync_now(
            drain=args.command == "drain",
            prefetch=args.command == "prefetch",
        )
    finally:
        await manager.async_stop()
    _print(result)
    return 0


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))
    try:
        code = asyncio.run(main_async(args))
    except OfflineSyncError as err:
        _LOGGER.error("%s", err)
        code = 2
    except KeyboardInterrupt:  # pragma: no cover - manual interruption
        _LOGGER.info("Offline sync agent stopped")
        code = 0
    sys.exit(code)


if __name__ == "__main__":  # pragma: no cover - manual execution
    main()
