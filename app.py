"""Command line entry point running the StockSync reconciliation loop."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from settings import load_sync_settings
from stocksync.broadcast import log_event
from stocksync.logging_config import configure_logging
from stocksync.runtime import build_runtime
from stocksync.sheets_client import SheetsClientError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Keep the StockSync inventory snapshot in sync with Google Sheets."
    )
    parser.add_argument("--settings", help="Path to the sync settings JSON file")
    parser.add_argument("--once", action="store_true", help="Run a single reconciliation cycle and exit")
    parser.add_argument("--interval", type=float, help="Override the poll interval in seconds")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


async def _run(args: argparse.Namespace) -> int:
    settings = load_sync_settings(args.settings)
    if not settings.sources:
        print("Error: no inventory sources configured.", file=sys.stderr)
        return 1
    if args.interval:
        settings.poll_interval_seconds = int(max(1, args.interval))

    runtime = build_runtime(settings)
    runtime.broadcaster.subscribe(log_event)
    try:
        if args.once:
            result = await runtime.loop.run_once()
            print(f"Cycle finished: {result.status} ({len(result.changes)} change(s))")
            return 1 if result.error else 0
        await runtime.loop.run_forever()
    finally:
        runtime.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    log_path = configure_logging(logging.DEBUG if args.verbose else logging.INFO, console=True)
    logger.info("StockSync starting; logging to %s", log_path)
    try:
        return asyncio.run(_run(args))
    except SheetsClientError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
        return 130


if __name__ == "__main__":
    sys.exit(main())
