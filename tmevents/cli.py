"""
Command-line entry point for the ledger updater.

Usage:
    tmevents 2024 7          # backfill exactly July 2024
    tmevents                 # previous + current month
    tmevents --watch         # initial pass, then every UPDATE_EVERY ms
    tmevents --totd          # also refresh the track-of-the-day month and
                             # attach its maps to the winners ledger
    tmevents --today         # also write cotd.json (today's map + cup winner)

    OR
    python -m tmevents ...
"""

import argparse
import signal
import sys
from typing import Callable, Optional

import requests

from tmevents.config import ConfigurationError
from tmevents.ledger.store import LedgerError
from tmevents.scheduler import PeriodicRunner
from tmevents.services import Services
from tmevents.upstream.http import UpstreamError
from tmevents.utils import parse_month_key, set_package_log_level, setup_logging

# --- Module Logger ---
logger = setup_logging(__name__)

FATAL_ERRORS = (UpstreamError, LedgerError, requests.RequestException, OSError, ValueError)


def _year(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid year: {raw!r}")
    if not 2000 <= value <= 9999:
        raise argparse.ArgumentTypeError(f"year out of range: {value}")
    return value


def _month(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid month: {raw!r}")
    if not 1 <= value <= 12:
        raise argparse.ArgumentTypeError(f"month must be 1-12, got {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tmevents",
        description="Update the daily cup winners ledger (and optionally the track-of-the-day archive).",
    )
    parser.add_argument("year", nargs="?", type=_year, help="Backfill this year (requires MONTH)")
    parser.add_argument("month", nargs="?", type=_month, help="Backfill this month (1-12)")
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Keep running: update the previous and current month every UPDATE_EVERY ms.",
    )
    parser.add_argument(
        "--totd",
        action="store_true",
        help="Also refresh the current track-of-the-day month and attach its maps to the ledger.",
    )
    parser.add_argument(
        "--today",
        action="store_true",
        help="Also write the today card (cotd.json) and merge it into the ledger.",
    )
    return parser


def parse_args(argv=None) -> argparse.Namespace:
    parser = build_parser()
    args = parser.parse_args(argv)
    if (args.year is None) != (args.month is None):
        parser.error("YEAR and MONTH must be given together")
    if args.watch and args.year is not None:
        parser.error("--watch updates the recent months; it cannot be combined with YEAR MONTH")
    return args


def backfill_totd_maps(services: Services, totd_result: dict) -> dict:
    """Attach the archived track-of-the-day maps of one month to the winners ledger."""
    year, month = parse_month_key(totd_result['month'])
    days = services.totd_store.load(totd_result['month'])["days"]
    maps = {dk: record.get("map") for dk, record in days.items() if isinstance(record, dict)}
    return services.ledger.backfill_maps(year, month, maps)


def run_pass(services: Services, year: Optional[int] = None, month: Optional[int] = None,
             totd: bool = False, today: bool = False) -> list:
    """
    One update pass: a specific month, or the previous + current month.

    Returns:
        Summary dicts of every document written, in write order
    """
    if year is not None:
        results = [services.ledger.upsert_month(year, month)]
    else:
        results = services.ledger.update_recent()
    if totd:
        archived = services.totd.upsert_month(0)
        results.append(archived)
        results.append(backfill_totd_maps(services, archived))
    if today:
        payload = services.today.write()
        results.append({'month': payload["date"][:7], 'path': services.today.path})
    return results


def _install_stop_handlers(runner: PeriodicRunner) -> dict:
    """Route SIGTERM/SIGINT to runner.stop(); returns the previous handlers."""
    def _handle(signum, frame):
        logger.info(f"Received signal {signum}, stopping after the current pass")
        runner.stop()

    return {sig: signal.signal(sig, _handle) for sig in (signal.SIGTERM, signal.SIGINT)}


def main(argv=None, services_factory: Callable[[], Services] = Services.from_env) -> int:
    """
    Run the updater.

    Returns:
        Process exit status (0 success, 1 failure; argparse exits with 2)
    """
    args = parse_args(argv)

    try:
        services = services_factory()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    set_package_log_level(services.settings.log_level)

    try:
        with services:
            if args.watch:
                interval_s = services.settings.update_every_ms / 1000
                runner = PeriodicRunner(
                    lambda: run_pass(services, totd=args.totd, today=args.today), interval_s, name="watch"
                )
                previous = _install_stop_handlers(runner)
                try:
                    runner.run_forever()
                finally:
                    for sig, handler in previous.items():
                        if handler is not None:
                            signal.signal(sig, handler)
            else:
                for result in run_pass(services, args.year, args.month, totd=args.totd, today=args.today):
                    logger.info(f"{result['month']}: wrote {result['path']}")
    except FATAL_ERRORS as e:
        logger.error(f"Fatal: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
