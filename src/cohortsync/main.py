#!/usr/bin/env python3

# ruff: noqa: T201

from __future__ import annotations

import argparse
import logging
import sys
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from cohortsync.app import sync_cohort
from cohortsync.config import ConfigurationError, configure_logging

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from cohortsync.app import SyncSummary


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synchronise the local mirror of a cohort")
    parser.add_argument(
        "--cohort",
        type=str,
        help="Cohort identifier (default: COHORTSYNC_COHORT_ID or 'main')",
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Keep syncing on timers and change notifications until interrupted",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log debug output",
    )
    args = parser.parse_args(list(argv))
    if args.cohort is not None and not args.cohort.strip():
        raise ValueError("Cohort identifier must not be blank")
    return args


def _print_summary(summary: SyncSummary) -> None:
    print(f"Cohort {summary.cohort_id}")
    print(f"  groups:      {summary.groups}")
    print(f"  domains:     {summary.domains}")
    print(f"  objectives:  {summary.objectives}")
    print(f"  students:    {summary.students}")
    print(f"  memberships: {summary.memberships}")
    watermark = summary.watermark.isoformat() if summary.watermark else "never"
    print(f"  synced up to {watermark}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    parsed_args: argparse.Namespace
    try:
        parsed_args = _parse_args(sys.argv[1:] if argv is None else argv)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)

    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        summary = sync_cohort(cohort_id=parsed_args.cohort, watch=parsed_args.watch)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:  # noqa: BLE001
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    _print_summary(summary)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    print("\nClosed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
