from __future__ import annotations

import argparse
import json
import logging
import sys
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from licensesync.app import (
    get_health_status,
    get_sync_status,
    run_lifecycle_job,
    run_scheduler,
    sync_external_licenses,
    sync_pending_licenses,
    sync_single_license,
)
from licensesync.config import MAX_SYNC_BATCH_SIZE, configure_logging
from licensesync.domain.lifecycle import LIFECYCLE_JOBS

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from licensesync.app import SyncResponse

log = logging.getLogger(__name__)


def _batch_size(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid batch size: {value}") from exc
    if not 1 <= parsed <= MAX_SYNC_BATCH_SIZE:
        raise argparse.ArgumentTypeError(
            f"Batch size must be between 1 and {MAX_SYNC_BATCH_SIZE}, got {parsed}"
        )
    return parsed


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid number: {value}") from exc
    if parsed < 1:
        raise argparse.ArgumentTypeError(f"Must be positive, got {parsed}")
    return parsed


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="licensesync", description="Synchronise external licenses"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Logging level (default: %(default)s)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Reconcile all external licenses")
    sync.add_argument("--force", action="store_true", help="Ignore the last-sync checkpoint")
    sync.add_argument(
        "--batch-size",
        type=_batch_size,
        default=None,
        help=f"Records per page, 1-{MAX_SYNC_BATCH_SIZE} (defaults to config)",
    )
    sync.add_argument(
        "--dry-run", action="store_true", help="Validate and match without persisting"
    )
    sync.add_argument(
        "--bidirectional", action="store_true", help="Push internal changes back afterwards"
    )
    sync.add_argument(
        "--comprehensive",
        action="store_true",
        help="Analyse duplicates across the whole internal store",
    )
    sync.add_argument(
        "--detect-duplicates",
        action="store_true",
        help="Detect and consolidate duplicates touched by this run",
    )

    sync_one = subparsers.add_parser("sync-one", help="Reconcile one external license")
    sync_one.add_argument("appid", help="External application id")

    pending = subparsers.add_parser(
        "sync-pending", help="Retry licenses whose last sync is pending or failed"
    )
    pending.add_argument("--limit", type=_positive_int, default=100)
    pending.add_argument("--batch-size", type=_positive_int, default=20)

    subparsers.add_parser("status", help="Show the sync status")

    lifecycle = subparsers.add_parser("lifecycle", help="Run one license lifecycle job")
    lifecycle.add_argument("job", choices=LIFECYCLE_JOBS)

    health = subparsers.add_parser("health", help="Show sync health and metrics")
    health.add_argument(
        "--skip-external",
        action="store_true",
        help="Do not probe the external API",
    )

    subparsers.add_parser("schedule", help="Run the recurring jobs until interrupted")
    return parser


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    return _build_parser().parse_args(list(argv))


def _sync_overrides(args: argparse.Namespace) -> dict[str, object]:
    overrides: dict[str, object] = {
        name: True
        for name in ("force", "dry_run", "bidirectional", "comprehensive", "detect_duplicates")
        if getattr(args, name)
    }
    if args.batch_size is not None:
        overrides["batch_size"] = args.batch_size
    return overrides


def _print(response: SyncResponse) -> None:
    sys.stdout.write(json.dumps(response.to_dict(), indent=2, default=str) + "\n")


def _dispatch(args: argparse.Namespace) -> SyncResponse | None:
    match args.command:
        case "sync":
            return sync_external_licenses(overrides=_sync_overrides(args))
        case "sync-one":
            return sync_single_license(args.appid)
        case "sync-pending":
            return sync_pending_licenses(limit=args.limit, batch_size=args.batch_size)
        case "status":
            return get_sync_status()
        case "lifecycle":
            return run_lifecycle_job(args.job)
        case "health":
            return get_health_status(check_external=not args.skip_external)
        case "schedule":
            run_scheduler()
            return None
        case _:
            raise ValueError(f"Unsupported command: {args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=getattr(logging, parsed_args.log_level))

    try:
        response = _dispatch(parsed_args)
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(2)
    except Exception:
        log.exception("Fatal error during license sync")
        sys.exit(1)

    if response is not None:
        _print(response)
        log.info(response.message)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
