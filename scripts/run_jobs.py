#!/usr/bin/env python3
"""
Run the periodic payment jobs once, or run the scheduler loop.

Settings come from payment_config (defaults.yaml, $PAYMENT_CONFIG, PAYMENT_*
environment variables); --config names an override file.

Usage:
    python3 scripts/run_jobs.py [--config FILE] [--verbose] <command>

Examples:
    # Create the tables (first run)
    python3 scripts/run_jobs.py init-db

    # Execute every due recurrence rule now
    python3 scripts/run_jobs.py run-due-rules

    # Prune reference files older than 30 days instead of the configured retention
    python3 scripts/run_jobs.py prune-files --days 30

    # Run both jobs on their cron triggers until interrupted
    python3 scripts/run_jobs.py scheduler
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from payment_batch.domain.types import BatchJobStatus, BatchRunResult  # noqa: E402
from payment_batch.orchestrator import BatchOrchestrator  # noqa: E402
from payment_config import load_settings  # noqa: E402
from payment_kernel.db.engine import (  # noqa: E402
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from payment_kernel.db.immutability import register_immutability_listeners  # noqa: E402
from payment_kernel.exceptions import PaymentKernelError  # noqa: E402
from payment_kernel.logging_config import configure_logging, get_logger  # noqa: E402

logger = get_logger("scripts.run_jobs")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the periodic payment jobs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Settings override file (YAML). Default: $PAYMENT_CONFIG.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log at DEBUG level.",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create all tables.")
    sub.add_parser("run-due-rules", help="Execute every due recurrence rule once.")
    prune = sub.add_parser("prune-files", help="Delete requisites files past retention.")
    prune.add_argument(
        "--days",
        type=int,
        default=None,
        help="Retention in days for this run (default: configured value; <= 0 disables).",
    )
    sub.add_parser("scheduler", help="Run both jobs on their cron triggers until interrupted.")
    return parser.parse_args(argv)


def _print_result(result: BatchRunResult | None) -> int:
    if result is None:
        print("Skipped: the job is already running.")
        return 0
    print(
        f"{result.job_name}: {result.status.value} "
        f"({result.succeeded} succeeded, {result.failed} failed, "
        f"{result.skipped} skipped of {result.total_items})"
    )
    for item in result.item_results:
        if item.error_message:
            print(f"  {item.item_key}: {item.error_code} {item.error_message}")
    return 1 if result.status == BatchJobStatus.FAILED else 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        settings = load_settings(args.config)
    except (PaymentKernelError, OSError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    init_engine_from_url(settings.database.url, echo=settings.database.echo)
    register_immutability_listeners()
    import payment_batch.models  # noqa: F401  (registers batch tables)

    if args.command == "init-db":
        create_tables()
        print(f"Tables created in {settings.database.url}")
        return 0

    orchestrator = BatchOrchestrator(settings, get_session_factory())

    if args.command == "run-due-rules":
        return _print_result(orchestrator.run_due_rules())
    if args.command == "prune-files":
        return _print_result(orchestrator.prune_requisites_files(args.days))

    scheduler = orchestrator.create_scheduler()
    for schedule in scheduler.schedules:
        print(f"{schedule.job_name}: '{schedule.cron_expression}' next at {schedule.next_run_at}")
    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        scheduler.stop()
        logger.info("scheduler_interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
