"""meterwise CLI entry point.

Provides the scheduler-facing ``reconcile`` command and a ``usage`` command
for inspecting a subscriber's ledger.

Usage::

    meterwise reconcile
    meterwise reconcile --test-mode
    meterwise usage --subscriber 6f1c... --unbilled
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import uuid

from meterwise.config import settings
from meterwise.database import async_session_factory, dispose_engine
from meterwise.metering.ledger import list_usage_events
from meterwise.metering.orchestrator import run_reconciliation
from meterwise.models.usage_event import UsageEvent
from meterwise.providers.stripe import StripeMeteringProvider
from meterwise.schema import ReconciliationReport

STATUS_COLORS = {
    "billed": "\033[92m",
    "empty": "\033[90m",
    "skipped": "\033[93m",
    "failed": "\033[91m",
    "commit_failed": "\033[91m",
}
RESET = "\033[0m"


def _print_table(headers: list[str], rows: list[list[str]]) -> None:
    """Print a simple formatted table to stdout."""
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    separator = "-+-".join("-" * w for w in widths)

    print(header_line)
    print(separator)
    for row in rows:
        line = " | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row))
        print(line)


def _print_report(report: ReconciliationReport) -> None:
    print(f"\n{'=' * 60}")
    print(f"  Reconciliation run  (test mode: {'ON' if report.test_mode else 'OFF'})")
    print(f"{'=' * 60}\n")

    if not report.outcomes:
        print("  (no active subscribers)")
    else:
        rows = []
        for o in report.outcomes:
            period = f"{o.period.start:%Y-%m-%d %H:%M} -> {o.period.end:%Y-%m-%d %H:%M}" if o.period else "-"
            error = o.error or "-"
            rows.append([
                str(o.subscriber_id),
                o.status,
                period,
                str(o.units),
                "Y" if o.notified else "N",
                error[:60] + "..." if len(error) > 60 else error,
            ])
        _print_table(["Subscriber", "Status", "Period", "Units", "Notified", "Error"], rows)

    print(
        f"\n=== Summary: {report.processed} processed, {report.billed} billed, "
        f"{report.skipped} skipped, {report.failed} failed, {report.units_billed} units ==="
    )
    if report.interrupted:
        print(f"{STATUS_COLORS['skipped']}Run was interrupted before all subscribers were processed.{RESET}")
    print()


async def _reconcile(test_mode: bool) -> ReconciliationReport:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            pass  # not supported on this platform

    try:
        async with StripeMeteringProvider.from_settings() as provider:
            return await run_reconciliation(
                async_session_factory,
                provider,
                test_mode=test_mode,
                stop_event=stop_event,
            )
    finally:
        await dispose_engine()


async def _usage(subscriber_id: uuid.UUID, unbilled: bool, limit: int) -> list[UsageEvent]:
    try:
        async with async_session_factory() as session:
            return await list_usage_events(
                session,
                subscriber_id,
                billed=False if unbilled else None,
                limit=limit,
            )
    finally:
        await dispose_engine()


def cmd_reconcile(args: argparse.Namespace) -> int:
    """Execute the ``reconcile`` command. Returns the process exit code."""
    report = asyncio.run(_reconcile(args.test_mode))
    _print_report(report)
    return 1 if report.failed else 0


def cmd_usage(args: argparse.Namespace) -> int:
    """Execute the ``usage`` command."""
    try:
        subscriber_id = uuid.UUID(args.subscriber)
    except ValueError:
        print(f"Invalid subscriber id: {args.subscriber}", file=sys.stderr)
        return 2

    events = asyncio.run(_usage(subscriber_id, args.unbilled, args.limit))
    if not events:
        print("  (no usage events)")
        return 0

    rows = [
        [
            str(e.id),
            e.event_type,
            e.occurred_at.isoformat(),
            "billed" if e.billed else "unbilled",
            e.billed_at.isoformat() if e.billed_at else "-",
        ]
        for e in events
    ]
    _print_table(["ID", "Type", "Occurred", "State", "Billed at"], rows)
    print(f"\n  Total: {len(events)}\n")
    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="meterwise",
        description="meterwise CLI — metered-usage billing reconciliation",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # reconcile subcommand
    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Run one reconciliation batch across all active metered subscribers",
    )
    reconcile_parser.add_argument(
        "--test-mode",
        action="store_true",
        help="Log per-subscriber ledger counts (billing behaviour is unchanged)",
    )

    # usage subcommand
    usage_parser = subparsers.add_parser(
        "usage",
        help="List a subscriber's usage ledger entries",
    )
    usage_parser.add_argument(
        "--subscriber",
        required=True,
        help="Subscriber UUID",
    )
    usage_parser.add_argument(
        "--unbilled",
        action="store_true",
        help="Only show unbilled entries",
    )
    usage_parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum entries to show (default: 100)",
    )

    parsed = parser.parse_args(argv)

    if parsed.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(level=settings.log_level)

    if parsed.command == "reconcile":
        sys.exit(cmd_reconcile(parsed))
    elif parsed.command == "usage":
        sys.exit(cmd_usage(parsed))


if __name__ == "__main__":
    main()
