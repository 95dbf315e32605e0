"""Batch orchestration of metered-usage reconciliation.

Per subscriber and run::

    resolve period -> query unbilled (frozen id set) -> [none: done]
        -> dispatch all -> commit exactly those ids -> notify -> done

Any step may end the subscriber's run as skipped or failed; unbilled
events simply stay unbilled for the next run.  Subscribers are processed
one at a time and one subscriber's failure never stops the batch.

Callers must not run two batches for the same subscriber concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from meterwise.errors import ConfigurationError
from meterwise.metering.directory import list_active_subscribers, resolve_account
from meterwise.metering.dispatcher import dispatch_usage
from meterwise.metering.ledger import commit_dispatched, count_usage_in_period, fetch_unbilled_usage
from meterwise.metering.period import resolve_billing_period
from meterwise.models.subscriber import Subscriber
from meterwise.notifications.sender import UsageNotifier, notify_usage_billed
from meterwise.providers.base import MeteringProvider
from meterwise.schema import BillingPeriod, ReconciliationReport, SubscriberAccount, SubscriberOutcome

logger = logging.getLogger(__name__)


def _span(period: BillingPeriod) -> str:
    return f"[{period.start.isoformat()}, {period.end.isoformat()}) ({period.source})"


async def reconcile_account(
    session_factory: async_sessionmaker[AsyncSession],
    provider: MeteringProvider,
    account: SubscriberAccount,
    *,
    notifier: UsageNotifier = notify_usage_billed,
    test_mode: bool = False,
    now: datetime | None = None,
) -> SubscriberOutcome:
    """Reconcile one resolved subscriber for one run."""
    sid = account.subscriber_id

    # --- Resolve period + query, once ---
    try:
        period = resolve_billing_period(account, now)
        async with session_factory() as session:
            events = await fetch_unbilled_usage(session, sid, period)
            if test_mode:
                counts = await count_usage_in_period(session, sid, period)
                logger.info(
                    "[test mode] subscriber %s period %s: total=%d billed=%d unbilled=%d selected=%d",
                    sid,
                    _span(period),
                    counts.total,
                    counts.billed,
                    counts.unbilled,
                    len(events),
                )
    except Exception as exc:
        logger.exception("Usage query failed for subscriber %s", sid)
        return SubscriberOutcome(subscriber_id=sid, status="failed", error=str(exc))

    if not events:
        logger.info("Subscriber %s has no unbilled usage in %s", sid, _span(period))
        return SubscriberOutcome(subscriber_id=sid, status="empty", period=period)

    event_ids = [event.id for event in events]

    # --- Dispatch the frozen set ---
    try:
        dispatched_ids = await dispatch_usage(provider, account, events)
    except asyncio.CancelledError:
        logger.error(
            "Run cancelled while dispatching subscriber %s period %s; %d events left unbilled",
            sid,
            _span(period),
            len(event_ids),
        )
        raise
    except ConfigurationError as exc:
        logger.warning(
            "Skipping subscriber %s period %s (%d events stay unbilled): %s",
            sid,
            _span(period),
            len(event_ids),
            exc,
        )
        return SubscriberOutcome(subscriber_id=sid, status="skipped", period=period, error=str(exc))
    except Exception as exc:
        logger.error(
            "Dispatch failed for subscriber %s period %s (%d events stay unbilled): %s",
            sid,
            _span(period),
            len(event_ids),
            exc,
        )
        return SubscriberOutcome(subscriber_id=sid, status="failed", period=period, error=str(exc))

    # --- Commit exactly what was dispatched ---
    try:
        async with session_factory() as session:
            async with session.begin():
                await commit_dispatched(session, dispatched_ids, datetime.now(timezone.utc))
    except BaseException as exc:
        logger.critical(
            "Ledger commit FAILED after successful dispatch for subscriber %s period %s: "
            "%d units accepted by the provider remain unbilled and will be re-sent next run "
            "(event ids=%s): %s",
            sid,
            _span(period),
            len(dispatched_ids),
            dispatched_ids,
            exc,
        )
        if not isinstance(exc, Exception):
            raise
        return SubscriberOutcome(subscriber_id=sid, status="commit_failed", period=period, error=str(exc))

    units = len(dispatched_ids)
    logger.info("Billed %d units for subscriber %s period %s", units, sid, _span(period))

    # --- Notify ---
    try:
        notified = await notifier(account, units, period)
    except Exception:
        logger.exception("Usage notification failed for subscriber %s (billing already committed)", sid)
        notified = False

    return SubscriberOutcome(
        subscriber_id=sid,
        status="billed",
        period=period,
        units=units,
        notified=notified,
    )


async def reconcile_subscriber(
    session_factory: async_sessionmaker[AsyncSession],
    provider: MeteringProvider,
    subscriber: Subscriber,
    *,
    notifier: UsageNotifier = notify_usage_billed,
    test_mode: bool = False,
    now: datetime | None = None,
) -> SubscriberOutcome:
    """Resolve *subscriber* against the provider, then reconcile it."""
    try:
        account = await resolve_account(subscriber, provider)
    except ConfigurationError as exc:
        logger.warning("Skipping subscriber %s: %s", subscriber.id, exc)
        return SubscriberOutcome(subscriber_id=subscriber.id, status="skipped", error=str(exc))
    except Exception as exc:
        logger.exception("Could not resolve subscriber %s", subscriber.id)
        return SubscriberOutcome(subscriber_id=subscriber.id, status="failed", error=str(exc))

    return await reconcile_account(
        session_factory,
        provider,
        account,
        notifier=notifier,
        test_mode=test_mode,
        now=now,
    )


async def run_reconciliation(
    session_factory: async_sessionmaker[AsyncSession],
    provider: MeteringProvider,
    *,
    notifier: UsageNotifier = notify_usage_billed,
    test_mode: bool = False,
    now: datetime | None = None,
    stop_event: asyncio.Event | None = None,
) -> ReconciliationReport:
    """Reconcile every active metered subscriber, one at a time.

    ``stop_event`` is checked between subscribers; once set, the run drains
    and returns a report flagged ``interrupted``.
    """
    report = ReconciliationReport(started_at=datetime.now(timezone.utc), test_mode=test_mode)

    async with session_factory() as session:
        subscribers = await list_active_subscribers(session)

    logger.info(
        "Reconciliation run starting for %d active subscribers (test_mode=%s)",
        len(subscribers),
        test_mode,
    )

    for subscriber in subscribers:
        if stop_event is not None and stop_event.is_set():
            logger.warning(
                "Reconciliation stop requested; %d subscribers not processed this run",
                len(subscribers) - len(report.outcomes),
            )
            report.interrupted = True
            break
        outcome = await reconcile_subscriber(
            session_factory,
            provider,
            subscriber,
            notifier=notifier,
            test_mode=test_mode,
            now=now,
        )
        report.outcomes.append(outcome)

    report.finished_at = datetime.now(timezone.utc)
    logger.info(
        "Reconciliation run finished: processed=%d billed=%d skipped=%d failed=%d units=%d",
        report.processed,
        report.billed,
        report.skipped,
        report.failed,
        report.units_billed,
    )
    return report
