"""Metered event dispatch — one provider usage record per ledger entry.

Records are sent individually, each stamped with the event's own
``occurred_at`` so the provider attributes usage to the right moment, and
never pre-aggregated.  A batch only counts as dispatched when every record
was accepted; anything less fails the whole subscriber for this run and
nothing gets committed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from meterwise.config import settings
from meterwise.errors import DispatchError, MeteredDimensionMissing
from meterwise.models.usage_event import UsageEvent
from meterwise.providers.base import MeteringProvider
from meterwise.schema import SubscriberAccount, UsageRecord, ensure_utc

logger = logging.getLogger(__name__)


def usage_identifier(event_id: int) -> str:
    """Stable meter-event identifier for a ledger entry.

    Stripe only deduplicates identifiers inside a rolling window of about a
    day, so a resend after that window is billed again.
    """
    return f"usage_event_{event_id}"


def build_usage_records(account: SubscriberAccount, events: Sequence[UsageEvent]) -> list[UsageRecord]:
    return [
        UsageRecord(
            identifier=usage_identifier(event.id),
            event_name=account.event_type_label,
            customer_id=account.external_customer_id,
            line_item_id=account.metered_line_item_id,
            value=1,
            timestamp=ensure_utc(event.occurred_at),
        )
        for event in events
    ]


async def dispatch_usage(
    provider: MeteringProvider,
    account: SubscriberAccount,
    events: Sequence[UsageEvent],
    *,
    concurrency: int | None = None,
) -> list[int]:
    """Submit one usage record per event and return the dispatched event ids.

    Raises :class:`MeteredDimensionMissing` if the provider does not know the
    subscriber's event label, otherwise :class:`DispatchError` if any record
    was rejected.  No ledger state is touched here.
    """
    if not events:
        return []

    records = build_usage_records(account, events)
    semaphore = asyncio.Semaphore(max(1, concurrency or settings.dispatch_concurrency))

    async def _submit(record: UsageRecord) -> None:
        async with semaphore:
            await provider.submit_usage(record)

    results = await asyncio.gather(*(_submit(r) for r in records), return_exceptions=True)
    failures = [r for r in results if isinstance(r, BaseException)]

    if failures:
        accepted = len(records) - len(failures)
        logger.error(
            "Dispatch failed for subscriber %s: %d of %d usage records rejected (%d accepted)",
            account.subscriber_id,
            len(failures),
            len(records),
            accepted,
        )
        for failure in failures:
            if isinstance(failure, asyncio.CancelledError):
                raise failure
        for failure in failures:
            if isinstance(failure, MeteredDimensionMissing):
                raise failure
        raise DispatchError(len(records), accepted, failures)

    logger.info(
        "Dispatched %d usage records for subscriber %s (event=%s)",
        len(records),
        account.subscriber_id,
        account.event_type_label,
    )
    return [event.id for event in events]
