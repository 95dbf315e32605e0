"""Usage ledger — append-only store of billable usage events.

Producers only ever insert unbilled rows.  Reconciliation reads the
unbilled rows inside a billing period once, and later flips exactly that
id set to billed.  The id-scoped update is what keeps reconciliation safe
while new events keep arriving for the same subscriber.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from meterwise.errors import CommitError
from meterwise.models.usage_event import UsageEvent
from meterwise.schema import BillingPeriod, UsageCounts, ensure_utc


async def record_usage_event(
    db: AsyncSession,
    subscriber_id: uuid.UUID,
    event_type: str,
    occurred_at: datetime | None = None,
) -> UsageEvent:
    """Insert one unbilled usage event and return it (flushed, id assigned)."""
    event = UsageEvent(
        subscriber_id=subscriber_id,
        event_type=event_type,
        occurred_at=ensure_utc(occurred_at) if occurred_at else datetime.now(timezone.utc),
        billed=False,
        billed_at=None,
    )
    db.add(event)
    await db.flush()
    return event


async def fetch_unbilled_usage(
    db: AsyncSession,
    subscriber_id: uuid.UUID,
    period: BillingPeriod,
) -> list[UsageEvent]:
    """Return unbilled events with ``occurred_at`` in ``[start, end)``, oldest first."""
    result = await db.execute(
        select(UsageEvent)
        .where(
            UsageEvent.subscriber_id == subscriber_id,
            UsageEvent.billed.is_(False),
            UsageEvent.occurred_at >= period.start,
            UsageEvent.occurred_at < period.end,
        )
        .order_by(UsageEvent.occurred_at, UsageEvent.id)
    )
    return list(result.scalars().all())


async def count_usage_in_period(
    db: AsyncSession,
    subscriber_id: uuid.UUID,
    period: BillingPeriod,
) -> UsageCounts:
    """Diagnostic totals for a period: every event vs. those already billed."""
    result = await db.execute(
        select(
            func.count(UsageEvent.id),
            func.count(UsageEvent.id).filter(UsageEvent.billed.is_(True)),
        ).where(
            UsageEvent.subscriber_id == subscriber_id,
            UsageEvent.occurred_at >= period.start,
            UsageEvent.occurred_at < period.end,
        )
    )
    total, billed = result.one()
    return UsageCounts(total=total or 0, billed=billed or 0)


async def list_usage_events(
    db: AsyncSession,
    subscriber_id: uuid.UUID,
    *,
    billed: bool | None = None,
    limit: int = 100,
) -> list[UsageEvent]:
    """Most recent ledger entries for a subscriber, newest first."""
    query = select(UsageEvent).where(UsageEvent.subscriber_id == subscriber_id)
    if billed is not None:
        query = query.where(UsageEvent.billed.is_(billed))
    result = await db.execute(query.order_by(UsageEvent.occurred_at.desc(), UsageEvent.id.desc()).limit(limit))
    return list(result.scalars().all())


async def mark_billed(
    db: AsyncSession,
    event_ids: Sequence[int],
    billed_at: datetime,
) -> int:
    """Flip exactly *event_ids* from unbilled to billed. Returns rows updated.

    Rows already billed are left untouched, so ``billed_at`` is only ever
    written once per event.
    """
    if not event_ids:
        return 0
    result = await db.execute(
        update(UsageEvent)
        .where(
            UsageEvent.id.in_(list(event_ids)),
            UsageEvent.billed.is_(False),
        )
        .values(billed=True, billed_at=ensure_utc(billed_at))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def commit_dispatched(
    db: AsyncSession,
    event_ids: Sequence[int],
    billed_at: datetime,
) -> int:
    """Mark the dispatched id set billed, all or nothing.

    Must run inside a transaction owned by the caller: on any mismatch
    between dispatched ids and updated rows a :class:`CommitError` is raised
    so the caller's transaction rolls back.
    """
    ids = list(event_ids)
    try:
        updated = await mark_billed(db, ids, billed_at)
    except SQLAlchemyError as exc:
        raise CommitError(f"ledger update failed: {exc}", event_ids=ids) from exc

    if updated != len(ids):
        raise CommitError(
            f"ledger update touched {updated} rows for {len(ids)} dispatched events",
            event_ids=ids,
        )
    return updated
