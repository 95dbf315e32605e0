"""Ledger inspection — GET /v1/subscribers/{subscriber_id}/usage."""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from meterwise.api.deps import require_operator
from meterwise.database import get_db
from meterwise.metering.ledger import list_usage_events
from meterwise.models.subscriber import Subscriber

router = APIRouter(
    prefix="/v1/subscribers",
    tags=["usage"],
    dependencies=[Depends(require_operator)],
)


class UsageEventOut(BaseModel):
    id: int
    event_type: str
    occurred_at: datetime
    billed: bool
    billed_at: datetime | None = None


class UsageListOut(BaseModel):
    subscriber_id: str
    events: list[UsageEventOut] = Field(default_factory=list)
    total: int = 0


@router.get("/{subscriber_id}/usage", response_model=UsageListOut)
async def list_usage(
    subscriber_id: uuid.UUID,
    billed: bool | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
) -> UsageListOut:
    subscriber = await db.get(Subscriber, subscriber_id)
    if subscriber is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscriber not found.")

    events = await list_usage_events(db, subscriber_id, billed=billed, limit=limit)
    return UsageListOut(
        subscriber_id=str(subscriber_id),
        events=[
            UsageEventOut(
                id=e.id,
                event_type=e.event_type,
                occurred_at=e.occurred_at,
                billed=e.billed,
                billed_at=e.billed_at,
            )
            for e in events
        ],
        total=len(events),
    )
