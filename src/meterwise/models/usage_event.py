"""Usage event model — one billable unit in the usage ledger.

Rows are inserted unbilled by the activity-producing side (one per sent
WhatsApp message) and flipped to billed exactly once by reconciliation.
They are never deleted.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from meterwise.models.base import Base, TimestampMixin


class UsageEvent(TimestampMixin, Base):
    __tablename__ = "usage_events"
    __table_args__ = (
        CheckConstraint(
            "(billed AND billed_at IS NOT NULL) OR (NOT billed AND billed_at IS NULL)",
            name="ck_usage_events_billed_at_matches_billed",
        ),
        Index("ix_usage_events_subscriber_unbilled", "subscriber_id", "billed", "occurred_at"),
    )

    # Monotonic so ids order by insertion.
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    subscriber_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("subscribers.id"), nullable=False)
    event_type: Mapped[str] = mapped_column(String, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    billed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    billed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )
