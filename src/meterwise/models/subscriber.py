"""Subscriber model — business accounts that may hold a metered subscription.

Rows are written by the subscription-lifecycle webhooks; reconciliation only
reads them.
"""

from __future__ import annotations

from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from meterwise.models.base import Base, UUIDPrimaryKeyMixin


class Subscriber(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "subscribers"
    __table_args__ = (
        CheckConstraint("interval_count >= 1", name="ck_subscribers_interval_count_positive"),
    )

    email: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String, nullable=True)
    stripe_metered_item_id: Mapped[str | None] = mapped_column(String, nullable=True)
    subscription_status: Mapped[str] = mapped_column(String, nullable=False, default="inactive", index=True)
    billing_interval: Mapped[str] = mapped_column(String, nullable=False, default="month")
    interval_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
