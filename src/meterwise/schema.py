"""Value types shared by the metering pipeline.

These are plain pydantic models: they carry data between the subscriber
directory, the period resolver, the dispatcher and the orchestrator, and
double as the response bodies of the on-demand trigger endpoint.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

BillingInterval = Literal["day", "week", "month", "year"]


def ensure_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BillingPeriod(BaseModel):
    """Half-open ``[start, end)`` window reconciled for one subscriber."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    start: datetime
    end: datetime
    source: Literal["provider", "calculated"]

    @field_validator("start", "end")
    @classmethod
    def normalize_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("end")
    @classmethod
    def validate_end_after_start(cls, v: datetime, info: Any) -> datetime:
        start = info.data.get("start")
        if start is not None and v <= start:
            raise ValueError(f"billing period end {v.isoformat()} must be after start {start.isoformat()}")
        return v

    def contains(self, ts: datetime) -> bool:
        return self.start <= ensure_utc(ts) < self.end


class MeteredLineItem(BaseModel):
    """One line item of a provider subscription."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    usage_type: str | None = None
    interval: str | None = None
    interval_count: int | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    product_metadata: dict[str, str] = Field(default_factory=dict)
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None

    @property
    def is_metered(self) -> bool:
        return self.usage_type == "metered"


class ProviderSubscription(BaseModel):
    """The provider's live subscription record, as read at reconciliation time."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    customer_id: str | None = None
    status: str
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    items: list[MeteredLineItem] = Field(default_factory=list)

    def metered_item(self) -> MeteredLineItem | None:
        """Return the first line item billed by metered usage, if any."""
        for item in self.items:
            if item.is_metered:
                return item
        return None

    def current_period(self, item: MeteredLineItem | None = None) -> BillingPeriod | None:
        """Authoritative current period, preferring the line item's own cycle."""
        candidates = []
        if item is not None:
            candidates.append((item.current_period_start, item.current_period_end))
        candidates.append((self.current_period_start, self.current_period_end))
        for start, end in candidates:
            if start is not None and end is not None and start < end:
                return BillingPeriod(start=start, end=end, source="provider")
        return None


class SubscriberAccount(BaseModel):
    """Directory view of one active metered subscriber for one run."""

    model_config = ConfigDict(populate_by_name=True)

    subscriber_id: uuid.UUID
    email: str
    external_customer_id: str
    external_subscription_id: str
    metered_line_item_id: str
    billing_interval: str = "month"
    interval_multiplier: int = Field(default=1, ge=1)
    event_type_label: str
    provider_period: BillingPeriod | None = None


class UsageRecord(BaseModel):
    """One discrete usage record submitted to the metering provider."""

    model_config = ConfigDict(populate_by_name=True)

    identifier: str
    event_name: str
    customer_id: str
    line_item_id: str
    value: int = 1
    timestamp: datetime


class UsageCounts(BaseModel):
    """Diagnostic counts of ledger entries inside a billing period."""

    total: int = 0
    billed: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def unbilled(self) -> int:
        return self.total - self.billed


OutcomeStatus = Literal["billed", "empty", "skipped", "failed", "commit_failed"]


class SubscriberOutcome(BaseModel):
    """Terminal state of one subscriber in one reconciliation run."""

    subscriber_id: uuid.UUID
    status: OutcomeStatus
    period: BillingPeriod | None = None
    units: int = 0
    notified: bool = False
    error: str | None = None


class ReconciliationReport(BaseModel):
    """Summary of a batch run across all eligible subscribers."""

    started_at: datetime
    finished_at: datetime | None = None
    test_mode: bool = False
    interrupted: bool = False
    outcomes: list[SubscriberOutcome] = Field(default_factory=list)

    def _count(self, *statuses: str) -> int:
        return sum(1 for o in self.outcomes if o.status in statuses)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def billed(self) -> int:
        return self._count("billed")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def skipped(self) -> int:
        return self._count("skipped")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed(self) -> int:
        return self._count("failed", "commit_failed")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def units_billed(self) -> int:
        return sum(o.units for o in self.outcomes if o.status == "billed")
