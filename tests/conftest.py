"""Shared test fixtures for the meterwise test suite.

Uses SQLite + aiosqlite for a fast, self-contained test database.
"""

from __future__ import annotations

import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

os.environ.setdefault("MW_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("MW_ENVIRONMENT", "staging")

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from meterwise.errors import MeteredDimensionMissing, MissingLinkage, ProviderError, ProviderUnavailable
from meterwise.models.base import Base
from meterwise.models.subscriber import Subscriber
from meterwise.models.usage_event import UsageEvent
from meterwise.schema import (
    BillingPeriod,
    MeteredLineItem,
    ProviderSubscription,
    SubscriberAccount,
    UsageRecord,
)

# Import all models so Base.metadata has them
import meterwise.models  # noqa: F401


# ---------------------------------------------------------------------------
# Test database engine (SQLite in-memory via aiosqlite)
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PERIOD_START = datetime(2025, 11, 15, 10, 0, tzinfo=timezone.utc)
PERIOD_END = datetime(2025, 12, 15, 10, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory database per test; yields the session factory."""
    # One shared connection so every session sees the same in-memory database.
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    """A single session for tests that work on one unit of work."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeMeteringProvider:
    """In-memory provider: records accepted usage, fails on demand."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, ProviderSubscription] = {}
        self.submitted: list[UsageRecord] = []
        self.attempts: list[UsageRecord] = []
        self.fail_customers: set[str] = set()
        self.fail_identifiers: set[str] = set()
        self.unknown_events: set[str] = set()
        self.unavailable = False
        self.on_submit = None  # optional async hook(record)

    async def get_subscription(self, subscription_id: str) -> ProviderSubscription:
        if self.unavailable:
            raise ProviderUnavailable("provider down")
        try:
            return self.subscriptions[subscription_id]
        except KeyError:
            raise MissingLinkage(f"subscription {subscription_id} not found") from None

    async def submit_usage(self, record: UsageRecord) -> None:
        self.attempts.append(record)
        if self.on_submit is not None:
            await self.on_submit(record)
        if record.event_name in self.unknown_events:
            raise MeteredDimensionMissing(f"no meter for {record.event_name}")
        if record.customer_id in self.fail_customers or record.identifier in self.fail_identifiers:
            raise ProviderError(f"rejected {record.identifier}", status_code=500)
        self.submitted.append(record)


class RecordingNotifier:
    def __init__(self, result: bool = True, error: Exception | None = None) -> None:
        self.calls: list[tuple[uuid.UUID, int, BillingPeriod]] = []
        self.result = result
        self.error = error

    async def __call__(self, account: SubscriberAccount, units: int, period: BillingPeriod) -> bool:
        self.calls.append((account.subscriber_id, units, period))
        if self.error is not None:
            raise self.error
        return self.result


def make_subscription(
    subscription_id: str,
    customer_id: str,
    *,
    item_id: str = "si_metered",
    start: datetime | None = PERIOD_START,
    end: datetime | None = PERIOD_END,
    interval: str = "month",
    interval_count: int = 1,
    item_metadata: dict[str, str] | None = None,
    product_metadata: dict[str, str] | None = None,
    metered: bool = True,
) -> ProviderSubscription:
    return ProviderSubscription(
        id=subscription_id,
        customer_id=customer_id,
        status="active",
        current_period_start=start,
        current_period_end=end,
        items=[
            MeteredLineItem(id="si_base", usage_type="licensed", interval=interval, interval_count=1),
            MeteredLineItem(
                id=item_id,
                usage_type="metered" if metered else "licensed",
                interval=interval,
                interval_count=interval_count,
                metadata=item_metadata or {},
                product_metadata=product_metadata or {},
            ),
        ],
    )


@pytest.fixture
def provider() -> FakeMeteringProvider:
    return FakeMeteringProvider()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------

_created_seq = iter(range(1_000_000))


@pytest.fixture
def add_subscriber(session_factory, provider: FakeMeteringProvider):
    """Factory: persist an active subscriber and register its provider subscription."""

    async def _add(
        name: str = "x",
        *,
        register: bool = True,
        subscription: dict[str, Any] | None = None,
        **overrides: Any,
    ) -> Subscriber:
        fields: dict[str, Any] = {
            "id": uuid.uuid4(),
            "email": f"{name}@example.com",
            "name": name,
            "stripe_customer_id": f"cus_{name}",
            "stripe_subscription_id": f"sub_{name}",
            "subscription_status": "active",
            "billing_interval": "month",
            "interval_count": 1,
            "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=next(_created_seq)),
        }
        fields.update(overrides)
        subscriber = Subscriber(**fields)
        async with session_factory() as session:
            session.add(subscriber)
            await session.commit()

        if register and subscriber.stripe_subscription_id:
            provider.subscriptions[subscriber.stripe_subscription_id] = make_subscription(
                subscriber.stripe_subscription_id,
                subscriber.stripe_customer_id,
                **(subscription or {}),
            )
        return subscriber

    return _add


@pytest.fixture
def add_events(session_factory):
    """Factory: persist unbilled usage events for a subscriber, return their ids."""

    async def _add(subscriber_id: uuid.UUID, *occurred: datetime, event_type: str = "review_new_customer") -> list[int]:
        events = [
            UsageEvent(subscriber_id=subscriber_id, event_type=event_type, occurred_at=ts, billed=False)
            for ts in occurred
        ]
        async with session_factory() as session:
            session.add_all(events)
            await session.commit()
        return [e.id for e in events]

    return _add


@pytest.fixture
def load_events(session_factory):
    """Fetch a subscriber's ledger rows keyed by id."""

    async def _load(subscriber_id: uuid.UUID) -> dict[int, UsageEvent]:
        async with session_factory() as session:
            result = await session.execute(
                select(UsageEvent).where(UsageEvent.subscriber_id == subscriber_id)
            )
            return {e.id: e for e in result.scalars().all()}

    return _load


@pytest.fixture
def subscription_factory():
    return make_subscription
