"""Billing period resolution.

The provider's current period is authoritative because it follows the
subscription's real anchor instant (a daily plan started at 14:00 on the
17th bills ``[17th 14:00, 18th 14:00)``).  Only when it is unavailable do we
fall back to a calendar-aligned window: "now" truncated to the interval
boundary is the exclusive end, and the start lies ``multiplier`` calendar
units before it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from dateutil.relativedelta import relativedelta

from meterwise.schema import BillingPeriod, SubscriberAccount, ensure_utc

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = "month"

_STEPS = {
    "day": lambda n: relativedelta(days=n),
    "week": lambda n: relativedelta(weeks=n),
    "month": lambda n: relativedelta(months=n),
    "year": lambda n: relativedelta(years=n),
}


def truncate_to_interval(now: datetime, interval: str) -> datetime:
    """Floor *now* (UTC) to the start of its day / ISO week / month / year."""
    midnight = ensure_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)
    if interval == "day":
        return midnight
    if interval == "week":
        return midnight - timedelta(days=midnight.weekday())
    if interval == "month":
        return midnight.replace(day=1)
    if interval == "year":
        return midnight.replace(month=1, day=1)
    raise ValueError(f"unknown billing interval {interval!r}")


def calculate_period(
    interval: str,
    multiplier: int = 1,
    now: datetime | None = None,
) -> BillingPeriod:
    """Calendar-aligned ``[boundary - multiplier units, boundary)`` ending at or before *now*."""
    if interval not in _STEPS:
        logger.warning("Unknown billing interval %r, defaulting to %s", interval, DEFAULT_INTERVAL)
        interval = DEFAULT_INTERVAL
    if multiplier < 1:
        raise ValueError(f"interval multiplier must be positive, got {multiplier}")

    now = ensure_utc(now) if now else datetime.now(timezone.utc)
    end = truncate_to_interval(now, interval)
    start = end - _STEPS[interval](multiplier)
    return BillingPeriod(start=start, end=end, source="calculated")


def resolve_billing_period(
    account: SubscriberAccount,
    now: datetime | None = None,
) -> BillingPeriod:
    """Pick the period to reconcile for *account* in this run."""
    if account.provider_period is not None:
        return account.provider_period

    period = calculate_period(account.billing_interval, account.interval_multiplier, now)
    logger.info(
        "No provider period for subscriber %s; using calculated %s x%d period [%s, %s)",
        account.subscriber_id,
        account.billing_interval,
        account.interval_multiplier,
        period.start.isoformat(),
        period.end.isoformat(),
    )
    return period
