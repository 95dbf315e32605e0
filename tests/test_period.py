"""Tests for billing period resolution."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from meterwise.metering.period import calculate_period, resolve_billing_period, truncate_to_interval
from meterwise.schema import BillingPeriod, SubscriberAccount

UTC = timezone.utc


def _account(**overrides) -> SubscriberAccount:
    fields = dict(
        subscriber_id=uuid.uuid4(),
        email="x@example.com",
        external_customer_id="cus_x",
        external_subscription_id="sub_x",
        metered_line_item_id="si_x",
        billing_interval="month",
        interval_multiplier=1,
        event_type_label="whatsapp_message",
    )
    fields.update(overrides)
    return SubscriberAccount(**fields)


class TestTruncation:
    NOW = datetime(2024, 3, 14, 15, 9, 26, 535, tzinfo=UTC)  # a Thursday

    def test_day(self) -> None:
        assert truncate_to_interval(self.NOW, "day") == datetime(2024, 3, 14, tzinfo=UTC)

    def test_week_starts_monday(self) -> None:
        assert truncate_to_interval(self.NOW, "week") == datetime(2024, 3, 11, tzinfo=UTC)

    def test_month(self) -> None:
        assert truncate_to_interval(self.NOW, "month") == datetime(2024, 3, 1, tzinfo=UTC)

    def test_year(self) -> None:
        assert truncate_to_interval(self.NOW, "year") == datetime(2024, 1, 1, tzinfo=UTC)

    def test_non_utc_input_is_converted_first(self) -> None:
        # 01:30 on the 15th in UTC+3 is still the 14th in UTC.
        plus3 = timezone(timedelta(hours=3))
        now = datetime(2024, 3, 15, 1, 30, tzinfo=plus3)
        assert truncate_to_interval(now, "day") == datetime(2024, 3, 14, tzinfo=UTC)


class TestCalculatedPeriod:
    def test_quarterly_is_three_calendar_months_not_ninety_days(self) -> None:
        period = calculate_period("month", 3, now=datetime(2023, 5, 2, 8, 0, tzinfo=UTC))
        assert period.source == "calculated"
        assert period.end == datetime(2023, 5, 1, tzinfo=UTC)
        assert period.start == datetime(2023, 2, 1, tzinfo=UTC)
        assert (period.end - period.start).days == 89

    def test_quarterly_across_leap_february(self) -> None:
        period = calculate_period("month", 3, now=datetime(2024, 5, 20, tzinfo=UTC))
        assert period.start == datetime(2024, 2, 1, tzinfo=UTC)
        assert period.end == datetime(2024, 5, 1, tzinfo=UTC)
        assert (period.end - period.start).days == 90

        period = calculate_period("month", 3, now=datetime(2024, 6, 15, tzinfo=UTC))
        assert period.start == datetime(2024, 3, 1, tzinfo=UTC)
        assert (period.end - period.start).days == 92

    def test_single_month(self) -> None:
        period = calculate_period("month", 1, now=datetime(2024, 3, 10, tzinfo=UTC))
        assert period.start == datetime(2024, 2, 1, tzinfo=UTC)
        assert period.end == datetime(2024, 3, 1, tzinfo=UTC)
        assert (period.end - period.start).days == 29

    def test_year_uses_calendar_years(self) -> None:
        period = calculate_period("year", 2, now=datetime(2025, 7, 4, tzinfo=UTC))
        assert period.start == datetime(2023, 1, 1, tzinfo=UTC)
        assert period.end == datetime(2025, 1, 1, tzinfo=UTC)

    def test_week_multiplier(self) -> None:
        period = calculate_period("week", 2, now=datetime(2024, 3, 14, tzinfo=UTC))
        assert period.end == datetime(2024, 3, 11, tzinfo=UTC)
        assert period.start == datetime(2024, 2, 26, tzinfo=UTC)

    def test_day_multiplier(self) -> None:
        period = calculate_period("day", 3, now=datetime(2024, 3, 1, 12, tzinfo=UTC))
        assert period.end == datetime(2024, 3, 1, tzinfo=UTC)
        assert period.start == datetime(2024, 2, 27, tzinfo=UTC)

    def test_unknown_interval_defaults_to_month_with_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="meterwise.metering.period"):
            period = calculate_period("fortnight", 1, now=datetime(2024, 3, 10, tzinfo=UTC))
        assert period.start == datetime(2024, 2, 1, tzinfo=UTC)
        assert period.end == datetime(2024, 3, 1, tzinfo=UTC)
        assert "fortnight" in caplog.text

    def test_non_positive_multiplier_rejected(self) -> None:
        with pytest.raises(ValueError):
            calculate_period("month", 0, now=datetime(2024, 3, 10, tzinfo=UTC))


class TestResolveBillingPeriod:
    def test_provider_period_takes_precedence(self) -> None:
        provider_period = BillingPeriod(
            start=datetime(2024, 3, 17, 14, 0, tzinfo=UTC),
            end=datetime(2024, 3, 18, 14, 0, tzinfo=UTC),
            source="provider",
        )
        account = _account(billing_interval="day", provider_period=provider_period)

        period = resolve_billing_period(account, now=datetime(2024, 3, 18, 9, 0, tzinfo=UTC))

        assert period == provider_period
        assert period.source == "provider"
        # The calendar fallback would have been [17th 00:00, 18th 00:00).
        assert period.start.hour == 14

    def test_falls_back_to_calculated(self) -> None:
        account = _account(billing_interval="month", interval_multiplier=3)
        period = resolve_billing_period(account, now=datetime(2023, 5, 2, tzinfo=UTC))
        assert period.source == "calculated"
        assert period.start == datetime(2023, 2, 1, tzinfo=UTC)

    def test_resolution_is_pure(self) -> None:
        account = _account()
        now = datetime(2024, 3, 10, tzinfo=UTC)
        assert resolve_billing_period(account, now) == resolve_billing_period(account, now)


class TestBillingPeriod:
    def test_end_must_be_after_start(self) -> None:
        ts = datetime(2024, 1, 1, tzinfo=UTC)
        with pytest.raises(ValidationError):
            BillingPeriod(start=ts, end=ts, source="calculated")

    def test_end_is_exclusive(self) -> None:
        period = BillingPeriod(
            start=datetime(2024, 1, 1, tzinfo=UTC),
            end=datetime(2024, 2, 1, tzinfo=UTC),
            source="calculated",
        )
        assert period.contains(datetime(2024, 1, 1, tzinfo=UTC))
        assert not period.contains(datetime(2024, 2, 1, tzinfo=UTC))

    def test_naive_bounds_are_treated_as_utc(self) -> None:
        period = BillingPeriod(start=datetime(2024, 1, 1), end=datetime(2024, 2, 1), source="provider")
        assert period.start.tzinfo is not None
