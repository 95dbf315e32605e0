"""Interface the reconciliation pipeline expects from a metering provider."""

from __future__ import annotations

from typing import Protocol

from meterwise.schema import ProviderSubscription, UsageRecord


class MeteringProvider(Protocol):
    async def get_subscription(self, subscription_id: str) -> ProviderSubscription:
        """Read the live subscription, including its current billing period.

        Raises ``MissingLinkage`` when the subscription does not exist and
        ``ProviderUnavailable`` when it cannot be read right now.
        """
        ...

    async def submit_usage(self, record: UsageRecord) -> None:
        """Submit one usage record.

        Raises ``MeteredDimensionMissing`` when the provider does not know the
        record's metered dimension and ``ProviderError`` on any other rejection.
        """
        ...
