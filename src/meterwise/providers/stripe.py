"""Stripe metering provider over the REST API.

Subscriptions are read with their prices and products expanded so the
metered line item, its billing cycle and its event-label metadata come back
in a single call.  Usage is reported as billing meter events, one per
ledger entry, carrying the ledger id as the meter event identifier.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

import httpx

from meterwise.config import settings
from meterwise.errors import (
    MeteredDimensionMissing,
    MissingLinkage,
    ProviderError,
    ProviderUnavailable,
)
from meterwise.schema import MeteredLineItem, ProviderSubscription, UsageRecord

logger = logging.getLogger(__name__)

USER_AGENT = "meterwise/0.1.0"


def _from_unix(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _to_unix(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or error)
    return resp.text[:200]


_NO_METER = re.compile(r"\bno (?:active )?meter\b", re.IGNORECASE)


def _is_missing_meter(resp: httpx.Response) -> bool:
    """True when Stripe rejected the event because no meter matches its name."""
    if resp.status_code not in (400, 404):
        return False
    try:
        body = resp.json()
    except ValueError:
        return False
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return False
    if error.get("param") == "event_name":
        return True
    return bool(_NO_METER.search(str(error.get("message") or "")))


def parse_subscription(data: dict[str, Any]) -> ProviderSubscription:
    """Convert a Stripe subscription object into a :class:`ProviderSubscription`."""
    items: list[MeteredLineItem] = []
    for raw in (data.get("items") or {}).get("data", []):
        price = raw.get("price") or {}
        recurring = price.get("recurring") or {}
        product = price.get("product")
        product_metadata = (product.get("metadata") or {}) if isinstance(product, dict) else {}
        items.append(
            MeteredLineItem(
                id=raw["id"],
                usage_type=recurring.get("usage_type"),
                interval=recurring.get("interval"),
                interval_count=recurring.get("interval_count"),
                metadata=raw.get("metadata") or {},
                product_metadata=product_metadata,
                current_period_start=_from_unix(raw.get("current_period_start")),
                current_period_end=_from_unix(raw.get("current_period_end")),
            )
        )

    customer = data.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")

    return ProviderSubscription(
        id=data["id"],
        customer_id=customer,
        status=data.get("status", "unknown"),
        current_period_start=_from_unix(data.get("current_period_start")),
        current_period_end=_from_unix(data.get("current_period_end")),
        items=items,
    )


class StripeMeteringProvider:
    """Async Stripe client implementing :class:`~meterwise.providers.MeteringProvider`.

    Use as an async context manager so the underlying connection pool is
    closed when the run ends::

        async with StripeMeteringProvider.from_settings() as provider:
            ...
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.stripe.com",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "User-Agent": USER_AGENT,
            },
        )

    @classmethod
    def from_settings(cls, transport: httpx.AsyncBaseTransport | None = None) -> StripeMeteringProvider:
        return cls(
            api_key=settings.stripe_api_key,
            base_url=settings.stripe_api_base,
            timeout=settings.provider_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> StripeMeteringProvider:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def get_subscription(self, subscription_id: str) -> ProviderSubscription:
        try:
            resp = await self._client.get(
                f"/v1/subscriptions/{subscription_id}",
                params=[("expand[]", "items.data.price.product")],
            )
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"subscription {subscription_id} unreachable: {exc}") from exc

        if resp.status_code == 404:
            raise MissingLinkage(f"subscription {subscription_id} not found at provider")
        if not resp.is_success:
            raise ProviderUnavailable(
                f"subscription {subscription_id} read failed: {_error_message(resp)}",
                status_code=resp.status_code,
            )
        return parse_subscription(resp.json())

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    async def submit_usage(self, record: UsageRecord) -> None:
        form = {
            "event_name": record.event_name,
            "timestamp": str(_to_unix(record.timestamp)),
            "identifier": record.identifier,
            "payload[stripe_customer_id]": record.customer_id,
            "payload[subscription_item]": record.line_item_id,
            "payload[value]": str(record.value),
        }
        try:
            resp = await self._client.post("/v1/billing/meter_events", data=form)
        except httpx.HTTPError as exc:
            raise ProviderError(f"usage record {record.identifier} not delivered: {exc}") from exc

        if resp.is_success:
            logger.debug("Usage record %s accepted (event=%s)", record.identifier, record.event_name)
            return

        message = _error_message(resp)
        if _is_missing_meter(resp):
            raise MeteredDimensionMissing(
                f"provider has no active meter for event {record.event_name!r}: {message}"
            )
        raise ProviderError(
            f"usage record {record.identifier} rejected (status={resp.status_code}): {message}",
            status_code=resp.status_code,
        )
