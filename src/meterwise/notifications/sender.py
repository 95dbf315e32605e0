"""Usage-billed notifications — fire-and-forget webhook delivery.

Only sent after a successful ledger commit.  Delivery failures are logged
and swallowed: billing state that is already committed is never rolled
back because a notification did not go out.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from meterwise.config import settings
from meterwise.schema import BillingPeriod, SubscriberAccount

logger = logging.getLogger(__name__)


class UsageNotifier(Protocol):
    async def __call__(self, account: SubscriberAccount, units: int, period: BillingPeriod) -> bool: ...


def _format_usage_billed(account: SubscriberAccount, units: int, period: BillingPeriod) -> dict[str, Any]:
    """Format a usage-billed notification as a plain JSON payload."""
    return {
        "event": "usage.billed",
        "subscriber_id": str(account.subscriber_id),
        "email": account.email,
        "event_type": account.event_type_label,
        "units": units,
        "period_start": period.start.isoformat(),
        "period_end": period.end.isoformat(),
        "period_source": period.source,
    }


async def send_webhook(
    url: str,
    payload: dict[str, Any],
    timeout: int | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """POST a JSON payload to a webhook URL.

    Returns True on success (2xx), False otherwise.  Never raises — failures
    are logged and swallowed because notification delivery is fire-and-forget.
    """
    _timeout = timeout or settings.notification_timeout_seconds
    try:
        async with httpx.AsyncClient(timeout=_timeout, transport=transport) as client:
            resp = await client.post(url, json=payload)
            if resp.is_success:
                logger.info("Notification delivered to %s (status=%d)", url, resp.status_code)
                return True
            else:
                logger.warning(
                    "Notification delivery failed to %s (status=%d body=%s)",
                    url,
                    resp.status_code,
                    resp.text[:200],
                )
                return False
    except Exception:
        logger.exception("Notification delivery error for %s", url)
        return False


async def notify_usage_billed(
    account: SubscriberAccount,
    units: int,
    period: BillingPeriod,
    *,
    url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Tell the subscriber how many units were just billed.

    No-op (returns False) for ``units <= 0`` or when no webhook URL is set.
    """
    if units <= 0:
        return False

    target = url or settings.notification_webhook_url
    if not target:
        logger.info(
            "No notification webhook configured; subscriber %s billed %d units (not notified)",
            account.subscriber_id,
            units,
        )
        return False

    return await send_webhook(target, _format_usage_billed(account, units, period), transport=transport)
