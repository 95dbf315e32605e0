"""Subscriber directory — who gets reconciled this run, and how.

Local rows say which subscribers are active and link them to the
provider; the provider's live subscription supplies the metered line item,
the authoritative current period and the event-label metadata.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from meterwise.config import settings
from meterwise.errors import ConfigurationError, MeteredDimensionMissing, MissingLinkage, ProviderUnavailable
from meterwise.models.subscriber import Subscriber
from meterwise.providers.base import MeteringProvider
from meterwise.schema import MeteredLineItem, SubscriberAccount

logger = logging.getLogger(__name__)

BILLABLE_STATUSES = frozenset({"active", "trialing", "past_due"})


def resolve_event_label(
    item: MeteredLineItem | None,
    *,
    metadata_key: str | None = None,
    default: str | None = None,
) -> str:
    """First non-empty label from: line item metadata, product metadata, default."""
    key = metadata_key or settings.event_type_metadata_key
    candidates: list[str | None] = []
    if item is not None:
        candidates += [item.metadata.get(key), item.product_metadata.get(key)]
    candidates.append(default or settings.default_event_type)
    return next(label for label in candidates if label)


async def list_active_subscribers(db: AsyncSession) -> list[Subscriber]:
    """Subscribers whose local subscription state is active, oldest first."""
    result = await db.execute(
        select(Subscriber)
        .where(Subscriber.subscription_status == "active")
        .order_by(Subscriber.created_at, Subscriber.id)
    )
    return list(result.scalars().all())


async def resolve_account(subscriber: Subscriber, provider: MeteringProvider) -> SubscriberAccount:
    """Build the run-time view of *subscriber* from the provider's live record.

    Raises :class:`ConfigurationError` when the subscriber cannot be billed
    (missing linkage or no metered line item).  When the provider is
    unreachable but a metered item id is stored locally, the account is
    returned without a provider period so the resolver falls back.
    """
    if not subscriber.stripe_customer_id or not subscriber.stripe_subscription_id:
        raise MissingLinkage(f"subscriber {subscriber.id} has no provider customer/subscription linkage")

    try:
        subscription = await provider.get_subscription(subscriber.stripe_subscription_id)
    except ProviderUnavailable:
        if not subscriber.stripe_metered_item_id:
            raise
        logger.warning(
            "Provider unreachable for subscriber %s; using stored metered item %s and default label",
            subscriber.id,
            subscriber.stripe_metered_item_id,
        )
        return SubscriberAccount(
            subscriber_id=subscriber.id,
            email=subscriber.email,
            external_customer_id=subscriber.stripe_customer_id,
            external_subscription_id=subscriber.stripe_subscription_id,
            metered_line_item_id=subscriber.stripe_metered_item_id,
            billing_interval=subscriber.billing_interval,
            interval_multiplier=subscriber.interval_count,
            event_type_label=resolve_event_label(None),
            provider_period=None,
        )

    if subscription.status not in BILLABLE_STATUSES:
        raise ConfigurationError(
            f"subscription {subscription.id} of subscriber {subscriber.id} is {subscription.status!r} at the provider"
        )

    item = subscription.metered_item()
    if item is None:
        raise MeteredDimensionMissing(
            f"subscription {subscription.id} of subscriber {subscriber.id} has no metered line item"
        )

    if subscription.customer_id and subscription.customer_id != subscriber.stripe_customer_id:
        raise MissingLinkage(
            f"subscription {subscription.id} belongs to customer {subscription.customer_id}, "
            f"not {subscriber.stripe_customer_id}"
        )

    return SubscriberAccount(
        subscriber_id=subscriber.id,
        email=subscriber.email,
        external_customer_id=subscriber.stripe_customer_id,
        external_subscription_id=subscription.id,
        metered_line_item_id=item.id,
        billing_interval=item.interval or subscriber.billing_interval,
        interval_multiplier=item.interval_count or subscriber.interval_count,
        event_type_label=resolve_event_label(item),
        provider_period=subscription.current_period(item),
    )

