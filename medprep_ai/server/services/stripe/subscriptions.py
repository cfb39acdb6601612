"""
Local mirror of Stripe subscriptions.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import utc_now
from medprep_ai.core.database.entities.subscriptions import Subscription
from medprep_ai.core.database.repositories import SubscriptionRepository
from medprep_ai.server.hooks.subscription_sync import sync_user_subscription

from .helpers import from_unix, get_period_end, get_period_start, get_price, map_stripe_status, object_id, sanitize

logger = logging.getLogger(__name__)

KEEP_WHEN_MISSING = frozenset({"user_id", "customer_id", "product_id", "price_id", "amount"})


def history_entry(event_type: str, raw: Any, now: Optional[datetime] = None) -> Dict[str, Any]:
    return {"type": event_type, "occurredAt": (now or utc_now()).isoformat(), "raw": sanitize(raw)}


def append_history(subscription: Subscription, entry: Dict[str, Any]) -> None:
    subscription.history = [*(subscription.history or []), entry]


async def upsert_subscription(
    session: AsyncSession,
    stripe_subscription: Dict[str, Any],
    user_id: Optional[str],
    event_type: str,
    status: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Subscription:
    """
    Create or update the mirror of a Stripe subscription, then sync its user.

    Args:
        session: Database session
        stripe_subscription: Stripe subscription object as a dict
        user_id: Owner of the subscription, when known
        event_type: Name recorded in the subscription history
        status: Platform status to store, mapped from the Stripe status by default
        now: Reference time (naive UTC)

    Returns:
        The stored subscription
    """
    repository = SubscriptionRepository(session)
    price = get_price(stripe_subscription)
    unit_amount = price.get("unit_amount")
    values = {
        "user_id": user_id,
        "customer_id": object_id(stripe_subscription.get("customer")),
        "product_id": object_id(price.get("product")),
        "price_id": price.get("id"),
        "status": status or map_stripe_status(stripe_subscription.get("status")),
        "trial_end": from_unix(stripe_subscription.get("trial_end")),
        "current_period_start": get_period_start(stripe_subscription),
        "current_period_end": get_period_end(stripe_subscription),
        "cancel_at_period_end": bool(stripe_subscription.get("cancel_at_period_end")),
        "amount": unit_amount / 100 if isinstance(unit_amount, (int, float)) else None,
        "currency": (price.get("currency") or "eur").upper(),
    }
    entry = history_entry(event_type, stripe_subscription, now)

    subscription = await repository.get_by_subscription_id(stripe_subscription["id"])
    if subscription is None:
        subscription = await repository.create(
            Subscription(subscription_id=stripe_subscription["id"], provider="stripe", history=[entry], **values)
        )
        logger.info(f"Subscription {subscription.subscription_id} created with status {subscription.status}")
    else:
        for key, value in values.items():
            if value is None and key in KEEP_WHEN_MISSING:
                continue
            setattr(subscription, key, value)
        append_history(subscription, entry)
        subscription = await repository.update(subscription)
        logger.info(f"Subscription {subscription.subscription_id} updated to status {subscription.status}")

    await sync_user_subscription(session, subscription, now)
    return subscription
