"""
Subscription to user synchronisation.

Runs after every subscription upsert and mirrors the subscription status and
period end on the owning user. When the user cannot be resolved yet (the
webhook arrived before the account existed) the sync is parked in the
webhook retry queue.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import utc_now
from medprep_ai.core.database.entities.subscriptions import RetryStatus, Subscription, WebhookRetryQueue
from medprep_ai.core.database.entities.users import SubscriptionStatus
from medprep_ai.core.database.repositories import UserRepository, WebhookRetryQueueRepository

logger = logging.getLogger(__name__)

RETRY_DELAY = timedelta(minutes=5)
RETRY_MAX_RETRIES = 3
VALID_STATUSES = frozenset(
    {
        SubscriptionStatus.TRIALING.value,
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.PAST_DUE.value,
        SubscriptionStatus.CANCELED.value,
    }
)

MISSING_USER_REASON = "Aucun utilisateur associé à cet abonnement"
UNKNOWN_USER_REASON = "Utilisateur introuvable lors de la synchronisation"


def normalize_status(status: Optional[str]) -> str:
    return status if status in VALID_STATUSES else SubscriptionStatus.NONE.value


async def sync_user_subscription(
    session: AsyncSession, subscription: Subscription, now: Optional[datetime] = None
) -> None:
    """
    Mirror a subscription on its user.

    Args:
        session: Database session
        subscription: The subscription just created or updated
        now: Reference time (naive UTC), defaults to the current time
    """
    subscription_ref = subscription.subscription_id or subscription.id
    if not subscription.user_id:
        logger.warning(f"Subscription {subscription_ref} has no user: {MISSING_USER_REASON}")
        await enqueue_missing_user_retry(session, subscription, None, MISSING_USER_REASON, now)
        return

    user = await UserRepository(session).get_by_id(subscription.user_id)
    if user is None:
        logger.warning(f"User {subscription.user_id} not found for subscription {subscription_ref}")
        await enqueue_missing_user_retry(session, subscription, subscription.user_id, UNKNOWN_USER_REASON, now)
        return

    user.subscription_status = normalize_status(subscription.status)
    user.subscription_end_date = subscription.current_period_end
    try:
        await UserRepository(session).update(user)
    except Exception as e:
        logger.error(f"Failed to sync subscription {subscription_ref} on user {user.id}: {e}")
        raise
    logger.debug(f"User {user.id} subscription status set to {user.subscription_status}")


async def enqueue_missing_user_retry(
    session: AsyncSession,
    subscription: Subscription,
    user_id: Optional[str],
    reason: str,
    now: Optional[datetime] = None,
) -> None:
    """Park a subscription sync in the retry queue; failures are only logged."""
    history = subscription.history or []
    latest_event: Dict[str, Any] = history[-1] if history else {}
    last_raw = latest_event.get("raw") if isinstance(latest_event.get("raw"), dict) else {}

    subscription_ref = subscription.subscription_id or subscription.id
    base_event_id = last_raw.get("id") if isinstance(last_raw.get("id"), str) else str(subscription_ref)
    event_id = f"subscription-sync-missing-user-{base_event_id}"
    next_retry_at = (now or utc_now()) + RETRY_DELAY
    payload = {
        **last_raw,
        "subscriptionId": subscription_ref,
        "userId": user_id,
        "reason": reason,
        "source": "syncUserSubscription",
    }

    repository = WebhookRetryQueueRepository(session)
    try:
        entry = await repository.get_by_event_id(event_id)
        if entry is not None:
            entry.status = RetryStatus.PENDING.value
            entry.next_retry_at = next_retry_at
            entry.last_error = reason
            entry.payload = entry.payload or payload
            await repository.update(entry)
        else:
            await repository.create(
                WebhookRetryQueue(
                    event_id=event_id,
                    event_type=latest_event.get("type") or "subscription_sync.missing_user",
                    payload=payload,
                    retry_count=0,
                    max_retries=RETRY_MAX_RETRIES,
                    last_error=reason,
                    status=RetryStatus.PENDING.value,
                    next_retry_at=next_retry_at,
                )
            )
        logger.info(f"Subscription {subscription_ref} queued for retry as {event_id}")
    except Exception as e:
        logger.error(f"Could not queue subscription {subscription_ref} for retry: {e}", exc_info=True)
        await session.rollback()
