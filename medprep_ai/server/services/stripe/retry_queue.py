"""
Replay of failed Stripe webhook events.

``process_webhook_retry_queue`` takes the due entries of the retry queue and
replays them. ``run_retry_queue_loop`` calls it periodically for the whole
life of the application.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import utc_now
from medprep_ai.core.database.entities.subscriptions import RetryStatus, WebhookRetryQueue
from medprep_ai.core.database.repositories import WebhookRetryQueueRepository

from .webhook import StripeWebhookService

logger = logging.getLogger(__name__)

BATCH_SIZE = 50
BASE_BACKOFF_MINUTES = 5


def next_retry_delay(retry_count: int) -> timedelta:
    """Backoff after the ``retry_count``-th failed attempt: 5, 10, 20... minutes."""
    return timedelta(minutes=BASE_BACKOFF_MINUTES * 2 ** (max(retry_count, 1) - 1))


async def _replay(service: StripeWebhookService, entry: WebhookRetryQueue, now: datetime) -> Dict[str, Any]:
    payload = entry.payload or {}
    if payload.get("source") == "syncUserSubscription":
        return await service.replay_subscription_sync(payload, now)
    return await service.process_event(payload, now)


async def process_webhook_retry_queue(
    session: AsyncSession,
    service: Optional[StripeWebhookService] = None,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """
    Replay the due entries of the webhook retry queue once.

    Args:
        session: Database session
        service: Webhook service used to replay events
        now: Reference time (naive UTC)

    Returns:
        ``{"processed", "succeeded", "failed", "rescheduled"}`` counters
    """
    now = now or utc_now()
    service = service or StripeWebhookService(session)
    repository = WebhookRetryQueueRepository(session)
    stats = {"processed": 0, "succeeded": 0, "failed": 0, "rescheduled": 0}

    entries = await repository.list_due(now, limit=BATCH_SIZE)
    for entry in entries:
        entry.status = RetryStatus.PROCESSING.value
        entry = await repository.update(entry)
        stats["processed"] += 1

        try:
            result = await _replay(service, entry, now)
        except Exception as e:
            logger.error(f"Replay of {entry.event_id} raised: {e}", exc_info=True)
            await session.rollback()
            result = {"success": False, "error": str(e)}

        # The replay may have rolled the session back.
        await session.refresh(entry)
        if result.get("success"):
            entry.status = RetryStatus.SUCCESS.value
            entry.last_error = None
            stats["succeeded"] += 1
            logger.info(f"Webhook event {entry.event_id} replayed")
        else:
            entry.retry_count += 1
            entry.last_error = result.get("error") or "unknown error"
            if entry.retry_count >= entry.max_retries:
                entry.status = RetryStatus.FAILED.value
                stats["failed"] += 1
                logger.error(f"Webhook event {entry.event_id} failed after {entry.retry_count} attempts")
            else:
                entry.status = RetryStatus.PENDING.value
                entry.next_retry_at = now + next_retry_delay(entry.retry_count)
                stats["rescheduled"] += 1
                logger.warning(f"Webhook event {entry.event_id} rescheduled at {entry.next_retry_at.isoformat()}")
        await repository.update(entry)

    if entries:
        logger.info(f"Webhook retry queue run: {stats}")
    return stats


async def run_retry_queue_loop(session_factory, interval_seconds: int) -> None:
    """Run ``process_webhook_retry_queue`` every ``interval_seconds`` until cancelled."""
    logger.info(f"Webhook retry queue loop started (every {interval_seconds}s)")
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            async with session_factory() as session:
                await process_webhook_retry_queue(session)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Webhook retry queue run failed: {e}", exc_info=True)
