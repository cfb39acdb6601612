"""
Billing repositories.

Data access for Stripe subscription mirrors, checkout prospects and the
webhook retry queue.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from ..entities.subscriptions import Prospect, RetryStatus, Subscription, WebhookRetryQueue
from .base import SQLModelRepository


class SubscriptionRepository(SQLModelRepository[Subscription]):
    """Repository for subscription data access operations using SQLModel."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Subscription)

    async def get_by_subscription_id(self, subscription_id: str) -> Optional[Subscription]:
        stmt = select(Subscription).where(Subscription.subscription_id == subscription_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_latest_for_user(self, user_id: str) -> Optional[Subscription]:
        """Most recently updated subscription of a user."""
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(col(Subscription.updated_at).desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()


class ProspectRepository(SQLModelRepository[Prospect]):
    """Repository for checkout prospects using SQLModel."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Prospect)

    async def get_by_checkout_session(self, checkout_session_id: str) -> Optional[Prospect]:
        stmt = select(Prospect).where(Prospect.checkout_session_id == checkout_session_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_by_email(self, email: str) -> Optional[Prospect]:
        """Most recently updated prospect using ``email`` (case insensitive)."""
        stmt = (
            select(Prospect)
            .where(func.lower(Prospect.email) == email.strip().lower())
            .order_by(col(Prospect.updated_at).desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_by_customer(self, stripe_customer_id: str) -> Optional[Prospect]:
        stmt = (
            select(Prospect)
            .where(Prospect.stripe_customer_id == stripe_customer_id)
            .order_by(col(Prospect.updated_at).desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()


class WebhookRetryQueueRepository(SQLModelRepository[WebhookRetryQueue]):
    """Repository for the Stripe webhook retry queue using SQLModel."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, WebhookRetryQueue)

    async def get_by_event_id(self, event_id: str) -> Optional[WebhookRetryQueue]:
        stmt = select(WebhookRetryQueue).where(WebhookRetryQueue.event_id == event_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_due(self, now: datetime, limit: int = 50) -> List[WebhookRetryQueue]:
        """Pending entries whose next retry time has come, oldest first.

        Args:
            now: Reference time (naive UTC)
            limit: Maximum number of entries

        Returns:
            Entries ready to be replayed
        """
        stmt = (
            select(WebhookRetryQueue)
            .where(
                WebhookRetryQueue.status == RetryStatus.PENDING.value,
                col(WebhookRetryQueue.next_retry_at) <= now,
            )
            .order_by(col(WebhookRetryQueue.next_retry_at))
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
