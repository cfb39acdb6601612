"""
Billing entity models.

- Subscription: local mirror of a Stripe subscription, with an event history
- Prospect: visitor going through the Stripe checkout before owning an account
- WebhookRetryQueue: Stripe events whose processing failed and must be replayed
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlmodel import JSON, Field

from ..base import DocumentBase, utc_now


class ProspectStatus(str, Enum):
    PENDING = "pending"
    PAYMENT_IN_PROGRESS = "payment_in_progress"
    READY_FOR_PASSWORD = "ready_for_password"
    PAYMENT_FAILED = "payment_failed"
    CONVERTED = "converted"
    ABANDONED = "abandoned"


class RetryStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class Subscription(DocumentBase, table=True):
    """Stripe subscription mirror.

    ``history`` accumulates ``{"type", "occurredAt", "raw"}`` entries, one
    per webhook event applied to the subscription.

    Table: mp_subscriptions
    """

    __tablename__ = "mp_subscriptions"
    __audit_collection__ = "subscriptions"

    user_id: Optional[str] = Field(default=None, max_length=64, index=True)
    provider: str = Field(default="stripe", max_length=32)
    customer_id: Optional[str] = Field(default=None, max_length=128, index=True)
    subscription_id: str = Field(max_length=128, unique=True, index=True)
    product_id: Optional[str] = Field(default=None, max_length=128)
    price_id: Optional[str] = Field(default=None, max_length=128)
    status: str = Field(default="incomplete", max_length=32)

    trial_end: Optional[datetime] = Field(default=None)
    current_period_start: Optional[datetime] = Field(default=None)
    current_period_end: Optional[datetime] = Field(default=None)
    cancel_at_period_end: bool = Field(default=False)
    last_payment_at: Optional[datetime] = Field(default=None)

    amount: Optional[float] = Field(default=None)
    currency: str = Field(default="EUR", max_length=8)

    history: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    extra_data: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)

    def __repr__(self) -> str:
        return f"Subscription(subscription_id={self.subscription_id}, user_id={self.user_id}, status={self.status})"


class Prospect(DocumentBase, table=True):
    """Checkout visitor.

    Table: mp_prospects
    """

    __tablename__ = "mp_prospects"
    __audit_collection__ = "prospects"

    email: str = Field(max_length=255, index=True)
    first_name: Optional[str] = Field(default=None, max_length=128)
    last_name: Optional[str] = Field(default=None, max_length=128)
    billing_cycle: str = Field(default="monthly", max_length=16)
    selected_price: Optional[str] = Field(default=None, max_length=128)
    status: str = Field(default=ProspectStatus.PENDING.value, max_length=32, index=True)

    stripe_customer_id: Optional[str] = Field(default=None, max_length=128)
    checkout_session_id: Optional[str] = Field(default=None, max_length=255, index=True)
    subscription_id: Optional[str] = Field(default=None, max_length=128)

    utm_source: Optional[str] = Field(default=None, max_length=255)
    utm_medium: Optional[str] = Field(default=None, max_length=255)
    utm_campaign: Optional[str] = Field(default=None, max_length=255)

    extra_data: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    attempt_count: int = Field(default=0)

    def __repr__(self) -> str:
        return f"Prospect(id={self.id}, email={self.email}, status={self.status})"


class WebhookRetryQueue(DocumentBase, table=True):
    """Stripe event waiting to be replayed.

    Table: mp_webhook_retry_queue
    """

    __tablename__ = "mp_webhook_retry_queue"

    event_id: str = Field(max_length=255, unique=True, index=True)
    event_type: str = Field(max_length=128)
    payload: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    retry_count: int = Field(default=0)
    max_retries: int = Field(default=3)
    last_error: Optional[str] = Field(default=None)
    status: str = Field(default=RetryStatus.PENDING.value, max_length=16, index=True)
    next_retry_at: datetime = Field(default_factory=utc_now, index=True)

    def __repr__(self) -> str:
        return f"WebhookRetryQueue(event_id={self.event_id}, status={self.status}, retry_count={self.retry_count})"
