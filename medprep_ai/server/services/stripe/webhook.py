"""
Stripe webhook processing.

Events are verified with the webhook signing secret, then dispatched by
type. The prospect funnel (checkout sessions) and the subscription mirror
(subscriptions and invoices) are updated from them. An event whose
processing fails is parked in the webhook retry queue and replayed later
by ``process_webhook_retry_queue``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import utc_now
from medprep_ai.core.database.entities.subscriptions import Prospect, ProspectStatus, RetryStatus, WebhookRetryQueue
from medprep_ai.core.database.entities.users import SubscriptionStatus
from medprep_ai.core.database.repositories import (
    ProspectRepository,
    SubscriptionRepository,
    UserRepository,
    WebhookRetryQueueRepository,
)
from medprep_ai.core.monitoring import log_webhook_event
from medprep_ai.server.core.config import StripeSettings
from medprep_ai.server.hooks.subscription_sync import RETRY_DELAY, RETRY_MAX_RETRIES, sync_user_subscription

from .config import load_stripe_config
from .errors import WebhookSignatureError
from .helpers import as_dict, from_unix, object_id
from .subscriptions import append_history, history_entry, upsert_subscription

logger = logging.getLogger(__name__)

PROSPECT_ID_KEYS = ("prospectId", "prospect_id", "prospectID")


class WebhookProcessingError(Exception):
    """An event could not be applied; it will be retried."""


class StripeWebhookService:
    def __init__(self, session: AsyncSession, config: Optional[StripeSettings] = None):
        self.session = session
        self.config = config or load_stripe_config()
        self.prospects = ProspectRepository(session)
        self.subscriptions = SubscriptionRepository(session)
        self.retry_queue = WebhookRetryQueueRepository(session)

        self._handlers: Dict[str, Callable[[Dict[str, Any], str, datetime], Awaitable[Optional[str]]]] = {
            "checkout.session.completed": self._on_checkout_completed,
            "checkout.session.expired": self._on_checkout_expired,
            "checkout.session.async_payment_failed": self._on_checkout_payment_failed,
            "customer.subscription.created": self._on_subscription_changed,
            "customer.subscription.updated": self._on_subscription_changed,
            "customer.subscription.deleted": self._on_subscription_deleted,
            "invoice.payment_succeeded": self._on_invoice_paid,
            "invoice.payment_failed": self._on_invoice_failed,
        }

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify the signature of a raw webhook body.

        Raises:
            WebhookSignatureError: If the signature is missing or invalid
        """
        if not signature:
            raise WebhookSignatureError("missing Stripe-Signature header")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.config.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning(f"Invalid Stripe webhook signature: {e}")
            raise WebhookSignatureError(str(e)) from e
        return as_dict(event)

    async def handle_webhook(
        self, payload: bytes, signature: Optional[str], now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Verify, process and, on failure, enqueue a webhook call."""
        event = self.construct_event(payload, signature)
        result = await self.process_event(event, now)
        if not result["success"]:
            await self.enqueue_failed_event(event, result.get("error") or "unknown error", now)
        return {"received": True}

    async def process_event(self, event: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Apply one Stripe event.

        Returns:
            ``{success, eventType, subscriptionId?, error?}``
        """
        now = now or utc_now()
        event_type = event.get("type", "")
        event_id = event.get("id", "")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug(f"Ignoring Stripe event {event_id} of type {event_type}")
            return {"success": True, "eventType": event_type}

        data_object = as_dict((event.get("data") or {}).get("object"))
        try:
            subscription_id = await handler(data_object, event_type, now)
        except Exception as e:
            logger.error(f"Stripe event {event_id} ({event_type}) failed: {e}", exc_info=True)
            await self.session.rollback()
            log_webhook_event(event_id, event_type, success=False, error=str(e))
            return {"success": False, "eventType": event_type, "error": str(e)}

        log_webhook_event(event_id, event_type, success=True)
        result: Dict[str, Any] = {"success": True, "eventType": event_type}
        if subscription_id:
            result["subscriptionId"] = subscription_id
        return result

    async def enqueue_failed_event(self, event: Dict[str, Any], error: str, now: Optional[datetime] = None) -> None:
        event_id = event.get("id") or ""
        if await self.retry_queue.get_by_event_id(event_id) is not None:
            logger.debug(f"Stripe event {event_id} already queued for retry")
            return
        await self.retry_queue.create(
            WebhookRetryQueue(
                event_id=event_id,
                event_type=event.get("type") or "unknown",
                payload=event,
                retry_count=0,
                max_retries=RETRY_MAX_RETRIES,
                last_error=error,
                status=RetryStatus.PENDING.value,
                next_retry_at=(now or utc_now()) + RETRY_DELAY,
            )
        )
        logger.info(f"Stripe event {event_id} queued for retry")

    async def replay_subscription_sync(self, payload: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        """Retry a user synchronisation parked because the user did not exist yet."""
        event_type = "subscription_sync.missing_user"
        subscription = await self.subscriptions.get_by_subscription_id(str(payload.get("subscriptionId")))
        if subscription is None:
            return {"success": False, "eventType": event_type, "error": "Subscription not found"}
        if not subscription.user_id or await UserRepository(self.session).get_by_id(subscription.user_id) is None:
            return {"success": False, "eventType": event_type, "error": payload.get("reason") or "User not found"}
        await sync_user_subscription(self.session, subscription, now)
        return {"success": True, "eventType": event_type, "subscriptionId": subscription.subscription_id}

    # Prospects

    async def _find_prospect(
        self, metadata: Optional[Dict[str, Any]], email: Optional[str], customer_id: Optional[str]
    ) -> Optional[Prospect]:
        metadata = metadata or {}
        for key in PROSPECT_ID_KEYS:
            if metadata.get(key):
                prospect = await self.prospects.get_by_id(str(metadata[key]))
                if prospect is not None:
                    return prospect
        if customer_id:
            prospect = await self.prospects.get_by_customer(customer_id)
            if prospect is not None:
                return prospect
        if email:
            return await self.prospects.get_by_email(email)
        return None

    async def _set_prospect_status(self, prospect: Optional[Prospect], status: ProspectStatus, **changes) -> None:
        if prospect is None:
            logger.warning(f"No prospect found to mark as {status.value}")
            return
        prospect.status = status.value
        for key, value in changes.items():
            if value is not None:
                setattr(prospect, key, value)
        await self.prospects.update(prospect)
        logger.info(f"Prospect {prospect.id} is now {status.value}")

    async def _on_checkout_completed(self, checkout: Dict[str, Any], event_type: str, now: datetime) -> Optional[str]:
        customer_id = object_id(checkout.get("customer"))
        subscription_id = object_id(checkout.get("subscription"))
        prospect = await self._find_prospect(
            checkout.get("metadata"), (checkout.get("customer_details") or {}).get("email"), customer_id
        )
        await self._set_prospect_status(
            prospect,
            ProspectStatus.READY_FOR_PASSWORD,
            stripe_customer_id=customer_id,
            checkout_session_id=checkout.get("id"),
            subscription_id=subscription_id,
        )
        return subscription_id

    async def _on_checkout_expired(self, checkout: Dict[str, Any], event_type: str, now: datetime) -> Optional[str]:
        prospect = await self._find_prospect(checkout.get("metadata"), None, object_id(checkout.get("customer")))
        await self._set_prospect_status(prospect, ProspectStatus.ABANDONED)
        return None

    async def _on_checkout_payment_failed(self, checkout: Dict[str, Any], event_type: str, now: datetime) -> Optional[str]:
        prospect = await self._find_prospect(
            checkout.get("metadata"),
            (checkout.get("customer_details") or {}).get("email"),
            object_id(checkout.get("customer")),
        )
        await self._set_prospect_status(prospect, ProspectStatus.PAYMENT_FAILED)
        return None

    # Subscriptions

    async def _on_subscription_changed(self, subscription: Dict[str, Any], event_type: str, now: datetime) -> Optional[str]:
        customer_id = object_id(subscription.get("customer"))
        customer = as_dict(
            await asyncio.to_thread(stripe.Customer.retrieve, customer_id, api_key=self.config.secret_key)
        )
        if customer.get("deleted"):
            raise WebhookProcessingError("Customer has been deleted")
        email = customer.get("email")
        if not email:
            raise WebhookProcessingError("Customer email not found")
        user = await UserRepository(self.session).get_by_email(email)
        if user is None:
            raise WebhookProcessingError(f"User not found for email: {email}")

        stored = await upsert_subscription(
            self.session, subscription, user.id, event_type, now=now
        )
        return stored.subscription_id

    async def _on_subscription_deleted(self, data: Dict[str, Any], event_type: str, now: datetime) -> Optional[str]:
        subscription = await self.subscriptions.get_by_subscription_id(data.get("id", ""))
        if subscription is None:
            raise WebhookProcessingError(f"Subscription not found: {data.get('id')}")
        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.cancel_at_period_end = bool(data.get("cancel_at_period_end"))
        append_history(subscription, history_entry("subscription_canceled", data, now))
        subscription = await self.subscriptions.update(subscription)
        await sync_user_subscription(self.session, subscription, now)
        return subscription.subscription_id

    # Invoices

    @staticmethod
    def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
        subscription_id = object_id(invoice.get("subscription"))
        if subscription_id:
            return subscription_id
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        return object_id(details.get("subscription"))

    async def _on_invoice_paid(self, invoice: Dict[str, Any], event_type: str, now: datetime) -> Optional[str]:
        subscription_id = self._invoice_subscription_id(invoice)
        if subscription_id:
            subscription = await self.subscriptions.get_by_subscription_id(subscription_id)
            if subscription is not None:
                paid_at = from_unix((invoice.get("status_transitions") or {}).get("paid_at"))
                subscription.last_payment_at = paid_at or now
                if isinstance(invoice.get("amount_paid"), (int, float)):
                    subscription.amount = invoice["amount_paid"] / 100
                if invoice.get("currency"):
                    subscription.currency = invoice["currency"].upper()
                append_history(subscription, history_entry(event_type, invoice, now))
                await self.subscriptions.update(subscription)
            else:
                logger.warning(f"Invoice {invoice.get('id')} paid for unknown subscription {subscription_id}")

        prospect = await self._find_prospect(
            (invoice.get("subscription_details") or {}).get("metadata"),
            invoice.get("customer_email"),
            object_id(invoice.get("customer")),
        )
        if prospect is not None and prospect.status != ProspectStatus.CONVERTED.value:
            await self._set_prospect_status(prospect, ProspectStatus.READY_FOR_PASSWORD)
        return subscription_id

    async def _on_invoice_failed(self, invoice: Dict[str, Any], event_type: str, now: datetime) -> Optional[str]:
        subscription_id = self._invoice_subscription_id(invoice)
        if subscription_id:
            subscription = await self.subscriptions.get_by_subscription_id(subscription_id)
            if subscription is not None:
                subscription.status = SubscriptionStatus.PAST_DUE.value
                append_history(subscription, history_entry(event_type, invoice, now))
                subscription = await self.subscriptions.update(subscription)
                await sync_user_subscription(self.session, subscription, now)
            else:
                logger.warning(f"Invoice {invoice.get('id')} failed for unknown subscription {subscription_id}")

        prospect = await self._find_prospect(
            (invoice.get("subscription_details") or {}).get("metadata"),
            invoice.get("customer_email"),
            object_id(invoice.get("customer")),
        )
        if prospect is not None:
            await self._set_prospect_status(prospect, ProspectStatus.PAYMENT_FAILED)
        return subscription_id
