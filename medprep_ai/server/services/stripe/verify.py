"""
Checkout session verification.

Called by the frontend when Stripe redirects back after the checkout: a paid
session is turned into a local subscription owned by the user registered
with the checkout email.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database.entities.subscriptions import ProspectStatus
from medprep_ai.core.database.repositories import ProspectRepository, UserRepository
from medprep_ai.server.core.config import StripeSettings

from .config import load_stripe_config
from .errors import StripeServiceError
from .helpers import as_dict, map_verified_status, object_id
from .subscriptions import upsert_subscription

logger = logging.getLogger(__name__)


class StripeVerifyService:
    def __init__(self, session: AsyncSession, config: Optional[StripeSettings] = None):
        self.session = session
        self.config = config or load_stripe_config()

    async def verify_session(self, session_id: Optional[str], now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Verify a Checkout Session and activate the matching subscription.

        Returns:
            ``{success: True, status, subscriptionId, userId}`` for a paid
            session, ``{success: False, status, message}`` otherwise

        Raises:
            StripeServiceError: 400 without session id, 404 for an unknown
                session or user
        """
        if not session_id:
            raise StripeServiceError("sessionId est requis", status_code=400)

        try:
            checkout_session = as_dict(
                await asyncio.to_thread(
                    stripe.checkout.Session.retrieve, session_id, api_key=self.config.secret_key
                )
            )
        except stripe.InvalidRequestError as e:
            logger.warning(f"Checkout session {session_id} not found: {e}")
            raise StripeServiceError("Session non trouvée", status_code=404) from e

        payment_status = checkout_session.get("payment_status")
        if payment_status != "paid":
            return {"success": False, "status": payment_status, "message": "Paiement non complété"}

        email = (checkout_session.get("customer_details") or {}).get("email")
        user = await UserRepository(self.session).get_by_email(email) if email else None
        if user is None:
            raise StripeServiceError("Utilisateur non trouvé", status_code=404)

        subscription_id = object_id(checkout_session.get("subscription"))
        if not subscription_id:
            raise StripeServiceError("Aucun abonnement associé à cette session", status_code=400)
        stripe_subscription = as_dict(
            await asyncio.to_thread(stripe.Subscription.retrieve, subscription_id, api_key=self.config.secret_key)
        )

        status = map_verified_status(stripe_subscription.get("status"))
        subscription = await upsert_subscription(
            self.session, stripe_subscription, user.id, "checkout_verified", status=status, now=now
        )

        prospect = await ProspectRepository(self.session).get_by_checkout_session(session_id)
        if prospect is not None:
            prospect.status = ProspectStatus.CONVERTED.value
            prospect.subscription_id = subscription_id
            await ProspectRepository(self.session).update(prospect)

        logger.info(f"Checkout session {session_id} verified for user {user.id} ({status})")
        return {
            "success": True,
            "status": subscription.status,
            "subscriptionId": subscription_id,
            "userId": user.id,
        }
