"""
Stripe customer portal sessions.

Subscribers manage their payment method, invoices and cancellation on the
Stripe-hosted portal. The portal is opened for the Stripe customer of the
caller's latest subscription.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database.repositories import SubscriptionRepository
from medprep_ai.server.core.config import StripeSettings

from .config import load_stripe_config
from .errors import StripeServiceError
from .helpers import as_dict

logger = logging.getLogger(__name__)

RETURN_PATH = "/account/subscription"


class StripePortalService:
    def __init__(self, session: AsyncSession, config: Optional[StripeSettings] = None):
        self.session = session
        self.config = config or load_stripe_config()
        self.subscriptions = SubscriptionRepository(session)

    async def create_portal_session(self, customer_id: str, return_url: Optional[str] = None) -> str:
        """
        Open a customer portal session.

        Args:
            customer_id: Stripe customer id
            return_url: Page the portal links back to, the account subscription page by default

        Returns:
            The portal URL

        Raises:
            StripeServiceError: If Stripe rejects the call
        """
        return_url = return_url or f"{self.config.frontend_url.rstrip('/')}{RETURN_PATH}"
        try:
            portal_session = as_dict(
                await asyncio.to_thread(
                    stripe.billing_portal.Session.create,
                    api_key=self.config.secret_key,
                    customer=customer_id,
                    return_url=return_url,
                )
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe portal session failed for customer {customer_id}: {e}")
            raise StripeServiceError(f"Échec de création de session portail: {e.user_message or e}") from e

        logger.info(f"Portal session {portal_session.get('id')} created for customer {customer_id}")
        return portal_session["url"]

    async def create_for_user(self, user_id: str) -> Dict[str, str]:
        """Open the portal for the Stripe customer of a user's latest subscription."""
        subscription = await self.subscriptions.get_latest_for_user(user_id)
        if subscription is None:
            raise StripeServiceError("Aucun abonnement actif trouvé", status_code=404)
        if not subscription.customer_id:
            logger.error(f"Subscription {subscription.subscription_id} of user {user_id} has no Stripe customer")
            raise StripeServiceError("Customer ID Stripe manquant", status_code=400)

        return {"url": await self.create_portal_session(subscription.customer_id)}
