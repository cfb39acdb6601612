"""
Stripe Checkout session creation.

A prospect (visitor without account) is attached to a Stripe customer and
sent to a subscription Checkout Session with a trial period. The prospect
moves to ``payment_in_progress`` until the webhooks report the outcome.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database.entities.subscriptions import Prospect, ProspectStatus
from medprep_ai.core.database.repositories import ProspectRepository
from medprep_ai.server.core.config import StripeSettings

from .config import load_stripe_config, price_id_for_cycle
from .errors import StripeServiceError
from .helpers import as_dict

logger = logging.getLogger(__name__)


class StripeCheckoutService:
    def __init__(self, session: AsyncSession, config: Optional[StripeSettings] = None):
        self.session = session
        self.config = config or load_stripe_config()
        self.prospects = ProspectRepository(session)

    async def resolve_prospect(
        self,
        prospect_id: Optional[str] = None,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        billing_cycle: str = "monthly",
        utm: Optional[Dict[str, Optional[str]]] = None,
    ) -> Prospect:
        """Load the prospect by id, or register a new one from its email."""
        if prospect_id:
            prospect = await self.prospects.get_by_id(prospect_id)
            if prospect is None:
                raise StripeServiceError("Prospect non trouvé", status_code=404)
            return prospect
        if not email:
            raise StripeServiceError("prospectId ou email est requis", status_code=400)

        utm = utm or {}
        return await self.prospects.create(
            Prospect(
                email=email.strip().lower(),
                first_name=first_name,
                last_name=last_name,
                billing_cycle=billing_cycle,
                utm_source=utm.get("utmSource"),
                utm_medium=utm.get("utmMedium"),
                utm_campaign=utm.get("utmCampaign"),
            )
        )

    async def create_checkout_session(
        self, prospect: Prospect, billing_cycle: str = "monthly", price_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create the Stripe Checkout Session of a prospect.

        Args:
            prospect: Prospect going through the checkout
            billing_cycle: ``monthly`` or ``yearly``
            price_id: Explicit price, resolved from the billing cycle by default

        Returns:
            ``{"sessionId", "url"}``

        Raises:
            StripeServiceError: If Stripe rejects one of the calls
        """
        selected_price = price_id_for_cycle(self.config, price_id or billing_cycle)
        metadata = {
            "prospectId": prospect.id,
            "billingCycle": billing_cycle,
            "selectedPrice": selected_price,
            "utmSource": prospect.utm_source or "",
            "utmMedium": prospect.utm_medium or "",
            "utmCampaign": prospect.utm_campaign or "",
        }
        frontend_url = self.config.frontend_url.rstrip("/")

        try:
            customer_id = prospect.stripe_customer_id
            if not customer_id:
                name = " ".join(part for part in (prospect.first_name, prospect.last_name) if part) or None
                customer = as_dict(
                    await asyncio.to_thread(
                        stripe.Customer.create,
                        api_key=self.config.secret_key,
                        email=prospect.email,
                        name=name,
                        metadata={"prospectId": prospect.id},
                    )
                )
                customer_id = customer["id"]

            checkout_session = as_dict(
                await asyncio.to_thread(
                    stripe.checkout.Session.create,
                    api_key=self.config.secret_key,
                    customer=customer_id,
                    mode="subscription",
                    line_items=[{"price": selected_price, "quantity": 1}],
                    subscription_data={"trial_period_days": self.config.trial_period_days, "metadata": metadata},
                    success_url=f"{frontend_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
                    cancel_url=f"{frontend_url}/checkout/cancel",
                    metadata=metadata,
                )
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout failed for prospect {prospect.id}: {e}")
            raise StripeServiceError(f"Failed to create checkout session: {e.user_message or e}") from e

        prospect.stripe_customer_id = customer_id
        prospect.checkout_session_id = checkout_session["id"]
        prospect.billing_cycle = billing_cycle
        prospect.selected_price = selected_price
        prospect.status = ProspectStatus.PAYMENT_IN_PROGRESS.value
        prospect.attempt_count = (prospect.attempt_count or 0) + 1
        await self.prospects.update(prospect)
        logger.info(f"Checkout session {checkout_session['id']} created for prospect {prospect.id}")

        return {"sessionId": checkout_session["id"], "url": checkout_session.get("url")}
