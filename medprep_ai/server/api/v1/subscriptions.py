"""
Subscription Endpoints.

Read access to the caller's own billing state.
"""

from fastapi import APIRouter

from medprep_ai.core.database.repositories import SubscriptionRepository
from medprep_ai.server.services.deps import CurrentUserDep, SessionDep
from medprep_ai.server.services.stripe.helpers import billing_cycle_from_price

router = APIRouter()


@router.get(
    "/me/subscription",
    summary="My Subscription",
    description="The caller's most recent subscription, or null when they never subscribed.",
    response_description="Subscription object or null.",
)
async def my_subscription(user: CurrentUserDep, session: SessionDep):
    subscription = await SubscriptionRepository(session).get_latest_for_user(user.id)
    if subscription is None:
        return {"subscription": None}

    return {
        "subscription": {
            "id": subscription.subscription_id,
            "status": subscription.status,
            "billingCycle": billing_cycle_from_price(subscription.price_id),
            "currentPeriodEnd": subscription.current_period_end,
            "trialEnd": subscription.trial_end,
            "cancelAtPeriodEnd": subscription.cancel_at_period_end,
            "provider": subscription.provider,
            "priceId": subscription.price_id,
            "amount": subscription.amount,
            "currency": subscription.currency,
            "lastPaymentAt": subscription.last_payment_at,
        }
    }
