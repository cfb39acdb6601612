"""
Stripe Billing Endpoints.

Checkout for prospects, verification of completed Checkout Sessions, the
customer portal of subscribers, the Stripe webhook receiver and a manual
trigger of the webhook retry queue.

Service errors carry their own HTTP status and are answered by the
registered Stripe exception handlers.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Header, Request

from medprep_ai.core.logging_config import get_logger
from medprep_ai.server.schemas import CheckoutRequest, VerifySessionRequest
from medprep_ai.server.services.deps import AdminUserDep, CurrentUserDep, SessionDep
from medprep_ai.server.services.stripe import (
    StripeCheckoutService,
    StripePortalService,
    StripeVerifyService,
    StripeWebhookService,
    process_webhook_retry_queue,
)

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/checkout",
    summary="Create Checkout Session",
    description="Start a subscription checkout with a trial period for an existing or new prospect.",
    response_description="The Checkout Session id and the URL to redirect the visitor to.",
    responses={
        200: {"description": "Checkout Session created"},
        400: {"description": "Neither prospectId nor email given"},
        404: {"description": "Prospect not found"},
        500: {"description": "Stripe rejected the request"},
    },
)
async def create_checkout(body: CheckoutRequest, session: SessionDep):
    """
    Create a Checkout Session.

    - **prospectId** or **email**: The prospect to bill, created from the email when new.
    - **billingCycle**: monthly or yearly, selecting the configured price.
    - **priceId**: Explicit price overriding the billing cycle.
    """
    service = StripeCheckoutService(session)
    prospect = await service.resolve_prospect(
        prospect_id=body.prospectId,
        email=body.email,
        first_name=body.firstName,
        last_name=body.lastName,
        billing_cycle=body.billingCycle,
        utm={"utmSource": body.utmSource, "utmMedium": body.utmMedium, "utmCampaign": body.utmCampaign},
    )
    return await service.create_checkout_session(prospect, body.billingCycle, body.priceId)


@router.post(
    "/verify-session",
    summary="Verify Checkout Session",
    description="Confirm a completed checkout and activate the subscription of the matching user.",
    responses={
        200: {"description": "Session verified, paid or not"},
        400: {"description": "Missing sessionId or session without subscription"},
        404: {"description": "Unknown session or user"},
    },
)
async def verify_session(body: VerifySessionRequest, session: SessionDep):
    return await StripeVerifyService(session).verify_session(body.sessionId)


@router.post(
    "/portal-session",
    summary="Create Customer Portal Session",
    description="Open the Stripe customer portal where the caller manages or cancels their subscription.",
    response_description="The portal URL to redirect the subscriber to.",
    responses={
        200: {"description": "Portal session created"},
        400: {"description": "Subscription without Stripe customer"},
        401: {"description": "Not authenticated"},
        404: {"description": "No subscription for the caller"},
    },
)
async def create_portal_session(user: CurrentUserDep, session: SessionDep):
    return await StripePortalService(session).create_for_user(user.id)


@router.post(
    "/webhook",
    summary="Stripe Webhook",
    description="Receive a signed Stripe event. Events that fail to apply are queued for retry.",
    responses={
        200: {"description": "Event received"},
        400: {"description": "Signature verification failed"},
    },
)
async def stripe_webhook(
    request: Request,
    session: SessionDep,
    stripe_signature: Annotated[Optional[str], Header()] = None,
):
    """
    Handle a Stripe webhook call.

    The raw request body is verified against the ``Stripe-Signature``
    header before anything is applied.
    """
    payload = await request.body()
    return await StripeWebhookService(session).handle_webhook(payload, stripe_signature)


@router.post(
    "/retry-queue/process",
    summary="Process Webhook Retry Queue",
    description="Administrators only: replay the due entries of the webhook retry queue now.",
    response_description="Counters of the run.",
)
async def process_retry_queue(user: AdminUserDep, session: SessionDep):
    logger.info(f"Webhook retry queue run requested by {user.id}")
    return {"success": True, "data": await process_webhook_retry_queue(session)}
