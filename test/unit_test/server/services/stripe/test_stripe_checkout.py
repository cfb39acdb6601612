from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
import stripe
from sqlmodel import select

from medprep_ai.core.database.entities.subscriptions import Prospect, Subscription
from medprep_ai.core.database.entities.users import User
from medprep_ai.server.core.config import StripeSettings
from medprep_ai.server.services.stripe import StripeCheckoutService, StripeServiceError, StripeVerifyService

NOW = datetime(2026, 3, 10, 12, 0)
PERIOD_END = 1775822400  # 2026-04-10 12:00 UTC


@pytest.fixture
def stripe_config() -> StripeSettings:
    return StripeSettings(
        secret_key="sk_test_123",
        webhook_secret="whsec_abc",
        price_id_monthly="price_monthly",
        price_id_yearly="price_yearly",
        frontend_url="https://app.medprep.test/",
        trial_period_days=30,
    )


@pytest.fixture
async def prospect(session):
    prospect = Prospect(email="lea@medprep.test", first_name="Léa", last_name="Martin", utm_source="newsletter")
    session.add(prospect)
    await session.commit()
    return prospect


class TestResolveProspect:
    async def test_existing_prospect(self, session, stripe_config, prospect):
        service = StripeCheckoutService(session, stripe_config)
        assert (await service.resolve_prospect(prospect_id=prospect.id)).id == prospect.id

    async def test_unknown_prospect(self, session, stripe_config):
        with pytest.raises(StripeServiceError) as exc_info:
            await StripeCheckoutService(session, stripe_config).resolve_prospect(prospect_id="missing")
        assert exc_info.value.status_code == 404

    async def test_prospect_created_from_email(self, session, stripe_config):
        prospect = await StripeCheckoutService(session, stripe_config).resolve_prospect(
            email="  Hugo@MedPrep.test ", billing_cycle="yearly", utm={"utmCampaign": "rentree"}
        )

        assert prospect.email == "hugo@medprep.test"
        assert prospect.billing_cycle == "yearly"
        assert prospect.utm_campaign == "rentree"
        assert prospect.status == "pending"

    async def test_id_or_email_required(self, session, stripe_config):
        with pytest.raises(StripeServiceError) as exc_info:
            await StripeCheckoutService(session, stripe_config).resolve_prospect()
        assert exc_info.value.status_code == 400


class TestCreateCheckoutSession:
    async def test_creates_customer_and_session(self, session, stripe_config, prospect):
        with patch("stripe.Customer.create", MagicMock(return_value={"id": "cus_123"})) as create_customer, patch(
            "stripe.checkout.Session.create",
            MagicMock(return_value={"id": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1"}),
        ) as create_session:
            result = await StripeCheckoutService(session, stripe_config).create_checkout_session(prospect, "yearly")

        assert result == {"sessionId": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1"}

        customer_kwargs = create_customer.call_args.kwargs
        assert customer_kwargs["email"] == "lea@medprep.test"
        assert customer_kwargs["name"] == "Léa Martin"
        assert customer_kwargs["api_key"] == "sk_test_123"

        session_kwargs = create_session.call_args.kwargs
        assert session_kwargs["customer"] == "cus_123"
        assert session_kwargs["mode"] == "subscription"
        assert session_kwargs["line_items"] == [{"price": "price_yearly", "quantity": 1}]
        assert session_kwargs["subscription_data"]["trial_period_days"] == 30
        assert session_kwargs["success_url"] == (
            "https://app.medprep.test/checkout/success?session_id={CHECKOUT_SESSION_ID}"
        )
        assert session_kwargs["cancel_url"] == "https://app.medprep.test/checkout/cancel"
        assert session_kwargs["metadata"]["prospectId"] == prospect.id
        assert session_kwargs["metadata"]["utmSource"] == "newsletter"

        stored = await session.get(Prospect, prospect.id)
        assert stored.status == "payment_in_progress"
        assert stored.stripe_customer_id == "cus_123"
        assert stored.checkout_session_id == "cs_test_1"
        assert stored.selected_price == "price_yearly"
        assert stored.attempt_count == 1

    async def test_reuses_existing_customer(self, session, stripe_config, prospect):
        prospect.stripe_customer_id = "cus_existing"
        await session.commit()

        with patch("stripe.Customer.create", MagicMock()) as create_customer, patch(
            "stripe.checkout.Session.create", MagicMock(return_value={"id": "cs_test_2", "url": None})
        ) as create_session:
            await StripeCheckoutService(session, stripe_config).create_checkout_session(prospect)

        create_customer.assert_not_called()
        assert create_session.call_args.kwargs["customer"] == "cus_existing"
        assert create_session.call_args.kwargs["line_items"][0]["price"] == "price_monthly"

    async def test_stripe_failure(self, session, stripe_config, prospect):
        with patch("stripe.Customer.create", MagicMock(side_effect=stripe.StripeError("card network down"))):
            with pytest.raises(StripeServiceError) as exc_info:
                await StripeCheckoutService(session, stripe_config).create_checkout_session(prospect)

        assert exc_info.value.status_code == 500
        assert exc_info.value.message.startswith("Failed to create checkout session:")
        assert "card network down" in exc_info.value.message


def paid_session(email="lea@medprep.test"):
    return {
        "id": "cs_test_1",
        "payment_status": "paid",
        "customer_details": {"email": email},
        "subscription": "sub_123",
    }


def stripe_subscription(status="trialing"):
    return {
        "id": "sub_123",
        "customer": "cus_123",
        "status": status,
        "trial_end": PERIOD_END,
        "cancel_at_period_end": False,
        "items": {
            "data": [
                {
                    "current_period_start": 1773144000,
                    "current_period_end": PERIOD_END,
                    "price": {"id": "price_monthly", "product": "prod_1", "unit_amount": 1990, "currency": "eur"},
                }
            ]
        },
    }


class TestVerifySession:
    async def test_session_id_required(self, session, stripe_config):
        with pytest.raises(StripeServiceError) as exc_info:
            await StripeVerifyService(session, stripe_config).verify_session(None)
        assert exc_info.value.status_code == 400

    async def test_unknown_session(self, session, stripe_config):
        error = stripe.InvalidRequestError("No such checkout.session", "id")
        with patch("stripe.checkout.Session.retrieve", MagicMock(side_effect=error)):
            with pytest.raises(StripeServiceError) as exc_info:
                await StripeVerifyService(session, stripe_config).verify_session("cs_missing")
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Session non trouvée"

    async def test_unpaid_session(self, session, stripe_config):
        unpaid = {**paid_session(), "payment_status": "unpaid"}
        with patch("stripe.checkout.Session.retrieve", MagicMock(return_value=unpaid)):
            result = await StripeVerifyService(session, stripe_config).verify_session("cs_test_1")

        assert result == {"success": False, "status": "unpaid", "message": "Paiement non complété"}

    async def test_unknown_user(self, session, stripe_config):
        with patch("stripe.checkout.Session.retrieve", MagicMock(return_value=paid_session("ghost@medprep.test"))):
            with pytest.raises(StripeServiceError) as exc_info:
                await StripeVerifyService(session, stripe_config).verify_session("cs_test_1")
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Utilisateur non trouvé"

    async def test_paid_session_activates_subscription(self, session, stripe_config, make_user, prospect):
        user = await make_user(email="lea@medprep.test")
        prospect.checkout_session_id = "cs_test_1"
        await session.commit()

        with patch("stripe.checkout.Session.retrieve", MagicMock(return_value=paid_session())), patch(
            "stripe.Subscription.retrieve", MagicMock(return_value=stripe_subscription())
        ) as retrieve_subscription:
            result = await StripeVerifyService(session, stripe_config).verify_session("cs_test_1", now=NOW)

        assert result == {"success": True, "status": "trialing", "subscriptionId": "sub_123", "userId": user.id}
        assert retrieve_subscription.call_args.args == ("sub_123",)

        stored_user = await session.get(User, user.id)
        assert stored_user.subscription_status == "trialing"
        assert stored_user.subscription_end_date == datetime(2026, 4, 10, 12, 0)

        stored_prospect = await session.get(Prospect, prospect.id)
        assert stored_prospect.status == "converted"
        assert stored_prospect.subscription_id == "sub_123"

    async def test_incomplete_subscription_is_past_due(self, session, stripe_config, make_user):
        await make_user(email="lea@medprep.test")

        with patch("stripe.checkout.Session.retrieve", MagicMock(return_value=paid_session())), patch(
            "stripe.Subscription.retrieve", MagicMock(return_value=stripe_subscription("incomplete"))
        ):
            result = await StripeVerifyService(session, stripe_config).verify_session("cs_test_1", now=NOW)

        assert result["status"] == "past_due"
        subscription = (await session.execute(select(Subscription))).scalars().one()
        assert subscription.amount == 19.9
        assert subscription.currency == "EUR"
        assert subscription.history[0]["type"] == "checkout_verified"
