from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
import stripe

from medprep_ai.core.database.entities.subscriptions import Subscription
from medprep_ai.server.core.config import StripeSettings
from medprep_ai.server.services.stripe import StripePortalService, StripeServiceError

PORTAL_URL = "https://billing.stripe.com/p/session/test_1"


@pytest.fixture
def stripe_config() -> StripeSettings:
    return StripeSettings(
        secret_key="sk_test_123",
        webhook_secret="whsec_abc",
        price_id_monthly="price_monthly",
        price_id_yearly="price_yearly",
        frontend_url="https://app.medprep.test/",
    )


@pytest.fixture
def portal_create():
    with patch(
        "stripe.billing_portal.Session.create", MagicMock(return_value={"id": "bps_1", "url": PORTAL_URL})
    ) as create:
        yield create


class TestCreatePortalSession:
    async def test_default_return_url(self, session, stripe_config, portal_create):
        url = await StripePortalService(session, stripe_config).create_portal_session("cus_123")

        assert url == PORTAL_URL
        portal_create.assert_called_once_with(
            api_key="sk_test_123",
            customer="cus_123",
            return_url="https://app.medprep.test/account/subscription",
        )

    async def test_explicit_return_url(self, session, stripe_config, portal_create):
        await StripePortalService(session, stripe_config).create_portal_session(
            "cus_123", return_url="https://app.medprep.test/billing"
        )

        assert portal_create.call_args.kwargs["return_url"] == "https://app.medprep.test/billing"

    async def test_stripe_failure(self, session, stripe_config):
        error = stripe.InvalidRequestError("No such customer: 'cus_gone'", "customer")
        with patch("stripe.billing_portal.Session.create", MagicMock(side_effect=error)):
            with pytest.raises(StripeServiceError) as exc_info:
                await StripePortalService(session, stripe_config).create_portal_session("cus_gone")

        assert exc_info.value.status_code == 500
        assert exc_info.value.message.startswith("Échec de création de session portail: ")
        assert "No such customer" in exc_info.value.message


class TestCreateForUser:
    async def test_uses_latest_subscription_customer(self, session, stripe_config, portal_create):
        session.add_all(
            [
                Subscription(
                    subscription_id="sub_old", user_id="u1", customer_id="cus_old", updated_at=datetime(2025, 1, 1)
                ),
                Subscription(
                    subscription_id="sub_new", user_id="u1", customer_id="cus_new", updated_at=datetime(2026, 1, 1)
                ),
            ]
        )
        await session.commit()

        result = await StripePortalService(session, stripe_config).create_for_user("u1")

        assert result == {"url": PORTAL_URL}
        assert portal_create.call_args.kwargs["customer"] == "cus_new"

    async def test_without_subscription(self, session, stripe_config, portal_create):
        with pytest.raises(StripeServiceError) as exc_info:
            await StripePortalService(session, stripe_config).create_for_user("nobody")

        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Aucun abonnement actif trouvé"
        portal_create.assert_not_called()

    async def test_subscription_without_customer(self, session, stripe_config, portal_create):
        session.add(Subscription(subscription_id="sub_1", user_id="u1"))
        await session.commit()

        with pytest.raises(StripeServiceError) as exc_info:
            await StripePortalService(session, stripe_config).create_for_user("u1")

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Customer ID Stripe manquant"
        portal_create.assert_not_called()
