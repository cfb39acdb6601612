from unittest.mock import MagicMock, patch

import pytest
from httpx import AsyncClient
from sqlmodel import select

from medprep_ai.core.database.entities.subscriptions import Prospect, Subscription, WebhookRetryQueue
from medprep_ai.server.core.config import settings

BASE_URL = "http://localhost/api/stripe"


@pytest.fixture
def stripe_configured(monkeypatch):
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")
    monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_abc")
    monkeypatch.setattr(settings, "stripe_price_id_monthly", "price_monthly")
    monkeypatch.setattr(settings, "stripe_price_id_yearly", "price_yearly")
    monkeypatch.setattr(settings, "frontend_url", "https://app.medprep.test")


async def test_checkout_without_configuration(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, "stripe_secret_key", None)

    response = await client.post(f"{BASE_URL}/checkout", json={"email": "lea@medprep.test"})

    assert response.status_code == 503
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Paiement indisponible"
    assert "STRIPE_SECRET_KEY" in body["details"]


async def test_checkout_for_new_prospect(client: AsyncClient, session, stripe_configured):
    with patch("stripe.Customer.create", MagicMock(return_value={"id": "cus_123"})), patch(
        "stripe.checkout.Session.create",
        MagicMock(return_value={"id": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1"}),
    ) as create_session:
        response = await client.post(
            f"{BASE_URL}/checkout",
            json={"email": "Lea@MedPrep.test", "firstName": "Léa", "billingCycle": "yearly", "utmSource": "ads"},
        )

    assert response.status_code == 200
    assert response.json() == {"sessionId": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1"}
    assert create_session.call_args.kwargs["line_items"] == [{"price": "price_yearly", "quantity": 1}]

    prospect = (await session.execute(select(Prospect))).scalars().one()
    await session.refresh(prospect)
    assert prospect.email == "lea@medprep.test"
    assert prospect.utm_source == "ads"
    assert prospect.status == "payment_in_progress"


async def test_checkout_requires_prospect_or_email(client: AsyncClient, stripe_configured):
    response = await client.post(f"{BASE_URL}/checkout", json={})

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "prospectId ou email est requis"}


async def test_checkout_unknown_prospect(client: AsyncClient, stripe_configured):
    response = await client.post(f"{BASE_URL}/checkout", json={"prospectId": "missing"})

    assert response.status_code == 404
    assert response.json()["error"] == "Prospect non trouvé"


async def test_verify_session_unpaid(client: AsyncClient, stripe_configured):
    unpaid = {"id": "cs_test_1", "payment_status": "unpaid"}
    with patch("stripe.checkout.Session.retrieve", MagicMock(return_value=unpaid)):
        response = await client.post(f"{BASE_URL}/verify-session", json={"sessionId": "cs_test_1"})

    assert response.status_code == 200
    assert response.json() == {"success": False, "status": "unpaid", "message": "Paiement non complété"}


async def test_verify_session_requires_id(client: AsyncClient, stripe_configured):
    response = await client.post(f"{BASE_URL}/verify-session", json={})
    assert response.status_code == 400


async def test_webhook_without_signature(client: AsyncClient, stripe_configured):
    response = await client.post(f"{BASE_URL}/webhook", content=b"{}")

    assert response.status_code == 400
    assert response.json()["error"].startswith("Webhook signature verification failed")


async def test_webhook_passes_raw_body_and_signature(client: AsyncClient, session, stripe_configured):
    failing = {"id": "evt_9", "type": "customer.subscription.deleted", "data": {"object": {"id": "sub_missing"}}}
    with patch("stripe.Webhook.construct_event", MagicMock(return_value=failing)) as construct:
        response = await client.post(
            f"{BASE_URL}/webhook", content=b'{"id": "evt_9"}', headers={"Stripe-Signature": "t=1,v1=abc"}
        )

    assert response.status_code == 200
    assert response.json() == {"received": True}
    construct.assert_called_once_with(b'{"id": "evt_9"}', "t=1,v1=abc", "whsec_abc")

    entry = (await session.execute(select(WebhookRetryQueue))).scalars().one()
    assert entry.event_id == "evt_9"


async def test_retry_queue_requires_admin(client: AsyncClient, make_user, stripe_configured):
    user = await make_user()

    response = await client.post(f"{BASE_URL}/retry-queue/process", headers={"X-User-Id": user.id})

    assert response.status_code == 403


async def test_retry_queue_run(client: AsyncClient, make_user, stripe_configured):
    admin = await make_user(role="admin")

    response = await client.post(f"{BASE_URL}/retry-queue/process", headers={"X-User-Id": admin.id})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "data": {"processed": 0, "succeeded": 0, "failed": 0, "rescheduled": 0},
    }


async def test_portal_session_requires_auth(client: AsyncClient, stripe_configured):
    response = await client.post(f"{BASE_URL}/portal-session")

    assert response.status_code == 401


async def test_portal_session_for_subscriber(client: AsyncClient, session, make_user, stripe_configured):
    user = await make_user()
    session.add(Subscription(subscription_id="sub_1", user_id=user.id, customer_id="cus_123", status="active"))
    await session.commit()

    portal = {"id": "bps_1", "url": "https://billing.stripe.com/p/session/test_1"}
    with patch("stripe.billing_portal.Session.create", MagicMock(return_value=portal)) as create:
        response = await client.post(f"{BASE_URL}/portal-session", headers={"X-User-Id": user.id})

    assert response.status_code == 200
    assert response.json() == {"url": "https://billing.stripe.com/p/session/test_1"}
    assert create.call_args.kwargs["return_url"] == "https://app.medprep.test/account/subscription"


async def test_portal_session_without_subscription(client: AsyncClient, make_user, stripe_configured):
    user = await make_user()

    response = await client.post(f"{BASE_URL}/portal-session", headers={"X-User-Id": user.id})

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Aucun abonnement actif trouvé"}
