from datetime import datetime

import pytest
import stripe

from medprep_ai.server.core.config import StripeSettings
from medprep_ai.server.services.stripe.config import (
    StripeConfigurationError,
    load_stripe_config,
    price_id_for_cycle,
    validate_stripe_config,
)
from medprep_ai.server.services.stripe.errors import StripeServiceError, WebhookSignatureError
from medprep_ai.server.services.stripe.helpers import (
    as_dict,
    billing_cycle_from_price,
    from_unix,
    get_period_end,
    get_period_start,
    get_price_id,
    map_stripe_status,
    map_verified_status,
    object_id,
    sanitize,
)

# 2026-03-10 12:00:00 UTC
TIMESTAMP = 1773144000


def stripe_settings(**overrides) -> StripeSettings:
    values = {
        "secret_key": "sk_test_123",
        "webhook_secret": "whsec_abc",
        "price_id_monthly": "price_monthly",
        "price_id_yearly": "price_yearly",
        "frontend_url": "https://app.medprep.test",
    }
    values.update(overrides)
    return StripeSettings(**values)


class TestStripeConfig:
    def test_valid_configuration(self):
        config = stripe_settings()
        assert validate_stripe_config(config) is config

    def test_missing_variables_are_listed(self):
        with pytest.raises(StripeConfigurationError) as exc_info:
            validate_stripe_config(stripe_settings(secret_key=None, price_id_yearly=None))

        assert str(exc_info.value) == (
            "Missing required Stripe environment variables: STRIPE_SECRET_KEY, STRIPE_PRICE_ID_YEARLY"
        )

    def test_invalid_frontend_url(self):
        with pytest.raises(StripeConfigurationError, match="FRONTEND_URL is not a valid URL"):
            validate_stripe_config(stripe_settings(frontend_url="not a url"))

    def test_suspicious_prefixes_only_warn(self, caplog):
        config = stripe_settings(secret_key="rk_live_1", price_id_monthly="plan_1", webhook_secret="secret")

        with caplog.at_level("WARNING"):
            validate_stripe_config(config)

        assert "STRIPE_SECRET_KEY does not look like a Stripe secret key" in caplog.text
        assert "STRIPE_PRICE_ID_MONTHLY should start with 'price_'" in caplog.text
        assert "STRIPE_WEBHOOK_SECRET should start with 'whsec_'" in caplog.text

    def test_load_from_settings(self, monkeypatch):
        from medprep_ai.server.core.config import settings

        monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_env")
        monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_env")
        monkeypatch.setattr(settings, "stripe_price_id_monthly", "price_m")
        monkeypatch.setattr(settings, "stripe_price_id_yearly", "price_y")

        config = load_stripe_config()

        assert config.secret_key == "sk_test_env"
        assert config.price_id_yearly == "price_y"

    def test_load_without_settings_fails(self, monkeypatch):
        from medprep_ai.server.core.config import settings

        monkeypatch.setattr(settings, "stripe_secret_key", None)
        with pytest.raises(StripeConfigurationError):
            load_stripe_config()

    @pytest.mark.parametrize(
        "cycle, expected",
        [("monthly", "price_monthly"), ("yearly", "price_yearly"), ("price_custom", "price_custom")],
    )
    def test_price_id_for_cycle(self, cycle, expected):
        assert price_id_for_cycle(stripe_settings(), cycle) == expected


class TestErrors:
    def test_service_error_defaults_to_500(self):
        error = StripeServiceError("boom")
        assert error.status_code == 500
        assert str(error) == "boom"

    def test_signature_error_is_a_bad_request(self):
        error = WebhookSignatureError("no signatures found")
        assert error.status_code == 400
        assert error.message == "Webhook signature verification failed: no signatures found"


class TestHelpers:
    def test_as_dict(self):
        payload = {"id": "sub_1"}
        assert as_dict(payload) is payload
        assert as_dict(None) == {}
        assert as_dict(stripe.StripeObject.construct_from({"id": "cus_1", "email": "a@b.c"}, "sk_test"))["email"] == "a@b.c"

    def test_from_unix(self):
        assert from_unix(TIMESTAMP) == datetime(2026, 3, 10, 12, 0)
        assert from_unix(None) is None
        assert from_unix("1773144000") is None
        assert from_unix(True) is None

    def test_period_bounds_prefer_subscription_items(self):
        subscription = {
            "current_period_start": 0,
            "current_period_end": 0,
            "items": {"data": [{"current_period_start": TIMESTAMP, "current_period_end": TIMESTAMP + 86400}]},
        }

        assert get_period_start(subscription) == datetime(2026, 3, 10, 12, 0)
        assert get_period_end(subscription) == datetime(2026, 3, 11, 12, 0)

    def test_period_bounds_fall_back_to_subscription(self):
        subscription = {"current_period_end": TIMESTAMP, "items": {"data": [{}]}}

        assert get_period_end(subscription) == datetime(2026, 3, 10, 12, 0)
        assert get_period_start(subscription) is None

    def test_price_id(self):
        assert get_price_id({"items": {"data": [{"price": {"id": "price_monthly"}}]}}) == "price_monthly"
        assert get_price_id({}) is None

    @pytest.mark.parametrize(
        "status, expected",
        [
            ("trialing", "trialing"),
            ("active", "active"),
            ("canceled", "canceled"),
            ("incomplete_expired", "canceled"),
            ("unpaid", "past_due"),
            (None, "past_due"),
        ],
    )
    def test_map_stripe_status(self, status, expected):
        assert map_stripe_status(status) == expected

    @pytest.mark.parametrize(
        "status, expected",
        [("incomplete", "past_due"), ("unpaid", "past_due"), ("active", "active"), ("paused", "none")],
    )
    def test_map_verified_status(self, status, expected):
        assert map_verified_status(status) == expected

    def test_sanitize_drops_secrets(self):
        payload = {
            "id": "cs_1",
            "client_secret": "secret",
            "charges": [{"id": "ch_1", "payment_method_details": {"card": {"last4": "4242"}}}],
        }
        assert sanitize(payload) == {"id": "cs_1", "charges": [{"id": "ch_1"}]}

    @pytest.mark.parametrize(
        "price_id, expected",
        [("price_monthly_eur", "monthly"), ("price_YEARLY", "yearly"), ("price_123", "unknown"), (None, "unknown")],
    )
    def test_billing_cycle_from_price(self, price_id, expected):
        assert billing_cycle_from_price(price_id) == expected

    def test_object_id(self):
        assert object_id("cus_1") == "cus_1"
        assert object_id({"id": "cus_2", "email": "x@y.z"}) == "cus_2"
        assert object_id(None) is None
