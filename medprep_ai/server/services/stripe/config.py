"""
Stripe configuration loading and validation.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from medprep_ai.server.core.config import StripeSettings, settings

logger = logging.getLogger(__name__)

_url_adapter = TypeAdapter(AnyHttpUrl)


class StripeConfigurationError(Exception):
    """Raised when the Stripe configuration is unusable."""


REQUIRED_VARIABLES = {
    "secret_key": "STRIPE_SECRET_KEY",
    "webhook_secret": "STRIPE_WEBHOOK_SECRET",
    "price_id_monthly": "STRIPE_PRICE_ID_MONTHLY",
    "price_id_yearly": "STRIPE_PRICE_ID_YEARLY",
}


def validate_stripe_config(config: StripeSettings) -> StripeSettings:
    """
    Check a Stripe configuration.

    Missing variables and an invalid frontend URL raise; suspicious key
    prefixes are only logged.

    Raises:
        StripeConfigurationError: If the configuration cannot be used
    """
    missing = [env for attr, env in REQUIRED_VARIABLES.items() if not getattr(config, attr)]
    if missing:
        raise StripeConfigurationError(f"Missing required Stripe environment variables: {', '.join(missing)}")

    if config.secret_key.startswith("sk_test_"):
        logger.warning("Using Stripe test key")
    elif not config.secret_key.startswith("sk_live_"):
        logger.warning("STRIPE_SECRET_KEY does not look like a Stripe secret key")

    for name, value in (("STRIPE_PRICE_ID_MONTHLY", config.price_id_monthly), ("STRIPE_PRICE_ID_YEARLY", config.price_id_yearly)):
        if not value.startswith("price_"):
            logger.warning(f"{name} should start with 'price_'")

    if not config.webhook_secret.startswith("whsec_"):
        logger.warning("STRIPE_WEBHOOK_SECRET should start with 'whsec_'")

    try:
        _url_adapter.validate_python(config.frontend_url)
    except ValidationError as e:
        raise StripeConfigurationError(f"FRONTEND_URL is not a valid URL: {config.frontend_url}") from e

    return config


def load_stripe_config(config: Optional[StripeSettings] = None) -> StripeSettings:
    """Validated Stripe configuration, read from the environment by default."""
    return validate_stripe_config(config or settings.stripe)


def price_id_for_cycle(config: StripeSettings, billing_cycle: str) -> str:
    """Resolve ``monthly``/``yearly`` to the configured price id; other values are used as is."""
    if billing_cycle == "monthly":
        return config.price_id_monthly
    if billing_cycle == "yearly":
        return config.price_id_yearly
    return billing_cycle
