"""
Stripe billing services: checkout, session verification, the customer portal,
webhooks and the webhook retry queue.
"""

from .checkout import StripeCheckoutService
from .config import StripeConfigurationError, load_stripe_config, validate_stripe_config
from .errors import StripeServiceError, WebhookSignatureError
from .portal import StripePortalService
from .retry_queue import process_webhook_retry_queue, run_retry_queue_loop
from .verify import StripeVerifyService
from .webhook import StripeWebhookService

__all__ = [
    "StripeCheckoutService",
    "StripeConfigurationError",
    "StripePortalService",
    "StripeServiceError",
    "StripeVerifyService",
    "StripeWebhookService",
    "WebhookSignatureError",
    "load_stripe_config",
    "process_webhook_retry_queue",
    "run_retry_queue_loop",
    "validate_stripe_config",
]
