"""
Stripe service errors.
"""


class StripeServiceError(Exception):
    """Stripe operation failure carrying the HTTP status to answer with."""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class WebhookSignatureError(StripeServiceError):
    def __init__(self, message: str):
        super().__init__(f"Webhook signature verification failed: {message}", status_code=400)
