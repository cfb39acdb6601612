"""
Helpers shared by the Stripe services.

Stripe objects are handled as plain dictionaries so that webhook payloads
replayed from the retry queue follow the same code path as live events.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from medprep_ai.core.database.entities.users import SubscriptionStatus

WEBHOOK_STATUS_MAPPING = {
    "trialing": SubscriptionStatus.TRIALING.value,
    "active": SubscriptionStatus.ACTIVE.value,
    "canceled": SubscriptionStatus.CANCELED.value,
    "incomplete_expired": SubscriptionStatus.CANCELED.value,
}

VERIFY_STATUS_MAPPING = {
    "trialing": SubscriptionStatus.TRIALING.value,
    "active": SubscriptionStatus.ACTIVE.value,
    "past_due": SubscriptionStatus.PAST_DUE.value,
    "canceled": SubscriptionStatus.CANCELED.value,
    "incomplete": SubscriptionStatus.PAST_DUE.value,
    "incomplete_expired": SubscriptionStatus.CANCELED.value,
    "unpaid": SubscriptionStatus.PAST_DUE.value,
}

SENSITIVE_KEYS = frozenset({"client_secret", "payment_method_details"})


def as_dict(obj: Any) -> Dict[str, Any]:
    """Plain dict view of a StripeObject (or of an already plain payload)."""
    if obj is None:
        return {}
    if type(obj) is dict:
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


def from_unix(value: Any) -> Optional[datetime]:
    """Naive UTC datetime from a Stripe timestamp (seconds)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def get_period_end(subscription: Dict[str, Any]) -> Optional[datetime]:
    for item in (subscription.get("items") or {}).get("data") or []:
        if isinstance(item.get("current_period_end"), (int, float)):
            return from_unix(item["current_period_end"])
    return from_unix(subscription.get("current_period_end"))


def get_period_start(subscription: Dict[str, Any]) -> Optional[datetime]:
    for item in (subscription.get("items") or {}).get("data") or []:
        if isinstance(item.get("current_period_start"), (int, float)):
            return from_unix(item["current_period_start"])
    return from_unix(subscription.get("current_period_start"))


def get_price(subscription: Dict[str, Any]) -> Dict[str, Any]:
    return _first_item(subscription).get("price") or {}


def get_price_id(subscription: Dict[str, Any]) -> Optional[str]:
    return get_price(subscription).get("id")


def map_stripe_status(status: Optional[str]) -> str:
    """Platform status for a Stripe subscription status received by webhook."""
    return WEBHOOK_STATUS_MAPPING.get(status or "", SubscriptionStatus.PAST_DUE.value)


def map_verified_status(status: Optional[str]) -> str:
    """Platform status for a Stripe subscription status read at checkout verification."""
    return VERIFY_STATUS_MAPPING.get(status or "", SubscriptionStatus.NONE.value)


def sanitize(payload: Any) -> Any:
    """Copy of a Stripe payload without secrets and payment method details."""
    if isinstance(payload, dict):
        return {key: sanitize(value) for key, value in payload.items() if key not in SENSITIVE_KEYS}
    if isinstance(payload, list):
        return [sanitize(value) for value in payload]
    return payload


def billing_cycle_from_price(price_id: Optional[str]) -> str:
    if not price_id:
        return "unknown"
    lowered = price_id.lower()
    if "monthly" in lowered:
        return "monthly"
    if "yearly" in lowered:
        return "yearly"
    return "unknown"


def object_id(value: Any) -> Optional[str]:
    """Id of an expandable Stripe field, given as an id string or an object."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id")
    return None
