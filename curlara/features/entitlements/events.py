"""Decode verified Stripe event JSON into PaymentEvent variants."""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from curlara.features.entitlements.models import (
    ChargeSucceeded,
    PaymentEvent,
    SubjectHint,
    SubscriptionActivated,
    UnhandledEvent,
)

PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"

HANDLED_TYPES = (PAYMENT_INTENT_SUCCEEDED, CHECKOUT_SESSION_COMPLETED)


class EventDecodeError(ValueError):
    pass


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _customer_id(raw: Any) -> Optional[str]:
    # Expanded customers arrive as objects.
    if isinstance(raw, dict):
        return raw.get("id")
    return raw


def _created_at(raw: Any) -> Optional[datetime]:
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw, timezone.utc)
    return None


def decode_event(payload: Dict[str, Any]) -> PaymentEvent:
    if not isinstance(payload, dict):
        raise EventDecodeError("Event payload must be a JSON object")
    event_id = payload.get("id")
    event_type = payload.get("type")
    if not event_id or not event_type:
        raise EventDecodeError("Event is missing 'id' or 'type'")

    created_at = _created_at(payload.get("created"))
    obj = _as_dict(_as_dict(payload.get("data")).get("object"))
    metadata = _as_dict(obj.get("metadata"))

    if event_type == PAYMENT_INTENT_SUCCEEDED:
        return ChargeSucceeded(
            event_id=event_id,
            stripe_type=event_type,
            created_at=created_at,
            object_id=obj.get("id"),
            hint=SubjectHint.from_raw(
                user_id=metadata.get("userId"),
                email=obj.get("receipt_email") or metadata.get("userEmail"),
                customer_id=_customer_id(obj.get("customer")),
            ),
        )

    if event_type == CHECKOUT_SESSION_COMPLETED:
        details = _as_dict(obj.get("customer_details"))
        return SubscriptionActivated(
            event_id=event_id,
            stripe_type=event_type,
            created_at=created_at,
            object_id=obj.get("id"),
            hint=SubjectHint.from_raw(
                user_id=metadata.get("userId"),
                email=details.get("email") or obj.get("customer_email"),
                customer_id=_customer_id(obj.get("customer")),
            ),
        )

    return UnhandledEvent(event_id=event_id, stripe_type=event_type, created_at=created_at)
