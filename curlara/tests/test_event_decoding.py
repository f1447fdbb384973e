import json

import pytest

from curlara.features.entitlements.events import EventDecodeError, decode_event
from curlara.features.entitlements.models import (
    ChargeSucceeded,
    EventKind,
    SubscriptionActivated,
    UnhandledEvent,
)
from curlara.tests.mocks import stripe_event


def _decode(event_type, obj):
    return decode_event(json.loads(stripe_event(event_type, obj)))


def test_payment_intent_succeeded_is_a_charge():
    event = _decode("payment_intent.succeeded", {
        "id": "pi_1",
        "receipt_email": None,
        "customer": {"id": "cus_1", "object": "customer"},
        "metadata": {"userId": "u1", "userEmail": "u1@example.com"},
    })

    assert isinstance(event, ChargeSucceeded)
    assert event.kind is EventKind.CHARGE_SUCCEEDED
    assert event.object_id == "pi_1"
    assert (event.hint.user_id, event.hint.email, event.hint.customer_id) == ("u1", "u1@example.com", "cus_1")
    assert event.created_at is not None


def test_receipt_email_preferred_over_metadata():
    event = _decode("payment_intent.succeeded", {
        "id": "pi_1",
        "receipt_email": "receipt@example.com",
        "metadata": {"userId": "unknown", "userEmail": "unknown"},
    })

    assert event.hint.user_id is None
    assert event.hint.email == "receipt@example.com"


def test_checkout_session_completed_is_an_activation():
    event = _decode("checkout.session.completed", {
        "id": "cs_1",
        "customer": "cus_9",
        "customer_email": "fallback@example.com",
        "customer_details": {"email": "details@example.com"},
        "metadata": {"userId": "u9"},
    })

    assert isinstance(event, SubscriptionActivated)
    assert event.hint.email == "details@example.com"
    assert event.hint.customer_id == "cus_9"


def test_other_types_are_unhandled():
    event = _decode("invoice.paid", {"id": "in_1"})

    assert isinstance(event, UnhandledEvent)
    assert event.stripe_type == "invoice.paid"


@pytest.mark.parametrize("payload", [[], {"type": "payment_intent.succeeded"}, {"id": "evt_1"}])
def test_malformed_events_are_rejected(payload):
    with pytest.raises(EventDecodeError):
        decode_event(payload)
