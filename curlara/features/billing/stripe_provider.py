"""
Stripe implementation of the PaymentProcessor protocol.

Signature checks use ``stripe.WebhookSignature.verify_header`` so the body is
verified byte-for-byte before anything parses it.
"""
from typing import Dict, Any, Optional

import stripe

from curlara.features.billing.provider import (
    ProcessorError,
    SignatureMismatch,
)
from curlara.features.entitlements.models import (
    CheckoutSessionHandle,
    CheckoutSessionSnapshot,
    PaymentIntentHandle,
    SubjectHint,
)


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    try:
        value = obj.get(key, default)
    except AttributeError:
        value = getattr(obj, key, default)
    return default if value is None else value


class StripeProcessor:
    """Stripe implementation of PaymentProcessor."""

    def __init__(self, secret_key: Optional[str]):
        """
        Args:
            secret_key: Stripe secret key; required for API calls, not for
                signature verification
        """
        self.secret_key = secret_key

    def _require_key(self) -> str:
        if not self.secret_key:
            raise ProcessorError("STRIPE_SECRET_KEY not configured")
        return self.secret_key

    def verify_signature(self, body: bytes, signature: str, secret: str) -> None:
        try:
            payload = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SignatureMismatch(f"Body is not valid UTF-8: {e}")
        try:
            stripe.WebhookSignature.verify_header(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            raise SignatureMismatch(str(e))

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionSnapshot:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self._require_key())
        except stripe.StripeError as e:
            raise ProcessorError(f"Stripe checkout session lookup failed: {e}")

        metadata = _get(session, "metadata", {})
        details = _get(session, "customer_details", {})
        return CheckoutSessionSnapshot(
            session_id=_get(session, "id", session_id),
            payment_status=_get(session, "payment_status"),
            status=_get(session, "status"),
            hint=SubjectHint.from_raw(
                user_id=_get(metadata, "userId"),
                email=_get(details, "email") or _get(session, "customer_email"),
                customer_id=_get(session, "customer"),
            ),
        )

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        receipt_email: Optional[str] = None,
        description: Optional[str] = None,
    ) -> PaymentIntentHandle:
        params: Dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "automatic_payment_methods": {"enabled": True},
            "metadata": metadata,
        }
        if receipt_email:
            params["receipt_email"] = receipt_email
        if description:
            params["description"] = description
        try:
            intent = stripe.PaymentIntent.create(api_key=self._require_key(), **params)
        except stripe.StripeError as e:
            raise ProcessorError(f"Stripe payment intent creation failed: {e}")
        return PaymentIntentHandle(
            payment_intent_id=_get(intent, "id"),
            client_secret=_get(intent, "client_secret"),
            amount=_get(intent, "amount", amount),
            metadata=dict(metadata),
        )

    def create_checkout_session(
        self,
        price_id: str,
        return_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
    ) -> CheckoutSessionHandle:
        params: Dict[str, Any] = {
            "ui_mode": "embedded",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "return_url": return_url,
            "metadata": metadata,
        }
        if customer_email:
            params["customer_email"] = customer_email
        try:
            session = stripe.checkout.Session.create(api_key=self._require_key(), **params)
        except stripe.StripeError as e:
            raise ProcessorError(f"Stripe checkout session creation failed: {e}")
        return CheckoutSessionHandle(
            session_id=_get(session, "id"),
            client_secret=_get(session, "client_secret"),
            url=_get(session, "url"),
            metadata=dict(metadata),
        )
