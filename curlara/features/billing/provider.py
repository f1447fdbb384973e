"""
Payment processor protocol.

The reconciler talks to Stripe only through this interface, so tests swap in
fakes and the entitlement logic never touches the SDK directly.
"""
from typing import Protocol, Dict, Optional

from curlara.features.entitlements.models import (
    CheckoutSessionHandle,
    CheckoutSessionSnapshot,
    PaymentIntentHandle,
)


class PaymentProcessor(Protocol):
    """
    Implementations must handle:
    - Webhook signature verification over the raw body
    - Checkout session lookup (manual confirmation / polling)
    - PaymentIntent and checkout session creation
    """

    def verify_signature(self, body: bytes, signature: str, secret: str) -> None:
        """
        Verify a webhook signature over the byte-exact body.

        Raises:
            SignatureMismatch: If the signature does not match
        """
        ...

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionSnapshot:
        """
        Fetch a checkout session by id.

        Raises:
            ProcessorError: If the lookup fails
        """
        ...

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: Dict[str, str],
        receipt_email: Optional[str] = None,
        description: Optional[str] = None,
    ) -> PaymentIntentHandle:
        """
        Create a PaymentIntent carrying subject hints in its metadata.

        Raises:
            ProcessorError: If creation fails
        """
        ...

    def create_checkout_session(
        self,
        price_id: str,
        return_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
    ) -> CheckoutSessionHandle:
        """
        Create an embedded subscription checkout session.

        Raises:
            ProcessorError: If creation fails
        """
        ...


class ProcessorError(Exception):
    """Base exception for payment processor errors."""
    pass


class SignatureMismatch(ProcessorError):
    """Webhook signature did not verify."""
    pass
