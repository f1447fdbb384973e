"""
Billing service: payment and checkout session creation.

The PaymentIntent and checkout session metadata written here is what the webhook later reads back
as the subject hint. When the payer cannot be identified the metadata holds
the ``"unknown"`` placeholder and the webhook falls back to the receipt email.
"""
from typing import Optional

from curlara.core.config import ReconcilerConfig
from curlara.core.errors import AppError, MissingConfigurationError, ValidationError
from curlara.core.logging import log_event
from curlara.features.billing.provider import PaymentProcessor, ProcessorError
from curlara.features.entitlements.models import (
    UNKNOWN_SUBJECT,
    ResolutionSignals,
    Resolved,
)
from curlara.features.entitlements.resolver import IdentityResolver
from curlara.features.entitlements.store import utcnow


def billing_enabled(config: ReconcilerConfig) -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(config.stripe_secret_key)


def start_payment_intent(
    config: ReconcilerConfig,
    processor: PaymentProcessor,
    resolver: IdentityResolver,
    signals: ResolutionSignals,
    amount: Optional[int] = None,
) -> dict:
    """
    Create a PaymentIntent for the paid analysis.

    The payer is resolved from the request body, the session cookie or the
    bearer token (email lookup is not used: there is no payment yet).

    Returns:
        {"clientSecret", "paymentIntentId", "userId", "warning"?}

    Raises:
        MissingConfigurationError: STRIPE_SECRET_KEY not set
        ValidationError: non-positive amount
        AppError: Stripe rejected the request (payment_processor_error)
    """
    if not billing_enabled(config):
        raise MissingConfigurationError(
            "Stripe not configured",
            hint="Configure STRIPE_SECRET_KEY in the environment",
        )
    amount = config.default_amount if amount is None else amount
    if amount <= 0:
        raise ValidationError("amount must be positive", hint="Send the amount in cents")

    resolution = resolver.without("email").resolve(signals)
    user_id = resolution.subject_id if isinstance(resolution, Resolved) else None
    user_email = resolution.email if isinstance(resolution, Resolved) else None
    if not user_id:
        log_event(
            "warning",
            "payment_intent.subject_missing",
            extra={"hint": "Send userId in the request body: {amount, userId}"},
        )

    try:
        intent = processor.create_payment_intent(
            amount=amount,
            currency=config.currency,
            metadata={
                "userId": user_id or UNKNOWN_SUBJECT,
                "userEmail": user_email or UNKNOWN_SUBJECT,
                "environment": config.environment,
                "timestamp": utcnow().isoformat(),
            },
            receipt_email=user_email,
            description=config.product_description,
        )
    except ProcessorError as e:
        raise AppError(
            str(e),
            code="payment_processor_error",
            status_code=500,
            hint="Check STRIPE_SECRET_KEY and the Stripe dashboard logs",
        )
    log_event(
        "info",
        "payment_intent.created",
        subject_id=user_id,
        extra={"payment_intent_id": intent.payment_intent_id, "amount": intent.amount},
    )

    response = {
        "clientSecret": intent.client_secret,
        "paymentIntentId": intent.payment_intent_id,
        "userId": user_id or UNKNOWN_SUBJECT,
    }
    if not user_id:
        response["warning"] = "userId not detected - webhook will fall back to the receipt email"
    return response


def start_checkout(
    config: ReconcilerConfig,
    processor: PaymentProcessor,
    resolver: IdentityResolver,
    signals: ResolutionSignals,
    price_id: Optional[str],
    customer_email: Optional[str] = None,
    customer_name: Optional[str] = None,
    origin: Optional[str] = None,
) -> dict:
    """
    Create an embedded subscription checkout session.

    The session metadata carries the resolved ``userId`` so the
    ``checkout.session.completed`` webhook can attribute the payment; the
    customer email is set on the session as the fallback hint.

    Returns:
        {"clientSecret", "sessionId", "userId", "warning"?}

    Raises:
        MissingConfigurationError: STRIPE_SECRET_KEY not set
        ValidationError: missing priceId
        AppError: Stripe rejected the request (payment_processor_error)
    """
    if not billing_enabled(config):
        raise MissingConfigurationError(
            "Stripe not configured",
            hint="Configure STRIPE_SECRET_KEY in the environment",
        )
    price_id = (price_id or "").strip()
    if not price_id:
        raise ValidationError("priceId is required", hint="Send the Stripe price id: {priceId}")

    resolution = resolver.without("email").resolve(signals)
    user_id = resolution.subject_id if isinstance(resolution, Resolved) else None
    resolved_email = resolution.email if isinstance(resolution, Resolved) else None
    email = (customer_email or "").strip() or resolved_email
    if not user_id:
        log_event(
            "warning",
            "checkout.subject_missing",
            extra={"hint": "Sign in before checkout so the session carries a userId"},
        )

    base = (origin or config.base_url).rstrip("/")
    metadata = {
        "userId": user_id or UNKNOWN_SUBJECT,
        "userEmail": email or UNKNOWN_SUBJECT,
        "type": "hair_analysis",
        "environment": config.environment,
    }
    if customer_name:
        metadata["customer_name"] = customer_name
    try:
        session = processor.create_checkout_session(
            price_id=price_id,
            return_url=f"{base}/analysis?success=true&session_id={{CHECKOUT_SESSION_ID}}",
            metadata=metadata,
            customer_email=email,
        )
    except ProcessorError as e:
        raise AppError(
            str(e),
            code="payment_processor_error",
            status_code=500,
            hint="Check the priceId and STRIPE_SECRET_KEY",
        )
    log_event(
        "info",
        "checkout.created",
        subject_id=user_id,
        extra={"session_id": session.session_id, "price_id": price_id},
    )

    response = {
        "clientSecret": session.client_secret,
        "sessionId": session.session_id,
        "userId": user_id or UNKNOWN_SUBJECT,
    }
    if not user_id:
        response["warning"] = "userId not detected - webhook will fall back to the customer email"
    return response
