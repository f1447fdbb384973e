"""
Payment routes used by the checkout pages.

- POST /api/verify-payment: success-page polling
- POST /api/stripe/create-payment-intent: start a payment for the current user
- POST /api/create-checkout: start an embedded subscription checkout
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel

from curlara.api.deps import get_config, get_confirmer, get_processor, get_resolver
from curlara.core.config import ReconcilerConfig
from curlara.features.billing.provider import PaymentProcessor
from curlara.features.billing.service import start_checkout, start_payment_intent
from curlara.features.entitlements.confirmation import PaymentConfirmer
from curlara.features.entitlements.gate import session_cookie_from
from curlara.features.entitlements.models import ResolutionSignals
from curlara.features.entitlements.resolver import IdentityResolver


router = APIRouter(prefix="/api", tags=["payments"])


class VerifyPaymentRequest(BaseModel):
    sessionId: Optional[str] = None


class CreatePaymentIntentRequest(BaseModel):
    amount: Optional[int] = None
    userId: Optional[str] = None


class CreatePaymentIntentResponse(BaseModel):
    clientSecret: Optional[str]
    paymentIntentId: str
    userId: str
    warning: Optional[str] = None


class CreateCheckoutRequest(BaseModel):
    priceId: Optional[str] = None
    customerEmail: Optional[str] = None
    customerName: Optional[str] = None
    userId: Optional[str] = None


class CreateCheckoutResponse(BaseModel):
    clientSecret: Optional[str]
    sessionId: str
    userId: str
    warning: Optional[str] = None


@router.post("/verify-payment")
async def verify_payment(body: VerifyPaymentRequest, confirmer: PaymentConfirmer = Depends(get_confirmer)):
    return confirmer.verify_payment(body.sessionId)


@router.post(
    "/stripe/create-payment-intent",
    response_model=CreatePaymentIntentResponse,
    response_model_exclude_none=True,
)
async def create_payment_intent(
    body: CreatePaymentIntentRequest,
    request: Request,
    authorization: Optional[str] = Header(None),
    config: ReconcilerConfig = Depends(get_config),
    processor: PaymentProcessor = Depends(get_processor),
    resolver: IdentityResolver = Depends(get_resolver),
):
    """
    Create a PaymentIntent; the resolved user id is stored in its metadata.

    Errors:
        400: non-positive amount
        500: STRIPE_SECRET_KEY missing, or Stripe rejected the request
    """
    signals = ResolutionSignals(
        user_id=body.userId,
        session_cookie=session_cookie_from(request.cookies),
        authorization=authorization,
    )
    return start_payment_intent(config, processor, resolver, signals, amount=body.amount)


@router.post(
    "/create-checkout",
    response_model=CreateCheckoutResponse,
    response_model_exclude_none=True,
)
async def create_checkout(
    body: CreateCheckoutRequest,
    request: Request,
    authorization: Optional[str] = Header(None),
    origin: Optional[str] = Header(None),
    config: ReconcilerConfig = Depends(get_config),
    processor: PaymentProcessor = Depends(get_processor),
    resolver: IdentityResolver = Depends(get_resolver),
):
    """
    Create an embedded checkout session for a subscription price.

    Errors:
        400: missing priceId
        500: STRIPE_SECRET_KEY missing, or Stripe rejected the request
    """
    signals = ResolutionSignals(
        user_id=body.userId,
        session_cookie=session_cookie_from(request.cookies),
        authorization=authorization,
    )
    return start_checkout(
        config,
        processor,
        resolver,
        signals,
        price_id=body.priceId,
        customer_email=body.customerEmail,
        customer_name=body.customerName,
        origin=origin,
    )
