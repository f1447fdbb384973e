"""
Stripe webhook routes.

- POST /api/stripe-webhook: verify, decode and reconcile a Stripe event
- GET  /api/stripe-webhook: which secrets are configured (never their values)
- POST /api/stripe-webhook/confirm: manual confirmation after checkout
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from curlara.api.deps import get_confirmer, get_config, get_ingestor
from curlara.core.config import ReconcilerConfig
from curlara.core.errors import SubjectUnresolvedError
from curlara.core.logging import get_request_id
from curlara.features.billing.service import billing_enabled
from curlara.features.entitlements.confirmation import PaymentConfirmer
from curlara.features.entitlements.gate import session_cookie_from
from curlara.features.entitlements.ingestor import EventIngestor


router = APIRouter(prefix="/api/stripe-webhook", tags=["stripe-webhook"])


class ConfirmRequest(BaseModel):
    session_id: Optional[str] = None


@router.post("")
async def handle_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    ingestor: EventIngestor = Depends(get_ingestor),
):
    """
    Handle Stripe webhook events.

    The raw body is read untouched; signature verification needs the exact
    bytes Stripe signed.

    Returns:
        {"received": true, "eventId", "eventType", "outcome", ...}

    Errors:
        400: Missing/invalid signature or payload
        202: Payment with no attributable user (acknowledged, flagged for follow-up)
        500: Webhook secret missing, or the access projection could not be written
    """
    body = await request.body()
    try:
        report = ingestor.ingest(body, stripe_signature)
    except SubjectUnresolvedError as e:
        # Redelivery cannot fix a missing userId; acknowledge and leave it to an operator.
        return JSONResponse(
            status_code=202,
            content={
                "received": True,
                "eventId": e.details.get("eventId"),
                "eventType": e.details.get("eventType"),
                "error": e.code,
                "hint": e.hint,
                "request_id": get_request_id(),
            },
        )
    return report.as_response()


@router.get("")
async def webhook_diagnostics(config: ReconcilerConfig = Depends(get_config)):
    return {
        "status": "Webhook endpoint is reachable",
        "configured": {
            "stripe_secret_key": billing_enabled(config),
            "webhook_secret": bool(config.webhook_secret),
            "session_jwt_secret": bool(config.session_jwt_secret),
        },
        "environment": config.environment,
    }


@router.post("/confirm")
async def confirm_payment(
    body: ConfirmRequest,
    request: Request,
    authorization: Optional[str] = Header(None),
    confirmer: PaymentConfirmer = Depends(get_confirmer),
):
    """
    Confirm a checkout session without waiting for the webhook.

    Returns:
        {"success", "message", "userId", "subscriptionEndDate", "projections"}

    Errors:
        400: session_id missing, session unknown to Stripe, or not paid
        422: session carries no attributable user
    """
    return confirmer.confirm_checkout(
        body.session_id,
        session_cookie=session_cookie_from(request.cookies),
        authorization=authorization,
    )
