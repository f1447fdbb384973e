"""
Synchronous reconciliation paths that bypass the webhook.

- ``confirm_checkout``: called by the client right after checkout with the
  Stripe ``session_id``. The session must be paid; then the same write the
  webhook performs is applied.
- ``verify_payment``: polling from the success page. Reports the session's
  payment status and, when paid, reconciles by the payer's email.
"""
from typing import Optional

from curlara.core.config import ReconcilerConfig
from curlara.core.errors import (
    ProjectionWriteError,
    SubjectUnresolvedError,
    UpstreamVerificationError,
    ValidationError,
)
from curlara.core.logging import log_event
from curlara.features.billing.provider import PaymentProcessor, ProcessorError
from curlara.features.entitlements.models import (
    CheckoutSessionSnapshot,
    EntitlementWriteResult,
    ResolutionSignals,
    Resolved,
)
from curlara.features.entitlements.resolver import IdentityResolver
from curlara.features.entitlements.store import EntitlementStore


class PaymentConfirmer:
    def __init__(
        self,
        config: ReconcilerConfig,
        processor: PaymentProcessor,
        store: EntitlementStore,
        resolver: IdentityResolver,
    ):
        self.config = config
        self.processor = processor
        self.store = store
        self.resolver = resolver

    def _fetch(self, session_id: Optional[str]) -> CheckoutSessionSnapshot:
        if not session_id:
            raise ValidationError("session_id is required", hint="Send the Stripe checkout session id")
        try:
            return self.processor.retrieve_checkout_session(session_id)
        except ProcessorError as e:
            raise UpstreamVerificationError(
                str(e),
                hint="Stripe could not return this checkout session",
                details={"payment_status": None},
            )

    def confirm_checkout(
        self,
        session_id: Optional[str],
        session_cookie: Optional[str] = None,
        authorization: Optional[str] = None,
    ) -> dict:
        """Manual confirmation: {success, userId, subscriptionEndDate}.

        Session metadata wins; the caller's own session cookie or bearer token
        is tried before falling back to the payer email.
        """
        snapshot = self._fetch(session_id)
        if not snapshot.paid:
            log_event(
                "warning",
                "confirmation.not_paid",
                extra={"session_id": snapshot.session_id, "payment_status": snapshot.payment_status},
            )
            raise UpstreamVerificationError(
                "Payment not completed",
                hint=f"Stripe reports payment_status={snapshot.payment_status}",
                details={"payment_status": snapshot.payment_status},
            )

        hint = snapshot.hint
        resolution = self.resolver.resolve(
            ResolutionSignals(
                user_id=hint.user_id,
                session_cookie=session_cookie,
                authorization=authorization,
                email=hint.email,
            )
        )
        if not isinstance(resolution, Resolved):
            self.store.record_outcome(
                source="confirmation",
                outcome="unresolved",
                event_id=snapshot.session_id,
                needs_follow_up=True,
                detail=f"email={hint.email} customer={hint.customer_id}",
            )
            raise SubjectUnresolvedError(
                "userId not found in session metadata",
                details={"sessionId": snapshot.session_id},
            )

        result = self._apply(resolution, hint.email, hint.customer_id, snapshot.session_id, "confirmation")
        return {
            "success": result.entitled,
            "message": "Payment confirmed and user updated" if result.entitled else "Payment confirmed but access was not granted",
            "userId": result.subject_id,
            "subscriptionEndDate": result.expires_at.isoformat() if result.expires_at else None,
            "projections": result.as_dict(),
        }

    def verify_payment(self, session_id: Optional[str]) -> dict:
        """Polling: {paid, status, customerEmail}; reconciles paid sessions by email."""
        snapshot = self._fetch(session_id)
        hint = snapshot.hint
        if snapshot.paid and hint.email:
            resolution = self.resolver.without("body", "cookie", "bearer").resolve(
                ResolutionSignals(email=hint.email)
            )
            if isinstance(resolution, Resolved):
                self._apply(resolution, hint.email, hint.customer_id, snapshot.session_id, "verification")
            else:
                self.store.record_outcome(
                    source="verification",
                    outcome="unresolved",
                    event_id=snapshot.session_id,
                    needs_follow_up=True,
                    detail=f"email={hint.email}",
                )
        return {
            "paid": snapshot.paid,
            "status": snapshot.payment_status,
            "customerEmail": hint.email,
        }

    def _apply(
        self,
        resolution: Resolved,
        email: Optional[str],
        customer_id: Optional[str],
        session_id: str,
        source: str,
    ) -> EntitlementWriteResult:
        result = self.store.set_paid(
            resolution.subject_id,
            email=resolution.email or email,
            customer_id=customer_id,
        )
        self.store.record_outcome(
            source=source,
            outcome=result.outcome,
            event_id=session_id,
            subject_id=result.subject_id,
            result=result,
            needs_follow_up=not result.entitled,
            detail=f"strategy={resolution.strategy}",
        )
        if result.access.error is not None:
            raise ProjectionWriteError(
                result.access.error.message,
                hint=result.access.error.hint,
                details={"userId": result.subject_id, "projections": result.as_dict()},
            )
        return result
