"""
Stripe webhook ingestion.

1. Reject unsigned requests, refuse to run without a webhook secret
2. Verify the signature over the raw body, then parse and decode
3. Acknowledge event types we do not act on
4. Resolve the subject (metadata userId, then profile email lookup)
5. Write the entitlement through EntitlementStore and record the outcome

Deliveries are at-least-once; a replay simply runs the write again. The
flag is already true and the expiry only moves forward, so replays never
shorten an entitlement and no dedup table is consulted.
"""
import json
from dataclasses import dataclass
from typing import Optional

from curlara.core.config import ReconcilerConfig
from curlara.core.errors import (
    AuthenticityError,
    MissingConfigurationError,
    ProjectionWriteError,
    SubjectUnresolvedError,
)
from curlara.core.logging import log_event
from curlara.features.billing.provider import PaymentProcessor, SignatureMismatch
from curlara.features.entitlements.events import HANDLED_TYPES, EventDecodeError, decode_event
from curlara.features.entitlements.models import (
    EntitlementWriteResult,
    PaymentEvent,
    ResolutionSignals,
    Resolved,
    UnhandledEvent,
)
from curlara.features.entitlements.resolver import IdentityResolver
from curlara.features.entitlements.store import EntitlementStore


@dataclass
class IngestionReport:
    event: PaymentEvent
    processed: bool
    resolution: Optional[Resolved] = None
    result: Optional[EntitlementWriteResult] = None

    @property
    def outcome(self) -> str:
        if not self.processed:
            return "ignored"
        return self.result.outcome if self.result else "unresolved"

    def as_response(self) -> dict:
        body = {
            "received": True,
            "eventId": self.event.event_id,
            "eventType": self.event.stripe_type,
            "outcome": self.outcome,
        }
        if self.result is not None:
            body["userId"] = self.result.subject_id
            body["subscriptionEndDate"] = (
                self.result.expires_at.isoformat() if self.result.expires_at else None
            )
            body["projections"] = self.result.as_dict()
        return body


class EventIngestor:
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

    def verify(self, body: bytes, signature: Optional[str]) -> PaymentEvent:
        """Authenticate the raw body and decode it. Nothing is parsed before the signature check."""
        if not signature:
            raise AuthenticityError(
                "Stripe signature missing",
                hint="This request did not come from Stripe; check the webhook endpoint configuration in the Stripe dashboard",
            )
        if not self.config.webhook_secret:
            raise MissingConfigurationError(
                "Webhook secret not configured",
                hint="Configure STRIPE_WEBHOOK_SECRET in the environment",
            )
        try:
            self.processor.verify_signature(body, signature, self.config.webhook_secret)
        except SignatureMismatch as e:
            log_event(
                "error",
                "webhook.signature_invalid",
                error_code=AuthenticityError.code,
                extra={"reason": str(e), "body_length": len(body)},
            )
            raise AuthenticityError(
                f"Webhook Error: {e}",
                hint="Check that STRIPE_WEBHOOK_SECRET is correct and matches the environment (test/live)",
            )

        try:
            return decode_event(json.loads(body))
        except (ValueError, EventDecodeError) as e:
            raise AuthenticityError(
                f"Invalid payload: {e}",
                code="invalid_payload",
                hint="Signed payload is not a Stripe event object",
            )

    def ingest(self, body: bytes, signature: Optional[str]) -> IngestionReport:
        event = self.verify(body, signature)
        log_event(
            "info",
            "webhook.verified",
            event_id=event.event_id,
            event_type=event.stripe_type,
        )

        if isinstance(event, UnhandledEvent):
            log_event(
                "info",
                "webhook.received_not_processed",
                event_id=event.event_id,
                event_type=event.stripe_type,
                extra={"handled_types": ",".join(HANDLED_TYPES)},
            )
            self.store.record_outcome(
                source="webhook",
                outcome="ignored",
                event_id=event.event_id,
                event_type=event.stripe_type,
            )
            return IngestionReport(event=event, processed=False)

        hint = event.hint
        resolution = self.resolver.resolve(ResolutionSignals(user_id=hint.user_id, email=hint.email))
        if not isinstance(resolution, Resolved):
            detail = f"object={event.object_id} email={hint.email} customer={hint.customer_id}"
            self.store.record_outcome(
                source="webhook",
                outcome="unresolved",
                event_id=event.event_id,
                event_type=event.stripe_type,
                needs_follow_up=True,
                detail=detail,
            )
            log_event(
                "error",
                "entitlement.subject_unresolved",
                event_id=event.event_id,
                event_type=event.stripe_type,
                error_code=SubjectUnresolvedError.code,
                extra={"detail": detail},
            )
            raise SubjectUnresolvedError(
                "Payment event has no attributable user",
                hint="userId missing from metadata and no profile matches the payer email; reconcile manually",
                details={"eventId": event.event_id, "eventType": event.stripe_type},
            )

        result = self.store.set_paid(
            resolution.subject_id,
            email=resolution.email or hint.email,
            customer_id=hint.customer_id,
        )
        self.store.record_outcome(
            source="webhook",
            outcome=result.outcome,
            event_id=event.event_id,
            event_type=event.stripe_type,
            subject_id=result.subject_id,
            result=result,
            needs_follow_up=not result.entitled,
            detail=f"strategy={resolution.strategy}",
        )
        log_event(
            "info" if result.entitled else "warning",
            "entitlement.outcome",
            subject_id=result.subject_id,
            event_id=event.event_id,
            event_type=event.stripe_type,
            extra={
                "outcome": result.outcome,
                "strategy": resolution.strategy,
                "profile_updated": result.profile.updated,
                "access_updated": result.access.updated,
            },
        )

        report = IngestionReport(event=event, processed=True, resolution=resolution, result=result)
        if result.access.error is not None:
            # Stripe redelivers on 5xx; the access projection must not stay negative.
            raise ProjectionWriteError(
                result.access.error.message,
                hint=result.access.error.hint,
                details={
                    "eventId": event.event_id,
                    "eventType": event.stripe_type,
                    "projections": result.as_dict(),
                },
            )
        return report
