"""
Entitlement domain types.

Stripe payloads are loosely typed metadata bags; everything past the
ingestion boundary works with the frozen dataclasses below instead.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from curlara.core.errors import ProjectionWriteError


# Written into PaymentIntent metadata when no subject was known at creation.
UNKNOWN_SUBJECT = "unknown"


def clean_identifier(value: object) -> Optional[str]:
    """Map absent, blank and placeholder identifiers to None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text == UNKNOWN_SUBJECT:
        return None
    return text


class EventKind(str, Enum):
    CHARGE_SUCCEEDED = "charge-succeeded"
    SUBSCRIPTION_ACTIVATED = "subscription-activated"
    UNHANDLED = "unhandled"


@dataclass(frozen=True)
class SubjectHint:
    user_id: Optional[str] = None
    email: Optional[str] = None
    customer_id: Optional[str] = None

    @classmethod
    def from_raw(cls, user_id=None, email=None, customer_id=None) -> "SubjectHint":
        return cls(
            user_id=clean_identifier(user_id),
            email=clean_identifier(email),
            customer_id=clean_identifier(customer_id),
        )


@dataclass(frozen=True)
class ChargeSucceeded:
    """payment_intent.succeeded"""
    event_id: str
    stripe_type: str
    created_at: Optional[datetime]
    object_id: Optional[str]
    hint: SubjectHint
    kind: EventKind = EventKind.CHARGE_SUCCEEDED


@dataclass(frozen=True)
class SubscriptionActivated:
    """checkout.session.completed"""
    event_id: str
    stripe_type: str
    created_at: Optional[datetime]
    object_id: Optional[str]
    hint: SubjectHint
    kind: EventKind = EventKind.SUBSCRIPTION_ACTIVATED


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    stripe_type: str
    created_at: Optional[datetime]
    kind: EventKind = EventKind.UNHANDLED


PaymentEvent = Union[ChargeSucceeded, SubscriptionActivated, UnhandledEvent]
EntitlingEvent = Union[ChargeSucceeded, SubscriptionActivated]


@dataclass(frozen=True)
class ResolutionSignals:
    """Everything a request or event offers for identifying the payer."""
    user_id: Optional[str] = None
    session_cookie: Optional[str] = None
    authorization: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class Resolved:
    subject_id: str
    strategy: str
    email: Optional[str] = None


@dataclass(frozen=True)
class Unresolved:
    tried: tuple[str, ...] = ()


Resolution = Union[Resolved, Unresolved]


@dataclass
class ProjectionOutcome:
    """Result of one "update where exists" against a projection."""
    projection: str
    updated: bool = False
    matched: int = 0
    key: Optional[str] = None  # "id" | "email"
    error: Optional[ProjectionWriteError] = None

    def as_dict(self) -> dict:
        return {
            "updated": self.updated,
            "matched": self.matched,
            "key": self.key,
            "error": self.error.message if self.error else None,
        }


@dataclass
class EntitlementWriteResult:
    subject_id: str
    profile: ProjectionOutcome
    access: ProjectionOutcome
    expires_at: Optional[datetime] = None

    @property
    def entitled(self) -> bool:
        """Projection B is what the access gate reads, so it decides success."""
        return self.access.updated

    @property
    def partial(self) -> bool:
        return self.profile.updated != self.access.updated

    @property
    def outcome(self) -> str:
        if self.profile.updated and self.access.updated:
            return "entitled"
        if self.partial:
            return "partial"
        return "failed"

    def as_dict(self) -> dict:
        return {
            "profile": self.profile.as_dict(),
            "access": self.access.as_dict(),
        }


@dataclass(frozen=True)
class CheckoutSessionSnapshot:
    """The fields of a Stripe checkout session the reconciler looks at."""
    session_id: str
    payment_status: Optional[str]
    status: Optional[str] = None
    hint: SubjectHint = field(default_factory=SubjectHint)

    @property
    def paid(self) -> bool:
        return self.payment_status == "paid"


@dataclass(frozen=True)
class PaymentIntentHandle:
    payment_intent_id: str
    client_secret: Optional[str]
    amount: int
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class CheckoutSessionHandle:
    session_id: str
    client_secret: Optional[str]
    url: Optional[str] = None
    metadata: dict = field(default_factory=dict)


class GateState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    LOCALLY_AUTHENTICATED = "locally_authenticated"
    VERIFIED_NO_ENTITLEMENT = "verified_no_entitlement"
    VERIFIED_ENTITLED = "verified_entitled"


@dataclass(frozen=True)
class GateDecision:
    state: GateState
    allowed: bool
    subject_id: Optional[str] = None
    redirect_to: Optional[str] = None
