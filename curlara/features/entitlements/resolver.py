"""
Identity resolution for payments and payment requests.

Strategies run in a fixed order and the first one that produces a subject
wins. Earlier strategies are the more trustworthy ones:

1. ``body``   - id supplied by an already-authenticated client, or written
                into processor metadata by this backend
2. ``cookie`` - the ``authToken`` session cookie, verified
3. ``bearer`` - ``Authorization: Bearer`` token, verified
4. ``email``  - profile lookup by email

A strategy returns ``Resolved`` or ``None`` ("try the next one"). A failing
verifier or lookup is logged and treated the same as ``None``.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol, Sequence, Tuple

from curlara.core.logging import log_event
from curlara.core.session_auth import VerifiedSession, bearer_token
from curlara.features.entitlements.models import (
    Resolution,
    ResolutionSignals,
    Resolved,
    Unresolved,
    clean_identifier,
)

logger = logging.getLogger("curlara")

CredentialVerifier = Callable[[str], VerifiedSession]


class SubjectDirectory(Protocol):
    def find_subject_by_email(self, email: str) -> Optional[str]:
        ...


Strategy = Callable[[ResolutionSignals], Optional[Resolved]]


def body_strategy(signals: ResolutionSignals) -> Optional[Resolved]:
    subject_id = clean_identifier(signals.user_id)
    if subject_id:
        return Resolved(subject_id=subject_id, strategy="body", email=clean_identifier(signals.email))
    return None


def _verified(verifier: CredentialVerifier, token: Optional[str], strategy: str) -> Optional[Resolved]:
    if not token:
        return None
    try:
        session = verifier(token)
    except Exception as e:
        logger.info(f"{strategy} credential rejected: {e.__class__.__name__}", extra={"strategy": strategy})
        return None
    subject_id = clean_identifier(session.subject_id)
    if not subject_id:
        return None
    return Resolved(subject_id=subject_id, strategy=strategy, email=session.email)


def cookie_strategy(verifier: CredentialVerifier) -> Strategy:
    def resolve(signals: ResolutionSignals) -> Optional[Resolved]:
        return _verified(verifier, signals.session_cookie, "cookie")
    return resolve


def bearer_strategy(verifier: CredentialVerifier) -> Strategy:
    def resolve(signals: ResolutionSignals) -> Optional[Resolved]:
        return _verified(verifier, bearer_token(signals.authorization), "bearer")
    return resolve


def email_strategy(directory: SubjectDirectory) -> Strategy:
    def resolve(signals: ResolutionSignals) -> Optional[Resolved]:
        email = clean_identifier(signals.email)
        if not email:
            return None
        try:
            subject_id = directory.find_subject_by_email(email)
        except Exception as e:
            logger.warning(f"email lookup failed: {e.__class__.__name__}", extra={"strategy": "email"})
            return None
        subject_id = clean_identifier(subject_id)
        if not subject_id:
            return None
        return Resolved(subject_id=subject_id, strategy="email", email=email)
    return resolve


class IdentityResolver:
    """Short-circuiting pipeline over an ordered list of strategies."""

    def __init__(self, strategies: Sequence[Tuple[str, Strategy]]):
        self.strategies = list(strategies)

    @classmethod
    def default(cls, verifier: Optional[CredentialVerifier], directory: Optional[SubjectDirectory]) -> "IdentityResolver":
        strategies: list[Tuple[str, Strategy]] = [("body", body_strategy)]
        if verifier is not None:
            strategies.append(("cookie", cookie_strategy(verifier)))
            strategies.append(("bearer", bearer_strategy(verifier)))
        if directory is not None:
            strategies.append(("email", email_strategy(directory)))
        return cls(strategies)

    def without(self, *names: str) -> "IdentityResolver":
        return IdentityResolver([(n, s) for n, s in self.strategies if n not in names])

    def resolve(self, signals: ResolutionSignals) -> Resolution:
        tried = []
        for name, strategy in self.strategies:
            tried.append(name)
            resolved = strategy(signals)
            if resolved is not None:
                log_event(
                    "info",
                    "identity.resolved",
                    subject_id=resolved.subject_id,
                    extra={"strategy": name, "tried": ",".join(tried)},
                )
                return resolved
        log_event("warning", "identity.unresolved", extra={"tried": ",".join(tried)})
        return Unresolved(tried=tuple(tried))
