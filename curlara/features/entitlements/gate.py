"""
Access gate for the paid dashboard.

Per-request decision, nothing persisted:

    UNAUTHENTICATED          no session signal at all            -> deny
    LOCALLY_AUTHENTICATED    only an authToken cookie that does   -> allow if the
                             not verify to a subject                 bypass is on
    VERIFIED_NO_ENTITLEMENT  verified subject, users.has_paid     -> deny
                             not exactly true (or read failed)
    VERIFIED_ENTITLED        verified subject, users.has_paid     -> allow
                             is true
"""
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from curlara.core.config import ReconcilerConfig
from curlara.core.logging import log_event
from curlara.core.session_auth import bearer_token
from curlara.features.entitlements.models import GateDecision, GateState
from curlara.features.entitlements.resolver import CredentialVerifier

logger = logging.getLogger("curlara")

PRIMARY_SESSION_COOKIES = ("sb-access-token", "sb-refresh-token")
LOCAL_SESSION_COOKIE = "authToken"


@dataclass(frozen=True)
class GateRequest:
    path: str
    cookies: Mapping[str, str]
    authorization: Optional[str] = None


class AccessGate:
    def __init__(self, config: ReconcilerConfig, verifier: CredentialVerifier, store):
        self.config = config
        self.verifier = verifier
        self.store = store

    def protects(self, path: str) -> bool:
        return any(path == p or path.startswith(p.rstrip("/") + "/") for p in self.config.protected_prefixes)

    def _verify(self, token: Optional[str], source: str) -> Optional[str]:
        if not token:
            return None
        try:
            return self.verifier(token).subject_id
        except Exception as e:
            logger.info(f"gate: {source} did not verify ({e.__class__.__name__})")
            return None

    def _primary_subject(self, request: GateRequest) -> Optional[str]:
        for name in PRIMARY_SESSION_COOKIES:
            subject_id = self._verify(request.cookies.get(name), name)
            if subject_id:
                return subject_id
        return self._verify(bearer_token(request.authorization), "bearer")

    def evaluate(self, request: GateRequest) -> GateDecision:
        local_token = request.cookies.get(LOCAL_SESSION_COOKIE)
        subject_id = self._primary_subject(request) or self._verify(local_token, LOCAL_SESSION_COOKIE)

        if subject_id is None:
            if not local_token:
                return self._decide(request, GateState.UNAUTHENTICATED, allowed=False)
            if self.config.local_session_bypass:
                logger.warning(
                    "gate: local session bypasses the payment check",
                    extra={"path": request.path, "gate_state": GateState.LOCALLY_AUTHENTICATED.value},
                )
            return self._decide(
                request,
                GateState.LOCALLY_AUTHENTICATED,
                allowed=self.config.local_session_bypass,
            )

        try:
            flag = self.store.read_access_flag(subject_id)
        except Exception as e:
            log_event(
                "error",
                "gate.entitlement_read_failed",
                subject_id=subject_id,
                extra={"error": e.__class__.__name__, "path": request.path},
            )
            return self._decide(request, GateState.VERIFIED_NO_ENTITLEMENT, allowed=False, subject_id=subject_id)

        if flag is True:
            return self._decide(request, GateState.VERIFIED_ENTITLED, allowed=True, subject_id=subject_id)
        return self._decide(request, GateState.VERIFIED_NO_ENTITLEMENT, allowed=False, subject_id=subject_id)

    def _decide(self, request: GateRequest, state: GateState, allowed: bool, subject_id: Optional[str] = None) -> GateDecision:
        log_event(
            "info" if allowed else "warning",
            "gate.decision",
            subject_id=subject_id,
            extra={"gate_state": state.value, "path": request.path, "allowed": allowed},
        )
        return GateDecision(
            state=state,
            allowed=allowed,
            subject_id=subject_id,
            redirect_to=None if allowed else self.config.entry_point,
        )


def session_cookie_from(cookies: Mapping[str, str]) -> Optional[str]:
    """The cookie credential handed to the identity resolver."""
    for name in PRIMARY_SESSION_COOKIES + (LOCAL_SESSION_COOKIE,):
        if cookies.get(name):
            return cookies[name]
    return None
