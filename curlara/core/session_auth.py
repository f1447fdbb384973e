"""
Supabase session token verification.

Supabase access tokens are HS256 JWTs signed with the project's JWT secret
and carry the auth user id in ``sub``. The same verifier backs the
``authToken`` / ``sb-access-token`` cookies and ``Authorization: Bearer``.

Testing:
- Use create_test_session_token() to mint tokens without a network.
"""
import time
from dataclasses import dataclass
from typing import Optional

import jwt

from curlara.core.errors import MissingConfigurationError


@dataclass(frozen=True)
class VerifiedSession:
    subject_id: str
    email: Optional[str] = None


class SessionTokenVerifier:
    """Callable verifier: token -> VerifiedSession, raising jwt.PyJWTError."""

    def __init__(self, secret: Optional[str], audience: Optional[str] = "authenticated", leeway: int = 10):
        self.secret = secret
        self.audience = audience
        self.leeway = leeway

    def __call__(self, token: str) -> VerifiedSession:
        if not self.secret:
            raise MissingConfigurationError(
                "SUPABASE_JWT_SECRET not configured",
                hint="Configure SUPABASE_JWT_SECRET to verify session tokens",
            )
        options = {"verify_signature": True, "verify_exp": True, "verify_aud": bool(self.audience)}
        claims = jwt.decode(
            token,
            self.secret,
            algorithms=["HS256"],
            audience=self.audience if self.audience else None,
            leeway=self.leeway,
            options=options,
        )
        subject_id = claims.get("sub")
        if not subject_id:
            raise jwt.InvalidTokenError("No 'sub' claim in token")
        return VerifiedSession(subject_id=subject_id, email=claims.get("email"))


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an Authorization header value."""
    if not authorization:
        return None
    scheme, _, value = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return value.strip() or None


# ============================================================================
# Test Helpers (deterministic, no network)
# ============================================================================

def create_test_session_token(
    sub: str = "test_user_123",
    email: Optional[str] = "test@example.com",
    secret: str = "test-supabase-jwt-secret",
    audience: Optional[str] = "authenticated",
    exp_minutes: int = 60,
) -> str:
    """Mint a Supabase-shaped access token signed with ``secret``."""
    now = int(time.time())
    payload = {
        "sub": sub,
        "email": email,
        "role": "authenticated",
        "iat": now,
        "exp": now + (exp_minutes * 60),
    }
    if audience:
        payload["aud"] = audience
    return jwt.encode(payload, secret, algorithm="HS256")
