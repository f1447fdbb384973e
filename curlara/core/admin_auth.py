"""
Operator authentication for the follow-up endpoints.

Shared-secret ``X-Admin-Key`` header compared against ADMIN_KEY. Actors are
identified in logs by a short hash of the key, never the key itself.
"""
import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from curlara.core.config import ReconcilerConfig
from curlara.core.errors import MissingConfigurationError, PermissionError


@dataclass
class AdminActor:
    """Represents an authenticated operator."""
    actor_id: str  # "admin_key:<hash>"
    auth_mechanism: str = "x_admin_key"


def verify_admin_key(request: Request, expected_key: Optional[str]) -> Optional[AdminActor]:
    """Returns AdminActor if the header matches, None if absent/invalid."""
    if not expected_key:
        return None
    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key, expected_key):
        return None
    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(actor_id=f"admin_key:{key_hash}")


def require_admin_for(config: ReconcilerConfig, request: Request) -> AdminActor:
    if not config.admin_key:
        raise MissingConfigurationError(
            "Admin authentication not configured",
            code="admin_auth_unconfigured",
            status_code=503,
            hint="Set ADMIN_KEY",
        )
    actor = verify_admin_key(request, config.admin_key)
    if actor is None:
        raise PermissionError("Unauthorized: invalid or missing admin credentials")
    return actor
