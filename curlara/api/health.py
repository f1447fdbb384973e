"""
Health and diagnostics endpoints.

Lightweight operational checks that never expose secret values.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from curlara.api.deps import get_config
from curlara.core.config import REQUIRED_KEYS, ReconcilerConfig, settings
from curlara.core.database import PROJECTION_TABLES, present_tables
from curlara.core.logging import get_request_id

logger = logging.getLogger("curlara")

router = APIRouter(tags=["health"])

REQUIRED_TABLES = PROJECTION_TABLES + ("payment_event_outcomes",)


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + entitlement tables."""
    try:
        tables = set(present_tables())
    except Exception as e:
        logger.error(f"[readyz] readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    missing = [t for t in REQUIRED_TABLES if t not in tables]
    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning(f"[readyz] {detail}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})
    return {"status": "ok"}


@router.get("/api/diagnostics")
def diagnostics(config: ReconcilerConfig = Depends(get_config)):
    """Which required settings are present; 500 when any is missing.

    Credentials are read from the app's ReconcilerConfig, the one the
    handlers use. DATABASE_URL and the public keys only exist on Settings.
    """
    present = {
        "DATABASE_URL": bool(settings.DATABASE_URL),
        "STRIPE_SECRET_KEY": bool(config.stripe_secret_key),
        "STRIPE_WEBHOOK_SECRET": bool(config.webhook_secret),
        "SUPABASE_JWT_SECRET": bool(config.session_jwt_secret),
    }
    missing = [key for key in REQUIRED_KEYS if not present[key]]
    summary = {
        "ok": not missing,
        "environment": config.environment,
        "configured": {
            "database_url": present["DATABASE_URL"],
            "supabase_url": bool(settings.NEXT_PUBLIC_SUPABASE_URL),
            "supabase_anon_key": bool(settings.NEXT_PUBLIC_SUPABASE_ANON_KEY),
            "supabase_service_role_key": bool(settings.SUPABASE_SERVICE_ROLE_KEY),
            "supabase_jwt_secret": present["SUPABASE_JWT_SECRET"],
            "stripe_secret_key": present["STRIPE_SECRET_KEY"],
            "stripe_webhook_secret": present["STRIPE_WEBHOOK_SECRET"],
            "stripe_publishable_key": bool(settings.NEXT_PUBLIC_STRIPE_PUBLISHABLE_KEY),
        },
        "missing": missing,
        "request_id": get_request_id(),
    }
    if missing:
        logger.warning("diagnostics.missing_config", extra={"error_code": "missing_configuration"})
        return JSONResponse(status_code=500, content=summary)
    return summary
