"""Error taxonomy and JSON error handlers.

Every failure leaves the API as JSON with a stable ``error`` code and an
operator-facing ``hint``; Stripe's retry logic and the checkout client both
branch on those bodies.
"""

import builtins
import logging
from typing import Optional
from uuid import uuid4

from starlette.exceptions import HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from curlara.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500
    hint = "Unexpected application error"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        hint: Optional[str] = None,
        details: Optional[dict] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        if hint:
            self.hint = hint
        self.details = details or {}
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400
    hint = "Check the request body"


class AuthenticityError(AppError):
    """Webhook signature missing or invalid; the payload is never processed."""
    code = "authenticity_error"
    status_code = 400
    hint = "Request did not carry a valid Stripe signature"


class MissingConfigurationError(AppError):
    """A secret or credential needed by this request is not configured."""
    code = "missing_configuration"
    status_code = 500
    hint = "Set the missing variable in the deployment environment"


class SubjectUnresolvedError(AppError):
    """A real payment could not be attributed to any user."""
    code = "subject_unresolved"
    status_code = 422
    hint = "Payment received without an attributable user; reconcile manually"


class ProjectionWriteError(AppError):
    code = "projection_write_failed"
    status_code = 500
    hint = "Entitlement could not be persisted; the write is safe to retry"


class UpstreamVerificationError(AppError):
    """Stripe lookup failed or the session is not paid."""
    code = "upstream_verification_failed"
    status_code = 400
    hint = "Stripe did not confirm the payment"


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403
    hint = "Missing or invalid X-Admin-Key"


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def error_payload(code: str, message: str, hint: str, request_id: str, details: Optional[dict] = None) -> dict:
    payload = {
        "error": code,
        "hint": hint,
        "message": message,
        "request_id": request_id,
    }
    if details:
        payload.update(details)
    return payload


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = error_payload(exc.code, exc.message, exc.hint, rid, exc.details)
    logger = logging.getLogger("curlara")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else "HTTP error"
    payload = error_payload(code, message, message, rid)
    logger = logging.getLogger("curlara")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    payload = error_payload(
        ValidationError.code,
        "Invalid request body",
        ValidationError.hint,
        rid,
        {"details": jsonable_encoder(exc.errors())},
    )
    response = JSONResponse(status_code=400, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("curlara")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = error_payload("internal_error", "Unexpected error", "See server logs for this request_id", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
