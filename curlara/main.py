import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env from curlara/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from curlara.api import admin, dashboard, health, payments, webhook
from curlara.core.config import ReconcilerConfig, settings, validate_config
from curlara.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_error_handler,
    unhandled_exception_handler,
)
from curlara.core.logging import configure_logging
from curlara.core.middleware.access_gate import AccessGateMiddleware
from curlara.core.middleware.request_id import RequestIdMiddleware
from curlara.core.session_auth import SessionTokenVerifier
from curlara.features.billing.provider import PaymentProcessor
from curlara.features.billing.stripe_provider import StripeProcessor
from curlara.features.entitlements.gate import AccessGate
from curlara.features.entitlements.resolver import CredentialVerifier, IdentityResolver
from curlara.features.entitlements.store import EntitlementStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("curlara")
    logger.info("Starting Curlara payment reconciler...")
    try:
        yield
    finally:
        logger.info("Stopping Curlara payment reconciler...")


def create_app(
    config: Optional[ReconcilerConfig] = None,
    processor: Optional[PaymentProcessor] = None,
    store: Optional[EntitlementStore] = None,
    verifier: Optional[CredentialVerifier] = None,
) -> FastAPI:
    """Build the app; tests pass fakes, production builds everything from settings."""
    config = config or ReconcilerConfig.from_settings()
    processor = processor or StripeProcessor(config.stripe_secret_key)
    store = store or EntitlementStore(period=config.entitlement_period)
    verifier = verifier or SessionTokenVerifier(config.session_jwt_secret, audience=config.session_jwt_audience)

    app = FastAPI(title="Curlara - Payment Reconciler", lifespan=lifespan)
    app.state.config = config
    app.state.processor = processor
    app.state.store = store
    app.state.resolver = IdentityResolver.default(verifier, store)
    app.state.access_gate = AccessGate(config, verifier, store)

    # Last added runs first: request ids are set before the gate logs.
    app.add_middleware(AccessGateMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(webhook.router)
    app.include_router(payments.router)
    app.include_router(admin.router)
    app.include_router(health.router)
    app.include_router(dashboard.router)
    return app


configure_logging(settings.ENV)
validate_config(strict=settings.CONFIG_STRICT)

app = create_app()
