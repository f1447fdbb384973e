"""
FastAPI dependency providers.

Components are built once in ``create_app`` and kept on ``app.state``; the
providers below hand them to routes. Tests either build the app with fakes or
use ``app.dependency_overrides``.
"""
from fastapi import Depends, Request

from curlara.core.admin_auth import AdminActor, require_admin_for
from curlara.core.config import ReconcilerConfig
from curlara.features.billing.provider import PaymentProcessor
from curlara.features.entitlements.confirmation import PaymentConfirmer
from curlara.features.entitlements.ingestor import EventIngestor
from curlara.features.entitlements.resolver import IdentityResolver
from curlara.features.entitlements.store import EntitlementStore


def get_config(request: Request) -> ReconcilerConfig:
    return request.app.state.config


def get_processor(request: Request) -> PaymentProcessor:
    return request.app.state.processor


def get_store(request: Request) -> EntitlementStore:
    return request.app.state.store


def get_resolver(request: Request) -> IdentityResolver:
    return request.app.state.resolver


def get_ingestor(
    config: ReconcilerConfig = Depends(get_config),
    processor: PaymentProcessor = Depends(get_processor),
    store: EntitlementStore = Depends(get_store),
    resolver: IdentityResolver = Depends(get_resolver),
) -> EventIngestor:
    return EventIngestor(config, processor, store, resolver)


def get_confirmer(
    config: ReconcilerConfig = Depends(get_config),
    processor: PaymentProcessor = Depends(get_processor),
    store: EntitlementStore = Depends(get_store),
    resolver: IdentityResolver = Depends(get_resolver),
) -> PaymentConfirmer:
    return PaymentConfirmer(config, processor, store, resolver)


def require_admin(request: Request, config: ReconcilerConfig = Depends(get_config)) -> AdminActor:
    """
    FastAPI dependency: require the operator key.

    Usage:
        @router.get("/admin/endpoint")
        def admin_endpoint(actor: AdminActor = Depends(require_admin)):
            ...
    """
    return require_admin_for(config, request)
