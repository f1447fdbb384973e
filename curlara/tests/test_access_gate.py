"""
Access gate states and the redirecting middleware.
"""
from dataclasses import replace
from unittest.mock import Mock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from curlara.core.middleware.access_gate import AccessGateMiddleware
from curlara.core.session_auth import SessionTokenVerifier, create_test_session_token
from curlara.features.entitlements.gate import AccessGate, GateRequest
from curlara.features.entitlements.models import GateState
from curlara.tests.mocks import JWT_SECRET


def _gate(config, store):
    return AccessGate(config, SessionTokenVerifier(JWT_SECRET), store)


def _token(sub="u1"):
    return create_test_session_token(sub=sub, secret=JWT_SECRET)


def test_no_session_is_unauthenticated(reconciler_config, store):
    decision = _gate(reconciler_config, store).evaluate(GateRequest(path="/dashboard", cookies={}))

    assert decision.state is GateState.UNAUTHENTICATED
    assert decision.allowed is False
    assert decision.redirect_to == "/"


def test_paid_subject_is_entitled(reconciler_config, store, seed_user):
    seed_user("u1", "u1@example.com")
    store.set_paid("u1")

    decision = _gate(reconciler_config, store).evaluate(
        GateRequest(path="/dashboard", cookies={"sb-access-token": _token()})
    )

    assert decision.state is GateState.VERIFIED_ENTITLED
    assert decision.allowed is True
    assert decision.subject_id == "u1"


def test_unpaid_subject_is_denied(reconciler_config, store, seed_user):
    seed_user("u1", "u1@example.com")

    decision = _gate(reconciler_config, store).evaluate(
        GateRequest(path="/dashboard", cookies={}, authorization=f"Bearer {_token()}")
    )

    assert decision.state is GateState.VERIFIED_NO_ENTITLEMENT
    assert decision.allowed is False


def test_subject_without_access_row_is_denied(reconciler_config, store):
    decision = _gate(reconciler_config, store).evaluate(
        GateRequest(path="/dashboard", cookies={"sb-access-token": _token("ghost")})
    )

    assert decision.state is GateState.VERIFIED_NO_ENTITLEMENT
    assert decision.allowed is False


def test_backend_error_fails_closed(reconciler_config):
    store = Mock()
    store.read_access_flag.side_effect = OperationalError("SELECT", {}, Exception("db down"))

    decision = _gate(reconciler_config, store).evaluate(
        GateRequest(path="/dashboard", cookies={"sb-access-token": _token()})
    )

    assert decision.state is GateState.VERIFIED_NO_ENTITLEMENT
    assert decision.allowed is False


@pytest.mark.parametrize("flag", [None, False, 1, "true"])
def test_only_exact_true_grants(reconciler_config, flag):
    store = Mock()
    store.read_access_flag.return_value = flag

    decision = _gate(reconciler_config, store).evaluate(
        GateRequest(path="/dashboard", cookies={"sb-access-token": _token()})
    )

    assert decision.allowed is False


def test_local_session_bypasses_payment_check(reconciler_config, store):
    decision = _gate(reconciler_config, store).evaluate(
        GateRequest(path="/dashboard", cookies={"authToken": "opaque-local-session"})
    )

    assert decision.state is GateState.LOCALLY_AUTHENTICATED
    assert decision.allowed is True
    assert decision.subject_id is None


def test_local_session_denied_when_bypass_disabled(reconciler_config, store):
    config = replace(reconciler_config, local_session_bypass=False)

    decision = _gate(config, store).evaluate(
        GateRequest(path="/dashboard", cookies={"authToken": "opaque-local-session"})
    )

    assert decision.state is GateState.LOCALLY_AUTHENTICATED
    assert decision.allowed is False


def test_verifiable_auth_token_is_upgraded(reconciler_config, store, seed_user):
    seed_user("u1", "u1@example.com")

    decision = _gate(reconciler_config, store).evaluate(
        GateRequest(path="/dashboard", cookies={"authToken": _token()})
    )

    assert decision.state is GateState.VERIFIED_NO_ENTITLEMENT
    assert decision.allowed is False


def test_refresh_cookie_used_when_access_cookie_missing(reconciler_config, store, seed_user):
    seed_user("u1", "u1@example.com")
    store.set_paid("u1")

    decision = _gate(reconciler_config, store).evaluate(
        GateRequest(path="/dashboard", cookies={"sb-refresh-token": _token()})
    )

    assert decision.state is GateState.VERIFIED_ENTITLED


def test_protected_prefixes(reconciler_config, store):
    gate = _gate(reconciler_config, store)

    assert gate.protects("/dashboard")
    assert gate.protects("/dashboard/history")
    assert not gate.protects("/dashboards")
    assert not gate.protects("/checkout")
    assert not gate.protects("/")


def _gated_app(gate):
    app = FastAPI()
    app.add_middleware(AccessGateMiddleware, gate=gate)

    @app.get("/dashboard")
    async def dashboard():
        return {"ok": True}

    @app.get("/checkout")
    async def checkout():
        return {"ok": True}

    return app


def test_middleware_redirects_denied_requests(reconciler_config, store):
    client = TestClient(_gated_app(_gate(reconciler_config, store)))

    resp = client.get("/dashboard", follow_redirects=False)

    assert resp.status_code == 307
    assert resp.headers["location"] == "/"


def test_middleware_lets_entitled_requests_through(reconciler_config, store, seed_user):
    seed_user("u1", "u1@example.com")
    store.set_paid("u1")
    client = TestClient(_gated_app(_gate(reconciler_config, store)))
    client.cookies.set("sb-access-token", _token())

    resp = client.get("/dashboard", follow_redirects=False)

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


def test_middleware_ignores_unprotected_paths(reconciler_config, store):
    client = TestClient(_gated_app(_gate(reconciler_config, store)))

    resp = client.get("/checkout", follow_redirects=False)

    assert resp.status_code == 200
