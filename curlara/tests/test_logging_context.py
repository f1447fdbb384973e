"""Tests for structured logging and request_id propagation."""

import json
import logging

from curlara.core.logging import JsonFormatter, log_event
from curlara.tests.mocks import sign_payload, stripe_event


def test_request_id_in_response_and_logs(client, caplog):
    with caplog.at_level(logging.INFO, logger="curlara"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
    assert len({r.request_id for r in records}) == 1


def test_entitlement_outcome_is_logged_with_event_and_subject(client, seed_user, caplog):
    seed_user("u1", "u1@example.com")
    payload = stripe_event(
        "payment_intent.succeeded",
        {"id": "pi_1", "metadata": {"userId": "u1"}},
        event_id="evt_logged",
    )

    with caplog.at_level(logging.INFO, logger="curlara"):
        response = client.post("/api/stripe-webhook", content=payload, headers={"Stripe-Signature": sign_payload(payload)})

    assert response.status_code == 200
    outcome = [r for r in caplog.records if r.getMessage() == "entitlement.outcome"]
    assert len(outcome) == 1
    record = outcome[0]
    assert record.event_id == "evt_logged"
    assert record.subject_id == "u1"
    assert record.outcome == "entitled"
    assert record.request_id == response.headers["x-request-id"]


def test_json_formatter_emits_structured_fields(caplog):
    with caplog.at_level(logging.INFO, logger="curlara"):
        log_event("warning", "gate.decision", subject_id="u1", extra={"gate_state": "unauthenticated", "note": "y" * 600})

    record = [r for r in caplog.records if r.getMessage() == "gate.decision"][0]
    payload = json.loads(JsonFormatter().format(record))
    assert payload["level"] == "WARNING"
    assert payload["subject_id"] == "u1"
    assert payload["gate_state"] == "unauthenticated"
    assert record.note.endswith("...<truncated>")
