"""
Manual confirmation, success-page polling, PaymentIntent and checkout creation.
"""
from dataclasses import replace

from fastapi.testclient import TestClient

from curlara.core.session_auth import create_test_session_token
from curlara.main import create_app
from curlara.tests.mocks import JWT_SECRET, sign_payload, stripe_event


def test_confirm_paid_session_entitles_user(client, processor, store, seed_user):
    seed_user("u1", "u1@example.com")
    processor.add_session("cs_paid", payment_status="paid", user_id="u1", email="u1@example.com", customer_id="cus_1")

    resp = client.post("/api/stripe-webhook/confirm", json={"session_id": "cs_paid"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["userId"] == "u1"
    assert body["subscriptionEndDate"]
    assert store.read_access_flag("u1") is True
    assert store.read_profile("u1")["stripe_customer_id"] == "cus_1"


def test_confirm_unpaid_session_writes_nothing(client, processor, store, seed_user):
    seed_user("u1", "u1@example.com")
    processor.add_session("cs_open", payment_status="unpaid", user_id="u1")

    resp = client.post("/api/stripe-webhook/confirm", json={"session_id": "cs_open"})

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "upstream_verification_failed"
    assert body["payment_status"] == "unpaid"
    assert store.read_access_flag("u1") is False
    assert store.read_profile("u1")["has_paid"] is False


def test_confirm_requires_session_id(client):
    resp = client.post("/api/stripe-webhook/confirm", json={})

    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_confirm_unknown_session(client):
    resp = client.post("/api/stripe-webhook/confirm", json={"session_id": "cs_missing"})

    assert resp.status_code == 400
    assert resp.json()["error"] == "upstream_verification_failed"


def test_confirm_session_without_user(client, processor, store):
    processor.add_session("cs_anon", payment_status="paid", email="nobody@example.com")

    resp = client.post("/api/stripe-webhook/confirm", json={"session_id": "cs_anon"})

    assert resp.status_code == 422
    assert resp.json()["error"] == "subject_unresolved"
    assert [r["event_id"] for r in store.list_follow_ups()] == ["cs_anon"]


def test_verify_payment_reconciles_by_email(client, processor, store, seed_user):
    seed_user("u2", "a@b.com")
    processor.add_session("cs_poll", payment_status="paid", email="a@b.com")

    resp = client.post("/api/verify-payment", json={"sessionId": "cs_poll"})

    assert resp.status_code == 200
    assert resp.json() == {"paid": True, "status": "paid", "customerEmail": "a@b.com"}
    assert store.read_access_flag("u2") is True


def test_verify_payment_reports_unpaid_without_writing(client, processor, store, seed_user):
    seed_user("u2", "a@b.com")
    processor.add_session("cs_poll", payment_status="unpaid", email="a@b.com")

    resp = client.post("/api/verify-payment", json={"sessionId": "cs_poll"})

    assert resp.status_code == 200
    assert resp.json()["paid"] is False
    assert store.read_access_flag("u2") is False


def test_create_payment_intent_with_body_user(client, processor):
    resp = client.post("/api/stripe/create-payment-intent", json={"amount": 2499, "userId": "u1"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["userId"] == "u1"
    assert body["clientSecret"].startswith("pi_test_1")
    assert "warning" not in body
    created = processor.created_intents[0]
    assert created["currency"] == "brl"
    assert created["metadata"]["userId"] == "u1"
    assert created["metadata"]["userEmail"] == "unknown"


def test_create_payment_intent_from_session_cookie(client, processor):
    client.cookies.set("sb-access-token", create_test_session_token(sub="u7", email="u7@example.com", secret=JWT_SECRET))

    resp = client.post("/api/stripe/create-payment-intent", json={})

    assert resp.status_code == 200
    assert resp.json()["userId"] == "u7"
    created = processor.created_intents[0]
    assert created["amount"] == 2499
    assert created["metadata"] == {
        "userId": "u7",
        "userEmail": "u7@example.com",
        "environment": "test",
        "timestamp": created["metadata"]["timestamp"],
    }
    assert created["receipt_email"] == "u7@example.com"


def test_create_payment_intent_without_user_warns(client, processor):
    resp = client.post("/api/stripe/create-payment-intent", json={"amount": 1000})

    assert resp.status_code == 200
    body = resp.json()
    assert body["userId"] == "unknown"
    assert body["warning"]
    assert processor.created_intents[0]["metadata"]["userId"] == "unknown"


def test_create_payment_intent_rejects_non_positive_amount(client, processor):
    resp = client.post("/api/stripe/create-payment-intent", json={"amount": 0, "userId": "u1"})

    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"
    assert processor.created_intents == []


def test_create_payment_intent_stripe_failure(client, processor):
    processor.fail_create = True

    resp = client.post("/api/stripe/create-payment-intent", json={"userId": "u1"})

    assert resp.status_code == 500
    assert resp.json()["error"] == "payment_processor_error"


def test_create_payment_intent_without_stripe_key(reconciler_config, processor, store):
    app = create_app(config=replace(reconciler_config, stripe_secret_key=None), processor=processor, store=store)

    resp = TestClient(app).post("/api/stripe/create-payment-intent", json={"userId": "u1"})

    assert resp.status_code == 500
    assert resp.json()["error"] == "missing_configuration"


def test_confirm_falls_back_to_caller_session(client, processor, store, seed_user):
    seed_user("u9", "u9@example.com")
    processor.add_session("cs_no_meta", payment_status="paid", email="other@example.com")
    client.cookies.set("sb-access-token", create_test_session_token(sub="u9", secret=JWT_SECRET))

    resp = client.post("/api/stripe-webhook/confirm", json={"session_id": "cs_no_meta"})

    assert resp.status_code == 200
    assert resp.json()["userId"] == "u9"
    assert store.read_access_flag("u9") is True


def test_confirm_accepts_bearer_token(client, processor, store, seed_user):
    seed_user("u9", "u9@example.com")
    processor.add_session("cs_no_meta", payment_status="paid", email="other@example.com")
    token = create_test_session_token(sub="u9", secret=JWT_SECRET)

    resp = client.post(
        "/api/stripe-webhook/confirm",
        json={"session_id": "cs_no_meta"},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert resp.status_code == 200
    assert resp.json()["userId"] == "u9"


def test_create_checkout_from_session_cookie(client, processor):
    client.cookies.set("sb-access-token", create_test_session_token(sub="u5", email="u5@example.com", secret=JWT_SECRET))

    resp = client.post(
        "/api/create-checkout",
        json={"priceId": "price_monthly", "customerName": "Ana"},
        headers={"Origin": "https://curlara.example"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["userId"] == "u5"
    assert body["clientSecret"] == "cs_test_1_secret_abc"
    assert "warning" not in body
    created = processor.created_sessions[0]
    assert created["price_id"] == "price_monthly"
    assert created["customer_email"] == "u5@example.com"
    assert created["metadata"]["userId"] == "u5"
    assert created["metadata"]["customer_name"] == "Ana"
    assert created["return_url"] == (
        "https://curlara.example/analysis?success=true&session_id={CHECKOUT_SESSION_ID}"
    )


def test_create_checkout_without_user_uses_unknown(client, processor):
    resp = client.post(
        "/api/create-checkout",
        json={"priceId": "price_monthly", "customerEmail": "guest@example.com"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["userId"] == "unknown"
    assert body["warning"]
    created = processor.created_sessions[0]
    assert created["metadata"]["userId"] == "unknown"
    assert created["customer_email"] == "guest@example.com"
    assert created["return_url"].startswith("http://localhost:3000/analysis?")


def test_create_checkout_requires_price(client, processor):
    resp = client.post("/api/create-checkout", json={"customerEmail": "guest@example.com"})

    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"
    assert processor.created_sessions == []


def test_create_checkout_stripe_failure(client, processor):
    processor.fail_create = True

    resp = client.post("/api/create-checkout", json={"priceId": "price_missing"})

    assert resp.status_code == 500
    assert resp.json()["error"] == "payment_processor_error"


def test_created_checkout_is_entitled_by_webhook(client, processor, store, seed_user):
    seed_user("u5", "u5@example.com")
    client.cookies.set("sb-access-token", create_test_session_token(sub="u5", email="u5@example.com", secret=JWT_SECRET))
    created = client.post("/api/create-checkout", json={"priceId": "price_monthly"}).json()
    sent = processor.created_sessions[0]
    payload = stripe_event(
        "checkout.session.completed",
        {
            "id": created["sessionId"],
            "object": "checkout.session",
            "customer": "cus_5",
            "customer_email": sent["customer_email"],
            "metadata": sent["metadata"],
        },
        event_id="evt_cs_roundtrip",
    )
    client.cookies.clear()

    resp = client.post(
        "/api/stripe-webhook",
        content=payload,
        headers={"Content-Type": "application/json", "Stripe-Signature": sign_payload(payload)},
    )

    assert resp.status_code == 200
    assert resp.json()["userId"] == "u5"
    assert store.read_access_flag("u5") is True
    assert store.read_profile("u5")["stripe_customer_id"] == "cus_5"
