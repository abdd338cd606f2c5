import hashlib
import hmac
import json
import time

import httpx
import pytest

from conftest import API, LISTING_PAYLOAD
from loconomy_api.app.core.config import reload_settings
from loconomy_api.app.services.billing_service import verify_stripe_signature
from loconomy_api.app.services.subscription_service import (
    format_plan_price,
    format_usage_percentage,
    get_plan_savings,
    get_upgrade_recommendation,
    get_usage_status,
)


WEBHOOK_SECRET = "whsec_test"


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _event(event_id, event_type, obj):
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode()


@pytest.fixture
def stripe_env(monkeypatch):
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
    reload_settings()


@pytest.fixture
def send_event(client, stripe_env):
    def _send(event_id, event_type, obj):
        payload = _event(event_id, event_type, obj)
        return client.post(
            f"{API}/billing/webhook",
            content=payload,
            headers={"Stripe-Signature": _sign(payload), "Content-Type": "application/json"},
        )

    return _send


def _subscription(user_id, status="active", plan_id="starter"):
    return {
        "id": "sub_1",
        "customer": "cus_1",
        "status": status,
        "metadata": {"user_id": str(user_id), "plan_id": plan_id, "billing_cycle": "monthly"},
        "current_period_start": 1767225600,
        "current_period_end": 1769904000,
        "cancel_at_period_end": False,
    }


def test_plan_display_helpers():
    assert format_plan_price(0, "monthly") == "Free"
    assert format_plan_price(29, "monthly") == "$29/mo"
    assert format_plan_price(290, "yearly") == "$24/mo (billed yearly)"
    assert get_plan_savings(29, 290) == 17
    assert format_usage_percentage(5, -1) == 0
    assert format_usage_percentage(3, 0) == 100
    assert get_usage_status(23, 25) == "danger"
    assert get_usage_status(19, 25) == "warning"
    assert get_upgrade_recommendation("free", 2, 0) == "starter"
    assert get_upgrade_recommendation("enterprise", 500, 5000) is None


def test_signature_verification():
    payload = b'{"id": "evt_1"}'
    verify_stripe_signature(payload, _sign(payload, timestamp=1000), WEBHOOK_SECRET, now=1100)

    with pytest.raises(ValueError, match="No matching signature"):
        verify_stripe_signature(payload, _sign(payload, secret="other", timestamp=1000), WEBHOOK_SECRET, now=1100)
    with pytest.raises(ValueError, match="tolerance"):
        verify_stripe_signature(payload, _sign(payload, timestamp=1000), WEBHOOK_SECRET, now=1000 + 301)
    with pytest.raises(ValueError, match="Malformed"):
        verify_stripe_signature(payload, "t=1000", WEBHOOK_SECRET)
    with pytest.raises(ValueError, match="Missing"):
        verify_stripe_signature(payload, None, WEBHOOK_SECRET)


def test_any_of_several_signatures_may_match():
    payload = b"{}"
    header = _sign(payload, timestamp=1000).replace("v1=", "v1=deadbeef,v1=")
    verify_stripe_signature(payload, header, WEBHOOK_SECRET, now=1000)


def test_plans_are_public(client):
    plans = client.get(f"{API}/billing/plans").json()["plans"]
    assert [p["plan_id"] for p in plans] == ["free", "starter", "professional", "enterprise"]
    assert plans[0]["limits"]["max_listings"] == 3
    assert plans[0]["monthly_display"] == "Free"
    assert plans[3]["limits"]["max_bookings_per_month"] == -1


def test_new_users_are_on_the_free_plan(client, provider):
    client.post(f"{API}/listings/", json=LISTING_PAYLOAD, headers=provider["headers"])
    subscription = client.get(f"{API}/billing/subscription", headers=provider["headers"]).json()
    assert subscription["plan_id"] == "free"
    assert subscription["usage"]["max_listings"]["current"] == 1
    assert subscription["usage"]["max_listings"]["limit_display"] == "3"


def test_webhook_without_secret_is_unavailable(client):
    payload = _event("evt_1", "customer.subscription.created", {})
    response = client.post(f"{API}/billing/webhook", content=payload, headers={"Stripe-Signature": _sign(payload)})
    assert response.status_code == 503


def test_webhook_rejects_bad_signature(client, stripe_env):
    payload = _event("evt_1", "customer.subscription.created", {})
    response = client.post(
        f"{API}/billing/webhook", content=payload, headers={"Stripe-Signature": _sign(payload, secret="wrong")}
    )
    assert response.status_code == 400


def test_subscription_lifecycle_via_webhooks(client, provider, send_event):
    created = send_event("evt_1", "customer.subscription.created", _subscription(provider["id"]))
    assert created.status_code == 200, created.text
    assert created.json() == {"received": True, "event_type": "customer.subscription.created", "duplicate": False}

    subscription = client.get(f"{API}/billing/subscription", headers=provider["headers"]).json()
    assert subscription["plan_id"] == "starter"
    assert subscription["limits"]["max_listings"] == 25
    assert subscription["current_period_end"].startswith("2026-02-01")

    replay = send_event("evt_1", "customer.subscription.created", _subscription(provider["id"]))
    assert replay.json()["duplicate"] is True

    paid = send_event(
        "evt_2",
        "invoice.payment_succeeded",
        {"id": "in_1", "subscription": "sub_1", "customer": "cus_1", "amount_due": 2900, "amount_paid": 2900, "currency": "usd"},
    )
    assert paid.status_code == 200
    invoices = client.get(f"{API}/billing/invoices", headers=provider["headers"]).json()
    assert [(i["stripe_invoice_id"], i["status"], i["amount_paid"]) for i in invoices] == [("in_1", "paid", 29.0)]

    deleted = send_event("evt_3", "customer.subscription.deleted", {"id": "sub_1"})
    assert deleted.status_code == 200
    subscription = client.get(f"{API}/billing/subscription", headers=provider["headers"]).json()
    assert subscription["plan_id"] == "free"


def test_paid_plan_lifts_listing_limit(client, provider, send_event):
    send_event("evt_1", "customer.subscription.created", _subscription(provider["id"]))
    for number in range(4):
        response = client.post(
            f"{API}/listings/", json={**LISTING_PAYLOAD, "title": f"Pipe repair #{number}"}, headers=provider["headers"]
        )
        assert response.status_code == 201


def test_unusable_event_answers_500(client, send_event):
    response = send_event("evt_9", "customer.subscription.updated", {"id": "sub_x", "metadata": {}})
    assert response.status_code == 500


def test_unknown_event_types_are_acknowledged(send_event):
    response = send_event("evt_5", "charge.refunded", {"id": "ch_1"})
    assert response.status_code == 200
    assert response.json()["event_type"] == "charge.refunded"


def test_payment_methods(client, provider, send_event):
    send_event("evt_1", "customer.subscription.created", _subscription(provider["id"]))
    for number, last4 in enumerate(("4242", "1881"), start=1):
        send_event(
            f"evt_pm_{number}",
            "payment_method.attached",
            {
                "id": f"pm_{number}",
                "customer": "cus_1",
                "type": "card",
                "card": {"brand": "visa", "last4": last4, "exp_month": 12, "exp_year": 2030},
            },
        )
    methods = client.get(f"{API}/billing/payment-methods", headers=provider["headers"]).json()
    assert [(m["card_last4"], m["is_default"]) for m in methods][0] == ("4242", True)
    second = next(m for m in methods if m["card_last4"] == "1881")

    updated = client.put(f"{API}/billing/payment-methods/{second['id']}/default", headers=provider["headers"]).json()
    assert updated[0]["card_last4"] == "1881"

    assert client.delete(f"{API}/billing/payment-methods/{second['id']}", headers=provider["headers"]).status_code == 204
    send_event("evt_pm_3", "payment_method.detached", {"id": "pm_1"})
    assert client.get(f"{API}/billing/payment-methods", headers=provider["headers"]).json() == []


def test_checkout_requires_stripe(client, provider):
    response = client.post(f"{API}/billing/checkout", json={"plan_id": "starter"}, headers=provider["headers"])
    assert response.status_code == 503


def test_free_plan_needs_no_checkout(client, provider, stripe_env):
    response = client.post(f"{API}/billing/checkout", json={"plan_id": "free"}, headers=provider["headers"])
    assert response.status_code == 400


def test_checkout_session(client, provider, stripe_env, monkeypatch):
    calls = []

    def fake_post(url, headers=None, data=None, timeout=None):
        calls.append((url, headers, data))
        return httpx.Response(
            200,
            json={"id": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1"},
            request=httpx.Request("POST", url),
        )

    monkeypatch.setattr(httpx, "post", fake_post)
    response = client.post(
        f"{API}/billing/checkout", json={"plan_id": "professional", "billing_cycle": "yearly"}, headers=provider["headers"]
    )
    assert response.status_code == 200, response.text
    assert response.json() == {"session_id": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1"}

    url, headers, form = calls[0]
    assert url == "https://api.stripe.com/v1/checkout/sessions"
    assert headers["Authorization"] == "Bearer sk_test_123"
    assert form["customer_email"] == "pat@example.com"
    assert form["subscription_data[metadata][plan_id]"] == "professional"
    assert form["line_items[0][price_data][unit_amount]"] == "79000"
    assert form["line_items[0][price_data][recurring][interval]"] == "year"


def test_stripe_failure_is_a_bad_gateway(client, provider, stripe_env, monkeypatch):
    def failing_post(url, headers=None, data=None, timeout=None):
        return httpx.Response(500, json={"error": {}}, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx, "post", failing_post)
    response = client.post(f"{API}/billing/checkout", json={"plan_id": "starter"}, headers=provider["headers"])
    assert response.status_code == 502


def test_cancel_subscription(client, provider, send_event, monkeypatch):
    assert client.post(f"{API}/billing/subscription/cancel", headers=provider["headers"]).status_code == 404
    send_event("evt_1", "customer.subscription.created", _subscription(provider["id"]))

    # Without a Stripe key the local subscription is only flagged.
    monkeypatch.delenv("STRIPE_SECRET_KEY")
    reload_settings()
    cancelled = client.post(f"{API}/billing/subscription/cancel", headers=provider["headers"])
    assert cancelled.status_code == 200
    assert cancelled.json()["cancel_at_period_end"] is True
    subscription = client.get(f"{API}/billing/subscription", headers=provider["headers"]).json()
    assert subscription["cancel_at_period_end"] is True
