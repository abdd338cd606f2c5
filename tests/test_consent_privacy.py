from datetime import datetime, timedelta, timezone

from conftest import API, PASSWORD
from loconomy_api.app.schemas.consent import ConsentCreate, ConsentRead
from loconomy_api.app.services.consent_service import resolve_categories, should_show_banner


NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def _consent(version="1.0.0", created_at=None):
    return ConsentRead(
        id=1,
        status="accepted",
        necessary=True,
        analytics=True,
        marketing=True,
        preferences=True,
        version=version,
        created_at=created_at,
    )


def test_banner_shown_without_decision():
    assert should_show_banner(None, "1.0.0", now=NOW)


def test_banner_shown_for_older_version():
    assert should_show_banner(_consent(version="0.9.0", created_at=NOW), "1.0.0", now=NOW)


def test_banner_shown_after_a_year():
    recent = _consent(created_at=datetime(2026, 1, 1))
    stale = _consent(created_at=NOW - timedelta(days=366))
    assert not should_show_banner(recent, "1.0.0", now=NOW)
    assert should_show_banner(stale, "1.0.0", now=NOW)


def test_resolve_categories():
    assert resolve_categories(ConsentCreate(status="accepted")) == {
        "necessary": True,
        "analytics": True,
        "marketing": True,
        "preferences": True,
    }
    rejected = resolve_categories(ConsentCreate(status="rejected", analytics=True))
    assert rejected["analytics"] is False
    custom = resolve_categories(ConsentCreate(status="customized", analytics=True))
    assert (custom["analytics"], custom["marketing"]) == (True, False)


def test_anonymous_consent_by_session(client):
    categories = client.get(f"{API}/consent/categories").json()
    assert [c["id"] for c in categories] == ["necessary", "analytics", "marketing", "preferences"]

    assert client.post(f"{API}/consent/", json={"status": "accepted"}).status_code == 400

    before = client.get(f"{API}/consent/", params={"session_id": "browser-1"}).json()
    assert before["show_banner"] is True
    assert before["consent"] is None

    recorded = client.post(
        f"{API}/consent/", json={"status": "customized", "session_id": "browser-1", "marketing": True}
    )
    assert recorded.status_code == 201
    assert recorded.json()["marketing"] is True
    assert recorded.json()["analytics"] is False

    after = client.get(f"{API}/consent/", params={"session_id": "browser-1"}).json()
    assert after["show_banner"] is False
    assert after["consent"]["status"] == "customized"


def test_latest_decision_wins(client, consumer):
    client.post(f"{API}/consent/", json={"status": "accepted"}, headers=consumer["headers"])
    client.post(f"{API}/consent/", json={"status": "rejected"}, headers=consumer["headers"])
    state = client.get(f"{API}/consent/", headers=consumer["headers"]).json()
    assert state["consent"]["status"] == "rejected"
    assert state["consent"]["user_id"] == consumer["id"]


def test_privacy_settings(client, consumer):
    defaults = client.get(f"{API}/privacy/settings", headers=consumer["headers"]).json()
    assert defaults["profile_visibility"] == "limited"
    assert defaults["push_notifications"] is True

    updated = client.put(
        f"{API}/privacy/settings",
        json={"email_marketing": True, "profile_visibility": "private"},
        headers=consumer["headers"],
    ).json()
    assert updated["email_marketing"] is True
    assert updated["push_notifications"] is True

    stored = client.get(f"{API}/privacy/settings", headers=consumer["headers"]).json()
    assert stored == updated


def test_data_export(client, consumer, make_booking):
    make_booking(consumer)
    export = client.post(
        f"{API}/privacy/export", json={"categories": ["profile", "bookings"]}, headers=consumer["headers"]
    )
    assert export.status_code == 200
    body = export.json()
    assert body["categories"] == ["bookings", "profile"]
    assert body["data"]["profile"]["email"] == "cora@example.com"
    assert "password" not in body["data"]["profile"]
    assert len(body["data"]["bookings"]) == 1
    assert "invoices" not in body["data"]


def test_account_deletion_anonymises(client, admin, consumer):
    unconfirmed = client.post(f"{API}/privacy/delete", json={"confirm": False}, headers=consumer["headers"])
    assert unconfirmed.status_code == 400

    deleted = client.post(
        f"{API}/privacy/delete", json={"confirm": True, "reason": "Moving away"}, headers=consumer["headers"]
    )
    assert deleted.status_code == 200
    assert deleted.json()["status"] == "completed"

    assert client.get(f"{API}/users/me", headers=consumer["headers"]).status_code == 401
    login = client.post(f"{API}/auth/login", json={"email": "cora@example.com", "password": PASSWORD})
    assert login.status_code == 401

    record = client.get(f"{API}/users/{consumer['id']}", headers=admin["headers"]).json()
    assert record["email"] == f"deleted-{consumer['id']}@loconomy.invalid"
    assert record["full_name"] is None


def test_primary_admin_cannot_erase_account(client, admin):
    response = client.post(f"{API}/privacy/delete", json={"confirm": True}, headers=admin["headers"])
    assert response.status_code == 403
