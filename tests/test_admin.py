from conftest import API
from loconomy_api.app.core.logging_config import LOG_FORMAT


def _complete(client, provider, booking_id):
    for new_status in ("confirmed", "in_progress", "completed"):
        response = client.put(
            f"{API}/bookings/{booking_id}/status", json={"status": new_status}, headers=provider["headers"]
        )
        assert response.status_code == 200, response.text


def test_health(client):
    assert client.get(f"{API}/health").json() == {"status": "ok", "version": "1.0.0"}


def test_platform_overview(client, admin, provider, consumer, make_booking):
    booking_id = make_booking(consumer).json()["id"]
    make_booking(consumer, start_time="13:00")
    _complete(client, provider, booking_id)

    assert client.get(f"{API}/statistics/overview", headers=provider["headers"]).status_code == 403
    overview = client.get(f"{API}/statistics/overview", headers=admin["headers"]).json()
    assert overview["users_by_role"] == {"admin": 1, "provider": 1, "consumer": 1}
    assert overview["users_total"] == 3
    assert overview["listings_by_status"]["active"] == 1
    assert overview["bookings_by_status"]["completed"] == 1
    assert overview["bookings_by_status"]["pending"] == 1
    assert overview["total_revenue"] == 88.0
    assert overview["platform_fees"] == 8.0
    assert overview["pending_moderation"] == {"listings": 0, "reviews": 0}


def test_provider_dashboard(client, admin, provider, consumer, make_booking):
    make_booking(consumer)
    dashboard = client.get(f"{API}/statistics/provider", headers=provider["headers"]).json()
    assert dashboard["active_listings"] == 1
    assert len(dashboard["pending_requests"]) == 1
    assert dashboard["stats"]["pending"] == 1
    assert dashboard["rating"]["count"] == 0

    assert client.get(f"{API}/statistics/provider", headers=consumer["headers"]).status_code == 403
    on_behalf = client.get(
        f"{API}/statistics/provider", params={"provider_id": provider["id"]}, headers=admin["headers"]
    )
    assert on_behalf.json()["active_listings"] == 1


def test_customer_history(client, admin, provider, consumer, make_booking):
    booking_id = make_booking(consumer).json()["id"]
    make_booking(consumer, start_time="14:00")
    _complete(client, provider, booking_id)

    history = client.get(f"{API}/statistics/customer", headers=consumer["headers"]).json()
    assert history["total_spent"] == 88.0
    assert len(history["upcoming_bookings"]) == 1
    assert [b["id"] for b in history["past_bookings"]] == [booking_id]
    assert history["favourite_providers"] == [{"provider_id": provider["id"], "name": "Pat Plumber", "bookings": 1}]
    assert history["average_rating_given"] is None

    other = client.get(f"{API}/statistics/customer", params={"customer_id": provider["id"]}, headers=consumer["headers"])
    assert other.status_code == 403
    as_admin = client.get(f"{API}/statistics/customer", params={"customer_id": consumer["id"]}, headers=admin["headers"])
    assert as_admin.json()["total_spent"] == 88.0


def test_settings_crud(client, admin, consumer):
    assert client.get(f"{API}/settings/", headers=consumer["headers"]).status_code == 403
    assert client.get(f"{API}/settings/support_email", headers=admin["headers"]).status_code == 404

    stored = client.put(
        f"{API}/settings/support_email", json={"value": "help@loconomy.example"}, headers=admin["headers"]
    )
    assert stored.json() == {"key": "support_email", "value": "help@loconomy.example", "type": "string"}
    limit = client.put(f"{API}/settings/max_photos", json={"value": "12", "type": "int"}, headers=admin["headers"])
    assert limit.json()["value"] == 12
    invalid = client.put(f"{API}/settings/max_photos", json={"value": "many", "type": "int"}, headers=admin["headers"])
    assert invalid.status_code == 400

    keys = [s["key"] for s in client.get(f"{API}/settings/", headers=admin["headers"]).json()]
    assert keys == ["max_photos", "support_email"]

    assert client.delete(f"{API}/settings/support_email", headers=admin["headers"]).status_code == 204
    assert client.delete(f"{API}/settings/support_email", headers=admin["headers"]).status_code == 404


def test_booking_auto_confirm(client, admin, consumer, make_booking):
    client.put(
        f"{API}/settings/booking_auto_confirm", json={"value": True, "type": "bool"}, headers=admin["headers"]
    )
    booking = make_booking(consumer).json()
    assert booking["status"] == "confirmed"
    assert booking["confirmed_at"] is not None


def test_audit_logs(client, admin, consumer):
    client.put(f"{API}/settings/support_email", json={"value": "a@b.example"}, headers=admin["headers"])
    client.put(f"{API}/users/me", json={"city": "Austin"}, headers=consumer["headers"])

    assert client.get(f"{API}/audit/logs", headers=consumer["headers"]).status_code == 403

    everything = client.get(f"{API}/audit/logs", headers=admin["headers"]).json()
    assert {entry["object_type"] for entry in everything} >= {"user", "setting"}

    settings_changes = client.get(
        f"{API}/audit/logs", params={"object_type": "setting", "action": "update"}, headers=admin["headers"]
    ).json()
    assert len(settings_changes) == 1
    assert settings_changes[0]["user_id"] == admin["id"]
    assert settings_changes[0]["details"] == {"key": "support_email", "value": "a@b.example"}

    by_user = client.get(f"{API}/audit/logs", params={"user_id": consumer["id"]}, headers=admin["headers"]).json()
    assert all(entry["user_id"] == consumer["id"] for entry in by_user)
    assert client.get(
        f"{API}/audit/logs", params={"start_date": "2999-01-01"}, headers=admin["headers"]
    ).json() == []


def test_cors_allows_the_web_front_end(client):
    response = client.options(
        f"{API}/listings/search",
        headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "GET"},
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
    assert response.headers["access-control-allow-credentials"] == "true"


def test_workspace_owner_cannot_be_deleted(client, admin, provider, consumer):
    created = client.post(f"{API}/workspaces/", json={"name": "Pat Co"}, headers=provider["headers"])
    assert created.status_code == 201, created.text

    refused = client.delete(f"{API}/users/{provider['id']}", headers=admin["headers"])
    assert refused.status_code == 409
    assert client.get(f"{API}/users/{provider['id']}", headers=admin["headers"]).status_code == 200

    assert client.delete(f"{API}/users/{consumer['id']}", headers=admin["headers"]).status_code == 204
    assert client.get(f"{API}/users/{consumer['id']}", headers=admin["headers"]).status_code == 404


def test_log_format():
    assert LOG_FORMAT == "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
