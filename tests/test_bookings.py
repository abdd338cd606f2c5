from datetime import date, timedelta

from conftest import API
from loconomy_api.app.core.config import reload_settings


def _set_status(client, user, booking_id, new_status, **extra):
    return client.put(
        f"{API}/bookings/{booking_id}/status", json={"status": new_status, **extra}, headers=user["headers"]
    )


def test_booking_is_priced_and_pending(consumer, provider, active_listing, make_booking):
    response = make_booking(consumer)
    assert response.status_code == 201, response.text
    booking = response.json()
    assert booking["status"] == "pending"
    assert booking["provider_id"] == provider["id"]
    assert booking["customer_id"] == consumer["id"]
    assert booking["end_time"] == "11:00"
    assert booking["service_title"] == active_listing["title"]
    assert (booking["base_price"], booking["service_fee"], booking["total_amount"]) == (80.0, 8.0, 88.0)
    assert len(booking["confirmation_code"]) == 8


def test_longer_booking_is_charged_per_hour(consumer, make_booking):
    response = make_booking(consumer, start_time="13:00", duration_minutes=90)
    assert response.status_code == 201, response.text
    assert response.json()["total_amount"] == 132.0


def test_overlapping_booking_returns_suggestions(client, admin, consumer, make_booking):
    assert make_booking(consumer).status_code == 201
    response = make_booking(admin, start_time="10:30")
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["type"] == "time_overlap"
    assert detail["suggested_times"]
    assert detail["suggested_times"][0]["start_time"] == "09:00"
    assert all(slot["start_time"] != "10:00" for slot in detail["suggested_times"])


def test_past_date_is_rejected(consumer, make_booking):
    response = make_booking(consumer, day=date.today() - timedelta(days=1))
    assert response.status_code == 409
    assert response.json()["detail"]["type"] == "past_date"


def test_outside_working_hours(consumer, make_booking):
    response = make_booking(consumer, start_time="18:00")
    assert response.status_code == 409
    assert response.json()["detail"]["type"] == "outside_hours"


def test_too_far_ahead(consumer, make_booking):
    response = make_booking(consumer, day=date.today() + timedelta(days=60))
    assert response.status_code == 409
    assert response.json()["detail"]["type"] == "too_far_ahead"


def test_blocked_day_is_not_bookable(client, provider, consumer, make_booking, booking_day):
    blocked = client.post(
        f"{API}/availability/overrides",
        json={"date": booking_day.isoformat(), "availability_type": "blocked", "reason": "Holiday"},
        headers=provider["headers"],
    )
    assert blocked.status_code == 201, blocked.text
    response = make_booking(consumer)
    assert response.status_code == 409
    assert response.json()["detail"]["type"] == "outside_hours"


def test_provider_cannot_book_own_listing(provider, make_booking):
    response = make_booking(provider)
    assert response.status_code == 400


def test_booking_requires_authentication(client, active_listing, booking_day):
    payload = {"listing_id": active_listing["id"], "booking_date": booking_day.isoformat(), "start_time": "10:00"}
    assert client.post(f"{API}/bookings/", json=payload).status_code == 401


def test_service_tokens_cannot_book(client, monkeypatch, active_listing, booking_day):
    monkeypatch.setenv("SERVICE_TOKENS", "svc-scheduler")
    reload_settings()
    payload = {"listing_id": active_listing["id"], "booking_date": booking_day.isoformat(), "start_time": "10:00"}
    response = client.post(f"{API}/bookings/", json=payload, headers={"Authorization": "Bearer svc-scheduler"})
    assert response.status_code == 403


def test_full_lifecycle(client, provider, consumer, active_listing, make_booking):
    booking_id = make_booking(consumer).json()["id"]

    confirmed = _set_status(client, provider, booking_id, "confirmed")
    assert confirmed.status_code == 200, confirmed.text
    assert confirmed.json()["confirmed_at"] is not None

    started = _set_status(client, provider, booking_id, "in_progress")
    assert started.json()["started_at"] is not None

    completed = _set_status(client, provider, booking_id, "completed", provider_notes="Replaced the valve")
    body = completed.json()
    assert body["status"] == "completed"
    assert body["provider_notes"] == "Replaced the valve"

    listing = client.get(f"{API}/listings/{active_listing['id']}").json()
    assert listing["booking_count"] == 1


def test_customer_cannot_confirm(client, consumer, make_booking):
    booking_id = make_booking(consumer).json()["id"]
    response = _set_status(client, consumer, booking_id, "confirmed")
    assert response.status_code == 403


def test_invalid_transition_is_a_conflict(client, provider, consumer, make_booking):
    booking_id = make_booking(consumer).json()["id"]
    response = _set_status(client, provider, booking_id, "completed")
    assert response.status_code == 409


def test_customer_cancels_with_reason(client, provider, consumer, make_booking):
    booking_id = make_booking(consumer).json()["id"]
    response = _set_status(client, consumer, booking_id, "cancelled", reason="Plans changed")
    assert response.status_code == 200
    assert response.json()["cancellation_reason"] == "Plans changed"
    # The freed slot can be booked again.
    assert make_booking(consumer).status_code == 201


def test_outsiders_do_not_see_bookings(client, make_user, consumer, make_booking):
    booking_id = make_booking(consumer).json()["id"]
    stranger = make_user("sam@example.com")
    response = client.get(f"{API}/bookings/{booking_id}", headers=stranger["headers"])
    assert response.status_code == 404


def test_lookup_by_confirmation_code(client, provider, consumer, make_booking):
    booking = make_booking(consumer).json()
    response = client.get(
        f"{API}/bookings/code/{booking['confirmation_code'].lower()}", headers=provider["headers"]
    )
    assert response.status_code == 200
    assert response.json()["id"] == booking["id"]


def test_list_bookings_by_role(client, provider, consumer, make_booking):
    make_booking(consumer)
    as_customer = client.get(f"{API}/bookings/", params={"as_role": "customer"}, headers=consumer["headers"])
    assert len(as_customer.json()) == 1
    as_provider = client.get(f"{API}/bookings/", params={"as_role": "provider"}, headers=consumer["headers"])
    assert as_provider.json() == []
    pending = client.get(f"{API}/bookings/", params={"status": "pending"}, headers=provider["headers"])
    assert len(pending.json()) == 1


def test_message_thread(client, provider, consumer, make_booking):
    booking_id = make_booking(consumer).json()["id"]
    sent = client.post(
        f"{API}/bookings/{booking_id}/messages",
        json={"message_text": "  Please bring a ladder  "},
        headers=consumer["headers"],
    )
    assert sent.status_code == 201
    assert sent.json()["message_text"] == "Please bring a ladder"
    assert sent.json()["read_by"] == [consumer["id"]]

    thread = client.get(f"{API}/bookings/{booking_id}/messages", headers=provider["headers"]).json()
    assert thread[0]["is_system_message"] is True
    assert thread[0]["system_event_type"] == "booking_created"
    assert thread[-1]["sender_id"] == consumer["id"]

    marked = client.post(f"{API}/bookings/{booking_id}/messages/read", headers=provider["headers"])
    assert marked.json()["updated"] == 2


def test_notifications_follow_the_booking(client, provider, consumer, make_booking):
    booking_id = make_booking(consumer).json()["id"]
    notes = client.get(f"{API}/notifications/", headers=provider["headers"]).json()
    assert [n["type"] for n in notes] == ["booking_request"]
    assert notes[0]["booking_id"] == booking_id

    _set_status(client, provider, booking_id, "confirmed")
    unread = client.get(f"{API}/notifications/unread-count", headers=consumer["headers"]).json()
    assert unread == {"unread": 1}
    assert client.post(f"{API}/notifications/read-all", headers=consumer["headers"]).json() == {"updated": 1}


def test_provider_stats(client, provider, consumer, make_booking):
    booking_id = make_booking(consumer).json()["id"]
    for new_status in ("confirmed", "in_progress", "completed"):
        _set_status(client, provider, booking_id, new_status)
    make_booking(consumer, start_time="14:00")
    stats = client.get(f"{API}/bookings/stats", headers=provider["headers"]).json()
    assert stats["total_bookings"] == 2
    assert stats["completed_bookings"] == 1
    assert stats["pending_bookings"] == 1
    assert stats["total_revenue"] == 88.0
