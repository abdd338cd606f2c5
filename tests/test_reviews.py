import pytest

from conftest import API
from loconomy_api.app.services.review_service import summarize_ratings


@pytest.fixture
def completed_booking(client, provider, consumer, make_booking):
    booking_id = make_booking(consumer).json()["id"]
    for new_status in ("confirmed", "in_progress", "completed"):
        response = client.put(
            f"{API}/bookings/{booking_id}/status", json={"status": new_status}, headers=provider["headers"]
        )
        assert response.status_code == 200, response.text
    return response.json()


def _review(client, user, booking_id, rating=5, text="Great job, very tidy"):
    return client.post(
        f"{API}/reviews/",
        json={"booking_id": booking_id, "rating": rating, "review_text": text},
        headers=user["headers"],
    )


def test_summarize_ratings():
    summary = summarize_ratings([5, 4, 4, 1])
    assert summary.average == 3.5
    assert summary.count == 4
    assert summary.distribution == {1: 1, 2: 0, 3: 0, 4: 2, 5: 1}
    assert summarize_ratings([]).average == 0.0


def test_only_completed_bookings_can_be_reviewed(client, consumer, make_booking):
    booking_id = make_booking(consumer).json()["id"]
    response = _review(client, consumer, booking_id)
    assert response.status_code == 400


def test_customer_reviews_provider(client, provider, consumer, completed_booking):
    response = _review(client, consumer, completed_booking["id"], text="  <b>Great</b> job  ")
    assert response.status_code == 201, response.text
    review = response.json()
    assert review["reviewee_id"] == provider["id"]
    assert review["reviewer_name"] == "Cora Customer"
    assert review["approved"] is False
    assert review["review_text"] == "&lt;b&gt;Great&lt;/b&gt; job"

    notes = client.get(f"{API}/notifications/", headers=provider["headers"]).json()
    assert "review_received" in [n["type"] for n in notes]


def test_provider_can_review_customer_too(client, provider, consumer, completed_booking):
    response = _review(client, provider, completed_booking["id"], rating=4)
    assert response.status_code == 201
    assert response.json()["reviewee_id"] == consumer["id"]


def test_duplicate_review_is_a_conflict(client, consumer, completed_booking):
    assert _review(client, consumer, completed_booking["id"]).status_code == 201
    assert _review(client, consumer, completed_booking["id"]).status_code == 409


def test_outsiders_cannot_review(client, make_user, completed_booking):
    stranger = make_user("sam@example.com")
    assert _review(client, stranger, completed_booking["id"]).status_code == 403


def test_moderation_publishes_review(client, admin, provider, consumer, completed_booking):
    review_id = _review(client, consumer, completed_booking["id"], rating=4).json()["id"]
    listing_id = completed_booking["listing_id"]

    assert client.get(f"{API}/reviews/", params={"listing_id": listing_id}).json() == []
    pending = client.get(f"{API}/reviews/pending", headers=admin["headers"]).json()
    assert [r["id"] for r in pending] == [review_id]

    moderated = client.put(
        f"{API}/reviews/{review_id}/moderate", json={"approved": True}, headers=admin["headers"]
    )
    assert moderated.json()["moderated_by"] == admin["id"]

    published = client.get(f"{API}/reviews/", params={"provider_id": provider["id"]}).json()
    assert [r["id"] for r in published] == [review_id]

    summary = client.get(f"{API}/reviews/summary", params={"listing_id": listing_id}).json()
    assert summary["average"] == 4.0
    assert summary["count"] == 1
    assert summary["distribution"]["4"] == 1

    listing = client.get(f"{API}/listings/{listing_id}").json()
    assert listing["average_rating"] == 4.0
    assert listing["review_count"] == 1


def test_auto_approved_reviews(client, admin, consumer, completed_booking):
    client.put(f"{API}/settings/review_auto_approve", json={"value": True, "type": "bool"}, headers=admin["headers"])
    review = _review(client, consumer, completed_booking["id"]).json()
    assert review["approved"] is True


def test_review_listing_needs_a_filter(client):
    assert client.get(f"{API}/reviews/").status_code == 400
    assert client.get(f"{API}/reviews/summary").status_code == 400


def test_reviewer_deletes_own_review(client, provider, consumer, completed_booking):
    review_id = _review(client, consumer, completed_booking["id"]).json()["id"]
    assert client.delete(f"{API}/reviews/{review_id}", headers=provider["headers"]).status_code == 403
    assert client.delete(f"{API}/reviews/{review_id}", headers=consumer["headers"]).status_code == 204
    thread = client.get(f"{API}/reviews/booking/{completed_booking['id']}", headers=consumer["headers"]).json()
    assert thread == []


def test_private_reviews_stay_out_of_ratings(client, admin, provider, consumer, completed_booking):
    response = client.post(
        f"{API}/reviews/",
        json={"booking_id": completed_booking["id"], "rating": 2, "review_text": "Kept this one to myself", "is_public": False},
        headers=consumer["headers"],
    )
    review_id = response.json()["id"]
    client.put(f"{API}/reviews/{review_id}/moderate", json={"approved": True}, headers=admin["headers"])

    listing_id = completed_booking["listing_id"]
    assert client.get(f"{API}/reviews/", params={"listing_id": listing_id}).json() == []
    assert client.get(f"{API}/reviews/summary", params={"listing_id": listing_id}).json()["count"] == 0
    assert client.get(f"{API}/reviews/summary", params={"provider_id": provider["id"]}).json()["count"] == 0
    assert client.get(f"{API}/listings/{listing_id}").json()["review_count"] == 0
