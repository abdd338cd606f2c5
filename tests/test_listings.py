import pytest

from conftest import API, LISTING_PAYLOAD
from loconomy_api.app.services.listing_service import validate_listing


def _create(client, user, **changes):
    return client.post(f"{API}/listings/", json={**LISTING_PAYLOAD, **changes}, headers=user["headers"])


def _publish(client, provider, admin, listing_id):
    client.post(f"{API}/listings/{listing_id}/status", json={"status": "pending"}, headers=provider["headers"])
    return client.put(f"{API}/listings/{listing_id}/moderate", json={"approved": True}, headers=admin["headers"])


@pytest.mark.parametrize(
    "changes, message",
    [
        ({"title": "Fix"}, "Title must be at least 5 characters long"),
        ({"description": "Too short"}, "Description must be at least 20 characters long"),
        ({"category": "Rocket Science"}, "Category must be one of the listing categories"),
        ({"hourly_rate": None}, "Hourly listings require an hourly rate"),
        ({"pricing_type": "fixed", "base_price": None}, "Fixed price listings require a base price"),
        ({"service_areas": []}, "At least one service area is required"),
        ({"subcategory": "Dog Walking"}, "Unknown subcategory for Home Maintenance"),
    ],
)
def test_validate_listing_rules(changes, message):
    assert message in validate_listing({**LISTING_PAYLOAD, **changes})


def test_remote_listing_needs_no_service_area():
    assert validate_listing({**LISTING_PAYLOAD, "location_type": "remote", "service_areas": []}) == []


def test_new_listing_is_a_draft(client, provider):
    response = _create(client, provider)
    assert response.status_code == 201, response.text
    listing = response.json()
    assert listing["status"] == "draft"
    assert listing["provider_id"] == provider["id"]
    assert listing["provider_name"] == "Pat Plumber"
    assert listing["tags"] == ["plumbing", "repair"]


def test_invalid_listing_is_rejected(client, provider):
    response = _create(client, provider, title="Fix", description="short")
    assert response.status_code == 400
    assert "Title" in response.json()["detail"]


def test_consumers_cannot_create_listings(client, consumer):
    assert _create(client, consumer).status_code == 403


def test_drafts_are_private(client, provider, consumer):
    listing_id = _create(client, provider).json()["id"]
    assert client.get(f"{API}/listings/{listing_id}", headers=consumer["headers"]).status_code == 404
    assert client.get(f"{API}/listings/{listing_id}", headers=provider["headers"]).status_code == 200


def test_moderation_flow(client, admin, provider):
    listing_id = _create(client, provider).json()["id"]
    submitted = client.post(
        f"{API}/listings/{listing_id}/status", json={"status": "pending"}, headers=provider["headers"]
    )
    assert submitted.json()["status"] == "pending"

    queue = client.get(f"{API}/listings/pending", headers=admin["headers"]).json()
    assert [item["id"] for item in queue] == [listing_id]
    assert client.get(f"{API}/listings/pending", headers=provider["headers"]).status_code == 403

    rejected = client.put(
        f"{API}/listings/{listing_id}/moderate", json={"approved": False}, headers=admin["headers"]
    )
    assert rejected.status_code == 400

    rejected = client.put(
        f"{API}/listings/{listing_id}/moderate",
        json={"approved": False, "reason": "Add photos"},
        headers=admin["headers"],
    )
    assert rejected.json()["status"] == "rejected"
    assert rejected.json()["rejection_reason"] == "Add photos"

    approved = _publish(client, provider, admin, listing_id)
    assert approved.json()["status"] == "active"
    assert approved.json()["published_at"] is not None


def test_owner_cannot_self_approve(client, provider):
    listing_id = _create(client, provider).json()["id"]
    response = client.post(f"{API}/listings/{listing_id}/status", json={"status": "active"}, headers=provider["headers"])
    assert response.status_code == 400


def test_auto_approve_setting_publishes_on_submit(client, admin, provider):
    client.put(
        f"{API}/settings/listing_auto_approve", json={"value": True, "type": "bool"}, headers=admin["headers"]
    )
    listing_id = _create(client, provider).json()["id"]
    response = client.post(f"{API}/listings/{listing_id}/status", json={"status": "pending"}, headers=provider["headers"])
    assert response.json()["status"] == "active"


def test_partial_update_is_validated_against_merged_listing(client, provider):
    listing_id = _create(client, provider).json()["id"]
    ok = client.put(f"{API}/listings/{listing_id}", json={"hourly_rate": 95}, headers=provider["headers"])
    assert ok.status_code == 200
    assert ok.json()["hourly_rate"] == 95
    bad = client.put(f"{API}/listings/{listing_id}", json={"pricing_type": "fixed"}, headers=provider["headers"])
    assert bad.status_code == 400


def test_explicit_null_cannot_clear_required_fields(client, provider):
    listing_id = _create(client, provider).json()["id"]
    for field in ("location_type", "pricing_type", "title", "advance_booking_days"):
        response = client.put(f"{API}/listings/{listing_id}", json={field: None}, headers=provider["headers"])
        assert response.status_code == 422, field
    # Nullable fields may still be cleared.
    cleared = client.put(f"{API}/listings/{listing_id}", json={"subcategory": None}, headers=provider["headers"])
    assert cleared.status_code == 200
    assert cleared.json()["location_type"] == "on_site"


def test_other_providers_cannot_edit(client, provider, make_user):
    listing_id = _create(client, provider).json()["id"]
    rival = make_user("rex@example.com", role="provider")
    response = client.put(f"{API}/listings/{listing_id}", json={"hourly_rate": 1}, headers=rival["headers"])
    assert response.status_code == 403


def test_search_filters_and_sorting(client, admin, provider):
    cheap = _create(client, provider, title="Leaky faucet fix", hourly_rate=40).json()["id"]
    pricey = _create(
        client,
        provider,
        title="Garden makeover",
        category="Landscaping",
        tags=["garden"],
        hourly_rate=120,
        service_areas=["Dallas"],
    ).json()["id"]
    _create(client, provider, title="Unpublished service")
    for listing_id in (cheap, pricey):
        _publish(client, provider, admin, listing_id)

    everything = client.get(f"{API}/listings/search").json()
    assert everything["total"] == 2
    assert everything["total_pages"] == 1

    by_text = client.get(f"{API}/listings/search", params={"q": "faucet"}).json()
    assert [item["id"] for item in by_text["listings"]] == [cheap]

    by_area = client.get(f"{API}/listings/search", params={"location": "dallas"}).json()
    assert [item["id"] for item in by_area["listings"]] == [pricey]

    by_price = client.get(f"{API}/listings/search", params={"sort_by": "price_high"}).json()
    assert [item["id"] for item in by_price["listings"]] == [pricey, cheap]

    capped = client.get(f"{API}/listings/search", params={"max_price": 50}).json()
    assert [item["id"] for item in capped["listings"]] == [cheap]


def test_view_count_ignores_owner(client, provider, consumer, active_listing):
    listing_id = active_listing["id"]
    client.get(f"{API}/listings/{listing_id}", headers=provider["headers"])
    viewed = client.get(f"{API}/listings/{listing_id}", headers=consumer["headers"])
    assert viewed.json()["view_count"] == 1


def test_free_plan_listing_limit(client, provider):
    for number in range(3):
        assert _create(client, provider, title=f"Pipe repair #{number}").status_code == 201
    response = _create(client, provider, title="One listing too many")
    assert response.status_code == 402


def test_categories_and_stats(client, provider):
    categories = client.get(f"{API}/listings/categories").json()
    assert categories[0]["name"] == "Home Maintenance"
    assert "General Repairs" in categories[0]["subcategories"]

    _create(client, provider)
    stats = client.get(f"{API}/listings/stats", headers=provider["headers"]).json()
    assert stats["total"] == 1
    assert stats["by_status"]["draft"] == 1


def test_archive_listing(client, provider):
    listing_id = _create(client, provider).json()["id"]
    archived = client.delete(f"{API}/listings/{listing_id}", headers=provider["headers"])
    assert archived.json()["status"] == "archived"
    again = client.put(f"{API}/listings/{listing_id}", json={"hourly_rate": 90}, headers=provider["headers"])
    assert again.status_code == 400


def test_search_text_is_matched_literally(client, admin, provider):
    sale = _create(client, provider, title="Pipe repair at 50% off").json()["id"]
    other = _create(client, provider, title="Pipe repair for 500 homes").json()["id"]
    for listing_id in (sale, other):
        _publish(client, provider, admin, listing_id)

    percent = client.get(f"{API}/listings/search", params={"q": "50%"}).json()
    assert [item["id"] for item in percent["listings"]] == [sale]
    assert client.get(f"{API}/listings/search", params={"q": "_"}).json()["total"] == 0
