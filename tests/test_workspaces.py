import pytest

from conftest import API, LISTING_PAYLOAD
from loconomy_api.app.services.workspace_service import generate_slug, validate_slug


@pytest.mark.parametrize(
    "name, slug",
    [
        ("Austin Home Services", "austin-home-services"),
        ("  Café__Pros ", "caf-pros"),
        ("A&B", "workspace-ab"),
        ("Dallas -- Fort Worth", "dallas-fort-worth"),
    ],
)
def test_generate_slug(name, slug):
    assert generate_slug(name) == slug
    assert validate_slug(slug)


def test_validate_slug_rejects_bad_values():
    assert not validate_slug("-leading")
    assert not validate_slug("ab")
    assert not validate_slug("Upper-Case")


@pytest.fixture
def workspace(client, provider):
    response = client.post(
        f"{API}/workspaces/", json={"name": "Austin Home Services", "city": "Austin", "currency": "usd"},
        headers=provider["headers"],
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_creator_owns_the_workspace(client, provider, workspace):
    assert workspace["slug"] == "austin-home-services"
    assert workspace["member_role"] == "owner"
    assert workspace["currency"] == "USD"
    mine = client.get(f"{API}/workspaces/", headers=provider["headers"]).json()
    assert [w["id"] for w in mine] == [workspace["id"]]


def test_generated_slugs_get_a_suffix(client, provider, workspace):
    second = client.post(f"{API}/workspaces/", json={"name": "Austin Home Services"}, headers=provider["headers"])
    assert second.json()["slug"] == "austin-home-services-2"
    explicit = client.post(
        f"{API}/workspaces/",
        json={"name": "Another one", "slug": "austin-home-services"},
        headers=provider["headers"],
    )
    assert explicit.status_code == 409


def test_consumers_cannot_create_workspaces(client, consumer):
    response = client.post(f"{API}/workspaces/", json={"name": "Nope Inc"}, headers=consumer["headers"])
    assert response.status_code == 403


def test_membership_management(client, provider, consumer, workspace):
    workspace_id = workspace["id"]
    assert client.get(f"{API}/workspaces/{workspace_id}", headers=consumer["headers"]).status_code == 403

    added = client.post(
        f"{API}/workspaces/{workspace_id}/members", json={"email": "cora@example.com"}, headers=provider["headers"]
    )
    assert added.status_code == 201
    assert added.json()["role"] == "member"

    again = client.post(
        f"{API}/workspaces/{workspace_id}/members", json={"email": "cora@example.com"}, headers=provider["headers"]
    )
    assert again.status_code == 409

    detail = client.get(f"{API}/workspaces/{workspace_id}", headers=consumer["headers"]).json()
    assert detail["member_role"] == "member"
    assert {m["email"] for m in detail["members"]} == {"pat@example.com", "cora@example.com"}

    # Plain members cannot manage the member list.
    denied = client.delete(f"{API}/workspaces/{workspace_id}/members/{provider['id']}", headers=consumer["headers"])
    assert denied.status_code == 403

    promoted = client.put(
        f"{API}/workspaces/{workspace_id}/members/{consumer['id']}", json={"role": "admin"}, headers=provider["headers"]
    )
    assert promoted.json()["role"] == "admin"

    owner_removal = client.delete(
        f"{API}/workspaces/{workspace_id}/members/{provider['id']}", headers=consumer["headers"]
    )
    assert owner_removal.status_code == 409

    removed = client.delete(f"{API}/workspaces/{workspace_id}/members/{consumer['id']}", headers=provider["headers"])
    assert removed.status_code == 204


def test_last_owner_cannot_step_down(client, provider, workspace):
    response = client.put(
        f"{API}/workspaces/{workspace['id']}/members/{provider['id']}",
        json={"role": "member"},
        headers=provider["headers"],
    )
    assert response.status_code == 409


def test_only_owner_updates_settings(client, admin, provider, consumer, workspace):
    workspace_id = workspace["id"]
    client.post(
        f"{API}/workspaces/{workspace_id}/members",
        json={"email": "cora@example.com", "role": "admin"},
        headers=provider["headers"],
    )
    denied = client.put(f"{API}/workspaces/{workspace_id}", json={"commission_rate": 5}, headers=consumer["headers"])
    assert denied.status_code == 403
    updated = client.put(f"{API}/workspaces/{workspace_id}", json={"commission_rate": 12.5}, headers=provider["headers"])
    assert updated.json()["commission_rate"] == 12.5
    # Platform administrators may act on any workspace.
    assert client.get(f"{API}/workspaces/{workspace_id}", headers=admin["headers"]).status_code == 200


def test_required_settings_cannot_be_nulled(client, provider, workspace):
    workspace_id = workspace["id"]
    for field in ("name", "type", "status", "timezone", "commission_rate", "currency"):
        response = client.put(f"{API}/workspaces/{workspace_id}", json={field: None}, headers=provider["headers"])
        assert response.status_code == 422, field
    cleared = client.put(f"{API}/workspaces/{workspace_id}", json={"city": None}, headers=provider["headers"])
    assert cleared.status_code == 200
    assert cleared.json()["city"] is None
    assert cleared.json()["currency"] == "USD"


def test_workspace_listings(client, admin, provider, make_user, workspace, provider_hours):
    workspace_id = workspace["id"]
    created = client.post(
        f"{API}/listings/", json={**LISTING_PAYLOAD, "workspace_id": workspace_id}, headers=provider["headers"]
    )
    assert created.status_code == 201
    listing_id = created.json()["id"]
    client.post(f"{API}/listings/{listing_id}/status", json={"status": "pending"}, headers=provider["headers"])
    client.put(f"{API}/listings/{listing_id}/moderate", json={"approved": True}, headers=admin["headers"])

    listings = client.get(f"{API}/workspaces/{workspace_id}/listings", headers=provider["headers"]).json()
    assert [item["id"] for item in listings["listings"]] == [listing_id]

    outsider = make_user("rex@example.com", role="provider")
    response = client.post(
        f"{API}/listings/", json={**LISTING_PAYLOAD, "workspace_id": workspace_id}, headers=outsider["headers"]
    )
    assert response.status_code == 403
