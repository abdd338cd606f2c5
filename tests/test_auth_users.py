import pytest

from conftest import API, PASSWORD
from loconomy_api.app.core.config import reload_settings
from loconomy_api.app.core.rbac import can_access_route, can_transition_to_role, check_access, get_role_redirect_url
from loconomy_api.app.core.security import create_access_token, decode_access_token, hash_password, verify_password


def test_password_hashing():
    hashed = hash_password(PASSWORD)
    assert hashed != PASSWORD
    assert verify_password(PASSWORD, hashed)
    assert not verify_password("wrong-password", hashed)


def test_token_round_trip_and_tampering():
    token = create_access_token({"sub": "ada@example.com"})
    assert decode_access_token(token)["sub"] == "ada@example.com"
    assert decode_access_token(token.rsplit(".", 1)[0] + ".forged") is None
    assert decode_access_token(create_access_token({"sub": "x"}, expires_delta=-10)) is None


@pytest.mark.parametrize(
    "role, path, allowed",
    [
        ("admin", "/admin/users", True),
        ("provider", "/admin", False),
        ("provider", "/provider/listings", True),
        ("consumer", "/provider/listings", False),
        ("consumer", "/dashboard", True),
        ("guest", "/bookings", False),
        ("guest", "/browse", True),
    ],
)
def test_route_access(role, path, allowed):
    assert can_access_route(role, path) is allowed


def test_role_transitions_and_permissions():
    assert can_transition_to_role("consumer", "provider")
    assert can_transition_to_role("provider", "consumer")
    assert not can_transition_to_role("consumer", "admin")
    assert check_access("admin", ["moderate:listings", "admin:system"])
    assert not check_access("consumer", ["write:listings"])
    assert get_role_redirect_url("provider") == "/provider/dashboard"


def test_first_user_becomes_admin(admin, consumer):
    assert admin["role"] == "admin"
    assert consumer["role"] == "consumer"


def test_register_normalizes_and_rejects_duplicates(client, admin):
    response = client.post(
        f"{API}/auth/register", json={"email": "  Bob@Example.COM ", "password": PASSWORD, "full_name": "Bob"}
    )
    assert response.status_code == 201
    assert response.json()["email"] == "bob@example.com"
    again = client.post(f"{API}/auth/register", json={"email": "bob@example.com", "password": PASSWORD})
    assert again.status_code == 409


def test_short_password_is_rejected(client):
    response = client.post(f"{API}/auth/register", json={"email": "x@example.com", "password": "short"})
    assert response.status_code == 422


def test_login_failures(client, consumer):
    bad = client.post(f"{API}/auth/login", json={"email": "cora@example.com", "password": "nope-nope"})
    assert bad.status_code == 401
    unknown = client.post(f"{API}/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
    assert unknown.status_code == 401


def test_me_describes_the_caller(client, provider):
    me = client.get(f"{API}/auth/me", headers=provider["headers"]).json()
    assert me["role"] == "provider"
    assert me["user"]["email"] == "pat@example.com"
    assert me["redirect_url"] == "/provider/dashboard"
    assert "write:listings" in me["permissions"]
    assert {"href": "/provider/listings", "label": "My Listings"} in me["navigation"]

    guest = client.get(f"{API}/auth/me").json()
    assert guest["role"] == "guest"
    assert guest["user"] is None
    assert guest["permissions"] == ["read:listings"]


def test_invalid_token_is_not_downgraded_to_guest(client):
    response = client.get(f"{API}/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_check_route(client, consumer):
    allowed = client.post(f"{API}/auth/check-route", json={"path": "/bookings"}, headers=consumer["headers"])
    assert allowed.json() == {"path": "/bookings", "role": "consumer", "allowed": True}
    denied = client.post(f"{API}/auth/check-route", json={"path": "/admin"}, headers=consumer["headers"])
    assert denied.json()["allowed"] is False


def test_cookie_session(client, consumer):
    opened = client.post(f"{API}/auth/session", json={"email": "cora@example.com", "password": PASSWORD})
    assert opened.status_code == 200
    assert "loconomy_session" in opened.cookies

    profile = client.get(f"{API}/users/me")
    assert profile.status_code == 200
    assert profile.json()["email"] == "cora@example.com"

    assert client.delete(f"{API}/auth/session").status_code == 204
    client.cookies.clear()
    assert client.get(f"{API}/users/me").status_code == 401


def test_social_login_creates_consumer(client, admin):
    payload = {"social_provider": "google", "social_id": "g-123", "email": "gina@example.com", "full_name": "Gina"}
    first = client.post(f"{API}/auth/social-login", json=payload)
    assert first.status_code == 200
    token = first.json()["access_token"]
    me = client.get(f"{API}/users/me", headers={"Authorization": f"Bearer {token}"}).json()
    assert me["role"] == "consumer"
    assert me["social_provider"] == "google"
    # The same identity signs in to the same account.
    second = client.post(f"{API}/auth/social-login", json=payload)
    assert decode_access_token(second.json()["access_token"])["sub"] == "gina@example.com"


def test_social_login_never_takes_over_an_email(client, admin):
    payload = {"social_provider": "evil", "social_id": "x1", "email": "admin@example.com"}
    response = client.post(f"{API}/auth/social-login", json=payload)
    assert response.status_code == 409
    assert "access_token" not in response.json()
    # A password login still reaches the untouched admin account.
    login = client.post(f"{API}/auth/login", json={"email": "admin@example.com", "password": PASSWORD})
    assert login.status_code == 200


def test_social_login_of_disabled_account(client, admin):
    payload = {"social_provider": "google", "social_id": "g-9", "email": "dora@example.com"}
    token = client.post(f"{API}/auth/social-login", json=payload).json()["access_token"]
    user_id = client.get(f"{API}/users/me", headers={"Authorization": f"Bearer {token}"}).json()["id"]
    client.put(f"{API}/users/{user_id}", json={"disabled": True}, headers=admin["headers"])
    assert client.post(f"{API}/auth/social-login", json=payload).status_code == 403


def test_first_social_account_becomes_admin(client):
    payload = {"social_provider": "github", "social_id": "1", "email": "founder@example.com"}
    token = client.post(f"{API}/auth/social-login", json=payload).json()["access_token"]
    me = client.get(f"{API}/users/me", headers={"Authorization": f"Bearer {token}"}).json()
    assert me["role"] == "admin"


def test_profile_update(client, consumer):
    response = client.put(
        f"{API}/users/me", json={"city": "Austin", "locale": "es"}, headers=consumer["headers"]
    )
    assert response.status_code == 200
    assert response.json()["city"] == "Austin"
    assert response.json()["locale"] == "es"


def test_role_switch_rules(client, consumer):
    to_admin = client.post(f"{API}/users/me/role", json={"role": "admin"}, headers=consumer["headers"])
    assert to_admin.status_code == 403
    to_provider = client.post(f"{API}/users/me/role", json={"role": "provider"}, headers=consumer["headers"])
    assert to_provider.json()["role"] == "provider"


def test_role_is_read_fresh_on_every_request(client, admin, consumer):
    client.put(f"{API}/users/{consumer['id']}/role", json={"role": "provider"}, headers=admin["headers"])
    me = client.get(f"{API}/auth/me", headers=consumer["headers"]).json()
    assert me["role"] == "provider"


def test_admin_user_management(client, admin, consumer):
    users = client.get(f"{API}/users/", params={"role": "consumer"}, headers=admin["headers"]).json()
    assert [u["email"] for u in users] == ["cora@example.com"]
    assert client.get(f"{API}/users/", headers=consumer["headers"]).status_code == 403

    disabled = client.put(f"{API}/users/{consumer['id']}", json={"disabled": True}, headers=admin["headers"])
    assert disabled.json()["disabled"] is True
    assert client.get(f"{API}/users/me", headers=consumer["headers"]).status_code == 401


def test_primary_admin_is_protected(client, admin, make_user):
    second = make_user("ops@example.com")
    client.put(f"{API}/users/{second['id']}/role", json={"role": "admin"}, headers=admin["headers"])
    assert client.put(
        f"{API}/users/{admin['id']}/role", json={"role": "consumer"}, headers=second["headers"]
    ).status_code == 403
    assert client.delete(f"{API}/users/{admin['id']}", headers=second["headers"]).status_code == 403
    assert client.delete(f"{API}/users/{second['id']}", headers=second["headers"]).status_code == 403
    assert client.delete(f"{API}/users/{second['id']}", headers=admin["headers"]).status_code == 204


def test_users_cannot_read_each_other(client, provider, consumer):
    assert client.get(f"{API}/users/{provider['id']}", headers=consumer["headers"]).status_code == 403
    assert client.get(f"{API}/users/{consumer['id']}", headers=consumer["headers"]).status_code == 200


def test_service_token_acts_with_configured_role(client, admin, monkeypatch):
    monkeypatch.setenv("SERVICE_TOKENS", "svc-one, svc-two")
    reload_settings()
    headers = {"Authorization": "Bearer svc-two"}
    assert client.get(f"{API}/users/", headers=headers).status_code == 200
    # Service callers have no profile of their own.
    assert client.get(f"{API}/users/me", headers=headers).status_code == 403


def test_super_admin_token_wins_over_service_tokens(client, admin, monkeypatch):
    monkeypatch.setenv("SUPER_ADMIN_TOKEN", "shared-secret")
    monkeypatch.setenv("SERVICE_TOKENS", "shared-secret")
    monkeypatch.setenv("SERVICE_ROLE_ID", "3")
    reload_settings()
    me = client.get(f"{API}/users/me", headers={"Authorization": "Bearer shared-secret"})
    assert me.status_code == 200
    assert me.json()["id"] == admin["id"]
