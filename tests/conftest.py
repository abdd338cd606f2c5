"""Shared fixtures: an isolated SQLite file per test and ready-made users.

The first registered account becomes the administrator, so every user
fixture depends on ``admin``.  Rate limiting is switched off here and
re-enabled by the tests that exercise it.
"""

from datetime import date, timedelta
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient

from loconomy_api.app.core.config import reload_settings
from loconomy_api.app.core.db import init_db
from loconomy_api.app.core.rate_limit import limiter
from loconomy_api.app.main import app


PASSWORD = "strongpassword"
API = "/api/v1"

LISTING_PAYLOAD: Dict[str, Any] = {
    "title": "Emergency pipe repair",
    "description": "Fast and reliable repair of leaking or burst pipes, any time of day.",
    "category": "Home Maintenance",
    "tags": ["plumbing", "repair"],
    "pricing_type": "hourly",
    "hourly_rate": 80,
    "minimum_hours": 1,
    "duration_minutes": 60,
    "location_type": "on_site",
    "service_areas": ["Austin"],
}

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", str(tmp_path / "loconomy-test.db"))
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("SERVICE_FEE_PERCENT", "10")
    for name in (
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "OPENAI_API_KEY",
        "SUPER_ADMIN_TOKEN",
        "SERVICE_TOKENS",
    ):
        monkeypatch.delenv(name, raising=False)
    reload_settings()
    init_db()
    limiter.clear()
    yield
    limiter.clear()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(client):
    """Register a user through the API and log them in."""

    def _make(email: str, role: str = "consumer", full_name: str = None) -> Dict[str, Any]:
        response = client.post(
            f"{API}/auth/register",
            json={"email": email, "password": PASSWORD, "full_name": full_name or email.split("@")[0].title()},
        )
        assert response.status_code == 201, response.text
        user = response.json()
        login = client.post(f"{API}/auth/login", json={"email": email, "password": PASSWORD})
        assert login.status_code == 200, login.text
        user["headers"] = {"Authorization": f"Bearer {login.json()['access_token']}"}
        if role == "provider" and user["role"] != "provider":
            switched = client.post(f"{API}/users/me/role", json={"role": "provider"}, headers=user["headers"])
            assert switched.status_code == 200, switched.text
            user["role"] = "provider"
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin@example.com", full_name="Ada Admin")


@pytest.fixture
def provider(admin, make_user):
    return make_user("pat@example.com", role="provider", full_name="Pat Plumber")


@pytest.fixture
def consumer(admin, make_user):
    return make_user("cora@example.com", full_name="Cora Customer")


@pytest.fixture
def provider_hours(client, provider):
    """Open the provider's calendar 09:00-17:00 every day."""
    hours = [{"day_of_week": day, "start_time": "09:00", "end_time": "17:00"} for day in WEEKDAYS]
    response = client.put(f"{API}/availability/me", json={"hours": hours}, headers=provider["headers"])
    assert response.status_code == 200, response.text
    return response.json()


@pytest.fixture
def active_listing(client, admin, provider, provider_hours):
    """A listing submitted by the provider and approved by the admin."""
    created = client.post(f"{API}/listings/", json=LISTING_PAYLOAD, headers=provider["headers"])
    assert created.status_code == 201, created.text
    listing_id = created.json()["id"]
    submitted = client.post(
        f"{API}/listings/{listing_id}/status", json={"status": "pending"}, headers=provider["headers"]
    )
    assert submitted.status_code == 200, submitted.text
    approved = client.put(
        f"{API}/listings/{listing_id}/moderate", json={"approved": True}, headers=admin["headers"]
    )
    assert approved.status_code == 200, approved.text
    return approved.json()


@pytest.fixture
def booking_day():
    return date.today() + timedelta(days=7)


@pytest.fixture
def make_booking(client, active_listing, booking_day):
    def _book(user: Dict[str, Any], start_time: str = "10:00", day: date = None, **extra: Any):
        payload = {
            "listing_id": active_listing["id"],
            "booking_date": (day or booking_day).isoformat(),
            "start_time": start_time,
            **extra,
        }
        return client.post(f"{API}/bookings/", json=payload, headers=user["headers"])

    return _book
