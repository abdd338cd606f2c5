"""Loconomy API client.

A thin wrapper around the Loconomy REST API for scripts and
integrations (booking widgets, import jobs, scheduled reports).  It
uses the ``requests`` library and never raises on HTTP errors: every
method returns a tuple ``(data, error)`` where ``error`` is ``None`` on
success and a dictionary with ``status_code`` and ``message`` keys on
failure.  Booking conflicts (HTTP 409) keep the structured detail, so
callers can offer ``suggested_times`` to the user.

Authenticate either by passing ``api_key`` (a JWT or service token) or
by calling :meth:`login`, which stores the returned access token::

    client = LoconomyAPI(base_url="http://localhost:8000")
    _, error = client.login("jane@example.com", "strongpassword")
    listings, error = client.search_listings(q="plumber", location="Austin")
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import requests


logger = logging.getLogger(__name__)

Result = Tuple[Optional[Any], Optional[Dict[str, Any]]]


class LoconomyAPI:
    """Client for the version 1 Loconomy API."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 15,
    ) -> None:
        """Initialise the API client.

        Args:
            base_url: Server root, e.g. ``https://api.loconomy.com``.  The
                ``/api/v1`` prefix is added automatically.
            api_key: Optional bearer token sent with every request.
            session: Optional requests session.  If not supplied a
                session will be created automatically.
            timeout: Request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/") + "/api/v1"
        self.api_key = api_key
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(
        self, method: str, path: str, *, params: Dict[str, Any] | None = None,
        json_body: Any | None = None
    ) -> Result:
        """Perform an HTTP request to the API.

        Args:
            method: HTTP method (``GET``, ``POST``, ``PUT``, ``DELETE``).
            path: Path relative to ``/api/v1`` (e.g. ``/listings/search``).
            params: Query parameters; ``None`` values are dropped.
            json_body: JSON body to send with the request.
        Returns:
            A tuple ``(data, error)``.
        """
        url = f"{self.base_url}{path}"
        headers: Dict[str, str] = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if params:
            params = {key: value for key, value in params.items() if value is not None}
        try:
            logger.debug("Sending %s request to %s", method, url)
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            if response.content:
                return response.json(), None
            return None, None
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            message: Any = ""
            if exc.response is not None:
                try:
                    err_json = exc.response.json()
                    message = err_json.get("detail") or err_json.get("message") or str(err_json)
                except ValueError:
                    message = exc.response.text
            if not message:
                message = str(exc)
            logger.error("API request failed (%s): %s", status, message)
            return None, {"status_code": status, "message": message}
        except requests.RequestException as exc:
            logger.error("API request failed: %s", exc)
            return None, {"status_code": None, "message": str(exc)}

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def register(self, email: str, password: str, full_name: Optional[str] = None, locale: str = "en") -> Result:
        return self._request(
            "POST",
            "/auth/register",
            json_body={"email": email, "password": password, "full_name": full_name, "locale": locale},
        )

    def login(self, email: str, password: str) -> Result:
        """Sign in and keep the access token for later calls."""
        data, error = self._request("POST", "/auth/login", json_body={"email": email, "password": password})
        if data and data.get("access_token"):
            self.api_key = data["access_token"]
        return data, error

    def me(self) -> Result:
        return self._request("GET", "/auth/me")

    # ------------------------------------------------------------------
    # Listings and availability
    # ------------------------------------------------------------------
    def search_listings(self, **filters: Any) -> Result:
        """Search active listings.

        Accepts the query parameters of ``GET /listings/search``
        (``q``, ``category``, ``location``, ``min_price``,
        ``sort_by``, ``page`` ...).
        """
        return self._request("GET", "/listings/search", params=filters)

    def get_listing(self, listing_id: int) -> Result:
        return self._request("GET", f"/listings/{listing_id}")

    def create_listing(self, payload: Dict[str, Any]) -> Result:
        return self._request("POST", "/listings/", json_body=payload)

    def get_available_slots(self, provider_id: int, day: str, duration: int = 60) -> Result:
        return self._request(
            "GET", f"/availability/providers/{provider_id}/slots", params={"date": day, "duration": duration}
        )

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------
    def create_booking(self, payload: Dict[str, Any]) -> Result:
        """Request a booking.

        On a scheduling conflict ``error["message"]`` is the structured
        conflict detail including ``suggested_times``.
        """
        return self._request("POST", "/bookings/", json_body=payload)

    def list_bookings(self, statuses: Optional[List[str]] = None, as_role: Optional[str] = None) -> Result:
        data, error = self._request("GET", "/bookings/", params={"status": statuses, "as_role": as_role})
        if error:
            return [], error
        return data or [], None

    def update_booking_status(self, booking_id: int, status: str, reason: Optional[str] = None) -> Result:
        return self._request(
            "PUT", f"/bookings/{booking_id}/status", json_body={"status": status, "reason": reason}
        )

    def send_booking_message(self, booking_id: int, text: str) -> Result:
        return self._request("POST", f"/bookings/{booking_id}/messages", json_body={"message_text": text})

    # ------------------------------------------------------------------
    # Reviews and misc
    # ------------------------------------------------------------------
    def create_review(self, booking_id: int, rating: int, review_text: Optional[str] = None) -> Result:
        return self._request(
            "POST", "/reviews/", json_body={"booking_id": booking_id, "rating": rating, "review_text": review_text}
        )

    def list_notifications(self, unread_only: bool = False) -> Result:
        return self._request("GET", "/notifications/", params={"unread_only": unread_only})

    def health(self) -> Result:
        return self._request("GET", "/health")
