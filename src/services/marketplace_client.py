"""HTTP client for the barbershop marketplace backend, with retry logic,
timeout handling and a short-lived catalog cache.

The marketplace (the Next.js app that owns the database and authentication)
is the only system of record.  This client covers the three collaborators the
assistant depends on:

* authentication — ``GET /api/auth/get-session`` with the caller's cookies
* booking store  — user bookings, barbershops with services, booking creation
* availability   — ``GET /api/barbershops/{id}/available-time-slots``

All requests carry a service token as a Bearer token; booking creation is
additionally scoped to the user id resolved from the caller's session.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import date, datetime
from typing import Any
from urllib.parse import quote

import httpx

from src.config import MARKETPLACE_API_TOKEN, MARKETPLACE_BASE_URL
from src.services.cache import TTLCache
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 0.5
REQUEST_TIMEOUT_SECONDS = 10.0

# ── Cache key prefixes ──────────────────────────────────────────────
_CK_BARBERSHOPS = "barbershops:"
_CK_BARBERSHOP = "barbershop:"

# Caller headers forwarded to the session endpoint.
_CREDENTIAL_HEADERS = ("cookie", "authorization")


class MarketplaceAPIError(Exception):
    """Raised when a marketplace call fails (after retries, for 5xx).

    ``detail`` carries the backend's own message for validation failures
    (e.g. "Data e hora selecionadas já estão agendadas."), suitable for
    relaying to the model.  It is ``None`` for transport and server errors.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        detail: str | None = None,
    ):
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


def _extract_detail(response: httpx.Response) -> str | None:
    """Pull the first human-readable message out of an error body."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    validation = body.get("validationErrors") or {}
    errors = validation.get("_errors") if isinstance(validation, dict) else None
    if errors:
        return str(errors[0])
    for key in ("serverError", "error", "message"):
        if body.get(key):
            return str(body[key])
    return None


def _decode(response: httpx.Response, operation: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        logger.error("Marketplace returned a non-JSON body for %s", operation)
        raise MarketplaceAPIError(
            f"Invalid JSON from marketplace for {operation}",
            status_code=response.status_code,
        ) from exc


def _segment(value: str) -> str:
    """Percent-encode one path segment so ids cannot add or climb levels."""
    return quote(str(value), safe="")


class MarketplaceClient:
    """Thin wrapper around the marketplace REST API with automatic retries
    and a TTL cache for the barbershop catalog.

    **What is cached**

    Only the catalog (barbershop search results and single barbershop
    records).  Sessions, bookings and availability change per request and
    are always fetched fresh.  ``create_booking`` does not touch the catalog,
    so it invalidates nothing.
    """

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        *,
        cache: TTLCache | None = None,
    ):
        self._token = token or MARKETPLACE_API_TOKEN
        self._base_url = base_url or MARKETPLACE_BASE_URL
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        self._cache = cache or TTLCache()

    # ── Internal helpers ─────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        """Execute an HTTP request with exponential-backoff retries.

        Returns the decoded JSON body, or ``None`` for a 404 when
        ``allow_not_found`` is set.
        """
        operation = f"{method} {path}"
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = self._client.request(
                    method,
                    path,
                    params=params,
                    json=json_body,
                    headers=headers,
                )
                elapsed = (time.perf_counter() - t0) * 1000
                if response.status_code == 404 and allow_not_found:
                    metrics.record_success("marketplace", operation, latency_ms=elapsed)
                    return None
                if response.status_code >= 500:
                    raise MarketplaceAPIError(
                        f"Server error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                if response.status_code >= 400:
                    metrics.record_failure(
                        "marketplace", operation,
                        error_type=str(response.status_code), latency_ms=elapsed,
                    )
                    raise MarketplaceAPIError(
                        f"Client error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                        detail=_extract_detail(response),
                    )
                metrics.record_success("marketplace", operation, latency_ms=elapsed)
                return _decode(response, operation)

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                metrics.record_failure("marketplace", operation, error_type=type(exc).__name__)
                logger.warning(
                    "Marketplace API attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt,
                    MAX_RETRIES,
                    type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except httpx.HTTPError as exc:
                # Protocol/read errors may follow a half-processed request; not retried.
                metrics.record_failure("marketplace", operation, error_type=type(exc).__name__)
                raise MarketplaceAPIError(
                    f"Marketplace transport error ({type(exc).__name__}): {exc}"
                ) from exc
            except MarketplaceAPIError as exc:
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    metrics.record_failure("marketplace", operation, error_type="5xx")
                    logger.warning(
                        "Marketplace API server error on attempt %d/%d. Retrying…",
                        attempt,
                        MAX_RETRIES,
                    )
                else:
                    raise  # 4xx errors are not retried

            if attempt < MAX_RETRIES:
                time.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise MarketplaceAPIError(
            f"Marketplace API request failed after {MAX_RETRIES} attempts: {last_error}"
        )

    def _remember(self, key: str, value: Any) -> None:
        self._cache.put(key, value)
        logger.debug(
            "Catalog cache: %d entries, %d bytes",
            self._cache.entry_count,
            self._cache.current_bytes,
        )

    def close(self) -> None:
        self._client.close()

    # ── Authentication ───────────────────────────────────────────────

    def get_session_user(self, credentials: dict[str, str]) -> dict[str, Any] | None:
        """Resolve the caller behind *credentials* to a user record.

        *credentials* are the inbound request headers; only ``Cookie`` and
        ``Authorization`` are forwarded.  Returns ``None`` for anonymous
        callers, including when no credential header is present at all.
        """
        forwarded = {
            name: value
            for name, value in credentials.items()
            if name.lower() in _CREDENTIAL_HEADERS and value
        }
        if not forwarded:
            return None

        data = self._request("GET", "/api/auth/get-session", headers=forwarded)
        if not data or not data.get("user"):
            return None
        return data["user"]

    # ── Booking store ────────────────────────────────────────────────

    def list_user_bookings(self, user_id: str, *, limit: int) -> list[dict[str, Any]]:
        """Return the user's bookings, newest first, with service and barbershop."""
        data = self._request(
            "GET", f"/api/users/{_segment(user_id)}/bookings", params={"limit": limit},
        )
        return data.get("bookings", [])[:limit]

    def list_barbershops(self, name: str | None = None) -> list[dict[str, Any]]:
        """List barbershops with their services (cached).

        With *name*, the backend filters by case-insensitive substring.
        """
        needle = (name or "").strip()
        cache_key = f"{_CK_BARBERSHOPS}{needle.lower()}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        params = {"name": needle} if needle else None
        data = self._request("GET", "/api/barbershops", params=params)
        result = data.get("barbershops", [])
        self._remember(cache_key, result)
        return result

    def get_barbershop(self, barbershop_id: str) -> dict[str, Any] | None:
        """Return one barbershop with services, or ``None`` if it does not exist."""
        cache_key = f"{_CK_BARBERSHOP}{barbershop_id}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        data = self._request(
            "GET", f"/api/barbershops/{_segment(barbershop_id)}", allow_not_found=True,
        )
        if data is None:
            return None
        barbershop = data.get("barbershop")
        if barbershop is not None:
            self._remember(cache_key, barbershop)
        return barbershop

    def create_booking(
        self,
        user_id: str,
        service_id: str,
        date_time: datetime,
    ) -> dict[str, Any]:
        """Create a booking for *user_id*.  Returns the created booking record.

        **Not retried on 4xx**: slot conflicts and past dates come back as
        validation errors carrying a message in ``MarketplaceAPIError.detail``.
        """
        data = self._request(
            "POST",
            "/api/bookings",
            json_body={
                "userId": user_id,
                "serviceId": service_id,
                "date": date_time.isoformat(),
            },
        )
        return data.get("data") or {}

    # ── Availability ─────────────────────────────────────────────────

    def get_available_time_slots(self, barbershop_id: str, day: date) -> list[str]:
        """Return bookable times (``"HH:MM"``) for a barbershop on *day*.

        **Not cached**: availability changes with every booking.
        """
        data = self._request(
            "GET",
            f"/api/barbershops/{_segment(barbershop_id)}/available-time-slots",
            params={"date": day.isoformat()},
        )
        return data.get("data", [])


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: MarketplaceClient | None = None
_client_lock = threading.Lock()


def get_marketplace_client() -> MarketplaceClient:
    """Return a module-level MarketplaceClient singleton.

    Uses double-checked locking so that the lock is only acquired during
    the first initialisation, not on every subsequent call.
    """
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = MarketplaceClient()
    return _client


def close_marketplace_client() -> None:
    """Close the singleton's connection pool, if it was ever created."""
    global _client
    with _client_lock:
        if _client is not None:
            _client.close()
            _client = None
