"""Per-request caller context.

The session is resolved once at the start of every chat request and handed
read-only to the framing builder and to every tool executor.  Resolution
never fails the request: an unreachable auth endpoint means an anonymous
caller, and an unreachable booking store means an empty history.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from src.config import HISTORY_SUMMARY_LIMIT
from src.services.marketplace_client import MarketplaceAPIError, MarketplaceClient

logger = logging.getLogger(__name__)

ANONYMOUS_DISPLAY_NAME = "usuário"


@dataclass(frozen=True)
class SessionContext:
    """Who is talking to the assistant, and what they booked recently."""

    user_id: str | None = None
    display_name: str = ANONYMOUS_DISPLAY_NAME
    email: str | None = None
    recent_bookings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


ANONYMOUS = SessionContext()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def summarize_booking(booking: dict) -> str:
    """One-line summary, e.g. ``Corte de Cabelo na Vintage Barber em 12/09/2026``."""
    when = _parse_datetime(booking["date"]).strftime("%d/%m/%Y")
    return f"{booking['service']['name']} na {booking['barbershop']['name']} em {when}"


def resolve_session(
    client: MarketplaceClient,
    credentials: dict[str, str],
    *,
    history_limit: int = HISTORY_SUMMARY_LIMIT,
) -> SessionContext:
    """Build the :class:`SessionContext` for the caller behind *credentials*.

    Blocking (it talks to the marketplace); call it from a worker thread in
    async code.
    """
    try:
        user = client.get_session_user(credentials)
    except MarketplaceAPIError as exc:
        logger.warning("Session lookup failed, continuing anonymously: %s", exc)
        return ANONYMOUS

    if not user or not user.get("id"):
        return ANONYMOUS

    try:
        bookings = client.list_user_bookings(user["id"], limit=history_limit)
        history = tuple(summarize_booking(b) for b in bookings[:history_limit])
    except (MarketplaceAPIError, KeyError, ValueError) as exc:
        logger.warning("Booking history unavailable for %s: %s", user["id"], exc)
        history = ()

    return SessionContext(
        user_id=user["id"],
        display_name=user.get("name") or ANONYMOUS_DISPLAY_NAME,
        email=user.get("email"),
        recent_bookings=history,
    )
