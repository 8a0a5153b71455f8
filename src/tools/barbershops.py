"""Marketplace tools: barbershop search, availability, details, user history,
authentication check and booking creation.

Every executor returns a JSON-serialisable dict the model can read, for
success and failure alike; none of them raise.  Prices are converted from
the stored integer cents to reais here, at the edge, so the model never
sees minor units.  Booking ids and user ids never leave this module except
``bookingId`` on a successful ``createBooking``.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.config import BOOKING_HISTORY_LIMIT
from src.services.marketplace_client import MarketplaceAPIError, get_marketplace_client
from src.session import SessionContext
from src.tools.registry import AuthRequirement, ToolDefinition, ToolRegistry

logger = logging.getLogger(__name__)

LOGIN_REQUIRED_ERROR = "User must be logged in"


def cents_to_currency(price_in_cents: int) -> float:
    """``4500`` → ``45.0``."""
    return price_in_cents / 100


def _service_summary(service: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": service["id"],
        "name": service["name"],
        "price": cents_to_currency(service["priceInCents"]),
    }


def _barbershop_summary(barbershop: dict[str, Any]) -> dict[str, Any]:
    return {
        "barbershopId": barbershop["id"],
        "name": barbershop["name"],
        "address": barbershop["address"],
        "imageUrl": barbershop.get("imageUrl"),
        "services": [_service_summary(s) for s in barbershop.get("services", [])],
    }


# ── Input schemas ────────────────────────────────────────────────────


# Marketplace ids (cuid or uuid); they end up in URL paths.
ID_PATTERN = r"^[A-Za-z0-9_-]+$"


class _ToolInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SearchBarbershopsInput(_ToolInput):
    name: str | None = Field(default=None, description="Nome opcional da barbearia")


class TimeSlotsInput(_ToolInput):
    barbershop_id: str = Field(
        ...,
        alias="barbershopId",
        min_length=1,
        pattern=ID_PATTERN,
        description="ID da barbearia",
    )
    date: dt.date = Field(
        ...,
        description="Data no formato YYYY-MM-DD para a qual deseja obter os horários disponíveis",
    )


class BarbershopDetailsInput(_ToolInput):
    barbershop_id: str = Field(
        ...,
        alias="barbershopId",
        min_length=1,
        pattern=ID_PATTERN,
        description="ID da barbearia",
    )


class NoInput(_ToolInput):
    pass


class CreateBookingInput(_ToolInput):
    service_id: str = Field(
        ...,
        alias="serviceId",
        min_length=1,
        pattern=ID_PATTERN,
        description="ID do serviço",
    )
    date: dt.datetime = Field(
        ...,
        description="Data em ISO String para a qual deseja agendar (YYYY-MM-DDTHH:mm:ss)",
    )


# ── Executors ────────────────────────────────────────────────────────


def search_barbershops(args: SearchBarbershopsInput, session: SessionContext) -> dict[str, Any]:
    """Case-insensitive substring search; blank name lists every barbershop."""
    name = (args.name or "").strip()
    try:
        barbershops = get_marketplace_client().list_barbershops(name or None)
    except MarketplaceAPIError as e:
        logger.error("Failed to search barbershops: %s", e)
        return {"error": "Não foi possível buscar as barbearias agora. Tente novamente."}

    if name:
        # The backend filters already; keep the contract even if it does not.
        needle = name.casefold()
        barbershops = [b for b in barbershops if needle in b["name"].casefold()]

    return {"barbershops": [_barbershop_summary(b) for b in barbershops]}


def get_available_time_slots(args: TimeSlotsInput, session: SessionContext) -> dict[str, Any]:
    try:
        slots = get_marketplace_client().get_available_time_slots(args.barbershop_id, args.date)
    except MarketplaceAPIError as e:
        logger.error("Failed to get time slots for %s on %s: %s", args.barbershop_id, args.date, e)
        return {"error": e.detail or "Erro ao buscar horários disponíveis"}

    return {
        "barbershopId": args.barbershop_id,
        "date": args.date.isoformat(),
        "availableTimeSlots": slots,
    }


def get_barbershop_details(args: BarbershopDetailsInput, session: SessionContext) -> dict[str, Any]:
    try:
        barbershop = get_marketplace_client().get_barbershop(args.barbershop_id)
    except MarketplaceAPIError as e:
        logger.error("Failed to load barbershop %s: %s", args.barbershop_id, e)
        return {"error": "Não foi possível carregar a barbearia agora. Tente novamente."}

    if barbershop is None:
        return {"error": "Barbearia não encontrada"}

    return {
        "barbershopId": barbershop["id"],
        "name": barbershop["name"],
        "address": barbershop["address"],
        "description": barbershop.get("description"),
        "imageUrl": barbershop.get("imageUrl"),
        "phones": barbershop.get("phones", []),
        "services": [
            {
                **_service_summary(service),
                "description": service.get("description"),
                "imageUrl": service.get("imageUrl"),
            }
            for service in barbershop.get("services", [])
        ],
    }


def get_user_booking_history(args: NoInput, session: SessionContext) -> dict[str, Any]:
    if not session.is_authenticated:
        return {"error": "Usuário não está logado", "bookings": []}

    try:
        bookings = get_marketplace_client().list_user_bookings(
            session.user_id, limit=BOOKING_HISTORY_LIMIT,
        )
    except MarketplaceAPIError as e:
        logger.error("Failed to load booking history: %s", e)
        return {"error": "Não foi possível carregar o histórico agora.", "bookings": []}

    return {
        "bookings": [
            {
                "date": booking["date"],
                "cancelled": bool(booking.get("cancelled", False)),
                "service": _service_summary(booking["service"]),
                "barbershop": {
                    "id": booking["barbershop"]["id"],
                    "name": booking["barbershop"]["name"],
                    "address": booking["barbershop"].get("address"),
                },
            }
            for booking in bookings[:BOOKING_HISTORY_LIMIT]
        ],
    }


def check_user_authentication(args: NoInput, session: SessionContext) -> dict[str, Any]:
    if not session.is_authenticated:
        return {
            "isAuthenticated": False,
            "message": "Usuário não está logado. Para criar agendamentos, é necessário fazer login.",
        }
    return {
        "isAuthenticated": True,
        "user": {"name": session.display_name, "email": session.email},
    }


def create_booking(args: CreateBookingInput, session: SessionContext) -> dict[str, Any]:
    """Book a service for the logged-in caller; refuses anonymous callers
    without touching the store."""
    if not session.is_authenticated:
        return {"success": False, "error": LOGIN_REQUIRED_ERROR}

    try:
        booking = get_marketplace_client().create_booking(
            session.user_id, args.service_id, args.date,
        )
    except MarketplaceAPIError as e:
        logger.error("Failed to create booking: %s", e)
        return {"success": False, "error": e.detail or "Erro ao criar agendamento"}

    logger.info("Booking created for user %s", session.user_id)
    return {
        "success": True,
        "message": "Agendamento criado com sucesso! 🎉",
        "bookingId": booking.get("id"),
    }


# ── Registry ─────────────────────────────────────────────────────────

BARBERSHOP_TOOLS = ToolRegistry([
    ToolDefinition(
        name="searchBarbershops",
        description=(
            "Pesquisa barbearias pelo nome. Se nenhum nome é fornecido, "
            "retorna todas as barbearias."
        ),
        input_schema=SearchBarbershopsInput,
        executor=search_barbershops,
    ),
    ToolDefinition(
        name="getAvailableTimeSlotsForBarbershop",
        description="Obtém os horários disponíveis para uma barbearia em uma data específica.",
        input_schema=TimeSlotsInput,
        executor=get_available_time_slots,
    ),
    ToolDefinition(
        name="getBarbershopDetails",
        description=(
            "Busca detalhes completos de uma barbearia específica incluindo "
            "imagem, descrição e telefones."
        ),
        input_schema=BarbershopDetailsInput,
        executor=get_barbershop_details,
    ),
    ToolDefinition(
        name="getUserBookingHistory",
        description=(
            "Busca os últimos agendamentos do usuário logado para "
            "personalização e sugestões."
        ),
        input_schema=NoInput,
        executor=get_user_booking_history,
        auth=AuthRequirement.SOFT,
    ),
    ToolDefinition(
        name="checkUserAuthentication",
        description="Verifica se o usuário está autenticado e retorna informações básicas.",
        input_schema=NoInput,
        executor=check_user_authentication,
    ),
    ToolDefinition(
        name="createBooking",
        description=(
            "Cria um agendamento para um serviço em uma data específica. "
            "O usuário precisa estar logado."
        ),
        input_schema=CreateBookingInput,
        executor=create_booking,
        auth=AuthRequirement.HARD,
        writes=True,
    ),
])
