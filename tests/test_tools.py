"""Tests for the marketplace tool executors.

The marketplace client is mocked; these tests pin down the result shapes the
model sees and the auth checks each executor performs.
"""

from __future__ import annotations

from datetime import date, datetime
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from src.services.marketplace_client import MarketplaceAPIError
from src.session import ANONYMOUS, SessionContext
from src.tools.barbershops import (
    BARBERSHOP_TOOLS,
    LOGIN_REQUIRED_ERROR,
    BarbershopDetailsInput,
    CreateBookingInput,
    NoInput,
    SearchBarbershopsInput,
    TimeSlotsInput,
    cents_to_currency,
    check_user_authentication,
    create_booking,
    get_available_time_slots,
    get_barbershop_details,
    get_user_booking_history,
    search_barbershops,
)
from src.tools.registry import AuthRequirement, execute_tool_call

ANA = SessionContext(user_id="user-1", display_name="Ana", email="ana@example.com")


@pytest.fixture
def client():
    mock = MagicMock()
    with patch("src.tools.barbershops.get_marketplace_client", return_value=mock):
        yield mock


# ── Registry contents ────────────────────────────────────────────────


class TestToolCatalog:
    def test_exposes_the_six_tools(self):
        assert BARBERSHOP_TOOLS.names == [
            "searchBarbershops",
            "getAvailableTimeSlotsForBarbershop",
            "getBarbershopDetails",
            "getUserBookingHistory",
            "checkUserAuthentication",
            "createBooking",
        ]

    def test_auth_requirements(self):
        assert BARBERSHOP_TOOLS.get("createBooking").auth is AuthRequirement.HARD
        assert BARBERSHOP_TOOLS.get("createBooking").writes is True
        assert BARBERSHOP_TOOLS.get("getUserBookingHistory").auth is AuthRequirement.SOFT
        assert BARBERSHOP_TOOLS.get("searchBarbershops").auth is AuthRequirement.NONE

    def test_schemas_use_wire_field_names(self):
        tool_schema = BARBERSHOP_TOOLS.get("createBooking").to_anthropic_tool()
        assert tool_schema["name"] == "createBooking"
        assert set(tool_schema["input_schema"]["properties"]) == {"serviceId", "date"}
        assert set(tool_schema["input_schema"]["required"]) == {"serviceId", "date"}


# ── searchBarbershops ────────────────────────────────────────────────


class TestSearchBarbershops:
    def test_prices_are_in_reais(self, client, barbershops):
        client.list_barbershops.return_value = barbershops
        result = search_barbershops(SearchBarbershopsInput(), ANONYMOUS)

        first = result["barbershops"][0]
        assert first["barbershopId"] == "shop-1"
        assert first["services"][0] == {"id": "svc-1", "name": "Corte de Cabelo", "price": 45.0}
        assert first["services"][1]["price"] == 35.5

    def test_blank_name_lists_everything(self, client, barbershops):
        client.list_barbershops.return_value = barbershops
        result = search_barbershops(SearchBarbershopsInput(name="   "), ANONYMOUS)
        assert len(result["barbershops"]) == 2
        client.list_barbershops.assert_called_once_with(None)

    def test_name_filter_is_case_insensitive(self, client, barbershops):
        client.list_barbershops.return_value = barbershops
        result = search_barbershops(SearchBarbershopsInput(name="vintage"), ANONYMOUS)
        assert [b["name"] for b in result["barbershops"]] == ["Vintage Barber"]

    def test_no_match_is_empty_list_not_error(self, client, barbershops):
        client.list_barbershops.return_value = barbershops
        result = search_barbershops(SearchBarbershopsInput(name="xyz"), ANONYMOUS)
        assert result == {"barbershops": []}

    def test_store_failure_is_reported(self, client):
        client.list_barbershops.side_effect = MarketplaceAPIError("down")
        assert "error" in search_barbershops(SearchBarbershopsInput(), ANONYMOUS)


# ── getAvailableTimeSlotsForBarbershop ───────────────────────────────


class TestAvailableTimeSlots:
    def test_echoes_request(self, client):
        client.get_available_time_slots.return_value = ["09:00", "09:30"]
        args = TimeSlotsInput.model_validate({"barbershopId": "shop-1", "date": "2026-10-23"})

        result = get_available_time_slots(args, ANONYMOUS)

        assert result == {
            "barbershopId": "shop-1",
            "date": "2026-10-23",
            "availableTimeSlots": ["09:00", "09:30"],
        }
        client.get_available_time_slots.assert_called_once_with("shop-1", date(2026, 10, 23))

    def test_backend_message_is_relayed(self, client):
        client.get_available_time_slots.side_effect = MarketplaceAPIError(
            "bad", status_code=400, detail="Barbearia não encontrada",
        )
        args = TimeSlotsInput(barbershop_id="nope", date=date(2026, 10, 23))
        assert get_available_time_slots(args, ANONYMOUS) == {"error": "Barbearia não encontrada"}

    def test_generic_message_without_detail(self, client):
        client.get_available_time_slots.side_effect = MarketplaceAPIError("timeout")
        args = TimeSlotsInput(barbershop_id="shop-1", date=date(2026, 10, 23))
        assert get_available_time_slots(args, ANONYMOUS) == {
            "error": "Erro ao buscar horários disponíveis",
        }


# ── getBarbershopDetails ─────────────────────────────────────────────


class TestBarbershopDetails:
    def test_full_record(self, client, barbershops):
        client.get_barbershop.return_value = barbershops[0]
        result = get_barbershop_details(BarbershopDetailsInput(barbershop_id="shop-1"), ANONYMOUS)

        assert result["phones"] == ["(11) 99999-0001"]
        assert result["description"] == "Barbearia clássica"
        assert result["services"][0]["price"] == 45.0
        assert result["services"][0]["description"] == "Corte na tesoura"

    def test_unknown_barbershop(self, client):
        client.get_barbershop.return_value = None
        result = get_barbershop_details(BarbershopDetailsInput(barbershop_id="x"), ANONYMOUS)
        assert result == {"error": "Barbearia não encontrada"}


# ── getUserBookingHistory ────────────────────────────────────────────


class TestBookingHistory:
    def test_anonymous_gets_error_and_empty_list(self, client):
        result = get_user_booking_history(NoInput(), ANONYMOUS)
        assert result == {"error": "Usuário não está logado", "bookings": []}
        client.list_user_bookings.assert_not_called()

    def test_authenticated_history_hides_booking_ids(self, client):
        client.list_user_bookings.return_value = [
            {
                "id": "booking-secret",
                "date": "2026-09-12T14:00:00.000Z",
                "cancelled": False,
                "service": {"id": "svc-1", "name": "Corte de Cabelo", "priceInCents": 4500},
                "barbershop": {"id": "shop-1", "name": "Vintage Barber", "address": "Rua X"},
            },
        ]
        result = get_user_booking_history(NoInput(), ANA)

        booking = result["bookings"][0]
        assert "id" not in booking
        assert booking["service"]["price"] == 45.0
        assert booking["barbershop"]["name"] == "Vintage Barber"
        assert client.list_user_bookings.call_args[0] == ("user-1",)

    def test_empty_history(self, client):
        client.list_user_bookings.return_value = []
        assert get_user_booking_history(NoInput(), ANA) == {"bookings": []}


# ── checkUserAuthentication ──────────────────────────────────────────


class TestCheckAuthentication:
    def test_anonymous(self):
        result = check_user_authentication(NoInput(), ANONYMOUS)
        assert result["isAuthenticated"] is False
        assert "login" in result["message"]

    def test_authenticated(self):
        result = check_user_authentication(NoInput(), ANA)
        assert result == {
            "isAuthenticated": True,
            "user": {"name": "Ana", "email": "ana@example.com"},
        }


# ── createBooking ────────────────────────────────────────────────────


class TestCreateBooking:
    def _args(self):
        return CreateBookingInput.model_validate(
            {"serviceId": "svc-1", "date": "2026-10-23T15:00:00"},
        )

    def test_anonymous_never_reaches_the_store(self, client):
        result = create_booking(self._args(), ANONYMOUS)
        assert result == {"success": False, "error": LOGIN_REQUIRED_ERROR}
        client.create_booking.assert_not_called()

    def test_success(self, client):
        client.create_booking.return_value = {"id": "booking-9"}
        result = create_booking(self._args(), ANA)

        assert result["success"] is True
        assert result["bookingId"] == "booking-9"
        client.create_booking.assert_called_once_with(
            "user-1", "svc-1", datetime(2026, 10, 23, 15, 0),
        )

    def test_conflict_message_is_relayed(self, client):
        client.create_booking.side_effect = MarketplaceAPIError(
            "conflict", status_code=400,
            detail="Data e hora selecionadas já estão agendadas.",
        )
        result = create_booking(self._args(), ANA)
        assert result == {
            "success": False,
            "error": "Data e hora selecionadas já estão agendadas.",
        }

    def test_generic_failure(self, client):
        client.create_booking.side_effect = MarketplaceAPIError("boom", status_code=500)
        result = create_booking(self._args(), ANA)
        assert result == {"success": False, "error": "Erro ao criar agendamento"}


# ── Id validation ──────────────────────────────────────────────────


class TestIdValidation:
    @pytest.mark.parametrize("bad_id", ["../../users/victim", "shop-1?date=x", "shop 1", "shop%2F1"])
    def test_ids_outside_the_id_alphabet_are_rejected(self, bad_id):
        with pytest.raises(ValidationError):
            BarbershopDetailsInput.model_validate({"barbershopId": bad_id})
        with pytest.raises(ValidationError):
            TimeSlotsInput.model_validate({"barbershopId": bad_id, "date": "2026-10-23"})
        with pytest.raises(ValidationError):
            CreateBookingInput.model_validate(
                {"serviceId": bad_id, "date": "2026-10-23T15:00:00"},
            )

    def test_uuid_and_cuid_ids_are_accepted(self):
        for good_id in ("3f2b8c1e-9a4d-4e2f-8b7a-1c2d3e4f5a6b", "clx9k2m0w0000abcd1234efgh"):
            assert BarbershopDetailsInput.model_validate({"barbershopId": good_id}).barbershop_id == good_id

    @pytest.mark.asyncio
    async def test_traversal_id_never_reaches_the_store(self, client):
        result = await execute_tool_call(
            BARBERSHOP_TOOLS,
            {
                "name": "getAvailableTimeSlotsForBarbershop",
                "args": {"barbershopId": "x/../../users/victim/bookings", "date": "2026-10-23"},
                "id": "call-1",
            },
            ANONYMOUS,
            timeout=5,
        )
        assert result["invalidFields"] == ["barbershopId"]
        client.get_available_time_slots.assert_not_called()


def test_cents_to_currency():
    assert cents_to_currency(4500) == 45.0
    assert cents_to_currency(3550) == 35.5
