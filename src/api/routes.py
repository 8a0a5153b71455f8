"""FastAPI route definitions for the booking assistant API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from src.api.schemas import ChatRequest, HealthResponse, to_langchain_messages
from src.api.streaming import SSE_HEADERS, stream_chat
from src.services.marketplace_client import get_marketplace_client
from src.session import resolve_session

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_agent(request: Request):
    """Retrieve the compiled agent graph from app state.

    The agent is built once during the FastAPI lifespan (see ``server.py``).
    """
    agent = getattr(request.app.state, "agent", None)
    if agent is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return agent


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/chat")
async def chat(request: ChatRequest, http_request: Request):
    """Run one conversational turn and stream it back as Server-Sent Events.

    The request carries the whole conversation; nothing is stored between
    calls.  The caller's identity comes from their own cookies, forwarded to
    the marketplace; anonymous callers get a working assistant that asks
    them to log in before booking.

    **Implementation note**: session resolution talks to the marketplace
    with a blocking client, so it is offloaded with ``asyncio.to_thread``
    to keep the event loop free for other streams.
    """
    agent = _get_agent(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    session = await asyncio.to_thread(
        resolve_session, get_marketplace_client(), dict(http_request.headers),
    )
    messages = to_langchain_messages(request.messages)
    logger.info(
        "[%s] Chat turn: %d messages, authenticated=%s",
        request_id, len(messages), session.is_authenticated,
    )

    return StreamingResponse(
        stream_chat(agent, messages, session, request_id=request_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
