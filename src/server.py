"""FastAPI server for the Aparatus booking assistant.

Run with:
    uv run uvicorn src.server:app --reload --host 0.0.0.0 --port 8000

The chat UI (served by the marketplace) posts the whole conversation to
``/api/chat`` with the user's cookies and reads the answer back as a UI
message stream.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from src.agent import create_booking_agent
from src.api.routes import router
from src.config import CORS_ORIGINS, MAX_STEPS, MODEL_NAME, SERVER_HOST, SERVER_PORT
from src.services.marketplace_client import close_marketplace_client
from src.services.metrics import metrics

VERSION = "1.0.0"

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ─────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Compile the graph once; on shutdown release the marketplace
    connection pool and push any buffered metrics."""
    application.state.agent = create_booking_agent()
    logger.info("Booking agent ready (model %s, budget %d steps)", MODEL_NAME, MAX_STEPS)
    yield
    close_marketplace_client()
    metrics.flush()


app = FastAPI(
    title="Aparatus Booking Assistant",
    description=(
        "Conversational barbershop booking: search barbershops, check "
        "availability and book services over a streamed chat."
    ),
    version=VERSION,
    lifespan=lifespan,
)

# Cookies must reach /api/chat, so credentials are allowed for the
# configured origins only.
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Tag the request with an id (the caller's ``X-Request-ID`` if sent).

    Chat log lines are prefixed with it and it is echoed back in the
    response headers.
    """
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Service info and entry points."""
    return {
        "service": "Aparatus Booking Assistant",
        "version": VERSION,
        "docs": "/docs",
        "health": "/api/health",
        "chat": "/api/chat",
    }


if __name__ == "__main__":
    logger.info("Serving on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run("src.server:app", host=SERVER_HOST, port=SERVER_PORT, reload=True)
