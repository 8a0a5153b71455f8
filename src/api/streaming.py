"""Server-Sent Events streaming of one agent run.

The wire format is the UI message stream the chat frontend already consumes
(``useChat`` with the default transport): one JSON object per ``data:`` line,
ending with ``data: [DONE]``.

    start → start-step → text-start → text-delta* → text-end
          → tool-input-available* → tool-output-available* → finish-step
          → … → finish

Text part ids are assigned here; nodes only emit bare ``text-delta`` events.
Provider failures become a single ``error`` event with a localized message.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any

import anthropic
from langchain_core.messages import BaseMessage

from src.session import SessionContext

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    "x-vercel-ai-ui-message-stream": "v1",
}

UNAVAILABLE_MESSAGE = (
    "😅 O serviço está temporariamente indisponível. "
    "Tente novamente em alguns minutos."
)
RETRY_MESSAGE = "😔 Desculpe, ocorreu um erro. Por favor, tente novamente."

_UNAVAILABLE_STATUS = {429, 502, 503, 504, 529}


def format_sse(event: dict[str, Any] | str) -> str:
    """Frame one event as an SSE ``data:`` record."""
    payload = event if isinstance(event, str) else json.dumps(event, ensure_ascii=False, default=str)
    return f"data: {payload}\n\n"


def provider_error_message(exc: Exception) -> str:
    """Map a failure of the model provider to what the user should read."""
    if isinstance(exc, (anthropic.RateLimitError, anthropic.APIConnectionError)):
        return UNAVAILABLE_MESSAGE
    if isinstance(exc, anthropic.APIStatusError) and (
        exc.status_code in _UNAVAILABLE_STATUS or exc.status_code >= 500
    ):
        return UNAVAILABLE_MESSAGE
    return RETRY_MESSAGE


async def stream_chat(
    agent,
    messages: list[BaseMessage],
    session: SessionContext,
    *,
    request_id: str = "?",
) -> AsyncIterator[str]:
    """Run the agent over *messages* and yield SSE records as events arrive.

    If the client goes away the surrounding task is cancelled; the
    cancellation propagates into the graph, and tool calls already running
    in worker threads finish on their own.
    """
    message_id = f"msg-{uuid.uuid4().hex}"
    text_id: str | None = None
    finish_reason = "stop"

    yield format_sse({"type": "start", "messageId": message_id})
    try:
        async for mode, chunk in agent.astream(
            {"messages": messages, "session": session, "steps": 0},
            stream_mode=["custom", "updates"],
        ):
            if mode == "updates":
                if "budget_exhausted" in chunk:
                    finish_reason = "step-budget"
                continue

            if chunk.get("type") == "text-delta":
                if text_id is None:
                    text_id = f"text-{uuid.uuid4().hex[:12]}"
                    yield format_sse({"type": "text-start", "id": text_id})
                yield format_sse({"type": "text-delta", "id": text_id, "delta": chunk["delta"]})
                continue

            if text_id is not None:
                yield format_sse({"type": "text-end", "id": text_id})
                text_id = None
            yield format_sse(chunk)

    except asyncio.CancelledError:
        logger.info("[%s] Client disconnected mid-stream", request_id)
        raise
    except Exception as exc:
        logger.exception("[%s] Agent run failed", request_id)
        if text_id is not None:
            yield format_sse({"type": "text-end", "id": text_id})
        yield format_sse({"type": "error", "errorText": provider_error_message(exc)})
        yield format_sse("[DONE]")
        return

    if text_id is not None:
        yield format_sse({"type": "text-end", "id": text_id})
    if finish_reason != "stop":
        logger.warning("[%s] Turn closed early: %s", request_id, finish_reason)
    yield format_sse({"type": "finish", "messageMetadata": {"finishReason": finish_reason}})
    yield format_sse("[DONE]")
