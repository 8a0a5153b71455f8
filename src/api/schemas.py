"""Pydantic schemas for the FastAPI endpoints, and the conversion of the
frontend's UI messages into LangChain messages."""

from __future__ import annotations

import json
from typing import Any, Literal

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage
from pydantic import BaseModel, ConfigDict, Field, model_validator

# Tool part states that carry a result the model has already seen.
_SETTLED_TOOL_STATES = {"output-available", "output-error"}


class UIMessagePart(BaseModel):
    """One part of a UI message: text, a tool invocation, or anything else
    the frontend renders (reasoning, files, step markers)."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str
    text: str | None = None
    tool_call_id: str | None = Field(default=None, alias="toolCallId")
    tool_name: str | None = Field(default=None, alias="toolName")
    state: str | None = None
    input: Any = None
    output: Any = None
    error_text: str | None = Field(default=None, alias="errorText")

    @property
    def is_tool(self) -> bool:
        return self.type.startswith("tool-") or self.type == "dynamic-tool"

    @property
    def resolved_tool_name(self) -> str:
        if self.type == "dynamic-tool":
            return self.tool_name or ""
        return self.type.removeprefix("tool-")


class UIMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    role: Literal["user", "assistant", "system"]
    parts: list[UIMessagePart] = Field(default_factory=list)
    # Older clients send plain ``content`` instead of parts.
    content: str | None = None

    def text(self) -> str:
        chunks = [p.text for p in self.parts if p.type == "text" and p.text]
        if not chunks and self.content:
            chunks = [self.content]
        return "".join(chunks)


class ChatRequest(BaseModel):
    """The full conversation, as held by the client."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = Field(default=None, description="Client-side chat id")
    messages: list[UIMessage] = Field(..., min_length=1, max_length=200)

    @model_validator(mode="after")
    def _has_user_message(self) -> ChatRequest:
        if not any(m.role == "user" and m.text().strip() for m in self.messages):
            raise ValueError("conversation must contain at least one user message")
        return self


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "aparatus-booking-agent"


# ── UI → LangChain conversion ───────────────────────────────────────


def _assistant_messages(message: UIMessage) -> list[BaseMessage]:
    """Split an assistant UI message into (AIMessage, ToolMessage...) blocks.

    The UI keeps a whole multi-step answer in one message, separated by
    ``step-start`` parts; the model needs each step as an assistant turn
    followed by the results of the tools it called.  Tool parts without a
    result (interrupted streams) are dropped along with their call.
    """
    out: list[BaseMessage] = []
    text: list[str] = []
    calls: list[UIMessagePart] = []

    def flush() -> None:
        if not text and not calls:
            return
        out.append(AIMessage(
            content="".join(text),
            tool_calls=[
                {"name": p.resolved_tool_name, "args": p.input or {}, "id": p.tool_call_id}
                for p in calls
            ],
        ))
        for p in calls:
            if p.state == "output-error":
                content = json.dumps({"error": p.error_text or "erro"}, ensure_ascii=False)
            else:
                content = json.dumps(p.output, ensure_ascii=False, default=str)
            out.append(ToolMessage(
                content=content,
                tool_call_id=p.tool_call_id,
                name=p.resolved_tool_name,
            ))
        text.clear()
        calls.clear()

    for part in message.parts:
        if part.type == "step-start":
            flush()
        elif part.type == "text" and part.text:
            text.append(part.text)
        elif part.is_tool and part.state in _SETTLED_TOOL_STATES and part.tool_call_id:
            calls.append(part)
    if not message.parts and message.content:
        text.append(message.content)
    flush()
    return out


def to_langchain_messages(messages: list[UIMessage]) -> list[BaseMessage]:
    """Convert the client's history into model messages.

    System messages from the client are ignored (the server owns the
    framing), as is anything before the first user message, such as the
    UI's canned welcome.
    """
    converted: list[BaseMessage] = []
    seen_user = False
    for message in messages:
        if message.role == "system":
            continue
        if message.role == "user":
            text = message.text()
            if text:
                seen_user = True
                converted.append(HumanMessage(content=text))
        elif seen_user:
            converted.extend(_assistant_messages(message))
    return converted
