"""LangGraph orchestration loop for the Aparatus booking assistant.

Architecture:
  One StateGraph per process, three nodes:

    1. **chatbot**          — streams the tool-bound Claude model over the
                              framing + conversation (state ``Reasoning``)
    2. **tools**            — validates and runs every requested tool call,
                              concurrently (state ``ExecutingTools``)
    3. **budget_exhausted** — closes the turn when the step budget is spent

  Routing:
    chatbot → (tool calls?)     → tools → (steps < budget?) → chatbot (loop)
                                        → (budget spent?)   → budget_exhausted → END
            → (no tool calls?)  → END

  ``steps`` counts model calls.  Each chatbot run increments it, so the
  model is called at most ``max_steps`` times per request, and the tools it
  asked for on the last step still run before the turn is closed.

  Streaming:
    Nodes push UI events (``text-delta``, ``tool-input-available``, …)
    through LangGraph's ``StreamWriter``; ``graph.astream(...,
    stream_mode="custom")`` forwards them as they happen.  The graph holds
    no memory: the client resends the whole conversation every turn.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Annotated, Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import (
    AIMessage,
    AnyMessage,
    SystemMessage,
    ToolMessage,
    message_chunk_to_message,
)
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from langgraph.types import StreamWriter
from typing_extensions import TypedDict

from src.config import (
    ANTHROPIC_API_KEY,
    MAX_STEPS,
    MODEL_MAX_TOKENS,
    MODEL_NAME,
    MODEL_TEMPERATURE,
    TOOL_TIMEOUT_SECONDS,
)
from src.prompts import build_system_prompt
from src.services.metrics import metrics
from src.session import SessionContext
from src.tools.barbershops import BARBERSHOP_TOOLS
from src.tools.registry import ToolRegistry, execute_tool_call

logger = logging.getLogger(__name__)

BUDGET_EXHAUSTED_REPLY = (
    "Desculpe, não consegui concluir sua solicitação agora. 😔 "
    "Pode reformular ou tentar novamente em instantes?"
)


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """The state that flows through the graph.

    ``messages`` uses the ``add_messages`` reducer, so nodes only ever
    append.  ``session`` is resolved before the graph runs and is never
    written by a node.  ``steps`` is the number of model calls so far.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    session: SessionContext
    steps: int


def content_text(content: str | list[Any]) -> str:
    """Plain text of a message or chunk, ignoring tool-use blocks."""
    if isinstance(content, str):
        return content
    return "".join(
        block.get("text", "")
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    )


# ── LLM builder ─────────────────────────────────────────────────────


def _build_llm(registry: ToolRegistry):
    """Build the Claude model with the registry's tools bound."""
    llm = ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=MODEL_TEMPERATURE,
        max_tokens=MODEL_MAX_TOKENS,
    )
    return llm.bind_tools(registry.tool_specs())


# ── Node: chatbot ────────────────────────────────────────────────────


def _make_chatbot_node(registry: ToolRegistry):
    """Create the reasoning node.

    The bound model is captured in the closure so every request and every
    loop iteration share one client.
    """
    llm_with_tools = _build_llm(registry)

    async def chatbot_node(state: AgentState, writer: StreamWriter) -> dict:
        """Stream one model response, forwarding text as it arrives."""
        step = state.get("steps", 0) + 1
        system = SystemMessage(content=build_system_prompt(state["session"]))
        logger.debug("chatbot step %d (model %s)", step, MODEL_NAME)
        writer({"type": "start-step"})

        t0 = time.perf_counter()
        merged = None
        try:
            async for chunk in llm_with_tools.astream([system] + state["messages"]):
                delta = content_text(chunk.content)
                if delta:
                    writer({"type": "text-delta", "delta": delta})
                merged = chunk if merged is None else merged + chunk
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", "llm_stream",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", "llm_stream", latency_ms=elapsed)

        message = message_chunk_to_message(merged) if merged is not None else AIMessage(content="")
        if message.tool_calls:
            logger.info(
                "Step %d requested tools: %s (%.0fms)",
                step, [c["name"] for c in message.tool_calls], elapsed,
            )
        else:
            writer({"type": "finish-step"})
            logger.debug("Step %d answered directly (%.0fms)", step, elapsed)
        return {"messages": [message], "steps": step}

    return chatbot_node


# ── Node: tools ──────────────────────────────────────────────────────


def _make_tools_node(registry: ToolRegistry, timeout: float):
    """Create the node that runs the last message's tool calls.

    Calls run concurrently; each result event is emitted the moment its call
    finishes, while the ``ToolMessage``s are appended in the order the model
    requested them so a replayed conversation is identical.
    """

    async def tools_node(state: AgentState, writer: StreamWriter) -> dict:
        calls = state["messages"][-1].tool_calls
        session = state["session"]

        for call in calls:
            writer({
                "type": "tool-input-available",
                "toolCallId": call["id"],
                "toolName": call["name"],
                "input": call["args"],
            })

        async def run(call: dict) -> dict:
            result = await execute_tool_call(registry, call, session, timeout=timeout)
            writer({
                "type": "tool-output-available",
                "toolCallId": call["id"],
                "output": result,
            })
            return result

        results = await asyncio.gather(*(run(call) for call in calls))
        writer({"type": "finish-step"})

        return {
            "messages": [
                ToolMessage(
                    content=json.dumps(result, ensure_ascii=False, default=str),
                    tool_call_id=call["id"],
                    name=call["name"],
                    status="error" if "error" in result else "success",
                )
                for call, result in zip(calls, results)
            ]
        }

    return tools_node


# ── Node: budget_exhausted ───────────────────────────────────────────


async def budget_exhausted_node(state: AgentState, writer: StreamWriter) -> dict:
    """Close the turn after the last allowed step.

    Whatever the model said on its last step has already been streamed; it
    becomes the final answer.  If it said nothing, apologise.
    """
    logger.warning("Step budget exhausted after %d model calls", state.get("steps", 0))
    last_ai = next(
        (m for m in reversed(state["messages"]) if isinstance(m, AIMessage)), None,
    )
    partial_text = content_text(last_ai.content).strip() if last_ai is not None else ""
    if partial_text:
        return {"messages": [AIMessage(content=partial_text)]}

    writer({"type": "start-step"})
    writer({"type": "text-delta", "delta": BUDGET_EXHAUSTED_REPLY})
    writer({"type": "finish-step"})
    return {"messages": [AIMessage(content=BUDGET_EXHAUSTED_REPLY)]}


# ── Conditional edges ────────────────────────────────────────────────


def should_use_tools(state: AgentState) -> str:
    """Route to the tools node when the model asked for any tool."""
    last_message = state["messages"][-1]
    if getattr(last_message, "tool_calls", None):
        return "tools"
    return END


def _make_budget_guard(max_steps: int):
    """Create the edge that runs after tools: another model turn, or stop."""

    def within_budget(state: AgentState) -> str:
        if state.get("steps", 0) < max_steps:
            return "chatbot"
        return "budget_exhausted"

    return within_budget


def recursion_limit_for(max_steps: int) -> int:
    """Graph super-steps needed for *max_steps* round trips, plus headroom."""
    return 2 * max_steps + 5


# ── Graph assembly ───────────────────────────────────────────────────


def create_booking_agent(
    registry: ToolRegistry = BARBERSHOP_TOOLS,
    *,
    max_steps: int = MAX_STEPS,
    tool_timeout: float = TOOL_TIMEOUT_SECONDS,
):
    """Build and compile the booking agent graph.

    Returns a compiled graph that can be streamed with::

        graph.astream(
            {"messages": [...], "session": session, "steps": 0},
            stream_mode=["custom", "updates"],
        )
    """
    if max_steps < 1:
        raise ValueError("max_steps must be at least 1")

    graph = StateGraph(AgentState)

    graph.add_node("chatbot", _make_chatbot_node(registry))
    graph.add_node("tools", _make_tools_node(registry, tool_timeout))
    graph.add_node("budget_exhausted", budget_exhausted_node)

    graph.set_entry_point("chatbot")
    graph.add_conditional_edges(
        "chatbot", should_use_tools, {"tools": "tools", END: END},
    )
    graph.add_conditional_edges(
        "tools",
        _make_budget_guard(max_steps),
        {"chatbot": "chatbot", "budget_exhausted": "budget_exhausted"},
    )
    graph.add_edge("budget_exhausted", END)

    compiled = graph.compile().with_config(
        recursion_limit=recursion_limit_for(max_steps),
    )

    logger.debug(
        "Booking agent compiled: model %s, %d tools, max %d steps",
        MODEL_NAME, len(registry), max_steps,
    )
    return compiled
