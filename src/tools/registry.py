"""Tool registry and the single entry point that runs a tool call.

A tool is a plain contract: a name, a description the model reads to decide
when to call it, a pydantic input schema, the auth requirement it enforces,
and a blocking executor ``(validated_input, session) -> dict``.

``execute_tool_call`` is the only way the agent runs tools.  It guarantees
that the model always gets a dict back:

* unknown tool            → ``{"error": ...}``
* arguments fail schema   → ``{"error": ..., "invalidFields": [...]}`` and the
                            executor is **never** called
* executor too slow       → ``{"error": ...}`` after ``timeout`` seconds
* executor result         → returned as-is (executors never raise)
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

from src.config import TOOL_MAX_WORKERS
from src.services.metrics import metrics
from src.session import SessionContext

logger = logging.getLogger(__name__)

ToolExecutor = Callable[[Any, SessionContext], dict[str, Any]]


class AuthRequirement(enum.Enum):
    """What a tool expects from the caller.

    Informational: each executor checks ``session.is_authenticated`` itself,
    at the point of effect.
    """

    NONE = "none"
    SOFT = "soft"  # answers anonymous callers with an explanatory error
    HARD = "hard"  # refuses to act for anonymous callers


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: type[BaseModel]
    executor: ToolExecutor
    auth: AuthRequirement = AuthRequirement.NONE
    writes: bool = False

    def to_anthropic_tool(self) -> dict[str, Any]:
        """Render the tool in the shape ``ChatAnthropic.bind_tools`` accepts."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema.model_json_schema(by_alias=True),
        }


class ToolRegistry:
    """Immutable, name-indexed catalog of tools."""

    def __init__(self, tools: Iterable[ToolDefinition]):
        by_name: dict[str, ToolDefinition] = {}
        for definition in tools:
            if definition.name in by_name:
                raise ValueError(f"Duplicate tool name: {definition.name}")
            by_name[definition.name] = definition
        self._tools = by_name

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def tool_specs(self) -> list[dict[str, Any]]:
        return [t.to_anthropic_tool() for t in self._tools.values()]

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools


# ── Invocation ───────────────────────────────────────────────────────


# Executors run here rather than on the loop's default executor, so threads
# held by timed-out calls cannot starve session lookups and other offloads.
_POOL = ThreadPoolExecutor(max_workers=TOOL_MAX_WORKERS, thread_name_prefix="tool")
_in_flight = 0
_in_flight_lock = threading.Lock()


def tools_in_flight() -> int:
    """Executor calls submitted to the tool pool and not yet finished."""
    return _in_flight


def _track(delta: int) -> None:
    global _in_flight
    with _in_flight_lock:
        _in_flight += delta


def _submit(tool: ToolDefinition, args: BaseModel, session: SessionContext) -> Future:
    _track(1)
    future = _POOL.submit(tool.executor, args, session)
    future.add_done_callback(lambda _: _track(-1))
    return future


def _invalid_fields(exc: ValidationError) -> list[str]:
    fields: list[str] = []
    for err in exc.errors():
        name = str(err["loc"][0]) if err.get("loc") else "arguments"
        if name not in fields:
            fields.append(name)
    return fields


def _outcome(result: dict[str, Any]) -> str:
    if result.get("success") is False or "error" in result:
        return "error"
    return "ok"


async def execute_tool_call(
    registry: ToolRegistry,
    call: dict[str, Any],
    session: SessionContext,
    *,
    timeout: float,
) -> dict[str, Any]:
    """Validate and run one model-requested tool call.

    *call* is a LangChain tool call (``{"name", "args", "id"}``).  The
    executor runs on the bounded tool pool; cancelling the awaiting task
    (client disconnect, timeout) does not interrupt a started thread, so a
    booking write in flight always runs to completion.
    """
    name = call.get("name", "")
    raw_args = call.get("args") or {}
    t0 = time.perf_counter()

    tool = registry.get(name)
    if tool is None:
        logger.warning("Model requested unknown tool %r", name)
        metrics.record_tool(name or "?", "unknown_tool", 0.0)
        return {"error": f"Ferramenta desconhecida: {name}"}

    try:
        args = tool.input_schema.model_validate(raw_args)
    except ValidationError as exc:
        fields = _invalid_fields(exc)
        logger.info("Tool %s rejected arguments %r (fields: %s)", name, raw_args, fields)
        metrics.record_tool(name, "invalid_arguments", (time.perf_counter() - t0) * 1000)
        return {
            "error": (
                "Parâmetros inválidos: " + ", ".join(fields)
                + ". Peça ao usuário para esclarecer essa informação."
            ),
            "invalidFields": fields,
        }

    logger.info("Tool %s called with %s", name, args.model_dump(mode="json", by_alias=True))
    try:
        result = await asyncio.wait_for(
            asyncio.wrap_future(_submit(tool, args, session)), timeout=timeout,
        )
    except TimeoutError:
        elapsed = (time.perf_counter() - t0) * 1000
        logger.error(
            "Tool %s timed out after %.1fs (%d tool calls in flight, pool size %d)",
            name, timeout, tools_in_flight(), TOOL_MAX_WORKERS,
        )
        metrics.record_tool(name, "timeout", elapsed)
        if tool.writes:
            return {
                "success": False,
                "error": (
                    "A operação demorou demais para responder e pode ou não ter "
                    "sido concluída. Consulte o histórico de agendamentos antes "
                    "de tentar novamente."
                ),
            }
        return {"error": "O serviço demorou demais para responder. Tente novamente."}
    except Exception:
        # Executors map their own failures; this only catches programming errors.
        elapsed = (time.perf_counter() - t0) * 1000
        logger.exception("Tool %s crashed", name)
        metrics.record_tool(name, "error", elapsed)
        return {"error": "Erro interno ao executar a ferramenta."}

    elapsed = (time.perf_counter() - t0) * 1000
    outcome = _outcome(result)
    if tool.auth is not AuthRequirement.NONE and not session.is_authenticated:
        outcome = "unauthenticated"
    metrics.record_tool(name, outcome, elapsed)
    logger.info("Tool %s finished in %.0fms (%s)", name, elapsed, outcome)
    logger.debug("Tool %s result: %s", name, result)
    return result
