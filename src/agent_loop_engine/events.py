"""
Event system for the UI boundary.

The orchestration loop reports everything a front end needs (status
changes, streamed text, tool activity, completion, compaction, plan
approval requests, usage) through an ``EventBus``. Handlers can be sync or
async; a failing handler is logged and never breaks a run.

Example:
    from agent_loop_engine.events import AGENT_CHUNK, EventBus

    bus = EventBus()

    @bus.on(AGENT_CHUNK)
    def show(event):
        print(event.delta, end="", flush=True)
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from agent_loop_engine.logging import get_logger
from agent_loop_engine.types import AgentStatus
from agent_loop_engine.usage import UsageSource

logger = get_logger("events")


# ---------------------------------------------------------------------------
# Event names
# ---------------------------------------------------------------------------

AGENT_STATUS = "agent-status"
AGENT_CHUNK = "agent-chunk"
AGENT_BLOCK_START = "agent-block-start"
AGENT_TOOL_INPUT = "agent-tool-input"
AGENT_TOOL_START = "agent-tool-start"
AGENT_TOOL_END = "agent-tool-end"
AGENT_COMPLETE = "agent-complete"
AGENT_CANCELLED = "agent-cancelled"
AGENT_ERROR = "agent-error"
AGENT_COMPACTION = "agent-compaction"
AGENT_COMPACTION_WARNING = "agent-compaction-warning"
AGENT_PLAN_READY = "agent-plan-ready"
AGENT_USAGE = "agent-usage"


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


@dataclass
class StatusEvent:
    status: AgentStatus
    text: str
    detail: str | None = None

    @classmethod
    def of(cls, status: AgentStatus, detail: str | None = None) -> StatusEvent:
        return cls(status=status, text=status.label, detail=detail)


@dataclass
class ChunkEvent:
    delta: str
    block_index: int


@dataclass
class BlockStartEvent:
    """A content block opened. ``kind`` is "text" or "tool_use"."""

    block_index: int
    kind: str
    tool_use_id: str | None = None
    tool_name: str | None = None


@dataclass
class ToolInputEvent:
    """Best-effort preview of tool arguments while they stream in."""

    block_index: int
    partial_input: dict[str, Any]


@dataclass
class ToolStartEvent:
    tool_use_id: str
    tool_name: str
    tool_input: Any
    block_index: int = 0


@dataclass
class ToolEndEvent:
    tool_use_id: str
    output: str
    is_error: bool
    block_index: int = 0


@dataclass
class CompleteEvent:
    message_id: str
    stop_reason: str | None = None


@dataclass
class CancelledEvent:
    reason: str


@dataclass
class ErrorEvent:
    error: str


@dataclass
class CompactionEvent:
    original_tokens: int
    compacted_tokens: int
    facts_count: int


@dataclass
class CompactionWarningEvent:
    message: str


@dataclass
class PlanReadyEvent:
    plan: str


@dataclass
class UsageEvent:
    input_tokens: int
    output_tokens: int
    source: UsageSource


# ---------------------------------------------------------------------------
# Stream event (normalizer side channel)
# ---------------------------------------------------------------------------


@dataclass
class StreamEvent:
    """
    A live record produced by a protocol normalizer while it decodes a frame.
    ``index`` is the block's position within the round.

    Types:
        ``text_delta``: ``content`` holds the text
        ``block_start``: ``kind`` is "text" or "tool_use"
        ``tool_input_delta``: ``content`` holds the raw arguments received so far
        ``error``: ``error`` holds the vendor's message
    """

    type: str
    index: int = 0
    content: str = ""
    kind: str | None = None
    tool_call_id: str | None = None
    tool_name: str | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# EventBus
# ---------------------------------------------------------------------------

EventHandler = Callable[[Any], Any]


class EventBus:
    """
    Publish/subscribe hub for UI events.

    Handlers may be plain callables or coroutine functions. A handler that
    raises is logged and skipped; the run that emitted the event carries on.

    Usage:
        bus = EventBus()

        unsub = bus.on(AGENT_STATUS, lambda e: print(e.text))
        unsub()
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def on(self, event: str, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` for ``event``. Returns an unsubscribe function."""
        self._handlers.setdefault(event, []).append(handler)
        return lambda: self.off(event, handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event)
        if not handlers:
            return
        self._handlers[event] = [h for h in handlers if h != handler]

    def clear(self) -> None:
        self._handlers.clear()

    async def emit(self, event: str, data: Any = None) -> None:
        """Deliver ``data`` to every handler of ``event`` in registration order."""
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(data)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Event handler error (event=%s): %s", event, e)
