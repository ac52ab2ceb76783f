"""
Progress reporting for the orchestration loop.

One loop implementation serves both top-level and headless runs; what
differs is the reporter it is handed. ``LoopReporter`` is silent,
``UsageReporter`` only publishes token totals (sub-agents), and
``EventReporter`` drives every UI event on an ``EventBus``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from agent_loop_engine.events import (
    AGENT_BLOCK_START,
    AGENT_CANCELLED,
    AGENT_CHUNK,
    AGENT_COMPACTION,
    AGENT_COMPACTION_WARNING,
    AGENT_COMPLETE,
    AGENT_ERROR,
    AGENT_PLAN_READY,
    AGENT_STATUS,
    AGENT_TOOL_END,
    AGENT_TOOL_INPUT,
    AGENT_TOOL_START,
    AGENT_USAGE,
    BlockStartEvent,
    CancelledEvent,
    ChunkEvent,
    CompactionEvent,
    CompactionWarningEvent,
    CompleteEvent,
    ErrorEvent,
    EventBus,
    PlanReadyEvent,
    StatusEvent,
    StreamEvent,
    ToolEndEvent,
    ToolInputEvent,
    ToolStartEvent,
    UsageEvent,
)
from agent_loop_engine.types import AgentStatus, ToolCall, ToolResult
from agent_loop_engine.usage import UsageSource, UsageTotals
from agent_loop_engine.utils.json_parse import parse_streaming_json

if TYPE_CHECKING:
    from agent_loop_engine.streaming import StreamedResponse

StreamHandler = Callable[[StreamEvent, "StreamedResponse"], Awaitable[None]]


class LoopReporter:
    """Silent reporter used by headless runs."""

    # Top-level runs suspend on submit_plan until the user answers.
    handles_plan_approval = False

    async def status(self, status: AgentStatus, detail: str | None = None) -> None:
        pass

    def stream_handler(self, block_offset: int) -> StreamHandler | None:
        return None

    async def tool_start(self, call: ToolCall) -> None:
        pass

    async def tool_end(self, call: ToolCall, result: ToolResult) -> None:
        pass

    async def plan_ready(self, plan: str) -> None:
        pass

    async def usage(self, totals: UsageTotals) -> None:
        pass

    async def compaction(self, event: CompactionEvent) -> None:
        pass

    async def compaction_warning(self, message: str) -> None:
        pass

    async def complete(self, message_id: str, stop_reason: str | None) -> None:
        pass

    async def cancelled(self, reason: str) -> None:
        pass

    async def error(self, message: str) -> None:
        pass


class UsageReporter(LoopReporter):
    """Publishes cumulative token totals and nothing else."""

    def __init__(self, bus: EventBus, source: UsageSource = UsageSource.SUB_AGENT) -> None:
        self.bus = bus
        self.source = source

    async def usage(self, totals: UsageTotals) -> None:
        await self.bus.emit(
            AGENT_USAGE,
            UsageEvent(
                input_tokens=totals.input_tokens,
                output_tokens=totals.output_tokens,
                source=self.source,
            ),
        )


class EventReporter(UsageReporter):
    """Full UI reporting for top-level runs."""

    handles_plan_approval = True

    def __init__(self, bus: EventBus, source: UsageSource = UsageSource.MAIN) -> None:
        super().__init__(bus, source)

    async def status(self, status: AgentStatus, detail: str | None = None) -> None:
        await self.bus.emit(AGENT_STATUS, StatusEvent.of(status, detail))

    def stream_handler(self, block_offset: int) -> StreamHandler:
        """Build the live callback for one round.

        Streaming status is entered on the round's first text delta only, so
        a tool-only round keeps showing Thinking.
        """
        streaming_started = False

        async def handle(event: StreamEvent, response: StreamedResponse) -> None:
            nonlocal streaming_started
            block_index = block_offset + event.index
            if event.type == "text_delta":
                if not streaming_started:
                    streaming_started = True
                    await self.status(AgentStatus.STREAMING)
                await self.bus.emit(AGENT_CHUNK, ChunkEvent(event.content, block_index))
            elif event.type == "block_start":
                await self.bus.emit(
                    AGENT_BLOCK_START,
                    BlockStartEvent(
                        block_index=block_index,
                        kind=event.kind or "text",
                        tool_use_id=event.tool_call_id,
                        tool_name=event.tool_name,
                    ),
                )
            elif event.type == "tool_input_delta":
                await self.bus.emit(
                    AGENT_TOOL_INPUT,
                    ToolInputEvent(block_index, parse_streaming_json(event.content)),
                )
            elif event.type == "error":
                await self.error(event.error or "Unknown stream error")

        return handle

    async def tool_start(self, call: ToolCall) -> None:
        await self.bus.emit(
            AGENT_TOOL_START,
            ToolStartEvent(
                tool_use_id=call.id,
                tool_name=call.name,
                tool_input=call.input,
                block_index=call.block_index,
            ),
        )

    async def tool_end(self, call: ToolCall, result: ToolResult) -> None:
        await self.bus.emit(
            AGENT_TOOL_END,
            ToolEndEvent(
                tool_use_id=call.id,
                output=result.output,
                is_error=result.is_error,
                block_index=call.block_index,
            ),
        )

    async def plan_ready(self, plan: str) -> None:
        await self.bus.emit(AGENT_PLAN_READY, PlanReadyEvent(plan))

    async def compaction(self, event: CompactionEvent) -> None:
        await self.bus.emit(AGENT_COMPACTION, event)

    async def compaction_warning(self, message: str) -> None:
        await self.bus.emit(AGENT_COMPACTION_WARNING, CompactionWarningEvent(message))

    async def complete(self, message_id: str, stop_reason: str | None) -> None:
        await self.bus.emit(AGENT_COMPLETE, CompleteEvent(message_id, stop_reason))

    async def cancelled(self, reason: str) -> None:
        await self.bus.emit(AGENT_CANCELLED, CancelledEvent(reason))

    async def error(self, message: str) -> None:
        await self.bus.emit(AGENT_ERROR, ErrorEvent(message))
