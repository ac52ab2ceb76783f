"""
The tool-use orchestration loop.

Each iteration issues one model round; if the round asked for tools, the
whole batch runs in order and the results go back as one message. The loop
ends when a round requests no tools, when cancellation fires, or when the
iteration limit is reached. Top-level and headless runs share this code
and differ only in the ``LoopReporter`` they pass.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from agent_loop_engine.cancellation import CancellationToken
from agent_loop_engine.errors import Cancelled, IterationLimitExceeded, ToolError, UnknownTool
from agent_loop_engine.logging import get_logger
from agent_loop_engine.reporting import LoopReporter
from agent_loop_engine.session import PlanApproval, SessionState
from agent_loop_engine.streaming import StreamingState
from agent_loop_engine.tools.definitions import ToolName
from agent_loop_engine.tools.executor import ToolExecutor
from agent_loop_engine.types import AgentStatus, Message, ToolCall, ToolDefinition, ToolResult
from agent_loop_engine.usage import UsageTracker

if TYPE_CHECKING:
    from agent_loop_engine.providers.base import ProviderAdapter

logger = get_logger("loop")

CANCELLED_OUTPUT = "Cancelled by user"


@dataclass
class LoopOutcome:
    """How a loop run ended."""

    text: str
    stop_reason: str | None
    iterations: int  # rounds that contained at least one tool call
    message_id: str


def plan_result(approval: PlanApproval) -> tuple[str, bool]:
    """Tool output and error flag for a plan decision."""
    if approval.approved:
        return "Plan approved by user. Proceed with implementation.", False
    if approval.reason:
        return f"Plan rejected by user: {approval.reason}", True
    return "Plan rejected by user.", True


async def execute_tool_calls(
    calls: list[ToolCall],
    executor: ToolExecutor,
    session: SessionState,
    cancel: CancellationToken,
    reporter: LoopReporter,
) -> list[ToolResult]:
    """
    Run one round's tool calls in order.

    Tool-level failures become error-flagged results. An unknown tool name
    and cancellation abort the batch.
    """
    results: list[ToolResult] = []
    for call in calls:
        cancel.raise_if_cancelled()
        tool = ToolName.parse(call.name)
        if tool is None:
            raise UnknownTool(call.name)

        await reporter.status(AgentStatus.TOOL_RUNNING, call.name)
        await reporter.tool_start(call)
        logger.debug("Executing tool %s (%s)", call.name, call.id)

        try:
            output = await cancel.race(executor.execute(tool, call.input, cancel))
            is_error = False
        except ToolError as e:
            logger.info("Tool %s failed: %s", call.name, e)
            output, is_error = str(e), True
        except Cancelled:
            await reporter.tool_end(
                call, ToolResult(call.id, call.name, CANCELLED_OUTPUT, is_error=True)
            )
            raise
        except Exception as e:
            logger.warning("Tool %s raised %s: %s", call.name, type(e).__name__, e)
            output, is_error = str(e) or type(e).__name__, True

        if tool is ToolName.SUBMIT_PLAN and not is_error and reporter.handles_plan_approval:
            output, is_error = await _await_plan_decision(session, cancel, reporter, output)

        result = ToolResult(id=call.id, name=call.name, output=output, is_error=is_error)
        await reporter.tool_end(call, result)
        results.append(result)
    return results


async def _await_plan_decision(
    session: SessionState,
    cancel: CancellationToken,
    reporter: LoopReporter,
    submitted_output: str,
) -> tuple[str, bool]:
    plan = await session.get_plan()
    if plan is None:
        return submitted_output, False
    await reporter.plan_ready(plan)
    await reporter.status(AgentStatus.TOOL_WAITING, "Waiting for plan approval")
    approval = await cancel.race(session.wait_for_plan_approval())
    if approval is None:
        return submitted_output, False
    logger.info("Plan %s", "approved" if approval.approved else "rejected")
    return plan_result(approval)


async def run_tool_loop(
    adapter: ProviderAdapter,
    conversation: Any,
    system_prompt: str | None,
    tools: list[ToolDefinition],
    executor: ToolExecutor,
    session: SessionState,
    cancel: CancellationToken,
    max_iterations: int,
    usage_tracker: UsageTracker,
    reporter: LoopReporter | None = None,
) -> LoopOutcome:
    """
    Alternate model rounds and tool batches until the model stops asking for tools.

    ``conversation`` is the adapter's native history and is extended in place.

    Raises:
        Cancelled: the token fired before or during a round or a tool call
        IterationLimitExceeded: ``max_iterations`` rounds requested tools
        UnknownTool: the model named a tool outside the enumeration
    """
    reporter = reporter or LoopReporter()
    streaming = StreamingState()
    iteration = 0
    text_parts: list[str] = []

    while True:
        cancel.raise_if_cancelled()
        await reporter.status(AgentStatus.THINKING)

        block_offset = streaming.create_offset()
        response = await adapter.stream_round(
            conversation,
            system_prompt,
            tools,
            cancel,
            on_event=reporter.stream_handler(block_offset),
        )
        cancel.raise_if_cancelled()

        if not response.usage.is_empty:
            await reporter.usage(usage_tracker.add(response.usage))
        text_parts.append(response.text)

        calls = response.tool_calls(block_offset)
        streaming.advance(response.block_count())
        if not calls:
            logger.info(
                "Run finished after %d tool rounds (stop_reason=%s)",
                iteration,
                response.stop_reason,
            )
            return LoopOutcome(
                text="".join(text_parts),
                stop_reason=response.stop_reason,
                iterations=iteration,
                message_id=Message.new_id(),
            )

        iteration += 1
        if iteration >= max_iterations:
            logger.warning("Tool iteration limit reached (%d)", max_iterations)
            raise IterationLimitExceeded(max_iterations)
        logger.info("Round %d requested %d tool call(s)", iteration, len(calls))

        results = await execute_tool_calls(calls, executor, session, cancel, reporter)
        adapter.append_assistant_response(conversation, response)
        adapter.append_tool_results(conversation, results)
