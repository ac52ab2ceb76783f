"""
Sub-agent dispatch.

``dispatch_agent`` hands a self-contained task to a fresh headless run
with its own session, a restricted tool set and a child cancellation
token. Only the sub-agent's final text comes back to the caller.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from agent_loop_engine.cancellation import CancellationToken
from agent_loop_engine.errors import AgentError, Cancelled, ToolError, ToolExecutionFailed
from agent_loop_engine.events import EventBus
from agent_loop_engine.logging import get_logger
from agent_loop_engine.prompts.agent_types import (
    AgentType,
    interpolate_prompt,
    resolve_agent_type,
)
from agent_loop_engine.reporting import LoopReporter, UsageReporter
from agent_loop_engine.session import SessionState
from agent_loop_engine.tools.definitions import READ_ONLY_TOOLS, filter_tool_definitions
from agent_loop_engine.tools.executor import MAX_OUTPUT_SIZE, SessionToolExecutor, ToolExecutor
from agent_loop_engine.types import Message, ToolDefinition
from agent_loop_engine.usage import UsageSource, UsageTracker

if TYPE_CHECKING:
    from agent_loop_engine.providers.base import ProviderAdapter

logger = get_logger("subagent")

DEFAULT_MAX_DEPTH = 3


def select_tools(
    agent_type: AgentType, allowed_tools: list[str] | None = None
) -> list[ToolDefinition]:
    """
    Tool definitions for a sub-agent.

    Explicit ``allowed_tools`` win, then the type's own list, then the
    read-only default. An empty result is an error unless the type runs
    without tools.
    """
    if agent_type.no_tools:
        return []
    if allowed_tools is not None:
        allowed: tuple[str, ...] | list[str] = allowed_tools
    elif agent_type.allowed_tools:
        allowed = agent_type.allowed_tools
    else:
        allowed = READ_ONLY_TOOLS
    tools = filter_tool_definitions(allowed)
    if not tools:
        raise ToolExecutionFailed("No valid tools available for sub-agent")
    return tools


class SubagentDispatcher:
    """
    Runs sub-agents on behalf of a tool executor.

    The dispatcher is shared by every level of nesting: the adapter and the
    usage tracker are the parent's, everything else is created per dispatch.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        usage_tracker: UsageTracker,
        external: ToolExecutor | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        timeout_secs: float | None = 120,
        project_path: Path | str | None = None,
        agent_prompts: Mapping[str, str] | None = None,
        bus: EventBus | None = None,
        max_output: int = MAX_OUTPUT_SIZE,
    ) -> None:
        self.adapter = adapter
        self.usage_tracker = usage_tracker
        self.external = external
        self.max_depth = max_depth
        self.timeout_secs = timeout_secs
        self.project_path = str(project_path) if project_path is not None else None
        self.agent_prompts = dict(agent_prompts or {})
        self.bus = bus
        self.max_output = max_output

    def build_system_prompt(self, agent_type: AgentType, tools: list[ToolDefinition]) -> str:
        prompt = self.agent_prompts.get(agent_type.id, agent_type.prompt)
        return interpolate_prompt(prompt, [t.name for t in tools], self.project_path)

    async def dispatch(
        self,
        task: str,
        allowed_tools: list[str] | None = None,
        depth: int = 0,
        parent_cancellation: CancellationToken | None = None,
        agent_type: str | None = None,
    ) -> str:
        """
        Run ``task`` in a sub-agent at nesting level ``depth``.

        Raises:
            Cancelled: the parent is already cancelled, or is cancelled mid-run
            ToolExecutionFailed: ``depth`` reached the limit, or no tools remain
        """
        if parent_cancellation is not None and parent_cancellation.is_cancelled:
            raise Cancelled()
        if depth >= self.max_depth:
            raise ToolExecutionFailed(f"Maximum sub-agent depth ({self.max_depth}) exceeded")

        kind = resolve_agent_type(agent_type)
        tools = select_tools(kind, allowed_tools)
        cancel = (
            parent_cancellation.child_token()
            if parent_cancellation is not None
            else CancellationToken()
        )
        session = SessionState()
        executor = SessionToolExecutor(
            session,
            external=self.external,
            timeout_secs=self.timeout_secs,
            dispatcher=self,
            depth=depth + 1,
            max_output=self.max_output,
        )
        reporter: LoopReporter = LoopReporter()
        if self.bus is not None:
            reporter = UsageReporter(self.bus, UsageSource.SUB_AGENT)

        logger.info(
            "Dispatching '%s' sub-agent at depth %d with tools: %s",
            kind.id,
            depth + 1,
            ", ".join(t.name for t in tools) or "(none)",
        )
        try:
            result = await self.adapter.run_headless(
                [Message.user(task)],
                self.build_system_prompt(kind, tools),
                tools,
                session,
                cancel,
                executor,
                self.usage_tracker,
                reporter=reporter,
            )
        except (Cancelled, ToolError):
            raise
        except AgentError as e:
            # The parent sees a failed sub-agent as a failed tool call.
            raise ToolExecutionFailed(f"'{kind.id}' agent failed: {e}") from e
        logger.info(
            "Sub-agent '%s' finished after %d tool rounds", kind.id, result.tool_calls_made
        )
        return result.text
