"""
Tool execution boundary.

File, shell, web and notebook tools live outside the engine behind the
``ToolExecutor`` protocol. ``SessionToolExecutor`` wraps such an executor:
it serves the session-bound tools itself (todos, plan submission, sub-agent
dispatch) and runs everything else under a timeout and an output cap.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from agent_loop_engine.cancellation import CancellationToken
from agent_loop_engine.errors import InvalidToolInput, ToolExecutionFailed, ToolTimedOut
from agent_loop_engine.logging import get_logger
from agent_loop_engine.session import SessionState
from agent_loop_engine.tools.definitions import SESSION_TOOLS, ToolName
from agent_loop_engine.types import TodoItem

if TYPE_CHECKING:
    from agent_loop_engine.subagent import SubagentDispatcher

logger = get_logger("tools.executor")

MAX_OUTPUT_SIZE = 1024 * 1024
TRUNCATION_MARKER = "\n\n(output truncated)"


@runtime_checkable
class ToolExecutor(Protocol):
    """Execute a named tool with structured input and return its text output.

    Implementations raise ``ToolError`` subclasses for failures the model
    should see, and are expected to honor ``cancel``.
    """

    async def execute(
        self, tool: ToolName, tool_input: Any, cancel: CancellationToken
    ) -> str: ...


def truncate_output(output: str, limit: int = MAX_OUTPUT_SIZE) -> str:
    """Cap output at ``limit`` characters, marking the cut."""
    if len(output) <= limit:
        return output
    return output[:limit] + TRUNCATION_MARKER


def _require_dict(tool_input: Any) -> dict[str, Any]:
    if not isinstance(tool_input, dict):
        raise InvalidToolInput(f"expected an object, got {type(tool_input).__name__}")
    return tool_input


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise InvalidToolInput(f"missing or non-string field '{key}'")
    return value


class SessionToolExecutor:
    """The executor handed to the orchestration loop for one run."""

    def __init__(
        self,
        session: SessionState,
        external: ToolExecutor | None = None,
        timeout_secs: float | None = 120,
        dispatcher: SubagentDispatcher | None = None,
        depth: int = 0,
        max_output: int = MAX_OUTPUT_SIZE,
    ) -> None:
        self.session = session
        self.external = external
        self.timeout_secs = timeout_secs
        self.dispatcher = dispatcher
        self.depth = depth
        self.max_output = max_output

    async def execute(
        self, tool: ToolName, tool_input: Any, cancel: CancellationToken
    ) -> str:
        if tool in SESSION_TOOLS:
            if tool is ToolName.TODO_READ:
                return await self._todo_read()
            if tool is ToolName.TODO_WRITE:
                return await self._todo_write(tool_input)
            if tool is ToolName.SUBMIT_PLAN:
                return await self._submit_plan(tool_input)
            return await self._dispatch_agent(tool_input, cancel)
        return await self._run_external(tool, tool_input, cancel)

    async def _todo_read(self) -> str:
        todos = await self.session.get_todos()
        if not todos:
            return "No todos"
        return "\n".join(f"[{t.status}] {t.content} ({t.priority})" for t in todos)

    async def _todo_write(self, tool_input: Any) -> str:
        data = _require_dict(tool_input)
        raw = data.get("todos")
        if not isinstance(raw, list):
            raise InvalidToolInput("missing or non-array field 'todos'")
        try:
            todos = [TodoItem.from_dict(item) for item in raw]
        except (KeyError, TypeError) as e:
            raise InvalidToolInput(f"malformed todo item: {e}") from e
        await self.session.set_todos(todos)
        return f"Updated {len(todos)} todos"

    async def _submit_plan(self, tool_input: Any) -> str:
        plan = _require_str(_require_dict(tool_input), "plan")
        await self.session.set_plan(plan)
        return "Plan submitted for review. Awaiting user approval."

    async def _dispatch_agent(self, tool_input: Any, cancel: CancellationToken) -> str:
        if self.dispatcher is None:
            raise ToolExecutionFailed("sub-agents are not available in this run")
        data = _require_dict(tool_input)
        task = _require_str(data, "task")
        agent_type = data.get("agent_type")
        tools = data.get("tools")
        if tools is not None and (
            not isinstance(tools, list) or not all(isinstance(t, str) for t in tools)
        ):
            raise InvalidToolInput("'tools' must be an array of strings")
        return await self.dispatcher.dispatch(
            task,
            allowed_tools=tools,
            depth=self.depth,
            parent_cancellation=cancel,
            agent_type=agent_type if isinstance(agent_type, str) else None,
        )

    async def _run_external(
        self, tool: ToolName, tool_input: Any, cancel: CancellationToken
    ) -> str:
        if self.external is None:
            raise ToolExecutionFailed(f"no executor configured for '{tool.value}'")
        try:
            output = await asyncio.wait_for(
                self.external.execute(tool, tool_input, cancel),
                timeout=self.timeout_secs,
            )
        except asyncio.TimeoutError as e:
            logger.warning("Tool %s timed out after %ss", tool.value, self.timeout_secs)
            raise ToolTimedOut(self.timeout_secs) from e
        return truncate_output(output, self.max_output)
