"""
UI-facing entry point.

``AgentService`` is what a front end talks to: it owns the run state, the
conversation's session, the usage tracker and the event bus, and wires a
fresh tool executor and sub-agent dispatcher for every run.

Example:
    from agent_loop_engine import AgentService, AGENT_CHUNK

    service = AgentService(external=my_tool_executor)
    service.bus.on(AGENT_CHUNK, lambda e: print(e.delta, end=""))

    outcome = await service.send_message(
        "/path/to/project",
        [{"role": "user", "content": "What does main.py do?"}],
    )
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from agent_loop_engine.config import ProjectConfig
from agent_loop_engine.errors import AgentError
from agent_loop_engine.events import EventBus
from agent_loop_engine.logging import get_logger
from agent_loop_engine.loop import LoopOutcome
from agent_loop_engine.memory import ProjectMemory
from agent_loop_engine.providers import create_provider_adapter
from agent_loop_engine.providers.base import ProviderAdapter
from agent_loop_engine.reporting import EventReporter
from agent_loop_engine.session import AgentRunState, SessionState
from agent_loop_engine.subagent import SubagentDispatcher
from agent_loop_engine.tools.definitions import (
    SESSION_TOOLS,
    filter_tool_definitions,
    get_tool_definitions,
)
from agent_loop_engine.tools.executor import SessionToolExecutor, ToolExecutor
from agent_loop_engine.types import AgentStatus, Message, ToolDefinition
from agent_loop_engine.usage import UsageTotals, UsageTracker

# Load .env file for API keys
load_dotenv()

logger = get_logger("service")

AdapterFactory = Callable[[ProjectConfig, str], ProviderAdapter]


class AgentService:
    """One conversation's worth of agent state behind a small async API."""

    def __init__(
        self,
        external: ToolExecutor | None = None,
        bus: EventBus | None = None,
        adapter_factory: AdapterFactory | None = None,
    ) -> None:
        self.external = external
        self.bus = bus or EventBus()
        self.run_state = AgentRunState()
        self.session = SessionState()
        self.usage = UsageTracker()
        self._adapter_factory = adapter_factory or create_provider_adapter
        self._config: ProjectConfig | None = None
        self._memory = ProjectMemory()

    @property
    def config(self) -> ProjectConfig | None:
        return self._config

    async def _ensure_adapter(self, project_path: str) -> tuple[ProviderAdapter, ProjectConfig]:
        async with self.run_state.lock.write():
            if self.run_state.needs_reload(project_path):
                logger.info("Loading agent configuration for %s", project_path)
                config = ProjectConfig.load(Path(project_path))
                adapter = self._adapter_factory(config, project_path)
                previous = self.run_state.adapter
                self.run_state.initialize(project_path, adapter)
                self._config = config
                self._memory = ProjectMemory.load(project_path)
                if previous is not None and previous is not adapter:
                    await previous.aclose()
            elif self._memory.reload_if_changed(project_path):
                logger.info("Project memory reloaded")
            return self.run_state.adapter, self._config  # type: ignore[return-value]

    async def send_message(
        self,
        project_path: str | Path,
        messages: Sequence[Message | dict[str, Any]],
        system_prompt: str | None = None,
    ) -> LoopOutcome:
        """
        Run the agent on ``messages``, reporting progress on ``bus``.

        Raises:
            RunInProgress: another run is active; nothing is queued
            AgentError: the run failed (already reported as an error event)
        """
        project = str(project_path)
        history = [m if isinstance(m, Message) else Message.from_dict(m) for m in messages]
        token = await self.run_state.begin_run()
        reporter = EventReporter(self.bus)
        try:
            try:
                adapter, config = await self._ensure_adapter(project)
            except AgentError as e:
                await reporter.error(str(e))
                await reporter.status(AgentStatus.ERROR, str(e))
                raise

            dispatcher = SubagentDispatcher(
                adapter,
                self.usage,
                external=self.external,
                max_depth=config.execution.max_agent_depth,
                timeout_secs=config.execution.timeout_secs,
                project_path=project,
                agent_prompts=config.agent_prompts,
                bus=self.bus,
            )
            executor = SessionToolExecutor(
                self.session,
                external=self.external,
                timeout_secs=config.execution.timeout_secs,
                dispatcher=dispatcher,
                depth=0,
            )
            return await adapter.send_message(
                history,
                self.session,
                token,
                executor,
                self.usage,
                reporter,
                self._tool_definitions(),
                custom_prompt=system_prompt,
                memory=self._memory,
            )
        finally:
            async with self.run_state.lock.write():
                self.run_state.finish_run(token)

    def _tool_definitions(self) -> list[ToolDefinition]:
        # Without an external executor only the session-bound tools can run.
        if self.external is None:
            return filter_tool_definitions(t.value for t in SESSION_TOOLS)
        return get_tool_definitions()

    async def cancel(self) -> bool:
        """Cancel the active run. Returns False if nothing was running."""
        async with self.run_state.lock.write():
            fired = self.run_state.cancel()
        if fired:
            logger.info("Cancellation requested")
        return fired

    async def is_running(self) -> bool:
        return await self.run_state.is_active()

    def approve_plan(self) -> bool:
        return self.session.approve_plan()

    def reject_plan(self, reason: str | None = None) -> bool:
        return self.session.reject_plan(reason)

    async def clear(self) -> None:
        """Reset the conversation: cancel any run and drop todos, plan and compacted context."""
        await self.cancel()
        await self.session.clear()

    async def mark_config_stale(self) -> None:
        """Force the adapter to be rebuilt from configuration on the next send."""
        async with self.run_state.lock.write():
            self.run_state.mark_config_stale()

    def usage_totals(self) -> UsageTotals:
        return self.usage.get_totals()

    def reset_usage(self) -> None:
        self.usage.reset()

    async def shutdown(self) -> None:
        """Cancel any run, release the adapter's HTTP client and drop UI handlers."""
        async with self.run_state.lock.write():
            adapter = self.run_state.adapter
            self.run_state.clear()
        self._config = None
        self.bus.clear()
        if adapter is not None:
            await adapter.aclose()
