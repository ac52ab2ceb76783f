"""Tests for the UI-facing AgentService."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from conftest import AnthropicScript, RecordingExecutor, ScriptedTransport
from agent_loop_engine.errors import (
    Cancelled,
    ConfigurationInvalid,
    RunInProgress,
    VendorRejected,
)
from agent_loop_engine.events import (
    AGENT_CANCELLED,
    AGENT_CHUNK,
    AGENT_COMPLETE,
    AGENT_ERROR,
    AGENT_PLAN_READY,
    AGENT_STATUS,
    AGENT_TOOL_END,
    AGENT_TOOL_START,
    AGENT_USAGE,
)
from agent_loop_engine.providers.anthropic import AnthropicAdapter
from agent_loop_engine.service import AgentService
from agent_loop_engine.tools.definitions import ToolName
from agent_loop_engine.types import AgentStatus, Message
from agent_loop_engine.usage import UsageSource


def make_service(script: ScriptedTransport, external=None) -> AgentService:
    def factory(config, project_path):
        return AnthropicAdapter(
            config.agent,
            prompts=config.prompts,
            execution=config.execution,
            project_path=project_path,
            app_system_prompt="APP",
            api_key="test-key",
            client=script.client(),
        )

    return AgentService(external=external or RecordingExecutor(), adapter_factory=factory)


def record(service: AgentService, *names: str) -> list[tuple[str, object]]:
    seen: list[tuple[str, object]] = []
    for name in names:
        service.bus.on(name, lambda data, name=name: seen.append((name, data)))
    return seen


def statuses(seen: list[tuple[str, object]]) -> list[AgentStatus]:
    return [data.status for name, data in seen if name == AGENT_STATUS]


def hanging_stream(started: asyncio.Event):
    async def body():
        started.set()
        await asyncio.sleep(30)
        yield b""

    return lambda request: httpx.Response(200, content=body())


@pytest.mark.asyncio
class TestSendMessage:
    async def test_text_reply(self, project_dir: Path) -> None:
        script = ScriptedTransport(AnthropicScript.text("Hello!"))
        service = make_service(script)
        seen = record(service, AGENT_STATUS, AGENT_CHUNK, AGENT_COMPLETE, AGENT_USAGE)

        outcome = await service.send_message(
            project_dir, [{"role": "user", "content": "Hi"}]
        )

        assert outcome.text == "Hello!"
        assert statuses(seen) == [
            AgentStatus.SENDING,
            AgentStatus.THINKING,
            AgentStatus.STREAMING,
            AgentStatus.IDLE,
        ]
        completes = [data for name, data in seen if name == AGENT_COMPLETE]
        assert len(completes) == 1
        assert completes[0].message_id == outcome.message_id
        usage = [data for name, data in seen if name == AGENT_USAGE]
        assert usage[0].source is UsageSource.MAIN
        assert service.usage_totals().input_tokens == 10
        assert not await service.is_running()

    async def test_tool_events_use_global_block_indices(self, project_dir: Path) -> None:
        script = ScriptedTransport(
            AnthropicScript.tool_calls(("t1", "grep", {"pattern": "x"}), text="Searching."),
            AnthropicScript.tool_calls(("t2", "read_file", {"path": "a"})),
            AnthropicScript.text("Done."),
        )
        service = make_service(script)
        seen = record(service, AGENT_TOOL_START, AGENT_TOOL_END)

        outcome = await service.send_message(project_dir, [Message.user("find x")])

        starts = [data for name, data in seen if name == AGENT_TOOL_START]
        assert [(s.tool_use_id, s.block_index) for s in starts] == [("t1", 1), ("t2", 2)]
        ends = [data for name, data in seen if name == AGENT_TOOL_END]
        assert [e.output for e in ends] == ["grep ok", "read_file ok"]
        assert outcome.iterations == 2

    async def test_system_prompt_layers(self, project_dir: Path) -> None:
        (project_dir / "AGENTS.md").write_text("Always run the linter.")
        script = ScriptedTransport(AnthropicScript.text("ok"))
        service = make_service(script)

        await service.send_message(project_dir, [Message.user("hi")], system_prompt="CUSTOM")

        system = script.bodies[0]["system"]
        assert system.startswith("APP\n\n<project-memory")
        assert "Always run the linter." in system
        assert system.endswith("CUSTOM")

    async def test_history_with_tool_blocks(self, project_dir: Path) -> None:
        script = ScriptedTransport(AnthropicScript.text("ok"))
        service = make_service(script)
        history = [
            {"role": "user", "content": "List files"},
            {
                "role": "assistant",
                "content_blocks": [
                    {"type": "text", "text": "Listing."},
                    {
                        "type": "tool_use",
                        "tool_use_id": "t1",
                        "tool_name": "bash",
                        "tool_input": {"command": "ls"},
                        "output": "a.py",
                    },
                ],
            },
            {"role": "user", "content": "Now read a.py"},
        ]

        await service.send_message(project_dir, history)

        messages = script.bodies[0]["messages"]
        assert [m["role"] for m in messages] == ["user", "assistant", "user", "user"]
        assert messages[2]["content"][0]["tool_use_id"] == "t1"

    async def test_executor_crash_becomes_error_result(self, project_dir: Path) -> None:
        script = ScriptedTransport(
            AnthropicScript.tool_calls(("t1", "read_file", {"path": "a.py"})),
            AnthropicScript.text("a.py does not exist."),
        )
        external = RecordingExecutor({"read_file": FileNotFoundError("no such file: a.py")})
        service = make_service(script, external=external)
        seen = record(service, AGENT_STATUS, AGENT_TOOL_END, AGENT_ERROR, AGENT_COMPLETE)

        outcome = await service.send_message(project_dir, [Message.user("read a.py")])

        assert outcome.text == "a.py does not exist."
        ends = [data for name, data in seen if name == AGENT_TOOL_END]
        assert [(e.output, e.is_error) for e in ends] == [("no such file: a.py", True)]
        assert not any(name == AGENT_ERROR for name, _ in seen)
        assert statuses(seen)[-1] is AgentStatus.IDLE
        assert len(script.requests) == 2

    async def test_offered_tools_follow_executor(self, project_dir: Path) -> None:
        script = ScriptedTransport(AnthropicScript.text("a"), AnthropicScript.text("b"))

        def factory(config, project_path):
            return AnthropicAdapter(config.agent, api_key="k", client=script.client())

        bare = AgentService(adapter_factory=factory)
        await bare.send_message(project_dir, [Message.user("hi")])
        full = AgentService(external=RecordingExecutor(), adapter_factory=factory)
        await full.send_message(project_dir, [Message.user("hi")])

        bare_tools = [t["name"] for t in script.bodies[0]["tools"]]
        assert bare_tools == ["todo_read", "todo_write", "dispatch_agent", "submit_plan"]
        assert len(script.bodies[1]["tools"]) == len(ToolName)

    async def test_missing_config_reports_error(self, tmp_path: Path) -> None:
        service = make_service(ScriptedTransport())
        seen = record(service, AGENT_ERROR, AGENT_STATUS)

        with pytest.raises(ConfigurationInvalid):
            await service.send_message(tmp_path, [Message.user("hi")])

        assert [name for name, _ in seen] == [AGENT_ERROR, AGENT_STATUS]
        assert statuses(seen) == [AgentStatus.ERROR]
        assert not await service.is_running()

    async def test_vendor_error_is_terminal(self, project_dir: Path) -> None:
        script = ScriptedTransport(
            httpx.Response(
                401,
                json={"error": {"type": "authentication_error", "message": "invalid x-api-key"}},
            )
        )
        service = make_service(script)
        seen = record(service, AGENT_ERROR, AGENT_COMPLETE, AGENT_STATUS)

        with pytest.raises(VendorRejected, match="invalid x-api-key"):
            await service.send_message(project_dir, [Message.user("hi")])

        errors = [data for name, data in seen if name == AGENT_ERROR]
        assert [e.error for e in errors] == ["API error: invalid x-api-key"]
        assert not any(name == AGENT_COMPLETE for name, _ in seen)
        assert statuses(seen)[-1] is AgentStatus.ERROR


@pytest.mark.asyncio
class TestRunControl:
    async def test_second_run_rejected(self, project_dir: Path) -> None:
        started = asyncio.Event()
        service = make_service(ScriptedTransport(hanging_stream(started)))

        first = asyncio.create_task(service.send_message(project_dir, [Message.user("a")]))
        await asyncio.wait_for(started.wait(), timeout=5)

        with pytest.raises(RunInProgress):
            await service.send_message(project_dir, [Message.user("b")])

        await service.cancel()
        with pytest.raises(Cancelled):
            await asyncio.wait_for(first, timeout=5)

    async def test_cancel_mid_stream(self, project_dir: Path) -> None:
        started = asyncio.Event()
        service = make_service(ScriptedTransport(hanging_stream(started)))
        seen = record(service, AGENT_CANCELLED, AGENT_COMPLETE, AGENT_STATUS)

        task = asyncio.create_task(service.send_message(project_dir, [Message.user("a")]))
        await asyncio.wait_for(started.wait(), timeout=5)

        assert await service.cancel()
        with pytest.raises(Cancelled):
            await asyncio.wait_for(task, timeout=5)

        cancelled = [data for name, data in seen if name == AGENT_CANCELLED]
        assert [c.reason for c in cancelled] == ["Cancelled by user"]
        assert not any(name == AGENT_COMPLETE for name, _ in seen)
        assert statuses(seen)[-1] is AgentStatus.CANCELLED
        assert not await service.is_running()

    async def test_cancel_when_idle(self) -> None:
        service = AgentService()
        assert not await service.cancel()

    async def test_runs_again_after_cancel(self, project_dir: Path) -> None:
        started = asyncio.Event()
        script = ScriptedTransport(hanging_stream(started), AnthropicScript.text("second"))
        service = make_service(script)

        task = asyncio.create_task(service.send_message(project_dir, [Message.user("a")]))
        await asyncio.wait_for(started.wait(), timeout=5)
        await service.cancel()
        with pytest.raises(Cancelled):
            await asyncio.wait_for(task, timeout=5)

        outcome = await service.send_message(project_dir, [Message.user("b")])
        assert outcome.text == "second"


@pytest.mark.asyncio
class TestPlanApproval:
    async def _run_with_decision(self, project_dir: Path, decide) -> ScriptedTransport:
        script = ScriptedTransport(
            AnthropicScript.tool_calls(("p1", "submit_plan", {"plan": "1. Rename module"})),
            AnthropicScript.text("Proceeding."),
        )
        service = make_service(script)
        plans: list[str] = []
        seen = record(service, AGENT_STATUS)

        def on_plan(event) -> None:
            plans.append(event.plan)
            decide(service)

        service.bus.on(AGENT_PLAN_READY, on_plan)
        await service.send_message(project_dir, [Message.user("rename it")])

        assert plans == ["1. Rename module"]
        assert AgentStatus.TOOL_WAITING in statuses(seen)
        return script

    async def test_approved(self, project_dir: Path) -> None:
        script = await self._run_with_decision(project_dir, lambda s: s.approve_plan())

        result = script.bodies[1]["messages"][-1]["content"][0]
        assert result["content"] == "Plan approved by user. Proceed with implementation."
        assert "is_error" not in result

    async def test_rejected(self, project_dir: Path) -> None:
        script = await self._run_with_decision(
            project_dir, lambda s: s.reject_plan("Keep the old name")
        )

        result = script.bodies[1]["messages"][-1]["content"][0]
        assert result["content"] == "Plan rejected by user: Keep the old name"
        assert result["is_error"] is True


@pytest.mark.asyncio
class TestLifecycle:
    async def test_config_reloaded_when_stale(self, project_dir: Path) -> None:
        created = []
        script = ScriptedTransport(AnthropicScript.text("one"), AnthropicScript.text("two"))

        def factory(config, project_path):
            created.append(config.agent.model)
            return AnthropicAdapter(
                config.agent, api_key="k", app_system_prompt=None, client=script.client()
            )

        service = AgentService(adapter_factory=factory)
        await service.send_message(project_dir, [Message.user("a")])
        await service.mark_config_stale()
        await service.send_message(project_dir, [Message.user("b")])

        assert created == ["claude-test", "claude-test"]

    async def test_adapter_reused(self, project_dir: Path) -> None:
        created = []
        script = ScriptedTransport(AnthropicScript.text("one"), AnthropicScript.text("two"))

        def factory(config, project_path):
            created.append(project_path)
            return AnthropicAdapter(config.agent, api_key="k", client=script.client())

        service = AgentService(adapter_factory=factory)
        await service.send_message(project_dir, [Message.user("a")])
        await service.send_message(project_dir, [Message.user("b")])

        assert len(created) == 1

    async def test_clear_and_usage_reset(self, project_dir: Path) -> None:
        service = make_service(ScriptedTransport(AnthropicScript.text("x")))
        await service.send_message(project_dir, [Message.user("a")])
        await service.session.set_plan("pending")

        await service.clear()
        service.reset_usage()

        assert not service.session.has_pending_plan
        assert service.usage_totals().input_tokens == 0

    async def test_shutdown(self, project_dir: Path) -> None:
        service = make_service(ScriptedTransport(AnthropicScript.text("x")))
        seen = record(service, AGENT_STATUS)
        await service.send_message(project_dir, [Message.user("a")])
        delivered = len(seen)

        await service.shutdown()
        await service.bus.emit(AGENT_STATUS, None)

        assert service.run_state.adapter is None
        assert service.config is None
        assert len(seen) == delivered
