"""Tests for session state and run state."""

from __future__ import annotations

import asyncio

import pytest

from agent_loop_engine.errors import RunInProgress
from agent_loop_engine.session import AgentRunState, PlanApproval, ReadWriteLock, SessionState
from agent_loop_engine.types import CompactedContext, TodoItem


@pytest.mark.asyncio
class TestSessionState:
    async def test_todos(self) -> None:
        session = SessionState()
        todo = TodoItem(id="1", content="Write tests", status="pending", priority="high")

        await session.set_todos([todo])
        todos = await session.get_todos()
        todos.clear()

        assert await session.get_todos() == [todo]

    async def test_approve(self) -> None:
        session = SessionState()
        await session.set_plan("1. Refactor")
        waiter = asyncio.create_task(session.wait_for_plan_approval())
        await asyncio.sleep(0)

        assert session.approve_plan()
        assert await waiter == PlanApproval.approve()
        assert not session.has_pending_plan
        assert await session.get_plan() is None

    async def test_reject_with_reason(self) -> None:
        session = SessionState()
        await session.set_plan("plan")
        waiter = asyncio.create_task(session.wait_for_plan_approval())
        await asyncio.sleep(0)

        assert session.reject_plan("Too broad")
        assert await waiter == PlanApproval(approved=False, reason="Too broad")

    async def test_answer_before_wait(self) -> None:
        session = SessionState()
        await session.set_plan("plan")
        session.approve_plan()

        assert (await session.wait_for_plan_approval()).approved

    async def test_no_pending_plan(self) -> None:
        session = SessionState()
        assert not session.approve_plan()
        assert not session.reject_plan()
        assert await session.wait_for_plan_approval() is None

    async def test_second_answer_refused(self) -> None:
        session = SessionState()
        await session.set_plan("plan")
        assert session.approve_plan()
        assert not session.reject_plan()

    async def test_clear_closes_channel_as_rejection(self) -> None:
        session = SessionState()
        await session.set_plan("plan")
        waiter = asyncio.create_task(session.wait_for_plan_approval())
        await asyncio.sleep(0)

        await session.clear()

        result = await asyncio.wait_for(waiter, timeout=5)
        assert result == PlanApproval.reject()

    async def test_new_plan_closes_older_waiter(self) -> None:
        session = SessionState()
        await session.set_plan("first")
        waiter = asyncio.create_task(session.wait_for_plan_approval())
        await asyncio.sleep(0)

        await session.set_plan("second")

        assert not (await asyncio.wait_for(waiter, timeout=5)).approved
        assert await session.get_plan() == "second"
        assert session.has_pending_plan

    async def test_cancelled_waiter_closes_slot(self) -> None:
        session = SessionState()
        await session.set_plan("plan")
        waiter = asyncio.create_task(session.wait_for_plan_approval())
        await asyncio.sleep(0)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert not session.approve_plan()

    async def test_clear_resets_everything(self) -> None:
        session = SessionState()
        await session.set_todos([TodoItem("1", "x", "pending", "low")])
        await session.set_compacted(CompactedContext(summary="s"))

        await session.clear()

        assert await session.get_todos() == []
        assert (await session.get_compacted()).is_empty


@pytest.mark.asyncio
class TestAgentRunState:
    async def test_single_active_run(self) -> None:
        state = AgentRunState()
        await state.begin_run()

        with pytest.raises(RunInProgress):
            await state.begin_run()
        assert await state.is_active()

    async def test_cancel_fires_token(self) -> None:
        state = AgentRunState()
        token = await state.begin_run()

        assert state.cancel()
        assert token.is_cancelled
        assert not state.is_running
        assert not state.cancel()

    async def test_stale_finish_keeps_newer_run(self) -> None:
        state = AgentRunState()
        old = await state.begin_run()
        state.cancel()
        new = await state.begin_run()

        state.finish_run(old)

        assert state.is_running
        assert state.cancel_token is new

    async def test_needs_reload(self) -> None:
        state = AgentRunState()
        assert state.needs_reload("/a")

        state.initialize("/a", object())
        assert not state.needs_reload("/a")
        assert state.needs_reload("/b")

        state.mark_config_stale()
        assert state.needs_reload("/a")


@pytest.mark.asyncio
class TestReadWriteLock:
    async def test_readers_share(self) -> None:
        lock = ReadWriteLock()
        async with lock.read():
            async with lock.read():
                pass

    async def test_writer_waits_for_reader(self) -> None:
        lock = ReadWriteLock()
        order: list[str] = []

        async def writer() -> None:
            async with lock.write():
                order.append("write")

        async with lock.read():
            task = asyncio.create_task(writer())
            await asyncio.sleep(0.01)
            order.append("read done")
        await asyncio.wait_for(task, timeout=5)

        assert order == ["read done", "write"]
