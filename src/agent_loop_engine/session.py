"""
Per-conversation session state and the process-wide run state.

``SessionState`` is shared by reference between a top-level run and the
tool executor; sub-agents always get a fresh one. Each field has its own
lock so readers of one never wait on writers of another.

``AgentRunState`` enforces "one active run per conversation" with a
check-then-set under a single write lock.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from agent_loop_engine.cancellation import CancellationToken
from agent_loop_engine.errors import RunInProgress
from agent_loop_engine.logging import get_logger
from agent_loop_engine.types import CompactedContext, TodoItem

if TYPE_CHECKING:
    from agent_loop_engine.providers.base import ProviderAdapter

logger = get_logger("session")


@dataclass(frozen=True)
class PlanApproval:
    approved: bool
    reason: str | None = None

    @classmethod
    def approve(cls) -> PlanApproval:
        return cls(approved=True)

    @classmethod
    def reject(cls, reason: str | None = None) -> PlanApproval:
        return cls(approved=False, reason=reason)


class SessionState:
    """
    Shared state for one conversation.

    The plan-approval slot is a one-shot rendezvous: ``set_plan`` opens it,
    exactly one of ``approve_plan``/``reject_plan``/``clear`` resolves it,
    and ``wait_for_plan_approval`` consumes the answer. A slot closed
    without an answer reads as a rejection.
    """

    def __init__(self) -> None:
        self._todos: list[TodoItem] = []
        self._todos_lock = asyncio.Lock()
        self._plan: str | None = None
        self._approval: asyncio.Future[PlanApproval] | None = None
        self._plan_lock = asyncio.Lock()
        self._compacted = CompactedContext()
        self._compacted_lock = asyncio.Lock()

    # -- todos ---------------------------------------------------------------

    async def get_todos(self) -> list[TodoItem]:
        async with self._todos_lock:
            return list(self._todos)

    async def set_todos(self, todos: list[TodoItem]) -> None:
        async with self._todos_lock:
            self._todos = list(todos)

    # -- plan approval -------------------------------------------------------

    async def set_plan(self, plan: str) -> None:
        """Store a plan and open a fresh approval slot."""
        async with self._plan_lock:
            if self._approval is not None and not self._approval.done():
                # Only one pending plan per session; the older waiter sees a closed slot.
                self._approval.cancel()
            self._plan = plan
            self._approval = asyncio.get_running_loop().create_future()

    async def get_plan(self) -> str | None:
        async with self._plan_lock:
            return self._plan

    @property
    def has_pending_plan(self) -> bool:
        return self._approval is not None and not self._approval.done()

    async def wait_for_plan_approval(self) -> PlanApproval | None:
        """
        Block until the pending plan is approved or rejected.

        Returns None when no plan is pending. No lock is held while waiting.
        """
        async with self._plan_lock:
            approval = self._approval
        if approval is None:
            return None
        try:
            result = await asyncio.shield(approval)
        except asyncio.CancelledError:
            if not approval.cancelled():
                # The waiter went away; close the slot so a late answer is refused.
                approval.cancel()
                raise
            logger.info("Plan approval channel closed; treating as rejection")
            result = PlanApproval.reject()
        async with self._plan_lock:
            if self._approval is approval:
                self._approval = None
                self._plan = None
        return result

    def _resolve(self, decision: PlanApproval) -> bool:
        approval = self._approval
        if approval is None or approval.done():
            return False
        approval.set_result(decision)
        return True

    def approve_plan(self) -> bool:
        """Approve the pending plan. Returns False if nothing was waiting."""
        return self._resolve(PlanApproval.approve())

    def reject_plan(self, reason: str | None = None) -> bool:
        """Reject the pending plan. Returns False if nothing was waiting."""
        return self._resolve(PlanApproval.reject(reason))

    # -- compaction ----------------------------------------------------------

    async def get_compacted(self) -> CompactedContext:
        async with self._compacted_lock:
            return CompactedContext(
                summary=self._compacted.summary, facts=list(self._compacted.facts)
            )

    async def set_compacted(self, context: CompactedContext) -> None:
        async with self._compacted_lock:
            self._compacted = context

    # -- lifecycle -----------------------------------------------------------

    async def clear(self) -> None:
        """Reset the conversation, closing any pending plan approval."""
        async with self._plan_lock:
            if self._approval is not None and not self._approval.done():
                self._approval.cancel()
            self._approval = None
            self._plan = None
        await self.set_todos([])
        await self.set_compacted(CompactedContext())


class ReadWriteLock:
    """Many concurrent readers or one writer, for asyncio tasks."""

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class AgentRunState:
    """
    The adapter, project and active run for the application.

    Mutating methods are plain synchronous calls; callers take ``lock.write()``
    around them. ``begin_run`` bundles the check-then-set.
    """

    def __init__(self) -> None:
        self.lock = ReadWriteLock()
        self.adapter: ProviderAdapter | None = None
        self.project_path: str | None = None
        self.cancel_token: CancellationToken | None = None
        self.is_running = False
        self.config_stale = False

    def mark_config_stale(self) -> None:
        self.config_stale = True

    def needs_reload(self, project_path: str) -> bool:
        return (
            self.config_stale
            or self.adapter is None
            or self.project_path != project_path
        )

    def initialize(self, project_path: str, adapter: ProviderAdapter) -> None:
        self.adapter = adapter
        self.project_path = project_path
        self.config_stale = False

    def start_run(self) -> CancellationToken:
        """Mark a run active. Raises RunInProgress if one already is."""
        if self.is_running:
            raise RunInProgress()
        token = CancellationToken()
        self.cancel_token = token
        self.is_running = True
        return token

    def cancel(self) -> bool:
        """Cancel the active run, if any. Returns True if a token fired."""
        token = self.cancel_token
        self.cancel_token = None
        self.is_running = False
        if token is None:
            return False
        token.cancel()
        return True

    def finish_run(self, token: CancellationToken | None = None) -> None:
        # A late finish from a cancelled run must not clear a newer one.
        if token is not None and self.cancel_token is not None and token is not self.cancel_token:
            return
        self.cancel_token = None
        self.is_running = False

    def clear(self) -> None:
        self.cancel()
        self.adapter = None
        self.project_path = None
        self.config_stale = False

    async def is_active(self) -> bool:
        async with self.lock.read():
            return self.is_running

    async def begin_run(self) -> CancellationToken:
        async with self.lock.write():
            return self.start_run()
