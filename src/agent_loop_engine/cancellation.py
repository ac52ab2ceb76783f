"""
Hierarchical cancellation tokens.

A token created with ``child_token()`` is cancelled whenever its parent is,
so cancelling a top-level run reaches every live sub-agent without the
parent keeping a registry of its children. Cancelling a child never
affects its parent or siblings.

Example:
    root = CancellationToken()
    child = root.child_token()

    root.cancel()
    assert child.is_cancelled
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Awaitable
from typing import TypeVar

from agent_loop_engine.errors import Cancelled

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation signal for one run (or sub-run)."""

    def __init__(self, parent: CancellationToken | None = None) -> None:
        self._cancelled = False
        self._parent = parent
        self._children: weakref.WeakSet[CancellationToken] = weakref.WeakSet()
        self._waiters: set[asyncio.Future[None]] = set()
        if parent is not None:
            parent._children.add(self)
            if parent.is_cancelled:
                self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Cancel this token and every descendant. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_result(None)
        self._waiters.clear()
        for child in list(self._children):
            child.cancel()

    def child_token(self) -> CancellationToken:
        return CancellationToken(parent=self)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise Cancelled()

    async def cancelled(self) -> None:
        """Wait until the token is cancelled."""
        if self._cancelled:
            return
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.add(waiter)
        try:
            await waiter
        finally:
            self._waiters.discard(waiter)

    async def race(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless the token fires first.

        Cancellation wins ties: if both complete in the same step the
        operation's result is discarded and ``Cancelled`` is raised.
        """
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        cancel_wait = asyncio.ensure_future(self.cancelled())
        try:
            await asyncio.wait({work, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            if not cancel_wait.done():
                cancel_wait.cancel()
        if self._cancelled:
            if work.done():
                if not work.cancelled():
                    work.exception()  # mark retrieved; the outcome is discarded
            else:
                work.cancel()
                await asyncio.gather(work, return_exceptions=True)
            raise Cancelled()
        return work.result()
