"""Token usage accounting shared by a run and all of its sub-agents."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum


@dataclass
class TokenUsage:
    """Token counts from a single model round."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def is_empty(self) -> bool:
        return self.input_tokens == 0 and self.output_tokens == 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def __iadd__(self, other: TokenUsage) -> TokenUsage:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        return self


@dataclass(frozen=True)
class UsageTotals:
    """Cumulative totals; never decrease except through ``reset``."""

    input_tokens: int = 0
    output_tokens: int = 0


class UsageSource(str, Enum):
    MAIN = "main"
    SUB_AGENT = "sub_agent"


class UsageTracker:
    """
    Cumulative token counters.

    Increments never block on the event loop: the critical section is two
    integer additions under a ``threading.Lock``, so concurrent tasks (and
    worker threads running tool code) can add without losing updates.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._input_tokens = 0
        self._output_tokens = 0

    def add_tokens(self, input_tokens: int, output_tokens: int) -> UsageTotals:
        """Add tokens and return the new cumulative totals."""
        if input_tokens < 0 or output_tokens < 0:
            raise ValueError("token counts must be non-negative")
        with self._lock:
            self._input_tokens += input_tokens
            self._output_tokens += output_tokens
            return UsageTotals(self._input_tokens, self._output_tokens)

    def add(self, usage: TokenUsage) -> UsageTotals:
        return self.add_tokens(usage.input_tokens, usage.output_tokens)

    def get_totals(self) -> UsageTotals:
        with self._lock:
            return UsageTotals(self._input_tokens, self._output_tokens)

    def reset(self) -> None:
        with self._lock:
            self._input_tokens = 0
            self._output_tokens = 0
