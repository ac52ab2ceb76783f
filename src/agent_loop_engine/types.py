"""
Vendor-neutral data types shared by the loop, the adapters and the UI boundary.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class TextBlock:
    text: str
    type: str = field(default="text", init=False)


@dataclass
class ToolUseBlock:
    """
    A tool call requested by the model.

    ``output`` and ``is_error`` are only set on blocks replayed from UI
    history, where the tool result is stored next to the call.
    """

    id: str
    name: str
    input: Any = None
    output: str | None = None
    is_error: bool | None = None
    type: str = field(default="tool_use", init=False)


@dataclass
class ToolResultBlock:
    tool_use_id: str
    output: str
    is_error: bool = False
    name: str = ""  # Gemini addresses function responses by name
    type: str = field(default="tool_result", init=False)


Block = Union[TextBlock, ToolUseBlock, ToolResultBlock]


@dataclass
class Message:
    """A conversation message: a role and an ordered list of blocks."""

    role: MessageRole
    content: list[Block] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role=MessageRole.USER, content=[TextBlock(text)])

    @classmethod
    def assistant(cls, text: str) -> Message:
        return cls(role=MessageRole.ASSISTANT, content=[TextBlock(text)])

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        """Build a message from the UI history shape."""
        blocks: list[Block] = []
        raw_blocks = data.get("content_blocks")
        if raw_blocks is None:
            raw_blocks = [{"type": "text", "text": data.get("content", "")}]
        for raw in raw_blocks:
            kind = raw.get("type", "text")
            if kind == "text":
                blocks.append(TextBlock(raw.get("text", "")))
            elif kind == "tool_use":
                blocks.append(
                    ToolUseBlock(
                        id=raw.get("tool_use_id") or raw.get("id", ""),
                        name=raw.get("tool_name") or raw.get("name", ""),
                        input=raw.get("tool_input", raw.get("input")),
                        output=raw.get("output"),
                        is_error=raw.get("is_error"),
                    )
                )
            elif kind == "tool_result":
                blocks.append(
                    ToolResultBlock(
                        tool_use_id=raw.get("tool_use_id", ""),
                        output=raw.get("output", raw.get("content", "")),
                        is_error=bool(raw.get("is_error", False)),
                        name=raw.get("name", ""),
                    )
                )
        return cls(
            role=MessageRole(data.get("role", "user")),
            content=blocks,
            id=data.get("id") or str(uuid.uuid4()),
        )


@dataclass
class ToolDefinition:
    """A tool schema offered to the model."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass
class ToolCall:
    id: str
    name: str
    input: Any
    block_index: int = 0


@dataclass
class ToolResult:
    id: str
    name: str
    output: str
    is_error: bool = False


@dataclass
class TodoItem:
    id: str
    content: str
    status: str  # "pending", "in_progress", "completed"
    priority: str  # "high", "medium", "low"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TodoItem:
        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            status=str(data["status"]),
            priority=str(data["priority"]),
        )


class FactCategory(str, Enum):
    DECISION = "decision"
    PREFERENCE = "preference"
    CONTEXT = "context"
    BLOCKER = "blocker"

    @classmethod
    def parse(cls, value: str) -> FactCategory | None:
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass
class CompactedFact:
    category: FactCategory
    content: str


@dataclass
class CompactedContext:
    """Running summary plus key facts extracted from compacted history."""

    summary: str | None = None
    facts: list[CompactedFact] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.summary is None and not self.facts


class AgentStatus(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    THINKING = "thinking"
    STREAMING = "streaming"
    TOOL_RUNNING = "tool_running"
    TOOL_WAITING = "tool_waiting"
    COMPACTING = "compacting"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @property
    def is_terminal(self) -> bool:
        return self in (AgentStatus.IDLE, AgentStatus.CANCELLED, AgentStatus.ERROR)


_STATUS_LABELS = {
    AgentStatus.IDLE: "Ready",
    AgentStatus.SENDING: "Sending...",
    AgentStatus.THINKING: "Thinking...",
    AgentStatus.STREAMING: "Responding...",
    AgentStatus.TOOL_RUNNING: "Running tool...",
    AgentStatus.TOOL_WAITING: "Waiting...",
    AgentStatus.COMPACTING: "Compacting context...",
    AgentStatus.CANCELLED: "Cancelled",
    AgentStatus.ERROR: "Error",
}


@dataclass
class HeadlessResult:
    """Outcome of a silent run: accumulated text and tool rounds used."""

    text: str
    tool_calls_made: int = 0
