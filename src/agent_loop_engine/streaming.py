"""
Vendor-neutral streaming primitives.

``SSEFrameBuffer`` turns arbitrarily chunked bytes into complete SSE
frames; ``StreamedResponse`` accumulates one model round; and
``StreamingState`` keeps block indices increasing across the rounds of
one conversation so the UI can address blocks globally.
"""

from __future__ import annotations

import codecs
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from agent_loop_engine.logging import get_logger
from agent_loop_engine.types import TextBlock, ToolCall, ToolUseBlock
from agent_loop_engine.usage import TokenUsage
from agent_loop_engine.utils.json_parse import parse_tool_input

logger = get_logger("streaming")

LF_DELIMITERS: tuple[str, ...] = ("\n\n",)
CRLF_OR_LF_DELIMITERS: tuple[str, ...] = ("\r\n\r\n", "\n\n")


class SSEFrameBuffer:
    """
    Buffers decoded text until a full frame delimiter is seen.

    The delimiter that occurs earliest in the buffer ends the frame. On a
    tie the one listed first wins, so ``("\\r\\n\\r\\n", "\\n\\n")`` keeps
    CRLF framing intact.
    Multi-byte UTF-8 sequences split across chunks are reassembled.
    """

    def __init__(self, delimiters: Sequence[str] = LF_DELIMITERS) -> None:
        if not delimiters:
            raise ValueError("at least one delimiter is required")
        self.delimiters = tuple(delimiters)
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: bytes | str) -> Iterator[str]:
        """Add a chunk and yield every frame it completes."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk
        while True:
            found = self._next_delimiter()
            if found is None:
                return
            end, length = found
            frame = self._buffer[:end]
            self._buffer = self._buffer[end + length :]
            yield frame

    def _next_delimiter(self) -> tuple[int, int] | None:
        best: tuple[int, int] | None = None
        for delimiter in self.delimiters:
            pos = self._buffer.find(delimiter)
            if pos != -1 and (best is None or pos < best[0]):
                best = (pos, len(delimiter))
        return best

    @property
    def pending(self) -> str:
        """Text received after the last complete frame."""
        return self._buffer


def frame_data(frame: str) -> str | None:
    """Return the payload of the last ``data:`` line, or None."""
    data = None
    for line in frame.splitlines():
        if line.startswith("data: "):
            data = line[6:]
        elif line.startswith("data:"):
            data = line[5:]
    if data is None or data.strip() == "[DONE]":
        return None
    return data


@dataclass
class StreamedResponse:
    """
    Accumulator for one model round.

    Blocks are addressed by the vendor's round-local index and appended in
    increasing index order. A tool-call block collects raw argument
    fragments and parses them once, when the block closes; unparsable
    fragments leave an empty input instead of failing the round.
    """

    blocks: list[TextBlock | ToolUseBlock] = field(default_factory=list)
    stop_reason: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    _positions: dict[int, int] = field(default_factory=dict, repr=False)
    _fragments: dict[int, list[str]] = field(default_factory=dict, repr=False)
    _last_index: int = field(default=-1, repr=False)

    # -- block lifecycle ------------------------------------------------------

    def _open(self, index: int, block: TextBlock | ToolUseBlock) -> bool:
        if index <= self._last_index:
            logger.debug("Ignoring out-of-order block start at index %d", index)
            return False
        self._last_index = index
        self._positions[index] = len(self.blocks)
        self.blocks.append(block)
        return True

    def start_text(self, index: int, text: str = "") -> bool:
        return self._open(index, TextBlock(text))

    def start_tool_use(self, index: int, tool_id: str, name: str) -> bool:
        opened = self._open(index, ToolUseBlock(id=tool_id, name=name, input={}))
        if opened:
            self._fragments[index] = []
        return opened

    def position_of(self, index: int) -> int | None:
        """Position in ``blocks`` of the block the vendor calls ``index``."""
        return self._positions.get(index)

    def block_at(self, index: int) -> TextBlock | ToolUseBlock | None:
        pos = self._positions.get(index)
        if pos is None:
            return None
        return self.blocks[pos]

    def append_text(self, index: int, text: str) -> bool:
        block = self.block_at(index)
        if not isinstance(block, TextBlock):
            return False
        block.text += text
        return True

    def append_tool_input(self, index: int, fragment: str) -> bool:
        fragments = self._fragments.get(index)
        if fragments is None:
            return False
        fragments.append(fragment)
        return True

    def pending_tool_input(self, index: int) -> str:
        return "".join(self._fragments.get(index, []))

    def close_block(self, index: int) -> None:
        fragments = self._fragments.pop(index, None)
        if fragments is None:
            return
        block = self.block_at(index)
        if isinstance(block, ToolUseBlock):
            raw = "".join(fragments)
            block.input = parse_tool_input(raw)
            if raw.strip() and not block.input and raw.strip() != "{}":
                logger.warning(
                    "Tool call %s (%s) had unparsable input; using empty input",
                    block.id,
                    block.name,
                )

    def finish(self) -> None:
        """Close any block left open when the stream ended."""
        for index in list(self._fragments):
            self.close_block(index)

    # -- whole-block helpers (vendors that send complete parts) ---------------

    def next_index(self) -> int:
        return self._last_index + 1

    def add_text(self, text: str) -> int:
        """Append text to a trailing text block, opening one if needed."""
        if self.blocks and isinstance(self.blocks[-1], TextBlock):
            self.blocks[-1].text += text
            return self._last_index
        index = self.next_index()
        self.start_text(index, text)
        return index

    def add_tool_use(self, tool_id: str, name: str, tool_input: object) -> int:
        index = self.next_index()
        self._open(
            index,
            ToolUseBlock(id=tool_id, name=name, input=tool_input if tool_input is not None else {}),
        )
        return index

    # -- round-level ------------------------------------------------------------

    def set_stop_reason(self, reason: str | None) -> None:
        if reason is not None:
            self.stop_reason = reason

    def has_tool_use(self) -> bool:
        return any(isinstance(b, ToolUseBlock) for b in self.blocks)

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.blocks if isinstance(b, TextBlock))

    def tool_calls(self, block_offset: int = 0) -> list[ToolCall]:
        return [
            ToolCall(id=b.id, name=b.name, input=b.input, block_index=block_offset + pos)
            for pos, b in enumerate(self.blocks)
            if isinstance(b, ToolUseBlock)
        ]

    def block_count(self) -> int:
        return len(self.blocks)


class StreamingState:
    """Global block counter across the rounds of one conversation."""

    def __init__(self) -> None:
        self._global_block_counter = 0

    def create_offset(self) -> int:
        """Offset for the next round's block indices."""
        return self._global_block_counter

    @property
    def block_offset(self) -> int:
        return self._global_block_counter

    def advance(self, block_count: int) -> None:
        self._global_block_counter += block_count
