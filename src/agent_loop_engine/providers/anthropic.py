"""
Anthropic Messages API adapter.

Streams ``/v1/messages`` as server-sent events separated by blank lines.
Tool arguments arrive as ``input_json_delta`` fragments that only form
valid JSON once the block is closed.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import httpx

from agent_loop_engine.cancellation import CancellationToken
from agent_loop_engine.errors import TransportError
from agent_loop_engine.events import StreamEvent
from agent_loop_engine.logging import get_logger
from agent_loop_engine.providers.base import HttpRequestSpec, ProtocolNormalizer, ProviderAdapter
from agent_loop_engine.streaming import LF_DELIMITERS, StreamedResponse
from agent_loop_engine.types import (
    Message,
    MessageRole,
    TextBlock,
    ToolDefinition,
    ToolResult,
    ToolResultBlock,
    ToolUseBlock,
)

logger = get_logger("providers.anthropic")

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"


def _tool_result_block(tool_use_id: str, output: str, is_error: bool) -> dict[str, Any]:
    block: dict[str, Any] = {"type": "tool_result", "tool_use_id": tool_use_id, "content": output}
    if is_error:
        block["is_error"] = True
    return block


def _collapse(blocks: list[dict[str, Any]]) -> str | list[dict[str, Any]]:
    # A lone text block is sent as a plain string
    if len(blocks) == 1 and blocks[0]["type"] == "text":
        return blocks[0]["text"]
    return blocks


class AnthropicNormalizer(ProtocolNormalizer):
    """Applies Anthropic stream events to a ``StreamedResponse``."""

    def handle_payload(self, payload: dict[str, Any]) -> list[StreamEvent]:
        event_type = payload.get("type")
        response = self.response

        if event_type == "message_start":
            usage = payload.get("message", {}).get("usage") or {}
            response.usage.input_tokens = int(usage.get("input_tokens", 0))
            response.usage.output_tokens = int(usage.get("output_tokens", 0))
            return []

        if event_type == "content_block_start":
            index = int(payload["index"])
            block = payload["content_block"]
            kind = block.get("type")
            if kind == "text":
                if response.start_text(index, block.get("text", "")):
                    return [StreamEvent(type="block_start", index=self._pos(index), kind="text")]
            elif kind == "tool_use":
                if response.start_tool_use(index, block["id"], block["name"]):
                    return [
                        StreamEvent(
                            type="block_start",
                            index=self._pos(index),
                            kind="tool_use",
                            tool_call_id=block["id"],
                            tool_name=block["name"],
                        )
                    ]
            else:
                logger.debug("Ignoring content block of type %s", kind)
            return []

        if event_type == "content_block_delta":
            index = int(payload["index"])
            delta = payload["delta"]
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                text = delta.get("text", "")
                if response.append_text(index, text):
                    return [StreamEvent(type="text_delta", index=self._pos(index), content=text)]
            elif delta_type == "input_json_delta":
                if response.append_tool_input(index, delta.get("partial_json", "")):
                    return [
                        StreamEvent(
                            type="tool_input_delta",
                            index=self._pos(index),
                            content=response.pending_tool_input(index),
                        )
                    ]
            return []

        if event_type == "content_block_stop":
            response.close_block(int(payload["index"]))
            return []

        if event_type == "message_delta":
            response.set_stop_reason((payload.get("delta") or {}).get("stop_reason"))
            usage = payload.get("usage") or {}
            if "output_tokens" in usage:
                response.usage.output_tokens = int(usage["output_tokens"])
            return []

        if event_type == "error":
            message = (payload.get("error") or {}).get("message", "Unknown error")
            logger.warning("Anthropic stream error: %s", message)
            return [StreamEvent(type="error", error=message)]

        # message_stop, ping and future event types
        return []

    def _pos(self, index: int) -> int:
        pos = self.response.position_of(index)
        return pos if pos is not None else index


class AnthropicAdapter(ProviderAdapter):
    """
    Adapter for Claude models.

    Example:
        adapter = AnthropicAdapter(AgentSettings(model="claude-sonnet-4-20250514"))
        result = await adapter.run_headless(
            [Message.user("Summarize README.md")], None, tools, SessionState(),
            CancellationToken(), executor, UsageTracker(),
        )
    """

    name = "anthropic"
    frame_delimiters = LF_DELIMITERS
    default_api_key_env = "ANTHROPIC_API_KEY"

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }

    # -- conversation -------------------------------------------------------------

    def to_native(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        native: list[dict[str, Any]] = []
        for msg in messages:
            if msg.role is MessageRole.USER:
                blocks = self._user_blocks(msg)
                if blocks:
                    native.append({"role": "user", "content": _collapse(blocks)})
                continue

            blocks = []
            results = []
            for block in msg.content:
                if isinstance(block, TextBlock):
                    if block.text:
                        blocks.append({"type": "text", "text": block.text})
                elif isinstance(block, ToolUseBlock):
                    if block.output is None:
                        # A call without a recorded result cannot be replayed.
                        continue
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": block.id,
                            "name": block.name,
                            "input": block.input if block.input is not None else {},
                        }
                    )
                    results.append(
                        _tool_result_block(block.id, block.output, bool(block.is_error))
                    )
            if blocks:
                native.append({"role": "assistant", "content": _collapse(blocks)})
            if results:
                native.append({"role": "user", "content": results})
        return native

    @staticmethod
    def _user_blocks(msg: Message) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = []
        for block in msg.content:
            if isinstance(block, TextBlock):
                if block.text:
                    blocks.append({"type": "text", "text": block.text})
            elif isinstance(block, ToolResultBlock):
                blocks.append(
                    _tool_result_block(block.tool_use_id, block.output, block.is_error)
                )
        return blocks

    def append_assistant_response(
        self, conversation: list[dict[str, Any]], response: StreamedResponse
    ) -> None:
        content: list[dict[str, Any]] = []
        for block in response.blocks:
            if isinstance(block, TextBlock):
                if block.text:
                    content.append({"type": "text", "text": block.text})
            else:
                content.append(
                    {
                        "type": "tool_use",
                        "id": block.id,
                        "name": block.name,
                        "input": block.input if block.input is not None else {},
                    }
                )
        conversation.append({"role": "assistant", "content": content})

    def append_tool_results(
        self, conversation: list[dict[str, Any]], results: list[ToolResult]
    ) -> None:
        conversation.append(
            {
                "role": "user",
                "content": [_tool_result_block(r.id, r.output, r.is_error) for r in results],
            }
        )

    # -- wire -----------------------------------------------------------------------

    def build_stream_request(
        self,
        conversation: list[dict[str, Any]],
        system_prompt: str | None,
        tools: list[ToolDefinition],
    ) -> HttpRequestSpec:
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.settings.max_tokens,
            "messages": conversation,
            "stream": True,
        }
        if system_prompt:
            body["system"] = system_prompt
        if tools:
            body["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.input_schema}
                for t in tools
            ]
        return HttpRequestSpec(url=API_URL, headers=self._headers(), json=body)

    def create_normalizer(self, response: StreamedResponse) -> AnthropicNormalizer:
        return AnthropicNormalizer(response)

    def decode_error_envelope(self, body: str) -> str | None:
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            return None
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            message = data["error"].get("message")
            if isinstance(message, str):
                return message
        return None

    async def call_extraction(self, prompt: str, cancel: CancellationToken) -> str:
        body = {
            "model": self.model,
            "max_tokens": self.settings.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        try:
            response = await cancel.race(
                self.client.post(API_URL, headers=self._headers(), json=body)
            )
        except httpx.HTTPError as e:
            raise TransportError(str(e) or type(e).__name__) from e
        await self._raise_for_status(response)
        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"invalid JSON in response: {e}") from e
        return "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        )
