"""
Google Gemini adapter.

Streams ``:streamGenerateContent?alt=sse``. Each frame carries whole
``parts``: text chunks, or a complete ``functionCall`` with its arguments
as one JSON object. Frames may be separated by CRLF or LF blank lines.
Gemini calls the assistant role "model" and has no tool-call ids, so ids
are generated locally and function results are matched by name.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Sequence
from typing import Any

import httpx

from agent_loop_engine.cancellation import CancellationToken
from agent_loop_engine.errors import TransportError
from agent_loop_engine.events import StreamEvent
from agent_loop_engine.logging import get_logger
from agent_loop_engine.providers.base import HttpRequestSpec, ProtocolNormalizer, ProviderAdapter
from agent_loop_engine.streaming import CRLF_OR_LF_DELIMITERS, StreamedResponse
from agent_loop_engine.types import (
    Message,
    MessageRole,
    TextBlock,
    ToolDefinition,
    ToolResult,
    ToolResultBlock,
    ToolUseBlock,
)

logger = get_logger("providers.gemini")

API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"


def _function_response(name: str, output: str, is_error: bool) -> dict[str, Any]:
    response = {"error": output} if is_error else {"result": output}
    return {"functionResponse": {"name": name, "response": response}}


class GeminiNormalizer(ProtocolNormalizer):
    """Applies Gemini ``GenerateContentResponse`` chunks to a ``StreamedResponse``."""

    def handle_payload(self, payload: dict[str, Any]) -> list[StreamEvent]:
        response = self.response
        events: list[StreamEvent] = []

        error = payload.get("error")
        if isinstance(error, dict):
            message = error.get("message", "Unknown error")
            logger.warning("Gemini stream error: %s", message)
            return [StreamEvent(type="error", error=message)]

        for candidate in payload.get("candidates") or []:
            for part in (candidate.get("content") or {}).get("parts") or []:
                events.extend(self._handle_part(part))
            response.set_stop_reason(candidate.get("finishReason"))

        usage = payload.get("usageMetadata")
        if usage:
            # Counts are cumulative for the request; the latest chunk wins.
            response.usage.input_tokens = int(usage.get("promptTokenCount", 0))
            response.usage.output_tokens = int(usage.get("candidatesTokenCount", 0))
        return events

    def _handle_part(self, part: dict[str, Any]) -> list[StreamEvent]:
        response = self.response
        if part.get("thought"):
            return []

        text = part.get("text")
        if isinstance(text, str):
            before = response.block_count()
            response.add_text(text)
            pos = response.block_count() - 1
            events = []
            if response.block_count() > before:
                events.append(StreamEvent(type="block_start", index=pos, kind="text"))
            if text:
                events.append(StreamEvent(type="text_delta", index=pos, content=text))
            return events

        call = part.get("functionCall")
        if isinstance(call, dict):
            tool_id = str(uuid.uuid4())
            name = call["name"]
            args = call.get("args")
            response.add_tool_use(tool_id, name, args if isinstance(args, dict) else {})
            pos = response.block_count() - 1
            return [
                StreamEvent(
                    type="block_start",
                    index=pos,
                    kind="tool_use",
                    tool_call_id=tool_id,
                    tool_name=name,
                ),
                StreamEvent(
                    type="tool_input_delta",
                    index=pos,
                    content=json.dumps(args if args is not None else {}),
                ),
            ]

        logger.debug("Ignoring part with keys %s", sorted(part))
        return []


class GeminiAdapter(ProviderAdapter):
    """Adapter for Gemini models."""

    name = "gemini"
    frame_delimiters = CRLF_OR_LF_DELIMITERS
    default_api_key_env = "GEMINI_API_KEY"

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key, "content-type": "application/json"}

    # -- conversation -------------------------------------------------------------

    def to_native(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        native: list[dict[str, Any]] = []
        names_by_id: dict[str, str] = {}
        for msg in messages:
            if msg.role is MessageRole.USER:
                parts: list[dict[str, Any]] = []
                for block in msg.content:
                    if isinstance(block, TextBlock):
                        if block.text:
                            parts.append({"text": block.text})
                    elif isinstance(block, ToolResultBlock):
                        name = block.name or names_by_id.get(block.tool_use_id, "")
                        parts.append(_function_response(name, block.output, block.is_error))
                if parts:
                    native.append({"role": "user", "parts": parts})
                continue

            parts = []
            responses: list[dict[str, Any]] = []
            for block in msg.content:
                if isinstance(block, TextBlock):
                    if block.text:
                        parts.append({"text": block.text})
                elif isinstance(block, ToolUseBlock):
                    names_by_id[block.id] = block.name
                    if block.output is None:
                        continue
                    parts.append(
                        {
                            "functionCall": {
                                "name": block.name,
                                "args": block.input if block.input is not None else {},
                            }
                        }
                    )
                    responses.append(
                        _function_response(block.name, block.output, bool(block.is_error))
                    )
            if parts:
                native.append({"role": "model", "parts": parts})
            if responses:
                native.append({"role": "user", "parts": responses})
        return native

    def append_assistant_response(
        self, conversation: list[dict[str, Any]], response: StreamedResponse
    ) -> None:
        parts: list[dict[str, Any]] = []
        for block in response.blocks:
            if isinstance(block, TextBlock):
                if block.text:
                    parts.append({"text": block.text})
            else:
                parts.append(
                    {
                        "functionCall": {
                            "name": block.name,
                            "args": block.input if block.input is not None else {},
                        }
                    }
                )
        conversation.append({"role": "model", "parts": parts})

    def append_tool_results(
        self, conversation: list[dict[str, Any]], results: list[ToolResult]
    ) -> None:
        conversation.append(
            {
                "role": "user",
                "parts": [_function_response(r.name, r.output, r.is_error) for r in results],
            }
        )

    # -- wire -----------------------------------------------------------------------

    def _body(
        self,
        contents: list[dict[str, Any]],
        system_prompt: str | None,
        tools: list[ToolDefinition],
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"maxOutputTokens": self.settings.max_tokens},
        }
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        if tools:
            body["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": t.name,
                            "description": t.description,
                            "parameters": t.input_schema,
                        }
                        for t in tools
                    ]
                }
            ]
        return body

    def build_stream_request(
        self,
        conversation: list[dict[str, Any]],
        system_prompt: str | None,
        tools: list[ToolDefinition],
    ) -> HttpRequestSpec:
        return HttpRequestSpec(
            url=f"{API_BASE}/{self.model}:streamGenerateContent?alt=sse",
            headers=self._headers(),
            json=self._body(conversation, system_prompt, tools),
        )

    def create_normalizer(self, response: StreamedResponse) -> GeminiNormalizer:
        return GeminiNormalizer(response)

    def decode_error_envelope(self, body: str) -> str | None:
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            return None
        # Errors sometimes come wrapped in a one-element array.
        if isinstance(data, list) and data:
            data = data[0]
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            message = data["error"].get("message")
            if isinstance(message, str):
                return message
        return None

    async def call_extraction(self, prompt: str, cancel: CancellationToken) -> str:
        body = self._body([{"role": "user", "parts": [{"text": prompt}]}], None, [])
        try:
            response = await cancel.race(
                self.client.post(
                    f"{API_BASE}/{self.model}:generateContent",
                    headers=self._headers(),
                    json=body,
                )
            )
        except httpx.HTTPError as e:
            raise TransportError(str(e) or type(e).__name__) from e
        await self._raise_for_status(response)
        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"invalid JSON in response: {e}") from e
        texts: list[str] = []
        for candidate in data.get("candidates") or []:
            for part in (candidate.get("content") or {}).get("parts") or []:
                if isinstance(part.get("text"), str) and not part.get("thought"):
                    texts.append(part["text"])
        return "".join(texts)
