"""Shared pytest fixtures for agent-loop-engine tests."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from textwrap import dedent
from typing import Any

import httpx
import pytest

from agent_loop_engine.cancellation import CancellationToken
from agent_loop_engine.config import AgentSettings, ExecutionConfig, PromptsConfig
from agent_loop_engine.providers.anthropic import AnthropicAdapter
from agent_loop_engine.providers.gemini import GeminiAdapter
from agent_loop_engine.tools.definitions import ToolName


# ---------------------------------------------------------------------------
# SSE builders
# ---------------------------------------------------------------------------


def sse_body(events: list[dict[str, Any]], delimiter: str = "\n\n") -> bytes:
    """Encode payloads as server-sent event frames."""
    frames = []
    for event in events:
        frames.append(f"event: {event.get('type', 'message')}\ndata: {json.dumps(event)}")
    return (delimiter.join(frames) + delimiter).encode("utf-8")


class AnthropicScript:
    """Builders for Anthropic ``/v1/messages`` stream bodies."""

    @staticmethod
    def text(text: str, input_tokens: int = 10, output_tokens: int = 5) -> bytes:
        return sse_body(
            [
                {
                    "type": "message_start",
                    "message": {"usage": {"input_tokens": input_tokens, "output_tokens": 1}},
                },
                {
                    "type": "content_block_start",
                    "index": 0,
                    "content_block": {"type": "text", "text": ""},
                },
                {
                    "type": "content_block_delta",
                    "index": 0,
                    "delta": {"type": "text_delta", "text": text},
                },
                {"type": "content_block_stop", "index": 0},
                {
                    "type": "message_delta",
                    "delta": {"stop_reason": "end_turn"},
                    "usage": {"output_tokens": output_tokens},
                },
                {"type": "message_stop"},
            ]
        )

    @staticmethod
    def tool_calls(
        *calls: tuple[str, str, dict[str, Any]],
        text: str | None = None,
        input_tokens: int = 10,
        output_tokens: int = 5,
    ) -> bytes:
        events: list[dict[str, Any]] = [
            {
                "type": "message_start",
                "message": {"usage": {"input_tokens": input_tokens, "output_tokens": 1}},
            }
        ]
        index = 0
        if text is not None:
            events += [
                {
                    "type": "content_block_start",
                    "index": 0,
                    "content_block": {"type": "text", "text": ""},
                },
                {
                    "type": "content_block_delta",
                    "index": 0,
                    "delta": {"type": "text_delta", "text": text},
                },
                {"type": "content_block_stop", "index": 0},
            ]
            index = 1
        for tool_id, name, tool_input in calls:
            raw = json.dumps(tool_input)
            half = len(raw) // 2
            events += [
                {
                    "type": "content_block_start",
                    "index": index,
                    "content_block": {"type": "tool_use", "id": tool_id, "name": name, "input": {}},
                },
                {
                    "type": "content_block_delta",
                    "index": index,
                    "delta": {"type": "input_json_delta", "partial_json": raw[:half]},
                },
                {
                    "type": "content_block_delta",
                    "index": index,
                    "delta": {"type": "input_json_delta", "partial_json": raw[half:]},
                },
                {"type": "content_block_stop", "index": index},
            ]
            index += 1
        events += [
            {
                "type": "message_delta",
                "delta": {"stop_reason": "tool_use"},
                "usage": {"output_tokens": output_tokens},
            },
            {"type": "message_stop"},
        ]
        return sse_body(events)


class ScriptedTransport:
    """
    Replays canned vendor responses, one per request.

    Each entry is SSE bytes (served as a 200 event stream), a ready
    ``httpx.Response``, or a callable taking the request.
    """

    def __init__(self, *responses: bytes | httpx.Response | Callable[..., Any]) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> Any:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"unexpected request #{len(self.requests)}")
        response = self.responses.pop(0)
        if isinstance(response, bytes):
            return httpx.Response(
                200, content=response, headers={"content-type": "text/event-stream"}
            )
        if callable(response):
            return response(request)
        return response

    @property
    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class RecordingExecutor:
    """External tool executor that records calls and returns canned output."""

    def __init__(self, outputs: dict[str, Any] | None = None) -> None:
        self.outputs = outputs or {}
        self.calls: list[tuple[ToolName, Any]] = []

    async def execute(self, tool: ToolName, tool_input: Any, cancel: CancellationToken) -> str:
        self.calls.append((tool, tool_input))
        output = self.outputs.get(tool.value, f"{tool.value} ok")
        if isinstance(output, BaseException):
            raise output
        return output


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_anthropic() -> Callable[..., tuple[AnthropicAdapter, ScriptedTransport]]:
    """Factory for an Anthropic adapter backed by a scripted transport."""

    def factory(
        *responses: bytes | httpx.Response | Callable[..., Any],
        max_tool_iterations: int = 50,
        app_system_prompt: str | None = None,
        prompts: PromptsConfig | None = None,
    ) -> tuple[AnthropicAdapter, ScriptedTransport]:
        script = ScriptedTransport(*responses)
        adapter = AnthropicAdapter(
            AgentSettings(provider="anthropic", model="claude-test", max_tokens=1024),
            prompts=prompts,
            execution=ExecutionConfig(max_tool_iterations=max_tool_iterations),
            app_system_prompt=app_system_prompt,
            api_key="test-key",
            client=script.client(),
        )
        return adapter, script

    return factory


@pytest.fixture
def make_gemini() -> Callable[..., tuple[GeminiAdapter, ScriptedTransport]]:
    def factory(
        *responses: bytes | httpx.Response | Callable[..., Any],
    ) -> tuple[GeminiAdapter, ScriptedTransport]:
        script = ScriptedTransport(*responses)
        adapter = GeminiAdapter(
            AgentSettings(provider="gemini", model="gemini-test", max_tokens=1024),
            app_system_prompt=None,
            api_key="gemini-key",
            client=script.client(),
        )
        return adapter, script

    return factory


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A project with a minimal ``.agent/config.yaml``."""
    config_dir = tmp_path / ".agent"
    config_dir.mkdir()
    (config_dir / "config.yaml").write_text(
        dedent("""
        agent:
          provider: anthropic
          model: claude-test
          max_tokens: 1024
        execution:
          timeout_secs: 5
          max_tool_iterations: 10
          max_agent_depth: 2
    """).strip()
    )
    return tmp_path
