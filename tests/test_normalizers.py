"""Tests for the vendor stream normalizers."""

from __future__ import annotations

import json

from agent_loop_engine.providers.anthropic import AnthropicNormalizer
from agent_loop_engine.providers.gemini import GeminiNormalizer
from agent_loop_engine.streaming import StreamedResponse
from agent_loop_engine.types import TextBlock, ToolUseBlock


def frame(payload: dict) -> str:
    return f"data: {json.dumps(payload)}"


def feed(normalizer, *payloads: dict) -> list:
    events = []
    for payload in payloads:
        events.extend(normalizer.process_frame(frame(payload)))
    return events


class TestAnthropicNormalizer:
    def test_full_round(self) -> None:
        response = StreamedResponse()
        normalizer = AnthropicNormalizer(response)

        events = feed(
            normalizer,
            {"type": "message_start", "message": {"usage": {"input_tokens": 25, "output_tokens": 1}}},
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}},
            {"type": "content_block_stop", "index": 0},
            {
                "type": "content_block_start",
                "index": 1,
                "content_block": {"type": "tool_use", "id": "toolu_1", "name": "glob", "input": {}},
            },
            {
                "type": "content_block_delta",
                "index": 1,
                "delta": {"type": "input_json_delta", "partial_json": '{"pattern"'},
            },
            {
                "type": "content_block_delta",
                "index": 1,
                "delta": {"type": "input_json_delta", "partial_json": ': "*.rs"}'},
            },
            {"type": "content_block_stop", "index": 1},
            {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 40}},
            {"type": "message_stop"},
        )
        response.finish()

        assert response.usage.input_tokens == 25
        assert response.usage.output_tokens == 40
        assert response.stop_reason == "tool_use"
        assert isinstance(response.blocks[0], TextBlock)
        assert response.blocks[0].text == "Hi"
        tool = response.blocks[1]
        assert isinstance(tool, ToolUseBlock)
        assert (tool.id, tool.name, tool.input) == ("toolu_1", "glob", {"pattern": "*.rs"})

        assert [(e.type, e.index) for e in events] == [
            ("block_start", 0),
            ("text_delta", 0),
            ("block_start", 1),
            ("tool_input_delta", 1),
            ("tool_input_delta", 1),
        ]
        assert events[2].tool_name == "glob"
        assert events[4].content == '{"pattern": "*.rs"}'

    def test_unknown_block_types_are_skipped(self) -> None:
        response = StreamedResponse()
        normalizer = AnthropicNormalizer(response)

        events = feed(
            normalizer,
            {"type": "content_block_start", "index": 0, "content_block": {"type": "thinking"}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "thinking_delta", "thinking": "hmm"}},
            {"type": "content_block_start", "index": 1, "content_block": {"type": "text", "text": ""}},
            {"type": "content_block_delta", "index": 1, "delta": {"type": "text_delta", "text": "ok"}},
        )

        assert response.text == "ok"
        assert response.block_count() == 1
        # Live events use the block's position, not the vendor index.
        assert [(e.type, e.index) for e in events] == [("block_start", 0), ("text_delta", 0)]

    def test_malformed_frames_are_skipped(self) -> None:
        response = StreamedResponse()
        normalizer = AnthropicNormalizer(response)

        assert normalizer.process_frame("data: {not json") == []
        assert normalizer.process_frame('data: {"type": "content_block_delta"}') == []
        assert normalizer.process_frame("event: ping") == []
        assert response.block_count() == 0

    def test_error_event(self) -> None:
        normalizer = AnthropicNormalizer(StreamedResponse())
        events = feed(normalizer, {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})

        assert len(events) == 1
        assert events[0].type == "error"
        assert events[0].error == "Overloaded"


class TestGeminiNormalizer:
    def test_text_parts_coalesce(self) -> None:
        response = StreamedResponse()
        normalizer = GeminiNormalizer(response)

        events = feed(
            normalizer,
            {"candidates": [{"content": {"role": "model", "parts": [{"text": "Hel"}]}}]},
            {"candidates": [{"content": {"role": "model", "parts": [{"text": "lo"}]}}]},
        )

        assert response.block_count() == 1
        assert response.text == "Hello"
        assert [(e.type, e.index) for e in events] == [
            ("block_start", 0),
            ("text_delta", 0),
            ("text_delta", 0),
        ]

    def test_function_call(self) -> None:
        response = StreamedResponse()
        normalizer = GeminiNormalizer(response)

        events = feed(
            normalizer,
            {"candidates": [{"content": {"parts": [{"text": "Checking."}]}}]},
            {
                "candidates": [
                    {
                        "content": {
                            "parts": [{"functionCall": {"name": "read_file", "args": {"path": "a"}}}]
                        },
                        "finishReason": "STOP",
                    }
                ],
                "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 7},
            },
        )

        calls = response.tool_calls()
        assert len(calls) == 1
        assert calls[0].name == "read_file"
        assert calls[0].input == {"path": "a"}
        assert calls[0].id
        assert calls[0].block_index == 1
        assert response.stop_reason == "STOP"
        assert (response.usage.input_tokens, response.usage.output_tokens) == (12, 7)
        assert events[-1].type == "tool_input_delta"
        assert json.loads(events[-1].content) == {"path": "a"}

    def test_generated_ids_are_unique(self) -> None:
        response = StreamedResponse()
        normalizer = GeminiNormalizer(response)
        call = {"functionCall": {"name": "glob", "args": {}}}

        feed(normalizer, {"candidates": [{"content": {"parts": [call, call]}}]})

        ids = [c.id for c in response.tool_calls()]
        assert len(set(ids)) == 2

    def test_usage_latest_chunk_wins(self) -> None:
        response = StreamedResponse()
        normalizer = GeminiNormalizer(response)

        feed(
            normalizer,
            {"usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 2}},
            {"usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 9}},
        )

        assert (response.usage.input_tokens, response.usage.output_tokens) == (12, 9)

    def test_thought_parts_skipped(self) -> None:
        response = StreamedResponse()
        normalizer = GeminiNormalizer(response)

        feed(normalizer, {"candidates": [{"content": {"parts": [{"text": "plan...", "thought": True}]}}]})

        assert response.block_count() == 0

    def test_error_payload(self) -> None:
        normalizer = GeminiNormalizer(StreamedResponse())
        events = feed(normalizer, {"error": {"code": 429, "message": "Quota exceeded"}})
        assert [(e.type, e.error) for e in events] == [("error", "Quota exceeded")]
