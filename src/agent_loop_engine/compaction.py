"""
Context compaction.

When the estimated prompt size passes 80% of the context limit, older
messages are summarized by an auxiliary model call into a
``CompactedContext`` (a running summary plus categorized key facts). The
most recent exchanges are kept verbatim. Every failure along the way is
reported as a warning and the conversation proceeds uncompacted.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from agent_loop_engine.config import DEFAULT_CONTEXT_LIMIT
from agent_loop_engine.errors import AgentError, Cancelled
from agent_loop_engine.events import CompactionEvent
from agent_loop_engine.logging import get_logger
from agent_loop_engine.prompts import DEFAULT_EXTRACTION_PROMPT
from agent_loop_engine.reporting import LoopReporter
from agent_loop_engine.session import SessionState
from agent_loop_engine.types import (
    AgentStatus,
    Block,
    CompactedContext,
    CompactedFact,
    FactCategory,
    Message,
    MessageRole,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)

logger = get_logger("compaction")

COMPACTION_THRESHOLD = 0.8
PRESERVED_EXCHANGES = 6
AGGRESSIVE_PRESERVED_EXCHANGES = 4
MAX_FACTS = 20
TRANSCRIPT_OUTPUT_LIMIT = 500

ExtractionCall = Callable[[str], Awaitable[str]]


class ExtractionParseError(ValueError):
    """The extraction response was not the expected JSON."""


@dataclass
class CompactionResult:
    preserved_messages: list[Message]
    compacted_text: str

    def apply(self) -> list[Message]:
        """The history to send: the session context, then the preserved messages.

        The context is prepended to the first preserved user message, or sent
        as its own user message when the window starts with an assistant turn.
        """
        messages = list(self.preserved_messages)
        if messages and messages[0].role is MessageRole.USER:
            first = messages[0]
            messages[0] = Message(
                role=first.role,
                content=[TextBlock(self.compacted_text), *first.content],
                id=first.id,
            )
        else:
            messages.insert(0, Message.user(self.compacted_text))
        return messages


# ---------------------------------------------------------------------------
# Estimation
# ---------------------------------------------------------------------------


def estimate_tokens(text: str) -> int:
    """Rough token count: characters divided by four."""
    return len(text) // 4


def _estimate_block_tokens(block: Block) -> int:
    if isinstance(block, TextBlock):
        return estimate_tokens(block.text)
    if isinstance(block, ToolUseBlock):
        tokens = estimate_tokens(block.name)
        tokens += estimate_tokens(json.dumps(block.input, separators=(",", ":")))
        if block.output is not None:
            tokens += estimate_tokens(block.output)
        return tokens
    return estimate_tokens(block.output)


def estimate_message_tokens(message: Message) -> int:
    return sum(_estimate_block_tokens(b) for b in message.content)


def estimate_context_size(
    system_prompt: str | None,
    messages: Sequence[Message],
    compacted: CompactedContext | None = None,
) -> int:
    total = 0
    if system_prompt:
        total += estimate_tokens(system_prompt)
    if compacted is not None and not compacted.is_empty:
        total += estimate_tokens(format_compacted_context(compacted))
    total += sum(estimate_message_tokens(m) for m in messages)
    return total


def should_compact(estimated_tokens: int, context_limit: int = DEFAULT_CONTEXT_LIMIT) -> bool:
    return estimated_tokens > int(context_limit * COMPACTION_THRESHOLD)


def split_messages_for_compaction(
    messages: Sequence[Message], aggressive: bool = False
) -> tuple[list[Message], list[Message]]:
    """Return ``(to_compact, to_preserve)``."""
    exchanges = AGGRESSIVE_PRESERVED_EXCHANGES if aggressive else PRESERVED_EXCHANGES
    preserve_count = exchanges * 2
    if len(messages) <= preserve_count:
        return [], list(messages)
    split_point = len(messages) - preserve_count
    return list(messages[:split_point]), list(messages[split_point:])


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def _truncate_for_transcript(output: str) -> str:
    if len(output) > TRANSCRIPT_OUTPUT_LIMIT:
        return output[:TRANSCRIPT_OUTPUT_LIMIT] + "... (truncated)"
    return output


def format_messages_for_extraction(messages: Sequence[Message]) -> str:
    """Render messages as a plain transcript for the extraction model."""
    lines: list[str] = []
    for msg in messages:
        lines.append("## User" if msg.role is MessageRole.USER else "## Assistant")
        for block in msg.content:
            if isinstance(block, TextBlock):
                lines.append(block.text)
            elif isinstance(block, ToolUseBlock):
                lines.append(f"[Tool: {block.name}]")
                lines.append(f"Input: {json.dumps(block.input, separators=(',', ':'))}")
                if block.output is not None:
                    marker = " [ERROR]" if block.is_error else ""
                    lines.append(f"Output{marker}: {_truncate_for_transcript(block.output)}")
            elif isinstance(block, ToolResultBlock):
                marker = " [ERROR]" if block.is_error else ""
                lines.append(f"Output{marker}: {_truncate_for_transcript(block.output)}")
        lines.append("")
    return "\n".join(lines) + "\n" if lines else ""


def build_extraction_prompt(conversation: str, template: str | None = None) -> str:
    return (template or DEFAULT_EXTRACTION_PROMPT).replace("{conversation}", conversation)


def extract_json_from_response(response: str) -> str:
    """Pull the JSON object out of a model reply that may wrap it in a code fence."""
    start = response.find("```json")
    if start != -1:
        body_start = start + len("```json")
        end = response.find("```", body_start)
        if end != -1:
            return response[body_start:end].strip()

    start = response.find("```")
    if start != -1:
        body_start = start + 3
        end = response.find("```", body_start)
        if end != -1:
            content = response[body_start:end].strip()
            newline = content.find("\n")
            # Drop a language tag line such as ```javascript
            if newline != -1 and "{" not in content[:newline]:
                return content[newline:].strip()
            return content

    start = response.find("{")
    end = response.rfind("}")
    if start != -1 and end > start:
        return response[start : end + 1]
    return response


def parse_extraction_response(response: str) -> CompactedContext:
    """Parse ``{"summary": str, "facts": [{category, content}]}``.

    Facts with an unrecognized category are dropped.
    """
    try:
        data: Any = json.loads(extract_json_from_response(response))
    except json.JSONDecodeError as e:
        raise ExtractionParseError(f"Failed to parse extraction JSON: {e}") from e
    if not isinstance(data, dict):
        raise ExtractionParseError("Failed to parse extraction JSON: expected an object")
    summary = data.get("summary")
    raw_facts = data.get("facts")
    if not isinstance(summary, str):
        raise ExtractionParseError("Failed to parse extraction JSON: missing field `summary`")
    if not isinstance(raw_facts, list):
        raise ExtractionParseError("Failed to parse extraction JSON: missing field `facts`")

    facts: list[CompactedFact] = []
    for raw in raw_facts:
        if not isinstance(raw, dict):
            raise ExtractionParseError("Failed to parse extraction JSON: fact is not an object")
        category, content = raw.get("category"), raw.get("content")
        if not isinstance(category, str) or not isinstance(content, str):
            raise ExtractionParseError(
                "Failed to parse extraction JSON: fact needs `category` and `content`"
            )
        parsed = FactCategory.parse(category)
        if parsed is None:
            logger.debug("Dropping fact with unknown category %r", category)
            continue
        facts.append(CompactedFact(category=parsed, content=content))
    return CompactedContext(summary=summary, facts=facts)


def merge_compacted_contexts(
    existing: CompactedContext, new: CompactedContext
) -> CompactedContext:
    """Merge a fresh extraction into the running context.

    Summaries are joined old-then-new; facts are deduplicated by exact
    content and capped at ``MAX_FACTS``, dropping the oldest.
    """
    if existing.is_empty:
        facts = list(new.facts)
        return CompactedContext(summary=new.summary, facts=facts[-MAX_FACTS:])

    if existing.summary is not None and new.summary is not None:
        summary: str | None = f"{existing.summary} {new.summary}"
    else:
        summary = existing.summary if existing.summary is not None else new.summary

    facts = list(existing.facts)
    seen = {f.content for f in facts}
    for fact in new.facts:
        if fact.content not in seen:
            seen.add(fact.content)
            facts.append(fact)
    return CompactedContext(summary=summary, facts=facts[-MAX_FACTS:])


def format_compacted_context(context: CompactedContext) -> str:
    parts = ["[Session Context]\n"]
    if context.summary is not None:
        parts.append(f"Summary: {context.summary}\n\n")
    if context.facts:
        parts.append("Key Facts:\n")
        for fact in context.facts:
            parts.append(f"- [{fact.category.value.upper()}] {fact.content}\n")
        parts.append("\n")
    parts.append("[Recent Conversation Follows]")
    return "".join(parts)


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


async def maybe_compact(
    messages: Sequence[Message],
    system_prompt: str | None,
    session: SessionState,
    call_extraction: ExtractionCall,
    context_limit: int = DEFAULT_CONTEXT_LIMIT,
    extraction_prompt: str | None = None,
    reporter: LoopReporter | None = None,
) -> CompactionResult | None:
    """
    Compact ``messages`` if they no longer fit comfortably.

    Returns None when no compaction happened, either because none was
    needed or because it failed (a warning is reported in that case).
    Only ``Cancelled`` propagates.
    """
    reporter = reporter or LoopReporter()
    existing = await session.get_compacted()
    original_tokens = estimate_context_size(system_prompt, messages, existing)
    if not should_compact(original_tokens, context_limit):
        return None

    logger.info(
        "Context estimate %d exceeds %d%% of %d; compacting",
        original_tokens,
        int(COMPACTION_THRESHOLD * 100),
        context_limit,
    )
    await reporter.status(AgentStatus.COMPACTING)

    to_compact, to_preserve = split_messages_for_compaction(messages)
    if not to_compact:
        to_compact, to_preserve = split_messages_for_compaction(messages, aggressive=True)
    if not to_compact:
        await _warn(reporter, "Unable to compact: not enough messages")
        return None

    formatted = format_messages_for_extraction(to_compact)
    if existing.summary is not None:
        formatted = (
            f"Previous session context:\n{format_compacted_context(existing)}"
            f"\n\nNew conversation to analyze:\n{formatted}"
        )
    prompt = build_extraction_prompt(formatted, extraction_prompt)

    try:
        response_text = await call_extraction(prompt)
    except Cancelled:
        raise
    except AgentError as e:
        await _warn(reporter, f"Extraction API failed: {e}")
        return None

    try:
        extracted = parse_extraction_response(response_text)
    except ExtractionParseError as e:
        await _warn(reporter, f"Failed to parse extraction: {e}")
        return None

    merged = merge_compacted_contexts(existing, extracted)
    await session.set_compacted(merged)

    compacted_tokens = estimate_context_size(None, to_preserve, merged)
    logger.info(
        "Compacted %d messages: %d -> %d tokens, %d facts",
        len(to_compact),
        original_tokens,
        compacted_tokens,
        len(merged.facts),
    )
    await reporter.compaction(
        CompactionEvent(
            original_tokens=original_tokens,
            compacted_tokens=compacted_tokens,
            facts_count=len(merged.facts),
        )
    )
    return CompactionResult(
        preserved_messages=to_preserve,
        compacted_text=format_compacted_context(merged),
    )


async def _warn(reporter: LoopReporter, message: str) -> None:
    logger.warning(message)
    await reporter.compaction_warning(message)
