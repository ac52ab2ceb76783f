"""
Provider adapter interface.

An adapter owns everything vendor specific: the native conversation
representation, request encoding, the streaming protocol normalizer and
error envelopes. The round-trip mechanics (HTTP streaming raced against
cancellation, system prompt assembly, the two run entry points) live here
and are shared.

Example implementation for a new vendor:

    class MyAdapter(ProviderAdapter):
        name = "myvendor"
        frame_delimiters = LF_DELIMITERS

        def to_native(self, messages):
            return [{"role": m.role.value, "text": m.text} for m in messages]

        def build_stream_request(self, conversation, system_prompt, tools):
            return HttpRequestSpec(url=..., headers=..., json=...)

        def create_normalizer(self, response):
            return MyNormalizer(response)
        ...
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from agent_loop_engine.cancellation import CancellationToken
from agent_loop_engine.compaction import maybe_compact
from agent_loop_engine.config import AgentSettings, ExecutionConfig, PromptsConfig
from agent_loop_engine.errors import (
    AgentError,
    Cancelled,
    MissingCredential,
    TransportError,
    VendorRejected,
)
from agent_loop_engine.events import StreamEvent
from agent_loop_engine.logging import get_logger
from agent_loop_engine.loop import LoopOutcome, run_tool_loop
from agent_loop_engine.memory import ProjectMemory
from agent_loop_engine.prompts import DEFAULT_SYSTEM_PROMPT
from agent_loop_engine.reporting import LoopReporter, StreamHandler
from agent_loop_engine.session import SessionState
from agent_loop_engine.streaming import (
    LF_DELIMITERS,
    SSEFrameBuffer,
    StreamedResponse,
    frame_data,
)
from agent_loop_engine.tools.executor import ToolExecutor
from agent_loop_engine.types import (
    AgentStatus,
    HeadlessResult,
    Message,
    ToolDefinition,
    ToolResult,
)
from agent_loop_engine.usage import UsageTracker

logger = get_logger("providers")


@dataclass
class HttpRequestSpec:
    """A vendor request ready to hand to httpx."""

    url: str
    headers: dict[str, str] = field(default_factory=dict)
    json: dict[str, Any] = field(default_factory=dict)


class ProtocolNormalizer(ABC):
    """
    Decodes one vendor's SSE frames into mutations of a ``StreamedResponse``.

    A frame that is not valid JSON, or whose payload has an unexpected
    shape, is logged and skipped; it never aborts the round.
    """

    def __init__(self, response: StreamedResponse) -> None:
        self.response = response

    def process_frame(self, frame: str) -> list[StreamEvent]:
        data = frame_data(frame)
        if data is None or not data.strip():
            return []
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning("Skipping malformed stream frame: %s", e)
            return []
        if not isinstance(payload, dict):
            logger.debug("Skipping non-object stream payload")
            return []
        try:
            return self.handle_payload(payload)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Skipping stream event with unexpected shape: %s", e)
            return []

    @abstractmethod
    def handle_payload(self, payload: dict[str, Any]) -> list[StreamEvent]:
        """Apply one decoded event and return the live events it produced."""


def build_system_prompt(
    app_prompt: str | None,
    prompts: PromptsConfig,
    custom_prompt: str | None = None,
    memory: str | None = None,
) -> str:
    """Join app default, project memory, pre, custom and post with blank lines."""
    parts = [app_prompt, memory, prompts.pre, custom_prompt, prompts.post]
    return "\n\n".join(p for p in parts if p)


class ProviderAdapter(ABC):
    """
    Base class for vendor adapters.

    Subclasses set ``name``, ``frame_delimiters`` and ``default_api_key_env``
    and implement the conversion and wire hooks below.
    """

    name: str = ""
    frame_delimiters: tuple[str, ...] = LF_DELIMITERS
    default_api_key_env: str = ""

    def __init__(
        self,
        settings: AgentSettings,
        prompts: PromptsConfig | None = None,
        execution: ExecutionConfig | None = None,
        project_path: Path | str | None = None,
        app_system_prompt: str | None = DEFAULT_SYSTEM_PROMPT,
        extraction_prompt: str | None = None,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.prompts = prompts or PromptsConfig()
        self.execution = execution or ExecutionConfig()
        self.project_path = Path(project_path) if project_path is not None else Path.cwd()
        self.app_system_prompt = app_system_prompt
        self.extraction_prompt = extraction_prompt
        self.api_key = api_key or self._resolve_api_key()
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.execution.timeout_secs, connect=30.0)
        )

    def _resolve_api_key(self) -> str:
        key = self.settings.resolve_api_key(self.default_api_key_env)
        if not key:
            raise MissingCredential(self.settings.api_key_env or self.default_api_key_env)
        return key

    @property
    def model(self) -> str:
        return self.settings.model

    async def aclose(self) -> None:
        await self.client.aclose()

    # -- conversation representation -------------------------------------------

    @abstractmethod
    def to_native(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        """Convert vendor-neutral history into this vendor's message list."""

    @abstractmethod
    def append_assistant_response(
        self, conversation: list[dict[str, Any]], response: StreamedResponse
    ) -> None:
        """Append the model's turn (text and tool calls) to the native history."""

    @abstractmethod
    def append_tool_results(
        self, conversation: list[dict[str, Any]], results: list[ToolResult]
    ) -> None:
        """Append one message answering every tool call of the previous turn."""

    # -- wire -----------------------------------------------------------------------

    @abstractmethod
    def build_stream_request(
        self,
        conversation: list[dict[str, Any]],
        system_prompt: str | None,
        tools: list[ToolDefinition],
    ) -> HttpRequestSpec: ...

    @abstractmethod
    def create_normalizer(self, response: StreamedResponse) -> ProtocolNormalizer: ...

    @abstractmethod
    def decode_error_envelope(self, body: str) -> str | None:
        """Human-readable message from an error response body, if decodable."""

    @abstractmethod
    async def call_extraction(self, prompt: str, cancel: CancellationToken) -> str:
        """Single non-streaming call used for compaction; returns the reply text."""

    # -- shared mechanics -----------------------------------------------------------

    def build_system_prompt(
        self, custom_prompt: str | None = None, memory: str | None = None
    ) -> str:
        return build_system_prompt(self.app_system_prompt, self.prompts, custom_prompt, memory)

    async def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        body = (await response.aread()).decode("utf-8", errors="replace")
        message = self.decode_error_envelope(body) or f"{response.status_code}: {body}"
        logger.warning("%s rejected request: %s", self.name, message)
        raise VendorRejected(message, status_code=response.status_code)

    async def stream_round(
        self,
        conversation: list[dict[str, Any]],
        system_prompt: str | None,
        tools: list[ToolDefinition],
        cancel: CancellationToken,
        on_event: StreamHandler | None = None,
    ) -> StreamedResponse:
        """
        One streaming request/response round.

        Cancellation is checked before the request and raced against the
        connection and every chunk read.
        """
        cancel.raise_if_cancelled()
        spec = self.build_stream_request(conversation, system_prompt, tools)
        result = StreamedResponse()
        normalizer = self.create_normalizer(result)
        buffer = SSEFrameBuffer(self.frame_delimiters)

        async def deliver(frame: str) -> None:
            for event in normalizer.process_frame(frame):
                if on_event is not None:
                    await on_event(event, result)

        request = self.client.build_request("POST", spec.url, headers=spec.headers, json=spec.json)
        logger.debug("%s: POST %s%s", self.name, request.url.host, request.url.path)
        try:
            http_response = await cancel.race(self.client.send(request, stream=True))
        except httpx.HTTPError as e:
            raise TransportError(str(e) or type(e).__name__) from e

        try:
            await self._raise_for_status(http_response)
            chunks = http_response.aiter_bytes()
            while True:
                try:
                    chunk = await cancel.race(chunks.__anext__())
                except StopAsyncIteration:
                    break
                for frame in buffer.feed(chunk):
                    await deliver(frame)
            if buffer.pending.strip():
                await deliver(buffer.pending)
        except httpx.HTTPError as e:
            raise TransportError(str(e) or type(e).__name__) from e
        finally:
            await http_response.aclose()

        result.finish()
        logger.debug(
            "%s round done: %d blocks, stop_reason=%s, usage=%s",
            self.name,
            result.block_count(),
            result.stop_reason,
            result.usage,
        )
        return result

    async def send_message(
        self,
        messages: Sequence[Message],
        session: SessionState,
        cancel: CancellationToken,
        executor: ToolExecutor,
        usage_tracker: UsageTracker,
        reporter: LoopReporter,
        tools: list[ToolDefinition],
        custom_prompt: str | None = None,
        memory: ProjectMemory | None = None,
    ) -> LoopOutcome:
        """
        Top-level run with UI reporting.

        Emits exactly one terminal event (complete, cancelled or error) and
        re-raises any failure after reporting it.
        """
        try:
            await reporter.status(AgentStatus.SENDING)
            system = self.build_system_prompt(
                custom_prompt, memory.format_for_injection() if memory else None
            )

            history = list(messages)
            compaction = await maybe_compact(
                history,
                system,
                session,
                lambda prompt: self.call_extraction(prompt, cancel),
                context_limit=self.settings.get_context_limit(),
                extraction_prompt=self.extraction_prompt,
                reporter=reporter,
            )
            if compaction is not None:
                history = compaction.apply()

            outcome = await run_tool_loop(
                self,
                self.to_native(history),
                system,
                tools,
                executor,
                session,
                cancel,
                max_iterations=self.execution.max_tool_iterations,
                usage_tracker=usage_tracker,
                reporter=reporter,
            )
        except Cancelled as e:
            logger.info("Run cancelled")
            await reporter.cancelled(e.reason)
            await reporter.status(AgentStatus.CANCELLED)
            raise
        except AgentError as e:
            logger.error("Run failed: %s", e)
            await reporter.error(str(e))
            await reporter.status(AgentStatus.ERROR, str(e))
            raise
        except Exception as e:
            logger.exception("Run failed unexpectedly")
            await reporter.error(str(e) or type(e).__name__)
            await reporter.status(AgentStatus.ERROR, str(e))
            raise

        await reporter.complete(outcome.message_id, outcome.stop_reason)
        await reporter.status(AgentStatus.IDLE)
        return outcome

    async def run_headless(
        self,
        messages: Sequence[Message],
        system_prompt: str | None,
        tools: list[ToolDefinition],
        session: SessionState,
        cancel: CancellationToken,
        executor: ToolExecutor,
        usage_tracker: UsageTracker,
        reporter: LoopReporter | None = None,
    ) -> HeadlessResult:
        """Run the loop without UI events and return the accumulated text."""
        system = self.build_system_prompt(system_prompt)
        outcome = await run_tool_loop(
            self,
            self.to_native(messages),
            system,
            tools,
            executor,
            session,
            cancel,
            max_iterations=self.execution.max_tool_iterations,
            usage_tracker=usage_tracker,
            reporter=reporter,
        )
        return HeadlessResult(text=outcome.text, tool_calls_made=outcome.iterations)
