"""
Agent Loop Engine - a provider-agnostic tool-use orchestration engine for coding agents.

The engine turns a user request into model round-trips interleaved with tool
execution. It streams partial output to the caller, supports mid-run
cancellation and plan approval, compacts long histories and dispatches
depth-limited sub-agents. Anthropic and Gemini are supported out of the box.

Example:
    from agent_loop_engine import AGENT_CHUNK, AgentService

    service = AgentService(external=my_tool_executor)
    service.bus.on(AGENT_CHUNK, lambda e: print(e.delta, end=""))

    outcome = await service.send_message(
        "/path/to/project",
        [{"role": "user", "content": "Find where the config is parsed"}],
    )
"""

from agent_loop_engine.cancellation import CancellationToken
from agent_loop_engine.compaction import (
    CompactionResult,
    estimate_context_size,
    estimate_tokens,
    format_compacted_context,
    maybe_compact,
    merge_compacted_contexts,
    should_compact,
    split_messages_for_compaction,
)
from agent_loop_engine.config import (
    AgentSettings,
    ExecutionConfig,
    ProjectConfig,
    PromptsConfig,
)
from agent_loop_engine.errors import (
    AgentError,
    Cancelled,
    ConfigurationInvalid,
    InvalidToolInput,
    IterationLimitExceeded,
    MissingCredential,
    RunInProgress,
    ToolError,
    ToolExecutionFailed,
    ToolTimedOut,
    TransportError,
    UnknownTool,
    UnsupportedProvider,
    VendorRejected,
    is_recoverable,
)
from agent_loop_engine.events import (
    AGENT_BLOCK_START,
    AGENT_CANCELLED,
    AGENT_CHUNK,
    AGENT_COMPACTION,
    AGENT_COMPACTION_WARNING,
    AGENT_COMPLETE,
    AGENT_ERROR,
    AGENT_PLAN_READY,
    AGENT_STATUS,
    AGENT_TOOL_END,
    AGENT_TOOL_INPUT,
    AGENT_TOOL_START,
    AGENT_USAGE,
    EventBus,
    StreamEvent,
)
from agent_loop_engine.logging import get_logger, setup_logging
from agent_loop_engine.loop import LoopOutcome, execute_tool_calls, run_tool_loop
from agent_loop_engine.memory import ProjectMemory
from agent_loop_engine.providers import (
    AnthropicAdapter,
    GeminiAdapter,
    ProviderAdapter,
    create_provider_adapter,
)
from agent_loop_engine.reporting import EventReporter, LoopReporter, UsageReporter
from agent_loop_engine.service import AgentService
from agent_loop_engine.session import AgentRunState, PlanApproval, SessionState
from agent_loop_engine.streaming import SSEFrameBuffer, StreamedResponse, StreamingState
from agent_loop_engine.subagent import SubagentDispatcher
from agent_loop_engine.tools import (
    READ_ONLY_TOOLS,
    SessionToolExecutor,
    ToolExecutor,
    ToolName,
    get_tool_definitions,
)
from agent_loop_engine.types import (
    AgentStatus,
    CompactedContext,
    CompactedFact,
    FactCategory,
    HeadlessResult,
    Message,
    MessageRole,
    TextBlock,
    TodoItem,
    ToolCall,
    ToolDefinition,
    ToolResult,
    ToolResultBlock,
    ToolUseBlock,
)
from agent_loop_engine.usage import TokenUsage, UsageSource, UsageTotals, UsageTracker

__version__ = "0.1.0"

__all__ = [
    # Service
    "AgentService",
    # Providers
    "AnthropicAdapter",
    "GeminiAdapter",
    "ProviderAdapter",
    "create_provider_adapter",
    # Loop
    "LoopOutcome",
    "LoopReporter",
    "EventReporter",
    "UsageReporter",
    "execute_tool_calls",
    "run_tool_loop",
    # Sub-agents
    "SubagentDispatcher",
    # Compaction
    "CompactionResult",
    "estimate_context_size",
    "estimate_tokens",
    "format_compacted_context",
    "maybe_compact",
    "merge_compacted_contexts",
    "should_compact",
    "split_messages_for_compaction",
    # State
    "AgentRunState",
    "CancellationToken",
    "PlanApproval",
    "SessionState",
    "TokenUsage",
    "UsageSource",
    "UsageTotals",
    "UsageTracker",
    # Streaming
    "SSEFrameBuffer",
    "StreamedResponse",
    "StreamingState",
    # Tools
    "READ_ONLY_TOOLS",
    "SessionToolExecutor",
    "ToolExecutor",
    "ToolName",
    "get_tool_definitions",
    # Types
    "AgentStatus",
    "CompactedContext",
    "CompactedFact",
    "FactCategory",
    "HeadlessResult",
    "Message",
    "MessageRole",
    "TextBlock",
    "TodoItem",
    "ToolCall",
    "ToolDefinition",
    "ToolResult",
    "ToolResultBlock",
    "ToolUseBlock",
    # Config
    "AgentSettings",
    "ExecutionConfig",
    "ProjectConfig",
    "PromptsConfig",
    "ProjectMemory",
    # Events
    "AGENT_BLOCK_START",
    "AGENT_CANCELLED",
    "AGENT_CHUNK",
    "AGENT_COMPACTION",
    "AGENT_COMPACTION_WARNING",
    "AGENT_COMPLETE",
    "AGENT_ERROR",
    "AGENT_PLAN_READY",
    "AGENT_STATUS",
    "AGENT_TOOL_END",
    "AGENT_TOOL_INPUT",
    "AGENT_TOOL_START",
    "AGENT_USAGE",
    "EventBus",
    "StreamEvent",
    # Errors
    "AgentError",
    "Cancelled",
    "ConfigurationInvalid",
    "InvalidToolInput",
    "IterationLimitExceeded",
    "MissingCredential",
    "RunInProgress",
    "ToolError",
    "ToolExecutionFailed",
    "ToolTimedOut",
    "TransportError",
    "UnknownTool",
    "UnsupportedProvider",
    "VendorRejected",
    "is_recoverable",
    # Logging
    "get_logger",
    "setup_logging",
]
