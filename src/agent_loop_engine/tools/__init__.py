"""Tool enumeration, schemas and the execution boundary."""

from agent_loop_engine.tools.definitions import (
    READ_ONLY_TOOLS,
    SESSION_TOOLS,
    ToolName,
    filter_tool_definitions,
    get_tool_definitions,
)
from agent_loop_engine.tools.executor import (
    MAX_OUTPUT_SIZE,
    TRUNCATION_MARKER,
    SessionToolExecutor,
    ToolExecutor,
    truncate_output,
)

__all__ = [
    "MAX_OUTPUT_SIZE",
    "READ_ONLY_TOOLS",
    "SESSION_TOOLS",
    "TRUNCATION_MARKER",
    "SessionToolExecutor",
    "ToolExecutor",
    "ToolName",
    "filter_tool_definitions",
    "get_tool_definitions",
    "truncate_output",
]
