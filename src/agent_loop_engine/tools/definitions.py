"""Known tools and the JSON schemas offered to the model."""
from __future__ import annotations

import copy
from collections.abc import Iterable
from enum import Enum
from typing import Any

from agent_loop_engine.types import ToolDefinition


class ToolName(str, Enum):
    # File & shell
    BASH = "bash"
    READ_FILE = "read_file"
    WRITE_FILE = "write_file"
    EDIT_FILE = "edit_file"
    MULTI_EDIT = "multi_edit"
    LIST_DIRECTORY = "list_directory"
    GLOB = "glob"
    GREP = "grep"
    # Notebook
    NOTEBOOK_READ = "notebook_read"
    NOTEBOOK_EDIT = "notebook_edit"
    # Web
    WEB_FETCH = "web_fetch"
    SEARCH_WEB = "search_web"
    # Task management
    TODO_READ = "todo_read"
    TODO_WRITE = "todo_write"
    DISPATCH_AGENT = "dispatch_agent"
    SUBMIT_PLAN = "submit_plan"

    @classmethod
    def parse(cls, name: str) -> ToolName | None:
        try:
            return cls(name)
        except ValueError:
            return None


# Tools a sub-agent gets when the caller does not choose.
READ_ONLY_TOOLS: tuple[str, ...] = (
    "read_file",
    "list_directory",
    "glob",
    "grep",
    "web_fetch",
    "search_web",
    "todo_read",
)

# Handled by the session-bound executor rather than the external boundary.
SESSION_TOOLS = frozenset(
    {ToolName.TODO_READ, ToolName.TODO_WRITE, ToolName.SUBMIT_PLAN, ToolName.DISPATCH_AGENT}
)


def _obj(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


def _str(description: str) -> dict[str, Any]:
    return {"type": "string", "description": description}


_TOOL_SPECS: list[tuple[str, str, dict[str, Any]]] = [
    (
        "bash",
        "Run a shell command in the project directory and return its combined output.",
        _obj(
            {
                "command": _str("The shell command to execute"),
                "timeout": {"type": "integer", "description": "Timeout in seconds (optional)"},
            },
            ["command"],
        ),
    ),
    (
        "read_file",
        "Read a text file relative to the project root, optionally a line range.",
        _obj(
            {
                "path": _str("Relative path to the file"),
                "offset": {"type": "integer", "description": "Starting line number (optional)"},
                "limit": {"type": "integer", "description": "Number of lines to read (optional)"},
            },
            ["path"],
        ),
    ),
    (
        "write_file",
        "Create or overwrite a file relative to the project root.",
        _obj({"path": _str("Relative path to the file"), "content": _str("Content to write")},
             ["path", "content"]),
    ),
    (
        "edit_file",
        "Replace exact text in a file. Fails if the text is not found.",
        _obj(
            {
                "path": _str("Relative path to the file"),
                "old_text": _str("Text to find"),
                "new_text": _str("Text to replace with"),
                "replace_all": {
                    "type": "boolean",
                    "description": "Replace all occurrences (default: false)",
                },
            },
            ["path", "old_text", "new_text"],
        ),
    ),
    (
        "multi_edit",
        "Apply several exact-text replacements to one file, in order.",
        _obj(
            {
                "path": _str("Relative path to the file"),
                "edits": {
                    "type": "array",
                    "description": "List of edits to apply",
                    "items": _obj(
                        {"old_text": {"type": "string"}, "new_text": {"type": "string"}},
                        ["old_text", "new_text"],
                    ),
                },
            },
            ["path", "edits"],
        ),
    ),
    (
        "list_directory",
        "List the entries of a directory relative to the project root.",
        _obj({"path": _str("Relative path to directory")}, ["path"]),
    ),
    (
        "glob",
        "Find files matching a glob pattern.",
        _obj(
            {
                "pattern": _str("Glob pattern (e.g., **/*.py)"),
                "path": _str("Base directory (optional, defaults to project root)"),
            },
            ["pattern"],
        ),
    ),
    (
        "grep",
        "Search file contents with a regular expression.",
        _obj(
            {
                "pattern": _str("Regex pattern to search for"),
                "path": _str("Directory to search (optional)"),
                "include": _str("File pattern filter (e.g., *.py)"),
            },
            ["pattern"],
        ),
    ),
    (
        "notebook_read",
        "Read the cells of a Jupyter notebook.",
        _obj({"path": _str("Relative path to .ipynb file")}, ["path"]),
    ),
    (
        "notebook_edit",
        "Replace, insert or delete a cell in a Jupyter notebook.",
        _obj(
            {
                "path": _str("Relative path to .ipynb file"),
                "cell_number": {"type": "integer", "description": "Zero-indexed cell position"},
                "new_source": _str("New cell content"),
                "cell_type": {
                    "type": "string",
                    "enum": ["code", "markdown"],
                    "description": "Cell type (required for insert)",
                },
                "edit_mode": {
                    "type": "string",
                    "enum": ["replace", "insert", "delete"],
                    "description": "Edit mode (default: replace)",
                },
            },
            ["path", "cell_number", "new_source"],
        ),
    ),
    (
        "web_fetch",
        "Fetch a URL and return its readable content.",
        _obj({"url": _str("URL to fetch"), "prompt": _str("What to extract from the page")},
             ["url", "prompt"]),
    ),
    (
        "search_web",
        "Search the web and return result titles, URLs and snippets.",
        _obj(
            {
                "query": _str("Search query"),
                "allowed_domains": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Only include these domains",
                },
                "blocked_domains": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Exclude these domains",
                },
            },
            ["query"],
        ),
    ),
    (
        "todo_read",
        "Read the current session todo list.",
        _obj({}, []),
    ),
    (
        "todo_write",
        "Replace the session todo list.",
        _obj(
            {
                "todos": {
                    "type": "array",
                    "description": "Task list",
                    "items": _obj(
                        {
                            "id": {"type": "string"},
                            "content": {"type": "string"},
                            "status": {
                                "type": "string",
                                "enum": ["pending", "in_progress", "completed"],
                            },
                            "priority": {"type": "string", "enum": ["high", "medium", "low"]},
                        },
                        ["id", "content", "status", "priority"],
                    ),
                }
            },
            ["todos"],
        ),
    ),
    (
        "dispatch_agent",
        "Hand a self-contained task to a sub-agent and get back its final answer.",
        _obj(
            {
                "task": _str("Detailed task for the sub-agent to complete"),
                "agent_type": _str("Agent type to use (default: explore)"),
                "tools": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Override allowed tools for the agent (optional)",
                },
            },
            ["task"],
        ),
    ),
    (
        "submit_plan",
        "Submit an implementation plan for user approval before making changes.",
        _obj({"plan": _str("Markdown-formatted plan")}, ["plan"]),
    ),
]


def get_tool_definitions() -> list[ToolDefinition]:
    """Return fresh definitions for every known tool."""
    return [
        ToolDefinition(name=name, description=description, input_schema=copy.deepcopy(schema))
        for name, description, schema in _TOOL_SPECS
    ]


def filter_tool_definitions(allowed: Iterable[str]) -> list[ToolDefinition]:
    """Definitions whose names are in ``allowed``, in canonical order."""
    allowed_set = set(allowed)
    return [t for t in get_tool_definitions() if t.name in allowed_set]
