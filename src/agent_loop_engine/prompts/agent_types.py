"""
Sub-agent type registry.

Each type is a Markdown prompt under ``prompts/agents/`` with YAML
frontmatter naming its tools:

    ---
    id: explore
    name: Explore
    description: Fast codebase exploration
    tools: [read_file, glob, grep]
    no_tools: false
    ---
    You are a file search specialist...

Prompts may reference ``{ALLOWED_TOOLS}``, ``{PROJECT_PATH}``,
``{CURRENT_DATE}``, ``{TOOL:name}`` and ``{AGENT:id}``; see
``interpolate_prompt``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from importlib import resources

import yaml

from agent_loop_engine.logging import get_logger

logger = get_logger("prompts.agent_types")

DEFAULT_AGENT_TYPE = "explore"

_TOOL_PATTERN = re.compile(r"\{TOOL:(\w+)\}")
_AGENT_PATTERN = re.compile(r"\{AGENT:(\w+)\}")


@dataclass(frozen=True)
class AgentType:
    """A sub-agent flavor: prompt and tool allow-list."""

    id: str
    name: str
    description: str
    prompt: str
    allowed_tools: tuple[str, ...] = field(default_factory=tuple)
    no_tools: bool = False  # text processing only


def parse_agent_file(text: str, fallback_id: str) -> AgentType:
    """Parse a prompt file with optional YAML frontmatter."""
    meta: dict = {}
    content = text
    if text.startswith("---"):
        parts = text.split("---", 2)
        if len(parts) >= 3:
            content = parts[2].strip()
            try:
                meta = yaml.safe_load(parts[1]) or {}
            except yaml.YAMLError as e:
                logger.warning("Invalid frontmatter in agent prompt %s: %s", fallback_id, e)
                meta = {}

    agent_id = str(meta.get("id") or fallback_id)
    return AgentType(
        id=agent_id,
        name=str(meta.get("name") or agent_id),
        description=str(meta.get("description") or ""),
        prompt=content.strip(),
        allowed_tools=tuple(str(t) for t in meta.get("tools") or ()),
        no_tools=bool(meta.get("no_tools", False)),
    )


@lru_cache(maxsize=1)
def _registry() -> dict[str, AgentType]:
    agents_dir = resources.files("agent_loop_engine.prompts").joinpath("agents")
    registry: dict[str, AgentType] = {}
    for entry in sorted(agents_dir.iterdir(), key=lambda p: p.name):
        if not entry.name.endswith(".md"):
            continue
        agent = parse_agent_file(
            entry.read_text(encoding="utf-8"), entry.name[:-3].replace("_", "-")
        )
        registry[agent.id] = agent
    logger.debug("Loaded %d agent types", len(registry))
    return registry


def get_agent_type(agent_id: str) -> AgentType | None:
    return _registry().get(agent_id)


def get_default_agent_type() -> AgentType:
    return _registry()[DEFAULT_AGENT_TYPE]


def resolve_agent_type(agent_id: str | None) -> AgentType:
    """Look up ``agent_id``, falling back to the default type."""
    if agent_id is None:
        return get_default_agent_type()
    agent = get_agent_type(agent_id)
    if agent is None:
        logger.warning(
            "Unknown agent type '%s', falling back to '%s'", agent_id, DEFAULT_AGENT_TYPE
        )
        return get_default_agent_type()
    return agent


def get_all_agent_types() -> list[AgentType]:
    return list(_registry().values())


def get_agent_types_description() -> str:
    """Bullet list of types, for tool descriptions and help text."""
    return "".join(f"- `{a.id}`: {a.description}\n" for a in get_all_agent_types())


def interpolate_prompt(
    prompt: str,
    allowed_tools: list[str] | tuple[str, ...],
    project_path: str | None = None,
) -> str:
    result = prompt.replace("{ALLOWED_TOOLS}", ", ".join(allowed_tools))
    if project_path is not None:
        result = result.replace("{PROJECT_PATH}", project_path)
    result = result.replace(
        "{CURRENT_DATE}", datetime.now(timezone.utc).strftime("%Y-%m-%d")
    )
    result = _TOOL_PATTERN.sub(lambda m: m.group(1), result)
    result = _AGENT_PATTERN.sub(lambda m: m.group(1), result)
    return result
