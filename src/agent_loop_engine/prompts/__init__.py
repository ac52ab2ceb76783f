"""
Bundled prompt text.

The application system prompt and the compaction extraction template ship as
Markdown files next to this module; sub-agent prompts live in ``agents/``.
"""

from __future__ import annotations

from importlib import resources


def read_prompt(name: str) -> str:
    """Read a bundled prompt file, e.g. ``read_prompt("extraction_prompt.md")``."""
    return resources.files(__name__).joinpath(name).read_text(encoding="utf-8")


DEFAULT_SYSTEM_PROMPT = read_prompt("default_system_prompt.md").strip()
DEFAULT_EXTRACTION_PROMPT = read_prompt("extraction_prompt.md").strip()

__all__ = ["DEFAULT_EXTRACTION_PROMPT", "DEFAULT_SYSTEM_PROMPT", "read_prompt"]
