"""Project memory: the AGENTS.md file injected into top-level system prompts."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from agent_loop_engine.logging import get_logger

logger = get_logger("memory")

MEMORY_FILENAME = "AGENTS.md"
MAX_CHAR_COUNT = 50_000


@dataclass
class ProjectMemory:
    """Loaded contents of ``<project>/AGENTS.md``, if any."""

    content: str | None = None
    path: Path | None = None
    truncated: bool = False
    last_modified: float | None = None

    @classmethod
    def load(cls, project_path: Path | str) -> ProjectMemory:
        """Read the memory file. A missing or unreadable file yields empty memory."""
        file_path = Path(project_path) / MEMORY_FILENAME
        if not file_path.is_file():
            return cls()
        try:
            last_modified = file_path.stat().st_mtime
            content = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Cannot read %s: %s", file_path, e)
            return cls()

        truncated = len(content) > MAX_CHAR_COUNT
        if truncated:
            content = (
                content[:MAX_CHAR_COUNT]
                + f"\n\n[Content truncated at {MAX_CHAR_COUNT} characters]"
            )
            logger.info("%s truncated to %d characters", MEMORY_FILENAME, MAX_CHAR_COUNT)
        return cls(
            content=content,
            path=file_path,
            truncated=truncated,
            last_modified=last_modified,
        )

    @property
    def is_loaded(self) -> bool:
        return self.content is not None

    def reload_if_changed(self, project_path: Path | str) -> bool:
        """Reload when the file's mtime changed or it vanished. Returns True on reload."""
        file_path = Path(project_path) / MEMORY_FILENAME
        if not file_path.is_file():
            if self.content is None:
                return False
            self._replace(ProjectMemory())
            return True
        try:
            current = file_path.stat().st_mtime
        except OSError:
            return False
        if self.last_modified is not None and current == self.last_modified:
            return False
        self._replace(ProjectMemory.load(project_path))
        return True

    def _replace(self, other: ProjectMemory) -> None:
        self.content = other.content
        self.path = other.path
        self.truncated = other.truncated
        self.last_modified = other.last_modified

    def format_for_injection(self) -> str | None:
        if self.content is None:
            return None
        return (
            f'<project-memory source="{MEMORY_FILENAME}">\n'
            f"{self.content}\n"
            "</project-memory>"
        )
