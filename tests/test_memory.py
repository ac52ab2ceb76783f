"""Tests for AGENTS.md project memory."""

from __future__ import annotations

import os
from pathlib import Path

from agent_loop_engine.memory import MAX_CHAR_COUNT, MEMORY_FILENAME, ProjectMemory


class TestProjectMemory:
    def test_missing_file(self, tmp_path: Path) -> None:
        memory = ProjectMemory.load(tmp_path)
        assert not memory.is_loaded
        assert memory.format_for_injection() is None

    def test_load(self, tmp_path: Path) -> None:
        (tmp_path / MEMORY_FILENAME).write_text("Use tabs.")

        memory = ProjectMemory.load(tmp_path)

        assert memory.content == "Use tabs."
        assert not memory.truncated
        assert memory.format_for_injection() == (
            '<project-memory source="AGENTS.md">\nUse tabs.\n</project-memory>'
        )

    def test_truncates_large_file(self, tmp_path: Path) -> None:
        (tmp_path / MEMORY_FILENAME).write_text("a" * (MAX_CHAR_COUNT + 10))

        memory = ProjectMemory.load(tmp_path)

        assert memory.truncated
        assert memory.content.endswith(f"[Content truncated at {MAX_CHAR_COUNT} characters]")
        assert memory.content.startswith("a" * MAX_CHAR_COUNT + "\n\n")

    def test_reload_on_change(self, tmp_path: Path) -> None:
        path = tmp_path / MEMORY_FILENAME
        path.write_text("v1")
        memory = ProjectMemory.load(tmp_path)

        assert not memory.reload_if_changed(tmp_path)

        path.write_text("v2")
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))

        assert memory.reload_if_changed(tmp_path)
        assert memory.content == "v2"

    def test_reload_picks_up_new_file(self, tmp_path: Path) -> None:
        memory = ProjectMemory.load(tmp_path)
        (tmp_path / MEMORY_FILENAME).write_text("new")

        assert memory.reload_if_changed(tmp_path)
        assert memory.content == "new"

    def test_reload_after_delete(self, tmp_path: Path) -> None:
        path = tmp_path / MEMORY_FILENAME
        path.write_text("gone soon")
        memory = ProjectMemory.load(tmp_path)
        path.unlink()

        assert memory.reload_if_changed(tmp_path)
        assert not memory.is_loaded
        assert not memory.reload_if_changed(tmp_path)
