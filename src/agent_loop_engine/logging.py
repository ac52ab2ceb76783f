"""
Logging for the agent loop engine.

Every component logs through a child of the ``agent_loop_engine`` logger,
so a host application tunes the whole engine by configuring that one
logger. The engine itself never installs handlers unless
``setup_logging`` is called (the CLI does so on start-up).
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

ROOT_LOGGER_NAME = "agent_loop_engine"
DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(
    level: str | int = "INFO",
    format: str = DEFAULT_FORMAT,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Send engine logs to ``stream`` (stderr by default) at ``level``.

    Calling it again replaces the previous handler rather than adding one.

    Example:
        from agent_loop_engine.logging import setup_logging

        setup_logging("DEBUG")
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(format))
    root.addHandler(handler)
    return root


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a component, e.g. ``get_logger("loop")``."""
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
