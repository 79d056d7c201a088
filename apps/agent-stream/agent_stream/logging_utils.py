"""Structured logging helpers shared by the turn pipeline CLIs."""

from __future__ import annotations

import logging
import sys
from io import StringIO
from typing import Any

import structlog
from rich.console import Console
from rich.text import Text

from .output_config import LogFormat

LOGGER_NAME = "scenario_forge"

LEVEL_STYLES = {
    "debug": "dim cyan",
    "info": "cyan",
    "warning": "yellow",
    "error": "bold red",
    "critical": "bold white on red",
}

# Bound turn context rendered ahead of the remaining fields.
CONTEXT_KEYS = ("action", "turn", "run_id", "pack_id")
EVENT_COLUMN = 28


class RichConsoleRenderer:
    """Renders one turn log record as a single Rich-styled line."""

    def __init__(self, width: int = 200) -> None:
        self.width = width

    def __call__(self, logger: Any, name: str, event_dict: dict[str, Any]) -> str:
        level = str(event_dict.pop("level", "info"))
        event = str(event_dict.pop("event", ""))
        exception = event_dict.pop("exception", None)
        event_dict.pop("stack", None)

        line = Text(str(event_dict.pop("timestamp", "")), style="dim white")
        line.append(f" {level.upper():<8} ", style=LEVEL_STYLES.get(level, "white"))

        context = [str(event_dict.pop(key)) for key in CONTEXT_KEYS if key in event_dict]
        if context:
            line.append(f"{'/'.join(context)} ", style="green")
        line.append(event.ljust(EVENT_COLUMN), style="bold white")

        fields = [
            Text.assemble((f"{key}=", "dim white"), (str(value), "bright_cyan"))
            for key, value in sorted(event_dict.items())
        ]
        line.append_text(Text(" ").join(fields))

        buffer = StringIO()
        console = Console(file=buffer, force_terminal=True, width=self.width, legacy_windows=False)
        console.print(line, end="")
        if exception:
            console.print()
            console.print(str(exception), style="red", end="")
        return buffer.getvalue()


def _renderer_for(log_format: LogFormat) -> Any:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    if log_format == "plain":
        return structlog.dev.ConsoleRenderer(colors=False)
    return RichConsoleRenderer()


def configure_logging(log_level: str = "info", log_format: LogFormat = "console") -> structlog.stdlib.BoundLogger:
    """Route structlog records to stderr; stdout is reserved for turn reports."""

    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, stream=sys.stderr, format="%(message)s", force=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.format_exc_info,
            _renderer_for(log_format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger(LOGGER_NAME)
