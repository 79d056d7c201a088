"""Local planning/spec sources quoted into the generation prompt."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import structlog

LOGGER = structlog.get_logger("scenario_generator")

MAX_PROMPT_SOURCES = 12
MAX_SOURCE_CHARS = 2400
TRUNCATION_MARKER = "\n... [truncated]"


@dataclass(frozen=True)
class LoadedSource:
    path: str
    content: str
    last_modified_at: str | None = None


def load_sources(paths: list[Path], root: Path | None = None) -> list[LoadedSource]:
    """Read up to ``MAX_PROMPT_SOURCES`` files; unreadable files keep an empty body."""

    if len(paths) > MAX_PROMPT_SOURCES:
        LOGGER.warning("sources_capped", requested=len(paths), kept=MAX_PROMPT_SOURCES)
    loaded: list[LoadedSource] = []
    for path in paths[:MAX_PROMPT_SOURCES]:
        display = _display_path(path, root)
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
            modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc).isoformat()
        except OSError as exc:
            LOGGER.warning("source_unreadable", path=display, error=str(exc))
            content, modified = "", None
        loaded.append(LoadedSource(path=display, content=content, last_modified_at=modified))
    return loaded


def truncate(value: str, max_length: int = MAX_SOURCE_CHARS) -> str:
    if len(value) <= max_length:
        return value
    return f"{value[:max_length]}{TRUNCATION_MARKER}"


def recommended_scenario_count(selected_count: int) -> int:
    return max(8, min(24, math.floor(selected_count * 1.7 + 0.5) + 4))


def build_source_section(sources: list[LoadedSource]) -> str:
    if not sources:
        return "No source content could be loaded for the selected sources."

    blocks: list[str] = []
    for index, source in enumerate(sources, start=1):
        content = source.content.strip()
        body = truncate(content) if content else "[content unavailable]"
        blocks.append(
            "\n".join(
                [
                    f"Source {index}: {source.path}",
                    f"Metadata: lastModifiedAt={source.last_modified_at or 'unknown'}",
                    "Content:",
                    "```text",
                    body,
                    "```",
                ]
            )
        )
    return "\n\n".join(blocks)


def _display_path(path: Path, root: Path | None) -> str:
    if root is not None:
        try:
            return path.resolve().relative_to(root.resolve()).as_posix()
        except ValueError:
            pass
    return path.as_posix()
