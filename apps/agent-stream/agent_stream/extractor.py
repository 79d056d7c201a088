"""Turns a terminal result into parsed artifact data."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Optional

from .errors import EmptyArtifactError, MalformedArtifactError

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*([\s\S]*?)\s*```$", re.IGNORECASE)


@dataclass(frozen=True)
class TurnResult:
    """Bridge turn metadata plus the artifact parsed from its response text."""

    response_text: str
    artifact: Any
    model: Optional[str] = None
    cwd: Optional[str] = None
    thread_id: Optional[str] = None
    turn_id: Optional[str] = None
    turn_status: Optional[str] = None
    skill_requested: Optional[str] = None
    skill_available: bool = False
    skill_used: Optional[str] = None
    skill_path: Optional[str] = None
    completed_at: Optional[str] = None


def response_text(result: Any) -> str:
    """Raw agent text of a terminal result.

    Prefers ``responseText``; a non-string ``output`` field is serialized to JSON.
    """

    if isinstance(result, str):
        return result
    if not isinstance(result, dict):
        return ""
    text = result.get("responseText")
    if isinstance(text, str) and text.strip():
        return text
    output = result.get("output")
    if isinstance(output, str):
        return output
    if output is not None:
        return json.dumps(output, ensure_ascii=False)
    return ""


def strip_fence(text: str) -> str:
    """Remove exactly one fenced code-block wrapper around the whole text."""

    match = _FENCE_PATTERN.match(text)
    return match.group(1).strip() if match else text


def parse_artifact_text(raw: str) -> Any:
    trimmed = raw.strip()
    if not trimmed:
        raise EmptyArtifactError("Agent turn returned an empty response payload.")
    candidate = strip_fence(trimmed)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise MalformedArtifactError(
            f"Agent turn response was not valid JSON (line {exc.lineno}, column {exc.colno}: {exc.msg})."
        ) from exc


def extract_turn(result: Any) -> TurnResult:
    text = response_text(result)
    artifact = parse_artifact_text(text)
    meta = result if isinstance(result, dict) else {}
    return TurnResult(
        response_text=text.strip(),
        artifact=artifact,
        model=_optional_text(meta.get("model")),
        cwd=_optional_text(meta.get("cwd")),
        thread_id=_optional_text(meta.get("threadId")),
        turn_id=_optional_text(meta.get("turnId")),
        turn_status=_optional_text(meta.get("turnStatus")),
        skill_requested=_optional_text(meta.get("skillRequested")),
        skill_available=bool(meta.get("skillAvailable", False)),
        skill_used=_optional_text(meta.get("skillUsed")),
        skill_path=_optional_text(meta.get("skillPath")),
        completed_at=_optional_text(meta.get("completedAt")),
    )


def _optional_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None
