"""Loading the code-baseline facts a coverage check runs against."""

from __future__ import annotations

import json
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import CodeBaseline


def load_baseline(path: Path | None) -> CodeBaseline | None:
    """Read a YAML/JSON baseline document; ``None`` means no baseline is known."""

    if path is None:
        return None
    if not path.exists():
        raise FileNotFoundError(f"Code baseline {path} not found")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            payload = json.loads(text)
        else:
            payload = yaml.safe_load(text) or {}
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ValueError(f"Code baseline {path} could not be parsed: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Code baseline must deserialize into a mapping")
    try:
        return CodeBaseline.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid code baseline {path}: {exc}") from exc
