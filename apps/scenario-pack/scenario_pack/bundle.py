"""Scenario pack bundle files on disk."""

from __future__ import annotations

import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import ScenarioPack

PACK_FILENAME = "scenario-pack.yaml"
MARKDOWN_FILENAME = "scenarios.md"


def bundle_directory(output_dir: Path, pack: ScenarioPack) -> Path:
    return output_dir / slugify(pack.project) / pack.pack_id


def write_pack_bundle(pack: ScenarioPack, output_dir: Path) -> Path:
    """Write ``<output>/<project-slug>/<pack-id>/`` with the pack YAML and its markdown."""

    bundle_dir = bundle_directory(output_dir, pack)
    bundle_dir.mkdir(parents=True, exist_ok=True)
    (bundle_dir / PACK_FILENAME).write_text(
        yaml.safe_dump(pack.as_serializable(), sort_keys=False, allow_unicode=True),
        encoding="utf-8",
    )
    (bundle_dir / MARKDOWN_FILENAME).write_text(pack.scenarios_markdown, encoding="utf-8")
    return bundle_dir


def load_pack(path: Path) -> ScenarioPack:
    """Load and validate a pack from its YAML file or bundle directory."""

    if path.is_dir():
        path = path / PACK_FILENAME
    if not path.exists():
        raise FileNotFoundError(f"Scenario pack {path} not found")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Scenario pack file {path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Scenario pack file {path} must contain a mapping")
    try:
        return ScenarioPack.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Scenario pack file {path} is invalid: {exc}") from exc


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", value).strip("-")
    return slug.lower() or "item"
