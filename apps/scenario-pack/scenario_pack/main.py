"""Entry point for the scenario-normalize application."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Optional

import typer

if __package__ in {None, ""}:
    current_file = Path(__file__).resolve()
    package_root = current_file.parents[1]
    apps_dir = current_file.parents[2]
    for candidate in (package_root, apps_dir / "agent-stream"):
        candidate_str = str(candidate)
        if candidate_str not in sys.path and candidate.exists():
            sys.path.insert(0, candidate_str)
    __package__ = "scenario_pack"

from agent_stream.errors import TurnError
from agent_stream.extractor import extract_turn, parse_artifact_text
from agent_stream.logging_utils import configure_logging
from agent_stream.output_config import get_output_format, log_format_for

from .baseline import load_baseline
from .coverage import CoverageValidator, load_rules
from .normalizers import normalize_generation_artifact

app = typer.Typer(help="Re-validate a saved generation-turn response offline.")


def _read_artifact(path: Path) -> Any:
    """A saved bridge result (``responseText``/``output``) or the raw agent text itself."""

    text = path.read_text(encoding="utf-8")
    try:
        document = json.loads(text)
    except json.JSONDecodeError:
        document = None
    if isinstance(document, dict) and ("responseText" in document or "output" in document):
        return extract_turn(document).artifact
    return parse_artifact_text(text)


@app.command()
def normalize(
    response: Path = typer.Option(
        ...,
        exists=True,
        readable=True,
        help="File holding the agent's raw response text or a saved bridge result JSON.",
    ),
    baseline: Optional[Path] = typer.Option(None, help="Optional code baseline YAML/JSON."),
    coverage_rules: Optional[Path] = typer.Option(None, help="Optional YAML/JSON replacing the edge-bucket rules."),
    output: Optional[Path] = typer.Option(None, help="Write the normalized artifact and findings as JSON."),
    log_level: str = typer.Option("warning", help="Log level for stderr diagnostics."),
    output_format: Optional[str] = typer.Option(
        None,
        "--output-format",
        help="Console format: auto, rich, plain, json. Overrides CONSOLE_OUTPUT_FORMAT.",
    ),
) -> None:
    """Normalize a generation artifact and record its coverage gaps."""

    configure_logging(log_level, log_format_for(get_output_format(output_format)))

    try:
        code_baseline = load_baseline(baseline)
        validator = CoverageValidator(load_rules(coverage_rules) if coverage_rules else None)
    except (FileNotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    try:
        artifact = _read_artifact(response)
        normalized = normalize_generation_artifact(artifact)
    except TurnError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    report = validator.validate(normalized.scenarios, normalized.coverage, code_baseline)

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        document = {
            "scenarios": [scenario.model_dump(mode="json") for scenario in normalized.scenarios],
            "coverage": report.coverage.model_dump(mode="json"),
            "grouped_by_feature": normalized.grouped_by_feature,
            "grouped_by_outcome": normalized.grouped_by_outcome,
            "findings": [finding.model_dump(mode="json") for finding in report.findings],
        }
        with output.open("w", encoding="utf-8") as fp:
            json.dump(document, fp, indent=2, ensure_ascii=False)

    typer.secho(
        f"Normalized {len(normalized.scenarios)} scenarios; {len(report.findings)} coverage findings",
        fg=typer.colors.GREEN,
    )
    for finding in report.findings:
        typer.secho(f"  gap: {finding.gap}", fg=typer.colors.YELLOW)
    if output is not None:
        typer.secho(f"Normalized artifact -> {output}", fg=typer.colors.CYAN)


def run() -> None:
    """CLI entry point for console_scripts."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
