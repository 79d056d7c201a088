"""CLI entrypoint for scenario-generate."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Optional

import typer

if __package__ in {None, ""}:
    current_file = Path(__file__).resolve()
    package_root = current_file.parents[1]
    apps_dir = current_file.parents[2]
    extra_paths = [package_root, apps_dir / "agent-stream", apps_dir / "scenario-pack"]
    for candidate in extra_paths:
        candidate_str = str(candidate)
        if candidate_str not in sys.path and candidate.exists():
            sys.path.insert(0, candidate_str)
    __package__ = "scenario_generator"

from agent_stream.bridge import WORKSPACE_CWD_ENV, BridgeClient
from agent_stream.console_reporter import ConsoleReporter
from agent_stream.errors import TurnError
from agent_stream.events import StreamEvent
from agent_stream.logging_utils import configure_logging
from agent_stream.output_config import get_output_format, log_format_for
from scenario_pack.baseline import load_baseline
from scenario_pack.bundle import load_pack
from scenario_pack.coverage import CoverageValidator, load_rules

from .builder import GenerationRequest, ScenarioPackBuilder
from .prompts import PromptLibrary
from .sources import load_sources

app = typer.Typer(help="Generate a scenario pack through an agent turn.")

DEFAULT_OUTPUT_DIR = Path("artifacts/scenario-packs")


@app.command()
def generate(
    project: str = typer.Option(..., help="Project name recorded on the pack."),
    source: list[Path] = typer.Option(
        [],
        "--source",
        "-s",
        exists=True,
        readable=True,
        dir_okay=False,
        help="Planning/spec/task files quoted into the prompt (first 12 are used).",
    ),
    source_root: Optional[Path] = typer.Option(None, help="Directory source paths are reported relative to."),
    repository: Optional[str] = typer.Option(None, help="Repository name, e.g. owner/repo."),
    branch: Optional[str] = typer.Option(None, help="Branch the scenarios target."),
    head_commit: Optional[str] = typer.Option(None, help="Head commit SHA the scenarios target."),
    baseline: Optional[Path] = typer.Option(None, help="Code baseline YAML/JSON used for coverage rules."),
    parent_pack: Optional[Path] = typer.Option(
        None,
        help="Existing pack (YAML or bundle dir); switches the turn to update mode.",
    ),
    instruction: Optional[str] = typer.Option(None, help="Free-form instruction appended to the prompt."),
    prompt_library: Optional[Path] = typer.Option(None, help="Optional prompt YAML overriding models/paths/instructions."),
    coverage_rules: Optional[Path] = typer.Option(None, help="Optional YAML/JSON replacing the edge-bucket rules."),
    output_dir: Path = typer.Option(DEFAULT_OUTPUT_DIR, help="Destination directory for pack bundles."),
    bridge_url: Optional[str] = typer.Option(None, help="Agent bridge base URL. Overrides SCENARIO_BRIDGE_URL."),
    log_level: str = typer.Option("info", help="Log level for stderr diagnostics."),
    output_format: Optional[str] = typer.Option(
        None,
        "--output-format",
        help="Console format: auto, rich, plain, json. Overrides CONSOLE_OUTPUT_FORMAT.",
    ),
) -> None:
    """Run a generation turn and write the resulting pack bundle."""

    console_format = get_output_format(output_format)
    configure_logging(log_level, log_format_for(console_format))
    reporter = ConsoleReporter(console_format)

    try:
        code_baseline = load_baseline(baseline)
        validator = CoverageValidator(load_rules(coverage_rules) if coverage_rules else None)
        parent = load_pack(parent_pack) if parent_pack else None
        prompts = PromptLibrary.from_file(prompt_library)
    except (FileNotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    request = GenerationRequest(
        project=project,
        sources=load_sources(list(source), source_root),
        repository=repository or (parent.repository if parent else None),
        branch=branch or (parent.branch if parent else None),
        head_commit=head_commit,
        baseline=code_baseline,
        parent=parent,
        user_instruction=instruction,
    )

    def observe(event_name: str, payload: Any) -> None:
        reporter.report_event(StreamEvent.from_frame(event_name, payload))

    try:
        builder = ScenarioPackBuilder(
            client=BridgeClient(bridge_url),
            prompt_library=prompts,
            validator=validator,
            observer=observe,
            workspace_cwd=os.getenv(WORKSPACE_CWD_ENV) or None,
        )
        reporter.start_turn("generate", project)
        pack = builder.generate(request)
    except TurnError as exc:
        reporter.stop()
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    bundle_dir = builder.write_bundle(pack, output_dir)
    reporter.finish_turn(
        f"Pack {pack.pack_id} generated",
        {"scenarios": len(pack.scenarios), "gaps": len(pack.coverage.uncovered_gaps)},
        failed=False,
    )
    typer.secho(f"Scenario pack created -> {bundle_dir}", fg=typer.colors.GREEN)


def run() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
