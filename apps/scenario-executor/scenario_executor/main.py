"""CLI entrypoint for scenario-execute."""

from __future__ import annotations

import json
import os
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import typer

if __package__ in {None, ""}:
    current_file = Path(__file__).resolve()
    package_root = current_file.parents[1]
    apps_dir = current_file.parents[2]
    extra_paths = [
        package_root,
        apps_dir / "agent-stream",
        apps_dir / "scenario-pack",
        apps_dir / "scenario-generator",
    ]
    for candidate in extra_paths:
        candidate_str = str(candidate)
        if candidate_str not in sys.path and candidate.exists():
            sys.path.insert(0, candidate_str)
    __package__ = "scenario_executor"

from agent_stream.bridge import WORKSPACE_CWD_ENV, BridgeClient
from agent_stream.console_reporter import ConsoleReporter
from agent_stream.errors import TurnError
from agent_stream.events import StreamEvent
from agent_stream.logging_utils import configure_logging
from agent_stream.output_config import get_output_format, log_format_for
from scenario_generator.prompts import PromptLibrary
from scenario_pack.bundle import load_pack

from .runner import ScenarioRunner, select_scenarios

app = typer.Typer(help="Execute a scenario pack through an agent turn.")

DEFAULT_OUTPUT_DIR = Path("artifacts/runs")
EXECUTION_MODES = ("run", "fix", "pr", "full")


def _default_run_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("run-%Y%m%dT%H%M%SZ")
    return f"{stamp}-{uuid.uuid4().hex[:6]}"


def _parse_constraints(raw: Optional[str]) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        constraints = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"Constraints must be a JSON object: {exc.msg}") from exc
    if not isinstance(constraints, dict):
        raise typer.BadParameter("Constraints must be a JSON object")
    return constraints


@app.command()
def execute(
    pack: Path = typer.Option(..., exists=True, help="Scenario pack YAML file or bundle directory."),
    output_dir: Path = typer.Option(DEFAULT_OUTPUT_DIR, help="Directory for run artifacts."),
    run_id: Optional[str] = typer.Option(None, help="Optional run identifier."),
    mode: str = typer.Option("run", help="Execution mode: run, fix, pr or full."),
    scenario: list[str] = typer.Option([], "--scenario", help="Scenario id to execute; repeat for a subset."),
    instruction: Optional[str] = typer.Option(None, help="Free-form instruction appended to the prompt."),
    constraints: Optional[str] = typer.Option(None, help="JSON object of execution constraints."),
    prompt_library: Optional[Path] = typer.Option(None, help="Optional prompt YAML overriding models/paths/instructions."),
    bridge_url: Optional[str] = typer.Option(None, help="Agent bridge base URL. Overrides SCENARIO_BRIDGE_URL."),
    log_level: str = typer.Option("info", help="Log level for stderr diagnostics."),
    output_format: Optional[str] = typer.Option(
        None,
        "--output-format",
        help="Console format: auto, rich, plain, json. Overrides CONSOLE_OUTPUT_FORMAT.",
    ),
) -> None:
    """Run an execution turn and write events, summary and JUnit results."""

    console_format = get_output_format(output_format)
    configure_logging(log_level, log_format_for(console_format))
    reporter = ConsoleReporter(console_format)

    execution_mode = mode.strip().lower()
    if execution_mode not in EXECUTION_MODES:
        raise typer.BadParameter(f"Unsupported execution mode '{mode}'")
    try:
        scenario_pack = load_pack(pack)
        prompts = PromptLibrary.from_file(prompt_library)
    except (FileNotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    def observe(event_name: str, payload: Any) -> None:
        reporter.report_event(StreamEvent.from_frame(event_name, payload))

    try:
        select_scenarios(scenario_pack, scenario)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    try:
        runner = ScenarioRunner(
            pack=scenario_pack,
            client=BridgeClient(bridge_url),
            prompt_library=prompts,
            output_root=output_dir,
            run_id=run_id or _default_run_id(),
            execution_mode=execution_mode,
            scenario_ids=scenario,
            user_instruction=instruction,
            constraints=_parse_constraints(constraints),
            observer=observe,
            workspace_cwd=os.getenv(WORKSPACE_CWD_ENV) or None,
        )
        reporter.start_turn("execute", scenario_pack.pack_id)
        result = runner.run()
    except TurnError as exc:
        reporter.stop()
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    summary = result.summary
    reporter.finish_turn(
        f"Run {result.run_id} {result.status}",
        {"total": summary.total, "passed": summary.passed, "failed": summary.failed, "blocked": summary.blocked},
        failed=summary.failed > 0,
    )
    reporter.print_info(f"Summary written to {result.summary_file}")
    if summary.failed:
        raise typer.Exit(code=1)


def run() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
