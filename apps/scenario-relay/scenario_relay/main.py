"""CLI entrypoint for scenario-relay."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Optional

import typer
import yaml

if __package__ in {None, ""}:
    current_file = Path(__file__).resolve()
    package_root = current_file.parents[1]
    apps_dir = current_file.parents[2]
    extra_paths = [
        package_root,
        apps_dir / "agent-stream",
        apps_dir / "scenario-pack",
        apps_dir / "scenario-generator",
        apps_dir / "scenario-executor",
    ]
    for candidate in extra_paths:
        candidate_str = str(candidate)
        if candidate_str not in sys.path and candidate.exists():
            sys.path.insert(0, candidate_str)
    __package__ = "scenario_relay"

from agent_stream.bridge import WORKSPACE_CWD_ENV, BridgeClient
from agent_stream.console_reporter import ConsoleReporter
from agent_stream.errors import TurnError
from agent_stream.events import StreamEvent
from agent_stream.logging_utils import configure_logging
from agent_stream.output_config import get_output_format, log_format_for
from agent_stream.relay import StreamRelay
from scenario_generator.prompts import PromptLibrary
from scenario_pack.coverage import CoverageValidator, load_rules

from .server import EXECUTE_PATH, GENERATE_PATH, RelayServer

app = typer.Typer(help="Relay agent turns to operators and watch relayed turns.")

RELAY_URL_ENV = "SCENARIO_RELAY_URL"
DEFAULT_RELAY_URL = "http://127.0.0.1:8787"
ACTION_PATHS = {"generate": GENERATE_PATH, "execute": EXECUTE_PATH}


def operator_event(event_name: str, payload: Any) -> StreamEvent:
    """Display event for a relay frame; ``codex`` frames show the upstream frame they wrap."""

    if event_name == "codex" and isinstance(payload, dict) and isinstance(payload.get("event"), str):
        return StreamEvent.from_frame(payload["event"], payload.get("payload"))
    return StreamEvent.from_frame(event_name, payload)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind."),
    port: int = typer.Option(8787, help="Port to listen on."),
    bridge_url: Optional[str] = typer.Option(None, help="Agent bridge base URL. Overrides SCENARIO_BRIDGE_URL."),
    packs_dir: Path = typer.Option(Path("artifacts/scenario-packs"), help="Destination for generated pack bundles."),
    runs_dir: Path = typer.Option(Path("artifacts/runs"), help="Destination for run artifacts."),
    prompt_library: Optional[Path] = typer.Option(None, help="Optional prompt YAML overriding models/paths/instructions."),
    coverage_rules: Optional[Path] = typer.Option(None, help="Optional YAML/JSON replacing the edge-bucket rules."),
    log_level: str = typer.Option("info", help="Log level for stderr diagnostics."),
    log_format: str = typer.Option("console", help="Log output format: console or json."),
) -> None:
    """Serve the streaming turn endpoints until interrupted."""

    configure_logging(log_level, "json" if log_format.lower() == "json" else "console")
    try:
        prompts = PromptLibrary.from_file(prompt_library)
        validator = CoverageValidator(load_rules(coverage_rules) if coverage_rules else None)
    except (FileNotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    server = RelayServer(
        bridge_url=bridge_url,
        host=host,
        port=port,
        packs_dir=packs_dir,
        runs_dir=runs_dir,
        prompt_library=prompts,
        validator=validator,
        workspace_cwd=os.getenv(WORKSPACE_CWD_ENV) or None,
    )
    typer.echo(f"[scenario-relay] listening on {host}:{port}")
    typer.echo(f"    routes: POST {GENERATE_PATH}, POST {EXECUTE_PATH}, GET /health")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        typer.echo("Relay stopped")


@app.command()
def watch(
    request: Path = typer.Option(..., exists=True, dir_okay=False, help="YAML/JSON request body for the turn."),
    action: str = typer.Option("generate", help="Turn to start: generate or execute."),
    relay_url: Optional[str] = typer.Option(None, help=f"Relay base URL. Overrides {RELAY_URL_ENV}."),
    log_level: str = typer.Option("warning", help="Log level for stderr diagnostics."),
    output_format: Optional[str] = typer.Option(
        None,
        "--output-format",
        help="Console format: auto, rich, plain, json. Overrides CONSOLE_OUTPUT_FORMAT.",
    ),
) -> None:
    """Start a turn on the relay and follow its stream."""

    console_format = get_output_format(output_format)
    configure_logging(log_level, log_format_for(console_format))
    reporter = ConsoleReporter(console_format)

    path = ACTION_PATHS.get(action.strip().lower())
    if path is None:
        raise typer.BadParameter(f"Unsupported action '{action}'")
    try:
        body = yaml.safe_load(request.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise typer.BadParameter(f"Request file {request} is not valid YAML/JSON: {exc}") from exc
    if not isinstance(body, dict):
        raise typer.BadParameter(f"Request file {request} must contain a mapping")

    persisted: dict[str, Any] = {}

    def observe(event_name: str, payload: Any) -> None:
        if event_name == "persisted" and isinstance(payload, dict):
            persisted.update(payload)
        reporter.report_event(operator_event(event_name, payload))

    try:
        client = BridgeClient(relay_url or os.getenv(RELAY_URL_ENV) or DEFAULT_RELAY_URL)
        reporter.start_turn(action, request.name)
        with client.post(path, body) as response:
            StreamRelay(observe, label=action).relay(response)
    except TurnError as exc:
        reporter.stop()
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    reporter.finish_turn(f"{action.capitalize()} turn completed", {"events": len(reporter.events)}, failed=False)
    for key, value in persisted.items():
        if key not in {"action", "timestamp"}:
            reporter.print_info(f"{key}: {value}")


def run() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
