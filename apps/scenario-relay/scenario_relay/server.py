"""Relay server re-framing agent bridge streams for operator-facing subscribers."""

from __future__ import annotations

import json
import socketserver
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any, Callable, Optional

import structlog

from agent_stream.bridge import STREAM_CONTENT_TYPE, BridgeClient
from agent_stream.errors import TurnError
from agent_stream.frames import encode_frame
from scenario_executor.runner import ScenarioRunner, select_scenarios
from scenario_generator.builder import GenerationRequest, ScenarioPackBuilder
from scenario_generator.prompts import PromptLibrary
from scenario_generator.sources import load_sources
from scenario_pack.baseline import load_baseline
from scenario_pack.bundle import load_pack
from scenario_pack.coverage import CoverageValidator

LOGGER = structlog.get_logger("scenario_relay")

GENERATE_PATH = "/actions/generate/stream"
EXECUTE_PATH = "/actions/execute/stream"
HEALTH_PATH = "/health"

Emit = Callable[[str, Any], None]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _optional_string(body: dict[str, Any], key: str) -> Optional[str]:
    value = body.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value.strip() or None


def _string_list(body: dict[str, Any], key: str) -> list[str]:
    value = body.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"{key} must be a list of strings")
    return value


@dataclass
class TurnOutcome:
    persisted: dict[str, Any]
    completed: Any


@dataclass
class PreparedTurn:
    """A validated turn ready to stream; ``run`` performs it against an emitter."""

    action: str
    label: str
    run: Callable[[Emit], TurnOutcome]


class ThreadedHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    daemon_threads = True


class SubscriberGone(Exception):
    """Raised when the downstream subscriber closed its connection."""


class RelayServer:
    """Runs agent turns and relays their frames to the requesting subscriber."""

    def __init__(
        self,
        *,
        bridge_url: Optional[str] = None,
        host: str = "127.0.0.1",
        port: int = 8787,
        packs_dir: Path = Path("artifacts/scenario-packs"),
        runs_dir: Path = Path("artifacts/runs"),
        prompt_library: Optional[PromptLibrary] = None,
        validator: Optional[CoverageValidator] = None,
        workspace_cwd: Optional[str] = None,
    ) -> None:
        self.bridge_url = bridge_url
        self.host = host
        self.port = port
        self.packs_dir = packs_dir
        self.runs_dir = runs_dir
        self.prompt_library = prompt_library or PromptLibrary()
        self.validator = validator or CoverageValidator()
        self.workspace_cwd = workspace_cwd
        self._httpd: ThreadedHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._logger = LOGGER.bind(host=host)

    @property
    def address(self) -> tuple[str, int]:
        if self._httpd is None:
            return self.host, self.port
        return self._httpd.server_address[0], self._httpd.server_address[1]

    def start(self) -> None:
        self._logger.info("server_starting", port=self.port)
        httpd = ThreadedHTTPServer((self.host, self.port), self._build_handler_factory())
        self._httpd = httpd
        self._thread = threading.Thread(target=httpd.serve_forever, daemon=True)
        self._thread.start()
        self._ready.set()
        self._logger = self._logger.bind(port=httpd.server_address[1])
        self._logger.info("server_started")

    def stop(self) -> None:
        if not self._httpd:
            return
        self._logger.info("server_stopping")
        try:
            self._httpd.shutdown()
            self._httpd.server_close()
        finally:
            if self._thread:
                self._thread.join(timeout=2)
        self._logger.info("server_stopped")

    def serve_forever(self) -> None:
        """Block until interrupted."""
        self.start()
        try:
            while self._thread is not None and self._thread.is_alive():
                self._thread.join(timeout=0.5)
        finally:
            self.stop()

    def wait_until_ready(self, timeout: float = 1.0) -> bool:
        return self._ready.wait(timeout=timeout)

    def __enter__(self) -> "RelayServer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def prepare(self, path: str, body: Any) -> PreparedTurn:
        """Validate a turn request; raises ValueError or FileNotFoundError for a bad request."""

        if not isinstance(body, dict):
            raise ValueError("Request body must be a JSON object")
        if path == GENERATE_PATH:
            return self._prepare_generation(body)
        if path == EXECUTE_PATH:
            return self._prepare_execution(body)
        raise LookupError(path)

    def _prepare_generation(self, body: dict[str, Any]) -> PreparedTurn:
        project = str(body.get("project") or "").strip()
        if not project:
            raise ValueError("project is required")
        root_value = _optional_string(body, "sourceRoot")
        root = Path(root_value) if root_value else None
        sources = [Path(item) for item in _string_list(body, "sources")]
        missing = [str(item) for item in sources if not item.is_file()]
        if missing:
            raise FileNotFoundError(f"Source files not found: {', '.join(missing)}")
        parent_value = _optional_string(body, "parentPack")
        parent = load_pack(Path(parent_value)) if parent_value else None
        baseline_value = _optional_string(body, "baseline")
        request = GenerationRequest(
            project=project,
            sources=load_sources(sources, root),
            repository=_optional_string(body, "repository") or (parent.repository if parent else None),
            branch=_optional_string(body, "branch") or (parent.branch if parent else None),
            head_commit=_optional_string(body, "headCommit"),
            baseline=load_baseline(Path(baseline_value)) if baseline_value else None,
            parent=parent,
            user_instruction=_optional_string(body, "instruction"),
        )

        def run(emit: Emit) -> TurnOutcome:
            builder = ScenarioPackBuilder(
                client=BridgeClient(self.bridge_url),
                prompt_library=self.prompt_library,
                validator=self.validator,
                observer=emit,
                workspace_cwd=self.workspace_cwd,
            )
            pack = builder.generate(request)
            bundle_dir = builder.write_bundle(pack, self.packs_dir)
            return TurnOutcome(
                persisted={"packId": pack.pack_id, "bundleDir": str(bundle_dir)},
                completed={"scenarioPack": pack.as_serializable()},
            )

        return PreparedTurn(action="generate", label=project, run=run)

    def _prepare_execution(self, body: dict[str, Any]) -> PreparedTurn:
        pack_value = _optional_string(body, "pack")
        if not pack_value:
            raise ValueError("pack is required")
        scenario_ids = _string_list(body, "scenarioIds")
        instruction = _optional_string(body, "instruction")
        pack = load_pack(Path(pack_value))
        select_scenarios(pack, scenario_ids)
        mode = str(body.get("mode") or "run").strip().lower()
        if mode not in ("run", "fix", "pr", "full"):
            raise ValueError(f"Unsupported execution mode '{mode}'")
        constraints = body.get("constraints") or {}
        if not isinstance(constraints, dict):
            raise ValueError("constraints must be a JSON object")
        run_id = str(body.get("runId") or f"run_{uuid.uuid4().hex[:12]}")

        def run(emit: Emit) -> TurnOutcome:
            runner = ScenarioRunner(
                pack=pack,
                client=BridgeClient(self.bridge_url),
                prompt_library=self.prompt_library,
                output_root=self.runs_dir,
                run_id=run_id,
                execution_mode=mode,
                scenario_ids=scenario_ids,
                user_instruction=instruction,
                constraints=constraints,
                observer=emit,
                workspace_cwd=self.workspace_cwd,
            )
            result = runner.run()
            return TurnOutcome(
                persisted={
                    "runId": result.run_id,
                    "eventsFile": result.events_file,
                    "summaryFile": result.summary_file,
                    "junitFile": result.junit_file,
                },
                completed={"run": result.as_serializable()},
            )

        return PreparedTurn(action="execute", label=pack.pack_id, run=run)

    def _build_handler_factory(self) -> type[BaseHTTPRequestHandler]:
        relay = self
        handler_logger = LOGGER.bind(component="handler")

        class Handler(BaseHTTPRequestHandler):
            protocol_version = "HTTP/1.0"

            def log_message(self, format: str, *args: Any) -> None:  # pragma: no cover - avoid stdout
                handler_logger.debug("http_trace", client_ip=self.client_address[0], message=format % args)

            def do_GET(self) -> None:  # noqa: N802 (BaseHTTPRequestHandler requirement)
                if self.path.split("?", 1)[0] == HEALTH_PATH:
                    self._respond(HTTPStatus.OK, {"status": "ok"})
                    return
                self._respond(HTTPStatus.NOT_FOUND, {"error": "Not found"})

            def do_POST(self) -> None:  # noqa: N802
                path = self.path.split("?", 1)[0]
                raw = self.rfile.read(int(self.headers.get("Content-Length", 0) or 0))
                handler_logger.info("request_received", path=path, content_length=len(raw))
                try:
                    body = json.loads(raw.decode("utf-8")) if raw else {}
                    turn = relay.prepare(path, body)
                except LookupError:
                    self._respond(HTTPStatus.NOT_FOUND, {"error": "Not found"})
                    return
                except (ValueError, FileNotFoundError) as exc:
                    handler_logger.warning("request_rejected", path=path, error=str(exc))
                    self._respond(HTTPStatus.BAD_REQUEST, {"error": str(exc)})
                    return
                self._stream(turn)

            def _stream(self, turn: PreparedTurn) -> None:
                logger = handler_logger.bind(action=turn.action, label=turn.label)
                self.send_response(HTTPStatus.OK)
                self.send_header("Content-Type", f"{STREAM_CONTENT_TYPE}; charset=utf-8")
                self.send_header("Cache-Control", "no-cache")
                self.end_headers()

                def write(event: str, payload: Any) -> None:
                    try:
                        self.wfile.write(encode_frame(event, payload).encode("utf-8"))
                        self.wfile.flush()
                    except (BrokenPipeError, ConnectionResetError) as exc:
                        raise SubscriberGone(str(exc)) from exc

                def forward(event: str, payload: Any) -> None:
                    write(
                        "codex",
                        {"action": turn.action, "event": event, "payload": payload, "timestamp": _timestamp()},
                    )

                try:
                    write("started", {"action": turn.action, "label": turn.label, "timestamp": _timestamp()})
                    write(
                        "status",
                        {
                            "action": turn.action,
                            "phase": "running",
                            "message": f"{turn.action.capitalize()} turn running for {turn.label}",
                            "timestamp": _timestamp(),
                        },
                    )
                    outcome = turn.run(forward)
                    write("persisted", {"action": turn.action, **outcome.persisted, "timestamp": _timestamp()})
                    write("completed", outcome.completed)
                    logger.info("turn_relayed")
                except SubscriberGone:
                    logger.warning("subscriber_disconnected")
                except (TurnError, ValueError, OSError) as exc:
                    logger.warning("turn_failed", error=str(exc), error_type=type(exc).__name__)
                    self._send_error(turn, str(exc), logger)
                except Exception:  # pragma: no cover - resilience path
                    logger.exception("turn_crashed")
                    self._send_error(turn, f"{turn.action.capitalize()} turn failed unexpectedly.", logger)

            def _send_error(self, turn: PreparedTurn, message: str, logger: Any) -> None:
                try:
                    self.wfile.write(
                        encode_frame(
                            "error",
                            {"action": turn.action, "error": message, "timestamp": _timestamp()},
                        ).encode("utf-8")
                    )
                    self.wfile.flush()
                except (BrokenPipeError, ConnectionResetError):
                    logger.warning("subscriber_disconnected")

            def _respond(self, status: HTTPStatus, payload: dict[str, Any]) -> None:
                body = json.dumps(payload).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

        return Handler
