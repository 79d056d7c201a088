from __future__ import annotations

import json
import threading
import xml.etree.ElementTree as ET
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any

from typer.testing import CliRunner

from scenario_executor.main import _default_run_id, app
from scenario_pack.bundle import write_pack_bundle
from scenario_pack.models import CoverageSummary, ScenarioContract, ScenarioPack

runner = CliRunner()


def _write_pack(tmp_path: Path, count: int = 8) -> Path:
    scenarios = [
        ScenarioContract(
            id=f"scn_{index}",
            feature="Runs",
            outcome="Operator ships a tested change",
            title=f"Scenario {index}",
            persona="Maintainer",
            journey=f"Journey {index}",
            preconditions=["Repository connected"],
            test_data=["demo"],
            steps=["Start run"],
            expected_checkpoints=["Run completes", "Summary shown"],
            edge_variants=["invalid input rejected"],
            pass_criteria=f"Scenario {index} passes",
            priority="critical",
        )
        for index in range(1, count + 1)
    ]
    pack = ScenarioPack(
        pack_id="pack_demo",
        project="Demo",
        repository="acme/demo",
        branch="main",
        model="codex spark",
        coverage=CoverageSummary(),
        scenarios=scenarios,
    )
    return write_pack_bundle(pack, tmp_path / "packs")


def _start_bridge(frames: list[tuple[str, Any]]) -> tuple[HTTPServer, threading.Thread, list[dict]]:
    received: list[dict] = []

    class Handler(BaseHTTPRequestHandler):
        def do_POST(self) -> None:  # noqa: N802 - HTTP handler requirement
            length = int(self.headers.get("Content-Length", "0"))
            received.append({"path": self.path, "body": json.loads(self.rfile.read(length).decode("utf-8"))})
            self.send_response(200)
            self.send_header("Content-Type", "text/event-stream")
            self.end_headers()
            for event, payload in frames:
                self.wfile.write(f"event: {event}\ndata: {json.dumps(payload)}\n\n".encode("utf-8"))
                self.wfile.flush()

        def log_message(self, format: str, *args: object) -> None:  # pragma: no cover - silence logs
            return

    server = HTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server, thread, received


def _completed(output: dict[str, Any]) -> tuple[str, Any]:
    return (
        "completed",
        {
            "result": {
                "responseText": json.dumps(output),
                "model": "gpt-5.3-xhigh",
                "threadId": "thr_9",
                "turnId": "turn_9",
                "turnStatus": "completed",
            }
        },
    )


def _invoke(server: HTTPServer, pack_dir: Path, output_dir: Path, *extra: str):
    return runner.invoke(
        app,
        [
            "--pack",
            str(pack_dir),
            "--output-dir",
            str(output_dir),
            "--run-id",
            "run-test",
            "--bridge-url",
            f"http://127.0.0.1:{server.server_address[1]}",
            "--output-format",
            "plain",
            *extra,
        ],
    )


def test_execute_writes_run_artifacts(tmp_path: Path) -> None:
    pack_dir = _write_pack(tmp_path, count=2)
    output = {
        "run": {
            "items": [
                {"scenarioId": "scn_1", "status": "passed", "observed": "Summary rendered"},
                {"scenarioId": "scn_2", "status": "blocked", "observed": "Sandbox has no network"},
            ]
        }
    }
    server, thread, received = _start_bridge(
        [("status", {"phase": "running", "scenarioId": "scn_1", "message": "executing"}), _completed(output)]
    )
    output_dir = tmp_path / "runs"

    result = _invoke(server, pack_dir, output_dir, "--constraints", '{"maxMinutes": 10}')

    server.shutdown()
    thread.join(timeout=2)

    assert result.exit_code == 0, result.output
    assert "executing" in result.output

    request = received[0]
    assert request["path"] == "/actions/execute/stream"
    assert request["body"]["model"] == "gpt-5.3-xhigh"
    assert request["body"]["outputSchema"]["properties"]["run"]["properties"]["items"]["maxItems"] == 2
    assert "- Scenario pack id: pack_demo" in request["body"]["prompt"]
    assert '{"maxMinutes": 10}' in request["body"]["prompt"]
    assert "checkpoints=Run completes | Summary shown" in request["body"]["prompt"]

    run_dir = output_dir / "run-test"
    events = [json.loads(line) for line in (run_dir / "events.jsonl").read_text(encoding="utf-8").splitlines()]
    assert [event["event"] for event in events] == ["status", "completed"]
    assert events[0]["scenario_id"] == "scn_1"

    summary = json.loads((run_dir / "summary.json").read_text(encoding="utf-8"))
    assert summary["summary"] == {"total": 2, "passed": 1, "failed": 0, "blocked": 1}
    assert summary["audit"]["thread_id"] == "thr_9"
    assert summary["junit_file"].endswith("results.junit.xml")

    suite = ET.parse(run_dir / "results.junit.xml").getroot()
    assert suite.attrib["tests"] == "2"
    assert suite.attrib["skipped"] == "1"
    assert suite.find("testcase[@name='scn_2']/skipped") is not None


def test_unknown_scenario_id_fails_before_summary_is_written(tmp_path: Path) -> None:
    pack_dir = _write_pack(tmp_path)
    output = {"run": {"items": [{"scenarioId": "scn_99", "status": "passed", "observed": "ok"}]}}
    server, thread, _ = _start_bridge([_completed(output)])
    output_dir = tmp_path / "runs"

    result = _invoke(server, pack_dir, output_dir)

    server.shutdown()
    thread.join(timeout=2)

    assert result.exit_code == 1
    assert "scn_99" in result.output
    assert not (output_dir / "run-test" / "summary.json").exists()
    assert not (output_dir / "run-test" / "results.junit.xml").exists()


def test_subset_run_and_missing_items(tmp_path: Path) -> None:
    pack_dir = _write_pack(tmp_path, count=2)
    output = {"run": {"items": [{"scenarioId": "scn_1", "status": "passed", "observed": "ok"}]}}
    server, thread, received = _start_bridge([_completed(output)])
    output_dir = tmp_path / "runs"

    result = _invoke(server, pack_dir, output_dir, "--scenario", "scn_1", "--mode", "fix")

    server.shutdown()
    thread.join(timeout=2)

    assert result.exit_code == 0, result.output
    assert "- Execution mode: fix" in received[0]["body"]["prompt"]
    summary = json.loads((output_dir / "run-test" / "summary.json").read_text(encoding="utf-8"))
    assert [item["scenario_id"] for item in summary["items"]] == ["scn_1"]

    server, thread, _ = _start_bridge([_completed(output)])
    result = _invoke(server, pack_dir, output_dir)
    server.shutdown()
    thread.join(timeout=2)

    assert result.exit_code == 1
    summary = json.loads((output_dir / "run-test" / "summary.json").read_text(encoding="utf-8"))
    assert summary["summary"]["failed"] == 1
    assert summary["items"][1]["failure_hypothesis"] == "Missing run item for scenario in agent output."


def test_unknown_subset_is_rejected(tmp_path: Path) -> None:
    pack_dir = _write_pack(tmp_path, count=2)

    result = runner.invoke(
        app,
        ["--pack", str(pack_dir), "--scenario", "scn_42", "--bridge-url", "http://127.0.0.1:9"],
    )

    assert result.exit_code == 2
    assert "scn_42" in result.output


def test_failed_rerun_removes_previous_run_files(tmp_path: Path) -> None:
    pack_dir = _write_pack(tmp_path, count=1)
    output_dir = tmp_path / "runs"
    passing = {"run": {"items": [{"scenarioId": "scn_1", "status": "passed", "observed": "ok"}]}}
    server, thread, _ = _start_bridge([_completed(passing)])
    result = _invoke(server, pack_dir, output_dir)
    server.shutdown()
    thread.join(timeout=2)

    run_dir = output_dir / "run-test"
    assert result.exit_code == 0, result.output
    assert (run_dir / "summary.json").exists()

    rejected = {"run": {"items": [{"scenarioId": "scn_99", "status": "passed", "observed": "ok"}]}}
    server, thread, _ = _start_bridge([_completed(rejected)])
    result = _invoke(server, pack_dir, output_dir)
    server.shutdown()
    thread.join(timeout=2)

    assert result.exit_code == 1
    assert (run_dir / "events.jsonl").exists()
    assert not (run_dir / "summary.json").exists()
    assert not (run_dir / "results.junit.xml").exists()


def test_malformed_pack_yaml_is_bad_parameter(tmp_path: Path) -> None:
    pack_file = tmp_path / "scenario-pack.yaml"
    pack_file.write_text("pack_id: [unclosed\n", encoding="utf-8")

    result = runner.invoke(app, ["--pack", str(pack_file), "--bridge-url", "http://127.0.0.1:9"])

    assert result.exit_code == 2, result.output


def test_default_run_ids_are_unique() -> None:
    first, second = _default_run_id(), _default_run_id()

    assert first.startswith("run-")
    assert first != second
