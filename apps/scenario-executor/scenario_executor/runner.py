"""Execution turn runner."""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence, TextIO

import structlog

from agent_stream.bridge import BridgeClient
from agent_stream.events import StreamEvent
from agent_stream.extractor import TurnResult, extract_turn
from agent_stream.relay import EventObserver, StreamRelay
from scenario_generator.prompts import PromptLibrary
from scenario_generator.schemas import build_execution_output_schema
from scenario_pack.models import ScenarioContract, ScenarioPack

from .models import ExecutionAudit, ScenarioRun
from .quality_gate import gate_execution_output
from .results import assemble_run

LOGGER = structlog.get_logger("scenario_executor")

ACTION = "execute"
MAX_SUMMARY_SCENARIOS = 24


@dataclass
class RunArtifacts:
    run_dir: Path
    events_file: Path
    summary_file: Path
    junit_file: Path


class ScenarioRunner:
    """Runs an execution turn against a scenario pack and records run artifacts."""

    def __init__(
        self,
        *,
        pack: ScenarioPack,
        client: BridgeClient,
        prompt_library: PromptLibrary,
        output_root: Path,
        run_id: str,
        execution_mode: str = "run",
        scenario_ids: Optional[Sequence[str]] = None,
        user_instruction: Optional[str] = None,
        constraints: Optional[dict[str, Any]] = None,
        observer: Optional[EventObserver] = None,
        workspace_cwd: Optional[str] = None,
    ) -> None:
        self.pack = pack
        self.client = client
        self.prompt_library = prompt_library
        self.output_root = output_root
        self.run_id = run_id
        self.execution_mode = execution_mode
        self.scenario_ids = list(scenario_ids or [])
        self.user_instruction = user_instruction
        self.constraints = constraints or {}
        self.observer = observer
        self.workspace_cwd = workspace_cwd

    def selected_scenarios(self) -> list[ScenarioContract]:
        return select_scenarios(self.pack, self.scenario_ids)

    def build_prompt_replacements(self, scenarios: Sequence[ScenarioContract]) -> dict[str, str]:
        instruction = (self.user_instruction or "").strip()
        return {
            "execution_mode": self.execution_mode,
            "repository": self.pack.repository or "unknown",
            "branch": self.pack.branch or "unknown",
            "head_commit": self.pack.head_commit or "unknown",
            "pack_id": self.pack.pack_id,
            "constraints": json.dumps(self.constraints, ensure_ascii=False),
            "user_instruction": f"User instruction: {instruction}" if instruction else "User instruction: none",
            "scenario_summary": format_scenario_summary(scenarios),
        }

    def build_request_body(self, scenarios: Sequence[ScenarioContract]) -> dict[str, Any]:
        return self.prompt_library.request_body(
            ACTION,
            replacements=self.build_prompt_replacements(scenarios),
            output_schema=build_execution_output_schema([scenario.id for scenario in scenarios]),
            cwd=self.workspace_cwd,
        )

    def run(self) -> ScenarioRun:
        """Run one execution turn; run files are written only after the quality gate passes."""

        scenarios = self.selected_scenarios()
        logger = LOGGER.bind(action=ACTION, pack_id=self.pack.pack_id, run_id=self.run_id)
        logger.info("turn_started", scenarios=len(scenarios), mode=self.execution_mode)

        body = self.build_request_body(scenarios)
        artifacts = self._prepare_artifacts()
        started_at = datetime.now(timezone.utc)
        with artifacts.events_file.open("w", encoding="utf-8") as events_handle:
            relay = StreamRelay(self._recording_observer(events_handle), label=ACTION)
            with self.client.post(self.prompt_library.path(ACTION), body) as response:
                result = relay.relay(response)

        turn = extract_turn(result)
        gated = gate_execution_output(turn.artifact, [scenario.id for scenario in scenarios])
        run = assemble_run(
            run_id=self.run_id,
            pack_id=self.pack.pack_id,
            scenarios=scenarios,
            gated=gated,
            execution_mode=self.execution_mode,
            audit=self._audit(turn),
            started_at=started_at,
        ).model_copy(
            update={
                "events_file": str(artifacts.events_file),
                "summary_file": str(artifacts.summary_file),
                "junit_file": str(artifacts.junit_file),
            }
        )

        artifacts.summary_file.write_text(run.model_dump_json(indent=2), encoding="utf-8")
        self._write_junit(run, artifacts.junit_file)
        logger.info(
            "turn_completed",
            passed=run.summary.passed,
            failed=run.summary.failed,
            blocked=run.summary.blocked,
        )
        return run

    def _recording_observer(self, handle: TextIO) -> EventObserver:
        def observe(event_name: str, payload: Any) -> None:
            handle.write(json.dumps(StreamEvent.from_frame(event_name, payload).as_log_record()) + "\n")
            handle.flush()
            if self.observer is not None:
                self.observer(event_name, payload)

        return observe

    def _prepare_artifacts(self) -> RunArtifacts:
        run_dir = self.output_root / self.run_id
        run_dir.mkdir(parents=True, exist_ok=True)
        artifacts = RunArtifacts(
            run_dir=run_dir,
            events_file=run_dir / "events.jsonl",
            summary_file=run_dir / "summary.json",
            junit_file=run_dir / "results.junit.xml",
        )
        # Files from an earlier run with the same id must not outlive a failed turn.
        for stale in (artifacts.summary_file, artifacts.junit_file):
            stale.unlink(missing_ok=True)
        return artifacts

    def _audit(self, turn: TurnResult) -> ExecutionAudit:
        return ExecutionAudit(
            model=turn.model or self.prompt_library.model(ACTION),
            cwd=turn.cwd or self.workspace_cwd,
            thread_id=turn.thread_id,
            turn_id=turn.turn_id,
            turn_status=turn.turn_status,
            completed_at=turn.completed_at,
        )

    def _write_junit(self, run: ScenarioRun, junit_file: Path) -> None:
        suite = ET.Element(
            "testsuite",
            attrib={
                "name": run.pack_id,
                "tests": str(run.summary.total),
                "failures": str(run.summary.failed),
                "skipped": str(run.summary.blocked),
            },
        )
        for item in run.items:
            scenario = self.pack.scenario(item.scenario_id)
            case = ET.SubElement(
                suite,
                "testcase",
                attrib={
                    "classname": scenario.feature if scenario else run.pack_id,
                    "name": item.scenario_id,
                    "time": str((item.completed_at - item.started_at).total_seconds()),
                },
            )
            if item.status == "failed":
                failure = ET.SubElement(
                    case,
                    "failure",
                    attrib={"message": item.failure_hypothesis or "Scenario failed"},
                )
                failure.text = f"Observed: {item.observed}\nExpected: {item.expected}"
            elif item.status == "blocked":
                ET.SubElement(case, "skipped", attrib={"message": item.observed})
        tree = ET.ElementTree(suite)
        tree.write(junit_file, encoding="utf-8", xml_declaration=True)


def select_scenarios(pack: ScenarioPack, scenario_ids: Sequence[str]) -> list[ScenarioContract]:
    """Scenarios to execute in pack order; all of them when no ids are given."""

    if not scenario_ids:
        selected = list(pack.scenarios)
    else:
        unknown = [scenario_id for scenario_id in scenario_ids if pack.scenario(scenario_id) is None]
        if unknown:
            raise ValueError(f"Scenario ids not found in pack {pack.pack_id}: {', '.join(unknown)}")
        wanted = set(scenario_ids)
        selected = [scenario for scenario in pack.scenarios if scenario.id in wanted]
    if not selected:
        raise ValueError(f"No scenarios selected from pack {pack.pack_id}")
    return selected


def format_scenario_summary(scenarios: Sequence[ScenarioContract]) -> str:
    blocks = []
    for scenario in scenarios[:MAX_SUMMARY_SCENARIOS]:
        checkpoints = " | ".join(scenario.expected_checkpoints[:3])
        blocks.append(
            "\n".join(
                [
                    f"- {scenario.id}: {scenario.title}",
                    f"  feature={scenario.feature}; outcome={scenario.outcome}; priority={scenario.priority}",
                    f"  passCriteria={scenario.pass_criteria}",
                    f"  checkpoints={checkpoints}",
                ]
            )
        )
    return "\n".join(blocks)
