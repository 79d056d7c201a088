"""Generation turn driver and scenario pack bundle writer."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from agent_stream.bridge import BridgeClient
from agent_stream.extractor import TurnResult, extract_turn
from agent_stream.relay import EventObserver, StreamRelay
from scenario_pack.bundle import write_pack_bundle
from scenario_pack.coverage import CoverageValidator
from scenario_pack.markdown import render_scenarios_markdown
from scenario_pack.models import CodeBaseline, GenerationAudit, ScenarioPack
from scenario_pack.normalizers import normalize_generation_artifact

from .prompts import PromptLibrary
from .schemas import SCENARIO_OUTPUT_SCHEMA
from .sources import LoadedSource, build_source_section, recommended_scenario_count

LOGGER = structlog.get_logger("scenario_generator")

ACTION = "generate"


@dataclass
class GenerationRequest:
    """Everything one generation turn is built from."""

    project: str
    sources: list[LoadedSource]
    repository: str | None = None
    branch: str | None = None
    head_commit: str | None = None
    baseline: CodeBaseline | None = None
    parent: ScenarioPack | None = None
    user_instruction: str | None = None
    source_paths: list[str] = field(default_factory=list)

    @property
    def mode(self) -> str:
        return "update" if self.parent is not None else "initial"


class ScenarioPackBuilder:
    """Runs a generation turn and turns its artifact into a ScenarioPack."""

    def __init__(
        self,
        *,
        client: BridgeClient,
        prompt_library: PromptLibrary,
        validator: CoverageValidator | None = None,
        observer: EventObserver | None = None,
        workspace_cwd: str | None = None,
    ) -> None:
        self.client = client
        self.prompt_library = prompt_library
        self.validator = validator or CoverageValidator()
        self.observer = observer
        self.workspace_cwd = workspace_cwd

    def build_prompt_replacements(self, request: GenerationRequest) -> dict[str, str]:
        paths = request.source_paths or [source.path for source in request.sources]
        return {
            "project": request.project,
            "repository": request.repository or "unknown",
            "branch": request.branch or "unknown",
            "head_commit": request.head_commit or "unknown",
            "scenario_count": str(recommended_scenario_count(len(paths))),
            "source_paths": "\n".join(f"- {path}" for path in paths) or "- none",
            "source_section": build_source_section(request.sources),
            "mode_instructions": _mode_instructions(request.parent),
            "user_instruction": (
                f"User instruction: {request.user_instruction.strip()}"
                if request.user_instruction and request.user_instruction.strip()
                else "User instruction: none"
            ),
        }

    def build_request_body(self, request: GenerationRequest) -> dict[str, Any]:
        return self.prompt_library.request_body(
            ACTION,
            replacements=self.build_prompt_replacements(request),
            output_schema=SCENARIO_OUTPUT_SCHEMA,
            cwd=self.workspace_cwd,
        )

    def generate(self, request: GenerationRequest) -> ScenarioPack:
        """Run one generation turn; any hard failure propagates and nothing is returned."""

        pack_id = f"pack_{uuid.uuid4().hex[:12]}"
        logger = LOGGER.bind(action=ACTION, project=request.project, pack_id=pack_id, mode=request.mode)
        logger.info("turn_started", sources=len(request.sources))

        body = self.build_request_body(request)
        relay = StreamRelay(self.observer, label=ACTION)
        with self.client.post(self.prompt_library.path(ACTION), body) as response:
            result = relay.relay(response)

        turn = extract_turn(result)
        normalized = normalize_generation_artifact(turn.artifact)
        report = self.validator.validate(normalized.scenarios, normalized.coverage, request.baseline)

        pack = ScenarioPack(
            pack_id=pack_id,
            project=request.project,
            repository=request.repository,
            branch=request.branch,
            head_commit=request.head_commit,
            mode=request.mode,
            parent_pack_id=request.parent.pack_id if request.parent is not None else None,
            model=turn.model or self.prompt_library.model(ACTION),
            source_paths=request.source_paths or [source.path for source in request.sources],
            generation_audit=self._audit(turn),
            coverage=report.coverage,
            grouped_by_feature=normalized.grouped_by_feature,
            grouped_by_outcome=normalized.grouped_by_outcome,
            scenarios=normalized.scenarios,
            scenarios_markdown=render_scenarios_markdown(normalized.scenarios),
        )
        logger.info(
            "turn_completed",
            scenarios=len(pack.scenarios),
            coverage_findings=len(report.findings),
        )
        return pack

    def write_bundle(self, pack: ScenarioPack, output_dir: Path) -> Path:
        bundle_dir = write_pack_bundle(pack, output_dir)
        LOGGER.info("bundle_written", pack_id=pack.pack_id, path=str(bundle_dir))
        return bundle_dir

    def _audit(self, turn: TurnResult) -> GenerationAudit:
        return GenerationAudit(
            requested_skill=turn.skill_requested or self.prompt_library.skill(ACTION),
            used_skill=turn.skill_used,
            skill_available=turn.skill_available,
            skill_path=turn.skill_path,
            thread_id=turn.thread_id,
            turn_id=turn.turn_id,
            turn_status=turn.turn_status,
            cwd=turn.cwd or self.workspace_cwd,
            generated_at=_parse_timestamp(turn.completed_at),
        )


def _mode_instructions(parent: ScenarioPack | None) -> str:
    if parent is None:
        return "- Mode: initial pack."
    lines = [
        f"- Mode: update of pack {parent.pack_id}. Return a complete replacement pack, "
        "keeping still-valid scenario ids stable.",
        "- Existing scenarios:",
    ]
    lines.extend(
        f"  - {scenario.id}: {scenario.title} (feature={scenario.feature}; outcome={scenario.outcome})"
        for scenario in parent.scenarios
    )
    return "\n".join(lines)


def _parse_timestamp(value: str | None) -> datetime:
    if value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            LOGGER.debug("timestamp_unparsed", value=value)
    return datetime.now(timezone.utc)
