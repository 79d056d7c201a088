"""Pydantic models for scenario packs and the repository baseline they are checked against."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Priority = Literal["critical", "high", "medium"]
PackMode = Literal["initial", "update"]

PRIORITIES: tuple[str, ...] = ("critical", "high", "medium")


class ScenarioContract(BaseModel):
    """One executable test unit produced by normalization."""

    model_config = ConfigDict(frozen=True)

    id: str
    feature: str
    outcome: str
    title: str
    persona: str
    journey: str
    risk_intent: str = ""
    preconditions: list[str]
    test_data: list[str]
    steps: list[str]
    expected_checkpoints: list[str]
    edge_variants: list[str]
    code_evidence_anchors: list[str] = Field(default_factory=list)
    source_refs: list[str] = Field(default_factory=list)
    pass_criteria: str
    priority: Priority


class CoverageSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    personas: list[str] = Field(default_factory=list)
    journeys: list[str] = Field(default_factory=list)
    edge_buckets: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)
    outcomes: list[str] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    known_unknowns: list[str] = Field(default_factory=list)
    uncovered_gaps: list[str] = Field(default_factory=list)


class GenerationAudit(BaseModel):
    """Bridge metadata of the turn that produced a pack."""

    model_config = ConfigDict(frozen=True)

    transport: str = "agent-bridge"
    requested_skill: str = ""
    used_skill: str | None = None
    skill_available: bool = False
    skill_path: str | None = None
    thread_id: str | None = None
    turn_id: str | None = None
    turn_status: str | None = None
    cwd: str | None = None
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ScenarioPack(BaseModel):
    """Artifact of a successful generation turn."""

    model_config = ConfigDict(frozen=True)

    pack_id: str
    project: str
    repository: str | None = None
    branch: str | None = None
    head_commit: str | None = None
    mode: PackMode = "initial"
    parent_pack_id: str | None = None
    model: str
    source_paths: list[str] = Field(default_factory=list)
    generation_audit: GenerationAudit = Field(default_factory=GenerationAudit)
    coverage: CoverageSummary
    grouped_by_feature: dict[str, list[str]] = Field(default_factory=dict)
    grouped_by_outcome: dict[str, list[str]] = Field(default_factory=dict)
    scenarios: list[ScenarioContract]
    scenarios_markdown: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def scenario_ids(self) -> list[str]:
        return [scenario.id for scenario in self.scenarios]

    def scenario(self, scenario_id: str) -> ScenarioContract | None:
        for scenario in self.scenarios:
            if scenario.id == scenario_id:
                return scenario
        return None

    def as_serializable(self) -> dict[str, Any]:
        """Return a JSON-serializable dictionary."""

        return self.model_dump(mode="json")


class CodeBaseline(BaseModel):
    """Repository facts used to decide which edge buckets a project must cover."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    repository: str | None = None
    branch: str | None = None
    head_commit: str | None = None
    route_map: list[str] = Field(default_factory=list)
    api_surface: list[str] = Field(default_factory=list)
    state_transitions: list[str] = Field(default_factory=list)
    async_boundaries: list[str] = Field(default_factory=list)
    domain_entities: list[str] = Field(default_factory=list)
    integrations: list[str] = Field(default_factory=list)
    error_paths: list[str] = Field(default_factory=list)
    likely_failure_points: list[str] = Field(default_factory=list)
    evidence_anchors: list[str] = Field(default_factory=list)
