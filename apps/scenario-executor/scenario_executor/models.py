"""Run models produced by an execution turn."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

RunItemStatus = Literal["passed", "failed", "blocked"]
ExecutionMode = Literal["run", "fix", "pr", "full"]
ArtifactKind = Literal["log", "screenshot", "trace"]
FixAttemptStatus = Literal["planned", "in_progress", "validated", "failed"]
PullRequestStatus = Literal["draft", "open", "merged", "blocked"]
RunEventStatus = Literal["queued", "running", "passed", "failed", "blocked"]

RUN_ITEM_STATUSES: tuple[str, ...] = ("passed", "failed", "blocked")


class EvidenceArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ArtifactKind = "log"
    label: str = "Artifact"
    value: str


class RunItem(BaseModel):
    """One executed scenario's terminal outcome."""

    model_config = ConfigDict(frozen=True)

    scenario_id: str
    status: RunItemStatus
    observed: str
    expected: str
    failure_hypothesis: Optional[str] = None
    artifacts: list[EvidenceArtifact] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime


class RunSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    passed: int = 0
    failed: int = 0
    blocked: int = 0


class RunEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    scenario_id: str
    status: RunEventStatus
    message: str
    timestamp: datetime


class RerunSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    passed: int = 0
    failed: int = 0
    blocked: int = 0


class FixAttempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    failed_scenario_ids: list[str]
    probable_root_cause: str
    patch_summary: str
    impacted_files: list[str] = Field(default_factory=list)
    status: FixAttemptStatus
    rerun_summary: Optional[RerunSummary] = None


class PullRequestRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    url: str = ""
    status: PullRequestStatus
    scenario_ids: list[str]
    branch_name: str
    root_cause_summary: str
    risk_notes: list[str] = Field(default_factory=list)


class ExecutionAudit(BaseModel):
    """Bridge metadata of the execution turn."""

    model_config = ConfigDict(frozen=True)

    model: Optional[str] = None
    cwd: Optional[str] = None
    thread_id: Optional[str] = None
    turn_id: Optional[str] = None
    turn_status: Optional[str] = None
    completed_at: Optional[str] = None


class ScenarioRun(BaseModel):
    """Aggregated result of one execution turn against a pack."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    pack_id: str
    execution_mode: ExecutionMode = "run"
    status: Literal["completed", "failed"]
    started_at: datetime
    completed_at: datetime
    items: list[RunItem]
    summary: RunSummary
    events: list[RunEvent] = Field(default_factory=list)
    fix_attempt: Optional[FixAttempt] = None
    pull_requests: list[PullRequestRecord] = Field(default_factory=list)
    audit: ExecutionAudit = Field(default_factory=ExecutionAudit)
    events_file: Optional[str] = None
    summary_file: Optional[str] = None
    junit_file: Optional[str] = None

    def as_serializable(self) -> dict[str, Any]:
        """Return a JSON-serializable dictionary."""

        return self.model_dump(mode="json")
