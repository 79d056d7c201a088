"""Assembles a ScenarioRun from gated execution output."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence

from scenario_pack.models import ScenarioContract

from .models import (
    EvidenceArtifact,
    ExecutionAudit,
    FixAttempt,
    PullRequestRecord,
    RerunSummary,
    RunEvent,
    RunItem,
    RunSummary,
    ScenarioRun,
)
from .quality_gate import GatedExecution

PLACEHOLDER_PATTERN = re.compile(
    r"\b(queued after|queued behind|waiting for previous|pending previous|pending|not attempted"
    r"|skipped due to previous|deferred after|placeholder|not in user subset|n/a|not applicable)\b",
    re.IGNORECASE,
)

NO_OBSERVED_OUTPUT = "No observed output captured."
PLACEHOLDER_HYPOTHESIS = "Agent output indicates this scenario was not fully executed; marked failed for explicit rerun."
MISSING_ITEM_OBSERVED = "Agent output omitted this scenario result. Marked failed for explicit rerun."
MISSING_ITEM_HYPOTHESIS = "Missing run item for scenario in agent output."
MISSING_PR_URL_NOTE = "No PR URL was produced by the agent. Use branch/push/PR automation or manual handoff."

_ARTIFACT_KINDS = ("log", "screenshot", "trace")
_FIX_STATUSES = ("planned", "in_progress", "validated", "failed")
_PR_STATUSES = ("draft", "open", "merged", "blocked")
_ITEM_STEP = timedelta(milliseconds=250)
_RUNNING_OFFSET = timedelta(milliseconds=60)


def has_placeholder_text(value: str) -> bool:
    return PLACEHOLDER_PATTERN.search(value) is not None


def normalize_artifacts(value: Any) -> list[EvidenceArtifact]:
    if not isinstance(value, list):
        return []
    artifacts: list[EvidenceArtifact] = []
    for entry in value:
        if not isinstance(entry, dict):
            continue
        content = _text(entry.get("value"))
        if not content:
            continue
        kind = _text(entry.get("kind")).lower()
        artifacts.append(
            EvidenceArtifact(
                kind=kind if kind in _ARTIFACT_KINDS else "log",
                label=_text(entry.get("label")) or "Artifact",
                value=content,
            )
        )
    return artifacts


def build_run_items(
    scenarios: Sequence[ScenarioContract],
    gated: GatedExecution,
    now: datetime,
) -> list[RunItem]:
    """One terminal item per executed scenario, in pack order."""

    items: list[RunItem] = []
    for index, scenario in enumerate(scenarios):
        timestamp = now + _ITEM_STEP * index
        record = gated.items.get(scenario.id)
        if record is None:
            items.append(
                RunItem(
                    scenario_id=scenario.id,
                    status="failed",
                    observed=MISSING_ITEM_OBSERVED,
                    expected=scenario.pass_criteria,
                    failure_hypothesis=MISSING_ITEM_HYPOTHESIS,
                    started_at=timestamp,
                    completed_at=timestamp,
                )
            )
            continue

        observed = _text(record.get("observed")) or NO_OBSERVED_OUTPUT
        placeholder = has_placeholder_text(observed)
        items.append(
            RunItem(
                scenario_id=scenario.id,
                status="failed" if placeholder else record["status"],
                observed=observed,
                expected=_text(record.get("expected")) or scenario.pass_criteria,
                failure_hypothesis=(
                    PLACEHOLDER_HYPOTHESIS if placeholder else _text(record.get("failureHypothesis")) or None
                ),
                artifacts=normalize_artifacts(record.get("artifacts")),
                started_at=timestamp,
                completed_at=timestamp,
            )
        )
    return items


def summarize(items: Sequence[RunItem]) -> RunSummary:
    return RunSummary(
        total=len(items),
        passed=sum(1 for item in items if item.status == "passed"),
        failed=sum(1 for item in items if item.status == "failed"),
        blocked=sum(1 for item in items if item.status == "blocked"),
    )


def build_events(items: Sequence[RunItem], now: datetime) -> list[RunEvent]:
    events: list[RunEvent] = []
    for index, item in enumerate(items):
        queued_at = now + _ITEM_STEP * index
        for status, timestamp in (
            ("queued", queued_at),
            ("running", queued_at + _RUNNING_OFFSET),
            (item.status, item.completed_at),
        ):
            events.append(
                RunEvent(
                    id=f"evt_{item.scenario_id}_{status}_{index}",
                    scenario_id=item.scenario_id,
                    status=status,
                    message=f"{item.scenario_id} {status}",
                    timestamp=timestamp,
                )
            )
    return events


def build_fix_attempt(run_id: str, items: Sequence[RunItem], container: dict[str, Any]) -> Optional[FixAttempt]:
    failed_ids = [item.scenario_id for item in items if item.status == "failed"]
    record = container.get("fixAttempt")
    if not failed_ids or not isinstance(record, dict):
        return None

    rerun = record.get("rerunSummary")
    status = _text(record.get("status")).lower()
    return FixAttempt(
        failed_scenario_ids=_strings(record.get("failedScenarioIds")) or failed_ids,
        probable_root_cause=_text(record.get("probableRootCause")) or "Fix attempt generated from agent output.",
        patch_summary=_text(record.get("patchSummary")) or "No patch summary returned.",
        impacted_files=_strings(record.get("impactedFiles")),
        status=status if status in _FIX_STATUSES else "failed",
        rerun_summary=(
            RerunSummary(
                run_id=run_id,
                passed=_count(rerun.get("passed")),
                failed=_count(rerun.get("failed")),
                blocked=_count(rerun.get("blocked")),
            )
            if isinstance(rerun, dict)
            else None
        ),
    )


def build_pull_requests(
    run_id: str,
    fix_attempt: Optional[FixAttempt],
    container: dict[str, Any],
) -> list[PullRequestRecord]:
    if fix_attempt is None:
        return []
    records = container.get("pullRequests")
    if not isinstance(records, list):
        return []

    pull_requests: list[PullRequestRecord] = []
    for record in records:
        if not isinstance(record, dict):
            continue
        scenario_ids = _strings(record.get("scenarioIds")) or list(fix_attempt.failed_scenario_ids)
        url = _text(record.get("url"))
        risk_notes = _strings(record.get("riskNotes"))
        if url:
            status = _text(record.get("status")).lower()
            status = status if status in _PR_STATUSES else "blocked"
        else:
            status = "blocked"
            risk_notes.append(MISSING_PR_URL_NOTE)
        pull_requests.append(
            PullRequestRecord(
                title=_text(record.get("title")) or f"Manual handoff for {', '.join(scenario_ids)}",
                url=url,
                status=status,
                scenario_ids=scenario_ids,
                branch_name=_text(record.get("branchName")) or f"scenariofix/{run_id}",
                root_cause_summary=_text(record.get("rootCauseSummary")) or fix_attempt.probable_root_cause,
                risk_notes=list(dict.fromkeys(risk_notes)),
            )
        )
    return pull_requests


def assemble_run(
    *,
    run_id: str,
    pack_id: str,
    scenarios: Sequence[ScenarioContract],
    gated: GatedExecution,
    execution_mode: str = "run",
    audit: ExecutionAudit | None = None,
    started_at: datetime | None = None,
) -> ScenarioRun:
    now = started_at or datetime.now(timezone.utc)
    items = build_run_items(scenarios, gated, now)
    summary = summarize(items)
    fix_attempt = build_fix_attempt(run_id, items, gated.container)
    return ScenarioRun(
        run_id=run_id,
        pack_id=pack_id,
        execution_mode=execution_mode,
        status="failed" if summary.failed else "completed",
        started_at=now,
        completed_at=now + _ITEM_STEP * len(items) + timedelta(milliseconds=200),
        items=items,
        summary=summary,
        events=build_events(items, now),
        fix_attempt=fix_attempt,
        pull_requests=build_pull_requests(run_id, fix_attempt, gated.container),
        audit=audit or ExecutionAudit(),
    )


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [text for text in (_text(entry) for entry in value) if text]


def _count(value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if number != number or number < 0 or number == float("inf"):
        return 0
    return int(number)
