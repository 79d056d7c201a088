from __future__ import annotations

from datetime import datetime, timezone

from scenario_executor.quality_gate import gate_execution_output
from scenario_executor.results import (
    MISSING_ITEM_HYPOTHESIS,
    MISSING_PR_URL_NOTE,
    NO_OBSERVED_OUTPUT,
    PLACEHOLDER_HYPOTHESIS,
    assemble_run,
    has_placeholder_text,
    normalize_artifacts,
)
from scenario_pack.models import ScenarioContract

STARTED_AT = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def _scenario(index: int) -> ScenarioContract:
    return ScenarioContract(
        id=f"scn_{index}",
        feature="Runs",
        outcome="Operator ships a tested change",
        title=f"Scenario {index}",
        persona="Maintainer",
        journey=f"Journey {index}",
        preconditions=["Repository connected"],
        test_data=["demo"],
        steps=["Start run"],
        expected_checkpoints=["Run completes"],
        edge_variants=["invalid input rejected"],
        pass_criteria=f"Scenario {index} passes",
        priority="high",
    )


SCENARIOS = [_scenario(index) for index in range(1, 4)]


def _assemble(parsed: dict):
    gated = gate_execution_output(parsed, [scenario.id for scenario in SCENARIOS])
    return assemble_run(run_id="run-1", pack_id="pack_1", scenarios=SCENARIOS, gated=gated, started_at=STARTED_AT)


def test_every_scenario_reaches_a_terminal_item_in_pack_order() -> None:
    run = _assemble(
        {
            "run": {
                "items": [
                    {"scenarioId": "scn_3", "status": "blocked", "observed": "Sandbox has no network"},
                    {"scenarioId": "scn_1", "status": "passed", "observed": "Dashboard shows summary", "expected": ""},
                ]
            }
        }
    )

    assert [item.scenario_id for item in run.items] == ["scn_1", "scn_2", "scn_3"]
    assert [item.status for item in run.items] == ["passed", "failed", "blocked"]
    assert run.items[0].expected == "Scenario 1 passes"
    assert run.items[1].failure_hypothesis == MISSING_ITEM_HYPOTHESIS
    assert run.summary.model_dump() == {"total": 3, "passed": 1, "failed": 1, "blocked": 1}
    assert run.status == "failed"
    assert run.fix_attempt is None
    assert run.pull_requests == []


def test_placeholder_observed_text_fails_item() -> None:
    run = _assemble(
        {
            "run": {
                "items": [
                    {"scenarioId": "scn_1", "status": "passed", "observed": "Queued behind scn_0"},
                    {"scenarioId": "scn_2", "status": "passed", "observed": "   "},
                    {"scenarioId": "scn_3", "status": "passed", "observed": "Completed", "failureHypothesis": None},
                ]
            }
        }
    )

    assert run.items[0].status == "failed"
    assert run.items[0].failure_hypothesis == PLACEHOLDER_HYPOTHESIS
    assert run.items[1].observed == NO_OBSERVED_OUTPUT
    assert run.items[1].status == "passed"
    assert run.items[2].failure_hypothesis is None


def test_placeholder_detection_matches_whole_words() -> None:
    assert has_placeholder_text("Not attempted because setup failed")
    assert has_placeholder_text("result: N/A")
    assert not has_placeholder_text("Appending rows worked")


def test_artifacts_are_normalized() -> None:
    artifacts = normalize_artifacts(
        [
            {"kind": "Screenshot", "label": "after", "value": "shots/after.png"},
            {"kind": "video", "value": "run.mp4"},
            {"kind": "trace", "label": "empty", "value": "  "},
            "stray",
        ]
    )

    assert [(artifact.kind, artifact.label, artifact.value) for artifact in artifacts] == [
        ("screenshot", "after", "shots/after.png"),
        ("log", "Artifact", "run.mp4"),
    ]
    assert normalize_artifacts(None) == []


def test_events_follow_queued_running_terminal() -> None:
    run = _assemble({"run": {"items": [{"scenarioId": "scn_1", "status": "passed", "observed": "ok"}]}})

    first = run.events[:3]
    assert [event.id for event in first] == ["evt_scn_1_queued_0", "evt_scn_1_running_0", "evt_scn_1_passed_0"]
    assert first[0].timestamp == STARTED_AT
    assert first[1].timestamp > first[0].timestamp
    assert len(run.events) == 9
    assert run.events[-1].id == "evt_scn_3_failed_2"


def test_fix_attempt_and_pull_requests_are_normalized() -> None:
    run = _assemble(
        {
            "run": {
                "items": [
                    {"scenarioId": "scn_1", "status": "passed", "observed": "ok"},
                    {"scenarioId": "scn_2", "status": "failed", "observed": "Assertion mismatch"},
                    {"scenarioId": "scn_3", "status": "passed", "observed": "ok"},
                ]
            },
            "fixAttempt": {
                "probableRootCause": "Stale cache",
                "impactedFiles": ["src/cache.ts", ""],
                "status": "Validated",
                "rerunSummary": {"passed": 3, "failed": -1, "blocked": "x"},
            },
            "pullRequests": [
                {"title": "Fix cache", "url": "https://example.test/pr/1", "status": "open", "riskNotes": ["low"]},
                {"riskNotes": ["needs review"]},
                "stray",
            ],
        }
    )

    fix = run.fix_attempt
    assert fix is not None
    assert fix.failed_scenario_ids == ["scn_2"]
    assert fix.patch_summary == "No patch summary returned."
    assert fix.impacted_files == ["src/cache.ts"]
    assert fix.status == "validated"
    assert fix.rerun_summary is not None
    assert (fix.rerun_summary.run_id, fix.rerun_summary.passed, fix.rerun_summary.failed) == ("run-1", 3, 0)

    opened, handoff = run.pull_requests
    assert opened.status == "open"
    assert opened.scenario_ids == ["scn_2"]
    assert opened.branch_name == "scenariofix/run-1"
    assert opened.root_cause_summary == "Stale cache"
    assert handoff.status == "blocked"
    assert handoff.title == "Manual handoff for scn_2"
    assert handoff.risk_notes == ["needs review", MISSING_PR_URL_NOTE]


def test_fix_attempt_is_ignored_without_failures() -> None:
    run = _assemble(
        {
            "run": {"items": [{"scenarioId": scenario.id, "status": "passed", "observed": "ok"} for scenario in SCENARIOS]},
            "fixAttempt": {"probableRootCause": "none"},
            "pullRequests": [{"title": "Unneeded", "url": "https://example.test/pr/2"}],
        }
    )

    assert run.status == "completed"
    assert run.fix_attempt is None
    assert run.pull_requests == []
