from __future__ import annotations

from typing import Any

import pytest

from agent_stream.errors import SchemaViolationError
from agent_stream.extractor import parse_artifact_text
from scenario_pack.normalizers import normalize_generation_artifact


def _raw_scenario(index: int, **overrides: Any) -> dict[str, Any]:
    scenario: dict[str, Any] = {
        "id": f"scn_{index}",
        "feature": "Checkout" if index % 2 else "Catalog",
        "outcome": "Order placed" if index % 2 else "Item found",
        "title": f"Scenario {index}",
        "persona": "Returning buyer",
        "journey": f"Journey {index}",
        "riskIntent": "",
        "preconditions": ["Signed in"],
        "testData": ["sku-1"],
        "steps": ["Open page", "Submit form"],
        "expectedCheckpoints": ["Confirmation shown"],
        "edgeVariants": ["invalid card number"],
        "codeEvidenceAnchors": ["src/checkout.ts"],
        "passCriteria": "Order is confirmed",
        "priority": "high",
    }
    scenario.update(overrides)
    return scenario


def test_fenced_empty_scenario_list_is_rejected() -> None:
    parsed = parse_artifact_text('```json\n{"scenarios":[]}\n```')

    assert parsed == {"scenarios": []}
    with pytest.raises(SchemaViolationError, match="expected at least one scenario"):
        normalize_generation_artifact(parsed)


def test_duplicate_ids_name_both_entries() -> None:
    parsed = {"scenarios": [_raw_scenario(1), _raw_scenario(2, id="scn_1")]}

    with pytest.raises(SchemaViolationError) as excinfo:
        normalize_generation_artifact(parsed)

    message = str(excinfo.value)
    assert "scn_1" in message
    assert "scenarios[0]" in message
    assert "scenarios[1]" in message


def test_valid_scenarios_yield_derived_coverage_and_groups() -> None:
    parsed = {"scenarios": [_raw_scenario(1), _raw_scenario(2), _raw_scenario(3)]}

    artifact = normalize_generation_artifact(parsed)

    assert [scenario.id for scenario in artifact.scenarios] == ["scn_1", "scn_2", "scn_3"]
    coverage = artifact.coverage
    assert coverage.personas == ["Returning buyer"]
    assert coverage.journeys == ["Journey 1", "Journey 2", "Journey 3"]
    assert coverage.edge_buckets == ["invalid card number"]
    assert coverage.features == ["Checkout", "Catalog"]
    assert coverage.outcomes == ["Order placed", "Item found"]
    assert coverage.uncovered_gaps == []
    assert artifact.grouped_by_feature == {"Checkout": ["scn_1", "scn_3"], "Catalog": ["scn_2"]}
    assert artifact.grouped_by_outcome == {"Order placed": ["scn_1", "scn_3"], "Item found": ["scn_2"]}


@pytest.mark.parametrize("envelope", ["scenarioPack", "result"])
def test_envelopes_are_unwrapped(envelope: str) -> None:
    artifact = normalize_generation_artifact({envelope: {"scenarios": [_raw_scenario(1)]}})

    assert artifact.scenarios[0].id == "scn_1"


@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"persona": "  "}, "scenarios[0].persona"),
        ({"passCriteria": None}, "scenarios[0].passCriteria"),
        ({"steps": ["", "  "]}, "scenarios[0].steps"),
        ({"testData": "sku-1"}, "scenarios[0].testData"),
        ({"priority": "urgent"}, "scenarios[0].priority"),
    ],
)
def test_violations_name_field_and_index(overrides: dict[str, Any], field: str) -> None:
    with pytest.raises(SchemaViolationError, match=field.replace("[", r"\[").replace("]", r"\]")):
        normalize_generation_artifact({"scenarios": [_raw_scenario(1, **overrides)]})


def test_non_object_entries_and_roots_are_rejected() -> None:
    with pytest.raises(SchemaViolationError, match="expected a JSON object"):
        normalize_generation_artifact([_raw_scenario(1)])
    with pytest.raises(SchemaViolationError, match=r"scenarios\[1\] is not an object"):
        normalize_generation_artifact({"scenarios": [_raw_scenario(1), "scn_2"]})
    with pytest.raises(SchemaViolationError, match="scenarios must be an array"):
        normalize_generation_artifact({"scenarios": {"scn_1": {}}})


def test_text_fields_are_trimmed_and_defaults_applied() -> None:
    raw = _raw_scenario(1, priority="  CRITICAL ", journey="", title="  Pay now ", steps=[" a ", "", 3, "b"])
    raw.pop("riskIntent")
    raw.pop("codeEvidenceAnchors")

    scenario = normalize_generation_artifact({"scenarios": [raw]}).scenarios[0]

    assert scenario.priority == "critical"
    assert scenario.title == "Pay now"
    assert scenario.journey == "Pay now"
    assert scenario.steps == ["a", "b"]
    assert scenario.risk_intent == ""
    assert scenario.code_evidence_anchors == []


def test_record_style_groupings_are_normalized() -> None:
    parsed = {
        "scenarios": [_raw_scenario(1), _raw_scenario(2), _raw_scenario(3)],
        "groupedByFeature": [
            {"feature": "Checkout", "scenarioIds": ["scn_1", " scn_3 ", "scn_1", "scn_99", ""]},
            {"key": "", "feature": "", "scenarioIds": ["scn_2"]},
            {"key": "Empty", "scenarioIds": []},
            "not a record",
        ],
        "groupedByOutcome": {"Anything": ["scn_2"], "": ["scn_1"], "Nothing": []},
    }

    artifact = normalize_generation_artifact(parsed)

    assert artifact.grouped_by_feature == {"Checkout": ["scn_1", "scn_3"]}
    assert artifact.grouped_by_outcome == {"Anything": ["scn_2"]}


def test_grouping_that_normalizes_to_nothing_is_derived() -> None:
    parsed = {
        "scenarios": [_raw_scenario(1), _raw_scenario(2)],
        "groupedByFeature": [{"feature": "Ghost", "scenarioIds": ["scn_404"]}],
        "groupedByOutcome": {"Done": ["scn_2", "scn_1"]},
    }

    artifact = normalize_generation_artifact(parsed)

    assert artifact.grouped_by_feature == {"Checkout": ["scn_1"], "Catalog": ["scn_2"]}
    assert artifact.grouped_by_outcome == {"Done": ["scn_2", "scn_1"]}


def test_agent_coverage_wins_when_non_empty_and_problem_sets_pass_through() -> None:
    parsed = {
        "scenarios": [_raw_scenario(1)],
        "coverage": {
            "personas": ["Admin", " "],
            "journeys": [],
            "edgeBuckets": "not a list",
            "assumptions": ["Staging data exists"],
            "knownUnknowns": ["Payment sandbox limits"],
            "uncoveredGaps": ["Refund flow not covered"],
        },
    }

    coverage = normalize_generation_artifact(parsed).coverage

    assert coverage.personas == ["Admin"]
    assert coverage.journeys == ["Journey 1"]
    assert coverage.edge_buckets == ["invalid card number"]
    assert coverage.assumptions == ["Staging data exists"]
    assert coverage.known_unknowns == ["Payment sandbox limits"]
    assert coverage.uncovered_gaps == ["Refund flow not covered"]
