"""Helpers for turning a parsed generation-turn artifact into validated scenario data."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

import structlog

from agent_stream.envelopes import GENERATION_ENVELOPES, unwrap
from agent_stream.errors import SchemaViolationError

from .models import PRIORITIES, CoverageSummary, ScenarioContract

LOGGER = structlog.get_logger("scenario_pack")

REQUIRED_TEXT_FIELDS: tuple[tuple[str, str], ...] = (
    ("id", "id"),
    ("feature", "feature"),
    ("outcome", "outcome"),
    ("title", "title"),
    ("persona", "persona"),
    ("passCriteria", "pass_criteria"),
)
REQUIRED_LIST_FIELDS: tuple[tuple[str, str], ...] = (
    ("preconditions", "preconditions"),
    ("testData", "test_data"),
    ("steps", "steps"),
    ("expectedCheckpoints", "expected_checkpoints"),
    ("edgeVariants", "edge_variants"),
)
DESCRIPTIVE_COVERAGE_FIELDS: tuple[tuple[str, str], ...] = (
    ("personas", "personas"),
    ("journeys", "journeys"),
    ("edgeBuckets", "edge_buckets"),
    ("features", "features"),
    ("outcomes", "outcomes"),
)
PROBLEM_COVERAGE_FIELDS: tuple[tuple[str, str], ...] = (
    ("assumptions", "assumptions"),
    ("knownUnknowns", "known_unknowns"),
    ("uncoveredGaps", "uncovered_gaps"),
)


@dataclass(frozen=True)
class NormalizedArtifact:
    """Scenarios, coverage and groupings of one generation turn, before coverage validation."""

    scenarios: list[ScenarioContract]
    coverage: CoverageSummary
    grouped_by_feature: dict[str, list[str]]
    grouped_by_outcome: dict[str, list[str]]


def normalize_generation_artifact(parsed: Any) -> NormalizedArtifact:
    """Validate and complete a parsed generation artifact.

    Raises ``SchemaViolationError`` naming the offending field for any missing or
    malformed scenario attribute, an empty scenario list or a repeated scenario id.
    """

    if not isinstance(parsed, dict):
        raise SchemaViolationError("Invalid scenario output: expected a JSON object.")
    container = unwrap(parsed, GENERATION_ENVELOPES) or parsed

    scenarios = _normalize_scenarios(container.get("scenarios"))
    known_ids = [scenario.id for scenario in scenarios]

    grouped_by_feature = _normalize_group_map(container.get("groupedByFeature"), "feature", known_ids)
    if not grouped_by_feature:
        LOGGER.debug("grouping_derived", grouping="feature")
        grouped_by_feature = _derive_groups(scenarios, "feature")

    grouped_by_outcome = _normalize_group_map(container.get("groupedByOutcome"), "outcome", known_ids)
    if not grouped_by_outcome:
        LOGGER.debug("grouping_derived", grouping="outcome")
        grouped_by_outcome = _derive_groups(scenarios, "outcome")

    coverage = _normalize_coverage(container.get("coverage"), scenarios)
    LOGGER.info(
        "artifact_normalized",
        scenarios=len(scenarios),
        features=len(grouped_by_feature),
        outcomes=len(grouped_by_outcome),
    )
    return NormalizedArtifact(
        scenarios=scenarios,
        coverage=coverage,
        grouped_by_feature=grouped_by_feature,
        grouped_by_outcome=grouped_by_outcome,
    )


def _normalize_scenarios(value: Any) -> list[ScenarioContract]:
    if not isinstance(value, list):
        raise SchemaViolationError("Invalid scenario output: scenarios must be an array.")
    if not value:
        raise SchemaViolationError("Invalid scenario output: expected at least one scenario.")

    scenarios = [_normalize_scenario(entry, index) for index, entry in enumerate(value)]

    first_seen: dict[str, int] = {}
    for index, scenario in enumerate(scenarios):
        if scenario.id in first_seen:
            raise SchemaViolationError(
                "Invalid scenario output: duplicate scenario id "
                f"{scenario.id} at scenarios[{first_seen[scenario.id]}] and scenarios[{index}]."
            )
        first_seen[scenario.id] = index
    return scenarios


def _normalize_scenario(value: Any, index: int) -> ScenarioContract:
    if not isinstance(value, dict):
        raise SchemaViolationError(f"Invalid scenario output: scenarios[{index}] is not an object.")

    fields: dict[str, Any] = {}
    for source_key, field_name in REQUIRED_TEXT_FIELDS:
        fields[field_name] = _require_text(value.get(source_key), f"scenarios[{index}].{source_key}")
    for source_key, field_name in REQUIRED_LIST_FIELDS:
        fields[field_name] = _require_text_list(value.get(source_key), f"scenarios[{index}].{source_key}")

    fields["journey"] = _optional_text(value.get("journey")) or fields["title"]
    fields["risk_intent"] = _optional_text(value.get("riskIntent"))
    fields["code_evidence_anchors"] = _loose_text_list(value.get("codeEvidenceAnchors"))
    fields["source_refs"] = _loose_text_list(value.get("sourceRefs"))
    fields["priority"] = _normalize_priority(value.get("priority"), f"scenarios[{index}].priority")
    return ScenarioContract(**fields)


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise SchemaViolationError(f"Invalid scenario output: {field_name} must be a non-empty string.")
    return value.strip()


def _optional_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _require_text_list(value: Any, field_name: str) -> list[str]:
    if not isinstance(value, list):
        raise SchemaViolationError(f"Invalid scenario output: {field_name} must be an array of strings.")
    normalized = _loose_text_list(value)
    if not normalized:
        raise SchemaViolationError(f"Invalid scenario output: {field_name} must include at least one entry.")
    return normalized


def _loose_text_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _normalize_priority(value: Any, field_name: str) -> str:
    normalized = str(value if value is not None else "").strip().lower()
    if normalized in PRIORITIES:
        return normalized
    raise SchemaViolationError(
        f"Invalid scenario output: {field_name} must be one of {', '.join(PRIORITIES)}."
    )


def _normalize_group_map(
    value: Any,
    group_key_field: Literal["feature", "outcome"],
    known_ids: list[str],
) -> dict[str, list[str]]:
    """Normalize either ``[{key|feature|outcome, scenarioIds}]`` records or a direct mapping."""

    pairs: list[tuple[Any, Any]] = []
    if isinstance(value, list):
        for entry in value:
            if not isinstance(entry, dict):
                continue
            key = entry.get("key")
            if not isinstance(key, str) or not key.strip():
                key = entry.get(group_key_field)
            pairs.append((key, entry.get("scenarioIds")))
    elif isinstance(value, dict):
        pairs = list(value.items())

    known = set(known_ids)
    output: dict[str, list[str]] = {}
    for raw_key, raw_ids in pairs:
        if not isinstance(raw_key, str) or not raw_key.strip() or not isinstance(raw_ids, list):
            continue
        key = raw_key.strip()
        ids = output.get(key, [])
        for raw_id in raw_ids:
            if not isinstance(raw_id, str):
                continue
            scenario_id = raw_id.strip()
            if scenario_id in known and scenario_id not in ids:
                ids.append(scenario_id)
        if ids:
            output[key] = ids
    return output


def _derive_groups(
    scenarios: list[ScenarioContract],
    group_key_field: Literal["feature", "outcome"],
) -> dict[str, list[str]]:
    groups: dict[str, list[str]] = {}
    for scenario in scenarios:
        groups.setdefault(getattr(scenario, group_key_field), []).append(scenario.id)
    return groups


def derive_coverage(scenarios: list[ScenarioContract]) -> CoverageSummary:
    """Coverage sets folded from the scenarios, in first-seen order."""

    return CoverageSummary(
        personas=_distinct(scenario.persona for scenario in scenarios),
        journeys=_distinct(scenario.journey or scenario.title for scenario in scenarios),
        edge_buckets=_distinct(variant for scenario in scenarios for variant in scenario.edge_variants),
        features=_distinct(scenario.feature for scenario in scenarios),
        outcomes=_distinct(scenario.outcome for scenario in scenarios),
    )


def _normalize_coverage(value: Any, scenarios: list[ScenarioContract]) -> CoverageSummary:
    supplied = value if isinstance(value, dict) else {}
    derived = derive_coverage(scenarios)

    fields: dict[str, list[str]] = {}
    for source_key, field_name in DESCRIPTIVE_COVERAGE_FIELDS:
        agent_list = _loose_text_list(supplied.get(source_key))
        fields[field_name] = agent_list or getattr(derived, field_name)
    for source_key, field_name in PROBLEM_COVERAGE_FIELDS:
        fields[field_name] = _loose_text_list(supplied.get(source_key))
    return CoverageSummary(**fields)


def _distinct(values: Any) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered
