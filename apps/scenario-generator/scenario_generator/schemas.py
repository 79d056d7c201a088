"""Output schemas sent with each agent turn."""

from __future__ import annotations

from typing import Any

_STRING_LIST: dict[str, Any] = {"type": "array", "items": {"type": "string"}}
_REQUIRED_STRING_LIST: dict[str, Any] = {**_STRING_LIST, "minItems": 1}
_STATUS_COUNTS: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["passed", "failed", "blocked"],
    "properties": {
        "passed": {"type": "number"},
        "failed": {"type": "number"},
        "blocked": {"type": "number"},
    },
}

SCENARIO_OUTPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["scenarios", "groupedByFeature", "groupedByOutcome"],
    "properties": {
        "summary": {"type": "string"},
        "scenarios": {
            "type": "array",
            "minItems": 8,
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": [
                    "id",
                    "feature",
                    "outcome",
                    "title",
                    "persona",
                    "preconditions",
                    "testData",
                    "steps",
                    "expectedCheckpoints",
                    "edgeVariants",
                    "passCriteria",
                    "priority",
                ],
                "properties": {
                    "id": {"type": "string"},
                    "feature": {"type": "string"},
                    "outcome": {"type": "string"},
                    "title": {"type": "string"},
                    "persona": {"type": "string"},
                    "journey": {"type": "string"},
                    "riskIntent": {"type": "string"},
                    "preconditions": _REQUIRED_STRING_LIST,
                    "testData": _REQUIRED_STRING_LIST,
                    "steps": _REQUIRED_STRING_LIST,
                    "expectedCheckpoints": _REQUIRED_STRING_LIST,
                    "edgeVariants": _REQUIRED_STRING_LIST,
                    "codeEvidenceAnchors": _STRING_LIST,
                    "sourceRefs": _STRING_LIST,
                    "passCriteria": {"type": "string"},
                    "priority": {"type": "string", "enum": ["critical", "high", "medium"]},
                },
            },
        },
        "coverage": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                key: _STRING_LIST
                for key in (
                    "personas",
                    "journeys",
                    "edgeBuckets",
                    "features",
                    "outcomes",
                    "assumptions",
                    "knownUnknowns",
                    "uncoveredGaps",
                )
            },
        },
        "groupedByFeature": {"type": "object", "additionalProperties": _STRING_LIST},
        "groupedByOutcome": {"type": "object", "additionalProperties": _STRING_LIST},
    },
}


def build_execution_output_schema(scenario_ids: list[str]) -> dict[str, Any]:
    """Execution output schema whose ``scenarioId`` is restricted to the executed ids."""

    scenario_id_schema: dict[str, Any] = (
        {"type": "string", "enum": list(scenario_ids)} if scenario_ids else {"type": "string"}
    )
    item_count = max(len(scenario_ids), 1)
    return {
        "type": "object",
        "additionalProperties": False,
        "required": ["run", "fixAttempt", "pullRequests"],
        "properties": {
            "run": {
                "type": "object",
                "additionalProperties": False,
                "required": ["status", "items", "summary"],
                "properties": {
                    "status": {"type": "string"},
                    "items": {
                        "type": "array",
                        "minItems": item_count,
                        "maxItems": item_count,
                        "items": {
                            "type": "object",
                            "additionalProperties": False,
                            "required": [
                                "scenarioId",
                                "status",
                                "observed",
                                "expected",
                                "failureHypothesis",
                                "artifacts",
                            ],
                            "properties": {
                                "scenarioId": scenario_id_schema,
                                "status": {"type": "string", "enum": ["passed", "failed", "blocked"]},
                                "observed": {"type": "string"},
                                "expected": {"type": "string"},
                                "failureHypothesis": {"type": ["string", "null"]},
                                "artifacts": {
                                    "type": "array",
                                    "items": {
                                        "type": "object",
                                        "additionalProperties": False,
                                        "required": ["kind", "label", "value"],
                                        "properties": {
                                            "kind": {"type": "string"},
                                            "label": {"type": "string"},
                                            "value": {"type": "string"},
                                        },
                                    },
                                },
                            },
                        },
                    },
                    "summary": _STATUS_COUNTS,
                },
            },
            "fixAttempt": {
                "type": ["object", "null"],
                "additionalProperties": False,
                "required": [
                    "failedScenarioIds",
                    "probableRootCause",
                    "patchSummary",
                    "impactedFiles",
                    "status",
                    "rerunSummary",
                ],
                "properties": {
                    "failedScenarioIds": _STRING_LIST,
                    "probableRootCause": {"type": "string"},
                    "patchSummary": {"type": "string"},
                    "impactedFiles": _STRING_LIST,
                    "status": {"type": "string"},
                    "rerunSummary": {**_STATUS_COUNTS, "type": ["object", "null"]},
                },
            },
            "pullRequests": {
                "type": "array",
                "items": {
                    "type": "object",
                    "additionalProperties": False,
                    "required": [
                        "title",
                        "url",
                        "status",
                        "scenarioIds",
                        "riskNotes",
                        "branchName",
                        "rootCauseSummary",
                    ],
                    "properties": {
                        "title": {"type": "string"},
                        "url": {"type": "string"},
                        "status": {"type": "string"},
                        "scenarioIds": _STRING_LIST,
                        "riskNotes": _STRING_LIST,
                        "branchName": {"type": "string"},
                        "rootCauseSummary": {"type": "string"},
                    },
                },
            },
        },
    }
