"""Edge-bucket rule table and the soft-fail coverage validator."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Literal

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .models import CodeBaseline, CoverageSummary, ScenarioContract

LOGGER = structlog.get_logger("scenario_pack")

GapKind = Literal["missing_bucket", "unresolved_bucket", "duplicate_intent", "missing_evidence"]
Requirement = Callable[[CodeBaseline | None], bool]

AUTHENTICATED_ROUTE_MARKERS: tuple[str, ...] = ("/dashboard", "/projects/")


def _always(baseline: CodeBaseline | None) -> bool:
    return True


def _authenticated_routes(baseline: CodeBaseline | None) -> bool:
    if baseline is None:
        return False
    return any(marker in route for route in baseline.route_map for marker in AUTHENTICATED_ROUTE_MARKERS)


def _integrations(baseline: CodeBaseline | None) -> bool:
    return bool(baseline and baseline.integrations)


def _failure_points(baseline: CodeBaseline | None) -> bool:
    return bool(baseline and (baseline.error_paths or baseline.likely_failure_points))


def _async_boundaries(baseline: CodeBaseline | None) -> bool:
    return bool(baseline and baseline.async_boundaries)


REQUIREMENT_PREDICATES: dict[str, Requirement] = {
    "always": _always,
    "authenticated_routes": _authenticated_routes,
    "integrations": _integrations,
    "failure_points": _failure_points,
    "async_boundaries": _async_boundaries,
}


class EdgeBucketRule(BaseModel):
    """One required risk category: keywords that evidence it and when it applies."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    keywords: list[str] = Field(min_length=1)
    required_when: str = "always"

    @field_validator("keywords")
    @classmethod
    def _lowercase_keywords(cls, value: list[str]) -> list[str]:
        keywords = [keyword.strip().lower() for keyword in value if keyword.strip()]
        if not keywords:
            raise ValueError("at least one non-blank keyword is required")
        return keywords

    @field_validator("required_when")
    @classmethod
    def _known_predicate(cls, value: str) -> str:
        if value not in REQUIREMENT_PREDICATES:
            raise ValueError(
                f"unknown requirement predicate {value!r}; expected one of {', '.join(REQUIREMENT_PREDICATES)}"
            )
        return value

    def is_required(self, baseline: CodeBaseline | None) -> bool:
        return REQUIREMENT_PREDICATES[self.required_when](baseline)

    def matches(self, text: str) -> bool:
        normalized = text.lower()
        return any(keyword in normalized for keyword in self.keywords)

    def describe(self) -> str:
        return f"{self.id} ({self.label})"


DEFAULT_RULES: tuple[EdgeBucketRule, ...] = (
    EdgeBucketRule(
        id="validation",
        label="input validation and malformed payload handling",
        keywords=["invalid", "malformed", "validation", "required field", "schema"],
        required_when="always",
    ),
    EdgeBucketRule(
        id="permissions",
        label="permission or access-control edge handling",
        keywords=["permission", "forbidden", "unauthorized", "access denied", "auth"],
        required_when="authenticated_routes",
    ),
    EdgeBucketRule(
        id="interruptions",
        label="interruption/resume/recovery handling",
        keywords=["interrupt", "resume", "recovery", "restart", "retry"],
        required_when="always",
    ),
    EdgeBucketRule(
        id="integration-failure",
        label="external integration/network failure handling",
        keywords=["timeout", "network", "rate limit", "api failure", "unavailable", "integration"],
        required_when="integrations",
    ),
)


class RuleTable(BaseModel):
    rules: list[EdgeBucketRule] = Field(min_length=1)


def load_rules(path: Path) -> tuple[EdgeBucketRule, ...]:
    """Load a replacement rule table from a YAML or JSON file with a top-level ``rules`` list."""

    if not path.exists():
        raise FileNotFoundError(f"Coverage rule file {path} not found")
    text = path.read_text(encoding="utf-8")
    try:
        raw = json.loads(text) if path.suffix.lower() == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ValueError(f"Coverage rule file {path} could not be parsed: {exc}") from exc
    try:
        table = RuleTable.model_validate(raw or {})
    except ValidationError as exc:
        raise ValueError(f"Invalid coverage rule file {path}: {exc}") from exc
    return tuple(table.rules)


class CoverageGapFinding(BaseModel):
    """A recorded coverage defect. Never raised."""

    model_config = ConfigDict(frozen=True)

    kind: GapKind
    gap: str
    bucket_id: str | None = None
    scenario_ids: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class CoverageReport:
    coverage: CoverageSummary
    findings: list[CoverageGapFinding]

    @property
    def ok(self) -> bool:
        return not self.findings


class CoverageValidator:
    """Checks domain completeness and records gaps instead of rejecting the artifact."""

    def __init__(self, rules: Iterable[EdgeBucketRule] | None = None) -> None:
        self.rules: tuple[EdgeBucketRule, ...] = tuple(rules) if rules is not None else DEFAULT_RULES

    def required_rules(self, baseline: CodeBaseline | None) -> list[EdgeBucketRule]:
        return [rule for rule in self.rules if rule.is_required(baseline)]

    def validate(
        self,
        scenarios: list[ScenarioContract],
        coverage: CoverageSummary,
        baseline: CodeBaseline | None = None,
    ) -> CoverageReport:
        findings: list[CoverageGapFinding] = []
        findings.extend(self._bucket_findings(scenarios, coverage, baseline))
        findings.extend(_duplicate_intent_findings(scenarios))
        findings.extend(_missing_evidence_findings(scenarios))

        gaps = list(coverage.uncovered_gaps)
        for finding in findings:
            LOGGER.warning("coverage_gap_recorded", kind=finding.kind, bucket=finding.bucket_id, gap=finding.gap)
            if finding.gap not in gaps:
                gaps.append(finding.gap)

        return CoverageReport(
            coverage=coverage.model_copy(update={"uncovered_gaps": gaps}),
            findings=findings,
        )

    def _bucket_findings(
        self,
        scenarios: list[ScenarioContract],
        coverage: CoverageSummary,
        baseline: CodeBaseline | None,
    ) -> list[CoverageGapFinding]:
        corpus = "\n".join(
            [
                *coverage.edge_buckets,
                *coverage.uncovered_gaps,
                *(variant for scenario in scenarios for variant in scenario.edge_variants),
            ]
        )
        missing: list[CoverageGapFinding] = []
        unresolved: list[CoverageGapFinding] = []
        for rule in self.required_rules(baseline):
            if not rule.matches(corpus):
                missing.append(
                    CoverageGapFinding(
                        kind="missing_bucket",
                        bucket_id=rule.id,
                        gap=f"required edge bucket missing: {rule.describe()}",
                    )
                )
            elif any(rule.matches(gap) for gap in coverage.uncovered_gaps):
                unresolved.append(
                    CoverageGapFinding(
                        kind="unresolved_bucket",
                        bucket_id=rule.id,
                        gap=f"required edge bucket unresolved: {rule.describe()}",
                    )
                )
        return missing + unresolved


def _intent_key(scenario: ScenarioContract) -> str:
    return "|".join(
        [
            scenario.persona.strip().lower(),
            (scenario.journey or scenario.title).strip().lower(),
            scenario.risk_intent.strip().lower(),
        ]
    )


def _duplicate_intent_findings(scenarios: list[ScenarioContract]) -> list[CoverageGapFinding]:
    by_key: dict[str, list[str]] = {}
    for scenario in scenarios:
        by_key.setdefault(_intent_key(scenario), []).append(scenario.id)

    duplicates = {key: ids for key, ids in by_key.items() if len(ids) > 1}
    if not duplicates:
        return []
    described = "; ".join(f"{key} [{', '.join(ids)}]" for key, ids in duplicates.items())
    return [
        CoverageGapFinding(
            kind="duplicate_intent",
            gap=f"duplicate scenario intent for persona+journey+risk: {described}",
            scenario_ids=[scenario_id for ids in duplicates.values() for scenario_id in ids],
        )
    ]


def _missing_evidence_findings(scenarios: list[ScenarioContract]) -> list[CoverageGapFinding]:
    missing = [scenario.id for scenario in scenarios if not scenario.code_evidence_anchors]
    if not missing:
        return []
    return [
        CoverageGapFinding(
            kind="missing_evidence",
            gap=f"scenarios missing code evidence anchors: {', '.join(missing)}",
            scenario_ids=missing,
        )
    ]
