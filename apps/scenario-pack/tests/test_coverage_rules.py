from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from scenario_pack.baseline import load_baseline
from scenario_pack.bundle import load_pack
from scenario_pack.coverage import DEFAULT_RULES, CoverageValidator, load_rules
from scenario_pack.models import CodeBaseline, CoverageSummary, ScenarioContract


def _scenario(index: int, *, edge_variants: list[str], anchors: bool = True, **overrides: str) -> ScenarioContract:
    fields = {
        "id": f"scn_{index}",
        "feature": "Checkout",
        "outcome": "Order placed",
        "title": f"Scenario {index}",
        "persona": "Buyer",
        "journey": f"Journey {index}",
        "risk_intent": "",
        "preconditions": ["Signed in"],
        "test_data": ["sku-1"],
        "steps": ["Submit"],
        "expected_checkpoints": ["Confirmed"],
        "edge_variants": edge_variants,
        "code_evidence_anchors": ["src/checkout.ts"] if anchors else [],
        "pass_criteria": "Order confirmed",
        "priority": "high",
    }
    fields.update(overrides)
    return ScenarioContract(**fields)


def _baseline_scenarios() -> list[ScenarioContract]:
    return [
        _scenario(1, edge_variants=["Malformed card payload is rejected"]),
        _scenario(2, edge_variants=["Resume checkout after browser restart"]),
    ]


def _gaps_about(coverage: CoverageSummary, bucket_id: str) -> list[str]:
    return [gap for gap in coverage.uncovered_gaps if bucket_id in gap]


def test_integration_bucket_not_required_without_integrations() -> None:
    validator = CoverageValidator()

    report = validator.validate(_baseline_scenarios(), CoverageSummary(), CodeBaseline())

    assert _gaps_about(report.coverage, "integration-failure") == []
    assert report.findings == []
    assert report.ok


def test_integration_bucket_missing_yields_exactly_one_gap() -> None:
    validator = CoverageValidator()
    baseline = CodeBaseline(integrations=["stripe"])

    report = validator.validate(_baseline_scenarios(), CoverageSummary(), baseline)

    assert _gaps_about(report.coverage, "integration-failure") == [
        "required edge bucket missing: integration-failure (external integration/network failure handling)"
    ]
    assert [finding.kind for finding in report.findings] == ["missing_bucket"]


def test_validation_and_interruption_buckets_are_always_required() -> None:
    scenarios = [_scenario(1, edge_variants=["Happy path only"])]

    report = CoverageValidator().validate(scenarios, CoverageSummary(), None)

    assert [finding.bucket_id for finding in report.findings if finding.kind == "missing_bucket"] == [
        "validation",
        "interruptions",
    ]


def test_permissions_bucket_follows_authenticated_routes() -> None:
    scenarios = _baseline_scenarios()
    public = CodeBaseline(route_map=["/", "/pricing"])
    private = CodeBaseline.model_validate({"routeMap": ["/", "/projects/:id/runs"]})

    assert CoverageValidator().validate(scenarios, CoverageSummary(), public).ok
    report = CoverageValidator().validate(scenarios, CoverageSummary(), private)
    assert [finding.bucket_id for finding in report.findings] == ["permissions"]


def test_keywords_match_case_insensitively_across_corpus() -> None:
    scenarios = [_scenario(1, edge_variants=["happy path"])]
    coverage = CoverageSummary(edge_buckets=["SCHEMA violations"], uncovered_gaps=["no RETRY story yet"])

    report = CoverageValidator().validate(scenarios, coverage, None)

    assert [finding.kind for finding in report.findings] == ["unresolved_bucket"]
    assert report.findings[0].bucket_id == "interruptions"
    assert report.coverage.uncovered_gaps == [
        "no RETRY story yet",
        "required edge bucket unresolved: interruptions (interruption/resume/recovery handling)",
    ]


def test_duplicate_intent_produces_one_entry_listing_duplicates() -> None:
    scenarios = [
        _scenario(1, edge_variants=["invalid input, retry later"], journey="Checkout", risk_intent="Card declined"),
        _scenario(2, edge_variants=["invalid input, retry later"], journey="checkout ", risk_intent="card declined"),
        _scenario(3, edge_variants=["invalid input, retry later"], journey="Refund"),
    ]

    report = CoverageValidator().validate(scenarios, CoverageSummary(), None)

    duplicates = [finding for finding in report.findings if finding.kind == "duplicate_intent"]
    assert len(duplicates) == 1
    assert duplicates[0].scenario_ids == ["scn_1", "scn_2"]
    assert "buyer|checkout|card declined" in duplicates[0].gap


def test_missing_evidence_lists_scenario_ids() -> None:
    scenarios = [
        _scenario(1, edge_variants=["invalid input, retry later"], anchors=False),
        _scenario(2, edge_variants=["invalid input"]),
        _scenario(3, edge_variants=["retry"], anchors=False),
    ]

    report = CoverageValidator().validate(scenarios, CoverageSummary(), None)

    assert [finding.gap for finding in report.findings] == ["scenarios missing code evidence anchors: scn_1, scn_3"]


def test_agent_gaps_are_preserved_and_not_duplicated() -> None:
    existing = "scenarios missing code evidence anchors: scn_1"
    coverage = CoverageSummary(uncovered_gaps=["Agent noted gap", existing])
    scenarios = [_scenario(1, edge_variants=["invalid input, retry after crash"], anchors=False)]

    report = CoverageValidator().validate(scenarios, coverage, None)

    assert report.coverage.uncovered_gaps == ["Agent noted gap", existing]
    assert coverage.uncovered_gaps == ["Agent noted gap", existing]
    assert len(report.findings) == 1


def test_rule_table_can_be_replaced_from_yaml(tmp_path: Path) -> None:
    rules_file = tmp_path / "rules.yaml"
    rules_file.write_text(
        yaml.safe_dump(
            {
                "rules": [
                    {
                        "id": "async",
                        "label": "async boundary handling",
                        "keywords": ["Race", "concurrent"],
                        "required_when": "async_boundaries",
                    }
                ]
            }
        ),
        encoding="utf-8",
    )

    rules = load_rules(rules_file)
    validator = CoverageValidator(rules)
    scenarios = [_scenario(1, edge_variants=["nothing relevant"])]

    assert rules[0].keywords == ["race", "concurrent"]
    assert validator.validate(scenarios, CoverageSummary(), CodeBaseline()).ok
    report = validator.validate(scenarios, CoverageSummary(), CodeBaseline(async_boundaries=["queue consumer"]))
    assert report.coverage.uncovered_gaps == ["required edge bucket missing: async (async boundary handling)"]


def test_unknown_predicate_is_rejected(tmp_path: Path) -> None:
    rules_file = tmp_path / "rules.yaml"
    rules_file.write_text(
        yaml.safe_dump({"rules": [{"id": "x", "label": "x", "keywords": ["x"], "required_when": "sometimes"}]}),
        encoding="utf-8",
    )

    with pytest.raises(ValueError, match="sometimes"):
        load_rules(rules_file)


def test_default_rule_order() -> None:
    assert [rule.id for rule in DEFAULT_RULES] == ["validation", "permissions", "interruptions", "integration-failure"]


def test_baseline_loader_accepts_camel_case_json(tmp_path: Path) -> None:
    path = tmp_path / "baseline.json"
    path.write_text('{"routeMap": ["/dashboard"], "likelyFailurePoints": ["db"]}', encoding="utf-8")

    baseline = load_baseline(path)

    assert baseline is not None
    assert baseline.route_map == ["/dashboard"]
    assert baseline.likely_failure_points == ["db"]
    assert load_baseline(None) is None


@pytest.mark.parametrize(
    ("filename", "loader"),
    [
        ("scenario-pack.yaml", load_pack),
        ("baseline.yaml", load_baseline),
        ("baseline.json", load_baseline),
        ("rules.yaml", load_rules),
        ("rules.json", load_rules),
    ],
)
def test_unparseable_files_raise_value_error(tmp_path: Path, filename: str, loader) -> None:
    path = tmp_path / filename
    path.write_text("pack_id: [unclosed\n", encoding="utf-8")

    with pytest.raises(ValueError, match=filename):
        loader(path)
