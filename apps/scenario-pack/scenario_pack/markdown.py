"""Human-readable rendering of a scenario list."""

from __future__ import annotations

from .models import ScenarioContract

_LIST_SECTIONS: tuple[tuple[str, str], ...] = (
    ("Preconditions", "preconditions"),
    ("Test Data", "test_data"),
    ("Steps", "steps"),
    ("Expected Checkpoints", "expected_checkpoints"),
    ("Edge Variants", "edge_variants"),
)


def render_scenarios_markdown(scenarios: list[ScenarioContract]) -> str:
    lines: list[str] = ["# Generated Scenarios", ""]
    for scenario in scenarios:
        lines.append(f"## {scenario.id} - {scenario.title}")
        lines.append(f"- Persona: {scenario.persona}")
        lines.append(f"- Feature: {scenario.feature}")
        lines.append(f"- Outcome: {scenario.outcome}")
        lines.append(f"- Priority: {scenario.priority}")
        lines.append(f"- Pass Criteria: {scenario.pass_criteria}")
        for heading, attribute in _LIST_SECTIONS:
            lines.append(f"- {heading}:")
            lines.extend(f"  - {item}" for item in getattr(scenario, attribute))
        if scenario.code_evidence_anchors:
            lines.append("- Code Evidence:")
            lines.extend(f"  - {item}" for item in scenario.code_evidence_anchors)
        lines.append("")
    return "\n".join(lines)
