"""Prompt library utilities for agent turns."""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from string import Template
from typing import Any

import yaml

DEFAULT_LIBRARY: dict[str, Any] = {
    "defaults": {
        "approval_policy": "never",
        "sandbox_policy": {
            "type": "workspaceWrite",
            "networkAccess": True,
        },
    },
    "actions": {
        "generate": {
            "path": "/actions/generate/stream",
            "model": "codex spark",
            "skill": "scenario",
            "instructions": [
                "Generate realistic end-to-end user scenarios for ${project}.",
                "",
                "Hard constraints:",
                "- Repository: ${repository}",
                "- Branch: ${branch}",
                "- Head commit: ${head_commit}",
                "- Use only the selected planning/spec/task sources listed below.",
                "- Do not use deselected or unknown documents.",
                "- Scenario quality bar: realistic journeys, edge variants, binary pass criteria, "
                "and evidence-ready checkpoints.",
                "- Generate approximately ${scenario_count} scenarios.",
                "- Group scenarios by both feature and user outcome.",
                "- Cover input validation, interruption/recovery and, where the code has them, "
                "permission and integration failure edge cases.",
                "- Cite code evidence anchors (file paths or symbols) for every scenario.",
                "- If source docs conflict with current code behavior, preserve current behavior "
                "and encode the conflict as edge variants/checkpoints.",
                "${mode_instructions}",
                "",
                "Selected source paths:",
                "${source_paths}",
                "",
                "Return strict JSON only; no markdown and no code fences.",
                "",
                "Source excerpts:",
                "${source_section}",
                "",
                "${user_instruction}",
            ],
        },
        "execute": {
            "path": "/actions/execute/stream",
            "model": "gpt-5.3-xhigh",
            "skill": "",
            "instructions": [
                "Execute the scenario loop in repository context and return strict JSON.",
                "",
                "Execution requirements:",
                "- Execution mode: ${execution_mode}",
                "- Repository: ${repository}",
                "- Branch: ${branch}",
                "- Head commit: ${head_commit}",
                "- Scenario pack id: ${pack_id}",
                "- Process scenarios sequentially in listed order until every scenario reaches a terminal outcome.",
                "- Continue after failures: one failed scenario must not stop later scenarios from running.",
                "- If a step times out or cannot be executed, mark that scenario blocked with the observed reason "
                "and continue with the next scenario.",
                "- Return exactly one run.items entry per scenario listed below (passed/failed/blocked).",
                "",
                "Output contract:",
                "- Return a strict JSON object with keys: run, fixAttempt, pullRequests.",
                "- run.items must include scenarioId, status, observed, expected, optional failureHypothesis "
                "and artifacts.",
                "- pullRequests entries should include title, url/status if available, scenarioIds and riskNotes.",
                "",
                "Constraints:",
                "${constraints}",
                "",
                "${user_instruction}",
                "",
                "Scenario subset:",
                "${scenario_summary}",
            ],
        },
    },
}


class PromptLibrary:
    """Resolves request settings and prompt text per agent action."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        payload = deepcopy(data) if data else deepcopy(DEFAULT_LIBRARY)
        if not isinstance(payload, dict):
            raise ValueError("Prompt library root must be a mapping")
        self._defaults: dict[str, Any] = payload.get("defaults", {}) or {}
        self._actions: dict[str, Any] = payload.get("actions", {}) or {}

    @classmethod
    def from_file(cls, path: Path | None) -> "PromptLibrary":
        """Load overrides from YAML; missing keys keep their built-in defaults."""

        if path is None:
            return cls()
        if not path.exists():
            raise FileNotFoundError(f"Prompt library {path} not found")
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ValueError(f"Prompt library {path} is not valid YAML: {exc}") from exc
        if raw is not None and not isinstance(raw, dict):
            raise ValueError("Prompt library root must be a mapping")
        return cls(_merge(DEFAULT_LIBRARY, raw or {}))

    def action_block(self, action: str) -> dict[str, Any]:
        return self._actions.get(action.lower(), {}) or {}

    def _setting(self, action: str, key: str, fallback: Any = None) -> Any:
        block = self.action_block(action)
        if key in block:
            return block[key]
        return self._defaults.get(key, fallback)

    def path(self, action: str) -> str:
        return str(self._setting(action, "path", f"/actions/{action}/stream"))

    def model(self, action: str) -> str:
        return str(self._setting(action, "model", ""))

    def skill(self, action: str) -> str:
        return str(self._setting(action, "skill", "") or "")

    def approval_policy(self, action: str) -> str:
        return str(self._setting(action, "approval_policy", "never"))

    def sandbox_policy(self, action: str) -> dict[str, Any]:
        policy = self._setting(action, "sandbox_policy", {})
        return deepcopy(policy) if isinstance(policy, dict) else {}

    def render_prompt(self, action: str, replacements: dict[str, str]) -> str:
        instructions = self._setting(action, "instructions", [])
        if isinstance(instructions, str):
            instructions = [instructions]
        return "\n".join(_render_value([str(line) for line in instructions], replacements))

    def request_body(
        self,
        action: str,
        *,
        replacements: dict[str, str],
        output_schema: dict[str, Any],
        cwd: str | None = None,
    ) -> dict[str, Any]:
        """Bridge request payload for one turn of ``action``."""

        body: dict[str, Any] = {
            "model": self.model(action),
            "skillName": self.skill(action),
            "approvalPolicy": self.approval_policy(action),
            "sandboxPolicy": self.sandbox_policy(action),
            "outputSchema": output_schema,
            "prompt": self.render_prompt(action, replacements),
        }
        if cwd:
            body["cwd"] = cwd
        return body


def _render_value(value: Any, replacements: dict[str, str]) -> Any:
    """Recursively substitute placeholders in nested structures."""

    if isinstance(value, str):
        return Template(value).safe_substitute(replacements)
    if isinstance(value, list):
        return [_render_value(item, replacements) for item in value]
    if isinstance(value, dict):
        return {key: _render_value(val, replacements) for key, val in value.items()}
    return value


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged
