"""Referential integrity gate for execution-turn artifacts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

import structlog

from agent_stream.envelopes import EXECUTION_ENVELOPES, unwrap
from agent_stream.errors import ReferentialIntegrityError, SchemaViolationError

from .models import RUN_ITEM_STATUSES

LOGGER = structlog.get_logger("scenario_executor")


@dataclass(frozen=True)
class GatedExecution:
    """Execution output that passed the gate.

    ``items`` maps each reported scenario id to its raw record, in report order.
    ``excluded`` counts records skipped as malformed.
    """

    container: dict[str, Any]
    items: dict[str, dict[str, Any]] = field(default_factory=dict)
    excluded: int = 0

    @property
    def run_record(self) -> dict[str, Any]:
        run = self.container.get("run")
        return run if isinstance(run, dict) else {}


def execution_container(parsed: Any) -> dict[str, Any]:
    container = unwrap(parsed, EXECUTION_ENVELOPES)
    if container is None:
        raise SchemaViolationError("Execution output is not a JSON object.")
    return container


def gate_execution_output(parsed: Any, known_ids: Iterable[str]) -> GatedExecution:
    """Validate run items against the scenario ids of the pack under execution.

    Records without a scenario id or with an unknown status are excluded.
    Unknown or repeated scenario ids raise ReferentialIntegrityError.
    """

    container = execution_container(parsed)
    known = set(known_ids)
    run = container.get("run")
    raw_items = run.get("items") if isinstance(run, dict) else None
    if not isinstance(raw_items, list):
        raw_items = []

    accepted: dict[str, dict[str, Any]] = {}
    positions: dict[str, int] = {}
    excluded = 0
    for index, item in enumerate(raw_items):
        if not isinstance(item, dict):
            excluded += 1
            LOGGER.warning("run_item_excluded", index=index, reason="not an object")
            continue
        scenario_id = str(item.get("scenarioId") or "").strip()
        status = str(item.get("status") or "").strip().lower()
        if not scenario_id or status not in RUN_ITEM_STATUSES:
            excluded += 1
            LOGGER.warning(
                "run_item_excluded",
                index=index,
                scenario_id=scenario_id or None,
                status=status or None,
            )
            continue
        if scenario_id not in known:
            raise ReferentialIntegrityError(
                f"Execution output references unknown scenario id {scenario_id} at run.items[{index}]."
            )
        if scenario_id in accepted:
            raise ReferentialIntegrityError(
                f"Execution output repeats scenario id {scenario_id} at "
                f"run.items[{positions[scenario_id]}] and run.items[{index}]."
            )
        accepted[scenario_id] = {**item, "scenarioId": scenario_id, "status": status}
        positions[scenario_id] = index

    LOGGER.info("quality_gate_passed", items=len(accepted), excluded=excluded)
    return GatedExecution(container=container, items=accepted, excluded=excluded)
