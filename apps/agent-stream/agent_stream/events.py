"""Stream events as seen by operator-facing consumers."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from pydantic import BaseModel, ConfigDict

UI_EVENT_WINDOW = 120


class StreamEvent(BaseModel):
    """A decoded frame plus the metadata found in its payload."""

    model_config = ConfigDict(frozen=True)

    event: str
    payload: Any = None
    phase: str
    message: str
    scenario_id: Optional[str] = None
    status: Optional[str] = None
    stage: Optional[str] = None
    thread_id: Optional[str] = None
    turn_id: Optional[str] = None
    timestamp: str

    @classmethod
    def from_frame(cls, event: str, payload: Any) -> "StreamEvent":
        layers = _payload_layers(payload)
        if isinstance(payload, str) and payload.strip():
            message = payload.strip()
        else:
            message = _first_text(layers, "message") or _first_text(layers, "error") or event
        return cls(
            event=event,
            payload=payload,
            phase=_first_text(layers, "phase") or event,
            message=message,
            scenario_id=_first_text(layers, "scenarioId"),
            status=_first_text(layers, "status"),
            stage=_first_text(layers, "stage"),
            thread_id=_first_text(layers, "threadId"),
            turn_id=_first_text(layers, "turnId"),
            timestamp=_first_text(layers, "timestamp") or datetime.now(timezone.utc).isoformat(),
        )

    def as_log_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class EventLog:
    """Most recent stream events, oldest evicted first."""

    def __init__(self, window: int = UI_EVENT_WINDOW) -> None:
        if window <= 0:
            raise ValueError("Event log window must be positive")
        self._events: deque[StreamEvent] = deque(maxlen=window)

    @property
    def window(self) -> int:
        return self._events.maxlen or 0

    def append(self, event: StreamEvent) -> None:
        self._events.append(event)

    def record(self, event_name: str, payload: Any) -> StreamEvent:
        event = StreamEvent.from_frame(event_name, payload)
        self.append(event)
        return event

    def snapshot(self) -> list[StreamEvent]:
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[StreamEvent]:
        return iter(list(self._events))


def _payload_layers(payload: Any) -> list[dict[str, Any]]:
    """Return the payload, its nested ``payload`` and one level deeper, when they are objects."""

    layers: list[dict[str, Any]] = []
    current = payload
    for _ in range(3):
        if not isinstance(current, dict):
            break
        layers.append(current)
        current = current.get("payload")
    return layers


def _first_text(layers: list[dict[str, Any]], key: str) -> str | None:
    for layer in layers:
        value = layer.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
