"""Drives one agent turn's response through the frame decoder."""

from __future__ import annotations

import json
from typing import Any, Callable, Optional

import structlog

from .bridge import BridgeResponse
from .errors import BridgeRequestError, StreamProtocolError
from .frames import Frame, FrameDecoder, parse_payload

LOGGER = structlog.get_logger("agent_stream")

ERROR_EVENT = "error"
COMPLETED_EVENT = "completed"
GENERIC_STREAM_FAILURE = "Agent bridge stream failed."

EventObserver = Callable[[str, Any], None]

_MISSING = object()


class StreamRelay:
    """Relays frames to an observer and isolates the turn's terminal result.

    The observer sees every frame, including ``error`` and ``completed``, before
    the relay acts on it. Exceptions raised by the observer end the decode loop
    and propagate to the caller.
    """

    def __init__(self, observer: Optional[EventObserver] = None, *, label: str = "turn") -> None:
        self._observer = observer
        self._label = label
        self._logger = LOGGER.bind(turn=label)

    def relay(self, response: BridgeResponse) -> Any:
        if not response.ok:
            message = response.error_message()
            self._logger.warning("bridge_request_failed", status=response.status_code, error=message)
            raise BridgeRequestError(message, status_code=response.status_code)

        if not response.is_stream:
            return self._read_document(response)

        state = _TurnState()
        decoder = FrameDecoder(lambda frame: self._handle_frame(frame, state))
        for chunk in response.iter_chunks():
            decoder.feed(chunk)
        decoder.close()

        if state.result is _MISSING:
            self._logger.warning("stream_incomplete", frames=state.frames)
            raise StreamProtocolError(
                f"{self._label.capitalize()} stream ended before completion payload."
            )
        self._logger.info("stream_completed", frames=state.frames)
        return state.result

    def _read_document(self, response: BridgeResponse) -> Any:
        text = response.read_text()
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StreamProtocolError(
                f"Bridge returned a non-streaming body that is not JSON: {exc.msg}"
            ) from exc
        self._logger.info("document_received", content_type=response.content_type)
        return document

    def _handle_frame(self, frame: Frame, state: "_TurnState") -> None:
        payload = parse_payload(frame.data)
        state.frames += 1
        self._logger.debug("frame_relayed", frame_event=frame.event, index=state.frames)
        if self._observer is not None:
            self._observer(frame.event, payload)

        if frame.event == ERROR_EVENT:
            message = read_stream_error(payload)
            self._logger.warning("stream_error_frame", error=message)
            raise StreamProtocolError(message)

        if frame.event == COMPLETED_EVENT:
            if state.result is not _MISSING:
                raise StreamProtocolError(
                    f"{self._label.capitalize()} stream delivered more than one completion payload."
                )
            if isinstance(payload, dict) and "result" in payload:
                state.result = payload["result"]
            else:
                state.result = payload


class _TurnState:
    def __init__(self) -> None:
        self.result: Any = _MISSING
        self.frames = 0


def read_stream_error(payload: Any) -> str:
    """Most specific message of an error frame payload."""

    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    if isinstance(payload, dict):
        for key in ("error", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return GENERIC_STREAM_FAILURE
