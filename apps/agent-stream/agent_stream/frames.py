"""Line-oriented event stream framing (``event:`` / ``data:`` / blank line)."""

from __future__ import annotations

import codecs
import json
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator

DEFAULT_EVENT = "message"

FrameSink = Callable[["Frame"], None]


@dataclass(frozen=True)
class Frame:
    """One dispatched event unit."""

    event: str
    data_lines: tuple[str, ...]

    @property
    def data(self) -> str:
        return "\n".join(self.data_lines)


class FrameDecoder:
    """Incrementally splits text or byte chunks into frames.

    Chunk boundaries are arbitrary: a partial line stays in the carry-over buffer
    until its terminator arrives. Every completed frame is handed to ``sink``
    before the rest of the buffer is examined, so an exception raised by the
    sink stops decoding at that frame.
    """

    def __init__(self, sink: FrameSink) -> None:
        self._sink = sink
        self._buffer = ""
        self._event = DEFAULT_EVENT
        self._data_lines: list[str] = []
        self._bytes_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: str | bytes) -> None:
        if isinstance(chunk, bytes):
            chunk = self._bytes_decoder.decode(chunk)
        self._buffer += chunk
        self._drain()

    def close(self) -> None:
        """Flush a trailing frame the producer did not terminate with a blank line."""

        tail = self._bytes_decoder.decode(b"", final=True)
        if tail:
            self._buffer += tail
            self._drain()
        if self._buffer:
            # A final line without terminator still counts as a line.
            line, self._buffer = self._buffer, ""
            self._consume_line(line.removesuffix("\r"))
        if self._data_lines:
            self._dispatch()

    def _drain(self) -> None:
        while True:
            newline_index = self._buffer.find("\n")
            if newline_index == -1:
                return
            raw_line = self._buffer[:newline_index]
            self._buffer = self._buffer[newline_index + 1 :]
            self._consume_line(raw_line.removesuffix("\r"))

    def _consume_line(self, line: str) -> None:
        if line.startswith("event:"):
            self._event = line[len("event:") :].strip() or DEFAULT_EVENT
        elif line.startswith("data:"):
            self._data_lines.append(line[len("data:") :].strip())
        elif line == "":
            self._dispatch()
        # anything else is a transport comment

    def _dispatch(self) -> None:
        event, data_lines = self._event, self._data_lines
        self._event = DEFAULT_EVENT
        self._data_lines = []
        if data_lines:
            self._sink(Frame(event=event, data_lines=tuple(data_lines)))


def iter_frames(chunks: Iterable[str | bytes]) -> Iterator[Frame]:
    """Yield frames lazily, reading the next chunk only after pending frames are consumed."""

    pending: list[Frame] = []
    decoder = FrameDecoder(pending.append)
    for chunk in chunks:
        decoder.feed(chunk)
        while pending:
            yield pending.pop(0)
    decoder.close()
    while pending:
        yield pending.pop(0)


def parse_payload(raw: str) -> Any:
    """Decode frame data as JSON when possible, else keep the raw string."""

    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def encode_frame(event: str, payload: Any) -> str:
    """Serialize one frame; strings are sent verbatim, everything else as compact JSON."""

    text = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    lines = [f"event: {event or DEFAULT_EVENT}"]
    lines.extend(f"data: {line}" for line in text.split("\n"))
    return "\n".join(lines) + "\n\n"


def encode_frames(frames: Iterable[Frame]) -> str:
    """Re-encode already decoded frames, keeping their data lines untouched."""

    parts: list[str] = []
    for frame in frames:
        lines = [f"event: {frame.event}"]
        lines.extend(f"data: {line}" for line in frame.data_lines)
        parts.append("\n".join(lines) + "\n\n")
    return "".join(parts)
