"""HTTP client for the agent bridge."""

from __future__ import annotations

import json
import os
from http.client import HTTPResponse
from typing import Any, Iterator
from urllib import error, request

import structlog

from .errors import BridgeConfigurationError, BridgeRequestError

LOGGER = structlog.get_logger("agent_stream")

BRIDGE_URL_ENV = "SCENARIO_BRIDGE_URL"
WORKSPACE_CWD_ENV = "SCENARIO_WORKSPACE_CWD"
STREAM_CONTENT_TYPE = "text/event-stream"
DEFAULT_CHUNK_SIZE = 8192


class BridgeResponse:
    """One bridge answer: status, declared content type and a lazily read body."""

    def __init__(
        self,
        *,
        status_code: int,
        content_type: str,
        stream: Any,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.status_code = status_code
        self.content_type = content_type
        self._stream = stream
        self._chunk_size = chunk_size

    @classmethod
    def from_bytes(cls, status_code: int, content_type: str, body: bytes) -> "BridgeResponse":
        return cls(status_code=status_code, content_type=content_type, stream=_StaticBody([body]))

    @classmethod
    def from_chunks(cls, status_code: int, content_type: str, chunks: list[bytes | str]) -> "BridgeResponse":
        return cls(status_code=status_code, content_type=content_type, stream=_StaticBody(chunks))

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_stream(self) -> bool:
        return STREAM_CONTENT_TYPE in self.content_type.lower()

    def iter_chunks(self) -> Iterator[bytes]:
        """Yield body chunks as soon as the producer flushes them."""

        reader = getattr(self._stream, "read1", None) or self._stream.read
        while True:
            chunk = reader(self._chunk_size)
            if not chunk:
                return
            yield chunk

    def read_text(self) -> str:
        return b"".join(self.iter_chunks()).decode("utf-8", errors="replace")

    def error_message(self) -> str:
        """Error text of a failed response: its JSON ``error`` field or a status fallback."""

        fallback = f"Bridge request failed with status {self.status_code}."
        try:
            payload = json.loads(self.read_text())
        except (json.JSONDecodeError, UnicodeDecodeError):
            return fallback
        if isinstance(payload, dict) and isinstance(payload.get("error"), str) and payload["error"].strip():
            return payload["error"].strip()
        return fallback

    def close(self) -> None:
        close = getattr(self._stream, "close", None)
        if close:
            close()

    def __enter__(self) -> "BridgeResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class BridgeClient:
    """Posts JSON requests to the bridge and hands back unread responses."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        resolved = (base_url or os.getenv(BRIDGE_URL_ENV, "")).strip()
        if not resolved:
            raise BridgeConfigurationError(
                f"Agent bridge is not configured. Set {BRIDGE_URL_ENV} or pass --bridge-url."
            )
        self._base_url = resolved.rstrip("/")
        # None leaves the socket blocking; deadlines belong to the transport layer.
        self._timeout = timeout
        self._chunk_size = chunk_size

    @property
    def base_url(self) -> str:
        return self._base_url

    def post(self, path: str, payload: dict[str, Any]) -> BridgeResponse:
        url = self._build_url(path)
        body = json.dumps(payload).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Accept": f"{STREAM_CONTENT_TYPE}, application/json",
        }
        req = request.Request(url, data=body, headers=headers, method="POST")
        LOGGER.debug("bridge_request_sent", url=url, bytes=len(body))
        try:
            if self._timeout is None:
                response: HTTPResponse = request.urlopen(req)
            else:
                response = request.urlopen(req, timeout=self._timeout)
        except error.HTTPError as exc:
            content_type = exc.headers.get("Content-Type", "") if exc.headers else ""
            return BridgeResponse(
                status_code=exc.code,
                content_type=content_type,
                stream=exc,
                chunk_size=self._chunk_size,
            )
        except error.URLError as exc:
            raise BridgeRequestError(f"Bridge request to {url} failed: {exc.reason}") from exc
        return BridgeResponse(
            status_code=response.status,
            content_type=response.headers.get("Content-Type", ""),
            stream=response,
            chunk_size=self._chunk_size,
        )

    def _build_url(self, path: str) -> str:
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self._base_url}{path}"


class _StaticBody:
    """File-like reader over an in-memory list of chunks."""

    def __init__(self, chunks: list[bytes | str]) -> None:
        self._chunks = [chunk.encode("utf-8") if isinstance(chunk, str) else chunk for chunk in chunks]

    def read(self, size: int = -1) -> bytes:
        while self._chunks:
            chunk = self._chunks.pop(0)
            if chunk:
                return chunk
        return b""

    def close(self) -> None:
        self._chunks.clear()
