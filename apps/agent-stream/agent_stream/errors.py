"""Exception hierarchy shared by every stage of an agent turn."""

from __future__ import annotations


class TurnError(RuntimeError):
    """Base class for failures that abort a whole agent turn."""


class BridgeConfigurationError(TurnError):
    """Raised when no agent bridge URL is configured."""


class BridgeRequestError(TurnError):
    """Raised when the bridge cannot be reached or answers with a failure status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StreamProtocolError(TurnError):
    """Raised for an explicit error frame or a stream without exactly one terminal frame."""


class EmptyArtifactError(TurnError):
    """Raised when the terminal payload carries no text."""


class MalformedArtifactError(TurnError):
    """Raised when the terminal text is not valid JSON after fence stripping."""


class SchemaViolationError(TurnError):
    """Raised when a generated artifact misses required fields or values."""


class ReferentialIntegrityError(TurnError):
    """Raised when execution results reference unknown or repeated scenario ids."""
