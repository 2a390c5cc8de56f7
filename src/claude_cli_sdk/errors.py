"""Error taxonomy for the session protocol engine.

Errors fall into three groups:
- Raised to the caller of session creation (spawn, handshake)
- Raised at a call site that broke the contract (double answer, use after dispose)
- Delivered asynchronously on a backend's error stream (BackendError)

Frame parse failures and responses for unknown request ids never escape
the dispatcher; they are only visible through the SDK logger.
"""

from __future__ import annotations

from typing import Any


class ClaudeSdkError(Exception):
    """Base class for all SDK errors."""

    def __init__(self, message: str, code: str | None = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}" if self.code else self.message


class SpawnError(ClaudeSdkError):
    """The subprocess failed to start or exited during the startup grace window."""

    def __init__(
        self,
        message: str,
        stderr: list[str] | None = None,
        exit_code: int | None = None,
    ):
        super().__init__(message, code="SPAWN_FAILED")
        self.stderr = list(stderr or [])
        self.exit_code = exit_code


class HandshakeError(ClaudeSdkError):
    """The process exited or reported an error before the session became ready."""

    def __init__(self, message: str, stderr: list[str] | None = None):
        super().__init__(message, code="HANDSHAKE_FAILED")
        self.stderr = list(stderr or [])


class HandshakeTimeoutError(ClaudeSdkError):
    """Ready conditions were not all observed within the handshake timeout."""

    def __init__(self, missing: list[str], timeout: float):
        self.missing = list(missing)
        self.timeout = timeout
        super().__init__(
            f"Session creation timed out after {timeout:g}s: no {' and no '.join(self.missing)}",
            code="HANDSHAKE_TIMEOUT",
        )


class FrameParseError(ClaudeSdkError):
    """One inbound line was not a JSON object."""

    def __init__(self, message: str, line: str):
        super().__init__(message, code="FRAME_PARSE_ERROR")
        self.line = line


class AlreadyRespondedError(ClaudeSdkError, RuntimeError):
    """A callback request was answered more than once."""

    def __init__(self, request_id: str):
        super().__init__(
            f"Callback request {request_id} has already been responded to",
            code="ALREADY_RESPONDED",
        )
        self.request_id = request_id


class DisposedError(ClaudeSdkError):
    """Operation attempted on, or pending work resolved by, a disposed scope."""

    def __init__(self, message: str = "Session has been disposed"):
        super().__init__(message, code="DISPOSED")


class ControlRequestError(ClaudeSdkError):
    """The agent answered an administrative control request with an error."""

    def __init__(self, message: str, request_id: str | None = None):
        super().__init__(message, code="CONTROL_ERROR")
        self.request_id = request_id


class QueryError(ClaudeSdkError):
    """A method-style query on a multiplexed session failed."""

    def __init__(self, message: str, code: str | None = "QUERY_ERROR"):
        super().__init__(message, code=code)


class BackendError(ClaudeSdkError):
    """Error event published on a backend's error stream."""

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> BackendError:
        return cls(
            payload.get("message") or "Unknown error",
            code=payload.get("code"),
            details=payload.get("details"),
        )
