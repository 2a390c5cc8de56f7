"""Inbound agent messages.

``parse_message`` turns a decoded frame into one member of the ``SdkMessage``
union. Unrecognized or malformed frames become ``UnknownMessage`` so callers
can still observe them; parsing never raises.

Every message keeps the frame it came from in ``raw``.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    session_id: str = ""
    uuid: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    # Only a result ends a turn
    is_turn_complete: ClassVar[bool] = False


class SystemMessage(_Message):
    """``system`` frames: ``init``, ``compact_boundary``, ``status``..."""

    type: str = "system"
    subtype: str = "init"
    cwd: str | None = None
    tools: list[str] | None = None
    model: str | None = None
    permission_mode: str | None = None
    mcp_servers: list[dict[str, Any]] | None = None
    slash_commands: list[str] | None = None
    api_key_source: str | None = None
    output_style: str | None = None
    status: str | None = None
    compact_metadata: dict[str, Any] | None = None

    @property
    def is_init(self) -> bool:
        return self.subtype == "init"

    @classmethod
    def from_frame(cls, frame: dict[str, Any]) -> SystemMessage:
        return cls(
            subtype=frame.get("subtype") or "init",
            session_id=frame.get("session_id") or "",
            uuid=frame.get("uuid"),
            cwd=frame.get("cwd"),
            tools=frame.get("tools"),
            model=frame.get("model"),
            permission_mode=frame.get("permissionMode"),
            mcp_servers=frame.get("mcp_servers"),
            slash_commands=frame.get("slash_commands"),
            api_key_source=frame.get("apiKeySource"),
            output_style=frame.get("output_style"),
            status=frame.get("status"),
            compact_metadata=frame.get("compact_metadata"),
            raw=frame,
        )


class AssistantMessage(_Message):
    type: str = "assistant"
    message: dict[str, Any] = Field(default_factory=dict)
    parent_tool_use_id: str | None = None

    @property
    def content(self) -> list[dict[str, Any]]:
        content = self.message.get("content")
        return content if isinstance(content, list) else []

    @property
    def text(self) -> str:
        """Concatenated text of all text blocks."""
        return "".join(
            block.get("text", "") for block in self.content if block.get("type") == "text"
        )

    @classmethod
    def from_frame(cls, frame: dict[str, Any]) -> AssistantMessage:
        return cls(
            session_id=frame.get("session_id") or "",
            uuid=frame.get("uuid"),
            message=frame.get("message") or {},
            parent_tool_use_id=frame.get("parent_tool_use_id"),
            raw=frame,
        )


class UserMessage(_Message):
    """A user turn echoed back by the agent (tool results, replays)."""

    type: str = "user"
    message: dict[str, Any] = Field(default_factory=dict)
    parent_tool_use_id: str | None = None
    is_synthetic: bool | None = None
    tool_use_result: Any = None

    @classmethod
    def from_frame(cls, frame: dict[str, Any]) -> UserMessage:
        return cls(
            session_id=frame.get("session_id") or "",
            uuid=frame.get("uuid"),
            message=frame.get("message") or {},
            parent_tool_use_id=frame.get("parent_tool_use_id"),
            is_synthetic=frame.get("isSynthetic"),
            tool_use_result=frame.get("tool_use_result"),
            raw=frame,
        )


class ResultMessage(_Message):
    """End of one conversational turn, with cumulative usage and cost."""

    type: str = "result"
    subtype: str = "success"
    duration_ms: int = 0
    duration_api_ms: int = 0
    is_error: bool = False
    num_turns: int = 0
    total_cost_usd: float | None = None
    usage: dict[str, Any] | None = None
    model_usage: dict[str, Any] | None = None
    result: str | None = None
    structured_output: Any = None
    errors: list[str] | None = None
    permission_denials: list[dict[str, Any]] | None = None

    is_turn_complete: ClassVar[bool] = True

    @classmethod
    def from_frame(cls, frame: dict[str, Any]) -> ResultMessage:
        return cls(
            subtype=frame.get("subtype") or "success",
            session_id=frame.get("session_id") or "",
            uuid=frame.get("uuid"),
            duration_ms=frame.get("duration_ms") or 0,
            duration_api_ms=frame.get("duration_api_ms") or 0,
            is_error=bool(frame.get("is_error", False)),
            num_turns=frame.get("num_turns") or 0,
            total_cost_usd=frame.get("total_cost_usd"),
            usage=frame.get("usage"),
            model_usage=frame.get("modelUsage"),
            result=frame.get("result"),
            structured_output=frame.get("structured_output"),
            errors=frame.get("errors"),
            permission_denials=frame.get("permission_denials"),
            raw=frame,
        )


class StreamEventMessage(_Message):
    """Incremental delta (only with include_partial_messages). Never terminal."""

    type: str = "stream_event"
    event: dict[str, Any] = Field(default_factory=dict)
    parent_tool_use_id: str | None = None

    @classmethod
    def from_frame(cls, frame: dict[str, Any]) -> StreamEventMessage:
        return cls(
            session_id=frame.get("session_id") or "",
            uuid=frame.get("uuid"),
            event=frame.get("event") or {},
            parent_tool_use_id=frame.get("parent_tool_use_id"),
            raw=frame,
        )


class ErrorMessage(_Message):
    """An error reported for one session (bridge ``error`` frames)."""

    type: str = "error"
    code: str = "UNKNOWN"
    message: str = "Unknown error"
    details: Any = None

    @classmethod
    def from_frame(cls, frame: dict[str, Any]) -> ErrorMessage:
        payload = frame.get("payload") or {}
        return cls(
            session_id=frame.get("session_id") or "",
            code=payload.get("code") or "UNKNOWN",
            message=payload.get("message") or "Unknown error",
            details=payload.get("details"),
            raw=frame,
        )


class UnknownMessage(_Message):
    """Any frame whose ``type`` is not recognized, forwarded as-is."""

    type: str = "unknown"

    @property
    def raw_type(self) -> str:
        value = self.raw.get("type")
        return value if isinstance(value, str) else "unknown"

    @classmethod
    def from_frame(cls, frame: dict[str, Any]) -> UnknownMessage:
        session_id = frame.get("session_id")
        return cls(
            session_id=session_id if isinstance(session_id, str) else "",
            raw=frame,
        )


SdkMessage = (
    SystemMessage
    | AssistantMessage
    | UserMessage
    | ResultMessage
    | StreamEventMessage
    | ErrorMessage
    | UnknownMessage
)


def parse_message(frame: dict[str, Any]) -> SdkMessage:
    """Classify a frame by its ``type`` tag."""
    try:
        match frame.get("type"):
            case "system":
                return SystemMessage.from_frame(frame)
            case "assistant":
                return AssistantMessage.from_frame(frame)
            case "user":
                return UserMessage.from_frame(frame)
            case "result":
                return ResultMessage.from_frame(frame)
            case "stream_event":
                return StreamEventMessage.from_frame(frame)
            case "error":
                return ErrorMessage.from_frame(frame)
            case _:
                return UnknownMessage.from_frame(frame)
    except (ValidationError, AttributeError, TypeError):
        return UnknownMessage.from_frame(frame)
