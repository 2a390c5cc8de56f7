"""Outbound frame builders.

Frames are the unit of exchange with the agent process: plain dicts with a
``type`` discriminator. The builders here are pydantic models so the wire
shape lives in one place; call ``to_frame()`` to get the dict handed to the
transport.

Two vocabularies exist:
- Direct: ``control_request`` / ``control_response`` / ``user`` frames
  spoken by the claude CLI itself.
- Bridge: ``{"type", "id", "session_id", "payload"}`` frames spoken by the
  multiplexing bridge process (``session.create``, ``callback.request``...).
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .content import ContentBlock, to_wire


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


class FrameType(str, Enum):
    """Every frame ``type`` tag the SDK knows about."""

    # Direct vocabulary
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    RESULT = "result"
    STREAM_EVENT = "stream_event"
    CONTROL_REQUEST = "control_request"
    CONTROL_RESPONSE = "control_response"
    CONTROL_CANCEL_REQUEST = "control_cancel_request"

    # Bridge vocabulary, outbound
    SESSION_CREATE = "session.create"
    SESSION_SEND = "session.send"
    SESSION_INTERRUPT = "session.interrupt"
    SESSION_KILL = "session.kill"
    CALLBACK_RESPONSE = "callback.response"
    QUERY_CALL = "query.call"

    # Bridge vocabulary, inbound
    SESSION_CREATED = "session.created"
    SDK_MESSAGE = "sdk.message"
    CALLBACK_REQUEST = "callback.request"
    QUERY_RESULT = "query.result"
    SESSION_INTERRUPTED = "session.interrupted"
    SESSION_KILLED = "session.killed"
    ERROR = "error"


class ControlSubtype(str, Enum):
    INITIALIZE = "initialize"
    INTERRUPT = "interrupt"
    SET_MODEL = "set_model"
    SET_PERMISSION_MODE = "set_permission_mode"
    CAN_USE_TOOL = "can_use_tool"
    HOOK_CALLBACK = "hook_callback"


# =============================================================================
# Direct vocabulary
# =============================================================================


class ControlRequest(BaseModel):
    """Administrative request sent to the agent.

    Example:
        {
            "type": "control_request",
            "request_id": "req_0a1b2c3d4e5f",
            "request": {"subtype": "set_model", "model": "opus"}
        }

    The agent answers with a ``control_response`` whose
    ``response.request_id`` equals ``request_id``.
    """

    request_id: str = Field(default_factory=new_request_id)
    subtype: str
    body: dict[str, Any] = Field(default_factory=dict)

    def to_frame(self) -> dict[str, Any]:
        return {
            "type": FrameType.CONTROL_REQUEST.value,
            "request_id": self.request_id,
            "request": {"subtype": self.subtype, **self.body},
        }

    @classmethod
    def initialize(
        cls,
        system_prompt: str | dict[str, Any] | None = None,
        include_partial_messages: bool = False,
        mcp_servers: dict[str, Any] | None = None,
        agents: dict[str, Any] | None = None,
        hooks: dict[str, Any] | None = None,
    ) -> ControlRequest:
        body: dict[str, Any] = {}
        if system_prompt is not None:
            body["system_prompt"] = system_prompt
        if include_partial_messages:
            body["include_partial_messages"] = True
        body["mcp_servers"] = mcp_servers or {}
        body["agents"] = agents or {}
        body["hooks"] = hooks or {}
        return cls(subtype=ControlSubtype.INITIALIZE.value, body=body)

    @classmethod
    def interrupt(cls) -> ControlRequest:
        return cls(subtype=ControlSubtype.INTERRUPT.value)

    @classmethod
    def set_model(cls, model: str | None) -> ControlRequest:
        return cls(subtype=ControlSubtype.SET_MODEL.value, body={"model": model})

    @classmethod
    def set_permission_mode(cls, mode: str) -> ControlRequest:
        return cls(
            subtype=ControlSubtype.SET_PERMISSION_MODE.value,
            body={"permission_mode": mode},
        )


class UserMessageFrame(BaseModel):
    """A user turn: plain text or a list of content blocks."""

    content: str | list[dict[str, Any]]
    parent_tool_use_id: str | None = None
    include_parent: bool = False

    def to_frame(self) -> dict[str, Any]:
        frame: dict[str, Any] = {
            "type": FrameType.USER.value,
            "message": {"role": "user", "content": self.content},
        }
        # The opening message of a session carries an explicit null parent
        if self.include_parent:
            frame["parent_tool_use_id"] = self.parent_tool_use_id
        return frame

    @classmethod
    def text(cls, prompt: str, include_parent: bool = False) -> UserMessageFrame:
        return cls(content=prompt, include_parent=include_parent)

    @classmethod
    def blocks(
        cls, content: list[ContentBlock], include_parent: bool = False
    ) -> UserMessageFrame:
        return cls(content=to_wire(content), include_parent=include_parent)


def control_success(request_id: str, response: dict[str, Any] | None = None) -> dict[str, Any]:
    """Answer to an inbound control request."""
    body: dict[str, Any] = {"subtype": "success", "request_id": request_id}
    if response is not None:
        body["response"] = response
    return {"type": FrameType.CONTROL_RESPONSE.value, "response": body}


def control_error(request_id: str, error: str) -> dict[str, Any]:
    """Error answer to an inbound control request."""
    return {
        "type": FrameType.CONTROL_RESPONSE.value,
        "response": {"subtype": "error", "request_id": request_id, "error": error},
    }


# =============================================================================
# Bridge vocabulary
# =============================================================================


class BridgeCommand(BaseModel):
    """Frame sent to the multiplexing bridge process."""

    type: FrameType
    id: str = Field(default_factory=new_request_id)
    session_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_frame(self) -> dict[str, Any]:
        frame: dict[str, Any] = {"type": self.type.value, "id": self.id}
        if self.session_id is not None:
            frame["session_id"] = self.session_id
        frame["payload"] = self.payload
        return frame

    @classmethod
    def session_create(
        cls,
        prompt: str,
        cwd: str,
        options: dict[str, Any] | None = None,
        content: list[ContentBlock] | None = None,
    ) -> BridgeCommand:
        payload: dict[str, Any] = {"prompt": prompt, "cwd": cwd}
        if options is not None:
            payload["options"] = options
        if content is not None:
            payload["content"] = to_wire(content)
        return cls(type=FrameType.SESSION_CREATE, payload=payload)

    @classmethod
    def session_send(
        cls,
        session_id: str,
        message: str | None = None,
        content: list[ContentBlock] | None = None,
    ) -> BridgeCommand:
        if message is None and content is None:
            raise ValueError("Either message or content must be provided")
        payload: dict[str, Any] = {}
        if message is not None:
            payload["message"] = message
        if content is not None:
            payload["content"] = to_wire(content)
        return cls(type=FrameType.SESSION_SEND, session_id=session_id, payload=payload)

    @classmethod
    def session_interrupt(cls, session_id: str) -> BridgeCommand:
        return cls(type=FrameType.SESSION_INTERRUPT, session_id=session_id)

    @classmethod
    def session_kill(cls, session_id: str) -> BridgeCommand:
        return cls(type=FrameType.SESSION_KILL, session_id=session_id)

    @classmethod
    def callback_response(
        cls, request_id: str, session_id: str, payload: dict[str, Any]
    ) -> BridgeCommand:
        # Answers reuse the id of the callback.request they answer
        return cls(
            type=FrameType.CALLBACK_RESPONSE,
            id=request_id,
            session_id=session_id,
            payload=payload,
        )

    @classmethod
    def query_call(
        cls, session_id: str, method: str, args: list[Any] | None = None
    ) -> BridgeCommand:
        payload: dict[str, Any] = {"method": method}
        if args is not None:
            payload["args"] = args
        return cls(type=FrameType.QUERY_CALL, session_id=session_id, payload=payload)
