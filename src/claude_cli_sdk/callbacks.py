"""Permission and hook callbacks.

When the agent needs a decision it sends a callback frame (``control_request``
with subtype ``can_use_tool``/``hook_callback`` when talking to the CLI
directly, ``callback.request`` through the bridge). The router turns it into
a one-shot request object and pushes it onto the session's callback stream.

The consumer answers exactly once:
- PermissionRequest.allow() / PermissionRequest.deny()
- HookRequest.respond()

A second answer raises AlreadyRespondedError. Requests still outstanding
when their session is killed are abandoned: a later answer is accepted
quietly and nothing is written to the agent.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .errors import AlreadyRespondedError, DisposedError
from .sdk_logger import SdkLogger

DEFAULT_DENY_MESSAGE = "User denied permission"


class CallbackType(str, Enum):
    CAN_USE_TOOL = "can_use_tool"
    HOOK = "hook"


# =============================================================================
# Suggestions
# =============================================================================


class PermissionRule(BaseModel):
    tool_name: str = ""
    rule_content: str | None = None

    @property
    def display_label(self) -> str:
        """e.g. ``Bash(pytest:*)`` or just ``Read``."""
        return f"{self.tool_name}({self.rule_content})" if self.rule_content else self.tool_name

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> PermissionRule:
        return cls(tool_name=data.get("toolName") or "", rule_content=data.get("ruleContent"))


class PermissionSuggestion(BaseModel):
    """A permission update the agent proposes alongside a request.

    ``type`` is one of addRules, replaceRules, removeRules, addDirectories,
    removeDirectories or setMode. The raw wire form is kept so an accepted
    suggestion can be sent back unchanged.
    """

    type: str = "addRules"
    rules: list[PermissionRule] | None = None
    directories: list[str] | None = None
    mode: str | None = None
    behavior: str | None = None
    destination: str = "session"
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @property
    def display_label(self) -> str:
        rules = ", ".join(r.display_label for r in self.rules or [])
        match self.type:
            case "addRules" | "replaceRules":
                return rules or "permission rules"
            case "removeRules":
                return f"remove {rules}" if rules else "remove rules"
            case "addDirectories":
                return ", ".join(self.directories or []) or "directory access"
            case "removeDirectories":
                return "remove directory access" if self.directories else "remove directories"
            case "setMode":
                return f"set mode to {self.mode or 'default'}"
            case _:
                return self.type

    def to_wire(self) -> dict[str, Any]:
        return dict(self.raw) if self.raw else self.model_dump(exclude={"raw"}, exclude_none=True)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> PermissionSuggestion:
        rules = data.get("rules")
        return cls(
            type=data.get("type") or "addRules",
            rules=[PermissionRule.from_wire(r) for r in rules if isinstance(r, dict)]
            if isinstance(rules, list)
            else None,
            directories=data.get("directories"),
            mode=data.get("mode"),
            behavior=data.get("behavior"),
            destination=data.get("destination") or "session",
            raw=data,
        )


def _parse_suggestions(value: Any) -> list[PermissionSuggestion]:
    if not isinstance(value, list):
        return []
    return [PermissionSuggestion.from_wire(s) for s in value if isinstance(s, dict)]


# =============================================================================
# Responses
# =============================================================================


class PermissionResponse(BaseModel):
    """The consumer's answer to a permission request."""

    behavior: str  # "allow" | "deny"
    updated_input: dict[str, Any] | None = None
    updated_permissions: list[PermissionSuggestion] | None = None
    message: str | None = None
    interrupt: bool = False

    @property
    def allowed(self) -> bool:
        return self.behavior == "allow"

    def to_direct(self, tool_use_id: str) -> dict[str, Any]:
        """Body expected by the CLI (camelCase, ``toolUseID``)."""
        if self.allowed:
            body: dict[str, Any] = {
                "behavior": "allow",
                "updatedInput": self.updated_input or {},
                "toolUseID": tool_use_id,
            }
            if self.updated_permissions is not None:
                body["updatedPermissions"] = [p.to_wire() for p in self.updated_permissions]
            return body

        body = {
            "behavior": "deny",
            "message": self.message or DEFAULT_DENY_MESSAGE,
            "toolUseID": tool_use_id,
        }
        if self.interrupt:
            body["interrupt"] = True
        return body

    def to_bridge(self, has_suggestions: bool) -> dict[str, Any]:
        """Body expected by the bridge (snake_case)."""
        if self.allowed:
            body: dict[str, Any] = {"behavior": "allow", "updated_input": self.updated_input or {}}
            # Required whenever suggestions were offered, even if none were accepted
            if has_suggestions or self.updated_permissions is not None:
                body["updated_permissions"] = [p.to_wire() for p in self.updated_permissions or []]
            return body

        body = {"behavior": "deny", "message": self.message or DEFAULT_DENY_MESSAGE}
        if self.interrupt:
            body["interrupt"] = True
        return body


class HookDecision(str, Enum):
    APPROVE = "approve"
    BLOCK = "block"


class HookResponse(BaseModel):
    """Output of a hook; unset fields are omitted from the wire."""

    continue_execution: bool | None = None
    suppress_output: bool | None = None
    stop_reason: str | None = None
    decision: HookDecision | None = None
    system_message: str | None = None
    reason: str | None = None
    hook_specific_output: dict[str, Any] | None = None

    def to_direct(self) -> dict[str, Any]:
        return self._encode(
            {
                "continue": self.continue_execution,
                "suppressOutput": self.suppress_output,
                "stopReason": self.stop_reason,
                "decision": self.decision.value if self.decision else None,
                "systemMessage": self.system_message,
                "reason": self.reason,
                "hookSpecificOutput": self.hook_specific_output,
            }
        )

    def to_bridge(self) -> dict[str, Any]:
        return self._encode(
            {
                "continue": self.continue_execution,
                "suppressOutput": self.suppress_output,
                "stopReason": self.stop_reason,
                "decision": self.decision.value if self.decision else None,
                "system_message": self.system_message,
                "reason": self.reason,
                "hook_specific_output": self.hook_specific_output,
            }
        )

    @staticmethod
    def _encode(fields: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in fields.items() if v is not None}


# =============================================================================
# Requests
# =============================================================================


class CallbackRequest:
    """Single-answer guard shared by permission and hook requests."""

    def __init__(
        self,
        request_id: str,
        session_id: str,
        emit: Callable[[Any], None],
        raw: dict[str, Any] | None = None,
        logger: SdkLogger | None = None,
    ) -> None:
        self.request_id = request_id
        self.session_id = session_id
        self.raw = raw or {}
        self._emit = emit
        self._logger = logger or SdkLogger.null()
        self._responded = False
        self._abandoned = False
        self._response: Any = None

    @property
    def responded(self) -> bool:
        return self._responded

    @property
    def abandoned(self) -> bool:
        return self._abandoned

    def abandon(self) -> None:
        """Mark as abandoned; any later answer writes nothing."""
        self._abandoned = True

    def _answer(self, response: Any) -> None:
        if self._responded:
            raise AlreadyRespondedError(self.request_id)
        self._responded = True
        self._response = response

        if self._abandoned:
            self._logger.debug(
                "Answer to abandoned callback ignored",
                session_id=self.session_id,
                data={"requestId": self.request_id},
            )
            return
        try:
            self._emit(response)
        except DisposedError:
            # The process went away between the request and the answer
            self._abandoned = True
            self._logger.warning(
                "Callback answered after the process exited",
                session_id=self.session_id,
                data={"requestId": self.request_id},
            )


class PermissionRequest(CallbackRequest):
    """The agent asks whether it may use a tool."""

    def __init__(
        self,
        request_id: str,
        session_id: str,
        tool_name: str,
        input: dict[str, Any],
        emit: Callable[[PermissionResponse], None],
        tool_use_id: str | None = None,
        blocked_path: str | None = None,
        decision_reason: str | None = None,
        agent_id: str | None = None,
        suggestions: list[PermissionSuggestion] | None = None,
        raw: dict[str, Any] | None = None,
        logger: SdkLogger | None = None,
    ) -> None:
        super().__init__(request_id, session_id, emit, raw=raw, logger=logger)
        self.tool_name = tool_name
        self.input = input
        self.tool_use_id = tool_use_id
        self.blocked_path = blocked_path
        self.decision_reason = decision_reason
        self.agent_id = agent_id
        self.suggestions = suggestions or []

    @property
    def response(self) -> PermissionResponse | None:
        return self._response

    def allow(
        self,
        updated_input: dict[str, Any] | None = None,
        updated_permissions: list[PermissionSuggestion] | None = None,
    ) -> None:
        """Allow the tool use, with the original input unless a modified one is given.

        Raises:
            AlreadyRespondedError: If this request was already answered.
        """
        self._logger.debug(
            "Permission allowed",
            session_id=self.session_id,
            data={"toolName": self.tool_name, "requestId": self.request_id},
        )
        self._answer(
            PermissionResponse(
                behavior="allow",
                updated_input=updated_input if updated_input is not None else self.input,
                updated_permissions=updated_permissions,
            )
        )

    def deny(self, message: str | None = None, interrupt: bool = False) -> None:
        """Deny the tool use.

        Raises:
            AlreadyRespondedError: If this request was already answered.
        """
        message = message or DEFAULT_DENY_MESSAGE
        self._logger.debug(
            "Permission denied",
            session_id=self.session_id,
            data={"toolName": self.tool_name, "requestId": self.request_id, "message": message},
        )
        self._answer(PermissionResponse(behavior="deny", message=message, interrupt=interrupt))

    def __repr__(self) -> str:
        return f"PermissionRequest(id={self.request_id!r}, tool={self.tool_name!r})"

    @classmethod
    def from_control_request(
        cls,
        frame: dict[str, Any],
        session_id: str,
        emit: Callable[[PermissionResponse], None],
        logger: SdkLogger | None = None,
    ) -> PermissionRequest:
        """Build from a direct ``control_request`` with subtype ``can_use_tool``."""
        request = frame.get("request") or {}
        tool_input = request.get("input")
        return cls(
            request_id=frame.get("request_id") or "",
            session_id=session_id,
            tool_name=request.get("tool_name") or "",
            input=tool_input if isinstance(tool_input, dict) else {},
            emit=emit,
            tool_use_id=request.get("tool_use_id") or "",
            blocked_path=request.get("blocked_path"),
            decision_reason=request.get("decision_reason"),
            agent_id=request.get("agent_id"),
            suggestions=_parse_suggestions(
                request.get("permission_suggestions") or request.get("suggestions")
            ),
            raw=frame,
            logger=logger,
        )

    @classmethod
    def from_bridge(
        cls,
        frame: dict[str, Any],
        emit: Callable[[PermissionResponse], None],
        logger: SdkLogger | None = None,
    ) -> PermissionRequest:
        """Build from a bridge ``callback.request`` with callback_type ``can_use_tool``."""
        payload = frame.get("payload") or {}
        tool_input = payload.get("tool_input")
        return cls(
            request_id=frame.get("id") or "",
            session_id=frame.get("session_id") or "",
            tool_name=payload.get("tool_name") or "",
            input=tool_input if isinstance(tool_input, dict) else {},
            emit=emit,
            tool_use_id=payload.get("tool_use_id"),
            blocked_path=payload.get("blocked_path"),
            decision_reason=payload.get("decision_reason"),
            agent_id=payload.get("agent_id"),
            suggestions=_parse_suggestions(payload.get("suggestions")),
            raw=frame,
            logger=logger,
        )


class HookRequest(CallbackRequest):
    """The agent invokes a registered hook and waits for its output."""

    def __init__(
        self,
        request_id: str,
        session_id: str,
        event: str,
        input: Any,
        emit: Callable[[HookResponse], None],
        callback_id: str | None = None,
        tool_use_id: str | None = None,
        raw: dict[str, Any] | None = None,
        logger: SdkLogger | None = None,
    ) -> None:
        super().__init__(request_id, session_id, emit, raw=raw, logger=logger)
        self.event = event
        self.input = input
        self.callback_id = callback_id
        self.tool_use_id = tool_use_id

    @property
    def response(self) -> HookResponse | None:
        return self._response

    def respond(self, response: HookResponse | None = None) -> None:
        """Answer the hook. An empty response lets the agent continue.

        Raises:
            AlreadyRespondedError: If this request was already answered.
        """
        self._answer(response or HookResponse())

    def __repr__(self) -> str:
        return f"HookRequest(id={self.request_id!r}, event={self.event!r})"

    @classmethod
    def from_control_request(
        cls,
        frame: dict[str, Any],
        session_id: str,
        emit: Callable[[HookResponse], None],
        logger: SdkLogger | None = None,
    ) -> HookRequest:
        """Build from a direct ``control_request`` with subtype ``hook_callback``."""
        request = frame.get("request") or {}
        hook_input = request.get("input")
        event = hook_input.get("hook_event_name") if isinstance(hook_input, dict) else None
        return cls(
            request_id=frame.get("request_id") or "",
            session_id=session_id,
            event=event or "",
            input=hook_input,
            emit=emit,
            callback_id=request.get("callback_id"),
            tool_use_id=request.get("tool_use_id"),
            raw=frame,
            logger=logger,
        )

    @classmethod
    def from_bridge(
        cls,
        frame: dict[str, Any],
        emit: Callable[[HookResponse], None],
        logger: SdkLogger | None = None,
    ) -> HookRequest:
        payload = frame.get("payload") or {}
        return cls(
            request_id=frame.get("id") or "",
            session_id=frame.get("session_id") or "",
            event=payload.get("hook_event") or "",
            input=payload.get("hook_input"),
            emit=emit,
            tool_use_id=payload.get("tool_use_id"),
            raw=frame,
            logger=logger,
        )


class CallbackRouter:
    """Tracks a session's unanswered callbacks so teardown can abandon them."""

    def __init__(self, logger: SdkLogger | None = None) -> None:
        self._logger = logger or SdkLogger.null()
        self._outstanding: dict[str, CallbackRequest] = {}
        self._closed = False

    @property
    def outstanding(self) -> list[CallbackRequest]:
        return [r for r in self._outstanding.values() if not r.responded]

    def track(self, request: CallbackRequest) -> CallbackRequest:
        if self._closed:
            request.abandon()
            return request
        # Answered requests are pruned lazily
        for rid in [rid for rid, r in self._outstanding.items() if r.responded]:
            del self._outstanding[rid]
        self._outstanding[request.request_id] = request
        return request

    def cancel(self, request_id: str) -> bool:
        """The agent withdrew a request; abandon it if still unanswered."""
        request = self._outstanding.pop(request_id, None)
        if request is None or request.responded:
            return False
        request.abandon()
        self._logger.debug("Callback cancelled by agent", data={"requestId": request_id})
        return True

    def abandon_all(self) -> int:
        """Abandon every unanswered request. Returns how many were pending."""
        self._closed = True
        pending = self.outstanding
        for request in self._outstanding.values():
            request.abandon()
        self._outstanding.clear()
        if pending:
            self._logger.debug(f"Abandoned {len(pending)} unanswered callback(s)")
        return len(pending)
