"""Unit tests for the multiplexed bridge backend.

FakeBridge scripts the bridge side of the conversation on top of
MemoryTransport.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from claude_cli_sdk.bridge_backend import BridgeBackend, BridgeSession
from claude_cli_sdk.callbacks import HookResponse
from claude_cli_sdk.channels import ChannelClosed
from claude_cli_sdk.errors import BackendError, DisposedError, HandshakeTimeoutError, QueryError
from claude_cli_sdk.options import PermissionMode, SessionOptions
from claude_cli_sdk.protocol.messages import AssistantMessage, ErrorMessage, UnknownMessage
from claude_cli_sdk.transport.memory import MemoryTransport


class FakeBridge:
    """Replies to bridge commands the way the Node.js bridge does."""

    def __init__(self, transport: MemoryTransport) -> None:
        self.transport = transport
        self.created = 0
        self.silent: set[str] = set()
        self.query_results: dict[str, Any] = {}
        self.query_errors: dict[str, str] = {}
        transport.on_send = self.on_send

    def on_send(self, frame: dict[str, Any]) -> None:
        frame_type = frame["type"]
        if frame_type in self.silent:
            return
        if frame_type == "session.create":
            self.created += 1
            self.transport.push(
                {
                    "type": "session.created",
                    "id": frame["id"],
                    "session_id": f"s{self.created}",
                    "payload": {},
                }
            )
        elif frame_type == "session.interrupt":
            reply = {"type": "session.interrupted", "id": frame["id"]}
            self.transport.push({**reply, "session_id": frame["session_id"]})
        elif frame_type == "session.kill":
            self.transport.push(
                {"type": "session.killed", "id": frame["id"], "session_id": frame["session_id"]}
            )
        elif frame_type == "query.call":
            method = frame["payload"]["method"]
            if method in self.query_errors:
                payload = {"success": False, "error": self.query_errors[method]}
            else:
                payload = {"success": True, "result": self.query_results.get(method)}
            self.transport.push(
                {
                    "type": "query.result",
                    "id": frame["id"],
                    "session_id": frame["session_id"],
                    "payload": payload,
                }
            )

    def sdk_message(self, session_id: str, payload: dict[str, Any]) -> None:
        self.transport.push({"type": "sdk.message", "session_id": session_id, "payload": payload})

    def sent(self, frame_type: str) -> list[dict[str, Any]]:
        return self.transport.sent_of_type(frame_type)


def make_backend(**kwargs: Any) -> tuple[BridgeBackend, FakeBridge]:
    transport = MemoryTransport()
    bridge = FakeBridge(transport)
    return BridgeBackend(transport, **kwargs), bridge


def assistant(text: str) -> dict[str, Any]:
    return {
        "type": "assistant",
        "session_id": "sdk-1",
        "message": {"content": [{"type": "text", "text": text}]},
    }


# =============================================================================
# Session creation
# =============================================================================


class TestCreateSession:
    """session.create / session.created correlation."""

    @pytest.mark.asyncio
    async def test_create(self):
        """The created session is registered under the bridge's id."""
        backend, bridge = make_backend()

        session = await backend.create_session(
            "Hello", "/work", options=SessionOptions(model="claude-opus")
        )

        assert isinstance(session, BridgeSession)
        assert session.session_id == "s1"
        assert backend.sessions == [session]
        payload = bridge.sent("session.create")[0]["payload"]
        assert payload["prompt"] == "Hello"
        assert payload["cwd"] == "/work"
        assert payload["options"]["model"] == "claude-opus"

        await backend.dispose()

    @pytest.mark.asyncio
    async def test_create_timeout(self):
        """No session.created in time is a handshake timeout."""
        backend, bridge = make_backend(create_timeout=0.05)
        bridge.silent.add("session.create")

        with pytest.raises(HandshakeTimeoutError) as exc_info:
            await backend.create_session("Hello", "/work")

        assert exc_info.value.missing == ["session.created"]
        await backend.dispose()

    @pytest.mark.asyncio
    async def test_create_rejected(self):
        """An error frame for the create id fails the call."""
        backend, bridge = make_backend()
        bridge.silent.add("session.create")

        def reject(frame: dict[str, Any]) -> None:
            bridge.transport.push(
                {
                    "type": "error",
                    "id": frame["id"],
                    "payload": {"code": "SESSION_CREATE_ERROR", "message": "no cwd"},
                }
            )

        bridge.transport.on_send = reject

        with pytest.raises(BackendError, match="no cwd"):
            await backend.create_session("Hello", "/missing")
        assert backend.sessions == []

        await backend.dispose()

    @pytest.mark.asyncio
    async def test_dispose_fails_pending_create(self):
        """A create still waiting when the backend goes away gets DisposedError."""
        backend, bridge = make_backend()
        bridge.silent.add("session.create")
        task = asyncio.create_task(backend.create_session("Hello", "/work"))
        await asyncio.sleep(0)

        await backend.dispose()

        with pytest.raises(DisposedError):
            await task

    @pytest.mark.asyncio
    async def test_create_after_dispose(self):
        """A disposed backend refuses new sessions."""
        backend, _ = make_backend()
        await backend.dispose()

        with pytest.raises(DisposedError):
            await backend.create_session("Hello", "/work")


# =============================================================================
# Routing
# =============================================================================


class TestRouting:
    """Inbound frames reach the session named by session_id."""

    @pytest.mark.asyncio
    async def test_messages_routed_by_session(self):
        """Each session sees only its own messages, in order."""
        backend, bridge = make_backend()
        first = await backend.create_session("one", "/work")
        second = await backend.create_session("two", "/work")

        bridge.sdk_message("s2", assistant("for two"))
        bridge.sdk_message("s1", assistant("for one"))
        bridge.sdk_message("s2", {"type": "result", "session_id": "sdk-2"})

        message = await first.messages.get()
        assert isinstance(message, AssistantMessage)
        assert message.text == "for one"

        turn = [m async for m in second.receive_turn()]
        assert [m.type for m in turn] == ["assistant", "result"]
        assert turn[0].text == "for two"

        await backend.dispose()

    @pytest.mark.asyncio
    async def test_sdk_session_id_tracked(self):
        """The agent-side session id is learned from messages."""
        backend, bridge = make_backend()
        session = await backend.create_session("Hello", "/work")
        assert session.sdk_session_id is None

        bridge.sdk_message("s1", assistant("hi"))
        await session.messages.get()

        assert session.sdk_session_id == "sdk-1"
        await backend.dispose()

    @pytest.mark.asyncio
    async def test_error_frame_for_session(self):
        """Errors naming a session arrive on its message stream."""
        backend, bridge = make_backend()
        session = await backend.create_session("Hello", "/work")

        error = {"code": "SDK_ERROR", "message": "boom"}
        bridge.transport.push({"type": "error", "session_id": "s1", "payload": error})

        message = await session.messages.get()
        assert isinstance(message, ErrorMessage)
        assert message.code == "SDK_ERROR"
        await backend.dispose()

    @pytest.mark.asyncio
    async def test_error_frame_without_owner(self):
        """Errors nobody owns go to the backend error stream."""
        backend, bridge = make_backend()

        payload = {"code": "PARSE_ERROR", "message": "bad"}
        bridge.transport.push({"type": "error", "payload": payload})

        error = await backend.errors.get()
        assert error.code == "PARSE_ERROR"
        assert error.message == "bad"
        await backend.dispose()

    @pytest.mark.asyncio
    async def test_unknown_frame_for_session(self):
        """Unknown frame types are forwarded to their session."""
        backend, bridge = make_backend()
        session = await backend.create_session("Hello", "/work")

        bridge.transport.push({"type": "session.status", "session_id": "s1", "payload": {}})

        message = await session.messages.get()
        assert isinstance(message, UnknownMessage)
        assert message.raw_type == "session.status"
        await backend.dispose()


# =============================================================================
# Callbacks
# =============================================================================


class TestBridgeCallbacks:
    """callback.request / callback.response."""

    @pytest.mark.asyncio
    async def test_permission_allow(self):
        """The answer reuses the callback id and snake_case fields."""
        backend, bridge = make_backend()
        session = await backend.create_session("Hello", "/work")
        bridge.transport.push(
            {
                "type": "callback.request",
                "id": "cb_1",
                "session_id": "s1",
                "payload": {
                    "callback_type": "can_use_tool",
                    "tool_name": "Write",
                    "tool_input": {"file_path": "a.txt"},
                },
            }
        )

        request = await session.permission_requests.get()
        request.allow()

        assert bridge.sent("callback.response") == [
            {
                "type": "callback.response",
                "id": "cb_1",
                "session_id": "s1",
                "payload": {"behavior": "allow", "updated_input": {"file_path": "a.txt"}},
            }
        ]
        await backend.dispose()

    @pytest.mark.asyncio
    async def test_hook_response(self):
        """Hook answers use the bridge field names."""
        backend, bridge = make_backend()
        session = await backend.create_session("Hello", "/work")
        bridge.transport.push(
            {
                "type": "callback.request",
                "id": "cb_2",
                "session_id": "s1",
                "payload": {"callback_type": "hook", "hook_event": "PreToolUse", "hook_input": {}},
            }
        )

        request = await session.hook_requests.get()
        request.respond(HookResponse(system_message="checked"))

        response = bridge.sent("callback.response")[0]
        assert response["id"] == "cb_2"
        assert response["payload"] == {"system_message": "checked"}
        await backend.dispose()

    @pytest.mark.asyncio
    async def test_answer_after_dispose_is_silent(self):
        """Callbacks outstanding at teardown are abandoned."""
        backend, bridge = make_backend()
        session = await backend.create_session("Hello", "/work")
        bridge.transport.push(
            {
                "type": "callback.request",
                "id": "cb_3",
                "session_id": "s1",
                "payload": {"callback_type": "can_use_tool", "tool_name": "Bash", "tool_input": {}},
            }
        )
        request = await session.permission_requests.get()

        await backend.dispose()
        request.deny()

        assert request.abandoned
        assert bridge.sent("callback.response") == []


# =============================================================================
# Queries and session control
# =============================================================================


class TestBridgeSessionControl:
    """query.call and session.* commands."""

    @pytest.mark.asyncio
    async def test_supported_models(self):
        """Query results are returned to the caller."""
        backend, bridge = make_backend()
        bridge.query_results["supportedModels"] = [{"value": "opus"}, {"value": "sonnet"}]
        session = await backend.create_session("Hello", "/work")

        models = await session.supported_models()

        assert models == [{"value": "opus"}, {"value": "sonnet"}]
        await backend.dispose()

    @pytest.mark.asyncio
    async def test_commands_and_mcp_status(self):
        """Each query names its bridge method; an empty result is a list."""
        backend, bridge = make_backend()
        bridge.query_results["supportedCommands"] = [{"name": "compact"}]
        session = await backend.create_session("Hello", "/work")

        commands = await session.supported_commands()
        status = await session.mcp_server_status()

        assert commands == [{"name": "compact"}]
        assert status == []
        methods = [frame["payload"]["method"] for frame in bridge.sent("query.call")]
        assert methods == ["supportedCommands", "mcpServerStatus"]
        await backend.dispose()

    @pytest.mark.asyncio
    async def test_set_model_and_mode(self):
        """Setters are method-style queries."""
        backend, bridge = make_backend()
        session = await backend.create_session("Hello", "/work")

        await session.set_model("opus")
        await session.set_permission_mode(PermissionMode.PLAN)

        calls = [f["payload"] for f in bridge.sent("query.call")]
        assert calls == [
            {"method": "setModel", "args": ["opus"]},
            {"method": "setPermissionMode", "args": ["plan"]},
        ]
        await backend.dispose()

    @pytest.mark.asyncio
    async def test_query_failure(self):
        """An unsuccessful query.result raises QueryError."""
        backend, bridge = make_backend()
        bridge.query_errors["setModel"] = "Unknown model"
        session = await backend.create_session("Hello", "/work")

        with pytest.raises(QueryError, match="Unknown model"):
            await session.set_model("bogus")
        await backend.dispose()

    @pytest.mark.asyncio
    async def test_send(self):
        """User messages go out as session.send."""
        backend, bridge = make_backend()
        session = await backend.create_session("Hello", "/work")

        await session.send("more please")

        frame = bridge.sent("session.send")[0]
        assert frame["session_id"] == "s1"
        assert frame["payload"] == {"message": "more please"}
        await backend.dispose()

    @pytest.mark.asyncio
    async def test_interrupt(self):
        """Interrupt waits for session.interrupted."""
        backend, bridge = make_backend()
        session = await backend.create_session("Hello", "/work")

        await session.interrupt()

        assert len(bridge.sent("session.interrupt")) == 1
        await backend.dispose()

    @pytest.mark.asyncio
    async def test_kill(self):
        """Kill removes the session and closes its streams."""
        backend, bridge = make_backend()
        session = await backend.create_session("Hello", "/work")

        await session.kill()
        await session.kill()

        assert len(bridge.sent("session.kill")) == 1
        assert not session.is_active
        assert backend.sessions == []
        with pytest.raises(ChannelClosed):
            await session.messages.get()
        with pytest.raises(DisposedError):
            await session.send("anyone there?")
        assert await session.supported_models() == []
        await backend.dispose()

    @pytest.mark.asyncio
    async def test_unsolicited_session_killed(self):
        """The bridge may end a session on its own."""
        backend, bridge = make_backend()
        session = await backend.create_session("Hello", "/work")

        bridge.transport.push({"type": "session.killed", "session_id": "s1"})

        with pytest.raises(ChannelClosed):
            await session.messages.get()
        assert backend.sessions == []
        await backend.dispose()


# =============================================================================
# Process lifecycle
# =============================================================================


class TestBridgeLifecycle:
    """Bridge exit and disposal."""

    @pytest.mark.asyncio
    async def test_unexpected_exit(self):
        """A crashing bridge is reported and ends every session."""
        backend, bridge = make_backend()
        session = await backend.create_session("Hello", "/work")

        bridge.transport.write_stderr("TypeError: undefined is not a function")
        bridge.transport.exit(1)

        error = await backend.errors.get()
        assert error.code == "PROCESS_EXIT"
        assert "code 1" in error.message
        assert error.details == {"stderr": ["TypeError: undefined is not a function"]}
        with pytest.raises(ChannelClosed):
            await session.messages.get()

        await backend.dispose()

    @pytest.mark.asyncio
    async def test_dispose(self):
        """Dispose kills the bridge and is idempotent."""
        backend, bridge = make_backend()
        session = await backend.create_session("Hello", "/work")

        await backend.dispose()
        await backend.dispose()

        assert bridge.transport.killed
        assert not session.is_active
        assert backend.errors.closed
        assert not backend.is_running

    @pytest.mark.asyncio
    async def test_logs_replay_stderr(self):
        """logs() starts with the buffered bridge stderr."""
        backend, bridge = make_backend()
        bridge.transport.write_stderr("bridge starting")
        bridge.transport.write_stderr("bridge ready")
        await backend.dispose()

        lines = [line async for line in backend.logs()]

        assert lines == ["bridge starting", "bridge ready"]
