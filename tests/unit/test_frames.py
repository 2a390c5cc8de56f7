"""Unit tests for outbound frame builders, content blocks and session options."""

import pytest

from claude_cli_sdk.options import (
    HookConfig,
    McpStdioServerConfig,
    PermissionMode,
    PresetSystemPrompt,
    PresetTools,
    SessionOptions,
)
from claude_cli_sdk.protocol.content import ImageBlock, TextBlock, ensure_text_placeholder, to_wire
from claude_cli_sdk.protocol.frames import (
    BridgeCommand,
    ControlRequest,
    FrameType,
    UserMessageFrame,
    control_error,
    control_success,
    new_request_id,
)

# =============================================================================
# Direct vocabulary
# =============================================================================


class TestControlRequest:
    """Tests for administrative control requests."""

    def test_request_ids_are_unique(self):
        """Every request gets a fresh req_ id."""
        ids = {new_request_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(i.startswith("req_") for i in ids)

    def test_initialize_defaults(self):
        """Initialize always carries mcp_servers, agents and hooks."""
        frame = ControlRequest.initialize().to_frame()

        assert frame["type"] == "control_request"
        assert frame["request_id"].startswith("req_")
        assert frame["request"] == {
            "subtype": "initialize",
            "mcp_servers": {},
            "agents": {},
            "hooks": {},
        }

    def test_initialize_with_system_prompt_and_partials(self):
        """Optional fields appear only when set."""
        request = ControlRequest.initialize(
            system_prompt="Be brief", include_partial_messages=True
        )
        body = request.to_frame()["request"]

        assert body["system_prompt"] == "Be brief"
        assert body["include_partial_messages"] is True

    def test_interrupt(self):
        """Interrupt has no body beyond its subtype."""
        assert ControlRequest.interrupt().to_frame()["request"] == {"subtype": "interrupt"}

    def test_set_model_allows_null(self):
        """set_model(None) asks for the default model."""
        body = ControlRequest.set_model(None).to_frame()["request"]
        assert body == {"subtype": "set_model", "model": None}

    def test_set_permission_mode(self):
        """set_permission_mode carries the wire mode name."""
        body = ControlRequest.set_permission_mode("acceptEdits").to_frame()["request"]
        assert body == {"subtype": "set_permission_mode", "permission_mode": "acceptEdits"}


class TestUserMessageFrame:
    """Tests for user turns."""

    def test_text(self):
        """Plain prompts are sent as a string."""
        frame = UserMessageFrame.text("Hello").to_frame()
        assert frame == {"type": "user", "message": {"role": "user", "content": "Hello"}}

    def test_first_message_carries_null_parent(self):
        """The opening message sets parent_tool_use_id explicitly."""
        frame = UserMessageFrame.text("Hello", include_parent=True).to_frame()
        assert "parent_tool_use_id" in frame
        assert frame["parent_tool_use_id"] is None

    def test_blocks(self):
        """Content blocks are serialized in order."""
        frame = UserMessageFrame.blocks(
            [TextBlock(text="Look"), ImageBlock.base64("image/png", "AAAA")]
        ).to_frame()

        assert frame["message"]["content"] == [
            {"type": "text", "text": "Look"},
            {
                "type": "image",
                "source": {"type": "base64", "media_type": "image/png", "data": "AAAA"},
            },
        ]


class TestControlResponses:
    """Tests for answers to inbound control requests."""

    def test_success(self):
        """Success responses echo the request id."""
        frame = control_success("req_1", {"behavior": "allow"})
        assert frame == {
            "type": "control_response",
            "response": {
                "subtype": "success",
                "request_id": "req_1",
                "response": {"behavior": "allow"},
            },
        }

    def test_error(self):
        """Error responses carry the reason."""
        frame = control_error("req_2", "nope")
        assert frame["response"] == {"subtype": "error", "request_id": "req_2", "error": "nope"}


# =============================================================================
# Bridge vocabulary
# =============================================================================


class TestBridgeCommand:
    """Tests for multiplexed bridge commands."""

    def test_session_create(self):
        """session.create carries prompt, cwd and options, but no session id."""
        frame = BridgeCommand.session_create(
            "Hi", "/work", options={"model": "opus"}
        ).to_frame()

        assert frame["type"] == "session.create"
        assert frame["id"].startswith("req_")
        assert "session_id" not in frame
        assert frame["payload"] == {"prompt": "Hi", "cwd": "/work", "options": {"model": "opus"}}

    def test_session_send_text(self):
        """session.send addresses a session."""
        frame = BridgeCommand.session_send("s1", message="next").to_frame()
        assert frame["session_id"] == "s1"
        assert frame["payload"] == {"message": "next"}

    def test_session_send_requires_body(self):
        """Either text or content must be given."""
        with pytest.raises(ValueError):
            BridgeCommand.session_send("s1")

    def test_callback_response_reuses_request_id(self):
        """Answers are correlated by the callback's own id."""
        frame = BridgeCommand.callback_response("cb_9", "s1", {"behavior": "deny"}).to_frame()
        assert frame == {
            "type": "callback.response",
            "id": "cb_9",
            "session_id": "s1",
            "payload": {"behavior": "deny"},
        }

    def test_query_call(self):
        """query.call names the method and its arguments."""
        frame = BridgeCommand.query_call("s1", "setModel", ["opus"]).to_frame()
        assert frame["type"] == FrameType.QUERY_CALL.value
        assert frame["payload"] == {"method": "setModel", "args": ["opus"]}

    def test_interrupt_and_kill(self):
        """Lifecycle commands have empty payloads."""
        assert BridgeCommand.session_interrupt("s1").to_frame()["payload"] == {}
        assert BridgeCommand.session_kill("s1").to_frame()["type"] == "session.kill"


# =============================================================================
# Content and options
# =============================================================================


class TestContentBlocks:
    """Tests for content block helpers."""

    def test_placeholder_added_for_image_only(self):
        """Image-only content gets a leading single-space text block."""
        blocks = ensure_text_placeholder([ImageBlock.base64("image/png", "AAAA")])

        assert isinstance(blocks[0], TextBlock)
        assert blocks[0].text == " "
        assert len(blocks) == 2

    def test_placeholder_added_for_blank_text(self):
        """Whitespace-only text does not count as text."""
        blocks = ensure_text_placeholder([TextBlock(text="  \n")])
        assert blocks[0].text == " "
        assert len(blocks) == 2

    def test_no_placeholder_when_text_present(self):
        """Content with real text is left alone."""
        original = [ImageBlock.base64("image/png", "AAAA"), TextBlock(text="What is this?")]
        assert ensure_text_placeholder(original) == original

    def test_dicts_pass_through(self):
        """Pre-serialized blocks are sent unchanged."""
        raw = {"type": "text", "text": "hi"}
        assert to_wire([raw]) == [raw]


class TestSessionOptions:
    """Tests for session option serialization."""

    def test_unset_fields_omitted(self):
        """An empty options object serializes to an empty dict."""
        assert SessionOptions().to_wire() == {}

    def test_snake_case_wire_names(self):
        """Fields keep their snake_case names and enum values."""
        wire = SessionOptions(
            model="sonnet",
            permission_mode=PermissionMode.ACCEPT_EDITS,
            max_turns=3,
            allowed_tools=["Read"],
        ).to_wire()

        assert wire == {
            "model": "sonnet",
            "permission_mode": "acceptEdits",
            "max_turns": 3,
            "allowed_tools": ["Read"],
        }

    def test_preset_system_prompt(self):
        """The preset prompt becomes a tagged object."""
        wire = SessionOptions(system_prompt=PresetSystemPrompt(append="Extra")).to_wire()
        assert wire["system_prompt"] == {
            "type": "preset",
            "preset": "claude_code",
            "append": "Extra",
        }

    def test_preset_tools(self):
        """The tool preset becomes a tagged object."""
        wire = SessionOptions(tools=PresetTools()).to_wire()
        assert wire["tools"] == {"type": "preset", "preset": "claude_code"}

    def test_mcp_servers_and_hooks(self):
        """Nested models are serialized without their unset fields."""
        wire = SessionOptions(
            mcp_servers={"fs": McpStdioServerConfig(command="mcp-fs")},
            hooks={"PreToolUse": [HookConfig(matcher="Bash")]},
        ).to_wire()

        assert wire["mcp_servers"] == {"fs": {"type": "stdio", "command": "mcp-fs"}}
        assert wire["hooks"] == {"PreToolUse": [{"matcher": "Bash"}]}

    def test_mcp_server_discriminator(self):
        """Dict input is validated into the matching server type."""
        options = SessionOptions.model_validate(
            {"mcp_servers": {"remote": {"type": "http", "url": "https://example.com/mcp"}}}
        )
        assert options.mcp_servers["remote"].type == "http"

    def test_permission_mode_parse_is_lenient(self):
        """Unknown modes fall back to default."""
        assert PermissionMode.parse("plan") is PermissionMode.PLAN
        assert PermissionMode.parse("bogus") is PermissionMode.DEFAULT
        assert PermissionMode.parse(None) is PermissionMode.DEFAULT
