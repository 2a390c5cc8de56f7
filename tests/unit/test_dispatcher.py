"""Unit tests for frame classification and dispatch."""

import pytest

from claude_cli_sdk.channels import Channel
from claude_cli_sdk.dispatcher import FrameRoute, MessageDispatcher, classify_frame


class TestClassifyFrame:
    """Frames are routed by type tag and control subtype."""

    @pytest.mark.parametrize(
        "frame,route",
        [
            ({"type": "system", "subtype": "init"}, FrameRoute.MESSAGE),
            ({"type": "assistant"}, FrameRoute.MESSAGE),
            ({"type": "result"}, FrameRoute.MESSAGE),
            ({"type": "brand_new"}, FrameRoute.MESSAGE),
            ({}, FrameRoute.MESSAGE),
            ({"type": "control_response"}, FrameRoute.CONTROL_RESPONSE),
            (
                {"type": "control_request", "request": {"subtype": "can_use_tool"}},
                FrameRoute.PERMISSION,
            ),
            (
                {"type": "control_request", "request": {"subtype": "hook_callback"}},
                FrameRoute.HOOK,
            ),
            (
                {"type": "control_request", "request": {"subtype": "mcp_message"}},
                FrameRoute.UNSUPPORTED_CONTROL,
            ),
            ({"type": "control_request", "request": "garbage"}, FrameRoute.UNSUPPORTED_CONTROL),
            ({"type": "control_cancel_request"}, FrameRoute.CONTROL_CANCEL),
            ({"type": "session.created"}, FrameRoute.SESSION_CREATED),
            ({"type": "sdk.message"}, FrameRoute.SDK_MESSAGE),
            ({"type": "callback.request"}, FrameRoute.CALLBACK_REQUEST),
            ({"type": "query.result"}, FrameRoute.QUERY_RESULT),
            ({"type": "session.interrupted"}, FrameRoute.SESSION_INTERRUPTED),
            ({"type": "session.killed"}, FrameRoute.SESSION_KILLED),
            ({"type": "error"}, FrameRoute.ERROR),
            # Outbound-only bridge command echoed back
            ({"type": "callback.response"}, FrameRoute.MESSAGE),
        ],
    )
    def test_routes(self, frame, route):
        """Each frame kind maps to exactly one route."""
        assert classify_frame(frame) is route


class TestMessageDispatcher:
    """Tests for handler invocation."""

    def test_dispatch_to_handler(self):
        """A frame reaches the handler for its route."""
        seen = []
        dispatcher = MessageDispatcher({FrameRoute.CONTROL_RESPONSE: seen.append})

        frame = {"type": "control_response", "response": {}}
        assert dispatcher.dispatch(frame) is FrameRoute.CONTROL_RESPONSE
        assert seen == [frame]

    def test_fallback_to_message_handler(self):
        """Routes without a handler are forwarded as messages."""
        messages = []
        dispatcher = MessageDispatcher({FrameRoute.MESSAGE: messages.append})

        dispatcher.dispatch({"type": "session.created"})

        assert messages == [{"type": "session.created"}]

    def test_no_handler_drops_frame(self):
        """With no MESSAGE fallback the frame is dropped."""
        dispatcher = MessageDispatcher({})
        assert dispatcher.dispatch({"type": "assistant"}) is None
        assert dispatcher.dispatched == 1

    def test_handler_error_is_isolated(self):
        """A failing handler loses only its own frame."""
        seen = []

        def handler(frame):
            if frame.get("bad"):
                raise ValueError("boom")
            seen.append(frame)

        dispatcher = MessageDispatcher({FrameRoute.MESSAGE: handler})

        assert dispatcher.dispatch({"type": "assistant", "bad": True}) is None
        assert dispatcher.dispatch({"type": "assistant", "n": 2}) is FrameRoute.MESSAGE
        assert seen == [{"type": "assistant", "n": 2}]

    def test_on_registers_handler(self):
        """Handlers can be added after construction."""
        seen = []
        dispatcher = MessageDispatcher({})
        dispatcher.on(FrameRoute.ERROR, seen.append)

        dispatcher.dispatch({"type": "error"})

        assert seen == [{"type": "error"}]

    @pytest.mark.asyncio
    async def test_pump_preserves_order(self):
        """Replayed frames come first, then the channel, in order."""
        order = []
        dispatcher = MessageDispatcher({FrameRoute.MESSAGE: lambda f: order.append(f["n"])})
        frames: Channel[dict] = Channel()
        for n in (3, 4, 5):
            frames.put({"type": "assistant", "n": n})
        frames.close()

        await dispatcher.pump(frames, replay=[{"type": "system", "n": 1}, {"type": "user", "n": 2}])

        assert order == [1, 2, 3, 4, 5]
