"""Frame dispatch.

Each inbound frame is classified by its ``type`` tag (and, for control
requests, its subtype) and handed to the handler registered for that route.
Routes without a handler fall back to the MESSAGE handler, so unrecognized
frames are still forwarded as opaque session messages.

A handler that raises only loses its own frame: the error is logged and
dispatch continues with the next one.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any

from .channels import Channel
from .sdk_logger import SdkLogger

Frame = dict[str, Any]
Handler = Callable[[Frame], None]


class FrameRoute(str, Enum):
    """Where a frame goes."""

    MESSAGE = "message"

    # Direct topology
    CONTROL_RESPONSE = "control_response"
    PERMISSION = "permission"
    HOOK = "hook"
    UNSUPPORTED_CONTROL = "unsupported_control"
    CONTROL_CANCEL = "control_cancel"

    # Bridge topology
    SESSION_CREATED = "session_created"
    SDK_MESSAGE = "sdk_message"
    CALLBACK_REQUEST = "callback_request"
    QUERY_RESULT = "query_result"
    SESSION_INTERRUPTED = "session_interrupted"
    SESSION_KILLED = "session_killed"
    ERROR = "error"


def classify_frame(frame: Frame) -> FrameRoute:
    match frame.get("type"):
        case "control_request":
            request = frame.get("request")
            subtype = request.get("subtype") if isinstance(request, dict) else None
            match subtype:
                case "can_use_tool":
                    return FrameRoute.PERMISSION
                case "hook_callback":
                    return FrameRoute.HOOK
                case _:
                    return FrameRoute.UNSUPPORTED_CONTROL
        case "control_response":
            return FrameRoute.CONTROL_RESPONSE
        case "control_cancel_request":
            return FrameRoute.CONTROL_CANCEL
        case "session.created":
            return FrameRoute.SESSION_CREATED
        case "sdk.message":
            return FrameRoute.SDK_MESSAGE
        case "callback.request":
            return FrameRoute.CALLBACK_REQUEST
        case "query.result":
            return FrameRoute.QUERY_RESULT
        case "session.interrupted":
            return FrameRoute.SESSION_INTERRUPTED
        case "session.killed":
            return FrameRoute.SESSION_KILLED
        case "error":
            return FrameRoute.ERROR
        case _:
            return FrameRoute.MESSAGE


class MessageDispatcher:
    """Routes frames to handlers, one frame at a time, in arrival order."""

    def __init__(
        self,
        handlers: dict[FrameRoute, Handler],
        logger: SdkLogger | None = None,
        session_id: str | None = None,
    ) -> None:
        self._handlers = dict(handlers)
        self._logger = logger or SdkLogger.null()
        self.session_id = session_id
        self._dispatched = 0

    @property
    def dispatched(self) -> int:
        return self._dispatched

    def on(self, route: FrameRoute, handler: Handler) -> None:
        self._handlers[route] = handler

    def dispatch(self, frame: Frame) -> FrameRoute | None:
        """Route one frame. Never raises; returns None if the frame was dropped."""
        self._dispatched += 1
        route = classify_frame(frame)
        handler = self._handlers.get(route) or self._handlers.get(FrameRoute.MESSAGE)
        if handler is None:
            self._logger.debug(
                "No handler for frame", session_id=self.session_id, data={"route": route.value}
            )
            return None
        try:
            handler(frame)
        except Exception as e:
            self._logger.error(
                f"Dispatch failed for {route.value} frame: {e}",
                session_id=self.session_id,
                data={"frame": frame},
            )
            return None
        return route

    async def pump(self, frames: Channel[Frame], replay: Iterable[Frame] = ()) -> None:
        """Dispatch ``replay`` then every frame from ``frames`` until it closes."""
        for frame in replay:
            self.dispatch(frame)
        async for frame in frames:
            self.dispatch(frame)
