"""Session handshake.

Drives a freshly spawned agent process to the point where it can converse:

    SPAWNED -> INIT_SENT -> READY
        \\__________\\______-> FAILED (timeout, process exit, initialize error)

1. Send the ``initialize`` control request.
2. Send the first user message right away, without waiting for the ack.
3. Wait for both the ack (a ``control_response`` for the initialize request)
   and ``system/init`` (carrying the session id). They may arrive in either
   order and interleaved with other frames.

Frames other than the ack that arrive while waiting are handed back in
``HandshakeResult.replay`` so the session dispatcher sees them in order.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .channels import ChannelClosed
from .errors import DisposedError, HandshakeError, HandshakeTimeoutError
from .options import SessionOptions
from .protocol.content import ContentBlock
from .protocol.frames import ControlRequest, UserMessageFrame
from .protocol.messages import SystemMessage
from .sdk_logger import SdkLogger
from .transport.base import FrameTransport

DEFAULT_HANDSHAKE_TIMEOUT = 60.0

CONTROL_ACK = "control_response"
SYSTEM_INIT = "system/init"


class HandshakeState(str, Enum):
    SPAWNED = "spawned"
    INIT_SENT = "init_sent"
    READY = "ready"
    FAILED = "failed"


@dataclass
class HandshakeResult:
    """What a successful handshake hands to the session."""

    session_id: str
    system_init: SystemMessage
    control_response: dict[str, Any]
    replay: list[dict[str, Any]] = field(default_factory=list)


class Handshake:
    """One-shot state machine from spawned process to ready session."""

    def __init__(
        self,
        transport: FrameTransport,
        prompt: str,
        options: SessionOptions | None = None,
        content: list[ContentBlock] | None = None,
        timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        logger: SdkLogger | None = None,
    ) -> None:
        self._transport = transport
        self._prompt = prompt
        self._options = options or SessionOptions()
        self._content = content
        self._timeout = timeout
        self._logger = logger or SdkLogger.null()

        self._state = HandshakeState.SPAWNED
        self._init_request: ControlRequest | None = None
        self._ack: dict[str, Any] | None = None
        self._system_init: SystemMessage | None = None
        self._replay: list[dict[str, Any]] = []

    @property
    def state(self) -> HandshakeState:
        return self._state

    @property
    def missing(self) -> list[str]:
        """Ready conditions not observed yet."""
        missing = []
        if self._ack is None:
            missing.append(CONTROL_ACK)
        if self._system_init is None:
            missing.append(SYSTEM_INIT)
        return missing

    def initialize_request(self) -> ControlRequest:
        options = self._options
        wire = options.to_wire()
        return ControlRequest.initialize(
            system_prompt=options.system_prompt_wire(),
            include_partial_messages=bool(options.include_partial_messages),
            mcp_servers=wire.get("mcp_servers"),
            agents=options.agents,
            hooks=wire.get("hooks"),
        )

    def user_message(self) -> UserMessageFrame:
        if self._content:
            return UserMessageFrame.blocks(self._content, include_parent=True)
        return UserMessageFrame.text(self._prompt, include_parent=True)

    async def run(self) -> HandshakeResult:
        """Run the handshake to completion.

        Raises:
            HandshakeTimeoutError: If both ready conditions were not seen in time
            HandshakeError: If the process exited or rejected initialize
        """
        if self._state is not HandshakeState.SPAWNED:
            raise RuntimeError(f"Handshake already started (state={self._state.value})")

        self._init_request = self.initialize_request()
        try:
            self._send(self._init_request.to_frame())
            self._state = HandshakeState.INIT_SENT

            # No round-trip: the agent can start on the prompt while initializing
            self._logger.debug("Sending initial user message")
            self._send(self.user_message().to_frame())

            await asyncio.wait_for(self._await_ready(), timeout=self._timeout)
        except TimeoutError:
            self._state = HandshakeState.FAILED
            missing = self.missing
            self._logger.error(
                f"Session creation timed out: no {' and no '.join(missing)}",
                data={"timeout": self._timeout},
            )
            await self._transport.kill()
            raise HandshakeTimeoutError(missing, self._timeout) from None
        except HandshakeError as e:
            self._state = HandshakeState.FAILED
            self._logger.error(f"Session creation failed: {e.message}")
            await self._transport.kill()
            raise

        assert self._ack is not None and self._system_init is not None
        self._state = HandshakeState.READY
        session_id = self._system_init.session_id
        self._transport.session_id = session_id
        self._logger.info("Session created successfully", session_id=session_id)
        return HandshakeResult(
            session_id=session_id,
            system_init=self._system_init,
            control_response=self._ack,
            replay=self._replay,
        )

    def _send(self, frame: dict[str, Any]) -> None:
        try:
            self._transport.send(frame)
        except DisposedError:
            raise self._exited() from None

    async def _await_ready(self) -> None:
        while self._ack is None or self._system_init is None:
            try:
                frame = await self._transport.frames.get()
            except ChannelClosed:
                raise self._exited() from None
            self._observe(frame)

    def _exited(self) -> HandshakeError:
        return HandshakeError(
            f"Process exited before the session was ready (exit code {self._transport.exit_code})",
            stderr=self._transport.stderr_lines,
        )

    def _observe(self, frame: dict[str, Any]) -> None:
        frame_type = frame.get("type")

        if frame_type == "control_response" and self._ack is None and self._is_init_ack(frame):
            response = frame.get("response") or {}
            if response.get("subtype") == "error":
                raise HandshakeError(
                    f"Initialize rejected: {response.get('error') or 'unknown error'}",
                    stderr=self._transport.stderr_lines,
                )
            self._ack = frame
            self._logger.debug("Received control_response")
            return

        if frame_type == "system" and frame.get("subtype") == "init" and self._system_init is None:
            self._system_init = SystemMessage.from_frame(frame)
            self._logger.debug("Received system init", session_id=self._system_init.session_id)

        self._replay.append(frame)

    def _is_init_ack(self, frame: dict[str, Any]) -> bool:
        assert self._init_request is not None
        request_id = (frame.get("response") or {}).get("request_id")
        # Some agent versions omit the id on the initialize ack
        return request_id is None or request_id == self._init_request.request_id
