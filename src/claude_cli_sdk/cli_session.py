"""Direct session: one claude CLI process per conversation.

Creation spawns the process and runs the handshake. After that a single
pump task dispatches every stdout frame in pipe order:

- system / assistant / user / result / stream_event / unknown -> ``messages``
- control_request can_use_tool -> ``permission_requests``
- control_request hook_callback -> ``hook_requests``
- control_request (other subtypes) -> answered with an error response
- control_response -> resolves interrupt / set_model / set_permission_mode

Killing the session (or the process exiting) fails pending control calls
with DisposedError, abandons unanswered callbacks and closes the streams.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

from .backend import AgentSession
from .callbacks import (
    CallbackRouter,
    HookRequest,
    HookResponse,
    PermissionRequest,
    PermissionResponse,
)
from .channels import Channel
from .dispatcher import FrameRoute, MessageDispatcher
from .errors import ControlRequestError, DisposedError
from .handshake import DEFAULT_HANDSHAKE_TIMEOUT, Handshake, HandshakeResult
from .options import PermissionMode, SessionOptions
from .pending import PendingRequestTable, RequestKind
from .protocol.content import ContentBlock, ensure_text_placeholder
from .protocol.frames import ControlRequest, UserMessageFrame, control_error, control_success
from .protocol.messages import SdkMessage, SystemMessage, parse_message
from .sdk_logger import SdkLogger
from .transport.base import FrameTransport
from .transport.process import CliProcessConfig, JsonlProcess

DEFAULT_CONTROL_TIMEOUT = 30.0


class CliSession(AgentSession):
    """A session that owns its claude process exclusively."""

    def __init__(
        self,
        transport: FrameTransport,
        handshake: HandshakeResult,
        logger: SdkLogger | None = None,
        control_timeout: float = DEFAULT_CONTROL_TIMEOUT,
    ) -> None:
        self._transport = transport
        self._session_id = handshake.session_id
        self._system_init = handshake.system_init
        self._logger = logger or SdkLogger.null()
        self._control_timeout = control_timeout

        self._messages: Channel[SdkMessage] = Channel()
        self._permission_requests: Channel[PermissionRequest] = Channel()
        self._hook_requests: Channel[HookRequest] = Channel()

        self._pending = PendingRequestTable(self._logger)
        self._callbacks = CallbackRouter(self._logger)
        self._dispatcher = MessageDispatcher(
            {
                FrameRoute.MESSAGE: self._on_message,
                FrameRoute.CONTROL_RESPONSE: self._on_control_response,
                FrameRoute.PERMISSION: self._on_permission,
                FrameRoute.HOOK: self._on_hook,
                FrameRoute.UNSUPPORTED_CONTROL: self._on_unsupported_control,
                FrameRoute.CONTROL_CANCEL: self._on_control_cancel,
            },
            logger=self._logger,
            session_id=self._session_id,
        )

        self._killed = False
        self._closed = asyncio.Event()
        self._exit_code: int | None = None
        self._pump_task = asyncio.create_task(self._run(handshake.replay))

    @classmethod
    async def create(
        cls,
        prompt: str,
        cwd: str | None,
        options: SessionOptions | None = None,
        content: list[ContentBlock] | None = None,
        process_config: CliProcessConfig | None = None,
        executable_path: str | None = None,
        timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        logger: SdkLogger | None = None,
    ) -> CliSession:
        """Spawn a claude process and run the handshake.

        Raises:
            SpawnError: The executable could not be started
            HandshakeError: The process exited or rejected initialize
            HandshakeTimeoutError: The session was not ready within ``timeout``
        """
        logger = logger or SdkLogger.null()
        config = process_config or CliProcessConfig.from_options(cwd, options, executable_path)
        permission_mode = options.permission_mode if options else None
        logger.info(
            "Spawning CLI process",
            data={
                "cwd": cwd,
                "model": options.model if options else None,
                "permissionMode": permission_mode.value if permission_mode else None,
            },
        )
        transport = await JsonlProcess.spawn_cli(config, logger=logger)
        return await cls.start(transport, prompt, options, content, timeout=timeout, logger=logger)

    @classmethod
    async def start(
        cls,
        transport: FrameTransport,
        prompt: str,
        options: SessionOptions | None = None,
        content: list[ContentBlock] | None = None,
        timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        logger: SdkLogger | None = None,
    ) -> CliSession:
        """Run the handshake on an already spawned transport."""
        handshake = Handshake(transport, prompt, options, content, timeout=timeout, logger=logger)
        try:
            result = await handshake.run()
        except BaseException:
            await transport.kill()
            raise
        return cls(transport, result, logger=logger)

    # Properties

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def system_init(self) -> SystemMessage:
        """The ``system/init`` snapshot: tools, model, permission mode..."""
        return self._system_init

    @property
    def transport(self) -> FrameTransport:
        return self._transport

    @property
    def is_active(self) -> bool:
        return not self._killed and not self._closed.is_set() and self._transport.is_running

    @property
    def killed(self) -> bool:
        return self._killed

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    @property
    def messages(self) -> Channel[SdkMessage]:
        return self._messages

    @property
    def permission_requests(self) -> Channel[PermissionRequest]:
        return self._permission_requests

    @property
    def hook_requests(self) -> Channel[HookRequest]:
        return self._hook_requests

    # Operations

    async def send(self, message: str) -> None:
        self._ensure_alive()
        self._transport.send(UserMessageFrame.text(message).to_frame())
        await self._transport.drain()

    async def send_with_content(self, content: list[ContentBlock]) -> None:
        self._ensure_alive()
        blocks = ensure_text_placeholder(content)
        self._transport.send(UserMessageFrame.blocks(blocks).to_frame())
        await self._transport.drain()

    async def interrupt(self) -> None:
        if not self.is_active:
            return
        self._logger.debug("Interrupting session", session_id=self._session_id)
        try:
            await self._control(ControlRequest.interrupt())
        except (ControlRequestError, DisposedError, TimeoutError) as e:
            self._logger.warning(f"Interrupt not acknowledged: {e}", session_id=self._session_id)

    async def set_model(self, model: str | None) -> None:
        """Switch model; ``None`` restores the default.

        Raises:
            DisposedError: If the session has been killed
            ControlRequestError: If the agent rejected the change
        """
        self._ensure_alive()
        self._logger.debug("Setting model", session_id=self._session_id, data={"model": model})
        await self._control(ControlRequest.set_model(model))

    async def set_permission_mode(self, mode: PermissionMode | str | None) -> None:
        self._ensure_alive()
        if isinstance(mode, PermissionMode):
            value = mode.value
        else:
            value = mode or PermissionMode.DEFAULT.value
        self._logger.debug(
            "Setting permission mode", session_id=self._session_id, data={"mode": value}
        )
        await self._control(ControlRequest.set_permission_mode(value))

    async def kill(self) -> None:
        if self._killed:
            return
        self._killed = True
        self._logger.info("Killing session", session_id=self._session_id)

        self._callbacks.abandon_all()
        self._pending.fail_all(DisposedError())
        await self._transport.kill()

        if not self._pump_task.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._pump_task), timeout=5.0)
            except TimeoutError:
                self._pump_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._pump_task
        self._finish()

    async def wait_closed(self) -> int | None:
        """Wait until the session ends; returns the process exit code."""
        await self._closed.wait()
        return self._exit_code

    # Control requests

    async def _control(self, request: ControlRequest) -> dict[str, Any]:
        entry = self._pending.register(
            request.request_id, RequestKind.CONTROL, session_id=self._session_id
        )
        try:
            self._transport.send(request.to_frame())
        except DisposedError:
            self._pending.discard(request.request_id)
            raise
        return await self._pending.wait(entry, timeout=self._control_timeout)

    def _ensure_alive(self) -> None:
        if self._killed or self._closed.is_set():
            raise DisposedError()

    # Dispatch handlers

    def _on_message(self, frame: dict[str, Any]) -> None:
        if self._killed:
            return
        self._messages.put(parse_message(frame))

    def _on_control_response(self, frame: dict[str, Any]) -> None:
        response = frame.get("response") or {}
        request_id = response.get("request_id")
        if not request_id:
            self._logger.debug("control_response without request_id", session_id=self._session_id)
            return
        if response.get("subtype") == "error":
            error = response.get("error") or "Control request failed"
            self._pending.reject(request_id, ControlRequestError(error, request_id))
        else:
            self._pending.resolve(request_id, response.get("response") or {})

    def _on_permission(self, frame: dict[str, Any]) -> None:
        if self._killed:
            return

        def emit(response: PermissionResponse) -> None:
            body = response.to_direct(request.tool_use_id or "")
            self._transport.send(control_success(request.request_id, body))

        request = PermissionRequest.from_control_request(
            frame, self._session_id, emit, logger=self._logger
        )
        self._logger.debug(
            "Permission request received",
            session_id=self._session_id,
            data={"toolName": request.tool_name, "requestId": request.request_id},
        )
        self._callbacks.track(request)
        self._permission_requests.put(request)

    def _on_hook(self, frame: dict[str, Any]) -> None:
        if self._killed:
            return

        def emit(response: HookResponse) -> None:
            self._transport.send(control_success(request.request_id, response.to_direct()))

        request = HookRequest.from_control_request(
            frame, self._session_id, emit, logger=self._logger
        )
        self._callbacks.track(request)
        self._hook_requests.put(request)

    def _on_unsupported_control(self, frame: dict[str, Any]) -> None:
        request = frame.get("request") or {}
        subtype = request.get("subtype")
        request_id = frame.get("request_id") or ""
        self._logger.warning(
            f"Unsupported control request subtype: {subtype}",
            session_id=self._session_id,
            data={"requestId": request_id},
        )
        if not self._killed:
            self._transport.send(
                control_error(request_id, f"Unsupported control request subtype: {subtype}")
            )

    def _on_control_cancel(self, frame: dict[str, Any]) -> None:
        request_id = frame.get("request_id")
        if request_id:
            self._callbacks.cancel(request_id)

    # Lifecycle

    async def _run(self, replay: list[dict[str, Any]]) -> None:
        try:
            await self._dispatcher.pump(self._transport.frames, replay)
        except asyncio.CancelledError:
            pass

        if self._killed:
            return

        # stdout closed without a kill: the process is gone or going
        try:
            self._exit_code = await asyncio.wait_for(self._transport.wait(), timeout=5.0)
        except TimeoutError:
            await self._transport.kill()
            self._exit_code = self._transport.exit_code
        self._logger.info(
            f"Session process exited with code {self._exit_code}", session_id=self._session_id
        )
        self._callbacks.abandon_all()
        self._pending.fail_all(DisposedError("Session process exited"))
        self._finish()

    def _finish(self) -> None:
        if self._closed.is_set():
            return
        if self._exit_code is None:
            self._exit_code = self._transport.exit_code
        self._messages.close()
        self._permission_requests.close()
        self._hook_requests.close()
        self._closed.set()
