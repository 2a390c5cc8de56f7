"""Bridge backend: many sessions multiplexed over one bridge process.

The bridge (a Node.js script wrapping the agent SDK) speaks its own frame
vocabulary, every frame shaped ``{"type", "id", "session_id", "payload"}``:

Outbound: session.create, session.send, session.interrupt, session.kill,
callback.response, query.call

Inbound: session.created, sdk.message, callback.request, query.result,
session.interrupted, session.killed, error

Requests are correlated by ``id`` through one pending-request table; all
other inbound frames are routed to their session by ``session_id``. Since
the whole backend reads one ordered stdout, each session sees its frames
in the order the bridge wrote them.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

from .backend import AgentBackend, AgentSession
from .callbacks import (
    CallbackRouter,
    CallbackType,
    HookRequest,
    HookResponse,
    PermissionRequest,
    PermissionResponse,
)
from .channels import Channel
from .dispatcher import FrameRoute, MessageDispatcher
from .errors import (
    BackendError,
    ClaudeSdkError,
    DisposedError,
    HandshakeTimeoutError,
    QueryError,
    SpawnError,
)
from .handshake import DEFAULT_HANDSHAKE_TIMEOUT
from .options import PermissionMode, SessionOptions
from .pending import PendingRequestTable, RequestKind
from .protocol.content import ContentBlock, ensure_text_placeholder
from .protocol.frames import BridgeCommand
from .protocol.messages import ErrorMessage, SdkMessage, UnknownMessage, parse_message
from .sdk_logger import SdkLogger
from .transport.base import FrameTransport
from .transport.process import JsonlProcess

SPAWN_GRACE_PERIOD = 0.2
DEFAULT_REQUEST_TIMEOUT = 30.0


class BridgeSession(AgentSession):
    """A session living inside the shared bridge process."""

    def __init__(
        self,
        backend: BridgeBackend,
        session_id: str,
        sdk_session_id: str | None = None,
        logger: SdkLogger | None = None,
    ) -> None:
        self._backend = backend
        self._session_id = session_id
        self.sdk_session_id = sdk_session_id
        self._logger = logger or SdkLogger.null()

        self._messages: Channel[SdkMessage] = Channel()
        self._permission_requests: Channel[PermissionRequest] = Channel()
        self._hook_requests: Channel[HookRequest] = Channel()
        self._callbacks = CallbackRouter(self._logger)
        self._disposed = False

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_active(self) -> bool:
        return not self._disposed

    @property
    def messages(self) -> Channel[SdkMessage]:
        return self._messages

    @property
    def permission_requests(self) -> Channel[PermissionRequest]:
        return self._permission_requests

    @property
    def hook_requests(self) -> Channel[HookRequest]:
        return self._hook_requests

    async def send(self, message: str) -> None:
        self._ensure_alive()
        await self._backend._send_to_session(self._session_id, message=message)

    async def send_with_content(self, content: list[ContentBlock]) -> None:
        self._ensure_alive()
        await self._backend._send_to_session(
            self._session_id, content=ensure_text_placeholder(content)
        )

    async def interrupt(self) -> None:
        if self._disposed:
            return
        try:
            await self._backend._request(
                BridgeCommand.session_interrupt(self._session_id), RequestKind.CONTROL
            )
        except (ClaudeSdkError, TimeoutError) as e:
            self._logger.warning(f"Interrupt failed: {e}", session_id=self._session_id)

    async def kill(self) -> None:
        if self._disposed:
            return
        try:
            await self._backend._request(
                BridgeCommand.session_kill(self._session_id), RequestKind.CONTROL
            )
        except (ClaudeSdkError, TimeoutError) as e:
            self._logger.warning(f"Kill not acknowledged: {e}", session_id=self._session_id)
        finally:
            self._backend._forget(self._session_id)
            self._dispose()

    async def set_model(self, model: str | None) -> None:
        self._ensure_alive()
        await self._query("setModel", [model])

    async def set_permission_mode(self, mode: PermissionMode | str | None) -> None:
        self._ensure_alive()
        value = mode.value if isinstance(mode, PermissionMode) else mode
        await self._query("setPermissionMode", [value])

    # Query methods

    async def supported_models(self) -> list[dict[str, Any]]:
        """Models the agent can switch to."""
        if self._disposed:
            return []
        return list(await self._query("supportedModels") or [])

    async def supported_commands(self) -> list[dict[str, Any]]:
        """Available slash commands."""
        if self._disposed:
            return []
        return list(await self._query("supportedCommands") or [])

    async def mcp_server_status(self) -> list[dict[str, Any]]:
        if self._disposed:
            return []
        return list(await self._query("mcpServerStatus") or [])

    async def _query(self, method: str, args: list[Any] | None = None) -> Any:
        return await self._backend._request(
            BridgeCommand.query_call(self._session_id, method, args), RequestKind.QUERY
        )

    def _ensure_alive(self) -> None:
        if self._disposed:
            raise DisposedError()

    # Inbound, called by the backend dispatcher

    def _deliver(self, message: SdkMessage) -> None:
        if self._disposed:
            return
        self._messages.put(message)

    def _on_callback(self, frame: dict[str, Any]) -> None:
        if self._disposed:
            return
        payload = frame.get("payload") or {}
        match payload.get("callback_type"):
            case CallbackType.CAN_USE_TOOL.value:

                def emit_permission(response: PermissionResponse) -> None:
                    body = response.to_bridge(has_suggestions=bool(payload.get("suggestions")))
                    self._backend._send_callback_response(
                        permission.request_id, self._session_id, body
                    )

                permission = PermissionRequest.from_bridge(
                    frame, emit_permission, logger=self._logger
                )
                self._callbacks.track(permission)
                self._permission_requests.put(permission)
            case CallbackType.HOOK.value:

                def emit_hook(response: HookResponse) -> None:
                    self._backend._send_callback_response(
                        hook.request_id, self._session_id, response.to_bridge()
                    )

                hook = HookRequest.from_bridge(frame, emit_hook, logger=self._logger)
                self._callbacks.track(hook)
                self._hook_requests.put(hook)
            case other:
                self._logger.warning(
                    f"Unknown callback type: {other}", session_id=self._session_id
                )

    def _dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._callbacks.abandon_all()
        self._messages.close()
        self._permission_requests.close()
        self._hook_requests.close()


class BridgeBackend(AgentBackend):
    """Multiplexed topology over one bridge process."""

    def __init__(
        self,
        transport: FrameTransport,
        logger: SdkLogger | None = None,
        create_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        super().__init__(logger)
        self._transport = transport
        self._create_timeout = create_timeout
        self._request_timeout = request_timeout
        self._sessions: dict[str, BridgeSession] = {}
        self._pending = PendingRequestTable(self._logger)
        self._dispatcher = MessageDispatcher(
            {
                FrameRoute.SESSION_CREATED: self._on_session_created,
                FrameRoute.SDK_MESSAGE: self._on_sdk_message,
                FrameRoute.CALLBACK_REQUEST: self._on_callback_request,
                FrameRoute.QUERY_RESULT: self._on_query_result,
                FrameRoute.SESSION_INTERRUPTED: self._on_request_done,
                FrameRoute.SESSION_KILLED: self._on_session_killed,
                FrameRoute.ERROR: self._on_error,
                FrameRoute.MESSAGE: self._on_unknown,
            },
            logger=self._logger,
        )
        self._pump_task = asyncio.create_task(self._run())

    @classmethod
    async def spawn(
        cls,
        bridge_script: str,
        node_executable: str | None = None,
        logger: SdkLogger | None = None,
        **kwargs: Any,
    ) -> BridgeBackend:
        """Start the bridge and make sure it survives its first moments.

        Raises:
            SpawnError: If the bridge cannot start or exits within the grace period
        """
        logger = logger or SdkLogger.null()
        transport = await JsonlProcess.spawn(
            [node_executable or "node", bridge_script], logger=logger
        )
        backend = cls(transport, logger=logger, **kwargs)

        if await transport.exited_within(SPAWN_GRACE_PERIOD):
            await transport.wait_streams(timeout=0.5)
            stderr = transport.stderr_lines
            code = transport.exit_code
            if stderr:
                message = "Backend process failed to start:\n" + "\n".join(stderr)
            else:
                message = f"Backend process exited with code {code}"
            await backend.dispose()
            raise SpawnError(message, stderr=stderr, exit_code=code)

        return backend

    @property
    def transport(self) -> FrameTransport:
        return self._transport

    @property
    def sessions(self) -> list[AgentSession]:
        return list(self._sessions.values())

    async def logs(self):  # type: ignore[override]
        """Bridge stderr lines, replaying the buffered ones first."""
        channel = self._transport.stderr(replay=True)
        async for line in channel:
            yield line

    async def create_session(
        self,
        prompt: str,
        cwd: str,
        options: SessionOptions | None = None,
        content: list[ContentBlock] | None = None,
    ) -> BridgeSession:
        self._ensure_running()
        command = BridgeCommand.session_create(
            prompt, cwd, options=options.to_wire() if options else None, content=content
        )
        try:
            return await self._request(command, RequestKind.CREATE, timeout=self._create_timeout)
        except TimeoutError:
            raise HandshakeTimeoutError(["session.created"], self._create_timeout) from None

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True

        for session in list(self._sessions.values()):
            session._dispose()
        self._sessions.clear()
        self._pending.fail_all(DisposedError("Backend has been disposed"))

        await self._transport.kill()
        if not self._pump_task.done():
            self._pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pump_task

        self._close_streams()
        self._logger.info("Bridge backend disposed")

    # Outbound

    def _ensure_running(self) -> None:
        if self._disposed:
            raise DisposedError("Backend has been disposed")

    async def _request(
        self, command: BridgeCommand, kind: RequestKind, timeout: float | None = None
    ) -> Any:
        """Send a correlated command and wait for its result."""
        self._ensure_running()
        entry = self._pending.register(command.id, kind, session_id=command.session_id)
        try:
            self._transport.send(command.to_frame())
        except DisposedError:
            self._pending.discard(command.id)
            raise
        return await self._pending.wait(entry, timeout=timeout or self._request_timeout)

    async def _send_to_session(
        self,
        session_id: str,
        message: str | None = None,
        content: list[ContentBlock] | None = None,
    ) -> None:
        self._ensure_running()
        self._transport.send(BridgeCommand.session_send(session_id, message, content).to_frame())
        await self._transport.drain()

    def _send_callback_response(
        self, request_id: str, session_id: str, payload: dict[str, Any]
    ) -> None:
        if self._disposed:
            return
        self._transport.send(
            BridgeCommand.callback_response(request_id, session_id, payload).to_frame()
        )

    def _forget(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._pending.fail_all(DisposedError(), session_id=session_id)

    # Inbound

    def _on_session_created(self, frame: dict[str, Any]) -> None:
        request_id = frame.get("id") or ""
        entry = self._pending.get(request_id)
        if entry is None:
            self._logger.debug("session.created for unknown request", data={"id": request_id})
            return
        payload = frame.get("payload") or {}
        session_id = frame.get("session_id") or ""
        session = BridgeSession(
            self, session_id, sdk_session_id=payload.get("sdk_session_id"), logger=self._logger
        )
        # Registered before resolving so the session's first frames find it
        self._sessions[session_id] = session
        self._pending.resolve(request_id, session)
        self._logger.info("Session created successfully", session_id=session_id)

    def _on_sdk_message(self, frame: dict[str, Any]) -> None:
        session = self._sessions.get(frame.get("session_id") or "")
        if session is None:
            self._logger.debug("sdk.message for unknown session", data={"frame": frame})
            return
        payload = frame.get("payload")
        if not isinstance(payload, dict):
            self._logger.warning("sdk.message without payload", session_id=session.session_id)
            return
        message = parse_message(payload)
        if message.session_id:
            session.sdk_session_id = message.session_id
        session._deliver(message)

    def _on_callback_request(self, frame: dict[str, Any]) -> None:
        session = self._sessions.get(frame.get("session_id") or "")
        if session is None:
            self._logger.debug("callback.request for unknown session", data={"frame": frame})
            return
        session._on_callback(frame)

    def _on_query_result(self, frame: dict[str, Any]) -> None:
        payload = frame.get("payload") or {}
        request_id = frame.get("id") or ""
        if payload.get("success"):
            self._pending.resolve(request_id, payload.get("result"))
        else:
            self._pending.reject(request_id, QueryError(payload.get("error") or "Query failed"))

    def _on_request_done(self, frame: dict[str, Any]) -> None:
        self._pending.resolve(frame.get("id") or "")

    def _on_session_killed(self, frame: dict[str, Any]) -> None:
        self._pending.resolve(frame.get("id") or "")
        session = self._sessions.pop(frame.get("session_id") or "", None)
        if session is not None:
            session._dispose()

    def _on_error(self, frame: dict[str, Any]) -> None:
        error = BackendError.from_payload(frame.get("payload") or {})

        request_id = frame.get("id")
        if request_id and request_id in self._pending:
            self._pending.reject(request_id, error)
            return

        session = self._sessions.get(frame.get("session_id") or "")
        if session is not None:
            session._deliver(ErrorMessage.from_frame(frame))
            return

        self._report(error)

    def _on_unknown(self, frame: dict[str, Any]) -> None:
        session = self._sessions.get(frame.get("session_id") or "")
        if session is not None:
            session._deliver(UnknownMessage.from_frame(frame))
        else:
            self._logger.debug("Ignoring unknown bridge frame", data={"frame": frame})

    async def _run(self) -> None:
        try:
            await self._dispatcher.pump(self._transport.frames)
        except asyncio.CancelledError:
            return
        if self._disposed:
            return

        exit_code = await self._transport.wait()
        if self._disposed:
            return
        if exit_code != 0:
            self._report(
                BackendError(
                    f"Backend process exited unexpectedly with code {exit_code}",
                    code="PROCESS_EXIT",
                    details={"stderr": self._transport.stderr_lines[-20:]},
                )
            )
        # Nothing can reach the sessions any more
        for session in list(self._sessions.values()):
            session._dispose()
        self._sessions.clear()
        self._pending.fail_all(DisposedError("Backend process exited"))
