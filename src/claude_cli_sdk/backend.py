"""Backend and session contracts.

Two topologies implement the same contract:
- CliBackend: one claude process per session
- BridgeBackend: many sessions multiplexed over one bridge process

Application code should depend only on AgentBackend / AgentSession.

Usage:
    async with create_backend() as backend:
        session = await backend.create_session("Hello!", cwd="/my/project")
        async for message in session.receive_turn():
            print(message)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from .callbacks import HookRequest, PermissionRequest
from .channels import Channel
from .errors import BackendError
from .options import PermissionMode, SessionOptions
from .protocol.content import ContentBlock
from .protocol.messages import SdkMessage
from .sdk_logger import SdkLogger


class AgentSession(ABC):
    """One conversation with the agent."""

    @property
    @abstractmethod
    def session_id(self) -> str:
        """Identifier assigned during session creation."""
        ...

    @property
    @abstractmethod
    def is_active(self) -> bool: ...

    @property
    @abstractmethod
    def messages(self) -> Channel[SdkMessage]:
        """Agent messages in arrival order. Closed when the session ends."""
        ...

    @property
    @abstractmethod
    def permission_requests(self) -> Channel[PermissionRequest]: ...

    @property
    @abstractmethod
    def hook_requests(self) -> Channel[HookRequest]: ...

    @abstractmethod
    async def send(self, message: str) -> None:
        """Send a user message.

        Raises:
            DisposedError: If the session has been killed
        """
        ...

    @abstractmethod
    async def send_with_content(self, content: list[ContentBlock]) -> None:
        """Send text and image blocks as one user message."""
        ...

    @abstractmethod
    async def interrupt(self) -> None:
        """Interrupt the current turn. No-op on a dead session."""
        ...

    @abstractmethod
    async def kill(self) -> None:
        """Terminate the session. Idempotent."""
        ...

    @abstractmethod
    async def set_model(self, model: str | None) -> None: ...

    @abstractmethod
    async def set_permission_mode(self, mode: PermissionMode | str | None) -> None: ...

    async def receive_turn(self) -> AsyncIterator[SdkMessage]:
        """Yield messages up to and including the next turn-ending result."""
        async for message in self.messages:
            yield message
            if message.is_turn_complete:
                return

    async def __aenter__(self) -> AgentSession:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.kill()


class AgentBackend(ABC):
    """Owns sessions, the error stream and their teardown."""

    def __init__(self, logger: SdkLogger | None = None) -> None:
        self._logger = logger or SdkLogger.null()
        self._errors: Channel[BackendError] = Channel()
        self._disposed = False
        self._log_channels: list[Channel[Any]] = []

    @property
    def logger(self) -> SdkLogger:
        """The logger handle; set ``backend.logger.debug_enabled = True`` for wire logs."""
        return self._logger

    @property
    def is_running(self) -> bool:
        return not self._disposed

    @property
    def errors(self) -> Channel[BackendError]:
        """Errors no specific caller is waiting on (unexpected exits, bridge errors)."""
        return self._errors

    async def logs(self) -> AsyncIterator[str]:
        """Log records as text lines, from now until the backend is disposed."""
        channel = self._logger.subscribe()
        self._log_channels.append(channel)
        try:
            async for entry in channel:
                yield str(entry)
        finally:
            self._logger.unsubscribe(channel)

    @property
    @abstractmethod
    def sessions(self) -> list[AgentSession]: ...

    @abstractmethod
    async def create_session(
        self,
        prompt: str,
        cwd: str,
        options: SessionOptions | None = None,
        content: list[ContentBlock] | None = None,
    ) -> AgentSession:
        """Start a session and wait until it is ready.

        Raises:
            SpawnError, HandshakeError, HandshakeTimeoutError: Creation failed
            DisposedError: The backend has been disposed
        """
        ...

    @abstractmethod
    async def dispose(self) -> None:
        """Kill every session and close the streams. Idempotent."""
        ...

    def _report(self, error: BackendError, session_id: str | None = None) -> None:
        self._logger.error(str(error), session_id=session_id)
        self._errors.put(error)

    def _close_streams(self) -> None:
        self._errors.close()
        for channel in self._log_channels:
            self._logger.unsubscribe(channel)
        self._log_channels.clear()

    async def __aenter__(self) -> AgentBackend:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.dispose()
