"""Backend that spawns one claude CLI process per session."""

from __future__ import annotations

import asyncio
import contextlib

from .backend import AgentBackend, AgentSession
from .cli_session import CliSession
from .errors import BackendError, ClaudeSdkError, DisposedError
from .handshake import DEFAULT_HANDSHAKE_TIMEOUT
from .options import SessionOptions
from .protocol.content import ContentBlock
from .sdk_logger import SdkLogger


class CliBackend(AgentBackend):
    """Direct topology.

    Each session owns its process. A session whose process exits with a
    nonzero code without having been killed is reported on ``errors`` as
    ``SESSION_EXIT``.
    """

    def __init__(
        self,
        executable_path: str | None = None,
        logger: SdkLogger | None = None,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
    ) -> None:
        super().__init__(logger)
        self._executable_path = executable_path
        self._handshake_timeout = handshake_timeout
        self._sessions: dict[str, CliSession] = {}
        self._monitors: set[asyncio.Task[None]] = set()

    @property
    def sessions(self) -> list[AgentSession]:
        return list(self._sessions.values())

    async def create_session(
        self,
        prompt: str,
        cwd: str,
        options: SessionOptions | None = None,
        content: list[ContentBlock] | None = None,
    ) -> AgentSession:
        if self._disposed:
            raise DisposedError("Backend has been disposed")

        try:
            session = await CliSession.create(
                prompt,
                cwd,
                options=options,
                content=content,
                executable_path=self._executable_path,
                timeout=self._handshake_timeout,
                logger=self._logger,
            )
        except ClaudeSdkError as e:
            self._report(
                BackendError(
                    f"Failed to create session: {e.message}",
                    code="SESSION_CREATE_ERROR",
                    details={"cause": e.code},
                )
            )
            raise

        return self.adopt(session)

    def adopt(self, session: CliSession) -> CliSession:
        """Register a session and watch its process for unexpected exits."""
        self._sessions[session.session_id] = session
        task = asyncio.create_task(self._monitor(session))
        self._monitors.add(task)
        task.add_done_callback(self._monitors.discard)
        return session

    async def _monitor(self, session: CliSession) -> None:
        exit_code = await session.wait_closed()
        if self._disposed:
            return
        self._sessions.pop(session.session_id, None)
        # -15 / SIGTERM is expected after kill()
        if not session.killed and exit_code not in (0, None):
            self._report(
                BackendError(
                    f"Session {session.session_id} exited with code {exit_code}",
                    code="SESSION_EXIT",
                    details={"stderr": session.transport.stderr_lines[-20:]},
                ),
                session_id=session.session_id,
            )

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True

        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.kill()

        for task in list(self._monitors):
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._close_streams()
        self._logger.info("Backend disposed")
