"""Transport protocol shared by the subprocess and in-memory transports."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from ..channels import Channel


@runtime_checkable
class FrameTransport(Protocol):
    """What the handshake, dispatcher and sessions need from a transport.

    All transports must implement:
    - frames: inbound frames in arrival order, closed at end of stream
    - send: write one outbound frame without suspending
    - kill/wait: idempotent lifecycle
    """

    session_id: str | None

    @property
    def frames(self) -> Channel[dict[str, Any]]: ...

    @property
    def stderr_lines(self) -> list[str]: ...

    @property
    def exit_code(self) -> int | None: ...

    @property
    def is_running(self) -> bool: ...

    @property
    def killed(self) -> bool: ...

    def stderr(self, replay: bool = True) -> Channel[str]: ...

    def send(self, frame: dict[str, Any]) -> None: ...

    async def drain(self) -> None: ...

    async def wait(self) -> int: ...

    async def kill(self, timeout: float = 2.0) -> None: ...
