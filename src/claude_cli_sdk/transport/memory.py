"""In-memory transport for tests.

No actual I/O: frames written by the SDK are recorded, frames "from the
agent" are injected with ``push``.

Usage:
    transport = MemoryTransport()
    transport.on_send = lambda frame: ...   # optional scripted agent

    handshake = Handshake(transport, prompt="hi")
    transport.push({"type": "system", "subtype": "init", "session_id": "S1"})
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from ..channels import Broadcast, Channel
from ..errors import DisposedError


class MemoryTransport:
    """Scriptable stand-in for JsonlProcess."""

    def __init__(self) -> None:
        self.session_id: str | None = None
        self.on_send: Callable[[dict[str, Any]], None] | None = None
        self._frames: Channel[dict[str, Any]] = Channel()
        self._sent: list[dict[str, Any]] = []
        self._stderr: Broadcast[str] = Broadcast(history=1000)
        self._killed = False
        self._exit: asyncio.Future[int] = asyncio.get_running_loop().create_future()

    @property
    def frames(self) -> Channel[dict[str, Any]]:
        return self._frames

    @property
    def sent(self) -> list[dict[str, Any]]:
        """All frames written through this transport."""
        return list(self._sent)

    def sent_of_type(self, frame_type: str) -> list[dict[str, Any]]:
        return [f for f in self._sent if f.get("type") == frame_type]

    @property
    def stderr_lines(self) -> list[str]:
        return self._stderr.history

    def stderr(self, replay: bool = True) -> Channel[str]:
        return self._stderr.subscribe(replay=replay)

    @property
    def exit_code(self) -> int | None:
        return self._exit.result() if self._exit.done() else None

    @property
    def is_running(self) -> bool:
        return not self._killed and not self._exit.done()

    @property
    def killed(self) -> bool:
        return self._killed

    def push(self, *frames: dict[str, Any]) -> None:
        """Deliver frames as if the agent had written them."""
        for frame in frames:
            self._frames.put(frame)

    def write_stderr(self, line: str) -> None:
        self._stderr.publish(line)

    def exit(self, code: int = 0) -> None:
        """Simulate the process exiting on its own."""
        if not self._exit.done():
            self._exit.set_result(code)
        self._frames.close()

    def send(self, frame: dict[str, Any]) -> None:
        if self._killed or self._exit.done():
            raise DisposedError("Process has been killed")
        self._sent.append(frame)
        if self.on_send is not None:
            self.on_send(frame)

    async def drain(self) -> None:
        return None

    async def wait(self) -> int:
        return await asyncio.shield(self._exit)

    async def kill(self, timeout: float = 2.0) -> None:
        if self._killed:
            return
        self._killed = True
        if not self._exit.done():
            self._exit.set_result(-15)
        self._frames.close()
        self._stderr.close()
