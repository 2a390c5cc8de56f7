"""In-memory session for application tests.

MockSession satisfies the AgentSession contract without any process.
Drive it from the test side:

    session = MockSession("test-1")
    session.emit_message(AssistantMessage.from_frame({...}))
    answer = session.emit_permission_request("Bash", {"command": "ls"})
    ...
    response = await answer  # the PermissionResponse the app produced
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from .backend import AgentSession
from .callbacks import HookRequest, HookResponse, PermissionRequest, PermissionResponse
from .channels import Channel
from .options import PermissionMode
from .protocol.content import ContentBlock, TextBlock
from .protocol.frames import new_request_id
from .protocol.messages import SdkMessage


class MockSession(AgentSession):
    """Session double that records what the application sends."""

    def __init__(self, session_id: str = "test-session", sdk_session_id: str | None = None):
        self._session_id = session_id
        self.sdk_session_id = sdk_session_id
        self._messages: Channel[SdkMessage] = Channel()
        self._permission_requests: Channel[PermissionRequest] = Channel()
        self._hook_requests: Channel[HookRequest] = Channel()
        self._disposed = False

        self.sent_messages: list[str] = []
        self.sent_content: list[list[ContentBlock]] = []
        self.interrupts = 0
        self.model: str | None = None
        self.permission_mode: str | None = None
        # Called after each send; use it to script agent replies
        self.on_send: Callable[[str], Awaitable[None]] | None = None

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
        if self._disposed:
            return
        self.sent_messages.append(message)
        if self.on_send is not None:
            await self.on_send(message)

    async def send_with_content(self, content: list[ContentBlock]) -> None:
        if self._disposed:
            return
        self.sent_content.append(list(content))
        text = "\n".join(b.text for b in content if isinstance(b, TextBlock))
        self.sent_messages.append(text)
        if self.on_send is not None:
            await self.on_send(text)

    async def interrupt(self) -> None:
        self.interrupts += 1

    async def kill(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._messages.close()
        self._permission_requests.close()
        self._hook_requests.close()

    async def set_model(self, model: str | None) -> None:
        self.model = model

    async def set_permission_mode(self, mode: PermissionMode | str | None) -> None:
        self.permission_mode = mode.value if isinstance(mode, PermissionMode) else mode

    # Test side

    def emit_message(self, message: SdkMessage) -> None:
        if self._disposed:
            return
        self._messages.put(message)

    def emit_permission_request(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        request_id: str | None = None,
        tool_use_id: str | None = None,
    ) -> asyncio.Future[PermissionResponse]:
        """Queue a permission request; the future resolves with the app's answer."""
        answer: asyncio.Future[PermissionResponse] = asyncio.get_running_loop().create_future()

        def emit(response: PermissionResponse) -> None:
            if not answer.done():
                answer.set_result(response)

        self._permission_requests.put(
            PermissionRequest(
                request_id=request_id or new_request_id(),
                session_id=self._session_id,
                tool_name=tool_name,
                input=tool_input,
                emit=emit,
                tool_use_id=tool_use_id,
            )
        )
        return answer

    def emit_hook_request(
        self, event: str, hook_input: Any = None, request_id: str | None = None
    ) -> asyncio.Future[HookResponse]:
        answer: asyncio.Future[HookResponse] = asyncio.get_running_loop().create_future()

        def emit(response: HookResponse) -> None:
            if not answer.done():
                answer.set_result(response)

        self._hook_requests.put(
            HookRequest(
                request_id=request_id or new_request_id(),
                session_id=self._session_id,
                event=event,
                input=hook_input,
                emit=emit,
            )
        )
        return answer
