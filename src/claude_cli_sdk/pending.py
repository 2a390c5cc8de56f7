"""Pending-request table.

Correlates an outbound request id with its eventual outcome. Every entry is
resolved exactly once: by a matching success frame, a matching error frame,
or forcibly with DisposedError when its owner is torn down. Late or unknown
responses are dropped and only logged.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import DisposedError
from .sdk_logger import SdkLogger


class RequestKind(str, Enum):
    CREATE = "create"
    CONTROL = "control"
    QUERY = "query"


@dataclass
class PendingRequest:
    """An outbound request waiting for its response."""

    request_id: str
    kind: RequestKind
    future: asyncio.Future[Any]
    session_id: str | None = None
    created_at: float = field(default_factory=lambda: asyncio.get_running_loop().time())

    @property
    def resolved(self) -> bool:
        return self.future.done()


class PendingRequestTable:
    """Map of request id to a single-resolution future."""

    def __init__(self, logger: SdkLogger | None = None) -> None:
        self._logger = logger or SdkLogger.null()
        self._pending: dict[str, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def register(
        self,
        request_id: str,
        kind: RequestKind,
        session_id: str | None = None,
    ) -> PendingRequest:
        if request_id in self._pending:
            raise ValueError(f"Request id already pending: {request_id}")
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        entry = PendingRequest(request_id, kind, future, session_id=session_id)
        self._pending[request_id] = entry
        return entry

    def get(self, request_id: str) -> PendingRequest | None:
        return self._pending.get(request_id)

    def resolve(self, request_id: str, value: Any = None) -> bool:
        """Resolve with a success value. False if the id is unknown."""
        entry = self._pending.pop(request_id, None)
        if entry is None:
            self._logger.debug("Dropping response for unknown request", data={"id": request_id})
            return False
        if entry.future.done():
            return False
        entry.future.set_result(value)
        return True

    def reject(self, request_id: str, error: BaseException) -> bool:
        """Resolve with a failure. False if the id is unknown."""
        entry = self._pending.pop(request_id, None)
        if entry is None:
            self._logger.debug("Dropping error for unknown request", data={"id": request_id})
            return False
        if entry.future.done():
            return False
        entry.future.set_exception(error)
        return True

    def discard(self, request_id: str) -> None:
        """Forget an entry whose caller gave up (timeout, cancellation)."""
        entry = self._pending.pop(request_id, None)
        if entry is not None and not entry.future.done():
            entry.future.cancel()

    def fail_all(
        self,
        error: BaseException | None = None,
        session_id: str | None = None,
    ) -> int:
        """Reject every outstanding entry (optionally only one session's).

        Returns:
            Number of entries failed
        """
        error = error or DisposedError()
        ids = [
            rid
            for rid, entry in self._pending.items()
            if session_id is None or entry.session_id == session_id
        ]
        for rid in ids:
            entry = self._pending.pop(rid)
            if not entry.future.done():
                entry.future.set_exception(error)
                # Nobody may be awaiting this future any more
                entry.future.exception()
        return len(ids)

    async def wait(self, entry: PendingRequest, timeout: float | None = None) -> Any:
        """Await an entry's outcome, discarding it on timeout or cancellation."""
        try:
            if timeout is None:
                return await entry.future
            return await asyncio.wait_for(asyncio.shield(entry.future), timeout=timeout)
        except (TimeoutError, asyncio.CancelledError):
            self.discard(entry.request_id)
            raise
