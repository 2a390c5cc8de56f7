"""SDK logger handle.

Every process, handshake, session and backend receives a SdkLogger at
construction time instead of reaching for a global. Records go to:

- the standard library logger ``claude_cli_sdk`` (silent by default,
  the package installs a NullHandler)
- an optional JSONL log file
- any subscribers (Backend.logs)

Debug records, including the raw frames written to and read from the
agent process, are only produced when ``debug_enabled`` is set, either
programmatically or via CLAUDE_SDK_DEBUG.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from .channels import Broadcast, Channel
from .config import SdkConfig

LOGGER_NAME = "claude_cli_sdk"


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LogDirection(str, Enum):
    """Which side of the process a record describes."""

    STDIN = "stdin"
    STDOUT = "stdout"
    STDERR = "stderr"
    INTERNAL = "internal"


_STDLIB_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass
class LogEntry:
    """A single SDK log record."""

    level: LogLevel
    message: str
    timestamp: datetime = field(default_factory=datetime.now)
    direction: LogDirection | None = None
    session_id: str | None = None
    data: dict[str, Any] | None = None
    text: str | None = None

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
        }
        if self.direction is not None:
            payload["direction"] = self.direction.value
        if self.session_id is not None:
            payload["sessionId"] = self.session_id

        # Structured content wins over free text, free text over the message
        if self.data is not None:
            payload["content"] = self.data
        elif self.text is not None:
            payload["text"] = self.text
        else:
            payload["message"] = self.message
        return payload

    def to_json_line(self) -> str:
        return json.dumps(self.to_json(), ensure_ascii=False, default=str)

    def summary(self) -> str:
        """One-line form without the timestamp (used for stdlib logging)."""
        parts = []
        if self.direction is not None:
            parts.append(f"[{self.direction.value}]")
        if self.session_id is not None:
            parts.append(f"[session:{self.session_id}]")
        parts.append(self.message)
        line = " ".join(parts)
        if self.data is not None:
            line += f" {json.dumps(self.data, ensure_ascii=False, default=str)}"
        elif self.text is not None:
            line += f" {self.text}"
        return line

    def __str__(self) -> str:
        head = f"[{self.timestamp.isoformat()}][{self.level.value.upper()}]"
        if self.direction is not None:
            head += f"[{self.direction.value}]"
        if self.session_id is not None:
            head += f"[session:{self.session_id}]"
        line = f"{head} {self.message}"
        if self.data is not None:
            line += f"\n  {json.dumps(self.data, ensure_ascii=False, default=str)}"
        elif self.text is not None:
            line += f"\n  {self.text}"
        return line


class JsonLineFormatter(logging.Formatter):
    """Formats records carrying an ``sdk_entry`` attribute as JSONL."""

    def format(self, record: logging.LogRecord) -> str:
        entry = getattr(record, "sdk_entry", None)
        if isinstance(entry, LogEntry):
            return entry.to_json_line()
        return json.dumps(
            {
                "timestamp": datetime.fromtimestamp(record.created).isoformat(),
                "level": record.levelname.lower(),
                "message": record.getMessage(),
            },
            ensure_ascii=False,
        )


class SdkLogger:
    """Logger handle injected into every SDK component."""

    def __init__(
        self,
        debug_enabled: bool = False,
        log_file: str | Path | None = None,
        name: str = LOGGER_NAME,
    ) -> None:
        self._logger = logging.getLogger(name)
        self._debug_enabled = debug_enabled
        self._file_handler: logging.FileHandler | None = None
        self._log_file_path: str | None = None
        self._subscribers: Broadcast[LogEntry] = Broadcast()
        if log_file:
            self.enable_file_logging(log_file)

    @classmethod
    def null(cls) -> SdkLogger:
        """Handle that only forwards non-debug records to the stdlib logger."""
        return cls()

    @classmethod
    def from_config(cls, config: SdkConfig | None = None) -> SdkLogger:
        config = config or SdkConfig.from_env()
        return cls(debug_enabled=config.debug, log_file=config.log_file)

    @property
    def debug_enabled(self) -> bool:
        return self._debug_enabled

    @debug_enabled.setter
    def debug_enabled(self, value: bool) -> None:
        if self._debug_enabled == value:
            return
        self._debug_enabled = value
        if value:
            self.info("Debug logging enabled")

    @property
    def log_file_path(self) -> str | None:
        return self._log_file_path

    def enable_file_logging(self, path: str | Path) -> None:
        """Append JSONL records to ``path``, creating parent directories."""
        path = Path(path)
        if self._log_file_path == str(path):
            return
        self.disable_file_logging()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        except OSError as e:
            self.error(f"Failed to setup file logging: {e}")
            return
        handler.setFormatter(JsonLineFormatter())
        self._file_handler = handler
        self._log_file_path = str(path)
        self.info(f"File logging enabled: {path}")

    def disable_file_logging(self) -> None:
        if self._file_handler is not None:
            self._file_handler.close()
        self._file_handler = None
        self._log_file_path = None

    def subscribe(self) -> Channel[LogEntry]:
        """Receive every record emitted from now on."""
        return self._subscribers.subscribe(replay=False)

    def unsubscribe(self, channel: Channel[LogEntry]) -> None:
        self._subscribers.unsubscribe(channel)

    # Level methods

    def debug(
        self, message: str, session_id: str | None = None, data: dict[str, Any] | None = None
    ) -> None:
        if not self._debug_enabled:
            return
        self._internal(LogLevel.DEBUG, message, session_id, data)

    def info(
        self, message: str, session_id: str | None = None, data: dict[str, Any] | None = None
    ) -> None:
        self._internal(LogLevel.INFO, message, session_id, data)

    def warning(
        self, message: str, session_id: str | None = None, data: dict[str, Any] | None = None
    ) -> None:
        self._internal(LogLevel.WARNING, message, session_id, data)

    def error(
        self, message: str, session_id: str | None = None, data: dict[str, Any] | None = None
    ) -> None:
        self._internal(LogLevel.ERROR, message, session_id, data)

    # Wire traffic

    def log_outgoing(self, frame: dict[str, Any], session_id: str | None = None) -> None:
        if not self._debug_enabled:
            return
        self._emit(
            LogEntry(
                LogLevel.DEBUG,
                "SEND",
                direction=LogDirection.STDIN,
                session_id=session_id,
                data=frame,
            )
        )

    def log_incoming(self, frame: dict[str, Any], session_id: str | None = None) -> None:
        if not self._debug_enabled:
            return
        self._emit(
            LogEntry(
                LogLevel.DEBUG,
                "RECV",
                direction=LogDirection.STDOUT,
                session_id=session_id,
                data=frame,
            )
        )

    def log_stderr(self, line: str, session_id: str | None = None) -> None:
        if not self._debug_enabled:
            return
        self._emit(
            LogEntry(
                LogLevel.INFO,
                "stderr",
                direction=LogDirection.STDERR,
                session_id=session_id,
                text=line,
            )
        )

    def close(self) -> None:
        self.disable_file_logging()
        self._subscribers.close()

    def _internal(
        self, level: LogLevel, message: str, session_id: str | None, data: dict[str, Any] | None
    ) -> None:
        self._emit(
            LogEntry(
                level,
                message,
                direction=LogDirection.INTERNAL,
                session_id=session_id,
                data=data,
            )
        )

    def _emit(self, entry: LogEntry) -> None:
        level = _STDLIB_LEVELS[entry.level]
        self._logger.log(level, entry.summary(), extra={"sdk_entry": entry})

        if self._file_handler is not None:
            record = self._logger.makeRecord(
                self._logger.name,
                level,
                __file__,
                0,
                entry.message,
                None,
                None,
                extra={"sdk_entry": entry},
            )
            try:
                self._file_handler.handle(record)
            except OSError:
                # Log file failures never reach the caller
                pass

        self._subscribers.publish(entry)
