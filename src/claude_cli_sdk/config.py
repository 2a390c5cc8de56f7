"""Environment configuration.

Environment variables:
- CLAUDE_CODE_PATH: path to the claude executable (default: "claude")
- CLAUDE_SDK_DEBUG: "1" or "true" enables wire-level debug logging
- CLAUDE_SDK_LOG_FILE: write JSONL log records to this file
- CLAUDE_BACKEND: "direct" (default) or "nodejs" to pick the backend topology
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum

ENV_EXECUTABLE = "CLAUDE_CODE_PATH"
ENV_DEBUG = "CLAUDE_SDK_DEBUG"
ENV_LOG_FILE = "CLAUDE_SDK_LOG_FILE"
ENV_BACKEND = "CLAUDE_BACKEND"

DEFAULT_EXECUTABLE = "claude"


class BackendType(str, Enum):
    """Backend topology."""

    DIRECT_CLI = "direct"  # one claude process per session
    NODEJS = "nodejs"  # many sessions multiplexed over one bridge process

    @classmethod
    def parse(cls, value: str | None) -> BackendType | None:
        """Parse a user-supplied backend name, None if unrecognized."""
        if not value:
            return None
        match value.strip().lower():
            case "nodejs" | "node":
                return cls.NODEJS
            case "direct" | "directcli" | "cli":
                return cls.DIRECT_CLI
            case _:
                return None


def _env_flag(value: str | None) -> bool:
    return value is not None and value.strip().lower() in ("1", "true")


@dataclass
class SdkConfig:
    """Resolved environment configuration."""

    executable_path: str = DEFAULT_EXECUTABLE
    debug: bool = False
    log_file: str | None = None
    backend: BackendType | None = None

    @classmethod
    def from_env(cls) -> SdkConfig:
        return cls(
            executable_path=os.getenv(ENV_EXECUTABLE) or DEFAULT_EXECUTABLE,
            debug=_env_flag(os.getenv(ENV_DEBUG)),
            log_file=os.getenv(ENV_LOG_FILE) or None,
            backend=BackendType.parse(os.getenv(ENV_BACKEND)),
        )

    def as_dict(self) -> dict[str, str | bool | None]:
        return {
            "executable_path": self.executable_path,
            "debug": self.debug,
            "log_file": self.log_file,
            "backend": self.backend.value if self.backend else None,
        }
