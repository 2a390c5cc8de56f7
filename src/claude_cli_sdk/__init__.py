"""Session protocol engine for the claude CLI.

Drives the agent as a subprocess speaking newline-delimited JSON over stdio:
spawns it, completes the initialize handshake, routes its messages and
permission/hook callbacks to the application, and tears everything down.

Usage:
    from claude_cli_sdk import create_backend

    async with await create_backend() as backend:
        session = await backend.create_session("Hello!", cwd=".")
        async for message in session.receive_turn():
            print(message)
"""

import logging

from .backend import AgentBackend, AgentSession
from .bridge_backend import BridgeBackend, BridgeSession
from .callbacks import (
    DEFAULT_DENY_MESSAGE,
    CallbackType,
    HookDecision,
    HookRequest,
    HookResponse,
    PermissionRequest,
    PermissionResponse,
    PermissionRule,
    PermissionSuggestion,
)
from .channels import Broadcast, Channel, ChannelClosed
from .cli_backend import CliBackend
from .cli_session import CliSession
from .config import BackendType, SdkConfig
from .errors import (
    AlreadyRespondedError,
    BackendError,
    ClaudeSdkError,
    ControlRequestError,
    DisposedError,
    FrameParseError,
    HandshakeError,
    HandshakeTimeoutError,
    QueryError,
    SpawnError,
)
from .factory import create_backend
from .handshake import Handshake, HandshakeResult, HandshakeState
from .options import (
    HookConfig,
    McpHttpServerConfig,
    McpServerConfig,
    McpSseServerConfig,
    McpStdioServerConfig,
    PermissionMode,
    PresetSystemPrompt,
    PresetTools,
    SessionOptions,
)
from .protocol import (
    AssistantMessage,
    ContentBlock,
    ErrorMessage,
    ImageBlock,
    ImageSource,
    ResultMessage,
    SdkMessage,
    StreamEventMessage,
    SystemMessage,
    TextBlock,
    UnknownMessage,
    UserMessage,
    parse_message,
)
from .sdk_logger import LogDirection, LogEntry, LogLevel, SdkLogger
from .transport import CliProcessConfig, JsonlProcess

# Library convention: silent unless the application configures logging
logging.getLogger("claude_cli_sdk").addHandler(logging.NullHandler())

__all__ = [
    # Backends and sessions
    "AgentBackend",
    "AgentSession",
    "BridgeBackend",
    "BridgeSession",
    "CliBackend",
    "CliSession",
    "create_backend",
    # Handshake
    "Handshake",
    "HandshakeResult",
    "HandshakeState",
    # Callbacks
    "CallbackType",
    "DEFAULT_DENY_MESSAGE",
    "HookDecision",
    "HookRequest",
    "HookResponse",
    "PermissionRequest",
    "PermissionResponse",
    "PermissionRule",
    "PermissionSuggestion",
    # Streams
    "Broadcast",
    "Channel",
    "ChannelClosed",
    # Configuration
    "BackendType",
    "CliProcessConfig",
    "SdkConfig",
    # Options
    "HookConfig",
    "McpHttpServerConfig",
    "McpServerConfig",
    "McpSseServerConfig",
    "McpStdioServerConfig",
    "PermissionMode",
    "PresetSystemPrompt",
    "PresetTools",
    "SessionOptions",
    # Messages and content
    "AssistantMessage",
    "ContentBlock",
    "ErrorMessage",
    "ImageBlock",
    "ImageSource",
    "ResultMessage",
    "SdkMessage",
    "StreamEventMessage",
    "SystemMessage",
    "TextBlock",
    "UnknownMessage",
    "UserMessage",
    "parse_message",
    # Errors
    "AlreadyRespondedError",
    "BackendError",
    "ClaudeSdkError",
    "ControlRequestError",
    "DisposedError",
    "FrameParseError",
    "HandshakeError",
    "HandshakeTimeoutError",
    "QueryError",
    "SpawnError",
    # Logging
    "LogDirection",
    "LogEntry",
    "LogLevel",
    "SdkLogger",
    # Transport
    "JsonlProcess",
]
