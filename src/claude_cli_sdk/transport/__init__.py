"""Transport layer.

Provides the frame transport the protocol engine runs on:
- JsonlProcess - a real subprocess speaking newline-delimited JSON on stdio
- MemoryTransport - in-memory stand-in used by tests

Note: a transport knows nothing about sessions or handshakes; it only
moves frames. Protocol state lives in the handshake and dispatcher.
"""

from .base import FrameTransport
from .memory import MemoryTransport
from .process import STDERR_HISTORY, CliProcessConfig, JsonlProcess

__all__ = [
    "CliProcessConfig",
    "FrameTransport",
    "JsonlProcess",
    "MemoryTransport",
    "STDERR_HISTORY",
]
