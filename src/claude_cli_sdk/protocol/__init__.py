"""Wire protocol for the agent's stream-json stdio channel.

Key concepts:
- Framing: newline-delimited JSON with line-terminator escaping
- Frames: outbound control/user/bridge frames built from pydantic models
- Messages: inbound frames parsed into a tagged union, unknown tags kept
"""

from .content import ContentBlock, ImageBlock, ImageSource, TextBlock, ensure_text_placeholder
from .frames import (
    BridgeCommand,
    ControlRequest,
    ControlSubtype,
    FrameType,
    UserMessageFrame,
    control_error,
    control_success,
    new_request_id,
)
from .framing import LineFramer, decode_frames, decode_line, encode_frame, encode_frame_text
from .messages import (
    AssistantMessage,
    ErrorMessage,
    ResultMessage,
    SdkMessage,
    StreamEventMessage,
    SystemMessage,
    UnknownMessage,
    UserMessage,
    parse_message,
)

__all__ = [
    # Framing
    "LineFramer",
    "decode_frames",
    "decode_line",
    "encode_frame",
    "encode_frame_text",
    # Frames
    "BridgeCommand",
    "ControlRequest",
    "ControlSubtype",
    "FrameType",
    "UserMessageFrame",
    "control_error",
    "control_success",
    "new_request_id",
    # Content
    "ContentBlock",
    "ImageBlock",
    "ImageSource",
    "TextBlock",
    "ensure_text_placeholder",
    # Messages
    "AssistantMessage",
    "ErrorMessage",
    "ResultMessage",
    "SdkMessage",
    "StreamEventMessage",
    "SystemMessage",
    "UnknownMessage",
    "UserMessage",
    "parse_message",
]
