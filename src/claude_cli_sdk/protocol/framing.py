"""Newline-delimited JSON framing.

Inbound: ``LineFramer`` reassembles complete lines from arbitrarily sized
chunks. The trailing fragment of a chunk that did not end on a newline is
carried over and prefixed to the next chunk.

Outbound: ``encode_frame`` writes compact JSON followed by ``\\n``. U+2028
and U+2029 are written as ``\\u2028`` / ``\\u2029`` escapes because
line-oriented readers on the other side treat the raw code points as line
breaks.
"""

from __future__ import annotations

import codecs
import json
from collections.abc import Iterable, Iterator
from typing import Any

from ..errors import FrameParseError

LINE_SEPARATOR = "\u2028"
PARAGRAPH_SEPARATOR = "\u2029"


class LineFramer:
    """Incremental line splitter with a carry buffer.

    Accepts ``str`` or ``bytes`` chunks. Bytes are decoded as UTF-8
    incrementally, so a multi-byte character split across two reads is
    reassembled rather than corrupted.
    """

    def __init__(self) -> None:
        self._carry = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> str:
        """The partial line held until the next newline arrives."""
        return self._carry

    def feed(self, chunk: str | bytes) -> list[str]:
        """Consume one chunk and return the complete, non-empty lines in it."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        if not chunk:
            return []

        parts = (self._carry + chunk).split("\n")
        # The last part is "" when the chunk ended exactly on a newline
        self._carry = parts.pop()
        return [line for line in (p.rstrip("\r") for p in parts) if line.strip()]

    def flush(self) -> list[str]:
        """Return the carried fragment as a final line (stream ended)."""
        tail = self._carry + self._decoder.decode(b"", final=True)
        self._carry = ""
        return [tail] if tail.strip() else []


def encode_frame(frame: dict[str, Any]) -> bytes:
    """Serialize one frame as a single escaped, newline-terminated line."""
    return (encode_frame_text(frame) + "\n").encode("utf-8")


def encode_frame_text(frame: dict[str, Any]) -> str:
    text = json.dumps(frame, ensure_ascii=False, separators=(",", ":"))
    # Both code points can only occur inside JSON strings here
    return text.replace(LINE_SEPARATOR, "\\u2028").replace(PARAGRAPH_SEPARATOR, "\\u2029")


def decode_line(line: str) -> dict[str, Any]:
    """Decode one line into a frame.

    Raises:
        FrameParseError: If the line is not JSON or not a JSON object.
    """
    try:
        value = json.loads(line)
    except json.JSONDecodeError as e:
        raise FrameParseError(f"Invalid JSON: {e}", line) from e
    if not isinstance(value, dict):
        raise FrameParseError(f"Expected a JSON object, got {type(value).__name__}", line)
    return value


def decode_frames(
    lines: Iterable[str],
) -> Iterator[tuple[dict[str, Any] | None, FrameParseError | None]]:
    """Decode lines one by one; a bad line yields its error instead of stopping."""
    for line in lines:
        try:
            yield decode_line(line), None
        except FrameParseError as e:
            yield None, e
