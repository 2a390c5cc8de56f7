"""Content blocks for outbound user messages."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageSource(BaseModel):
    type: Literal["base64"] = "base64"
    media_type: str
    data: str


class ImageBlock(BaseModel):
    type: Literal["image"] = "image"
    source: ImageSource

    @classmethod
    def base64(cls, media_type: str, data: str) -> ImageBlock:
        return cls(source=ImageSource(media_type=media_type, data=data))


ContentBlock = TextBlock | ImageBlock


def to_wire(blocks: list[ContentBlock] | list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Serialize blocks; plain dicts pass through unchanged."""
    return [b if isinstance(b, dict) else b.model_dump() for b in blocks]


def _has_text(block: ContentBlock | dict[str, Any]) -> bool:
    if isinstance(block, dict):
        return block.get("type") == "text" and bool(str(block.get("text", "")).strip())
    return isinstance(block, TextBlock) and bool(block.text.strip())


def ensure_text_placeholder(blocks: list[ContentBlock]) -> list[ContentBlock]:
    """Prepend ``TextBlock(" ")`` when no block carries non-blank text.

    The agent rejects user messages made only of images.
    """
    if any(_has_text(b) for b in blocks):
        return list(blocks)
    return [TextBlock(text=" "), *blocks]
