"""Content blocks submitted with a prompt.

Blocks form a closed set of kinds (text, file, diff, image, thought,
error). Anything else is kept as an UnknownBlock with its raw content
so that newer clients do not break older agents.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union


@dataclass
class TextBlock:
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    kind: ClassVar[str] = "text"

    def to_dict(self) -> dict[str, Any]:
        return _with_metadata({"type": self.kind, "text": self.text}, self.metadata)


@dataclass
class FileBlock:
    content: str
    filename: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    kind: ClassVar[str] = "file"

    def to_dict(self) -> dict[str, Any]:
        meta = dict(self.metadata)
        if self.filename:
            meta["filename"] = self.filename
        return _with_metadata({"type": self.kind, "content": self.content}, meta)


@dataclass
class DiffBlock:
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    kind: ClassVar[str] = "diff"

    def to_dict(self) -> dict[str, Any]:
        return _with_metadata({"type": self.kind, "content": self.content}, self.metadata)


@dataclass
class ImageBlock:
    """An image reference. Image bytes are never inlined into prompts."""
    filename: str | None = None
    data: str | None = None  # base64 payload, if the client sent one
    mime_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    kind: ClassVar[str] = "image"

    def to_dict(self) -> dict[str, Any]:
        meta = dict(self.metadata)
        if self.filename:
            meta["filename"] = self.filename
        out: dict[str, Any] = {"type": self.kind}
        if self.data is not None:
            out["content"] = self.data
        if self.mime_type:
            out["mimeType"] = self.mime_type
        return _with_metadata(out, meta)


@dataclass
class ThoughtBlock:
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    kind: ClassVar[str] = "thought"

    def to_dict(self) -> dict[str, Any]:
        return _with_metadata({"type": self.kind, "content": self.content}, self.metadata)


@dataclass
class ErrorBlock:
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    kind: ClassVar[str] = "error"

    def to_dict(self) -> dict[str, Any]:
        return _with_metadata({"type": self.kind, "content": self.content}, self.metadata)


@dataclass
class UnknownBlock:
    """Catch-all for block types this agent does not understand."""
    type: str
    content: str
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.raw) if self.raw else {"type": self.type, "content": self.content}


ContentBlock = Union[
    TextBlock, FileBlock, DiffBlock, ImageBlock, ThoughtBlock, ErrorBlock, UnknownBlock,
]


def _with_metadata(out: dict[str, Any], metadata: dict[str, Any]) -> dict[str, Any]:
    if metadata:
        out["metadata"] = metadata
    return out


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def parse_content_block(raw: dict[str, Any]) -> ContentBlock:
    """Build a typed block from its JSON form.

    Raises TypeError for non-object input; the dispatcher turns that
    into an InvalidParams error.
    """
    if not isinstance(raw, dict):
        raise TypeError(f"content block must be an object, got {type(raw).__name__}")
    block_type = _as_text(raw.get("type"))
    metadata = raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {}
    content = _as_text(raw.get("content"))

    if block_type == "text":
        # Older clients put the text under "content".
        text = raw.get("text")
        return TextBlock(text=_as_text(text) if text else content, metadata=dict(metadata))
    if block_type == "file":
        meta = dict(metadata)
        filename = meta.pop("filename", None) or raw.get("filename")
        return FileBlock(content=content, filename=filename, metadata=meta)
    if block_type == "diff":
        return DiffBlock(content=content, metadata=dict(metadata))
    if block_type == "image":
        meta = dict(metadata)
        filename = meta.pop("filename", None) or raw.get("filename")
        return ImageBlock(
            filename=filename,
            data=raw.get("content") if isinstance(raw.get("content"), str) else None,
            mime_type=raw.get("mimeType"),
            metadata=meta,
        )
    if block_type == "thought":
        return ThoughtBlock(content=content, metadata=dict(metadata))
    if block_type == "error":
        return ErrorBlock(content=content, metadata=dict(metadata))
    return UnknownBlock(type=block_type, content=content, raw=dict(raw))


def parse_content(raw_blocks: list[Any]) -> list[ContentBlock]:
    return [parse_content_block(raw) for raw in raw_blocks]


def render_block(block: ContentBlock) -> str:
    """Render one block as prompt text, including its trailing blank line."""
    if isinstance(block, TextBlock):
        return f"{block.text}\n\n"
    if isinstance(block, FileBlock):
        return f"File: {block.filename or 'unknown'}\n{block.content}\n\n"
    if isinstance(block, DiffBlock):
        return f"Diff:\n{block.content}\n\n"
    if isinstance(block, ImageBlock):
        return f"[Image: {block.filename or 'image'}]\n\n"
    if isinstance(block, ThoughtBlock):
        return f"Thought: {block.content}\n\n"
    if isinstance(block, ErrorBlock):
        return f"Error: {block.content}\n\n"
    if isinstance(block, UnknownBlock):
        return f"{block.content}\n\n"
    raise TypeError(f"unhandled content block: {block!r}")


def get_message_text(blocks: list[ContentBlock]) -> str:
    """Concatenate the text of all text blocks, separated by newlines."""
    return "\n".join(b.text for b in blocks if isinstance(b, TextBlock) and b.text)
