"""Data models shared by the engine and the server."""
from .content import (
    ContentBlock,
    DiffBlock,
    ErrorBlock,
    FileBlock,
    ImageBlock,
    TextBlock,
    ThoughtBlock,
    UnknownBlock,
    get_message_text,
    parse_content,
    parse_content_block,
    render_block,
)
from .session import Session, SessionMode, SessionOptions, SessionState, new_session_id
from .workspace import GitInfo, WorkspaceDescriptor, workspace_path_from_uri

__all__ = [
    "ContentBlock",
    "DiffBlock",
    "ErrorBlock",
    "FileBlock",
    "GitInfo",
    "ImageBlock",
    "Session",
    "SessionMode",
    "SessionOptions",
    "SessionState",
    "TextBlock",
    "ThoughtBlock",
    "UnknownBlock",
    "WorkspaceDescriptor",
    "get_message_text",
    "new_session_id",
    "parse_content",
    "parse_content_block",
    "render_block",
    "workspace_path_from_uri",
]
