"""Workspace descriptor returned by the reconciler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import unquote, urlparse


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def workspace_path_from_uri(uri: str) -> str:
    """Turn a ``file://`` URI into a filesystem path; other values pass through."""
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return unquote(parsed.path)
    return uri


@dataclass
class GitInfo:
    """Repository metadata for a workspace.

    ``remote_url`` and ``last_commit`` are only gathered when git
    operations are enabled for the session.
    """
    current_branch: Optional[str] = None
    has_uncommitted_changes: bool = False
    remote_url: Optional[str] = None
    last_commit: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "currentBranch": self.current_branch,
            "hasUncommittedChanges": self.has_uncommitted_changes,
            "remoteUrl": self.remote_url,
            "lastCommit": self.last_commit,
        }


@dataclass
class WorkspaceDescriptor:
    session_id: str
    path: str
    is_ephemeral: bool
    created_at: datetime = field(default_factory=_utcnow)
    git_info: GitInfo | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "path": self.path,
            "isEphemeral": self.is_ephemeral,
            "createdAt": self.created_at.isoformat(),
            "gitInfo": self.git_info.to_dict() if self.git_info else None,
        }
