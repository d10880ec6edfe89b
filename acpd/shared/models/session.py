"""Session record: identity, lifecycle state and submitted history."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    return f"session-{uuid.uuid4()}"


def _parse_time(value: Any) -> datetime:
    if isinstance(value, (int, float)):
        # Epoch milliseconds, as written by earlier agents.
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return _utcnow()


class SessionMode(str, Enum):
    DEVELOPMENT = "development"
    CONVERSATION = "conversation"


class SessionState(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"


@dataclass
class SessionOptions:
    enable_git_ops: bool = False
    persist_history: bool = False

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> SessionOptions:
        raw = raw or {}
        return cls(
            enable_git_ops=bool(raw.get("enableGitOps", False)),
            persist_history=bool(raw.get("persistHistory", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enableGitOps": self.enable_git_ops,
            "persistHistory": self.persist_history,
        }


@dataclass
class Session:
    """One ACP session.

    ``message_history`` holds one entry per submitted prompt: the list
    of content blocks in JSON form. It is append-only.
    """

    session_id: str = field(default_factory=new_session_id)
    workspace_uri: str | None = None
    mode: SessionMode = SessionMode.DEVELOPMENT
    state: SessionState = SessionState.ACTIVE
    created_at: datetime = field(default_factory=_utcnow)
    last_active_at: datetime = field(default_factory=_utcnow)
    message_history: list[list[dict[str, Any]]] = field(default_factory=list)
    options: SessionOptions = field(default_factory=SessionOptions)
    agent_context: dict[str, Any] = field(default_factory=dict)

    def touch(self, now: datetime | None = None) -> None:
        """Bump last_active_at; never moves backwards."""
        now = now or _utcnow()
        if now > self.last_active_at:
            self.last_active_at = now

    def append_history(self, blocks: list[dict[str, Any]]) -> None:
        self.message_history.append(list(blocks))

    @property
    def history_length(self) -> int:
        return len(self.message_history)

    def info(self) -> dict[str, Any]:
        """Public summary returned by session/load."""
        out: dict[str, Any] = {
            "sessionId": self.session_id,
            "state": self.state.value,
            "mode": self.mode.value,
            "createdAt": self.created_at.isoformat(),
            "lastActiveAt": self.last_active_at.isoformat(),
        }
        if self.workspace_uri:
            out["workspaceUri"] = self.workspace_uri
        return out

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "workspaceUri": self.workspace_uri,
            "mode": self.mode.value,
            "state": self.state.value,
            "createdAt": self.created_at.isoformat(),
            "lastActiveAt": self.last_active_at.isoformat(),
            "messageHistory": self.message_history,
            "sessionOptions": self.options.to_dict(),
            "agentContext": self.agent_context,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Session:
        """Rebuild a session from its stored form.

        Raises KeyError/ValueError on records missing an id or carrying
        unknown mode/state values.
        """
        history = raw.get("messageHistory") or []
        if not isinstance(history, list):
            raise ValueError("messageHistory must be a list")
        return cls(
            session_id=raw["sessionId"],
            workspace_uri=raw.get("workspaceUri") or None,
            mode=SessionMode(raw.get("mode") or SessionMode.DEVELOPMENT.value),
            state=SessionState(raw.get("state") or SessionState.ACTIVE.value),
            created_at=_parse_time(raw.get("createdAt")),
            last_active_at=_parse_time(raw.get("lastActiveAt")),
            message_history=[list(batch) for batch in history],
            options=SessionOptions.from_dict(raw.get("sessionOptions")),
            agent_context=dict(raw.get("agentContext") or {}),
        )
