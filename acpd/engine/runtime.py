"""Runtime object holding all process-wide ACP state.

One AcpRuntime is built per server and passed explicitly to the
dispatcher and the orchestrator. Tests build as many as they like.
"""
from __future__ import annotations

import logging
import os
import platform
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from acpd import __version__
from acpd.shared.services.git import GitService
from acpd.shared.services.session_store import SessionStore
from acpd.shared.services.workspace import WorkspaceReconciler

from .config import RuntimeConfig
from .operations import OperationTracker
from .sessions import SessionManager

logger = logging.getLogger(__name__)

AGENT_CAPABILITIES: dict[str, bool] = {
    "editWorkspace": True,
    "filesRead": True,
    "filesWrite": True,
    "sessionPersistence": True,
    "streamingUpdates": True,
    "githubIntegration": True,
    "supportsImages": False,
    "supportsAudio": False,
}


def is_containerized() -> bool:
    if Path("/.dockerenv").exists():
        return True
    try:
        cgroup = Path("/proc/1/cgroup").read_text(encoding="utf-8", errors="replace")
    except OSError:
        return False
    return "docker" in cgroup or "containerd" in cgroup or "kubepods" in cgroup


@dataclass
class ClientRecord:
    """What the client told us in ``initialize``."""
    protocol_version: str
    client_info: dict[str, Any] = field(default_factory=dict)
    capabilities: dict[str, Any] = field(default_factory=dict)
    initialized_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AcpRuntime:
    """Session cache, operation registry and workspace map for one server."""

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        store: SessionStore | None = None,
        git: GitService | None = None,
    ) -> None:
        self.config = config
        self.git = git or GitService(
            config.git_command,
            config.git_timeout_seconds,
            persistent_workspace=config.persistent_workspace,
            user_name=config.git_user_name,
            user_email=config.git_user_email,
        )
        self.sessions = SessionManager(
            store or SessionStore(
                config.session_storage_dir, config.session_retention_seconds,
            )
        )
        self.operations = OperationTracker()
        self.workspaces = WorkspaceReconciler(self.git, config.workspace_base_dir)
        self.client: ClientRecord | None = None

    @property
    def initialized(self) -> bool:
        return self.client is not None

    def mark_initialized(
        self,
        protocol_version: str,
        client_info: dict[str, Any] | None = None,
        capabilities: dict[str, Any] | None = None,
    ) -> ClientRecord:
        """Record the client; a repeated initialize replaces the record."""
        if self.client is not None:
            logger.info("Re-initialize: replacing client info")
        self.client = ClientRecord(
            protocol_version=protocol_version,
            client_info=dict(client_info or {}),
            capabilities=dict(capabilities or {}),
        )
        return self.client

    def agent_info(self) -> dict[str, Any]:
        return {
            "name": self.config.agent_name,
            "version": __version__,
            "description": self.config.agent_description,
            "environment": {
                "platform": sys.platform,
                "pythonVersion": platform.python_version(),
                "containerized": is_containerized(),
                "persistentWorkspace": self.config.persistent_workspace,
                "pid": os.getpid(),
            },
        }

    def agent_capabilities(self) -> dict[str, bool]:
        return dict(AGENT_CAPABILITIES)

    async def close_session(self, session_id: str) -> bool:
        """Cancel work, drop the cached session and remove its ephemeral workspace.

        The stored record, if any, is kept.
        """
        self.operations.cancel(session_id)
        await self.workspaces.cleanup(session_id)
        return self.sessions.forget(session_id) is not None

    def shutdown(self) -> int:
        """Cancel every in-flight operation; returns how many were cancelled."""
        cancelled = 0
        for session_id in self.operations.active_session_ids():
            cancelled += self.operations.active_count(session_id)
            self.operations.cancel(session_id)
        return cancelled
