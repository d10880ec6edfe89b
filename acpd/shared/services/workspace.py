"""Workspace reconciler: pick and prepare the directory a session works in.

A session either brings its own directory (``workspaceUri``) or gets an
ephemeral one under the configured base directory. Ephemeral directories
belong to this process and are removed on cleanup. User-supplied
directories are never deleted.
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
from pathlib import Path

from acpd.engine.errors import WorkspaceInaccessibleError
from acpd.shared.models.workspace import WorkspaceDescriptor, workspace_path_from_uri
from acpd.shared.services.git import GitService

logger = logging.getLogger(__name__)

EPHEMERAL_PREFIX = "acp-workspace-"
_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]")


def ephemeral_dir_name(session_id: str) -> str:
    return EPHEMERAL_PREFIX + _UNSAFE_CHARS_RE.sub("_", session_id)


def _check_access(path: Path) -> None:
    if not path.is_dir():
        raise WorkspaceInaccessibleError(str(path), "not a directory")
    if not os.access(path, os.R_OK | os.W_OK):
        raise WorkspaceInaccessibleError(str(path), "not readable and writable")


class WorkspaceReconciler:
    """Owns the session -> WorkspaceDescriptor map."""

    def __init__(self, git: GitService, base_dir: str | Path) -> None:
        self._git = git
        self._base_dir = Path(base_dir)
        self._workspaces: dict[str, WorkspaceDescriptor] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def git(self) -> GitService:
        return self._git

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def get(self, session_id: str) -> WorkspaceDescriptor | None:
        return self._workspaces.get(session_id)

    def get_path(self, session_id: str) -> str | None:
        ws = self._workspaces.get(session_id)
        return ws.path if ws else None

    def lock_for(self, session_id: str) -> asyncio.Lock:
        """Lock serializing workspace mutation (git) for one session."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def ephemeral_path(self, session_id: str) -> Path:
        return self._base_dir / ephemeral_dir_name(session_id)

    async def resolve_user_path(self, workspace_uri: str) -> Path:
        """Resolve *workspace_uri* and verify it is usable.

        Raises WorkspaceInaccessibleError when it is not.
        """
        path = Path(workspace_path_from_uri(workspace_uri)).expanduser()
        await asyncio.to_thread(_check_access, path)
        return path

    async def prepare(
        self,
        session_id: str,
        workspace_uri: str | None = None,
        *,
        reuse: bool = True,
        git_ops_enabled: bool = False,
    ) -> WorkspaceDescriptor:
        """Return the workspace for *session_id*, creating it if needed."""
        if reuse and session_id in self._workspaces:
            return self._workspaces[session_id]

        path: Path | None = None
        ephemeral = True
        if workspace_uri:
            try:
                path = await self.resolve_user_path(workspace_uri)
                ephemeral = False
            except WorkspaceInaccessibleError as exc:
                logger.warning(
                    "Session %s: %s; using an ephemeral workspace", session_id, exc,
                )
        if path is None:
            path = self.ephemeral_path(session_id)
            await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)

        git_info = await self._git.git_info(path, detailed=git_ops_enabled)

        # A concurrent prepare for the same session may have finished
        # while we were awaiting; the first descriptor wins.
        if reuse and session_id in self._workspaces:
            return self._workspaces[session_id]

        descriptor = WorkspaceDescriptor(
            session_id=session_id,
            path=str(path),
            is_ephemeral=ephemeral,
            git_info=git_info,
        )
        self._workspaces[session_id] = descriptor
        logger.info(
            "Session %s workspace %s (ephemeral=%s, git=%s)",
            session_id, path, ephemeral, bool(git_info),
        )
        return descriptor

    async def refresh_git_info(
        self, session_id: str, *, detailed: bool,
    ) -> WorkspaceDescriptor | None:
        ws = self._workspaces.get(session_id)
        if ws is not None:
            ws.git_info = await self._git.git_info(ws.path, detailed=detailed)
        return ws

    async def describe(self, workspace_uri: str | None, session_id: str) -> dict:
        """Lightweight workspace summary for session/new and session/load.

        Does not create directories. Reports the directory the session
        would use if prepared now.
        """
        ws = self._workspaces.get(session_id)
        if ws is not None:
            root = Path(ws.path)
        else:
            root = self.ephemeral_path(session_id)
            if workspace_uri:
                try:
                    root = await self.resolve_user_path(workspace_uri)
                except WorkspaceInaccessibleError as exc:
                    logger.debug("Session %s: %s", session_id, exc)
        info: dict = {"rootPath": str(root), "hasUncommittedChanges": False}
        git_info = await self._git.git_info(root, detailed=False)
        if git_info is not None:
            info["hasUncommittedChanges"] = git_info.has_uncommitted_changes
            if git_info.current_branch:
                info["gitBranch"] = git_info.current_branch
        return info

    async def cleanup(self, session_id: str) -> None:
        """Forget the session's workspace, deleting it if ephemeral."""
        ws = self._workspaces.pop(session_id, None)
        lock = self._locks.get(session_id)
        # A held lock stays so later waiters share it with the holder.
        if lock is not None and not lock.locked():
            del self._locks[session_id]
        if ws is None or not ws.is_ephemeral:
            return
        path = Path(ws.path)
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("Could not remove ephemeral workspace %s: %s", path, exc)
            return
        logger.info("Removed ephemeral workspace %s", path)

    async def cleanup_all(self) -> None:
        for session_id in list(self._workspaces):
            await self.cleanup(session_id)
