"""Durable session storage: one JSON file per session.

Storage layout:
    $ACP_SESSION_STORAGE_DIR/{session_id}.json   (default ./.acp-sessions)

File I/O runs in a worker thread so the event loop keeps serving other
sessions while a record is read or written.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

from acpd.shared.models.session import Session
from acpd.shared.services.durable_write import atomic_write_text

logger = logging.getLogger(__name__)

# Session ids become file names; anything else is rejected.
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,199}$")


def is_safe_session_id(session_id: str) -> bool:
    return bool(_SAFE_ID_RE.match(session_id)) and ".." not in session_id


class SessionStore:
    """Load/save/delete/list session records on disk."""

    def __init__(self, base_dir: str | Path, retention_seconds: float = 7 * 86400.0) -> None:
        self._dir = Path(base_dir)
        self._retention = timedelta(seconds=retention_seconds)
        self._save_locks: dict[str, asyncio.Lock] = {}

    @property
    def base_dir(self) -> Path:
        return self._dir

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._save_locks.get(session_id)
        if lock is None:
            lock = self._save_locks[session_id] = asyncio.Lock()
        return lock

    def path_for(self, session_id: str) -> Path:
        if not is_safe_session_id(session_id):
            raise ValueError(f"Unsafe session id: {session_id!r}")
        return self._dir / f"{session_id}.json"

    # ── Sync implementations (run in a thread) ──

    def _load_sync(self, session_id: str) -> Session | None:
        if not is_safe_session_id(session_id):
            logger.warning("Refusing to load session with unsafe id %r", session_id)
            return None
        path = self._dir / f"{session_id}.json"
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable session file %s: %s", path, exc)
            return None
        if not isinstance(raw, dict) or raw.get("sessionId") != session_id:
            logger.warning("Session file %s does not belong to %s", path, session_id)
            return None
        try:
            return Session.from_dict(raw)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed session record %s: %s", path, exc)
            return None

    def _write_sync(self, path: Path, payload: str) -> None:
        atomic_write_text(path, payload)

    def _delete_sync(self, session_id: str) -> bool:
        try:
            self.path_for(session_id).unlink()
        except FileNotFoundError:
            return False
        return True

    def _list_sync(self) -> list[str]:
        if not self._dir.is_dir():
            return []
        files = [p for p in self._dir.glob("*.json") if not p.name.startswith(".")]
        files.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return [p.stem for p in files]

    # ── Async API ──

    async def load(self, session_id: str) -> Session | None:
        """Return the stored session, or None if absent or unreadable."""
        return await asyncio.to_thread(self._load_sync, session_id)

    async def save(self, session: Session) -> None:
        """Write *session* as it is at the time of the call.

        The record is serialized on the event loop thread, so later
        mutations never leak into this write. Saves of one id are
        written in call order.
        """
        path = self.path_for(session.session_id)
        payload = json.dumps(session.to_dict(), indent=2, ensure_ascii=False)
        async with self._lock_for(session.session_id):
            await asyncio.to_thread(self._write_sync, path, payload)
        logger.info("Session saved to %s", path)

    async def delete(self, session_id: str) -> None:
        """Delete a stored session; a missing file is not an error."""
        if not is_safe_session_id(session_id):
            return
        async with self._lock_for(session_id):
            deleted = await asyncio.to_thread(self._delete_sync, session_id)
        if deleted:
            logger.info("Session %s deleted", session_id)

    async def list(self) -> list[str]:
        """Stored session ids, most recently written first."""
        return await asyncio.to_thread(self._list_sync)

    async def exists(self, session_id: str) -> bool:
        if not is_safe_session_id(session_id):
            return False
        return await asyncio.to_thread(self.path_for(session_id).is_file)

    async def purge_expired(self, now: datetime | None = None) -> list[str]:
        """Delete sessions idle for longer than the retention window.

        Returns the ids removed. Unreadable records are left alone.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - self._retention
        removed: list[str] = []
        for session_id in await self.list():
            session = await self.load(session_id)
            if session is None or session.last_active_at >= cutoff:
                continue
            await self.delete(session_id)
            removed.append(session_id)
        if removed:
            logger.info("Purged %d expired session(s) from %s", len(removed), self._dir)
        return removed
