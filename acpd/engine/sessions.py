"""In-memory session cache with write-through to the SessionStore."""
from __future__ import annotations

import logging
from typing import Any

from acpd.shared.models.session import (
    Session,
    SessionMode,
    SessionOptions,
    SessionState,
    new_session_id,
)
from acpd.shared.services.session_store import SessionStore

from .errors import SessionNotFoundError

logger = logging.getLogger(__name__)


class SessionManager:
    """Owns the session cache and the session lifecycle.

    The cache holds exactly one Session object per id. A miss falls
    back to the store; that is the only way a session created before a
    restart comes back into memory.
    """

    def __init__(self, store: SessionStore) -> None:
        self._store = store
        self._sessions: dict[str, Session] = {}

    @property
    def store(self) -> SessionStore:
        return self._store

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    async def create(
        self,
        workspace_uri: str | None = None,
        mode: SessionMode = SessionMode.DEVELOPMENT,
        options: SessionOptions | None = None,
    ) -> Session:
        session_id = new_session_id()
        while session_id in self._sessions:
            session_id = new_session_id()
        session = Session(
            session_id=session_id,
            workspace_uri=workspace_uri,
            mode=mode,
            options=options or SessionOptions(),
        )
        self._sessions[session_id] = session
        logger.info("Session %s created (mode=%s)", session_id, mode.value)
        await self.persist(session)
        return session

    def get_cached(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    async def get(self, session_id: str) -> Session | None:
        """Return the session from cache, else rehydrate it from the store."""
        session = self._sessions.get(session_id)
        if session is not None:
            return session
        loaded = await self._store.load(session_id)
        if loaded is None:
            return None
        # Another coroutine may have rehydrated the same id while we
        # awaited the store; keep whichever object got there first.
        session = self._sessions.setdefault(session_id, loaded)
        if session is loaded:
            logger.info("Session %s rehydrated from %s", session_id, self._store.base_dir)
        return session

    async def require(self, session_id: str) -> Session:
        session = await self.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def touch(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.touch()

    def set_state(self, session_id: str, state: SessionState) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.state is not state:
            logger.info("Session %s: %s -> %s", session_id, session.state.value, state.value)
            session.state = state

    def merge_agent_context(self, session_id: str, agent_context: dict[str, Any]) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.agent_context.update(agent_context)

    async def persist(self, session: Session) -> bool:
        """Save *session* if it opted into persistence.

        Store failures are logged and reported as False; they never fail
        the RPC that triggered the save.
        """
        if not session.options.persist_history:
            return False
        try:
            await self._store.save(session)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to persist session %s: %s", session.session_id, exc)
            return False
        return True

    def forget(self, session_id: str) -> Session | None:
        return self._sessions.pop(session_id, None)
