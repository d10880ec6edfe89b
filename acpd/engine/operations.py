"""Per-session registry of in-flight cancellable operations.

Cancellation is cooperative: cancelling flips the operation's token and
removes it from the registry. The code running the operation checks
the token at its own checkpoints and unwinds from there.

All methods are synchronous. Nothing here awaits, so every
check-then-mutate on the registry is atomic with respect to other
coroutines on the event loop.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class CancellationToken:
    """Flag shared between an operation and whoever may cancel it."""

    __slots__ = ("_cancelled", "_reason")

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._cancelled:
            self._cancelled = True
            self._reason = reason

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"


@dataclass
class Operation:
    session_id: str
    operation_id: str
    token: CancellationToken = field(default_factory=CancellationToken)
    started_at: float = field(default_factory=time.monotonic)


class OperationTracker:
    """Tracks operations keyed by (session_id, operation_id)."""

    def __init__(self) -> None:
        self._operations: dict[tuple[str, str], Operation] = {}

    def start(self, session_id: str, operation_id: str) -> CancellationToken:
        key = (session_id, operation_id)
        if key in self._operations:
            raise ValueError(
                f"Operation {operation_id} already running in session {session_id}"
            )
        op = Operation(session_id=session_id, operation_id=operation_id)
        self._operations[key] = op
        logger.debug("Operation started session=%s op=%s", session_id, operation_id)
        return op.token

    def cancel(self, session_id: str, operation_id: str | None = None) -> bool:
        """Cancel one operation, or every operation of the session.

        Returns True iff at least one tracked operation was cancelled.
        Unknown keys are a no-op.
        """
        if operation_id is not None:
            op = self._operations.pop((session_id, operation_id), None)
            if op is None:
                return False
            op.token.cancel()
            logger.info("Operation cancelled session=%s op=%s", session_id, operation_id)
            return True

        keys = [key for key in self._operations if key[0] == session_id]
        for key in keys:
            self._operations.pop(key).token.cancel()
        if keys:
            logger.info(
                "Cancelled %d operation(s) for session=%s", len(keys), session_id
            )
        return bool(keys)

    def complete(self, session_id: str, operation_id: str) -> bool:
        """Forget a finished operation. False if it was already cancelled."""
        op = self._operations.pop((session_id, operation_id), None)
        if op is None:
            return False
        logger.debug(
            "Operation completed session=%s op=%s after %.2fs",
            session_id, operation_id, time.monotonic() - op.started_at,
        )
        return True

    def has_active(self, session_id: str) -> bool:
        return any(key[0] == session_id for key in self._operations)

    def active_count(self, session_id: str | None = None) -> int:
        if session_id is None:
            return len(self._operations)
        return sum(1 for key in self._operations if key[0] == session_id)

    def active_operation_ids(self, session_id: str) -> list[str]:
        return [op_id for sid, op_id in self._operations if sid == session_id]

    def active_session_ids(self) -> list[str]:
        return sorted({sid for sid, _ in self._operations})
