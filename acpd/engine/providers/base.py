"""Abstract base for execution gateways.

A gateway wraps the external code-generation engine. The orchestrator
only needs to start it, iterate its output incrementally, and stop
iterating early when the operation is cancelled.
"""
from __future__ import annotations

import abc
import logging
import shutil
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from ..operations import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class ExecutionChunk:
    """One streamed message from the engine.

    The final chunk has ``is_result=True``; its ``text`` is the full
    answer when the engine reports one.
    """
    text: str = ""
    is_result: bool = False
    is_error: bool = False
    input_tokens: int | None = None
    output_tokens: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class ExecutionGateway(abc.ABC):
    """Abstract engine interface.

    Implementations:
    - ClaudeGateway: Claude Agent SDK (query())
    - ClaudeCliGateway: ``claude --print --output-format stream-json``
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short gateway name (e.g. 'sdk', 'cli')."""

    @abc.abstractmethod
    async def execute(
        self,
        prompt: str,
        *,
        working_directory: str,
        cancellation_token: CancellationToken,
        model: str | None = None,
        api_key: str | None = None,
    ) -> AsyncIterator[ExecutionChunk]:
        """Run *prompt* in *working_directory*, yielding chunks.

        Closing the iterator early must release the engine (kill the
        subprocess, close the SDK stream).
        """
        yield  # pragma: no cover

    @abc.abstractmethod
    def is_available(self) -> bool:
        """Whether the engine runtime is installed."""

    def resolve_command(self, command: str | None, *fallbacks: str) -> str:
        """Pick the first of *command*, *fallbacks* found on PATH.

        Returns the first candidate unchanged when none is found, so
        error messages name the configured binary.
        """
        candidates = [c for c in (command, *fallbacks) if c]
        for candidate in candidates:
            if shutil.which(candidate):
                return candidate
        if candidates:
            logger.debug("None of %s found on PATH for gateway %s", candidates, self.name)
            return candidates[0]
        return ""

    async def shutdown(self) -> None:
        """Release long-lived resources. Default no-op."""
        return None
