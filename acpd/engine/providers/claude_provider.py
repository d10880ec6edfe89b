"""Claude Agent SDK gateway.

Wraps claude_agent_sdk.query() and maps its message stream to
ExecutionChunk objects.
"""
from __future__ import annotations

import logging
import shutil
from typing import Any, AsyncIterator

from ..errors import EngineInternalError, EngineUnavailableError
from ..operations import CancellationToken
from .base import ExecutionChunk, ExecutionGateway

logger = logging.getLogger(__name__)


def _usage_value(usage: Any, key: str) -> int | None:
    if isinstance(usage, dict) and isinstance(usage.get(key), int):
        return usage[key]
    return None


class ClaudeGateway(ExecutionGateway):
    """Gateway backed by the Claude Agent SDK.

    The SDK drives the ``claude`` CLI underneath, so availability still
    depends on the CLI being installed. A per-session API key, when
    supplied, is passed to it through the environment.
    """

    def __init__(
        self,
        default_model: str | None = None,
        permission_mode: str = "bypassPermissions",
    ) -> None:
        self._default_model = default_model
        self._permission_mode = permission_mode

    @property
    def name(self) -> str:
        return "sdk"

    async def execute(
        self,
        prompt: str,
        *,
        working_directory: str,
        cancellation_token: CancellationToken,
        model: str | None = None,
        api_key: str | None = None,
    ) -> AsyncIterator[ExecutionChunk]:
        try:
            from claude_agent_sdk import (
                AssistantMessage,
                ClaudeAgentOptions,
                CLINotFoundError,
                ProcessError,
                ResultMessage,
                TextBlock,
                query,
            )
        except ImportError as exc:
            raise EngineUnavailableError("claude_agent_sdk not installed") from exc

        options = ClaudeAgentOptions(
            cwd=working_directory,
            model=model or self._default_model,
            permission_mode=self._permission_mode,
            env={"ANTHROPIC_API_KEY": api_key} if api_key else {},
        )

        stream = query(prompt=prompt, options=options)
        try:
            async for message in stream:
                if cancellation_token.cancelled:
                    break
                if isinstance(message, AssistantMessage):
                    text = "".join(
                        block.text for block in message.content
                        if isinstance(block, TextBlock)
                    )
                    if text:
                        yield ExecutionChunk(text=text)
                elif isinstance(message, ResultMessage):
                    yield ExecutionChunk(
                        text=message.result or "",
                        is_result=True,
                        is_error=bool(message.is_error),
                        input_tokens=_usage_value(message.usage, "input_tokens"),
                        output_tokens=_usage_value(message.usage, "output_tokens"),
                        metadata={
                            "subtype": message.subtype,
                            "durationMs": message.duration_ms,
                            "numTurns": message.num_turns,
                        },
                    )
        except CLINotFoundError as exc:
            raise EngineUnavailableError(f"claude CLI not found: {exc}") from exc
        except ProcessError as exc:
            raise EngineInternalError(
                str(exc),
                exit_code=getattr(exc, "exit_code", None),
                stderr=getattr(exc, "stderr", None) or "",
            ) from exc
        finally:
            await stream.aclose()

    def is_available(self) -> bool:
        """Check if the claude CLI the SDK drives is installed."""
        return shutil.which("claude") is not None
