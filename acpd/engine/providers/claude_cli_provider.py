"""Claude CLI gateway.

Runs ``claude --print --output-format stream-json`` as a subprocess,
feeds the prompt on stdin and parses one JSON event per stdout line.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import time
from typing import Any, AsyncIterator

from ..errors import EngineInternalError, EngineUnavailableError
from ..operations import CancellationToken
from .base import ExecutionChunk, ExecutionGateway

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 4000


def _text_from_content(content: Any) -> str:
    if not isinstance(content, list):
        return ""
    return "".join(
        part["text"] for part in content
        if isinstance(part, dict) and part.get("type") == "text"
        and isinstance(part.get("text"), str)
    )


def parse_stream_line(line: str) -> ExecutionChunk | None:
    """Map one stream-json line to a chunk.

    Returns None for blank lines, non-JSON noise, and event types that
    carry no text (system/init, tool use, tool results).
    """
    line = line.strip()
    if not line:
        return None
    try:
        event = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(event, dict):
        return None

    kind = event.get("type")
    if kind == "assistant":
        message = event.get("message") or {}
        text = _text_from_content(message.get("content"))
        return ExecutionChunk(text=text) if text else None
    if kind == "result":
        usage = event.get("usage") or {}
        result = event.get("result")
        return ExecutionChunk(
            text=result if isinstance(result, str) else "",
            is_result=True,
            is_error=bool(event.get("is_error")) or event.get("subtype") not in (None, "success"),
            input_tokens=usage.get("input_tokens") if isinstance(usage, dict) else None,
            output_tokens=usage.get("output_tokens") if isinstance(usage, dict) else None,
            metadata={
                "subtype": event.get("subtype"),
                "durationMs": event.get("duration_ms"),
                "numTurns": event.get("num_turns"),
            },
        )
    return None


class ClaudeCliGateway(ExecutionGateway):
    """Gateway backed by the ``claude`` CLI.

    The whole run is bounded by ``timeout_seconds``; on expiry the
    process is killed and TimeoutError is raised.
    """

    def __init__(
        self,
        command: str | None = None,
        default_model: str | None = None,
        timeout_seconds: float = 1800.0,
        permission_mode: str = "bypassPermissions",
    ) -> None:
        self._command = self.resolve_command(command, "claude")
        self._default_model = default_model
        self._timeout = timeout_seconds
        self._permission_mode = permission_mode

    @property
    def name(self) -> str:
        return "cli"

    @property
    def command(self) -> str:
        return self._command

    def build_command(self, model: str | None = None) -> list[str]:
        cmd = [
            self._command,
            "--print",
            "--verbose",
            "--output-format", "stream-json",
            "--permission-mode", self._permission_mode,
        ]
        model = model or self._default_model
        if model:
            cmd.extend(["--model", model])
        return cmd

    def _build_env(self, api_key: str | None) -> dict[str, str] | None:
        if not api_key:
            return None
        env = os.environ.copy()
        env["ANTHROPIC_API_KEY"] = api_key
        return env

    async def execute(
        self,
        prompt: str,
        *,
        working_directory: str,
        cancellation_token: CancellationToken,
        model: str | None = None,
        api_key: str | None = None,
    ) -> AsyncIterator[ExecutionChunk]:
        cmd = self.build_command(model)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._build_env(api_key),
                cwd=working_directory,
            )
        except FileNotFoundError as exc:
            raise EngineUnavailableError(f"'{self._command}' CLI not found") from exc

        stderr_task = asyncio.ensure_future(proc.stderr.read())
        deadline = time.monotonic() + self._timeout if self._timeout > 0 else None
        try:
            proc.stdin.write(prompt.encode("utf-8"))
            await proc.stdin.drain()
            proc.stdin.close()

            while True:
                if cancellation_token.cancelled:
                    return
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise TimeoutError(f"claude CLI exceeded {self._timeout:.0f}s")
                try:
                    line = await asyncio.wait_for(proc.stdout.readline(), timeout=remaining)
                except asyncio.TimeoutError:
                    raise TimeoutError(f"claude CLI exceeded {self._timeout:.0f}s") from None
                if not line:
                    break
                chunk = parse_stream_line(line.decode("utf-8", errors="replace"))
                if chunk is not None:
                    yield chunk

            await proc.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace")
            if proc.returncode != 0:
                tail = stderr[-STDERR_TAIL_CHARS:]
                last_line = tail.strip().splitlines()[-1] if tail.strip() else ""
                raise EngineInternalError(
                    f"claude CLI failed (rc={proc.returncode}): {last_line}",
                    exit_code=proc.returncode,
                    stderr=tail,
                )
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            if not stderr_task.done():
                stderr_task.cancel()

    def is_available(self) -> bool:
        return shutil.which(self._command) is not None
