"""Newline-delimited JSON-RPC over stdin/stdout.

Each request runs in its own task so that a ``cancel`` can be handled
while a ``session/prompt`` is still streaming. All output (responses and
notifications) goes through one queue and one writer, so lines are
never interleaved and notifications keep their emission order.

Logging must go to stderr (stdout is the stdio transport).
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from collections.abc import Callable
from typing import Any

from acpd.engine.errors import InvalidRequestError

from .dispatcher import ProtocolDispatcher, RequestContext, error_response

logger = logging.getLogger(__name__)

# Prompts may inline whole files; asyncio's 64 KiB default is too small.
MAX_LINE_BYTES = 16 * 1024 * 1024


def _write_stdout(line: str) -> None:
    sys.stdout.write(line)
    sys.stdout.flush()


def credentials_from_env() -> dict[str, str]:
    """Credentials for stdio clients come from the process environment."""
    creds: dict[str, str] = {}
    if os.getenv("ANTHROPIC_API_KEY"):
        creds["apiKey"] = os.environ["ANTHROPIC_API_KEY"]
    if os.getenv("GITHUB_TOKEN"):
        creds["githubToken"] = os.environ["GITHUB_TOKEN"]
    return creds


class StdioJsonRpcServer:
    """Serves a ProtocolDispatcher over a line-oriented stream pair."""

    def __init__(
        self,
        dispatcher: ProtocolDispatcher,
        *,
        write_line: Callable[[str], None] = _write_stdout,
        credentials: dict[str, str] | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._write_line = write_line
        self._credentials = dict(credentials or {})
        self._outbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._tasks: set[asyncio.Task] = set()

    def _enqueue(self, message: dict[str, Any]) -> None:
        self._outbox.put_nowait(message)

    async def _writer(self) -> None:
        while True:
            message = await self._outbox.get()
            if message is None:
                return
            try:
                self._write_line(json.dumps(message, ensure_ascii=False) + "\n")
            except (OSError, ValueError) as exc:
                logger.error("stdout write failed: %s", exc)
                return

    async def _handle_line(self, line: str) -> None:
        context = RequestContext(transport="stdio", credentials=dict(self._credentials))
        response = await self._dispatcher.handle_text(line, context)
        if response is not None:
            self._enqueue(response)

    def _spawn(self, line: str) -> None:
        task = asyncio.create_task(self._handle_line(line))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def serve(self, reader: asyncio.StreamReader) -> None:
        """Read requests from *reader* until EOF, then drain in-flight work."""
        notifier = self._dispatcher.notifier
        notifier.add_listener(self._enqueue)
        writer_task = asyncio.create_task(self._writer())
        logger.info("stdio transport ready")
        try:
            while True:
                try:
                    raw = await reader.readline()
                except ValueError:
                    # Line over the limit; the reader has discarded it and
                    # its id is unknown.
                    logger.warning("Rejecting request line over %d bytes", MAX_LINE_BYTES)
                    self._enqueue(error_response(None, InvalidRequestError(
                        f"Request line exceeds {MAX_LINE_BYTES} bytes",
                    )))
                    continue
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").strip()
                if line:
                    self._spawn(line)
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
        finally:
            notifier.remove_listener(self._enqueue)
            self._outbox.put_nowait(None)
            await writer_task
            logger.info("stdio transport closed")


async def open_stdin_reader() -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=MAX_LINE_BYTES)
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    return reader


async def run_stdio(dispatcher: ProtocolDispatcher) -> None:
    server = StdioJsonRpcServer(dispatcher, credentials=credentials_from_env())
    await server.serve(await open_stdin_reader())
