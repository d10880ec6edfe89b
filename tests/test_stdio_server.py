from __future__ import annotations

import asyncio
import json
from tempfile import TemporaryDirectory
from typing import Any
from unittest.mock import patch

import pytest

from acpd.engine.config import RuntimeConfig
from acpd.engine.providers.base import ExecutionChunk, ExecutionGateway
from acpd.server.dispatcher import build_dispatcher
from acpd.server.stdio_server import StdioJsonRpcServer, credentials_from_env


class _StaticGateway(ExecutionGateway):
    @property
    def name(self) -> str:
        return "static"

    def is_available(self) -> bool:
        return True

    async def execute(self, prompt, *, working_directory, cancellation_token,
                      model=None, api_key=None):
        yield ExecutionChunk(text="partial")
        yield ExecutionChunk(text="final answer", is_result=True)


def _reader(*messages: Any) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    for message in messages:
        line = message if isinstance(message, str) else json.dumps(message)
        reader.feed_data(line.encode() + b"\n")
    reader.feed_eof()
    return reader


async def _serve(tmpdir: str, *messages: Any) -> list[dict[str, Any]]:
    config = RuntimeConfig(
        session_storage_dir=f"{tmpdir}/sessions",
        workspace_base_dir=f"{tmpdir}/workspaces",
    )
    dispatcher = build_dispatcher(config, gateway=_StaticGateway())
    written: list[str] = []
    server = StdioJsonRpcServer(dispatcher, write_line=written.append)
    await server.serve(_reader(*messages))
    assert all(line.endswith("\n") and line.count("\n") == 1 for line in written)
    return [json.loads(line) for line in written]


@pytest.mark.asyncio
async def test_initialize_round_trip() -> None:
    with TemporaryDirectory() as tmpdir:
        out = await _serve(tmpdir, {
            "jsonrpc": "2.0", "id": 1, "method": "initialize",
            "params": {"protocolVersion": "0.3.1"},
        })
        assert len(out) == 1
        assert out[0]["id"] == 1
        assert out[0]["result"]["protocolVersion"] == "0.3.1"


@pytest.mark.asyncio
async def test_malformed_line_gets_parse_error_with_null_id() -> None:
    with TemporaryDirectory() as tmpdir:
        out = await _serve(tmpdir, "this is not json", "")
        assert out == [{
            "jsonrpc": "2.0",
            "id": None,
            "error": {
                "code": -32700,
                "message": out[0]["error"]["message"],
                "data": {"kind": "parse_error"},
            },
        }]


@pytest.mark.asyncio
async def test_prompt_streams_notifications_before_response() -> None:
    with TemporaryDirectory() as tmpdir:
        # Requests are handled concurrently, so create the session in a
        # first server run and prompt it in a second run over the same store.
        config = RuntimeConfig(
            session_storage_dir=f"{tmpdir}/sessions",
            workspace_base_dir=f"{tmpdir}/workspaces",
        )
        dispatcher = build_dispatcher(config, gateway=_StaticGateway())
        await dispatcher.handle_message({
            "jsonrpc": "2.0", "id": 0, "method": "initialize",
            "params": {"protocolVersion": "0.3.1"},
        })
        session = await dispatcher.runtime.sessions.create()

        written: list[str] = []
        server = StdioJsonRpcServer(dispatcher, write_line=written.append)
        await server.serve(_reader({
            "jsonrpc": "2.0", "id": "p1", "method": "session/prompt",
            "params": {
                "sessionId": session.session_id,
                "content": [{"type": "text", "text": "hello"}],
            },
        }))
        out = [json.loads(line) for line in written]

        notifications = [m for m in out if "method" in m]
        responses = [m for m in out if "id" in m]
        assert [m["params"]["status"] for m in notifications] == [
            "working", "working", "working", "completed",
        ]
        assert len(responses) == 1
        assert out[-1] is responses[0]
        assert responses[0]["result"]["stopReason"] == "completed"
        assert responses[0]["result"]["summary"] == "final answer"


def test_credentials_come_from_environment() -> None:
    with patch.dict("os.environ", {"ANTHROPIC_API_KEY": "sk-1", "GITHUB_TOKEN": ""}, clear=True):
        assert credentials_from_env() == {"apiKey": "sk-1"}


@pytest.mark.asyncio
async def test_oversized_line_gets_error_and_reading_continues() -> None:
    with TemporaryDirectory() as tmpdir:
        config = RuntimeConfig(
            session_storage_dir=f"{tmpdir}/sessions",
            workspace_base_dir=f"{tmpdir}/workspaces",
        )
        dispatcher = build_dispatcher(config, gateway=_StaticGateway())
        written: list[str] = []
        server = StdioJsonRpcServer(dispatcher, write_line=written.append)

        reader = asyncio.StreamReader(limit=128)
        oversized = {"jsonrpc": "2.0", "id": 1, "method": "initialize",
                     "params": {"protocolVersion": "0.3.1", "padding": "x" * 300}}
        valid = {"jsonrpc": "2.0", "id": 2, "method": "initialize",
                 "params": {"protocolVersion": "0.3.1"}}
        for message in (oversized, valid):
            reader.feed_data(json.dumps(message).encode() + b"\n")
        reader.feed_eof()
        await server.serve(reader)

        out = [json.loads(line) for line in written]
        assert len(out) == 2
        assert out[0]["id"] is None
        assert out[0]["error"]["code"] == -32600
        assert out[1]["id"] == 2
        assert "result" in out[1]
