"""HTTP transport: JSON-RPC over POST plus an SSE notification stream.

Routes:
    POST /acp      one JSON-RPC message per request body
    GET  /events   ``session/update`` notifications as server-sent events
                   (``?sessionId=`` limits the stream to one session)
    GET  /health   liveness and runtime counters

Credentials travel in headers (X-Anthropic-Api-Key, X-GitHub-Token)
and are never part of the RPC params.
"""
from __future__ import annotations

import asyncio
import json
import logging
import sys
import time
import uuid
from typing import Any

from aiohttp import web

from .dispatcher import ProtocolDispatcher, RequestContext

logger = logging.getLogger(__name__)

SSE_QUEUE_SIZE = 5000
SSE_KEEPALIVE_SECONDS = 30.0
MAX_BODY_BYTES = 16 * 1024 * 1024


class AcpHttpServer:
    """aiohttp application serving one ProtocolDispatcher."""

    def __init__(
        self,
        dispatcher: ProtocolDispatcher,
        host: str = "127.0.0.1",
        port: int = 8080,
    ) -> None:
        self._dispatcher = dispatcher
        self._host = host
        self._port = port
        self._sse_queues: list[tuple[asyncio.Queue[dict[str, Any]], str | None]] = []
        self._started_at = time.time()
        self._app = web.Application(
            middlewares=[self._request_logging_middleware],
            client_max_size=MAX_BODY_BYTES,
        )
        self._setup_routes()
        dispatcher.notifier.add_listener(self._broadcast_sse)

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def port(self) -> int:
        return self._port

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-request-id", str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        logger.info("HTTP %s %s req=%s from=%s", request.method, request.path_qs, req_id, request.remote)
        try:
            response = await handler(request)
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception(
                "HTTP %s %s req=%s failed duration_ms=%.1f",
                request.method, request.path_qs, req_id, elapsed_ms,
            )
            raise
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(
            "HTTP %s %s req=%s status=%s duration_ms=%.1f",
            request.method, request.path_qs, req_id,
            getattr(response, "status", "?"), elapsed_ms,
        )
        return response

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/health", self._handle_health)
        r.add_get("/events", self._handle_sse)
        r.add_post("/acp", self._handle_rpc)

    # ── Handlers ──

    async def _handle_health(self, request: web.Request) -> web.Response:
        runtime = self._dispatcher.runtime
        return web.json_response({
            "status": "ok",
            "initialized": runtime.initialized,
            "sessions": len(runtime.sessions),
            "activeOperations": runtime.operations.active_count(),
            "sseClients": len(self._sse_queues),
            "uptimeSeconds": round(time.time() - self._started_at, 1),
            "gateway": self._dispatcher.orchestrator.gateway.name,
        })

    async def _handle_rpc(self, request: web.Request) -> web.Response:
        credentials: dict[str, str] = {}
        api_key = request.headers.get("X-Anthropic-Api-Key")
        if api_key:
            credentials["apiKey"] = api_key
        github_token = request.headers.get("X-GitHub-Token")
        if github_token:
            credentials["githubToken"] = github_token
        context = RequestContext(transport="http", credentials=credentials)

        body = await request.text()
        response = await self._dispatcher.handle_text(body, context)
        if response is None:
            return web.Response(status=204)
        return web.json_response(response)

    async def _handle_sse(self, request: web.Request) -> web.StreamResponse:
        session_filter = request.query.get("sessionId") or None
        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
        )
        await response.prepare(request)

        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=SSE_QUEUE_SIZE)
        entry = (queue, session_filter)
        self._sse_queues.append(entry)
        logger.info(
            "SSE client connected req=%s session=%s active_clients=%d",
            request.get("req_id", "unknown"), session_filter or "*", len(self._sse_queues),
        )
        try:
            await response.write(b"event: connected\ndata: {}\n\n")
            while True:
                try:
                    msg = await asyncio.wait_for(queue.get(), timeout=SSE_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    await response.write(b": keepalive\n\n")
                    continue
                data = json.dumps(msg, ensure_ascii=False)
                await response.write(f"event: {msg['method']}\ndata: {data}\n\n".encode())
        except (ConnectionResetError, asyncio.CancelledError):
            logger.debug("SSE stream closed req=%s", request.get("req_id", "unknown"))
        finally:
            self._sse_queues.remove(entry)
            logger.info(
                "SSE client disconnected req=%s active_clients=%d",
                request.get("req_id", "unknown"), len(self._sse_queues),
            )
        return response

    def _broadcast_sse(self, message: dict[str, Any]) -> None:
        session_id = message.get("params", {}).get("sessionId")
        for queue, session_filter in self._sse_queues:
            if session_filter and session_filter != session_id:
                continue
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("SSE queue full, dropping %s", message.get("method"))

    # ── Lifecycle ──

    @staticmethod
    def _resolve_port(site, runner) -> int | None:
        sockets = getattr(getattr(site, "_server", None), "sockets", None) or ()
        if sockets:
            return sockets[0].getsockname()[1]
        addresses = getattr(runner, "addresses", None) or ()
        if addresses:
            first = addresses[0]
            if isinstance(first, tuple) and len(first) >= 2:
                return int(first[1])
        return None

    async def start(self) -> None:
        """Start the server, print the bound port to stdout and serve forever."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()

        actual_port = self._resolve_port(site, runner)
        if actual_port is None:
            await runner.cleanup()
            raise RuntimeError("HTTP server started but no listening socket was reported.")
        self._port = actual_port
        sys.stdout.write(json.dumps({"port": actual_port}) + "\n")
        sys.stdout.flush()
        logger.info("ACP HTTP server listening on %s:%d", self._host, actual_port)

        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Server shutting down")
        finally:
            self._dispatcher.notifier.remove_listener(self._broadcast_sse)
            cancelled = self._dispatcher.runtime.shutdown()
            if cancelled:
                logger.info("Cancelled %d in-flight operation(s)", cancelled)
            await runner.cleanup()
