"""ACP method dispatcher and JSON-RPC envelope handling.

Transports hand decoded messages to ``ProtocolDispatcher.handle_message``
and write back whatever it returns. Progress notifications go out
through a ``SessionUpdateNotifier`` shared with the orchestrator.
"""
from __future__ import annotations

import json
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from acpd.engine.config import RuntimeConfig
from acpd.engine.errors import (
    AcpError,
    InvalidParamsError,
    InvalidRequestError,
    MethodNotFoundError,
    NotInitializedError,
    ParseError,
    UnsupportedVersionError,
)
from acpd.engine.orchestrator import PromptOrchestrator, PromptRequest
from acpd.engine.providers import ExecutionGateway, build_gateway
from acpd.engine.runtime import AcpRuntime
from acpd.shared.models.content import parse_content
from acpd.shared.models.session import SessionMode, SessionOptions, SessionState

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

MessageListener = Callable[[dict[str, Any]], None]


@dataclass
class RequestContext:
    """Per-request data that does not travel in params."""
    request_id: Any = None
    transport: str = "stdio"
    credentials: dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def api_key(self) -> str | None:
        return self.credentials.get("apiKey") or None

    @property
    def github_token(self) -> str | None:
        return self.credentials.get("githubToken") or None


class SessionUpdateNotifier:
    """Fans notifications out to transport listeners.

    Adds a per-session ``seqNo`` and a ``timestamp`` to every
    notification. Delivery is fire-and-forget: a failing listener is
    logged and skipped.
    """

    def __init__(self) -> None:
        self._listeners: list[MessageListener] = []
        self._seq: dict[str, int] = defaultdict(int)

    def add_listener(self, listener: MessageListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def __call__(self, method: str, params: dict[str, Any]) -> None:
        session_id = params.get("sessionId") or ""
        self._seq[session_id] += 1
        message = {
            "jsonrpc": JSONRPC_VERSION,
            "method": method,
            "params": {
                **params,
                "seqNo": self._seq[session_id],
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("Notification listener failed (%s)", method)


def error_response(request_id: Any, error: AcpError) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error.to_rpc_error()}


def result_response(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


# ── Param helpers ──

def _require_str(params: dict[str, Any], key: str) -> str:
    value = params.get(key)
    if not isinstance(value, str) or not value:
        raise InvalidParamsError(f"{key} is required and must be a string", {"param": key})
    return value


def _optional_str(params: dict[str, Any], key: str) -> str | None:
    value = params.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise InvalidParamsError(f"{key} must be a string", {"param": key})
    return value


def _optional_dict(params: dict[str, Any], key: str) -> dict[str, Any]:
    value = params.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidParamsError(f"{key} must be an object", {"param": key})
    return value


def _optional_str_list(params: dict[str, Any], key: str) -> list[str]:
    value = params.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise InvalidParamsError(f"{key} must be a list of strings", {"param": key})
    return value


Handler = Callable[[dict[str, Any], RequestContext], Awaitable[dict[str, Any]]]


class ProtocolDispatcher:
    """Routes ACP methods to the runtime and the orchestrator."""

    def __init__(
        self,
        runtime: AcpRuntime,
        orchestrator: PromptOrchestrator,
        notifier: SessionUpdateNotifier | None = None,
    ) -> None:
        self.runtime = runtime
        self.orchestrator = orchestrator
        self.notifier = notifier or SessionUpdateNotifier()
        self._handlers: dict[str, Handler] = {
            "initialize": self._initialize,
            "session/new": self._session_new,
            "session/load": self._session_load,
            "session/prompt": self._session_prompt,
            "cancel": self._cancel,
            "session/cancel": self._cancel,
            "session/close": self._session_close,
        }

    @property
    def methods(self) -> list[str]:
        return list(self._handlers)

    async def dispatch(
        self,
        method: str,
        params: dict[str, Any] | None,
        context: RequestContext | None = None,
    ) -> dict[str, Any]:
        """Run one ACP method. Raises AcpError subclasses on failure."""
        handler = self._handlers.get(method)
        if handler is None:
            raise MethodNotFoundError(method)
        if method != "initialize" and not self.runtime.initialized:
            raise NotInitializedError(method)
        return await handler(params or {}, context or RequestContext())

    async def handle_message(
        self,
        message: Any,
        context: RequestContext | None = None,
    ) -> dict[str, Any] | None:
        """Handle one decoded JSON-RPC message.

        Returns the response object, or None for notifications (messages
        without an ``id``), which never get a reply.
        """
        request_id = message.get("id") if isinstance(message, dict) else None
        if (
            not isinstance(message, dict)
            or message.get("jsonrpc") != JSONRPC_VERSION
            or not isinstance(message.get("method"), str)
        ):
            return error_response(request_id, InvalidRequestError("Invalid JSON-RPC request"))

        method = message["method"]
        is_notification = "id" not in message
        context = context or RequestContext()
        context.request_id = request_id

        params = message.get("params")
        try:
            if params is not None and not isinstance(params, dict):
                raise InvalidParamsError("params must be an object")
            result = await self.dispatch(method, params, context)
        except AcpError as exc:
            if is_notification:
                logger.debug("Notification %s failed: %s", method, exc.message)
                return None
            logger.info("RPC %s failed: %s (%d)", method, exc.message, exc.code)
            return error_response(request_id, exc)
        except Exception as exc:
            logger.exception("RPC %s raised", method)
            if is_notification:
                return None
            return error_response(request_id, AcpError(f"Internal error: {exc}"))

        if is_notification:
            return None
        return result_response(request_id, result)

    async def handle_text(
        self,
        text: str,
        context: RequestContext | None = None,
    ) -> dict[str, Any] | None:
        """Decode *text* as JSON and handle it."""
        try:
            message = json.loads(text)
        except json.JSONDecodeError as exc:
            return error_response(None, ParseError(f"Parse error: {exc.msg}"))
        return await self.handle_message(message, context)

    # ── Handlers ──

    async def _initialize(self, params: dict[str, Any], ctx: RequestContext) -> dict[str, Any]:
        config = self.runtime.config
        requested = params.get("protocolVersion")
        if not isinstance(requested, str):
            raise InvalidParamsError("protocolVersion is required and must be a string")
        if not requested.startswith(config.protocol_version_prefix):
            raise UnsupportedVersionError(requested, config.protocol_version)

        client = self.runtime.mark_initialized(
            requested,
            client_info=_optional_dict(params, "clientInfo"),
            capabilities=_optional_dict(params, "clientCapabilities")
            or _optional_dict(params, "capabilities"),
        )
        logger.info(
            "Initialized: protocol=%s client=%s",
            requested, client.client_info.get("name", "unknown"),
        )
        return {
            "protocolVersion": config.protocol_version,
            "agentCapabilities": self.runtime.agent_capabilities(),
            "agentInfo": self.runtime.agent_info(),
        }

    async def _session_new(self, params: dict[str, Any], ctx: RequestContext) -> dict[str, Any]:
        workspace_uri = _optional_str(params, "workspaceUri")
        mode_raw = params.get("mode") or SessionMode.DEVELOPMENT.value
        try:
            mode = SessionMode(mode_raw)
        except ValueError:
            raise InvalidParamsError(
                f"Invalid mode: {mode_raw}. Must be 'development' or 'conversation'",
                {"param": "mode"},
            ) from None
        options = SessionOptions.from_dict(_optional_dict(params, "sessionOptions"))

        session = await self.runtime.sessions.create(workspace_uri, mode, options)
        workspace_info = await self.runtime.workspaces.describe(
            workspace_uri, session.session_id,
        )
        return {"sessionId": session.session_id, "workspaceInfo": workspace_info}

    async def _session_load(self, params: dict[str, Any], ctx: RequestContext) -> dict[str, Any]:
        session_id = _require_str(params, "sessionId")
        include_history = bool(params.get("includeHistory", False))

        session = await self.runtime.sessions.require(session_id)
        session.touch()
        await self.runtime.sessions.persist(session)

        result: dict[str, Any] = {
            "sessionInfo": session.info(),
            "workspaceInfo": await self.runtime.workspaces.describe(
                session.workspace_uri, session_id,
            ),
            "historyAvailable": session.history_length > 0,
        }
        if include_history:
            result["history"] = session.message_history
        return result

    async def _session_prompt(self, params: dict[str, Any], ctx: RequestContext) -> dict[str, Any]:
        session_id = _require_str(params, "sessionId")
        raw_content = params.get("content")
        if not isinstance(raw_content, list) or not raw_content:
            raise InvalidParamsError(
                "content is required and must be a non-empty array", {"param": "content"},
            )
        try:
            content = parse_content(raw_content)
        except TypeError as exc:
            raise InvalidParamsError(str(exc), {"param": "content"}) from exc

        request = PromptRequest(
            session_id=session_id,
            content=content,
            context_files=_optional_str_list(params, "contextFiles"),
            agent_context=_optional_dict(params, "agentContext"),
            model=_optional_str(params, "model"),
            api_key=ctx.api_key,
            github_token=ctx.github_token,
        )
        outcome = await self.orchestrator.process(request)
        return outcome.to_result()

    async def _cancel(self, params: dict[str, Any], ctx: RequestContext) -> dict[str, Any]:
        session_id = _require_str(params, "sessionId")
        operation_id = _optional_str(params, "operationId")
        sessions = self.runtime.sessions

        session = await sessions.require(session_id)
        cancelled = self.runtime.operations.cancel(session_id, operation_id)
        if not cancelled:
            return {"cancelled": False}

        sessions.set_state(session_id, SessionState.PAUSED)
        session.touch()
        await sessions.persist(session)
        return {"cancelled": True}

    async def _session_close(self, params: dict[str, Any], ctx: RequestContext) -> dict[str, Any]:
        session_id = _require_str(params, "sessionId")
        await self.runtime.sessions.require(session_id)
        await self.runtime.close_session(session_id)
        return {"closed": True}


def build_dispatcher(
    config: RuntimeConfig,
    gateway: ExecutionGateway | None = None,
    runtime: AcpRuntime | None = None,
) -> ProtocolDispatcher:
    """Wire runtime, notifier, orchestrator and dispatcher together."""
    runtime = runtime or AcpRuntime(config)
    notifier = SessionUpdateNotifier()
    orchestrator = PromptOrchestrator(
        runtime, gateway or build_gateway(config), notify=notifier,
    )
    return ProtocolDispatcher(runtime, orchestrator, notifier)
