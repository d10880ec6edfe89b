"""Exception hierarchy for the ACP runtime.

Every error that can cross the RPC boundary derives from AcpError and
carries a JSON-RPC ``code`` plus a stable ``kind`` string that clients
can branch on. Engine failures are normally classified rather than
raised past the dispatcher; see error_classifier.
"""
from __future__ import annotations

from typing import Any


class ErrorCode:
    """JSON-RPC error codes used on the wire."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # ACP application codes
    SESSION_NOT_FOUND = -32000
    WORKSPACE_ERROR = -32001
    AUTHENTICATION_FAILED = -32002
    OPERATION_CANCELLED = -32003


class AcpError(Exception):
    """Base exception for all ACP errors."""

    code: int = ErrorCode.INTERNAL_ERROR
    kind: str = "internal_error"

    def __init__(self, message: str, data: dict[str, Any] | None = None):
        self.message = message
        self.data = dict(data or {})
        super().__init__(message)

    def to_rpc_error(self) -> dict[str, Any]:
        """Render as a JSON-RPC error object."""
        return {
            "code": self.code,
            "message": self.message,
            "data": {"kind": self.kind, **self.data},
        }


class InvalidRequestError(AcpError):
    """The message is not a valid JSON-RPC request."""
    code = ErrorCode.INVALID_REQUEST
    kind = "invalid_request"


class ParseError(AcpError):
    """The payload could not be decoded as JSON."""
    code = ErrorCode.PARSE_ERROR
    kind = "parse_error"


class NotInitializedError(AcpError):
    """A session method was called before ``initialize``."""
    code = ErrorCode.INVALID_REQUEST
    kind = "not_initialized"

    def __init__(self, method: str):
        self.method = method
        super().__init__(
            "Agent not initialized. Call initialize first.",
            {"method": method},
        )


class MethodNotFoundError(AcpError):
    code = ErrorCode.METHOD_NOT_FOUND
    kind = "method_not_found"

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Method not found: {method}", {"method": method})


class InvalidParamsError(AcpError):
    """Missing or malformed request parameters."""
    code = ErrorCode.INVALID_PARAMS
    kind = "invalid_params"


class UnsupportedVersionError(AcpError):
    """Client requested a protocol version this agent cannot speak."""
    code = ErrorCode.INVALID_PARAMS
    kind = "unsupported_version"

    def __init__(self, requested: str, supported: str):
        self.requested = requested
        self.supported = supported
        super().__init__(
            f"Unsupported protocol version: {requested}",
            {"supportedVersion": supported, "requestedVersion": requested},
        )


class SessionNotFoundError(AcpError):
    code = ErrorCode.SESSION_NOT_FOUND
    kind = "session_not_found"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            f"Session not found: {session_id}", {"sessionId": session_id}
        )


class WorkspaceInaccessibleError(AcpError):
    """A requested workspace path cannot be read or written.

    Non-fatal: the reconciler catches it and falls back to an
    ephemeral directory.
    """
    code = ErrorCode.WORKSPACE_ERROR
    kind = "workspace_inaccessible"

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(
            f"Workspace {path} is not accessible: {reason}", {"path": path}
        )


class GitUnavailableError(AcpError):
    """The git executable could not be found."""
    code = ErrorCode.WORKSPACE_ERROR
    kind = "git_unavailable"

    def __init__(self, command: str):
        self.command = command
        super().__init__(
            f"git executable not found: {command}", {"command": command}
        )


class EngineAuthError(AcpError):
    """The execution engine rejected our credentials."""
    code = ErrorCode.AUTHENTICATION_FAILED
    kind = "auth_error"


class EngineUnavailableError(AcpError):
    """The execution engine CLI or SDK is not installed."""
    kind = "cli_missing"


class EngineInternalError(AcpError):
    """The execution engine failed while producing output."""
    kind = "internal_cli_failure"

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str = "",
    ):
        self.exit_code = exit_code
        self.stderr = stderr
        data: dict[str, Any] = {}
        if exit_code is not None:
            data["exitCode"] = exit_code
        super().__init__(message, data)


class OperationCancelledError(AcpError):
    code = ErrorCode.OPERATION_CANCELLED
    kind = "cancelled"

    def __init__(self, session_id: str, operation_id: str):
        self.session_id = session_id
        self.operation_id = operation_id
        super().__init__(
            f"Operation {operation_id} in session {session_id} was cancelled",
            {"sessionId": session_id, "operationId": operation_id},
        )
