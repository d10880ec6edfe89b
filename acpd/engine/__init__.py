"""ACP engine: sessions, operations, prompt composition and orchestration."""
from .config import RuntimeConfig
from .errors import (
    AcpError,
    EngineAuthError,
    EngineInternalError,
    EngineUnavailableError,
    ErrorCode,
    GitUnavailableError,
    InvalidParamsError,
    MethodNotFoundError,
    NotInitializedError,
    OperationCancelledError,
    SessionNotFoundError,
    UnsupportedVersionError,
    WorkspaceInaccessibleError,
)
from .operations import CancellationToken, OperationTracker

__all__ = [
    # Runtime, orchestrator and dispatcher are imported from their
    # modules to keep this package import light.
    "AcpError",
    "CancellationToken",
    "EngineAuthError",
    "EngineInternalError",
    "EngineUnavailableError",
    "ErrorCode",
    "GitUnavailableError",
    "InvalidParamsError",
    "MethodNotFoundError",
    "NotInitializedError",
    "OperationCancelledError",
    "OperationTracker",
    "RuntimeConfig",
    "SessionNotFoundError",
    "UnsupportedVersionError",
    "WorkspaceInaccessibleError",
]
