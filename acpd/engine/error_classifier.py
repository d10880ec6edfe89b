"""Classify engine and workspace failures into stable error codes.

Typed exceptions map directly. Anything else is matched against an
ordered table of message patterns (message plus stderr tail,
lower-cased); the first matching rule wins.
"""
from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import (
    EngineAuthError,
    EngineInternalError,
    EngineUnavailableError,
    GitUnavailableError,
    OperationCancelledError,
)


class ErrorKind(str, Enum):
    AUTH = "auth_error"
    CLI_MISSING = "cli_missing"
    WORKSPACE_MISSING = "workspace_missing"
    FS_PERMISSION = "fs_permission"
    GIT_UNAVAILABLE = "git_unavailable"
    TIMEOUT = "timeout"
    INTERNAL = "internal_cli_failure"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


_RETRYABLE = {ErrorKind.TIMEOUT, ErrorKind.INTERNAL, ErrorKind.UNKNOWN}


@dataclass
class ClassifiedError:
    code: ErrorKind
    message: str
    is_retryable: bool
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "isRetryable": self.is_retryable,
            "meta": self.meta,
        }


@dataclass(frozen=True)
class _Rule:
    kind: ErrorKind
    name: str
    all_of: tuple[str, ...]

    def matches(self, haystack: str) -> bool:
        return all(re.search(p, haystack) for p in self.all_of)


_RULES: tuple[_Rule, ...] = (
    _Rule(ErrorKind.AUTH, "api_key", (r"api[ _-]?key|authentication|unauthori[sz]ed|\b401\b",)),
    _Rule(ErrorKind.CLI_MISSING, "claude_not_found", (r"not found|enoent", r"claude")),
    _Rule(ErrorKind.WORKSPACE_MISSING, "not_a_git_repo", (r"not a git repository",)),
    _Rule(ErrorKind.FS_PERMISSION, "permission_denied", (r"permission denied|eacces|eperm",)),
    _Rule(ErrorKind.TIMEOUT, "timed_out", (r"timed out|timeout",)),
    _Rule(
        ErrorKind.INTERNAL, "stack_trace",
        (r"traceback|stack|referenceerror|typeerror|syntaxerror",),
    ),
    _Rule(ErrorKind.CANCELLED, "cancelled", (r"cancell?ed",)),
)

_TYPED: tuple[tuple[type[BaseException], ErrorKind], ...] = (
    (OperationCancelledError, ErrorKind.CANCELLED),
    (asyncio.CancelledError, ErrorKind.CANCELLED),
    (EngineAuthError, ErrorKind.AUTH),
    (EngineUnavailableError, ErrorKind.CLI_MISSING),
    (GitUnavailableError, ErrorKind.GIT_UNAVAILABLE),
    (TimeoutError, ErrorKind.TIMEOUT),
    (asyncio.TimeoutError, ErrorKind.TIMEOUT),
    (PermissionError, ErrorKind.FS_PERMISSION),
)


def _message_of(error: BaseException | str) -> str:
    if isinstance(error, str):
        return error
    return str(error) or type(error).__name__


def classify_error(
    error: BaseException | str,
    stderr_tail: str | None = None,
) -> ClassifiedError:
    """Classify *error* into a ClassifiedError."""
    message = _message_of(error)
    if stderr_tail is None and isinstance(error, EngineInternalError):
        stderr_tail = error.stderr

    if isinstance(error, BaseException):
        for exc_type, kind in _TYPED:
            if isinstance(error, exc_type):
                return ClassifiedError(
                    code=kind,
                    message=message,
                    is_retryable=kind in _RETRYABLE,
                    meta={"matched": f"type:{type(error).__name__}"},
                )

    haystack = f"{message}\n{stderr_tail or ''}".lower()
    for rule in _RULES:
        if rule.matches(haystack):
            return ClassifiedError(
                code=rule.kind,
                message=message,
                is_retryable=rule.kind in _RETRYABLE,
                meta={"matched": rule.name},
            )

    kind = ErrorKind.INTERNAL if isinstance(error, EngineInternalError) else ErrorKind.UNKNOWN
    return ClassifiedError(
        code=kind,
        message=message,
        is_retryable=True,
        meta={"matched": "fallback"},
    )
