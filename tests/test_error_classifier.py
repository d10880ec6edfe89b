from __future__ import annotations

import asyncio

import pytest

from acpd.engine.error_classifier import ErrorKind, classify_error
from acpd.engine.errors import (
    EngineInternalError,
    EngineUnavailableError,
    GitUnavailableError,
    OperationCancelledError,
)


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (OperationCancelledError("s", "op"), ErrorKind.CANCELLED),
        (asyncio.CancelledError(), ErrorKind.CANCELLED),
        (EngineUnavailableError("claude not installed"), ErrorKind.CLI_MISSING),
        (GitUnavailableError("git"), ErrorKind.GIT_UNAVAILABLE),
        (TimeoutError("slow"), ErrorKind.TIMEOUT),
        (PermissionError("nope"), ErrorKind.FS_PERMISSION),
    ],
)
def test_typed_errors_map_directly(error: BaseException, expected: ErrorKind) -> None:
    result = classify_error(error)
    assert result.code is expected
    assert result.meta["matched"].startswith("type:")


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("Invalid API key provided", ErrorKind.AUTH),
        ("HTTP 401 from upstream", ErrorKind.AUTH),
        ("spawn claude ENOENT", ErrorKind.CLI_MISSING),
        ("fatal: not a git repository (or any parent)", ErrorKind.WORKSPACE_MISSING),
        ("open /x: permission denied", ErrorKind.FS_PERMISSION),
        ("request timed out", ErrorKind.TIMEOUT),
        ("Traceback (most recent call last):", ErrorKind.INTERNAL),
        ("operation was canceled by user", ErrorKind.CANCELLED),
    ],
)
def test_message_patterns(message: str, expected: ErrorKind) -> None:
    assert classify_error(RuntimeError(message)).code is expected


def test_first_matching_rule_wins() -> None:
    # Mentions both an auth problem and a timeout; auth is checked first.
    result = classify_error("authentication timed out")
    assert result.code is ErrorKind.AUTH
    assert result.meta["matched"] == "api_key"


def test_stderr_tail_is_searched() -> None:
    error = EngineInternalError("engine exited with code 1", exit_code=1, stderr="EACCES: /root")
    result = classify_error(error)
    assert result.code is ErrorKind.FS_PERMISSION
    assert result.is_retryable is False


def test_fallback_kinds() -> None:
    internal = classify_error(EngineInternalError("exit 3", exit_code=3))
    assert internal.code is ErrorKind.INTERNAL
    assert internal.is_retryable

    unknown = classify_error(RuntimeError("something odd"))
    assert unknown.code is ErrorKind.UNKNOWN
    assert unknown.meta == {"matched": "fallback"}
    assert unknown.to_dict()["code"] == "unknown"
