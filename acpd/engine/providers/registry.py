"""Gateway selection from configuration."""
from __future__ import annotations

import importlib.util
import logging

from ..config import RuntimeConfig
from .base import ExecutionGateway
from .claude_cli_provider import ClaudeCliGateway
from .claude_provider import ClaudeGateway

logger = logging.getLogger(__name__)

GATEWAY_KINDS = ("auto", "sdk", "cli")


def sdk_installed() -> bool:
    return importlib.util.find_spec("claude_agent_sdk") is not None


def build_gateway(config: RuntimeConfig) -> ExecutionGateway:
    """Build the gateway named by ``config.engine``.

    ``auto`` prefers the SDK and falls back to the bare CLI when the SDK
    package is not importable.
    """
    kind = config.engine
    if kind not in GATEWAY_KINDS:
        raise ValueError(
            f"Unknown engine {kind!r}; expected one of {', '.join(GATEWAY_KINDS)}"
        )
    if kind == "auto":
        kind = "sdk" if sdk_installed() else "cli"

    gateway: ExecutionGateway
    if kind == "sdk":
        gateway = ClaudeGateway(default_model=config.default_model)
    else:
        gateway = ClaudeCliGateway(
            command=config.claude_command,
            default_model=config.default_model,
            timeout_seconds=config.engine_timeout_seconds,
        )
    logger.info(
        "Execution gateway: %s (available=%s)", gateway.name, gateway.is_available(),
    )
    return gateway
