"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via ACP_* env vars, or
with a YAML file (see yaml_config).
"""
from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "0.3.1"
PROTOCOL_VERSION_PREFIX = "0.3."

_TRUTHY = {"1", "true", "yes", "on"}

# Sink for outbound notifications.
# Signature: def notify(method: str, params: dict[str, Any]) -> None
NotificationSink = Callable[[str, dict[str, Any]], None]

# Optional async observer for lifecycle events (tests, metrics hooks).
# Signature: async def callback(event: dict[str, Any]) -> None
EventCallback = Callable[[dict[str, Any]], Awaitable[None]]


async def fire_event(
    callback: EventCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set, logging and dropping its errors."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        logger.debug("Event callback failed for %s", event.get("event"), exc_info=True)


def _default_session_dir() -> str:
    return str(Path.cwd() / ".acp-sessions")


def _default_workspace_dir() -> str:
    return str(Path(tempfile.gettempdir()) / "acp-workspaces")


def env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in _TRUTHY


@dataclass
class RuntimeConfig:
    """ACP runtime configuration."""

    # Protocol
    protocol_version: str = PROTOCOL_VERSION
    protocol_version_prefix: str = PROTOCOL_VERSION_PREFIX
    agent_name: str = "acpd"
    agent_description: str = "ACP agent driving a code-generation engine in a sandboxed workspace"

    # Session store. Records untouched for longer than the retention
    # window are removed by SessionStore.purge_expired().
    session_storage_dir: str = field(default_factory=_default_session_dir)
    session_retention_days: float = 7.0

    # Workspaces. Ephemeral directories live under workspace_base_dir.
    workspace_base_dir: str = field(default_factory=_default_workspace_dir)
    # Set when the sandbox keeps its filesystem across restarts; existing
    # clones are then fast-forwarded instead of trusted as-is.
    persistent_workspace: bool = False

    # Git
    git_command: str = "git"
    git_timeout_seconds: float = 120.0
    git_user_name: str = "ACP Agent"
    git_user_email: str = "acp-agent@localhost"

    # Execution engine: "sdk", "cli" or "auto"
    engine: str = "auto"
    claude_command: str | None = None
    engine_timeout_seconds: float = 1800.0
    default_model: str | None = None
    anthropic_api_key: str | None = field(default=None, repr=False)

    # Prompt assembly
    max_prompt_tokens: int = 100_000
    summary_chars: int = 200

    # HTTP transport
    http_host: str = "127.0.0.1"
    http_port: int = 8080

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None

    event_callback: EventCallback | None = field(default=None, repr=False)

    @property
    def session_retention_seconds(self) -> float:
        return self.session_retention_days * 86400.0

    @classmethod
    def from_env(cls) -> RuntimeConfig:
        """Load configuration from ACP_* environment variables."""
        acp_vars = sorted(k for k in os.environ if k.startswith("ACP_"))
        if acp_vars:
            # Names only; some of these carry paths or tokens.
            logger.info("RuntimeConfig.from_env: ACP_* env overrides: %s", ", ".join(acp_vars))
        else:
            logger.debug("RuntimeConfig.from_env: no ACP_* env vars set, using defaults")

        defaults = cls()
        config = cls(
            session_storage_dir=os.getenv(
                "ACP_SESSION_STORAGE_DIR", defaults.session_storage_dir
            ),
            session_retention_days=float(os.getenv(
                "ACP_SESSION_RETENTION_DAYS", str(cls.session_retention_days)
            )),
            workspace_base_dir=os.getenv(
                "ACP_WORKSPACE_BASE_DIR", defaults.workspace_base_dir
            ),
            persistent_workspace=(
                bool(os.getenv("DAYTONA_WORKSPACE_ID"))
                or env_flag("ACP_PERSISTENT_WORKSPACE")
            ),
            git_command=os.getenv("ACP_GIT_COMMAND", cls.git_command),
            git_timeout_seconds=float(os.getenv(
                "ACP_GIT_TIMEOUT", str(cls.git_timeout_seconds)
            )),
            git_user_name=os.getenv("ACP_GIT_USER_NAME", cls.git_user_name),
            git_user_email=os.getenv("ACP_GIT_USER_EMAIL", cls.git_user_email),
            engine=os.getenv("ACP_ENGINE", cls.engine).strip().lower(),
            claude_command=os.getenv("ACP_CLAUDE_COMMAND") or None,
            engine_timeout_seconds=float(os.getenv(
                "ACP_ENGINE_TIMEOUT", str(cls.engine_timeout_seconds)
            )),
            default_model=os.getenv("ACP_DEFAULT_MODEL") or None,
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            max_prompt_tokens=int(os.getenv(
                "ACP_MAX_PROMPT_TOKENS", str(cls.max_prompt_tokens)
            )),
            http_host=os.getenv("ACP_HTTP_HOST", cls.http_host),
            http_port=int(os.getenv("ACP_HTTP_PORT", str(cls.http_port))),
            log_level=os.getenv("ACP_LOG_LEVEL", cls.log_level),
            log_file=os.getenv("ACP_LOG_FILE") or None,
        )
        logger.info(
            "RuntimeConfig.from_env: sessions=%s workspaces=%s engine=%s persistent=%s",
            config.session_storage_dir, config.workspace_base_dir,
            config.engine, config.persistent_workspace,
        )
        return config
