"""YAML configuration loader.

Example ``acpd.yaml``::

    sessions:
      storage_dir: /var/lib/acpd/sessions
      retention_days: 14

    workspace:
      base_dir: /tmp/acp-workspaces
      persistent: false

    git:
      timeout_seconds: 60
      user_name: "ACP Agent"
      user_email: "agent@example.com"

    engine:
      kind: cli            # sdk | cli | auto
      command: claude
      timeout_seconds: 900
      default_model: claude-sonnet-4-5
      max_prompt_tokens: 80000
      api_key: "${ANTHROPIC_API_KEY}"

    server:
      host: 0.0.0.0
      port: 8080
      log_level: DEBUG
      log_file: /var/log/acpd.log

Values of the form ``${NAME}`` are expanded from the environment. Keys
that are absent keep the value from RuntimeConfig.from_env().
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from .config import RuntimeConfig

logger = logging.getLogger(__name__)

_ENV_REF_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

# (section, key) -> (RuntimeConfig field, caster)
_FIELD_MAP: dict[tuple[str, str], tuple[str, type]] = {
    ("sessions", "storage_dir"): ("session_storage_dir", str),
    ("sessions", "retention_days"): ("session_retention_days", float),
    ("workspace", "base_dir"): ("workspace_base_dir", str),
    ("workspace", "persistent"): ("persistent_workspace", bool),
    ("git", "command"): ("git_command", str),
    ("git", "timeout_seconds"): ("git_timeout_seconds", float),
    ("git", "user_name"): ("git_user_name", str),
    ("git", "user_email"): ("git_user_email", str),
    ("engine", "kind"): ("engine", str),
    ("engine", "command"): ("claude_command", str),
    ("engine", "timeout_seconds"): ("engine_timeout_seconds", float),
    ("engine", "default_model"): ("default_model", str),
    ("engine", "max_prompt_tokens"): ("max_prompt_tokens", int),
    ("engine", "api_key"): ("anthropic_api_key", str),
    ("server", "host"): ("http_host", str),
    ("server", "port"): ("http_port", int),
    ("server", "log_level"): ("log_level", str),
    ("server", "log_file"): ("log_file", str),
}


def _expand_env(value: Any) -> Any:
    if isinstance(value, str):
        return _ENV_REF_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    return value


def _cast(value: Any, caster: type) -> Any:
    if caster is bool and isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return caster(value)


def load_yaml_config(
    path: str | Path,
    base: RuntimeConfig | None = None,
) -> RuntimeConfig:
    """Load a YAML config file on top of *base* (default: from_env()).

    Raises FileNotFoundError when *path* does not exist and ValueError
    when the document is not a mapping or a value has the wrong type.
    """
    path = Path(path)
    logger.info("load_yaml_config: loading %s", path)
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top-level YAML value must be a mapping")

    config = base if base is not None else RuntimeConfig.from_env()
    overrides: dict[str, Any] = {}
    for section_name, section in raw.items():
        if not isinstance(section, dict):
            logger.warning("load_yaml_config: ignoring non-mapping section %r", section_name)
            continue
        for key, value in section.items():
            target = _FIELD_MAP.get((section_name, key))
            if target is None:
                logger.warning("load_yaml_config: unknown key %s.%s", section_name, key)
                continue
            field_name, caster = target
            value = _expand_env(value)
            if value is None or value == "":
                continue
            try:
                overrides[field_name] = _cast(value, caster)
            except (TypeError, ValueError) as exc:
                raise ValueError(
                    f"{path}: {section_name}.{key} must be {caster.__name__}"
                ) from exc

    if "engine" in overrides:
        overrides["engine"] = overrides["engine"].strip().lower()
    logger.info(
        "load_yaml_config: applied %d override(s): %s",
        len(overrides), ", ".join(sorted(k for k in overrides if k != "anthropic_api_key")),
    )
    return replace(config, **overrides)
