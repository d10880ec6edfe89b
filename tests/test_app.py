from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import MagicMock, patch

import pytest

from acpd.app import configure_logging, main
from acpd.engine.config import RuntimeConfig


@pytest.fixture
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_configure_logging_adds_rotating_file(_restore_root_logger) -> None:
    with TemporaryDirectory() as tmpdir:
        log_file = Path(tmpdir) / "logs" / "acpd.log"
        configure_logging("debug", str(log_file))
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(isinstance(h, RotatingFileHandler) for h in root.handlers)
        assert log_file.parent.is_dir()


def test_main_selects_http_transport(_restore_root_logger, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ACP_HTTP_HOST", raising=False)
    with patch("acpd.app._serve", new=MagicMock(return_value="serve-coro")) as serve, \
            patch("acpd.app.asyncio.run") as run:
        with pytest.raises(SystemExit) as excinfo:
            main(["--http", "--port", "0", "--host", "0.0.0.0"])

    assert excinfo.value.code == 0
    run.assert_called_once_with("serve-coro")
    config, transport = serve.call_args.args
    assert transport == "http"
    assert config.http_port == 0
    assert config.http_host == "0.0.0.0"


def test_main_rejects_missing_config_file(_restore_root_logger) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--config", "/nonexistent/acpd.yaml"])
    assert excinfo.value.code == 2


def test_stdio_and_http_are_exclusive() -> None:
    with pytest.raises(SystemExit):
        main(["--stdio", "--http"])


def test_main_sets_up_logging_before_loading_config(
    _restore_root_logger, monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("ACP_LOG_LEVEL", "WARNING")
    monkeypatch.delenv("ACP_LOG_FILE", raising=False)
    calls: list[tuple] = []
    loaded = RuntimeConfig(log_level="DEBUG")

    def fake_load(path):
        calls.append(("config", path))
        return loaded

    with patch("acpd.app.configure_logging",
               side_effect=lambda level, log_file=None: calls.append(("logging", level, log_file))), \
            patch("acpd.app.load_config", side_effect=fake_load), \
            patch("acpd.app._serve", new=MagicMock()), \
            patch("acpd.app.asyncio.run"):
        with pytest.raises(SystemExit):
            main(["--config", "acpd.yaml"])

    assert calls == [
        ("logging", "WARNING", None),
        ("config", "acpd.yaml"),
        ("logging", "DEBUG", None),
    ]


def test_main_keeps_early_logging_when_config_agrees(
    _restore_root_logger, monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("ACP_LOG_LEVEL", raising=False)
    monkeypatch.delenv("ACP_LOG_FILE", raising=False)
    with patch("acpd.app.configure_logging") as configure, \
            patch("acpd.app.load_config", return_value=RuntimeConfig()), \
            patch("acpd.app._serve", new=MagicMock()), \
            patch("acpd.app.asyncio.run"):
        with pytest.raises(SystemExit):
            main([])

    configure.assert_called_once_with("INFO", None)
