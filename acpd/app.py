"""Command-line entry point: ``acpd [--stdio | --http]``."""
from __future__ import annotations

import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from acpd.engine.config import RuntimeConfig
from acpd.engine.yaml_config import load_yaml_config

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def configure_logging(level: str, log_file: str | None = None) -> None:
    """Send logs to stderr, and to a rotating file when *log_file* is set.

    Nothing is ever logged to stdout; in stdio mode it carries JSON-RPC.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    formatter = logging.Formatter(LOG_FORMAT)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def load_config(config_path: str | None) -> RuntimeConfig:
    config = RuntimeConfig.from_env()
    if config_path:
        config = load_yaml_config(config_path, base=config)
    return config


async def _serve(config: RuntimeConfig, transport: str) -> None:
    from acpd.server.dispatcher import build_dispatcher

    dispatcher = build_dispatcher(config)
    purged = await dispatcher.runtime.sessions.store.purge_expired()
    if purged:
        logger.info("Removed %d expired session record(s) at startup", len(purged))

    if transport == "http":
        from acpd.server.http_server import AcpHttpServer

        server = AcpHttpServer(dispatcher, host=config.http_host, port=config.http_port)
        await server.start()
        return

    from acpd.server.stdio_server import run_stdio

    try:
        await run_stdio(dispatcher)
    finally:
        cancelled = dispatcher.runtime.shutdown()
        if cancelled:
            logger.info("Cancelled %d in-flight operation(s) on exit", cancelled)


def main(argv: list[str] | None = None) -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="acpd",
        description="Agent Client Protocol server for a sandboxed coding agent",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--stdio", dest="transport", action="store_const", const="stdio",
        help="Serve JSON-RPC over stdin/stdout (default)",
    )
    mode.add_argument(
        "--http", dest="transport", action="store_const", const="http",
        help="Serve JSON-RPC over HTTP with an SSE notification stream",
    )
    parser.add_argument("--host", help="HTTP bind address (default from ACP_HTTP_HOST)")
    parser.add_argument("--port", type=int, help="HTTP port; 0 picks a free one")
    parser.add_argument("--config", metavar="PATH", help="YAML config file")
    parser.add_argument("--log-file", metavar="PATH", help="Also log to a rotating file")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging",
    )
    args = parser.parse_args(argv)

    # Provisional setup so config loading is logged; redone once loaded.
    early = (
        "DEBUG" if args.verbose else os.getenv("ACP_LOG_LEVEL", RuntimeConfig.log_level),
        args.log_file or os.getenv("ACP_LOG_FILE") or None,
    )
    configure_logging(*early)
    try:
        config = load_config(args.config)
    except (OSError, ValueError) as exc:
        parser.error(f"cannot load config: {exc}")
    if args.host:
        config.http_host = args.host
    if args.port is not None:
        config.http_port = args.port
    if args.log_file:
        config.log_file = args.log_file
    if args.verbose:
        config.log_level = "DEBUG"

    if (config.log_level, config.log_file) != early:
        configure_logging(config.log_level, config.log_file)
    transport = args.transport or "stdio"
    logger.info(
        "Starting acpd transport=%s cwd=%s config=%s",
        transport, Path.cwd(), args.config or "<none>",
    )
    try:
        asyncio.run(_serve(config, transport))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    sys.exit(0)


if __name__ == "__main__":
    main()
