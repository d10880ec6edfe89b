"""Execution gateways wrapping the external code-generation engine."""
from .base import ExecutionChunk, ExecutionGateway
from .claude_cli_provider import ClaudeCliGateway, parse_stream_line
from .claude_provider import ClaudeGateway
from .registry import build_gateway

__all__ = [
    "ClaudeCliGateway",
    "ClaudeGateway",
    "ExecutionChunk",
    "ExecutionGateway",
    "build_gateway",
    "parse_stream_line",
]
