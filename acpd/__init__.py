"""acpd: Agent Client Protocol server for a sandboxed coding agent."""

__version__ = "0.3.1"
