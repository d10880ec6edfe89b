"""RPC surface: dispatcher plus stdio and HTTP transports."""
from .dispatcher import (
    ProtocolDispatcher,
    RequestContext,
    SessionUpdateNotifier,
    build_dispatcher,
)

__all__ = [
    "ProtocolDispatcher",
    "RequestContext",
    "SessionUpdateNotifier",
    "build_dispatcher",
]
