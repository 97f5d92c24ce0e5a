from .errors import (
    RelayError,
    NotReadyError,
    ConnectivityError,
    LinkClosedError,
    CallTimeoutError,
    UnsupportedOperationError,
    is_connection_fault,
)
from .events import ConnectionEvent, ConnectionState, EventKind
from .link import RPCLink, MCPLink, build_mcp_link
from .supervisor import ConnectionSupervisor
from .forwarder import RequestForwarder

__all__ = [
    "RelayError",
    "NotReadyError",
    "ConnectivityError",
    "LinkClosedError",
    "CallTimeoutError",
    "UnsupportedOperationError",
    "is_connection_fault",
    "ConnectionEvent",
    "ConnectionState",
    "EventKind",
    "RPCLink",
    "MCPLink",
    "build_mcp_link",
    "ConnectionSupervisor",
    "RequestForwarder",
]
