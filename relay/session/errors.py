import anyio
import httpx
from mcp.shared.exceptions import McpError

from ..utils.exception_logging import (
    find_exception_in_exception_groups,
    format_exception_message,
)


class RelayError(Exception):
    """Base class for relay errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotReadyError(RelayError):
    """The backend link is not connected; callers are not retried."""


class ConnectivityError(RelayError):
    """Opening the link failed or the transport went away."""


class LinkClosedError(ConnectivityError):
    """A call was made on a link that is closed or was never opened."""


class CallTimeoutError(RelayError):
    """The backend did not answer a call within its deadline."""


class UnsupportedOperationError(RelayError):
    """The operation has no mapping onto the backend protocol."""


# MCP reports request timeouts with the HTTP 408 code.
MCP_REQUEST_TIMEOUT = int(httpx.codes.REQUEST_TIMEOUT)
# Sent by the streamable HTTP client when the server no longer knows our session.
MCP_SESSION_TERMINATED = 32600

_CONNECTION_FAULT_TYPES = (
    ConnectivityError,
    ConnectionError,
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
    anyio.EndOfStream,
    httpx.TransportError,
)
_CONNECTION_FAULT_MARKERS = ("connection", "closed")


def is_request_timeout(exc: BaseException) -> bool:
    if isinstance(exc, CallTimeoutError):
        return True
    error = getattr(exc, "error", None) if isinstance(exc, McpError) else None
    return error is not None and error.code == MCP_REQUEST_TIMEOUT


def is_connection_fault(exc: BaseException) -> bool:
    """
    True when ``exc`` means the transport is closed or unreachable.

    Timeouts never count: a slow backend is surfaced to the caller and left
    to the health check.
    """
    if is_request_timeout(exc) or isinstance(exc, NotReadyError):
        return False
    if isinstance(exc, McpError) and exc.error.code == MCP_SESSION_TERMINATED:
        return True
    if find_exception_in_exception_groups(exc, _CONNECTION_FAULT_TYPES):
        return True
    message = format_exception_message(exc).lower()
    return any(marker in message for marker in _CONNECTION_FAULT_MARKERS)
