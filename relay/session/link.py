import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Awaitable, Dict, Optional, TypeVar

from mcp import ClientSession, types
from mcp.shared.exceptions import McpError

from relay.models import Operation
from relay.vars import LINK_OPEN_TIMEOUT, TOOL_CALL_TIMEOUT
from ..utils.exception_logging import format_exception_message, log_exception_with_details
from .client_strategy import MCPClientStrategy, build_mcp_client_strategy
from .errors import (
    CallTimeoutError,
    ConnectivityError,
    LinkClosedError,
    UnsupportedOperationError,
    is_request_timeout,
)

logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")

# Generic (non tool-call) methods the link passes through, with their result types.
PASSTHROUGH_RESULT_TYPES: Dict[str, type] = {
    "ping": types.EmptyResult,
    "tools/list": types.ListToolsResult,
}


class RPCLink(ABC):
    """One logical connection to the backend."""

    @abstractmethod
    async def open(self) -> None:
        """Connect and handshake; raises ConnectivityError on failure."""

    @abstractmethod
    async def invoke(
        self, name: str, arguments: Dict[str, Any], timeout: float = TOOL_CALL_TIMEOUT
    ) -> Any:
        """Call a named capability; raises CallTimeoutError past ``timeout``."""

    @abstractmethod
    async def send(self, operation: Operation) -> Any:
        """Pass a generic request through to the backend."""

    @abstractmethod
    async def ping(self, timeout: float) -> None:
        """Lightweight no-op probe used by health checks."""

    @abstractmethod
    async def close(self) -> None:
        """Release the connection. Idempotent and never raises."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass  # pragma: no cover


class MCPLink(RPCLink):
    """
    RPC link over an MCP client session.

    The transport and session context managers are entered and exited by a
    dedicated owner task, so open and close may be called from any task.
    Transport errors reported by the session mark the link as dropped and
    fail every call in flight with ``LinkClosedError``.
    """

    def __init__(
        self,
        client_strategy: MCPClientStrategy,
        *,
        open_timeout: float = LINK_OPEN_TIMEOUT,
    ) -> None:
        self.client_strategy = client_strategy
        self.open_timeout = open_timeout
        self._session: Optional[ClientSession] = None
        self._task: Optional[asyncio.Task] = None
        self._ready = asyncio.Event()
        self._stop_event = asyncio.Event()
        self._dropped = asyncio.Event()
        self._error: Optional[BaseException] = None
        self._transport_error: Optional[BaseException] = None
        self._closed = False

    @property
    def endpoint(self) -> str:
        return getattr(self.client_strategy, "url", "<unknown>")

    @property
    def is_open(self) -> bool:
        return self._session is not None and not self._closed and not self._dropped.is_set()

    async def _handle_message(self, message: Any) -> None:
        if not isinstance(message, Exception):
            return
        if not self._dropped.is_set():
            log_exception_with_details(
                logger, "[MCPLink] Transport error", message, level=logging.WARNING
            )
        self._transport_error = self._transport_error or message
        self._dropped.set()

    async def _run(self) -> None:
        try:
            async with self.client_strategy.session(self._handle_message) as session:
                self._session = session
                self._ready.set()
                logger.info(f"[MCPLink] Session established with {self.endpoint}")
                await self._stop_event.wait()
        except Exception as e:
            self._error = e
            if self._ready.is_set():
                log_exception_with_details(
                    logger, "[MCPLink] Session dropped", e, level=logging.WARNING
                )
        finally:
            self._session = None
            self._ready.set()
            self._dropped.set()
            logger.debug("[MCPLink] Session task stopped.")

    def _failure(self) -> Optional[BaseException]:
        return self._transport_error or self._error

    async def _first_of(self, *events: asyncio.Event, timeout: Optional[float] = None) -> bool:
        waiters = [asyncio.create_task(event.wait()) for event in events]
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in waiters:
                waiter.cancel()
        return bool(done)

    async def open(self) -> None:
        if self._task is not None or self._closed:
            raise ConnectivityError("Link can only be opened once")
        self._task = asyncio.create_task(self._run())
        if not await self._first_of(self._ready, self._dropped, timeout=self.open_timeout):
            await self.close()
            raise ConnectivityError(
                f"Timed out connecting to {self.endpoint} after {self.open_timeout}s"
            )
        if self._session is None or self._dropped.is_set():
            error = self._failure()
            await self.close()
            raise ConnectivityError(
                f"Connection to {self.endpoint} failed: {format_exception_message(error)}"
            ) from error

    def _closed_error(self) -> LinkClosedError:
        error = self._failure()
        if error is None:
            return LinkClosedError("MCP client connection is closed")
        return LinkClosedError(
            f"MCP client connection is closed: {format_exception_message(error)}"
        )

    def _require_session(self) -> ClientSession:
        session = self._session
        if session is None or self._closed or self._dropped.is_set():
            raise self._closed_error() from self._failure()
        return session

    async def _guarded(self, call: Awaitable[T]) -> T:
        """Await ``call`` unless the transport drops first."""
        call_task = asyncio.ensure_future(call)
        dropped = asyncio.create_task(self._dropped.wait())
        try:
            await asyncio.wait({call_task, dropped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            dropped.cancel()
            if not call_task.done():
                call_task.cancel()
        if call_task.done() and not call_task.cancelled():
            return call_task.result()
        raise self._closed_error() from self._failure()

    async def invoke(
        self, name: str, arguments: Dict[str, Any], timeout: float = TOOL_CALL_TIMEOUT
    ) -> types.CallToolResult:
        session = self._require_session()
        try:
            return await self._guarded(
                session.call_tool(
                    name, arguments, read_timeout_seconds=timedelta(seconds=timeout)
                )
            )
        except McpError as e:
            if is_request_timeout(e):
                raise CallTimeoutError(
                    f"Tool '{name}' did not answer within {timeout}s"
                ) from e
            raise

    async def send(self, operation: Operation) -> Any:
        result_type = PASSTHROUGH_RESULT_TYPES.get(operation.method)
        if result_type is None:
            raise UnsupportedOperationError(
                f"Method '{operation.method}' cannot be forwarded"
            )
        session = self._require_session()
        request = types.ClientRequest.model_validate(
            {"method": operation.method, "params": operation.params or None}
        )
        return await self._guarded(session.send_request(request, result_type))

    async def ping(self, timeout: float) -> None:
        session = self._require_session()
        await asyncio.wait_for(self._guarded(session.send_ping()), timeout=timeout)

    async def close(self) -> None:
        self._closed = True
        self._stop_event.set()
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if self._session is None:
            # Still handshaking; nothing is waiting on the stop event yet.
            task.cancel()
        try:
            await asyncio.wait_for(
                asyncio.gather(task, return_exceptions=True),
                timeout=self.open_timeout,
            )
        except Exception as e:
            log_exception_with_details(
                logger, "[MCPLink] Error closing link", e, level=logging.WARNING
            )


def build_mcp_link(url: Optional[str] = None) -> MCPLink:
    return MCPLink(build_mcp_client_strategy(url))
