import logging
from typing import Callable, List, Optional

from opentelemetry import trace

from relay.models import ConnectionStatus
from relay.vars import (
    HEALTH_CHECK_INTERVAL,
    HEALTH_CHECK_TIMEOUT,
    MAX_RECONNECT_ATTEMPTS,
    RECONNECT_DELAY_MS,
)
from ..utils.exception_logging import format_exception_message, log_exception_with_details
from ..utils.scheduler import AsyncioScheduler, ScheduledHandle, Scheduler
from ..utils.traced_requests import traced_operation
from .events import ConnectionEvent, ConnectionState, EventKind, EventListener
from .link import RPCLink, build_mcp_link

logger = logging.getLogger("uvicorn.error")

tracer = trace.get_tracer(__name__)

LinkFactory = Callable[[], RPCLink]


class ConnectionSupervisor:
    """
    Owns the single backend link and its lifecycle.

    ``initialize`` is guarded so that only one connect attempt is in flight;
    failures schedule a bounded number of delayed retries, and a periodic
    health check exists only while connected. Everything that changes the
    connection state goes through this object.
    """

    def __init__(
        self,
        link_factory: LinkFactory = build_mcp_link,
        *,
        scheduler: Optional[Scheduler] = None,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        reconnect_delay: float = RECONNECT_DELAY_MS / 1000,
        health_check_interval: float = HEALTH_CHECK_INTERVAL,
        health_check_timeout: float = HEALTH_CHECK_TIMEOUT,
    ) -> None:
        self.link_factory = link_factory
        self.scheduler = scheduler or AsyncioScheduler()
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.health_check_interval = health_check_interval
        self.health_check_timeout = health_check_timeout

        self.state = ConnectionState.DISCONNECTED
        self.is_initializing = False
        self.reconnect_attempts = 0
        self._link: Optional[RPCLink] = None
        self._health_timer: Optional[ScheduledHandle] = None
        self._retry_timer: Optional[ScheduledHandle] = None
        self._startup_timer: Optional[ScheduledHandle] = None
        self._listeners: List[EventListener] = []

    @property
    def link(self) -> Optional[RPCLink]:
        return self._link

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self._link is not None

    @property
    def health_timer(self) -> Optional[ScheduledHandle]:
        return self._health_timer

    @property
    def retry_timer(self) -> Optional[ScheduledHandle]:
        return self._retry_timer

    def get_state(self) -> ConnectionStatus:
        return ConnectionStatus(
            isConnected=self.is_connected,
            isInitializing=self.is_initializing,
            reconnectAttempts=self.reconnect_attempts,
            maxReconnectAttempts=self.max_reconnect_attempts,
        )

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def _emit(self, kind: EventKind, error: Optional[BaseException] = None) -> None:
        event = ConnectionEvent(
            kind=kind,
            attempt=self.reconnect_attempts,
            error=format_exception_message(error) if error is not None else None,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                log_exception_with_details(logger, "[Supervisor] Event listener failed", e)

    def start(self, delay: float = 0) -> ScheduledHandle:
        """Schedule the first connect attempt."""
        if self._startup_timer is not None:
            self._startup_timer.cancel()
        self._startup_timer = self.scheduler.call_later(delay, self.initialize)
        return self._startup_timer

    async def initialize(self) -> bool:
        if self.is_initializing:
            logger.info(
                "[Supervisor] MCP client initialization already in progress, skipping..."
            )
            return False

        if self.is_connected:
            logger.info(
                "[Supervisor] MCP client already connected, skipping initialization..."
            )
            return True

        self.is_initializing = True
        self.state = ConnectionState.CONNECTING
        try:
            with traced_operation(
                tracer,
                "mcp_connect",
                start_message="[Supervisor] Initializing MCP client...",
                extra_attrs={"relay.reconnect_attempts": self.reconnect_attempts},
            ) as span:
                await self._close_link()
                try:
                    self._link = self.link_factory()
                    await self._link.open()
                except Exception as e:
                    span.set_attribute("relay.connected", False)
                    log_exception_with_details(
                        logger, "[Supervisor] Failed to initialize MCP client", e
                    )
                    self.state = ConnectionState.DISCONNECTED
                    self._emit(EventKind.CONNECT_FAILED, e)
                    self._schedule_retry()
                    return False

                span.set_attribute("relay.connected", True)
                self.state = ConnectionState.CONNECTED
                self._cancel_retry_timer()
                self.reconnect_attempts = 0
                logger.info("[Supervisor] MCP client connected successfully")
                self._start_health_timer()
                self._emit(EventKind.CONNECTED)
                return True
        finally:
            self.is_initializing = False
            if self.state is ConnectionState.CONNECTING:
                # Left without an outcome, e.g. cancelled during shutdown.
                self.state = ConnectionState.DISCONNECTED

    def _schedule_retry(self) -> None:
        self._cancel_retry_timer()
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            logger.error(
                "[Supervisor] Max reconnection attempts reached. Manual intervention required."
            )
            self._emit(EventKind.RECONNECT_EXHAUSTED)
            return
        logger.info(
            f"[Supervisor] Reconnection attempt {self.reconnect_attempts + 1}/"
            f"{self.max_reconnect_attempts} in {int(self.reconnect_delay * 1000)}ms..."
        )
        self._retry_timer = self.scheduler.call_later(self.reconnect_delay, self._retry)
        self._emit(EventKind.RETRY_SCHEDULED)

    async def _retry(self) -> None:
        self.reconnect_attempts += 1
        await self.initialize()

    def reset_reconnect_attempts(self) -> None:
        """Re-arm automatic reconnection after exhaustion."""
        self.reconnect_attempts = 0

    def _start_health_timer(self) -> None:
        self._cancel_health_timer()
        self._health_timer = self.scheduler.call_every(
            self.health_check_interval, self.health_check
        )

    def _cancel_health_timer(self) -> None:
        if self._health_timer is not None:
            self._health_timer.cancel()
            self._health_timer = None

    def _cancel_retry_timer(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    async def health_check(self) -> None:
        link = self._link
        if not self.is_connected or link is None:
            self._cancel_health_timer()
            return

        try:
            with traced_operation(tracer, "mcp_health_check", level=logging.DEBUG):
                await link.ping(self.health_check_timeout)
        except Exception as e:
            log_exception_with_details(
                logger,
                "[Supervisor] Connection health check failed, attempting reconnection...",
                e,
                level=logging.WARNING,
            )
            self.state = ConnectionState.DISCONNECTED
            self._cancel_health_timer()
            self._emit(EventKind.HEALTH_CHECK_FAILED, e)
            await self.initialize()

    def mark_disconnected(self, reason: Optional[BaseException] = None) -> None:
        """Record a fault seen by a caller, who must then call ``initialize``."""
        if self.state is not ConnectionState.CONNECTED:
            return
        logger.warning(
            f"[Supervisor] Marking MCP client disconnected: {format_exception_message(reason)}"
        )
        self.state = ConnectionState.DISCONNECTED
        self._cancel_health_timer()
        self._emit(EventKind.DISCONNECTED, reason)

    async def _close_link(self) -> None:
        link, self._link = self._link, None
        if link is None:
            return
        try:
            await link.close()
        except Exception as e:
            log_exception_with_details(
                logger, "[Supervisor] Error closing existing client", e, level=logging.WARNING
            )

    async def close(self) -> None:
        """Stop every timer and release the link."""
        if self._startup_timer is not None:
            self._startup_timer.cancel()
            self._startup_timer = None
        self._cancel_retry_timer()
        self._cancel_health_timer()
        self.state = ConnectionState.DISCONNECTED
        await self._close_link()
        logger.info("[Supervisor] MCP client closed")
