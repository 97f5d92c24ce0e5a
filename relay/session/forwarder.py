import logging
from typing import Any

from opentelemetry import trace

from relay.models import Operation
from relay.vars import TOOL_CALL_TIMEOUT
from ..utils.traced_requests import traced_operation
from .errors import NotReadyError, is_connection_fault
from .link import RPCLink
from .supervisor import ConnectionSupervisor

logger = logging.getLogger("uvicorn.error")

tracer = trace.get_tracer(__name__)


class RequestForwarder:
    """Sends operations over the supervisor's link, retrying once across a reconnect."""

    def __init__(
        self,
        supervisor: ConnectionSupervisor,
        *,
        call_timeout: float = TOOL_CALL_TIMEOUT,
    ) -> None:
        self.supervisor = supervisor
        self.call_timeout = call_timeout

    async def forward(self, operation: Operation) -> Any:
        with traced_operation(
            tracer,
            "forward",
            start_message=f"[Forwarder] Forwarding {operation.method}",
            extra_attrs={
                "rpc.method": operation.method,
                "rpc.tool": operation.tool_name if operation.is_tool_call else None,
            },
            level=logging.DEBUG,
        ):
            return await self._forward(operation, allow_retry=True)

    async def _forward(self, operation: Operation, allow_retry: bool) -> Any:
        link = self.supervisor.link
        if not self.supervisor.is_connected or link is None:
            raise NotReadyError("MCP client not initialized or not connected")

        try:
            return await self._dispatch(link, operation)
        except Exception as e:
            if not allow_retry or not is_connection_fault(e):
                raise
            logger.warning(
                f"[Forwarder] Connection error detected, attempting reconnection... ({e})"
            )
            self.supervisor.mark_disconnected(e)
            if not await self.supervisor.initialize():
                if self.supervisor.is_initializing:
                    raise NotReadyError("MCP client is reconnecting") from e
                raise
            logger.info(f"[Forwarder] Reconnected, retrying {operation.method} once")
            return await self._forward(operation, allow_retry=False)

    async def _dispatch(self, link: RPCLink, operation: Operation) -> Any:
        if operation.is_tool_call:
            return await link.invoke(
                operation.tool_name,
                operation.tool_arguments,
                timeout=self.call_timeout,
            )
        return await link.send(operation)
