import logging
import os
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional

from mcp import ClientSession, types
from mcp.client.session import MessageHandlerFnT
from mcp.client.streamable_http import streamablehttp_client

from relay.vars import (
    LINK_OPEN_TIMEOUT,
    MCP_CLIENT_NAME,
    MCP_CLIENT_VERSION,
    MCP_SERVER_URL,
)

logger = logging.getLogger("uvicorn.error")

HEADER_ENV_PREFIX = "MCP_REMOTE_HEADER_"


class MCPClientStrategy(ABC):
    """Strategy interface for establishing MCP client sessions."""

    url: str

    @asynccontextmanager
    @abstractmethod
    async def session(
        self, message_handler: Optional[MessageHandlerFnT] = None
    ) -> AsyncIterator[ClientSession]:
        """
        Yield an initialized MCP client session.

        ``message_handler`` also receives transport errors raised while the
        session is open.
        """
        yield  # pragma: no cover


class RemoteMCPClientStrategy(MCPClientStrategy):
    """Connect to an MCP server over streamable HTTP."""

    def __init__(
        self,
        url: str,
        *,
        headers: Optional[dict[str, str]] = None,
        handshake_timeout: float = LINK_OPEN_TIMEOUT,
    ) -> None:
        self.url = url
        self.headers: dict[str, str] = dict(headers or {})
        self.handshake_timeout = handshake_timeout
        self.client_info = types.Implementation(
            name=MCP_CLIENT_NAME, version=MCP_CLIENT_VERSION
        )
        self._add_env_headers()

    def _add_env_headers(self) -> None:
        for key, value in os.environ.items():
            if key.startswith(HEADER_ENV_PREFIX):
                header_name = key[len(HEADER_ENV_PREFIX):].replace("_", "-")
                if header_name and value:
                    self.headers[header_name] = value
                    logger.info(
                        f"[RemoteMCP] Adding custom header from environment: {header_name}"
                    )

    @asynccontextmanager
    async def session(
        self, message_handler: Optional[MessageHandlerFnT] = None
    ) -> AsyncIterator[ClientSession]:
        async with streamablehttp_client(
            self.url,
            headers=self.headers or None,
        ) as (read, write, _get_session_id):
            async with ClientSession(
                read,
                write,
                read_timeout_seconds=timedelta(seconds=self.handshake_timeout),
                message_handler=message_handler,
                client_info=self.client_info,
            ) as session:
                await session.initialize()
                yield session


def build_mcp_client_strategy(url: Optional[str] = None) -> MCPClientStrategy:
    url = (url or MCP_SERVER_URL).strip()
    if not url:
        raise ValueError("MCP_SERVER_URL must not be empty")
    logger.info(f"[ClientStrategy] Using MCP server at {url}")
    return RemoteMCPClientStrategy(url)
