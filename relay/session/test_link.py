import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest
from mcp import types
from mcp.shared.exceptions import McpError

from relay.models import Operation
from relay.session.client_strategy import MCPClientStrategy
from relay.session.errors import (
    CallTimeoutError,
    ConnectivityError,
    LinkClosedError,
    UnsupportedOperationError,
    is_connection_fault,
)
from relay.session.link import MCPLink


class StubStrategy(MCPClientStrategy):
    url = "http://127.0.0.1:12306/mcp"

    def __init__(self, error=None, hang=False, handshake_error=None):
        self.client_session = AsyncMock()
        self.error = error
        self.hang = hang
        self.handshake_error = handshake_error
        self.message_handler = None
        self.entered = 0
        self.exited = 0

    @asynccontextmanager
    async def session(self, message_handler=None):
        self.message_handler = message_handler
        self.entered += 1
        try:
            if self.handshake_error is not None:
                await message_handler(self.handshake_error)
            if self.error is not None:
                raise self.error
            if self.hang:
                await asyncio.Event().wait()
            yield self.client_session
        finally:
            self.exited += 1


@pytest.mark.asyncio
async def test_open_and_close():
    strategy = StubStrategy()
    link = MCPLink(strategy, open_timeout=1)

    await link.open()
    assert link.is_open
    assert strategy.entered == 1

    await link.close()
    assert not link.is_open
    assert strategy.exited == 1

    # Idempotent
    await link.close()
    assert strategy.exited == 1


@pytest.mark.asyncio
async def test_close_never_opened_link_is_safe():
    link = MCPLink(StubStrategy())
    await link.close()
    assert not link.is_open


@pytest.mark.asyncio
async def test_open_failure_raises_connectivity_error():
    cause = OSError("All connection attempts failed")
    link = MCPLink(StubStrategy(error=cause), open_timeout=1)

    with pytest.raises(ConnectivityError) as exc_info:
        await link.open()

    assert "All connection attempts failed" in str(exc_info.value)
    assert exc_info.value.__cause__ is cause
    assert not link.is_open


@pytest.mark.asyncio
async def test_open_timeout_cancels_handshake():
    strategy = StubStrategy(hang=True)
    link = MCPLink(strategy, open_timeout=0.05)

    with pytest.raises(ConnectivityError, match="Timed out"):
        await link.open()

    assert strategy.exited == 1
    assert not link.is_open


@pytest.mark.asyncio
async def test_link_cannot_be_reopened():
    link = MCPLink(StubStrategy(), open_timeout=1)
    await link.open()
    with pytest.raises(ConnectivityError):
        await link.open()
    await link.close()


@pytest.mark.asyncio
async def test_invoke_calls_tool_with_timeout():
    strategy = StubStrategy()
    expected = types.CallToolResult(content=[types.TextContent(type="text", text="ok")])
    strategy.client_session.call_tool.return_value = expected
    link = MCPLink(strategy, open_timeout=1)
    await link.open()

    result = await link.invoke("chrome_get_cookie", {"url": "https://a.test"}, timeout=30)

    assert result is expected
    strategy.client_session.call_tool.assert_awaited_once_with(
        "chrome_get_cookie",
        {"url": "https://a.test"},
        read_timeout_seconds=timedelta(seconds=30),
    )
    await link.close()


@pytest.mark.asyncio
async def test_invoke_maps_request_timeout():
    strategy = StubStrategy()
    strategy.client_session.call_tool.side_effect = McpError(
        types.ErrorData(code=408, message="Timed out while waiting for response")
    )
    link = MCPLink(strategy, open_timeout=1)
    await link.open()

    with pytest.raises(CallTimeoutError):
        await link.invoke("chrome_get_cookie", {}, timeout=0.1)
    await link.close()


@pytest.mark.asyncio
async def test_invoke_other_mcp_errors_pass_through():
    strategy = StubStrategy()
    error = McpError(types.ErrorData(code=-32602, message="Unknown tool"))
    strategy.client_session.call_tool.side_effect = error
    link = MCPLink(strategy, open_timeout=1)
    await link.open()

    with pytest.raises(McpError) as exc_info:
        await link.invoke("missing", {})
    assert exc_info.value is error
    await link.close()


@pytest.mark.asyncio
async def test_send_generic_ping():
    strategy = StubStrategy()
    strategy.client_session.send_request.return_value = types.EmptyResult()
    link = MCPLink(strategy, open_timeout=1)
    await link.open()

    await link.send(Operation(method="ping"))

    request, result_type = strategy.client_session.send_request.await_args.args
    assert isinstance(request.root, types.PingRequest)
    assert result_type is types.EmptyResult
    await link.close()


@pytest.mark.asyncio
async def test_send_unsupported_method():
    link = MCPLink(StubStrategy(), open_timeout=1)
    await link.open()

    with pytest.raises(UnsupportedOperationError):
        await link.send(Operation(method="resources/subscribe"))
    await link.close()


@pytest.mark.asyncio
async def test_ping_uses_session_ping():
    strategy = StubStrategy()
    link = MCPLink(strategy, open_timeout=1)
    await link.open()

    await link.ping(timeout=1)

    strategy.client_session.send_ping.assert_awaited_once()
    await link.close()


@pytest.mark.asyncio
async def test_calls_after_close_raise_link_closed():
    link = MCPLink(StubStrategy(), open_timeout=1)
    await link.open()
    await link.close()

    with pytest.raises(LinkClosedError):
        await link.invoke("chrome_get_cookie", {})
    with pytest.raises(LinkClosedError):
        await link.ping(timeout=1)


async def never_answers(*args, **kwargs):
    await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_transport_error_fails_pending_call_fast():
    strategy = StubStrategy()
    strategy.client_session.call_tool.side_effect = never_answers
    link = MCPLink(strategy, open_timeout=1)
    await link.open()

    call = asyncio.create_task(link.invoke("chrome_get_cookie", {}, timeout=30))
    await asyncio.sleep(0)
    transport_error = httpx.ConnectError("All connection attempts failed")
    await strategy.message_handler(transport_error)

    with pytest.raises(LinkClosedError) as exc_info:
        await asyncio.wait_for(call, timeout=1)

    assert exc_info.value.__cause__ is transport_error
    assert "All connection attempts failed" in str(exc_info.value)
    assert is_connection_fault(exc_info.value)
    assert not link.is_open

    with pytest.raises(LinkClosedError):
        await link.ping(timeout=1)
    await link.close()
    assert strategy.exited == 1


@pytest.mark.asyncio
async def test_server_messages_do_not_drop_the_link():
    strategy = StubStrategy()
    link = MCPLink(strategy, open_timeout=1)
    await link.open()

    await strategy.message_handler(
        types.ServerNotification(
            types.ToolListChangedNotification(method="notifications/tools/list_changed")
        )
    )

    assert link.is_open
    await link.close()


@pytest.mark.asyncio
async def test_transport_error_during_handshake_fails_open_fast():
    transport_error = httpx.ConnectError("All connection attempts failed")
    strategy = StubStrategy(hang=True, handshake_error=transport_error)
    link = MCPLink(strategy, open_timeout=30)

    with pytest.raises(ConnectivityError) as exc_info:
        await asyncio.wait_for(link.open(), timeout=1)

    assert exc_info.value.__cause__ is transport_error
    assert strategy.exited == 1
    assert not link.is_open
