import asyncio

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from mcp import types

from relay.server import CORS_HEADERS, create_app
from relay.session.errors import CallTimeoutError, ConnectivityError
from relay.vars import MCP_SERVER_URL


@pytest.fixture
def app(supervisor, forwarder):
    return create_app(supervisor, forwarder, initial_connect_delay=1.0)


@pytest.fixture
def test_client(app):
    with TestClient(app) as client:
        yield client


@pytest_asyncio.fixture
async def async_client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def test_ping_while_disconnected(test_client):
    response = test_client.get("/ping")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["message"] == "HTTP Wrapper Server is running"
    assert body["mcpServerUrl"] == MCP_SERVER_URL
    assert body["mcpClientReady"] is False
    assert body["timestamp"].endswith("Z")
    assert body["connectionStatus"] == {
        "isConnected": False,
        "isInitializing": False,
        "reconnectAttempts": 0,
        "maxReconnectAttempts": 5,
    }


def test_lifespan_schedules_first_connect(test_client, scheduler):
    assert [h.due_at for h in scheduler.pending_one_shots] == [1.0]


def test_tools_listing_while_initializing(test_client):
    response = test_client.get("/tools")

    assert response.status_code == 200
    (tool,) = response.json()["tools"]
    assert tool["name"] == "get-cookie"
    assert tool["endpoint"] == "/tools/get-cookie"
    assert tool["method"] == "POST"
    assert tool["status"] == "initializing"
    assert tool["connectionInfo"] == {
        "isConnected": False,
        "isInitializing": False,
        "reconnectAttempts": 0,
    }


def test_get_cookie_without_url_is_rejected(test_client, backend):
    response = test_client.post("/tools/get-cookie", json={})

    assert response.status_code == 400
    assert response.json() == {"error": "URL parameter is required"}
    assert backend.open_attempts == 0


def test_get_cookie_with_invalid_json_is_rejected(test_client):
    response = test_client.post(
        "/tools/get-cookie",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON in request body"}


def test_get_cookie_while_disconnected_is_503(test_client):
    response = test_client.post("/tools/get-cookie", json={"url": "https://example.com"})

    assert response.status_code == 503
    body = response.json()
    assert body["error"] == "MCP client not ready"
    assert body["status"] == {
        "isConnected": False,
        "isInitializing": False,
        "reconnectAttempts": 0,
    }


def test_options_preflight(test_client):
    response = test_client.options("/tools/get-cookie")

    assert response.status_code == 200
    for header, value in CORS_HEADERS.items():
        assert response.headers[header] == value


def test_cors_headers_on_regular_responses(test_client):
    response = test_client.get("/ping")
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_unknown_route_is_json_404(test_client):
    response = test_client.get("/nope")

    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_wrong_method_is_json_404(test_client):
    response = test_client.get("/tools/get-cookie")

    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}


@pytest.mark.asyncio
async def test_ping_reflects_live_supervisor_state(async_client, supervisor, backend):
    backend.open_gate = asyncio.Event()
    connecting = asyncio.create_task(supervisor.initialize())
    await asyncio.sleep(0)

    status = (await async_client.get("/ping")).json()["connectionStatus"]
    assert status["isInitializing"] is True
    assert status["isConnected"] is False

    backend.open_gate.set()
    await connecting

    body = (await async_client.get("/ping")).json()
    assert body["mcpClientReady"] is True
    assert body["connectionStatus"]["isConnected"] is True
    assert body["connectionStatus"]["isInitializing"] is False

    tools = (await async_client.get("/tools")).json()["tools"]
    assert tools[0]["status"] == "ready"


@pytest.mark.asyncio
async def test_get_cookie_returns_tool_result_verbatim(async_client, supervisor, backend):
    await supervisor.initialize()
    backend.invoke_outcomes = [
        types.CallToolResult(
            content=[types.TextContent(type="text", text='{"cookieString": "sid=1"}')],
            isError=False,
        )
    ]

    response = await async_client.post(
        "/tools/get-cookie", json={"url": "https://example.com"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Cookies retrieved from https://example.com"
    assert body["response"] == {
        "content": [{"type": "text", "text": '{"cookieString": "sid=1"}'}],
        "isError": False,
    }
    assert body["request"] == {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "tools/call",
        "params": {
            "name": "chrome_get_cookie",
            "arguments": {"url": "https://example.com"},
        },
    }
    assert backend.calls[0][:3] == (
        "invoke",
        "chrome_get_cookie",
        {"url": "https://example.com"},
    )


@pytest.mark.asyncio
async def test_get_cookie_recovers_from_dropped_connection(async_client, supervisor, backend):
    await supervisor.initialize()
    backend.invoke_outcomes = [ConnectivityError("connection closed"), {"content": []}]

    response = await async_client.post(
        "/tools/get-cookie", json={"url": "https://example.com"}
    )

    assert response.status_code == 200
    assert response.json()["response"] == {"content": []}
    assert backend.open_attempts == 2


@pytest.mark.asyncio
async def test_get_cookie_backend_failure_is_500(async_client, supervisor, backend):
    await supervisor.initialize()
    backend.invoke_outcomes = [CallTimeoutError("Tool 'chrome_get_cookie' did not answer within 30s")]

    response = await async_client.post(
        "/tools/get-cookie", json={"url": "https://example.com"}
    )

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Failed to communicate with MCP server"
    assert "did not answer within 30s" in body["details"]
    assert body["suggestion"] == f"Make sure the MCP server is running at {MCP_SERVER_URL}"


@pytest.mark.asyncio
async def test_get_cookie_when_reconnect_fails_is_500(async_client, supervisor, backend):
    await supervisor.initialize()
    backend.invoke_outcomes = [ConnectivityError("connection closed")]
    backend.refuse_connections = True

    response = await async_client.post(
        "/tools/get-cookie", json={"url": "https://example.com"}
    )

    assert response.status_code == 500
    assert response.json()["details"] == "connection closed"

    response = await async_client.post(
        "/tools/get-cookie", json={"url": "https://example.com"}
    )
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_get_cookie_during_reconnect_is_503(async_client, supervisor, backend):
    await supervisor.initialize()
    backend.invoke_outcomes = [ConnectivityError("connection closed")]
    supervisor.is_initializing = True

    response = await async_client.post(
        "/tools/get-cookie", json={"url": "https://example.com"}
    )

    assert response.status_code == 503
    assert response.json()["error"] == "MCP client not ready"
