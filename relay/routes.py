import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from opentelemetry import trace

from relay.models import (
    GetCookieResponse,
    Operation,
    PingResponse,
    ToolDescriptor,
    ToolsResponse,
    to_jsonable,
)
from relay.session import ConnectionSupervisor, NotReadyError, RequestForwarder
from relay.utils import iso_timestamp
from relay.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from relay.utils.traced_requests import traced_operation
from relay.vars import COOKIE_TOOL_NAME, MCP_SERVER_URL

router = APIRouter()

logger = logging.getLogger("uvicorn.error")

tracer = trace.get_tracer(__name__)


def get_supervisor(request: Request) -> ConnectionSupervisor:
    return request.app.state.supervisor


def get_forwarder(request: Request) -> RequestForwarder:
    return request.app.state.forwarder


def _error(status_code: int, body: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body)


def _not_ready(supervisor: ConnectionSupervisor) -> JSONResponse:
    return _error(
        503,
        {
            "error": "MCP client not ready",
            "message": "Please wait for MCP client initialization",
            "status": supervisor.get_state().summary(),
        },
    )


@router.get("/ping")
async def ping(supervisor: ConnectionSupervisor = Depends(get_supervisor)):
    status = supervisor.get_state()
    return PingResponse(
        timestamp=iso_timestamp(),
        mcpServerUrl=MCP_SERVER_URL,
        mcpClientReady=status.isConnected,
        connectionStatus=status,
    )


@router.get("/tools")
async def list_tools(supervisor: ConnectionSupervisor = Depends(get_supervisor)):
    status = supervisor.get_state()
    return ToolsResponse(
        tools=[
            ToolDescriptor(
                name="get-cookie",
                endpoint="/tools/get-cookie",
                method="POST",
                description="Get cookies from a specified website",
                parameters={"url": "string - URL of the website to get cookies from"},
                note=f"Connects directly to MCP server using MCP client at {MCP_SERVER_URL}",
                status="ready" if status.isConnected else "initializing",
                connectionInfo=status.summary(),
            )
        ]
    )


@router.post("/tools/get-cookie")
async def get_cookie(
    request: Request,
    supervisor: ConnectionSupervisor = Depends(get_supervisor),
    forwarder: RequestForwarder = Depends(get_forwarder),
):
    try:
        payload = json.loads(await request.body())
    except ValueError:
        return _error(400, {"error": "Invalid JSON in request body"})

    target_url = payload.get("url") if isinstance(payload, dict) else None
    if not target_url:
        return _error(400, {"error": "URL parameter is required"})

    logger.info(f"[Get-Cookie] Get cookie request for URL: {target_url}")

    if not supervisor.is_connected:
        return _not_ready(supervisor)

    operation = Operation.tool_call(COOKIE_TOOL_NAME, {"url": target_url})
    with traced_operation(
        tracer,
        operation="get_cookie",
        start_message=f"[Get-Cookie] Sending to MCP server via client: {operation.model_dump()}",
        extra_attrs={"cookie.url": str(target_url)},
    ):
        try:
            result = await forwarder.forward(operation)
        except NotReadyError:
            return _not_ready(supervisor)
        except Exception as e:
            log_exception_with_details(logger, "[Get-Cookie] MCP client communication error", e)
            return _error(
                500,
                {
                    "error": "Failed to communicate with MCP server",
                    "details": format_exception_message(e),
                    "suggestion": f"Make sure the MCP server is running at {MCP_SERVER_URL}",
                },
            )

    return GetCookieResponse(
        message=f"Cookies retrieved from {target_url}",
        response=to_jsonable(result),
        request=operation.model_dump(),
    )
