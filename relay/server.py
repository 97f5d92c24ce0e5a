import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from relay.metrics import record_connection_event
from relay.routes import router
from relay.session import ConnectionSupervisor, RequestForwarder
from relay.utils.exception_logging import log_exception_with_details
from relay.utils.scheduler import AsyncioScheduler
from relay.vars import (
    INITIAL_CONNECT_DELAY,
    MCP_SERVER_URL,
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    SERVICE_NAME,
)

logger = logging.getLogger("uvicorn.error")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    exception = context.get("exception")
    if exception is not None:
        log_exception_with_details(logger, "[Loop] Unhandled exception", exception)
    else:
        logger.error(f"[Loop] Unhandled error: {context.get('message')}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
    supervisor: ConnectionSupervisor = app.state.supervisor
    logger.info(f"Connecting to MCP server at: {MCP_SERVER_URL}")
    supervisor.start(app.state.initial_connect_delay)
    try:
        yield
    finally:
        logger.info("Shutting down...")
        await supervisor.close()
        if isinstance(supervisor.scheduler, AsyncioScheduler):
            await supervisor.scheduler.shutdown()


def create_app(
    supervisor: Optional[ConnectionSupervisor] = None,
    forwarder: Optional[RequestForwarder] = None,
    *,
    initial_connect_delay: float = INITIAL_CONNECT_DELAY,
) -> FastAPI:
    supervisor = supervisor or ConnectionSupervisor()
    supervisor.add_listener(record_connection_event)

    app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)
    app.state.supervisor = supervisor
    app.state.forwarder = forwarder or RequestForwarder(supervisor)
    app.state.initial_connect_delay = initial_connect_delay

    @app.middleware("http")
    async def cors(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        # Wrong method on a known path is reported like an unknown route.
        if exc.status_code in (404, 405):
            return JSONResponse(status_code=404, content={"error": "Not Found"})
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        log_exception_with_details(logger, f"[HTTP] {request.method} {request.url.path}", exc)
        return JSONResponse(
            status_code=500, content={"error": str(exc)}, headers=CORS_HEADERS
        )

    app.include_router(router)
    return app


app = create_app()

Instrumentator().instrument(app).expose(app)

trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
tracer_provider = trace.get_tracer_provider()
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=OTLP_HEADERS or None,
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

FastAPIInstrumentor.instrument_app(app)

app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME, "mcp_server_url": MCP_SERVER_URL})
