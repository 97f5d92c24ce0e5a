import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "mcp-http-relay")
HOST = os.environ.get("HOST", "127.0.0.1")
PORT = int(os.environ.get("PORT", "12307"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "info").lower()

MCP_SERVER_URL = os.environ.get("MCP_SERVER_URL", "http://127.0.0.1:12306/mcp")
MCP_CLIENT_NAME = os.environ.get("MCP_CLIENT_NAME", "HTTP-Wrapper-Client")
MCP_CLIENT_VERSION = os.environ.get("MCP_CLIENT_VERSION", "1.0.0")

MAX_RECONNECT_ATTEMPTS = int(os.getenv("MAX_RECONNECT_ATTEMPTS", "5"))
RECONNECT_DELAY_MS = int(os.getenv("RECONNECT_DELAY_MS", "2000"))
# Seconds
HEALTH_CHECK_INTERVAL = float(os.getenv("HEALTH_CHECK_INTERVAL", "30"))
HEALTH_CHECK_TIMEOUT = float(os.getenv("HEALTH_CHECK_TIMEOUT", "10"))
TOOL_CALL_TIMEOUT = float(os.getenv("TOOL_CALL_TIMEOUT", "30"))
LINK_OPEN_TIMEOUT = float(os.getenv("LINK_OPEN_TIMEOUT", "10"))
INITIAL_CONNECT_DELAY = float(os.getenv("INITIAL_CONNECT_DELAY", "1"))

COOKIE_TOOL_NAME = os.getenv("COOKIE_TOOL_NAME", "chrome_get_cookie")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
