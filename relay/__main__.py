import logging

import uvicorn

from relay.vars import HOST, LOG_LEVEL, MCP_SERVER_URL, PORT

logger = logging.getLogger("uvicorn.error")


def main() -> None:
    logger.info("Starting HTTP Wrapper Server...")
    print(f"HTTP Wrapper Server running on http://{HOST}:{PORT}")
    print("Available endpoints:")
    print("  GET  /ping - Health check")
    print("  GET  /tools - List available tools")
    print("  POST /tools/get-cookie - Get cookies from a website")
    print(f"Connecting to MCP server at: {MCP_SERVER_URL}")
    uvicorn.run("relay.server:app", host=HOST, port=PORT, log_level=LOG_LEVEL)


if __name__ == "__main__":
    main()
