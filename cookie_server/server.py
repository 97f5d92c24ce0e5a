"""
Demo MCP backend exposing ``chrome_get_cookie`` from a Netscape cookie file.

Run it next to the relay to exercise the whole chain without a browser:

    COOKIE_JAR_FILE=cookies.txt python -m cookie_server.server
"""

import json
import logging
import os
from http.cookiejar import Cookie, MozillaCookieJar
from typing import List
from urllib.parse import urlparse

from mcp.server.fastmcp import FastMCP

logger = logging.getLogger(__name__)

# Attribute names http.cookiejar may record for "#HttpOnly_" lines.
HTTPONLY_ATTRS = ("HTTPOnly", "HttpOnly")

COOKIE_JAR_FILE = os.getenv("COOKIE_JAR_FILE", "cookies.txt")
COOKIE_SERVER_HOST = os.getenv("COOKIE_SERVER_HOST", "127.0.0.1")
COOKIE_SERVER_PORT = int(os.getenv("COOKIE_SERVER_PORT", "12306"))


def load_cookie_jar(path: str) -> MozillaCookieJar:
    jar = MozillaCookieJar()
    if os.path.exists(path):
        jar.load(path, ignore_discard=True, ignore_expires=True)
    else:
        logger.warning(f"[CookieServer] Cookie file {path} not found, serving no cookies")
    return jar


def cookies_for_domain(jar: MozillaCookieJar, domain: str) -> List[Cookie]:
    """Cookies whose domain is ``domain`` or one of its subdomains."""
    domain = domain.lower()
    matches = []
    for cookie in jar:
        cookie_domain = cookie.domain.lstrip(".").lower()
        if cookie_domain == domain or cookie_domain.endswith("." + domain):
            matches.append(cookie)
    return matches


def describe_cookie(cookie: Cookie) -> dict:
    return {
        "name": cookie.name,
        "value": cookie.value,
        "domain": cookie.domain,
        "path": cookie.path,
        "secure": cookie.secure,
        "httpOnly": any(cookie.has_nonstandard_attr(a) for a in HTTPONLY_ATTRS),
        "expirationDate": cookie.expires,
        "sameSite": "unspecified",
    }


def chrome_get_cookie(url: str) -> str:
    """Get all cookies stored for the domain of a website URL"""
    if not url or not url.startswith("http"):
        raise ValueError("Valid URL starting with http:// or https:// is required")
    domain = urlparse(url).hostname
    if not domain:
        raise ValueError("Invalid URL format provided")

    cookies = cookies_for_domain(load_cookie_jar(COOKIE_JAR_FILE), domain)
    if not cookies:
        message = f"No cookies found for domain: {domain}"
    else:
        message = f"Successfully retrieved {len(cookies)} cookies from {domain}"
    logger.info(f"[CookieServer] {message}")

    return json.dumps(
        {
            "success": True,
            "message": message,
            "url": url,
            "domain": domain,
            "cookies": [describe_cookie(c) for c in cookies],
            "cookieString": "; ".join(f"{c.name}={c.value or ''}" for c in cookies),
        }
    )


def create_cookie_server(
    host: str = COOKIE_SERVER_HOST, port: int = COOKIE_SERVER_PORT
) -> FastMCP:
    server = FastMCP("chrome-cookie-server", host=host, port=port)
    server.tool()(chrome_get_cookie)
    return server


mcp = create_cookie_server()


if __name__ == "__main__":
    mcp.run(transport="streamable-http")
