import asyncio
from typing import Any, Dict, List, Optional

from relay.models import Operation
from relay.session.errors import ConnectivityError, LinkClosedError
from relay.session.link import RPCLink

DEFAULT_TOOL_RESULT = {"content": [{"type": "text", "text": "{}"}], "isError": False}


def _take(outcomes: list, default: Any) -> Any:
    if not outcomes:
        return default
    outcome = outcomes.pop(0)
    if isinstance(outcome, BaseException):
        raise outcome
    return outcome


class FakeBackend:
    """Scripted backend shared by every link a supervisor creates."""

    def __init__(self) -> None:
        self.links: List["FakeLink"] = []
        self.open_attempts = 0
        self.open_errors: List[Optional[BaseException]] = []
        self.refuse_connections = False
        self.open_gate: Optional[asyncio.Event] = None
        self.invoke_outcomes: list = []
        self.send_outcomes: list = []
        self.ping_error: Optional[BaseException] = None
        self.pings = 0
        self.calls: List[tuple] = []
        self.live = 0
        self.max_live = 0

    def factory(self) -> "FakeLink":
        link = FakeLink(self)
        self.links.append(link)
        return link

    def next_open_error(self) -> Optional[BaseException]:
        if self.open_errors:
            return self.open_errors.pop(0)
        if self.refuse_connections:
            return ConnectivityError("connect ECONNREFUSED 127.0.0.1:12306")
        return None


class FakeLink(RPCLink):
    def __init__(self, backend: FakeBackend) -> None:
        self.backend = backend
        self.opened = False
        self.closed = False

    @property
    def is_open(self) -> bool:
        return self.opened and not self.closed

    def _check(self) -> None:
        if not self.is_open:
            raise LinkClosedError("MCP client connection is closed")

    async def open(self) -> None:
        self.backend.open_attempts += 1
        if self.backend.open_gate is not None:
            await self.backend.open_gate.wait()
        error = self.backend.next_open_error()
        if error is not None:
            raise error
        self.opened = True
        self.backend.live += 1
        self.backend.max_live = max(self.backend.max_live, self.backend.live)

    async def invoke(self, name: str, arguments: Dict[str, Any], timeout: float = 30) -> Any:
        self._check()
        self.backend.calls.append(("invoke", name, arguments, timeout))
        return _take(self.backend.invoke_outcomes, DEFAULT_TOOL_RESULT)

    async def send(self, operation: Operation) -> Any:
        self._check()
        self.backend.calls.append(("send", operation.method, operation.params))
        return _take(self.backend.send_outcomes, {})

    async def ping(self, timeout: float) -> None:
        self._check()
        self.backend.pings += 1
        if self.backend.ping_error is not None:
            raise self.backend.ping_error

    async def close(self) -> None:
        if self.opened and not self.closed:
            self.backend.live -= 1
        self.closed = True
