from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class EventKind(str, Enum):
    CONNECTED = "connected"
    CONNECT_FAILED = "connect_failed"
    RETRY_SCHEDULED = "retry_scheduled"
    RECONNECT_EXHAUSTED = "reconnect_exhausted"
    HEALTH_CHECK_FAILED = "health_check_failed"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class ConnectionEvent:
    """Lifecycle event reported by the supervisor to its listeners."""

    kind: EventKind
    attempt: int
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventListener = Callable[[ConnectionEvent], None]
