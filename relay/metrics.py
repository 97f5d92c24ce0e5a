from prometheus_client import Counter, Gauge

from relay.session.events import ConnectionEvent, EventKind

connection_events = Counter(
    "relay_connection_events",
    "Backend connection lifecycle events",
    ["kind"],
)
backend_connected = Gauge(
    "relay_backend_connected",
    "1 while the MCP backend link is connected",
)
reconnect_attempts = Gauge(
    "relay_reconnect_attempts",
    "Reconnect attempts since the last successful connect",
)


def record_connection_event(event: ConnectionEvent) -> None:
    """Supervisor listener exporting lifecycle events for external monitoring."""
    connection_events.labels(kind=event.kind.value).inc()
    reconnect_attempts.set(event.attempt)
    if event.kind is EventKind.CONNECTED:
        backend_connected.set(1)
    elif event.kind in (
        EventKind.CONNECT_FAILED,
        EventKind.HEALTH_CHECK_FAILED,
        EventKind.DISCONNECTED,
    ):
        backend_connected.set(0)
