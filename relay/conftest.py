import pytest

from relay.session import ConnectionSupervisor, RequestForwarder
from relay.utils_tests.fake_link import FakeBackend
from relay.utils_tests.fake_scheduler import FakeScheduler


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def events():
    return []


@pytest.fixture
def supervisor(backend, scheduler, events):
    """Supervisor over a scripted backend with a virtual clock."""
    sup = ConnectionSupervisor(
        backend.factory,
        scheduler=scheduler,
        max_reconnect_attempts=5,
        reconnect_delay=2.0,
        health_check_interval=30.0,
        health_check_timeout=1.0,
    )
    sup.add_listener(events.append)
    return sup


@pytest.fixture
def forwarder(supervisor):
    return RequestForwarder(supervisor, call_timeout=30.0)
