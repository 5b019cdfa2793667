"""Shared fixtures: sample profiles, configuration, and stand-ins for the bus and API client."""

import logging
import sys
import threading
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from gridloss.config import Configuration
from gridloss.errors import BusError, ProfileClientError
from gridloss.indexer import build_resource_index
from gridloss.profiles import parse_equipment_data, parse_topology_data
from gridloss.topology import build_topology_grid

FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture(autouse=True)
def restore_package_logger():
    """Undo handlers and levels installed by setup_logging so caplog keeps working."""
    package_logger = logging.getLogger("gridloss")
    handlers = list(package_logger.handlers)
    level, propagate = package_logger.level, package_logger.propagate
    yield
    package_logger.handlers[:] = handlers
    package_logger.setLevel(level)
    package_logger.propagate = propagate


@pytest.fixture
def topology_bytes() -> bytes:
    return (FIXTURES / "topology.json").read_bytes()


@pytest.fixture
def equipment_bytes() -> bytes:
    return (FIXTURES / "equipment.json").read_bytes()


@pytest.fixture
def topology(topology_bytes):
    return parse_topology_data(topology_bytes)


@pytest.fixture
def equipment_by_id(equipment_bytes):
    return {e.id: e for e in parse_equipment_data(equipment_bytes)}


@pytest.fixture
def index(equipment_by_id):
    return build_resource_index(equipment_by_id, emit_types=[8])


@pytest.fixture
def grid(topology):
    grid = build_topology_grid(topology)
    grid.set_equipment_electrical_state()
    return grid


@pytest.fixture
def config():
    return Configuration.from_dict({
        "config_api": {
            "url": ["http://broken:1", "http://ok:8080"],
            "hostname": "config.grid.local",
            "username": "alice",
            "password": "secret",
        },
        "rtdb": {"input_bus": "tcp://127.0.0.1:5557", "output_bus": "tcp://127.0.0.1:5556"},
        "grid_losses": {"log": "debug", "queue": 16, "api_prefix": "/v1"},
    })


@pytest.fixture
def cache_dir(tmp_path):
    path = tmp_path / "cache"
    path.mkdir()
    return path


class FakeProfileClient:
    """Serves canned documents per base URL; hosts listed in ``fail_logon`` reject logon."""

    def __init__(self, base_url, host_virtual_name, timeout, documents, fail_logon, calls):
        self.base_url = base_url
        self.host_virtual_name = host_virtual_name
        self.timeout = timeout
        self.documents = documents
        self.fail_logon = fail_logon
        self.calls = calls
        self.closed = False

    def logon(self, username, password):
        self.calls.append(("logon", self.base_url, username, password))
        if self.base_url in self.fail_logon:
            raise ProfileClientError(f"connection refused: {self.base_url}", self.base_url)
        return {}

    def get_profile(self, path):
        self.calls.append(("get", self.base_url, path))
        try:
            return self.documents[self.base_url][path]
        except KeyError:
            raise ProfileClientError(f"404 {path}", self.base_url, 404)

    def close(self):
        self.closed = True


@pytest.fixture
def client_factory():
    """Client factory for ProfileLoader; set ``documents`` and ``fail_logon`` on it per test."""
    calls = []

    def factory(base_url, host_virtual_name, timeout):
        return FakeProfileClient(
            base_url, host_virtual_name, timeout,
            factory.documents, factory.fail_logon, calls,
        )

    factory.documents = {}
    factory.fail_logon = set()
    factory.calls = calls
    return factory


class FakeBus:
    """In-process stand-in for ZmqBus."""

    def __init__(self, max_publishers=1, max_subscribers=1):
        self.subscribers = []
        self.publishers = []
        self.handlers = {}
        self.sent = []
        self.fail_send = False
        self.closed = False
        self.stop_error = None
        self.loop_entered = threading.Event()
        self._stopped = threading.Event()

    def add_subscriber(self, endpoint):
        self.subscribers.append(endpoint)
        return len(self.subscribers) - 1

    def add_publisher(self, endpoint):
        self.publishers.append(endpoint)
        return len(self.publishers) - 1

    def set_receive_handler(self, idx, handler):
        self.handlers[idx] = handler

    def deliver(self, *frames):
        self.handlers[0](list(frames))

    def send(self, idx, data):
        if self.fail_send:
            raise BusError("socket closed")
        self.sent.append(data)
        return len(data)

    def waiting_loop(self):
        self.loop_entered.set()
        self._stopped.wait()
        return self.stop_error

    def stop(self, error=None):
        if error is not None and self.stop_error is None:
            self.stop_error = error
        self._stopped.set()

    def close(self):
        self.closed = True


@pytest.fixture
def fake_bus():
    return FakeBus()
