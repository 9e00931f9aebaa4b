"""
Shared fixtures for the chat room tests.
"""
import pytest
from fastapi.testclient import TestClient

from chatroom.core.config import Settings
from chatroom.core.metrics import reset_metrics
from chatroom.main import create_app


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def get_test_settings(**overrides) -> Settings:
    """Override settings for testing."""
    values = dict(
        store_backend="memory",
        message_retention=1000,
        rate_limit_ms=1000,
        log_level="DEBUG",
        log_format="text",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return get_test_settings()


@pytest.fixture
def app(settings, clock):
    """A fresh application, so no state leaks between tests."""
    return create_app(settings, clock=clock)


@pytest.fixture
def client(app):
    """Create a test client sharing one event loop for HTTP and WebSocket."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def chat(app):
    return app.state.chat
