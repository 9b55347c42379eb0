"""
Pytest configuration and fixtures for the test suite.
"""
import pytest
import pytest_asyncio
import os
import sys
import time
from typing import List

# Add src directory (and the repo root, for tests.fixtures) to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from shortlink_client import ClientSettings, CredentialSet, ShortlinkClient
from shortlink_client.auth_event_logger import configure_auth_event_logger
from tests.fixtures.fake_backend import FakeBackend


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test"
    )


@pytest.fixture(autouse=True)
def auth_event_log_dir(tmp_path):
    """Keep auth_events.log inside the test's temp dir."""
    logs_dir = tmp_path / "logs"
    configure_auth_event_logger(logs_dir)
    yield logs_dir
    configure_auth_event_logger(None)


class RecordingSleep:
    """Drop-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def settings(tmp_path):
    return ClientSettings(
        api_url="http://shortlink.test",
        state_file=tmp_path / "auth_state.json",
        refresh_timeout_seconds=2.0,
    )


@pytest_asyncio.fixture
async def client(backend, settings, fake_sleep):
    c = ShortlinkClient(settings, transport=backend.transport, sleep=fake_sleep)
    yield c
    await c.aclose()


@pytest.fixture
def expired_session():
    """Credential set whose access token T1 has already expired."""
    return CredentialSet("T1", "R1", time.time() - 1, "known@example.com")


@pytest.fixture
def live_session():
    return CredentialSet("T1", "R1", time.time() + 3600, "known@example.com")
