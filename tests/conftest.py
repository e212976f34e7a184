"""Shared test fixtures and configuration for Pageshot tests."""

import sys
from pathlib import Path

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pageshot.capture.readiness import ReadinessClassifier
from pageshot.capture.resource_pool import ResourcePool
from pageshot.capture.selector_resolver import SelectorResolver
from pageshot.models.capture import CaptureRequest

from tests.fakes import FakeClock, FakeLauncher, FakePage


@pytest.fixture
def clock():
    """Manually advanced clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def pool(clock, launcher):
    """Resource pool backed by fake browsers."""
    return ResourcePool(max_browsers=2, session_ttl_s=1800, idle_ttl_s=600, clock=clock, launcher=launcher)


@pytest.fixture
def readiness():
    return ReadinessClassifier(settle_ms=100)


@pytest.fixture
def resolver():
    return SelectorResolver()


@pytest.fixture
def page():
    return FakePage(url="https://app.example.com/dashboard")


@pytest.fixture
def sample_request():
    """Plain capture request with the default switches."""
    return CaptureRequest(url="https://app.example.com/dashboard")


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
