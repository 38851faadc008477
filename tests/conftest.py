"""Test configuration and fixtures."""

import pytest
import pytest_asyncio
from structlog.testing import capture_logs

from cranberry.config import CranberrySettings
from tests.helpers import FakeRegistry


@pytest_asyncio.fixture
async def source_registry():
    """Anonymous registry holding the images to sync."""
    registry = await FakeRegistry().start()
    yield registry
    await registry.close()


@pytest_asyncio.fixture
async def dest_registry():
    """Registry requiring Basic auth as user/secret."""
    registry = await FakeRegistry(credentials=("user", "secret")).start()
    yield registry
    await registry.close()


@pytest.fixture
def settings(monkeypatch, tmp_path):
    """Settings isolated from the developer's environment and .env file."""
    monkeypatch.chdir(tmp_path)
    for key in ("LOG_LEVEL", "LOG_JSON", "DRY_RUN", "REGISTRY_TIMEOUT", "VERSION_CHECK_CONCURRENCY"):
        monkeypatch.delenv(f"CRANBERRY_{key}", raising=False)
    return CranberrySettings(registry_timeout=5)


@pytest.fixture
def captured_logs():
    """Capture structlog events emitted during a test."""
    with capture_logs() as logs:
        yield logs


def pytest_configure(config):
    """Configure pytest markers and settings."""
    config.addinivalue_line(
        "markers", "integration: end-to-end test against the in-process fake registry"
    )
