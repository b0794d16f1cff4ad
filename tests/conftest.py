"""Root pytest configuration for all tests."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from tests.utils import HOST_ORIGIN, SANDBOX_ORIGIN
from widgetbridge.channel.ports import Window
from widgetbridge.config.schema import Config
from widgetbridge.host import HostSession
from widgetbridge.logging import reset_logging
from widgetbridge.security.origins import OriginPolicy

# asyncio_mode = "auto" lives in pyproject.toml
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Each test starts with an unconfigured widgetbridge logger."""
    reset_logging()
    yield
    reset_logging()

@pytest.fixture
def config() -> Config:
    """Config trusting the sandbox origin, with the host origin as parent."""
    config = Config()
    config.security.host_origin = HOST_ORIGIN
    config.security.allowed_origins = [SANDBOX_ORIGIN]
    config.security.allowed_parent_origins = [HOST_ORIGIN]
    config.context.max_height = 480
    return config

@pytest.fixture
def policy() -> OriginPolicy:
    return OriginPolicy([SANDBOX_ORIGIN], host_origin=HOST_ORIGIN)

@pytest.fixture
def host_window() -> Window:
    return Window(HOST_ORIGIN, name="host")

@pytest.fixture
def frame_window(host_window: Window) -> Window:
    return host_window.create_frame(SANDBOX_ORIGIN, name="guest")

@pytest.fixture
async def session(config: Config) -> AsyncIterator[HostSession]:
    async with HostSession(config) as session:
        yield session
