# tests/conftest.py
from __future__ import annotations

import os

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Configure the environment before faultline reads settings.
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("LOG_FORMAT", "json")
os.environ["SENTRY_DSN"] = ""
os.environ["RATE_LIMIT_ENABLED"] = "0"

from faultline.core.config import Settings, get_settings  # noqa: E402
from faultline.infra.transactions import TransactionCoordinator  # noqa: E402
from faultline.main import create_app  # noqa: E402
from tests.fakes import InMemoryDataAccess  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(app_env="test", rate_limit_enabled=False, sentry_dsn=None)


@pytest.fixture
def data_access() -> InMemoryDataAccess:
    return InMemoryDataAccess()


@pytest.fixture
def coordinator(data_access: InMemoryDataAccess) -> TransactionCoordinator:
    return TransactionCoordinator(data_access)


@pytest.fixture
def app(settings: Settings, coordinator: TransactionCoordinator):
    return create_app(settings, coordinator=coordinator)


@pytest_asyncio.fixture
async def app_client(app):
    # raise_app_exceptions=False: Starlette re-raises after rendering the 500 envelope
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
