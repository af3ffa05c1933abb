"""Shared test configuration; must load before any src module is imported."""

import os

# Override database URL and Simpro settings before any src modules are imported.
os.environ["AUTOMATION_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["AUTOMATION_SIMPRO_BASE_URL"] = "https://simpro.test/api/v1.0"
os.environ["AUTOMATION_SIMPRO_COMPANY_ID"] = "0"
os.environ["AUTOMATION_SIMPRO_RETRY_BACKOFF"] = "0"

import pytest
from src.database import engine, Base
from src.models import processed_key  # noqa: F401


@pytest.fixture(autouse=True)
async def _reset_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
