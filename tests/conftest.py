"""
Test configuration and fixtures for the UX Audit API.

Points the app at a throwaway SQLite database and upload directory before any
uxaudit module is imported, and recreates the tables for every test.
"""
import os
import tempfile

_tmp_dir = tempfile.mkdtemp(prefix="uxaudit-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_tmp_dir, 'test.db')}"
os.environ["FILE_STORAGE_PATH"] = os.path.join(_tmp_dir, "uploads")
os.environ["GEMINI_API_KEY"] = "test-primary-key"
os.environ["GEMINI_API_KEY_BACKUP"] = "test-backup-key"
os.environ["BROWSER_WS_ENDPOINTS"] = ""
os.environ["EXPERT_BATCH_PAUSE"] = "0"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from uxaudit.database import engine
from uxaudit.models import Base


@pytest_asyncio.fixture(autouse=True)
async def tables():
    """Fresh schema for each test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def client():
    """HTTP client bound to the ASGI app (lifespan/worker not started)."""
    from uxaudit.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def storage_dir(tmp_path):
    return tmp_path / "uploads"
