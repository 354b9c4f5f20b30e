"""
Pytest fixtures and configuration for Scheduled Publisher test suite.
"""

import pytest
import asyncio
import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

# Must be set before api.config is imported
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_DIR", "/tmp/publisher_test_logs")
os.environ.setdefault("COOKIE_DIR", "/tmp/publisher_test_cookies")


# === Database ===

@pytest.fixture(autouse=True)
def test_db(tmp_path, monkeypatch):
    """Point the job store at a fresh per-test database."""
    from api import database

    db_path = tmp_path / "test_publisher.db"
    monkeypatch.setattr(database, "DB_PATH", db_path)
    asyncio.run(database.init_database())
    yield db_path


# === Test Data Fixtures ===

@pytest.fixture
def image_file(tmp_path):
    """A small file with an image extension."""
    path = tmp_path / "photo.png"
    path.write_bytes(b"\x89PNG\r\n\x1a\n")
    return path


@pytest.fixture
def post_row():
    """A valid post_jobs row without images."""
    return {
        "id": "post_test_1",
        "gallery_url": "https://gall.dcinside.com/mgallery/board/lists/?id=testgall",
        "title": "Test post",
        "content_html": "<p>Hello</p>",
        "password": "1234",
        "nickname": "tester",
        "headtext": None,
        "image_paths": [],
        "login_id": None,
        "login_password": None,
    }


@pytest.fixture
def post_params(post_row):
    from adapters.base import PostParams
    return PostParams.from_row(post_row)


@pytest.fixture
def mock_browser_manager():
    """Mock browser manager for testing."""
    session = MagicMock()
    session.session_id = "test-session-123"
    session.page = MagicMock()
    session.page.url = "https://gall.dcinside.com/mgallery/board/lists/?id=testgall"
    session.context = MagicMock()

    mock = MagicMock()
    mock.create_session = AsyncMock(return_value=session)
    mock.close_session = AsyncMock()
    mock.close_all = AsyncMock()
    return mock


@pytest.fixture
def no_sleep(monkeypatch):
    """Make retry backoff and adapter pauses instant."""
    fake_sleep = AsyncMock()
    monkeypatch.setattr("asyncio.sleep", fake_sleep)
    monkeypatch.setattr("adapters.dcinside.human_like_delay", AsyncMock())
    return fake_sleep


# === API Test Client ===

@pytest.fixture
def client(monkeypatch):
    """TestClient with the pollers disabled."""
    from fastapi.testclient import TestClient
    from api.config import config
    from api.main import app

    monkeypatch.setattr(config, "SCHEDULER_ENABLED", False)
    with TestClient(app) as test_client:
        yield test_client


# === Markers ===

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "e2e: End-to-end tests against a live site (slow)")
