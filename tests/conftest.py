"""
Pytest configuration and shared fixtures.

Every test gets its own storage root under tmp_path and a fresh app built
around it, so nothing leaks between tests.
"""

import pytest
from fastapi.testclient import TestClient

from avatar_host.config import Settings
from avatar_host.main import create_app

TEST_TOKEN = "test-secret"


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def settings(upload_dir):
    return Settings(
        _env_file=None,
        AUTH_TOKEN=TEST_TOKEN,
        UPLOAD_DIR=str(upload_dir),
        MAX_UPLOAD_MB=1,
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TEST_TOKEN}"}

