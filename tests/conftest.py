# =============================================================================
# tests/conftest.py - Pytest Configuration
# =============================================================================
# Shared fixtures: explicit Settings (never the developer's environment),
# a throwaway SQLite database per test, and a TestClient on the full app.
# =============================================================================

import pytest
from fastapi.testclient import TestClient

from guin.config import Settings
from guin.main import create_app


@pytest.fixture
def database_url(tmp_path):
    """File-backed SQLite so the server thread and the test share the data."""
    return f"sqlite:///{tmp_path / 'guin-test.sqlite'}"


@pytest.fixture
def settings(database_url):
    return Settings(
        PORT=8080,
        APP_NAME="svc",
        DATABASE_URL=database_url,
        SHUTDOWN_TIMEOUT=1.0,
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
