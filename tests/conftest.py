"""
Pytest configuration and fixtures
"""
from pathlib import Path
import sys

import pytest
from fastapi.testclient import TestClient


# Add backend/src to sys.path so the package imports without installing
PROJECT_ROOT = Path(__file__).resolve().parent.parent
BACKEND_SRC = PROJECT_ROOT / "backend" / "src"
if str(BACKEND_SRC) not in sys.path:
    sys.path.insert(0, str(BACKEND_SRC))

from portfolio_api.api.dependencies import AuthContext, get_auth_context
from portfolio_api.config import Settings
from portfolio_api.container import build_container
from portfolio_api.main import create_app
from portfolio_api.services.geolocation import NullGeoResolver


ADMIN_USER_ID = "9870edb5-2741-4c0a-b5cd-494a498f7485"
JWT_SECRET = "test-secret-key-with-at-least-32-bytes"

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
}


async def _override_admin() -> AuthContext:
    return AuthContext(
        user_id=ADMIN_USER_ID,
        access_token="test-token",
        email="admin@example.com",
        role="admin",
    )


async def _override_user() -> AuthContext:
    return AuthContext(user_id="user-123", access_token="test-token", email="user@example.com")


@pytest.fixture
def settings() -> Settings:
    """In-memory database and no background threads."""
    return Settings(
        database_url="sqlite://",
        jwt_secret=JWT_SECRET,
        track_rate_limit_per_minute=0,
        start_background_services=False,
    )


@pytest.fixture
def app(settings):
    app = create_app(settings=settings, geo_resolver=NullGeoResolver())
    yield app
    app.dependency_overrides.clear()
    app.state.container.shutdown()


@pytest.fixture
def container(app):
    return app.state.container


@pytest.fixture
def client(app):
    """Anonymous visitor client."""
    return TestClient(app)


@pytest.fixture
def admin_client(app):
    """Client whose requests authenticate as an admin."""
    app.dependency_overrides[get_auth_context] = _override_admin
    return TestClient(app)


@pytest.fixture
def user_client(app):
    """Client authenticated as a regular, non-admin user."""
    app.dependency_overrides[get_auth_context] = _override_user
    return TestClient(app)


@pytest.fixture
def services(settings):
    """Service container without the HTTP layer."""
    container = build_container(settings, geo_resolver=NullGeoResolver())
    yield container
    container.shutdown()


@pytest.fixture
def browser_headers():
    return dict(BROWSER_HEADERS)
