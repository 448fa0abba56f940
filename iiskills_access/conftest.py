# iiskills_access/conftest.py
import sys
import pytest
from pathlib import Path

# Add repository root to PYTHONPATH
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from iiskills_access.core.database import build_engine, create_all_tables, make_session_scope
from iiskills_access.features.access.services import build_services
from iiskills_access.features.catalog.defaults import DEFAULT_APPS, DEFAULT_BUNDLES
from iiskills_access.features.catalog.loader import build_registries


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    eng = build_engine("sqlite:///:memory:")
    create_all_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_scope(engine):
    return make_session_scope(engine)


@pytest.fixture
def registries():
    return build_registries(DEFAULT_APPS, DEFAULT_BUNDLES)


@pytest.fixture
def services(session_scope, registries):
    return build_services(session_scope, registries)


@pytest.fixture
def catalog(registries):
    return registries[0]


@pytest.fixture
def bundles(registries):
    return registries[1]


@pytest.fixture
def resolver(services):
    return services.resolver


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def client(services, monkeypatch):
    """TestClient wired to the per-test database and known admin and service keys."""
    from fastapi.testclient import TestClient

    from iiskills_access.core.config import settings
    from iiskills_access.features.access.services import get_services
    from iiskills_access.main import app

    monkeypatch.setattr(settings, "ADMIN_KEY", "test-admin-key")
    monkeypatch.setattr(settings, "SERVICE_KEY", "test-service-key")
    monkeypatch.delenv("ADMIN_API_KEY", raising=False)
    app.dependency_overrides[get_services] = lambda: services
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_services, None)
