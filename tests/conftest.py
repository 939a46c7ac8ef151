"""Shared fixtures: a store on a temp database, a gate with a test secret, an app client."""

import pytest
from fastapi.testclient import TestClient

from personal_context.config import AuthConfig, Settings, StoreConfig
from personal_context.main import create_app
from personal_context.security import AuthGate
from personal_context.services.entity_store import EntityStore

TEST_KEY = bytes(range(32))
TEST_JWT_SECRET = "test-jwt-secret"


@pytest.fixture
def store_config(tmp_path) -> StoreConfig:
    # Nested directory so the store has to create it
    return StoreConfig(encryption_key=TEST_KEY, db_path=tmp_path / "data" / "personal-context.db")


@pytest.fixture
def store(store_config):
    s = EntityStore(store_config)
    yield s
    s.close()


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(jwt_secret=TEST_JWT_SECRET)


@pytest.fixture
def gate(auth_config) -> AuthGate:
    return AuthGate(auth_config)


@pytest.fixture
def settings(store_config, auth_config) -> Settings:
    return Settings(store=store_config, auth=auth_config)


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def bearer(gate):
    """Build Authorization headers for a token carrying the given scopes."""

    def _headers(*scopes: str, subject: str = "test-user") -> dict[str, str]:
        return {"Authorization": f"Bearer {gate.generate_token(subject, scopes)}"}

    return _headers


@pytest.fixture
def user(store) -> dict:
    return store.add("user", {"email": "jane@example.com", "name": "Jane Doe"})
