from collections.abc import Generator
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from cwa_api.core.config import get_settings
from cwa_api.core.security import TokenService
from cwa_api.db.base import create_schema
from cwa_api.db.session import build_session_factory, create_db_engine, get_db
from cwa_api.dependencies import get_token_service
from cwa_api.main import app
from cwa_api.services.auth_flow import AuthService

TEST_JWT_SECRET = "unit-test-secret-key-at-least-32-bytes"


@pytest.fixture
def auth_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("CWA_AUTH_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("CWA_APP_ENV", "test")
    # 测试中降低哈希轮数，避免用例耗时过长。
    monkeypatch.setenv("CWA_AUTH_PASSWORD_HASH_ITERATIONS", "1000")
    get_settings.cache_clear()
    get_token_service.cache_clear()
    yield
    get_settings.cache_clear()
    get_token_service.cache_clear()


@pytest.fixture
def db_engine():
    engine = create_db_engine("sqlite+pysqlite://", poolclass=StaticPool)
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(
        secret=TEST_JWT_SECRET,
        access_ttl=timedelta(hours=24),
        refresh_ttl=timedelta(days=7),
    )


@pytest.fixture
def auth_service(auth_env, db_session: Session, tokens: TokenService) -> AuthService:
    return AuthService(db_session, tokens=tokens, settings=get_settings())


@pytest.fixture
def api_client(auth_env, session_factory) -> Generator[TestClient, None, None]:
    app.dependency_overrides.clear()

    def override_get_db() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
