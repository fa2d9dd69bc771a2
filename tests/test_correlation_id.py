from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from gasopper_crm.auth.dependencies import get_current_actor
from gasopper_crm.context import get_correlation_id
from gasopper_crm.core.config import get_settings
from gasopper_crm.core.database import Base, get_db
from gasopper_crm.directory.models import Role, User
from gasopper_crm.main import app
from gasopper_crm.middleware.correlation_id import resolve_correlation_id
from gasopper_crm.middleware.rate_limit import reset_rate_limiter
from gasopper_crm.security.context import Actor


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    session.add(
        User(
            id=10,
            employee_id="E010",
            email="user10@gasopper.com",
            phone_number="555-0100",
            first_name="Sales",
            last_name="Person",
            role_id=int(Role.SALESPERSON),
            password_hash="not-a-real-hash",
            is_active=True,
        )
    )
    session.commit()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_state() -> Generator[None, None, None]:
    reset_rate_limiter()
    get_settings.cache_clear()
    yield
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_actor() -> Actor:
        return Actor(user_id=10, role=Role.SALESPERSON, correlation_id=get_correlation_id())

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = override_get_current_actor
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.get("/api/leads/424242")
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    body = response.json()
    assert body["correlation_id"] == header_value
    assert body["code"] == "not_found"


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get("/api/leads/424242", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.headers.get("x-request-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_malformed_correlation_id_is_replaced(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Correlation-Id": "bad id with spaces"})
    assert response.status_code == 200
    assert response.headers.get("x-correlation-id") != "bad id with spaces"


def test_resolve_correlation_id() -> None:
    assert resolve_correlation_id("req.42:retry-1") == "req.42:retry-1"
    assert resolve_correlation_id("x" * 129) != "x" * 129
    assert resolve_correlation_id(None)
    assert resolve_correlation_id("") != ""


def test_rate_limited_response_includes_correlation_id(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_MUTATIONS_PER_MINUTE", "1")
    get_settings.cache_clear()
    reset_rate_limiter()

    payload = {
        "name": "Corr Lead",
        "phone_number": "555-0199",
        "email": "corr@acmefuels.com",
        "address": "1 Main St",
        "expected_stations": 1,
    }
    first = client.post("/api/leads", json=payload, headers={"X-Correlation-Id": "corr-rate-1"})
    assert first.status_code == 201

    second = client.post("/api/leads", json=payload, headers={"X-Correlation-Id": "corr-rate-1"})
    assert second.status_code == 429
    assert second.json()["correlation_id"] == "corr-rate-1"
    assert second.headers.get("x-correlation-id") == "corr-rate-1"
