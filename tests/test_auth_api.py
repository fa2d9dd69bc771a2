from __future__ import annotations

import logging
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from gasopper_crm.core.auth import decode_token
from gasopper_crm.core.config import get_settings
from gasopper_crm.core.database import Base, get_db
from gasopper_crm.core.passwords import hash_password
from gasopper_crm.directory.models import Role, User
from gasopper_crm.main import app
from gasopper_crm.middleware.rate_limit import reset_rate_limiter


@pytest.fixture(autouse=True)
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    monkeypatch.setenv("PASSWORD_HASH_ROUNDS", "4")
    monkeypatch.setenv("JWT_SECRET", "auth-test-secret")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


def _user(user_id: int, role: Role, manager_id: int | None = None, is_active: bool = True) -> User:
    return User(
        id=user_id,
        employee_id=f"E{user_id:03d}",
        email=f"user{user_id}@gasopper.com",
        phone_number="555-0100",
        first_name="User",
        last_name=str(user_id),
        role_id=int(role),
        manager_id=manager_id,
        password_hash=hash_password(f"password-{user_id}"),
        is_active=is_active,
    )


@pytest.fixture()
def db_session(configure_env: None) -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    session.add_all(
        [
            _user(1, Role.ADMIN),
            _user(5, Role.MANAGER),
            _user(10, Role.SALESPERSON, manager_id=5),
            _user(11, Role.SALESPERSON, manager_id=5, is_active=False),
        ]
    )
    session.commit()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _login(client: TestClient, user_id: int) -> str:
    response = client.post(
        "/api/auth/login",
        json={"email": f"user{user_id}@gasopper.com", "password": f"password-{user_id}"},
    )
    assert response.status_code == 200
    return response.json()["access_token"]


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_login_issues_token_with_role_claims(client: TestClient, db_session: Session) -> None:
    response = client.post(
        "/api/auth/login",
        json={"email": "user10@gasopper.com", "password": "password-10"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["id"] == 10
    assert body["user"]["manager_name"] == "User 5"
    claims = decode_token(body["access_token"])
    assert claims["sub"] == "10"
    assert claims["role"] == "Salesperson"
    assert claims["role_id"] == 3
    assert claims["employee_id"] == "E010"
    assert claims["jti"]

    user = db_session.get(User, 10)
    assert user is not None
    assert user.last_login is not None


def test_login_rejects_bad_credentials_and_inactive_users(client: TestClient) -> None:
    wrong = client.post("/api/auth/login", json={"email": "user10@gasopper.com", "password": "nope"})
    unknown = client.post("/api/auth/login", json={"email": "ghost@gasopper.com", "password": "nope"})
    inactive = client.post("/api/auth/login", json={"email": "user11@gasopper.com", "password": "password-11"})

    for response in (wrong, unknown, inactive):
        assert response.status_code == 401
        assert response.json()["code"] == "authentication_failed"
    assert wrong.json()["message"] == inactive.json()["message"]


def test_me_requires_a_valid_token(client: TestClient) -> None:
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers=_auth("garbage")).status_code == 401

    token = _login(client, 10)
    me = client.get("/api/auth/me", headers=_auth(token))
    assert me.status_code == 200
    assert me.json()["email"] == "user10@gasopper.com"


def test_logout_revokes_the_session(client: TestClient) -> None:
    token = _login(client, 10)

    logout = client.post("/api/auth/logout", headers=_auth(token))
    assert logout.status_code == 200
    assert logout.json() == {"message": "Logged out"}

    assert client.get("/api/auth/me", headers=_auth(token)).status_code == 401


def test_deactivated_user_token_stops_working(client: TestClient) -> None:
    admin_token = _login(client, 1)
    sales_token = _login(client, 10)
    assert client.get("/api/leads", headers=_auth(sales_token)).status_code == 200

    deactivated = client.delete("/api/users/10", headers=_auth(admin_token))
    assert deactivated.status_code == 200

    assert client.get("/api/leads", headers=_auth(sales_token)).status_code == 401


def test_role_change_applies_on_next_request(client: TestClient) -> None:
    admin_token = _login(client, 1)
    sales_token = _login(client, 10)
    assert client.get("/api/leads/team-leads", headers=_auth(sales_token)).status_code == 403

    promoted = client.put("/api/users/10", json={"role_id": 2}, headers=_auth(admin_token))
    assert promoted.status_code == 200

    assert client.get("/api/leads/team-leads", headers=_auth(sales_token)).status_code == 200


def test_request_log_names_the_resolved_actor(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    token = _login(client, 10)
    caplog.set_level(logging.INFO)

    assert client.get("/api/leads", headers=_auth(token)).status_code == 200

    records = [
        record
        for record in caplog.records
        if record.name == "gasopper.request" and getattr(record, "path", None) == "/api/leads"
    ]
    assert records
    assert getattr(records[-1], "actor_id", None) == 10
    assert getattr(records[-1], "actor_role", None) == "Salesperson"
