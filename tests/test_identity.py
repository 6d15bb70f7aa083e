from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from app import main as app_main
from app.infra import db


@pytest.fixture()
def identity_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "identity_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _bootstrap_admin(client: TestClient) -> None:
    response = client.post(
        "/api/identity/bootstrap-admin",
        json={"username": "admin", "name": "Admin", "password": "admin-pass"},
    )
    assert response.status_code == 201


def _login(client: TestClient, username: str, password: str) -> str:
    response = client.post("/api/identity/login", json={"username": username, "password": password})
    assert response.status_code == 200
    return response.json()["access_token"]


def test_bootstrap_admin_only_once(identity_client: TestClient) -> None:
    _bootstrap_admin(identity_client)

    again = identity_client.post(
        "/api/identity/bootstrap-admin",
        json={"username": "other", "name": "Other", "password": "pw"},
    )
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "Conflict"


def test_login_returns_role_and_permissions(identity_client: TestClient) -> None:
    _bootstrap_admin(identity_client)

    response = identity_client.post("/api/identity/login", json={"username": "admin", "password": "admin-pass"})
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["name"] == "Admin"
    assert body["role"] == "admin"
    assert body["permissions"] == ["*"]

    me = identity_client.get("/api/identity/me", headers=_auth_header(body["access_token"]))
    assert me.status_code == 200
    assert me.json()["username"] == "admin"


def test_login_rejects_bad_password(identity_client: TestClient) -> None:
    _bootstrap_admin(identity_client)

    response = identity_client.post("/api/identity/login", json={"username": "admin", "password": "wrong"})
    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "AuthError"


def test_missing_or_invalid_token_is_unauthorized(identity_client: TestClient) -> None:
    assert identity_client.get("/api/identity/me").status_code == 401
    assert identity_client.get("/api/identity/me", headers=_auth_header("not-a-token")).status_code == 401


def test_user_role_cannot_manage_users(identity_client: TestClient) -> None:
    _bootstrap_admin(identity_client)
    admin_token = _login(identity_client, "admin", "admin-pass")

    created = identity_client.post(
        "/api/identity/users",
        json={"username": "jdoe", "name": "Jane Doe", "password": "user-pass"},
        headers=_auth_header(admin_token),
    )
    assert created.status_code == 201
    assert created.json()["role"] == "user"

    duplicate = identity_client.post(
        "/api/identity/users",
        json={"username": "jdoe", "name": "Jane Again", "password": "user-pass"},
        headers=_auth_header(admin_token),
    )
    assert duplicate.status_code == 409

    user_token = _login(identity_client, "jdoe", "user-pass")
    denied = identity_client.get("/api/identity/users", headers=_auth_header(user_token))
    assert denied.status_code == 403

    listed = identity_client.get("/api/identity/users", headers=_auth_header(admin_token))
    assert listed.status_code == 200
    assert sorted(item["username"] for item in listed.json()) == ["admin", "jdoe"]
