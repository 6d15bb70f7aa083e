from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from app import main as app_main
from app.domain.models import AuditLog, EventRecord
from app.infra import db


@pytest.fixture()
def asset_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "asset_test.db"
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


def _admin_token(client: TestClient) -> str:
    response = client.post(
        "/api/identity/bootstrap-admin",
        json={"username": "admin", "name": "Admin", "password": "admin-pass"},
    )
    assert response.status_code == 201
    login = client.post("/api/identity/login", json={"username": "admin", "password": "admin-pass"})
    assert login.status_code == 200
    return login.json()["access_token"]


def _user_token(client: TestClient, admin_token: str) -> str:
    created = client.post(
        "/api/identity/users",
        json={"username": "tech", "name": "Tech User", "password": "tech-pass"},
        headers=_auth_header(admin_token),
    )
    assert created.status_code == 201
    login = client.post("/api/identity/login", json={"username": "tech", "password": "tech-pass"})
    assert login.status_code == 200
    return login.json()["access_token"]


def _create_asset(client: TestClient, token: str, **fields: object) -> dict:
    response = client.post("/api/assets", json=fields, headers=_auth_header(token))
    assert response.status_code == 201, response.text
    return response.json()


def test_next_tag_follows_highest_numeric_suffix(asset_client: TestClient) -> None:
    token = _admin_token(asset_client)
    headers = _auth_header(token)

    assert asset_client.get("/api/assets/next-tag", headers=headers).json() == {"tag": "AST-001"}

    _create_asset(asset_client, token, tag="AST-007")
    _create_asset(asset_client, token, tag="LAPTOP-X")
    _create_asset(asset_client, token, tag="AST-002")

    assert asset_client.get("/api/assets/next-tag", headers=headers).json() == {"tag": "AST-008"}


def test_tag_must_be_present_and_unique(asset_client: TestClient) -> None:
    token = _admin_token(asset_client)
    headers = _auth_header(token)
    _create_asset(asset_client, token, tag="AST-001")

    blank = asset_client.post("/api/assets", json={"tag": "   "}, headers=headers)
    assert blank.status_code == 422
    assert blank.json()["detail"]["code"] == "ValidationError"

    duplicate = asset_client.post("/api/assets", json={"tag": "ast-001"}, headers=headers)
    assert duplicate.status_code == 422

    other = _create_asset(asset_client, token, tag="AST-002")
    renamed = asset_client.patch(f"/api/assets/{other['id']}", json={"tag": "AST-001"}, headers=headers)
    assert renamed.status_code == 422


def test_status_owned_fields_are_cleared(asset_client: TestClient) -> None:
    token = _admin_token(asset_client)
    headers = _auth_header(token)

    created = _create_asset(
        asset_client,
        token,
        tag="AST-010",
        tracking_status="in-use",
        repair_status="screen cracked",
        needs_reclone=True,
        loaned_to="Someone",
    )
    assert created["repair_status"] == ""
    assert created["needs_reclone"] is False
    assert created["loaned_to"] is None

    in_repair = asset_client.patch(
        f"/api/assets/{created['id']}",
        json={"tracking_status": "in-repair", "repair_status": "keyboard", "needs_reclone": True},
        headers=headers,
    )
    assert in_repair.status_code == 200
    assert in_repair.json()["repair_status"] == "keyboard"
    assert in_repair.json()["needs_reclone"] is True
    assert in_repair.json()["row_version"] == created["row_version"] + 1

    back = asset_client.patch(
        f"/api/assets/{created['id']}",
        json={"tracking_status": "free-to-use"},
        headers=headers,
    )
    assert back.status_code == 200
    body = back.json()
    assert body["tracking_status"] == "free-to-use"
    assert body["repair_status"] == ""
    assert body["needs_reclone"] is False


def test_list_filters_search_and_summary(asset_client: TestClient) -> None:
    token = _admin_token(asset_client)
    headers = _auth_header(token)
    _create_asset(asset_client, token, tag="AST-001", owner="Finance Team", description="ThinkPad")
    _create_asset(asset_client, token, tag="AST-002", owner="Cloud Office", tracking_status="decom")
    _create_asset(asset_client, token, tag="AST-003", owner="HR", description="Dell monitor")

    by_owner = asset_client.get("/api/assets", params={"search": "finance"}, headers=headers)
    assert [item["tag"] for item in by_owner.json()] == ["AST-001"]

    by_description = asset_client.get("/api/assets", params={"search": "DELL"}, headers=headers)
    assert [item["tag"] for item in by_description.json()] == ["AST-003"]

    decom = asset_client.get("/api/assets", params={"tracking_status": "decom"}, headers=headers)
    assert [item["tag"] for item in decom.json()] == ["AST-002"]

    summary = asset_client.get("/api/assets/summary", headers=headers).json()
    assert summary["total"] == 3
    assert summary["by_status"]["in-use"] == 2
    assert summary["by_status"]["decom"] == 1
    assert summary["by_status"]["loan"] == 0


def test_scan_resolves_case_insensitively(asset_client: TestClient) -> None:
    token = _admin_token(asset_client)
    headers = _auth_header(token)
    _create_asset(asset_client, token, tag="AST-0012")
    _create_asset(asset_client, token, tag="AST-001")
    _create_asset(asset_client, token, tag="LAP-500")

    exact = asset_client.get("/api/assets/scan", params={"code": "ast-001"}, headers=headers)
    assert exact.status_code == 200
    assert exact.json()["tag"] == "AST-001"

    prefix = asset_client.get("/api/assets/scan", params={"code": "ast-00"}, headers=headers)
    assert prefix.json()["tag"] == "AST-001"

    embedded = asset_client.get("/api/assets/scan", params={"code": "urn:asset:lap-500"}, headers=headers)
    assert embedded.json()["tag"] == "LAP-500"

    missing = asset_client.get("/api/assets/scan", params={"code": "XYZ"}, headers=headers)
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "NotFound"


def test_hoto_compliance_is_advisory(asset_client: TestClient) -> None:
    token = _admin_token(asset_client)
    headers = _auth_header(token)

    missing_hoto = _create_asset(asset_client, token, tag="AST-001", owner="Operations")
    exempt = _create_asset(asset_client, token, tag="AST-002", owner="  COC Desk ")
    documented = _create_asset(asset_client, token, tag="AST-003", owner="Operations", hoto_number="H-1")

    assert missing_hoto["hoto_compliant"] is False
    assert exempt["hoto_compliant"] is True
    assert documented["hoto_compliant"] is True

    updated = asset_client.patch(
        f"/api/assets/{missing_hoto['id']}",
        json={"location": "Level 3"},
        headers=headers,
    )
    assert updated.status_code == 200

    flagged = asset_client.get("/api/assets/compliance/hoto", headers=headers)
    assert [item["tag"] for item in flagged.json()] == ["AST-001"]


def test_user_role_cannot_write_assets(asset_client: TestClient) -> None:
    admin_token = _admin_token(asset_client)
    user_token = _user_token(asset_client, admin_token)
    asset = _create_asset(asset_client, admin_token, tag="AST-001")

    denied = asset_client.post("/api/assets", json={"tag": "AST-002"}, headers=_auth_header(user_token))
    assert denied.status_code == 403
    denied_delete = asset_client.delete(f"/api/assets/{asset['id']}", headers=_auth_header(user_token))
    assert denied_delete.status_code == 403

    readable = asset_client.get(f"/api/assets/{asset['id']}", headers=_auth_header(user_token))
    assert readable.status_code == 200


def test_loanable_toggle_delete_and_audit_trail(asset_client: TestClient) -> None:
    token = _admin_token(asset_client)
    headers = _auth_header(token)
    asset = _create_asset(asset_client, token, tag="AST-001")

    toggled = asset_client.post(
        f"/api/assets/{asset['id']}/loanable",
        json={"available_for_loan": True},
        headers=headers,
    )
    assert toggled.status_code == 200
    assert toggled.json()["available_for_loan"] is True

    loanable = asset_client.get("/api/assets", params={"available_for_loan": True}, headers=headers)
    assert [item["tag"] for item in loanable.json()] == ["AST-001"]

    deleted = asset_client.delete(f"/api/assets/{asset['id']}", headers=headers)
    assert deleted.status_code == 204
    assert asset_client.get(f"/api/assets/{asset['id']}", headers=headers).status_code == 404

    with Session(db.engine) as session:
        actions = [row.action for row in session.exec(select(AuditLog)).all()]
        created_events = session.exec(select(EventRecord).where(EventRecord.event_type == "asset.created")).all()

    assert "asset.create" in actions
    assert "asset.loanable" in actions
    assert "asset.delete" in actions
    assert len(created_events) == 1
    assert created_events[0].actor_id is not None
