from __future__ import annotations

import threading
from collections.abc import Callable, Generator
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from app.domain.errors import (
    ConflictError,
    ExpiredError,
    NotFoundError,
    ResourceExhausted,
    StateError,
    ValidationError,
)
from app.domain.models import (
    AssetCreate,
    AssignmentCreate,
    MaintenanceContract,
    PurchaseCreate,
    TicketAssignment,
    today_utc,
)
from app.infra import db
from app.services.asset_service import AssetService
from app.services.resource_pool_service import MaintenancePool, TicketPool


@pytest.fixture()
def pool_engine(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[Engine, None, None]:
    db_path = tmp_path / "resource_pool_test.db"
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
    yield test_engine
    test_engine.dispose()


class _InterleavedSession(Session):
    """Runs ``interleave`` once, right after the first ``get`` returns."""

    def __init__(self, *args: Any, interleave: Callable[[], None], **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._interleave: Callable[[], None] | None = interleave

    def get(self, *args: Any, **kwargs: Any) -> Any:
        found = super().get(*args, **kwargs)
        if self._interleave is not None:
            interleave, self._interleave = self._interleave, None
            interleave()
        return found


def _assets(count: int, prefix: str = "AST") -> list[str]:
    service = AssetService()
    return [service.create_asset(AssetCreate(tag=f"{prefix}-{index:03d}")).id for index in range(1, count + 1)]


def test_purchase_validation(pool_engine: Engine) -> None:
    pool = TicketPool()

    with pytest.raises(ValidationError):
        pool.purchase(PurchaseCreate(po_number="  ", quantity=5), "admin")
    with pytest.raises(ValidationError):
        pool.purchase(PurchaseCreate(po_number="PO-1", quantity=0), "admin")

    created = pool.purchase(PurchaseCreate(po_number="PO-1", quantity=5), "admin")
    assert created.remaining == 5
    assert created.expiry_date == today_utc() + timedelta(days=180)

    with pytest.raises(ValidationError):
        pool.purchase(PurchaseCreate(po_number="PO-1", quantity=2), "admin")


def test_assign_until_exhausted(pool_engine: Engine) -> None:
    pool = MaintenancePool()
    contract = pool.purchase(PurchaseCreate(po_number="MC-1", quantity=5, vendor="Acme"), "admin")
    asset_ids = _assets(6)

    for asset_id in asset_ids[:5]:
        pool.assign(AssignmentCreate(purchase_id=contract.id, asset_id=asset_id), "admin")

    with pytest.raises(ResourceExhausted) as exc_info:
        pool.assign(AssignmentCreate(purchase_id=contract.id, asset_id=asset_ids[5]), "admin")
    assert not isinstance(exc_info.value, ExpiredError)

    refreshed = pool.get_purchase(contract.id)
    assert refreshed.used == 5
    assert refreshed.remaining == 0
    assert refreshed.vendor == "Acme"
    assert list(pool.available_purchases()) == []


def test_expired_purchase_cannot_allocate(pool_engine: Engine) -> None:
    pool = TicketPool()
    expired = pool.purchase(
        PurchaseCreate(po_number="PO-OLD", quantity=3, expiry_date=today_utc() - timedelta(days=1)),
        "admin",
    )
    (asset_id,) = _assets(1)

    with pytest.raises(ExpiredError):
        pool.assign(AssignmentCreate(purchase_id=expired.id, asset_id=asset_id), "admin")
    assert pool.get_purchase(expired.id).used == 0
    assert list(pool.available_purchases()) == []


def test_available_purchases_is_restartable(pool_engine: Engine) -> None:
    pool = TicketPool()
    first = pool.purchase(PurchaseCreate(po_number="PO-A", quantity=1), "admin")
    second = pool.purchase(PurchaseCreate(po_number="PO-B", quantity=2), "admin")
    (asset_id,) = _assets(1)

    available = pool.available_purchases()
    assert {item.id for item in available} == {first.id, second.id}
    ids = [item.id for item in available]
    assert ids == sorted(ids)

    pool.assign(AssignmentCreate(purchase_id=first.id, asset_id=asset_id), "admin")
    assert [item.id for item in available] == [second.id]


def test_stopping_iteration_early_releases_the_connection(pool_engine: Engine) -> None:
    pool = TicketPool()
    pool.purchase(PurchaseCreate(po_number="PO-A", quantity=1), "admin")
    pool.purchase(PurchaseCreate(po_number="PO-B", quantity=1), "admin")

    walker = iter(pool.available_purchases())
    assert next(walker).po_number in {"PO-A", "PO-B"}
    assert pool_engine.pool.checkedout() == 0  # type: ignore[attr-defined]


def test_unknown_purchase_or_asset(pool_engine: Engine) -> None:
    pool = TicketPool()
    purchase = pool.purchase(PurchaseCreate(po_number="PO-1", quantity=1), "admin")
    (asset_id,) = _assets(1)

    with pytest.raises(NotFoundError):
        pool.assign(AssignmentCreate(purchase_id="missing", asset_id=asset_id), "admin")
    with pytest.raises(NotFoundError):
        pool.assign(AssignmentCreate(purchase_id=purchase.id, asset_id="missing"), "admin")


def test_maintenance_slot_is_exclusive_and_releasable(pool_engine: Engine) -> None:
    pool = MaintenancePool()
    contract = pool.purchase(PurchaseCreate(po_number="MC-1", quantity=3), "admin")
    other = pool.purchase(PurchaseCreate(po_number="MC-2", quantity=3), "admin")
    (asset_id,) = _assets(1)

    assignment = pool.assign(AssignmentCreate(purchase_id=contract.id, asset_id=asset_id), "admin")
    assert assignment.asset_tag == "AST-001"
    assert assignment.po_number == "MC-1"

    with pytest.raises(StateError) as exc_info:
        pool.assign(AssignmentCreate(purchase_id=other.id, asset_id=asset_id), "admin")
    assert exc_info.value.code == "AlreadyAssigned"
    assert pool.get_purchase(other.id).used == 0

    pool.unassign(assignment.id)
    assert pool.get_purchase(contract.id).used == 0
    assert pool.list_assignments(asset_id=asset_id) == []

    pool.assign(AssignmentCreate(purchase_id=other.id, asset_id=asset_id), "admin")
    assert pool.get_purchase(other.id).used == 1


def test_ticket_is_permanent_and_single_open_per_asset(pool_engine: Engine) -> None:
    pool = TicketPool()
    purchase = pool.purchase(PurchaseCreate(po_number="PO-1", quantity=5), "admin")
    (asset_id,) = _assets(1)

    ticket = pool.assign(AssignmentCreate(purchase_id=purchase.id, asset_id=asset_id, reason="reimage"), "admin")
    assert pool.open_assignment_for_asset(asset_id) is not None

    with pytest.raises(StateError) as exc_info:
        pool.assign(AssignmentCreate(purchase_id=purchase.id, asset_id=asset_id), "admin")
    assert exc_info.value.code == "OpenTicketExists"

    with pytest.raises(StateError) as consumed:
        pool.unassign(ticket.id)
    assert consumed.value.code == "TicketConsumed"
    assert pool.get_purchase(purchase.id).used == 1


def test_summary_counts_only_unexpired_as_available(pool_engine: Engine) -> None:
    pool = TicketPool()
    live = pool.purchase(PurchaseCreate(po_number="PO-1", quantity=4), "admin")
    pool.purchase(
        PurchaseCreate(po_number="PO-OLD", quantity=10, expiry_date=today_utc() - timedelta(days=3)),
        "admin",
    )
    (asset_id,) = _assets(1)
    pool.assign(AssignmentCreate(purchase_id=live.id, asset_id=asset_id), "admin")

    assert pool.summary() == {
        "purchase_count": 2,
        "total_units": 14,
        "used_units": 1,
        "remaining_units": 13,
        "available_units": 3,
    }


def test_deleting_asset_returns_slot_and_keeps_ticket_history(pool_engine: Engine) -> None:
    maintenance = MaintenancePool()
    tickets = TicketPool()
    contract = maintenance.purchase(PurchaseCreate(po_number="MC-1", quantity=2), "admin")
    purchase = tickets.purchase(PurchaseCreate(po_number="PO-1", quantity=2), "admin")
    (asset_id,) = _assets(1)

    maintenance.assign(AssignmentCreate(purchase_id=contract.id, asset_id=asset_id), "admin")
    ticket = tickets.assign(AssignmentCreate(purchase_id=purchase.id, asset_id=asset_id), "admin")

    AssetService().delete_asset(asset_id)

    with Session(pool_engine) as session:
        stored_contract = session.get(MaintenanceContract, contract.id)
        stored_ticket = session.get(TicketAssignment, ticket.id)
        assert stored_contract is not None
        assert stored_contract.used_count == 0
        assert stored_ticket is not None
        assert stored_ticket.asset_id is None
        assert stored_ticket.asset_tag == "AST-001"
    assert tickets.get_purchase(purchase.id).used == 1


def test_concurrent_assign_never_oversells(pool_engine: Engine) -> None:
    pool = MaintenancePool()
    contract = pool.purchase(PurchaseCreate(po_number="MC-RACE", quantity=3), "admin")
    asset_ids = _assets(8)
    barrier = threading.Barrier(len(asset_ids))
    outcomes: list[str] = []
    lock = threading.Lock()

    def worker(asset_id: str) -> None:
        barrier.wait()
        for _ in range(20):
            try:
                pool.assign(AssignmentCreate(purchase_id=contract.id, asset_id=asset_id), "admin")
                outcome = "assigned"
            except ConflictError:
                # Callers retry a lost race.
                continue
            except ResourceExhausted:
                outcome = "exhausted"
            with lock:
                outcomes.append(outcome)
            return

    threads = [threading.Thread(target=worker, args=(asset_id,)) for asset_id in asset_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("assigned") == 3
    assert outcomes.count("exhausted") == len(asset_ids) - 3
    assert pool.get_purchase(contract.id).used == 3
    assert len(pool.list_assignments()) == 3


@pytest.mark.parametrize("other_release", ["unassign", "delete_asset"])
def test_racing_releases_return_the_unit_once(
    pool_engine: Engine,
    monkeypatch: pytest.MonkeyPatch,
    other_release: str,
) -> None:
    pool = MaintenancePool()
    contract = pool.purchase(PurchaseCreate(po_number="MC-1", quantity=2), "admin")
    first_asset, second_asset = _assets(2)
    first = pool.assign(AssignmentCreate(purchase_id=contract.id, asset_id=first_asset), "admin")
    pool.assign(AssignmentCreate(purchase_id=contract.id, asset_id=second_asset), "admin")

    def release_first() -> None:
        if other_release == "unassign":
            MaintenancePool().unassign(first.id)
        else:
            AssetService().delete_asset(first_asset)

    sessions = iter([_InterleavedSession(pool_engine, expire_on_commit=False, interleave=release_first)])
    monkeypatch.setattr(pool, "_session", lambda: next(sessions))

    with pytest.raises(NotFoundError):
        pool.unassign(first.id)

    observer = MaintenancePool()
    assert observer.get_purchase(contract.id).used == 1
    assert len(observer.list_assignments()) == 1
    with pytest.raises(NotFoundError):
        observer.unassign(first.id)
    assert observer.get_purchase(contract.id).used == 1
