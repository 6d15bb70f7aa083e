from __future__ import annotations

from collections.abc import Iterator
from datetime import date
from typing import Any, Generic, TypeVar

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, select

from app.domain.errors import (
    ConflictError,
    EngineError,
    ExpiredError,
    NotFoundError,
    ResourceExhausted,
    StateError,
    ValidationError,
)
from app.domain.models import (
    Asset,
    AssignmentCreate,
    MaintenanceAssignment,
    MaintenanceContract,
    PoolPurchaseBase,
    PurchaseCreate,
    TicketAssignment,
    TicketPurchase,
    today_utc,
)
from app.infra.db import get_engine
from app.infra.events import event_bus
from app.infra.logging import get_logger
from app.services.asset_service import load_asset

PurchaseT = TypeVar("PurchaseT", bound=PoolPurchaseBase)
AssignmentT = TypeVar("AssignmentT", TicketAssignment, MaintenanceAssignment)

logger = get_logger("pools")


def find_open_ticket(session: Session, asset_id: str) -> TicketAssignment | None:
    return session.exec(
        select(TicketAssignment)
        .where(TicketAssignment.asset_id == asset_id)
        .where(TicketAssignment.reclone_completed_at == None)  # noqa: E711
    ).first()


class AvailablePurchases(Generic[PurchaseT]):
    """Purchases that are unexpired with units left, ordered by id.

    Each iteration runs a fresh query, so the sequence can be walked again
    after allocations change the picture.
    """

    def __init__(self, pool: ResourcePool[PurchaseT, Any]) -> None:
        self._pool = pool

    def __iter__(self) -> Iterator[PurchaseT]:
        model = self._pool.purchase_model
        statement = (
            select(model)
            .where(model.expiry_date >= today_utc())
            .where(model.used_count < model.quantity)
            .order_by(model.id)
        )
        with self._pool._session() as session:
            rows = list(session.exec(statement).all())
        yield from rows


class ResourcePool(Generic[PurchaseT, AssignmentT]):
    purchase_model: type[PurchaseT]
    assignment_model: type[AssignmentT]
    unit_name: str
    event_prefix: str
    releasable: bool = False

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _purchase_values(self, payload: PurchaseCreate) -> dict[str, Any]:
        return {}

    def _ensure_asset_can_receive(self, session: Session, asset: Asset) -> None:
        raise NotImplementedError

    def _get_purchase(self, session: Session, purchase_id: str, *, refresh: bool = False) -> PurchaseT:
        purchase = session.get(self.purchase_model, purchase_id, populate_existing=refresh)
        if purchase is None:
            raise NotFoundError(f"{self.unit_name} purchase not found")
        return purchase

    def _ensure_claimable(self, purchase: PurchaseT, today: date) -> None:
        if purchase.expiry_date < today:
            raise ExpiredError(f"{self.unit_name} purchase {purchase.po_number} expired on {purchase.expiry_date}")
        if purchase.remaining <= 0:
            raise ResourceExhausted(f"{self.unit_name} purchase {purchase.po_number} has no remaining units")

    def purchase(self, payload: PurchaseCreate, actor: str) -> PurchaseT:
        po_number = payload.po_number.strip()
        if not po_number:
            raise ValidationError("PO number is required")
        if payload.quantity <= 0:
            raise ValidationError("quantity must be a positive integer")
        with self._session() as session:
            purchase = self.purchase_model(
                po_number=po_number,
                quantity=payload.quantity,
                expiry_date=payload.expiry_date,
                notes=payload.notes,
                created_by=actor,
                **self._purchase_values(payload),
            )
            session.add(purchase)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ValidationError(f"PO number {po_number} already exists") from exc
            session.refresh(purchase)

        logger.info(
            "pool purchase recorded",
            extra={"pool": self.unit_name, "po_number": purchase.po_number, "quantity": purchase.quantity},
        )
        event_bus.publish_dict(
            f"{self.event_prefix}.purchased",
            {
                "purchase_id": purchase.id,
                "po_number": purchase.po_number,
                "quantity": purchase.quantity,
                "expiry_date": purchase.expiry_date.isoformat(),
            },
        )
        return purchase

    def get_purchase(self, purchase_id: str) -> PurchaseT:
        with self._session() as session:
            return self._get_purchase(session, purchase_id)

    def list_purchases(self) -> list[PurchaseT]:
        with self._session() as session:
            return list(session.exec(select(self.purchase_model).order_by(self.purchase_model.id)).all())

    def available_purchases(self) -> AvailablePurchases[PurchaseT]:
        return AvailablePurchases(self)

    def summary(self) -> dict[str, int]:
        purchases = self.list_purchases()
        total = sum(item.quantity for item in purchases)
        used = sum(item.used for item in purchases)
        return {
            "purchase_count": len(purchases),
            "total_units": total,
            "used_units": used,
            "remaining_units": total - used,
            "available_units": sum(item.remaining for item in purchases if not item.expired),
        }

    def _claim_failure(self, session: Session, purchase_id: str, today: date) -> EngineError:
        purchase = self._get_purchase(session, purchase_id, refresh=True)
        try:
            self._ensure_claimable(purchase, today)
        except ResourceExhausted as exc:
            return exc
        return ConflictError(f"{self.unit_name} allocation raced with another request, retry")

    def assign(self, payload: AssignmentCreate, actor: str) -> AssignmentT:
        today = today_utc()
        model = self.purchase_model
        with self._session() as session:
            purchase = self._get_purchase(session, payload.purchase_id)
            asset = load_asset(session, payload.asset_id)
            self._ensure_claimable(purchase, today)
            self._ensure_asset_can_receive(session, asset)
            assignment = self.assignment_model(
                purchase_id=purchase.id,
                asset_id=asset.id,
                po_number=purchase.po_number,
                asset_tag=asset.tag,
                assigned_date=today,
                assigned_by=actor,
                reason=payload.reason,
            )
            try:
                # The remaining-count check is re-evaluated by the database at write time.
                claimed = session.execute(
                    sa.update(model)
                    .where(model.id == purchase.id)
                    .where(model.used_count < model.quantity)
                    .where(model.expiry_date >= today)
                    .values(used_count=model.used_count + 1)
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount != 1:
                    session.rollback()
                    raise self._claim_failure(session, purchase.id, today)
                session.add(assignment)
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(
                    f"asset {asset.tag} received a {self.unit_name} concurrently, retry"
                ) from exc
            except OperationalError as exc:
                session.rollback()
                raise ConflictError(f"{self.unit_name} allocation contended, retry") from exc
            session.refresh(assignment)

        logger.info(
            "pool unit assigned",
            extra={"pool": self.unit_name, "po_number": assignment.po_number, "asset_tag": assignment.asset_tag},
        )
        event_bus.publish_dict(
            f"{self.event_prefix}.assigned",
            {
                "assignment_id": assignment.id,
                "purchase_id": assignment.purchase_id,
                "asset_id": assignment.asset_id,
                "asset_tag": assignment.asset_tag,
            },
        )
        return assignment

    def unassign(self, assignment_id: str) -> None:
        if not self.releasable:
            raise StateError(f"{self.unit_name} assignments are permanent", code="TicketConsumed")
        model = self.purchase_model
        with self._session() as session:
            assignment = session.get(self.assignment_model, assignment_id)
            if assignment is None:
                raise NotFoundError(f"{self.unit_name} assignment not found")
            # The unit is returned only by the transaction whose delete removed the row.
            deleted = session.execute(
                sa.delete(self.assignment_model)
                .where(self.assignment_model.id == assignment_id)
                .execution_options(synchronize_session=False)
            )
            if deleted.rowcount != 1:
                session.rollback()
                raise NotFoundError(f"{self.unit_name} assignment was already released")
            session.execute(
                sa.update(model)
                .where(model.id == assignment.purchase_id)
                .where(model.used_count > 0)
                .values(used_count=model.used_count - 1)
                .execution_options(synchronize_session=False)
            )
            session.commit()

        logger.info("pool unit released", extra={"pool": self.unit_name, "assignment_id": assignment_id})
        event_bus.publish_dict(
            f"{self.event_prefix}.unassigned",
            {
                "assignment_id": assignment_id,
                "purchase_id": assignment.purchase_id,
                "asset_id": assignment.asset_id,
            },
        )

    def list_assignments(self, *, asset_id: str | None = None) -> list[AssignmentT]:
        with self._session() as session:
            statement = select(self.assignment_model)
            if asset_id is not None:
                statement = statement.where(self.assignment_model.asset_id == asset_id)
            rows = list(session.exec(statement).all())
        rows.sort(key=lambda item: item.created_at)
        return rows


class TicketPool(ResourcePool[TicketPurchase, TicketAssignment]):
    purchase_model = TicketPurchase
    assignment_model = TicketAssignment
    unit_name = "reclone ticket"
    event_prefix = "ticket"

    def _ensure_asset_can_receive(self, session: Session, asset: Asset) -> None:
        if find_open_ticket(session, asset.id) is not None:
            raise StateError(f"asset {asset.tag} already holds an open reclone ticket", code="OpenTicketExists")

    def open_assignment_for_asset(self, asset_id: str) -> TicketAssignment | None:
        with self._session() as session:
            return find_open_ticket(session, asset_id)


class MaintenancePool(ResourcePool[MaintenanceContract, MaintenanceAssignment]):
    purchase_model = MaintenanceContract
    assignment_model = MaintenanceAssignment
    unit_name = "maintenance slot"
    event_prefix = "maintenance"
    releasable = True

    def _purchase_values(self, payload: PurchaseCreate) -> dict[str, Any]:
        return {"vendor": payload.vendor}

    def _ensure_asset_can_receive(self, session: Session, asset: Asset) -> None:
        existing = session.exec(
            select(MaintenanceAssignment).where(MaintenanceAssignment.asset_id == asset.id)
        ).first()
        if existing is not None:
            raise StateError(
                f"asset {asset.tag} already holds maintenance contract {existing.po_number}",
                code="AlreadyAssigned",
            )
