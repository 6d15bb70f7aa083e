from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, func, select

from app.domain.errors import ConflictError, StateError, ValidationError
from app.domain.models import (
    Asset,
    RecloneProgress,
    RecloneProgressRead,
    RecloneQueueItemRead,
    RecloneStepRead,
    TicketAssignment,
    now_utc,
)
from app.domain.state_machine import (
    RECLONE_STEP_IDS,
    RECLONE_STEPS,
    RecloneStepState,
    TrackingStatus,
    all_steps_completed,
    cleared_fields_for,
    reclone_step_state,
    steps_from,
)
from app.infra.db import get_engine
from app.infra.events import event_bus
from app.infra.logging import get_logger
from app.services.asset_service import (
    compare_and_set_asset,
    discard_reclone_progress,
    in_reclone,
    load_asset,
)
from app.services.resource_pool_service import find_open_ticket

logger = get_logger("reclone")


def percent_complete(completed_count: int) -> int:
    return round(completed_count * 100 / len(RECLONE_STEP_IDS))


class RecloneService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _progress_rows(self, session: Session, asset_id: str) -> list[RecloneProgress]:
        return list(
            session.exec(
                select(RecloneProgress)
                .where(RecloneProgress.asset_id == asset_id)
                .order_by(RecloneProgress.step_id)
            ).all()
        )

    def _ensure_in_reclone(self, asset: Asset) -> None:
        if not in_reclone(asset):
            logger.warning("reclone action on asset outside reclone", extra={"asset_id": asset.id})
            raise StateError(f"asset {asset.tag} is not in repair awaiting a reclone", code="NotInReclone")

    def _validate_step(self, step_id: int) -> None:
        if step_id not in RECLONE_STEP_IDS:
            raise ValidationError(f"step must be between {RECLONE_STEP_IDS[0]} and {RECLONE_STEP_IDS[-1]}")

    def requires_ticket(self, asset_id: str) -> bool:
        with self._session() as session:
            load_asset(session, asset_id)
            return find_open_ticket(session, asset_id) is None

    def progress(self, asset_id: str) -> RecloneProgressRead:
        with self._session() as session:
            asset = load_asset(session, asset_id)
            rows = {row.step_id: row for row in self._progress_rows(session, asset_id)}
            ticket = find_open_ticket(session, asset_id)

        steps = [
            RecloneStepRead(
                step_id=step_id,
                title=title,
                description=description,
                state=reclone_step_state(step_id, rows),
                completed_at=rows[step_id].completed_at if step_id in rows else None,
                completed_by=rows[step_id].completed_by if step_id in rows else None,
            )
            for step_id, title, description in RECLONE_STEPS
        ]
        return RecloneProgressRead(
            asset_id=asset.id,
            asset_tag=asset.tag,
            ticket_assigned=ticket is not None,
            ticket_assignment_id=ticket.id if ticket is not None else None,
            completed_steps=len(rows),
            total_steps=len(RECLONE_STEPS),
            percent=percent_complete(len(rows)),
            can_finish=in_reclone(asset) and all_steps_completed(rows),
            steps=steps,
        )

    def complete_step(self, asset_id: str, step_id: int, actor: str) -> RecloneProgress:
        self._validate_step(step_id)
        with self._session() as session:
            asset = load_asset(session, asset_id)
            self._ensure_in_reclone(asset)
            ticket = find_open_ticket(session, asset.id)
            if ticket is None:
                raise StateError(
                    f"asset {asset.tag} needs a reclone ticket before steps can be completed",
                    code="TicketRequired",
                )
            completed = [row.step_id for row in self._progress_rows(session, asset.id)]
            state = reclone_step_state(step_id, completed)
            if state == RecloneStepState.COMPLETED:
                raise StateError(f"step {step_id} is already completed", code="StepCompleted")
            if state == RecloneStepState.LOCKED:
                raise StateError(f"step {step_id} is locked until step {step_id - 1} is completed", code="StepLocked")

            row = RecloneProgress(
                asset_id=asset.id,
                step_id=step_id,
                completed_by=actor,
                ticket_assignment_id=ticket.id,
            )
            compare_and_set_asset(session, asset, {})
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(f"step {step_id} was completed concurrently") from exc
            session.refresh(row)

        logger.info("reclone step completed", extra={"asset_id": asset_id, "step_id": step_id})
        event_bus.publish_dict(
            "reclone.step_completed",
            {"asset_id": asset_id, "asset_tag": asset.tag, "step_id": step_id, "completed_by": actor},
        )
        return row

    def undo_step(self, asset_id: str, step_id: int, actor: str) -> list[int]:
        """Revert ``step_id`` and every later completed step; returns the removed ids."""
        self._validate_step(step_id)
        with self._session() as session:
            asset = load_asset(session, asset_id)
            completed = [row.step_id for row in self._progress_rows(session, asset.id)]
            if step_id not in completed:
                raise StateError(f"step {step_id} is not completed", code="StepNotCompleted")
            removed = steps_from(step_id, completed)
            session.execute(
                sa.delete(RecloneProgress)
                .where(RecloneProgress.asset_id == asset.id)
                .where(col(RecloneProgress.step_id).in_(removed))
            )
            compare_and_set_asset(session, asset, {})
            session.commit()

        logger.info("reclone steps reverted", extra={"asset_id": asset_id, "steps": removed})
        event_bus.publish_dict(
            "reclone.step_undone",
            {"asset_id": asset_id, "asset_tag": asset.tag, "steps": removed, "undone_by": actor},
        )
        return removed

    def finish(self, asset_id: str, actor: str) -> Asset:
        with self._session() as session:
            asset = load_asset(session, asset_id)
            self._ensure_in_reclone(asset)
            completed = [row.step_id for row in self._progress_rows(session, asset.id)]
            if not all_steps_completed(completed):
                raise StateError(
                    f"{len(RECLONE_STEP_IDS) - len(completed)} reclone steps remain",
                    code="StepsIncomplete",
                )
            ticket = find_open_ticket(session, asset.id)
            if ticket is None:
                raise StateError(f"asset {asset.tag} holds no open reclone ticket", code="TicketRequired")

            compare_and_set_asset(
                session,
                asset,
                {"tracking_status": TrackingStatus.IN_USE, **cleared_fields_for(TrackingStatus.IN_USE)},
            )
            discard_reclone_progress(session, asset.id)
            stamped = session.execute(
                sa.update(TicketAssignment)
                .where(TicketAssignment.id == ticket.id)
                .where(TicketAssignment.reclone_completed_at == None)  # noqa: E711
                .values(reclone_completed_at=now_utc())
                .execution_options(synchronize_session=False)
            )
            if stamped.rowcount != 1:
                raise ConflictError("reclone ticket was closed concurrently")
            session.commit()
            session.refresh(asset)

        logger.info("reclone finished", extra={"asset_id": asset_id, "ticket_assignment_id": ticket.id})
        event_bus.publish_dict(
            "reclone.finished",
            {
                "asset_id": asset_id,
                "asset_tag": asset.tag,
                "ticket_assignment_id": ticket.id,
                "finished_by": actor,
            },
        )
        return asset

    def queue(self) -> list[RecloneQueueItemRead]:
        with self._session() as session:
            assets = list(
                session.exec(
                    select(Asset)
                    .where(Asset.tracking_status == TrackingStatus.IN_REPAIR)
                    .where(Asset.needs_reclone == True)  # noqa: E712
                    .order_by(Asset.tag)
                ).all()
            )
            counts = dict(
                session.exec(
                    select(RecloneProgress.asset_id, func.count()).group_by(RecloneProgress.asset_id)
                ).all()
            )
            ticketed = set(
                session.exec(
                    select(TicketAssignment.asset_id).where(
                        TicketAssignment.reclone_completed_at == None  # noqa: E711
                    )
                ).all()
            )

        return [
            RecloneQueueItemRead(
                asset_id=asset.id,
                asset_tag=asset.tag,
                description=asset.description,
                owner=asset.owner,
                repair_status=asset.repair_status,
                ticket_assigned=asset.id in ticketed,
                completed_steps=int(counts.get(asset.id, 0)),
                percent=percent_complete(int(counts.get(asset.id, 0))),
            )
            for asset in assets
        ]
