from __future__ import annotations

import re
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, func, select

from app.domain.compliance import is_hoto_compliant
from app.domain.errors import ConflictError, NotFoundError, ValidationError
from app.domain.models import (
    Asset,
    AssetCreate,
    AssetUpdate,
    LoanRequest,
    MaintenanceAssignment,
    MaintenanceContract,
    RecloneProgress,
    TicketAssignment,
    now_utc,
)
from app.domain.state_machine import TrackingStatus, cleared_fields_for
from app.infra.db import get_engine
from app.infra.events import event_bus
from app.infra.logging import get_logger

TAG_PREFIX = "AST"
_LEADING_DIGITS = re.compile(r"\d+")
# Columns that may not be set to NULL through a partial update.
_NON_NULLABLE_UPDATES = ("tracking_status", "repair_status", "needs_reclone", "available_for_loan")

logger = get_logger("assets")


def tag_number(tag: str) -> int:
    suffix = tag.rsplit("-", 1)[-1] if "-" in tag else ""
    match = _LEADING_DIGITS.match(suffix)
    return int(match.group()) if match else 0


def format_tag(number: int) -> str:
    return f"{TAG_PREFIX}-{number:03d}"


def next_tag_for(tags: list[str]) -> str:
    return format_tag(max((tag_number(tag) for tag in tags), default=0) + 1)


def load_asset(session: Session, asset_id: str) -> Asset:
    asset = session.get(Asset, asset_id)
    if asset is None:
        raise NotFoundError("asset not found")
    return asset


def in_reclone(asset: Asset) -> bool:
    return asset.tracking_status == TrackingStatus.IN_REPAIR and asset.needs_reclone


def discard_reclone_progress(session: Session, asset_id: str) -> None:
    session.execute(sa.delete(RecloneProgress).where(RecloneProgress.asset_id == asset_id))


def compare_and_set_asset(session: Session, asset: Asset, values: dict[str, Any]) -> None:
    """Write ``values`` only if the asset row is unchanged since it was read.

    Runs inside the caller's transaction; a lost race raises ConflictError and
    the caller's transaction must be rolled back.
    """
    statement = (
        sa.update(Asset)
        .where(Asset.id == asset.id)
        .where(Asset.row_version == asset.row_version)
        .values(**values, row_version=asset.row_version + 1, updated_at=now_utc())
        .execution_options(synchronize_session=False)
    )
    result = session.execute(statement)
    if result.rowcount != 1:
        raise ConflictError("asset was modified concurrently, reload and retry")


class AssetService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _clean_tag(self, tag: str | None) -> str:
        cleaned = (tag or "").strip()
        if not cleaned:
            raise ValidationError("tag is required")
        return cleaned

    def _tag_taken(self, session: Session, tag: str, exclude_id: str | None = None) -> bool:
        statement = select(Asset.id).where(func.lower(col(Asset.tag)) == tag.lower())
        if exclude_id is not None:
            statement = statement.where(Asset.id != exclude_id)
        return session.exec(statement).first() is not None

    def create_asset(self, payload: AssetCreate) -> Asset:
        tag = self._clean_tag(payload.tag)
        values = payload.model_dump()
        values["tag"] = tag
        values.update(cleared_fields_for(payload.tracking_status))
        with self._session() as session:
            if self._tag_taken(session, tag):
                raise ValidationError(f"tag {tag} already exists")
            asset = Asset(**values)
            session.add(asset)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ValidationError(f"tag {tag} already exists") from exc
            session.refresh(asset)

        logger.info("asset created", extra={"asset_id": asset.id, "tag": asset.tag})
        event_bus.publish_dict(
            "asset.created",
            {"asset_id": asset.id, "tag": asset.tag, "tracking_status": asset.tracking_status},
        )
        return asset

    def get_asset(self, asset_id: str) -> Asset:
        with self._session() as session:
            return load_asset(session, asset_id)

    def list_assets(
        self,
        *,
        tracking_status: TrackingStatus | None = None,
        search: str | None = None,
        available_for_loan: bool | None = None,
    ) -> list[Asset]:
        with self._session() as session:
            statement = select(Asset)
            if tracking_status is not None:
                statement = statement.where(Asset.tracking_status == tracking_status)
            if available_for_loan is not None:
                statement = statement.where(Asset.available_for_loan == available_for_loan)
            term = (search or "").strip().lower()
            if term:
                statement = statement.where(
                    sa.or_(
                        col(Asset.tag).icontains(term, autoescape=True),
                        col(Asset.description).icontains(term, autoescape=True),
                        col(Asset.owner).icontains(term, autoescape=True),
                    )
                )
            return list(session.exec(statement.order_by(Asset.tag)).all())

    def next_tag(self) -> str:
        with self._session() as session:
            tags = list(session.exec(select(Asset.tag)).all())
        return next_tag_for(tags)

    def update_asset(self, asset_id: str, payload: AssetUpdate) -> Asset:
        changes = payload.model_dump(exclude_unset=True)
        for key in _NON_NULLABLE_UPDATES:
            if key in changes and changes[key] is None:
                changes.pop(key)

        with self._session() as session:
            asset = load_asset(session, asset_id)
            if "tag" in changes:
                changes["tag"] = self._clean_tag(changes["tag"])
                if self._tag_taken(session, changes["tag"], exclude_id=asset.id):
                    raise ValidationError(f"tag {changes['tag']} already exists")
            previous_status = TrackingStatus(asset.tracking_status)
            new_status = TrackingStatus(changes.get("tracking_status", previous_status))
            changes.update(cleared_fields_for(new_status))

            was_in_reclone = in_reclone(asset)
            needs_reclone = changes.get("needs_reclone", asset.needs_reclone)
            if was_in_reclone and not (new_status == TrackingStatus.IN_REPAIR and needs_reclone):
                # Reclone progress only lives while the asset is in-repair awaiting a reclone.
                discard_reclone_progress(session, asset.id)

            compare_and_set_asset(session, asset, changes)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ValidationError("tag already exists") from exc
            session.refresh(asset)

        logger.info(
            "asset updated",
            extra={
                "asset_id": asset.id,
                "from_status": previous_status,
                "to_status": asset.tracking_status,
            },
        )
        event_bus.publish_dict(
            "asset.updated",
            {
                "asset_id": asset.id,
                "tag": asset.tag,
                "from_status": previous_status,
                "to_status": asset.tracking_status,
                "fields": sorted(changes.keys()),
            },
        )
        return asset

    def set_available_for_loan(self, asset_id: str, available: bool) -> Asset:
        with self._session() as session:
            asset = load_asset(session, asset_id)
            compare_and_set_asset(session, asset, {"available_for_loan": available})
            session.commit()
            session.refresh(asset)

        event_bus.publish_dict(
            "asset.loanable_changed",
            {"asset_id": asset.id, "available_for_loan": asset.available_for_loan},
        )
        return asset

    def delete_asset(self, asset_id: str) -> None:
        with self._session() as session:
            asset = load_asset(session, asset_id)
            tag = asset.tag
            discard_reclone_progress(session, asset_id)
            session.execute(sa.delete(LoanRequest).where(LoanRequest.asset_id == asset_id))
            maintenance = session.exec(
                select(MaintenanceAssignment).where(MaintenanceAssignment.asset_id == asset_id)
            ).first()
            if maintenance is not None:
                released = session.execute(
                    sa.delete(MaintenanceAssignment)
                    .where(MaintenanceAssignment.id == maintenance.id)
                    .execution_options(synchronize_session=False)
                )
                if released.rowcount == 1:
                    session.execute(
                        sa.update(MaintenanceContract)
                        .where(MaintenanceContract.id == maintenance.purchase_id)
                        .where(MaintenanceContract.used_count > 0)
                        .values(used_count=MaintenanceContract.used_count - 1)
                        .execution_options(synchronize_session=False)
                    )
                else:
                    maintenance = None
            session.execute(
                sa.update(TicketAssignment).where(TicketAssignment.asset_id == asset_id).values(asset_id=None)
            )
            session.execute(sa.delete(Asset).where(Asset.id == asset_id))
            session.commit()

        logger.info("asset deleted", extra={"asset_id": asset_id, "tag": tag})
        event_bus.publish_dict(
            "asset.deleted",
            {
                "asset_id": asset_id,
                "tag": tag,
                "released_maintenance_assignment": maintenance.id if maintenance is not None else None,
            },
        )

    def resolve_scan(self, code: str) -> Asset:
        term = code.strip().lower()
        if not term:
            raise ValidationError("scanned code is empty")
        assets = self.list_assets()
        matchers = (
            lambda tag: tag == term,
            lambda tag: tag.startswith(term),
            lambda tag: term in tag or tag in term,
        )
        for matches in matchers:
            for asset in assets:
                if matches(asset.tag.lower()):
                    return asset
        raise NotFoundError(f"no asset matches scanned code {code!r}")

    def status_summary(self) -> dict[str, Any]:
        with self._session() as session:
            rows = session.exec(
                select(Asset.tracking_status, func.count()).group_by(Asset.tracking_status)
            ).all()
        by_status = {status.value: 0 for status in TrackingStatus}
        for status, count in rows:
            by_status[str(status)] = int(count)
        return {"total": sum(by_status.values()), "by_status": by_status}

    def list_non_compliant(self) -> list[Asset]:
        return [asset for asset in self.list_assets() if not is_hoto_compliant(asset)]
