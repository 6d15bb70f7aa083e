from __future__ import annotations

import sqlalchemy as sa
from sqlmodel import Session, func, select

from app.domain.errors import ValidationError
from app.domain.models import Asset, AuditProgressRead, now_utc
from app.infra.db import get_engine
from app.infra.events import event_bus
from app.infra.logging import get_logger
from app.services.asset_service import load_asset

logger = get_logger("audit_cycle")


class AuditCycleService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def verify(self, asset_id: str, actor: str) -> Asset:
        verified_at = now_utc()
        with self._session() as session:
            asset = load_asset(session, asset_id)
            # Verification columns are written without touching row_version.
            session.execute(
                sa.update(Asset)
                .where(Asset.id == asset.id)
                .values(last_verified=verified_at, verified_by=actor)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            session.refresh(asset)

        logger.info("asset verified", extra={"asset_id": asset_id, "verified_by": actor})
        event_bus.publish_dict(
            "audit.verified",
            {"asset_id": asset_id, "asset_tag": asset.tag, "verified_by": actor},
        )
        return asset

    def reset_all(self, actor: str, confirm: bool = False) -> int:
        if not confirm:
            raise ValidationError("resetting the audit cycle must be confirmed")
        with self._session() as session:
            result = session.execute(
                sa.update(Asset)
                .values(last_verified=None, verified_by=None)
                .execution_options(synchronize_session=False)
            )
            reset_count = int(result.rowcount or 0)
            session.commit()

        logger.warning("audit cycle reset", extra={"reset_count": reset_count, "reset_by": actor})
        event_bus.publish_dict("audit.reset", {"reset_count": reset_count, "reset_by": actor})
        return reset_count

    def progress(self) -> AuditProgressRead:
        with self._session() as session:
            total = int(session.exec(select(func.count()).select_from(Asset)).one())
            verified = int(
                session.exec(
                    select(func.count()).select_from(Asset).where(Asset.last_verified != None)  # noqa: E711
                ).one()
            )
        ratio = verified / total if total else 0.0
        return AuditProgressRead(verified=verified, total=total, ratio=ratio, percent=round(ratio * 100))

    def unverified(self) -> list[Asset]:
        with self._session() as session:
            return list(
                session.exec(
                    select(Asset).where(Asset.last_verified == None).order_by(Asset.tag)  # noqa: E711
                ).all()
            )
