from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.domain.errors import NotFoundError, StateError, ValidationError
from app.domain.models import LoanRequest, LoanRequestCreate, now_utc, today_utc
from app.domain.state_machine import (
    LoanRequestStatus,
    TrackingStatus,
    can_loan_transition,
    cleared_fields_for,
)
from app.infra.db import get_engine
from app.infra.events import event_bus
from app.infra.logging import get_logger
from app.services.asset_service import compare_and_set_asset, discard_reclone_progress, load_asset

logger = get_logger("loans")


class LoanService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_request(self, session: Session, request_id: str) -> LoanRequest:
        request = session.get(LoanRequest, request_id)
        if request is None:
            raise NotFoundError("loan request not found")
        return request

    def _pending_exists(self, session: Session, asset_id: str) -> bool:
        return (
            session.exec(
                select(LoanRequest.id)
                .where(LoanRequest.asset_id == asset_id)
                .where(LoanRequest.status == LoanRequestStatus.PENDING)
            ).first()
            is not None
        )

    def submit(self, payload: LoanRequestCreate, requested_by: str) -> LoanRequest:
        reason = payload.reason.strip()
        if not reason:
            raise ValidationError("a reason is required for a loan request")
        with self._session() as session:
            asset = load_asset(session, payload.asset_id)
            if not asset.available_for_loan or asset.tracking_status == TrackingStatus.LOAN:
                raise StateError(f"asset {asset.tag} is not available for loan", code="NotLoanable")
            if self._pending_exists(session, asset.id):
                raise StateError(
                    f"asset {asset.tag} already has a pending loan request", code="DuplicatePending"
                )
            request = LoanRequest(
                asset_id=asset.id,
                asset_tag=asset.tag,
                requested_by=requested_by,
                reason=reason,
                duration=payload.duration,
                return_date=payload.return_date,
            )
            session.add(request)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise StateError(
                    f"asset {asset.tag} already has a pending loan request", code="DuplicatePending"
                ) from exc
            session.refresh(request)

        logger.info("loan requested", extra={"request_id": request.id, "asset_tag": request.asset_tag})
        event_bus.publish_dict(
            "loan.submitted",
            {
                "request_id": request.id,
                "asset_id": request.asset_id,
                "asset_tag": request.asset_tag,
                "requested_by": requested_by,
            },
        )
        return request

    def _review(
        self,
        session: Session,
        request: LoanRequest,
        target: LoanRequestStatus,
        reviewer: str,
        notes: str | None,
    ) -> None:
        if not can_loan_transition(LoanRequestStatus(request.status), target):
            raise StateError(f"loan request was already {request.status}", code="AlreadyReviewed")
        result = session.execute(
            sa.update(LoanRequest)
            .where(LoanRequest.id == request.id)
            .where(LoanRequest.status == LoanRequestStatus.PENDING)
            .values(
                status=target,
                reviewed_by=reviewer,
                review_date=today_utc(),
                review_notes=notes,
                updated_at=now_utc(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StateError("loan request was reviewed concurrently", code="AlreadyReviewed")

    def approve(self, request_id: str, reviewer: str, notes: str | None = None) -> LoanRequest:
        with self._session() as session:
            request = self._get_request(session, request_id)
            asset = load_asset(session, request.asset_id)
            self._review(session, request, LoanRequestStatus.APPROVED, reviewer, notes)
            compare_and_set_asset(
                session,
                asset,
                {
                    **cleared_fields_for(TrackingStatus.LOAN),
                    "tracking_status": TrackingStatus.LOAN,
                    "loaned_to": request.requested_by,
                    "loan_return_date": request.return_date,
                },
            )
            discard_reclone_progress(session, asset.id)
            session.commit()
            session.refresh(request)

        logger.info("loan approved", extra={"request_id": request_id, "asset_tag": request.asset_tag})
        event_bus.publish_dict(
            "loan.approved",
            {
                "request_id": request_id,
                "asset_id": request.asset_id,
                "loaned_to": request.requested_by,
                "reviewed_by": reviewer,
            },
        )
        return request

    def reject(self, request_id: str, reviewer: str, notes: str | None = None) -> LoanRequest:
        with self._session() as session:
            request = self._get_request(session, request_id)
            self._review(session, request, LoanRequestStatus.REJECTED, reviewer, notes)
            session.commit()
            session.refresh(request)

        logger.info("loan rejected", extra={"request_id": request_id, "asset_tag": request.asset_tag})
        event_bus.publish_dict(
            "loan.rejected",
            {"request_id": request_id, "asset_id": request.asset_id, "reviewed_by": reviewer},
        )
        return request

    def list_requests(
        self,
        *,
        status: LoanRequestStatus | None = None,
        asset_id: str | None = None,
    ) -> list[LoanRequest]:
        with self._session() as session:
            statement = select(LoanRequest)
            if status is not None:
                statement = statement.where(LoanRequest.status == status)
            if asset_id is not None:
                statement = statement.where(LoanRequest.asset_id == asset_id)
            rows = list(session.exec(statement).all())
        rows.sort(key=lambda item: item.created_at, reverse=True)
        return rows

    def get(self, request_id: str) -> LoanRequest:
        with self._session() as session:
            return self._get_request(session, request_id)
