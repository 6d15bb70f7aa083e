from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import Any
from uuid import uuid4

import sqlalchemy as sa
from pydantic import BaseModel, ConfigDict, computed_field
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from app.domain.compliance import is_hoto_compliant
from app.domain.permissions import UserRole
from app.domain.state_machine import LoanRequestStatus, RecloneStepState, TrackingStatus

DEFAULT_PURCHASE_VALIDITY_DAYS = 180


def now_utc() -> datetime:
    return datetime.now(UTC)


def today_utc() -> date:
    return now_utc().date()


def _new_id() -> str:
    return str(uuid4())


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=_new_id, primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=_new_id, primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=_new_id, primary_key=True)
    username: str = Field(index=True, unique=True, max_length=100)
    name: str = Field(max_length=100)
    password_hash: str
    role: UserRole = Field(default=UserRole.USER, sa_type=sa.String(length=20))
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Asset(SQLModel, table=True):
    __tablename__ = "assets"

    id: str = Field(default_factory=_new_id, primary_key=True)
    tag: str = Field(index=True, unique=True, max_length=50)
    serial_number: str | None = Field(default=None, index=True, max_length=100)
    description: str | None = None
    tracking_status: TrackingStatus = Field(
        default=TrackingStatus.IN_USE,
        index=True,
        sa_type=sa.String(length=20),
    )
    owner: str | None = Field(default=None, index=True, max_length=200)
    hoto_number: str | None = Field(default=None, max_length=100)
    location: str | None = Field(default=None, max_length=200)
    bin: str | None = Field(default=None, max_length=100)
    repair_status: str = Field(default="")
    needs_reclone: bool = Field(default=False, index=True)
    available_for_loan: bool = Field(default=False, index=True)
    loaned_to: str | None = None
    loan_return_date: date | None = None
    last_verified: datetime | None = Field(default=None, index=True)
    verified_by: str | None = None
    row_version: int = Field(default=1)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class PoolPurchaseBase(SQLModel):
    id: str = Field(default_factory=_new_id, primary_key=True)
    po_number: str = Field(index=True, unique=True, max_length=100)
    quantity: int
    used_count: int = Field(default=0)
    expiry_date: date = Field(index=True)
    notes: str | None = None
    created_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)

    @property
    def used(self) -> int:
        return self.used_count

    @property
    def remaining(self) -> int:
        return self.quantity - self.used_count

    @property
    def expired(self) -> bool:
        return self.expiry_date < today_utc()


class TicketPurchase(PoolPurchaseBase, table=True):
    __tablename__ = "ticket_purchases"


class MaintenanceContract(PoolPurchaseBase, table=True):
    __tablename__ = "maintenance_contracts"

    vendor: str | None = Field(default=None, max_length=200)


class PoolAssignmentBase(SQLModel):
    id: str = Field(default_factory=_new_id, primary_key=True)
    po_number: str
    asset_tag: str
    assigned_date: date = Field(default_factory=today_utc, index=True)
    assigned_by: str
    reason: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class TicketAssignment(PoolAssignmentBase, table=True):
    __tablename__ = "ticket_assignments"
    __table_args__ = (
        Index(
            "uq_ticket_assignments_open_asset",
            "asset_id",
            unique=True,
            sqlite_where=text("reclone_completed_at IS NULL"),
            postgresql_where=text("reclone_completed_at IS NULL"),
        ),
    )

    purchase_id: str = Field(foreign_key="ticket_purchases.id", index=True)
    # Nulled when the asset is deleted; the consumed ticket stays as history.
    asset_id: str | None = Field(default=None, foreign_key="assets.id", index=True)
    reclone_completed_at: datetime | None = Field(default=None, index=True)


class MaintenanceAssignment(PoolAssignmentBase, table=True):
    __tablename__ = "maintenance_assignments"
    __table_args__ = (UniqueConstraint("asset_id", name="uq_maintenance_assignments_asset"),)

    purchase_id: str = Field(foreign_key="maintenance_contracts.id", index=True)
    asset_id: str = Field(foreign_key="assets.id", index=True)


class RecloneProgress(SQLModel, table=True):
    __tablename__ = "reclone_progress"

    asset_id: str = Field(foreign_key="assets.id", primary_key=True)
    step_id: int = Field(primary_key=True)
    completed: bool = Field(default=True)
    completed_at: datetime = Field(default_factory=now_utc)
    completed_by: str | None = None
    ticket_assignment_id: str | None = Field(default=None, foreign_key="ticket_assignments.id")


class LoanRequest(SQLModel, table=True):
    __tablename__ = "loan_requests"
    __table_args__ = (
        Index(
            "uq_loan_requests_pending_asset",
            "asset_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: str = Field(default_factory=_new_id, primary_key=True)
    asset_id: str = Field(foreign_key="assets.id", index=True)
    asset_tag: str
    requested_by: str
    request_date: date = Field(default_factory=today_utc)
    reason: str
    duration: str = Field(default="1 week", max_length=50)
    return_date: date | None = None
    status: LoanRequestStatus = Field(
        default=LoanRequestStatus.PENDING,
        index=True,
        sa_type=sa.String(length=20),
    )
    reviewed_by: str | None = None
    review_date: date | None = None
    review_notes: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=_new_id)
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any] = PydanticField(default_factory=dict)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class BootstrapAdminRequest(BaseModel):
    username: str
    name: str
    password: str


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    name: str
    role: UserRole
    permissions: list[str] = PydanticField(default_factory=list)


class UserCreate(BaseModel):
    username: str
    name: str
    password: str
    role: UserRole = UserRole.USER
    is_active: bool = True


class UserRead(ORMReadModel):
    id: str
    username: str
    name: str
    role: UserRole
    is_active: bool
    created_at: datetime


class AssetCreate(BaseModel):
    tag: str
    serial_number: str | None = None
    description: str | None = None
    owner: str | None = None
    hoto_number: str | None = None
    location: str | None = None
    bin: str | None = None
    tracking_status: TrackingStatus = TrackingStatus.IN_USE
    repair_status: str = ""
    needs_reclone: bool = False
    available_for_loan: bool = False
    loaned_to: str | None = None
    loan_return_date: date | None = None


class AssetUpdate(BaseModel):
    tag: str | None = None
    serial_number: str | None = None
    description: str | None = None
    owner: str | None = None
    hoto_number: str | None = None
    location: str | None = None
    bin: str | None = None
    tracking_status: TrackingStatus | None = None
    repair_status: str | None = None
    needs_reclone: bool | None = None
    available_for_loan: bool | None = None
    loaned_to: str | None = None
    loan_return_date: date | None = None


class AssetRead(ORMReadModel):
    id: str
    tag: str
    serial_number: str | None
    description: str | None
    tracking_status: TrackingStatus
    owner: str | None
    hoto_number: str | None
    location: str | None
    bin: str | None
    repair_status: str
    needs_reclone: bool
    available_for_loan: bool
    loaned_to: str | None
    loan_return_date: date | None
    last_verified: datetime | None
    verified_by: str | None
    row_version: int
    created_at: datetime
    updated_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def hoto_compliant(self) -> bool:
        return is_hoto_compliant(self)


class AssetLoanableUpdateRequest(BaseModel):
    available_for_loan: bool


class NextTagRead(BaseModel):
    tag: str


class AssetStatusSummaryRead(BaseModel):
    total: int
    by_status: dict[str, int]


class PurchaseCreate(BaseModel):
    po_number: str
    quantity: int
    expiry_date: date = PydanticField(
        default_factory=lambda: today_utc() + timedelta(days=DEFAULT_PURCHASE_VALIDITY_DAYS)
    )
    notes: str | None = None
    vendor: str | None = None


class PurchaseRead(ORMReadModel):
    id: str
    po_number: str
    quantity: int
    used: int
    remaining: int
    expiry_date: date
    expired: bool
    notes: str | None
    vendor: str | None = None
    created_by: str | None
    created_at: datetime


class AssignmentCreate(BaseModel):
    purchase_id: str
    asset_id: str
    reason: str | None = None


class AssignmentRead(ORMReadModel):
    id: str
    purchase_id: str
    asset_id: str | None
    po_number: str
    asset_tag: str
    assigned_date: date
    assigned_by: str
    reason: str | None
    created_at: datetime
    reclone_completed_at: datetime | None = None


class PoolSummaryRead(BaseModel):
    purchase_count: int
    total_units: int
    used_units: int
    remaining_units: int
    available_units: int


class RecloneStepRead(BaseModel):
    step_id: int
    title: str
    description: str
    state: RecloneStepState
    completed_at: datetime | None = None
    completed_by: str | None = None


class RecloneProgressRead(BaseModel):
    asset_id: str
    asset_tag: str
    ticket_assigned: bool
    ticket_assignment_id: str | None
    completed_steps: int
    total_steps: int
    percent: int
    can_finish: bool
    steps: list[RecloneStepRead]


class RecloneQueueItemRead(BaseModel):
    asset_id: str
    asset_tag: str
    description: str | None
    owner: str | None
    repair_status: str
    ticket_assigned: bool
    completed_steps: int
    percent: int


class LoanRequestCreate(BaseModel):
    asset_id: str
    reason: str
    duration: str = "1 week"
    return_date: date | None = None


class LoanReviewRequest(BaseModel):
    notes: str | None = None


class LoanRequestRead(ORMReadModel):
    id: str
    asset_id: str
    asset_tag: str
    requested_by: str
    request_date: date
    reason: str
    duration: str
    return_date: date | None
    status: LoanRequestStatus
    reviewed_by: str | None
    review_date: date | None
    review_notes: str | None
    created_at: datetime


class AuditProgressRead(BaseModel):
    verified: int
    total: int
    ratio: float
    percent: int


class AuditResetRequest(BaseModel):
    confirm: bool = False


class AuditResetRead(BaseModel):
    reset_count: int
