from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum
from typing import Any


class TrackingStatus(StrEnum):
    DECOM = "decom"
    FREE_TO_USE = "free-to-use"
    IN_REPAIR = "in-repair"
    IN_USE = "in-use"
    LOAN = "loan"
    RESERVED = "reserved"


# Fields that only carry meaning while an asset sits in the owning status.
STATUS_OWNED_FIELDS: dict[TrackingStatus, dict[str, Any]] = {
    TrackingStatus.IN_REPAIR: {"repair_status": "", "needs_reclone": False},
    TrackingStatus.LOAN: {"loaned_to": None, "loan_return_date": None},
}


def cleared_fields_for(status: TrackingStatus) -> dict[str, Any]:
    """Return the resets to apply for an asset whose status is ``status``."""
    cleared: dict[str, Any] = {}
    for owner, fields in STATUS_OWNED_FIELDS.items():
        if owner != status:
            cleared.update(fields)
    return cleared


class LoanRequestStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


LOAN_ALLOWED_TRANSITIONS: dict[LoanRequestStatus, set[LoanRequestStatus]] = {
    LoanRequestStatus.PENDING: {LoanRequestStatus.APPROVED, LoanRequestStatus.REJECTED},
    LoanRequestStatus.APPROVED: set(),
    LoanRequestStatus.REJECTED: set(),
}


def can_loan_transition(source: LoanRequestStatus, target: LoanRequestStatus) -> bool:
    return target in LOAN_ALLOWED_TRANSITIONS.get(source, set())


class RecloneStepState(StrEnum):
    LOCKED = "locked"
    AVAILABLE = "available"
    COMPLETED = "completed"


RECLONE_STEPS: tuple[tuple[int, str, str], ...] = (
    (1, "Backup User Data", "Ensure all user data is backed up before proceeding with reclone."),
    (2, "Send Email to User", "Notify the user that their device will undergo recloning process."),
    (3, "Create SMC Helpdesk Ticket", "Log a ticket in SMC Helpdesk for tracking purposes."),
    (4, "Disconnect from Network", "Remove device from corporate network and domain."),
    (5, "Perform Reclone", "Execute the recloning process using the standard imaging tool."),
    (6, "Rejoin Domain", "Rejoin the device to corporate domain after reclone."),
    (7, "Install Required Software", "Install all necessary software and applications."),
    (8, "Restore User Data", "Restore backed up user data to the device."),
    (9, "User Verification", "Have user verify that device is working correctly."),
    (10, "Close Helpdesk Ticket", "Update and close the SMC Helpdesk ticket."),
)
RECLONE_STEP_IDS: tuple[int, ...] = tuple(step_id for step_id, _, _ in RECLONE_STEPS)
FIRST_STEP = RECLONE_STEP_IDS[0]
LAST_STEP = RECLONE_STEP_IDS[-1]


def reclone_step_state(step_id: int, completed: Iterable[int]) -> RecloneStepState:
    done = set(completed)
    if step_id in done:
        return RecloneStepState.COMPLETED
    if step_id == FIRST_STEP or (step_id - 1) in done:
        return RecloneStepState.AVAILABLE
    return RecloneStepState.LOCKED


def steps_from(step_id: int, completed: Iterable[int]) -> list[int]:
    """Completed steps at or after ``step_id``; the set removed by a cascading undo."""
    return sorted(item for item in set(completed) if item >= step_id)


def all_steps_completed(completed: Iterable[int]) -> bool:
    return set(RECLONE_STEP_IDS).issubset(set(completed))
