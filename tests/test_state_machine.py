from __future__ import annotations

from app.domain.state_machine import (
    LAST_STEP,
    RECLONE_STEPS,
    LoanRequestStatus,
    RecloneStepState,
    TrackingStatus,
    all_steps_completed,
    can_loan_transition,
    cleared_fields_for,
    reclone_step_state,
    steps_from,
)


def test_cleared_fields_follow_tracking_status() -> None:
    assert cleared_fields_for(TrackingStatus.IN_REPAIR) == {"loaned_to": None, "loan_return_date": None}
    assert cleared_fields_for(TrackingStatus.LOAN) == {"repair_status": "", "needs_reclone": False}
    assert cleared_fields_for(TrackingStatus.DECOM) == {
        "repair_status": "",
        "needs_reclone": False,
        "loaned_to": None,
        "loan_return_date": None,
    }


def test_reclone_step_states() -> None:
    assert len(RECLONE_STEPS) == LAST_STEP == 10
    assert reclone_step_state(1, []) == RecloneStepState.AVAILABLE
    assert reclone_step_state(2, []) == RecloneStepState.LOCKED
    assert reclone_step_state(2, [1]) == RecloneStepState.AVAILABLE
    assert reclone_step_state(1, [1]) == RecloneStepState.COMPLETED


def test_cascade_and_completion_helpers() -> None:
    assert steps_from(3, [5, 1, 3, 2, 4]) == [3, 4, 5]
    assert steps_from(6, [1, 2]) == []
    assert all_steps_completed(range(1, 11)) is True
    assert all_steps_completed(range(1, 10)) is False


def test_loan_transitions_only_leave_pending() -> None:
    assert can_loan_transition(LoanRequestStatus.PENDING, LoanRequestStatus.APPROVED)
    assert can_loan_transition(LoanRequestStatus.PENDING, LoanRequestStatus.REJECTED)
    assert not can_loan_transition(LoanRequestStatus.APPROVED, LoanRequestStatus.REJECTED)
    assert not can_loan_transition(LoanRequestStatus.REJECTED, LoanRequestStatus.APPROVED)
