from datetime import date, timedelta

import pytest
from sqlalchemy import update

from app.core.exceptions import (
    InsufficientBalanceError,
    InvalidRangeError,
    InvalidReferenceError,
    InvalidStateError,
    InvalidTransitionError,
    NoBalanceError,
    NotFoundError,
    OverlappingRequestError,
)
from app.models.audit_log import AuditLog
from app.models.employee import EmploymentStatus
from app.models.leave_balance import LeaveBalance
from app.models.leave_request import LeaveRequest, LeaveStatus
from app.services.audit import AuditService
from app.services.leave_service import LeaveRequestService
from app.services.leave_rules import ranges_overlap
from app.services import leave_service as leave_service_module

CURRENT_YEAR = date.today().year


def day(month, d):
    return date(CURRENT_YEAR, month, d)


@pytest.fixture
def service(db_session, hr):
    return LeaveRequestService(db_session, actor_id=hr.user.id)


def _file(service, employee, policy, start, end, reason="Family trip"):
    return service.create_leave_request(employee.id, policy.id, start, end, reason)


def _ledger(db_session, balance):
    db_session.refresh(balance)
    return balance.used_days, balance.remaining_days


@pytest.fixture
def competing_write(database):
    """Commit a statement from a second session, as a concurrent request would."""
    def _write(statement):
        other = database.SessionLocal()
        try:
            other.execute(statement)
            other.commit()
        finally:
            other.close()
    return _write


# --- Creation ---

def test_create_is_pending_and_does_not_touch_balance(service, db_session, employee, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    assert leave.status == LeaveStatus.PENDING.value
    assert leave.days == 3
    assert leave.year == CURRENT_YEAR
    assert leave.attachments == []
    assert _ledger(db_session, balance) == (5.0, 15.0)


def test_create_keeps_attachments(service, employee, policy, balance):
    leave = service.create_leave_request(
        employee.id, policy.id, day(4, 1), day(4, 1), "Doctor", attachments=["files/note.pdf"]
    )
    assert leave.attachments == ["files/note.pdf"]
    assert leave.days == 1


def test_create_week_is_seven_days(service, employee, policy, balance):
    leave = _file(service, employee, policy, day(5, 1), day(5, 1) + timedelta(days=6))
    assert leave.days == 7


@pytest.mark.parametrize("start, end", [
    ((3, 10), (3, 9)),
    ((12, 31), (1, 1)),
    ((6, 2), (5, 30)),
])
def test_end_before_start_is_invalid_range(service, db_session, employee, policy, balance, start, end):
    with pytest.raises(InvalidRangeError):
        _file(service, employee, policy, day(*start), day(*end))
    assert db_session.query(LeaveRequest).count() == 0


def test_unknown_employee_is_not_found(service, policy):
    with pytest.raises(NotFoundError):
        service.create_leave_request(9999, policy.id, day(3, 1), day(3, 2), "x")


def test_terminated_employee_is_invalid_reference(service, make_employee, policy):
    leaver = make_employee(status=EmploymentStatus.TERMINATED)
    with pytest.raises(InvalidReferenceError):
        _file(service, leaver, policy, day(3, 1), day(3, 2))


def test_unknown_policy_is_not_found(service, employee, balance):
    with pytest.raises(NotFoundError):
        service.create_leave_request(employee.id, 9999, day(3, 1), day(3, 2), "x")


def test_inactive_policy_is_invalid_reference(service, db_session, employee, policy, balance):
    policy.is_active = False
    db_session.commit()
    with pytest.raises(InvalidReferenceError):
        _file(service, employee, policy, day(3, 1), day(3, 2))


def test_missing_ledger_row_is_no_balance(service, employee, policy):
    with pytest.raises(NoBalanceError):
        _file(service, employee, policy, day(3, 1), day(3, 2))


def test_last_year_balance_does_not_count(service, make_balance, employee, policy):
    make_balance(employee, policy, year=CURRENT_YEAR - 1)
    with pytest.raises(NoBalanceError):
        _file(service, employee, policy, day(3, 1), day(3, 2))


def test_request_above_remaining_is_rejected_without_a_row(service, db_session, make_balance, employee, policy):
    make_balance(employee, policy, used=18.0)  # remaining 2
    with pytest.raises(InsufficientBalanceError):
        _file(service, employee, policy, day(3, 1), day(3, 5))
    assert db_session.query(LeaveRequest).count() == 0


def test_overlap_with_pending_requests(service, db_session, employee, policy, balance):
    _file(service, employee, policy, day(1, 1), day(1, 5))
    _file(service, employee, policy, day(1, 10), day(1, 15))
    with pytest.raises(OverlappingRequestError):
        _file(service, employee, policy, day(1, 4), day(1, 11))
    assert db_session.query(LeaveRequest).count() == 2


def test_overlap_with_approved_request(service, employee, policy, balance):
    leave = _file(service, employee, policy, day(2, 1), day(2, 3))
    service.approve(leave.id)
    with pytest.raises(OverlappingRequestError):
        _file(service, employee, policy, day(2, 3), day(2, 3))


def test_rejected_and_cancelled_requests_do_not_block(service, employee, policy, balance):
    rejected = _file(service, employee, policy, day(2, 1), day(2, 3))
    service.reject(rejected.id, "Team offsite")
    cancelled = _file(service, employee, policy, day(2, 1), day(2, 3))
    service.cancel(cancelled.id, "Plans changed")
    again = _file(service, employee, policy, day(2, 1), day(2, 3))
    assert again.status == LeaveStatus.PENDING.value


def test_other_employees_do_not_overlap(service, make_employee, make_balance, employee, policy, balance):
    colleague = make_employee()
    make_balance(colleague, policy)
    _file(service, employee, policy, day(2, 1), day(2, 3))
    leave = _file(service, colleague, policy, day(2, 1), day(2, 3))
    assert leave.status == LeaveStatus.PENDING.value


@pytest.mark.parametrize(
    "start, end",
    [
        (day(6, 1), day(6, 9)),
        (day(6, 1), day(6, 10)),
        (day(6, 12), day(6, 12)),
        (day(6, 15), day(6, 20)),
        (day(6, 16), day(6, 20)),
        (day(6, 5), day(6, 18)),
    ],
)
def test_overlap_query_agrees_with_rule(service, employee, policy, balance, start, end):
    existing = _file(service, employee, policy, day(6, 10), day(6, 15))
    if ranges_overlap(start, end, existing.start_date, existing.end_date):
        with pytest.raises(OverlappingRequestError):
            _file(service, employee, policy, start, end)
    else:
        assert _file(service, employee, policy, start, end).status == LeaveStatus.PENDING.value


# --- Transitions ---

def test_approve_then_cancel_restores_the_ledger(service, db_session, employee, manager, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    assert _ledger(db_session, balance) == (5.0, 15.0)

    leave = service.update_leave_request(leave.id, LeaveStatus.APPROVED, approved_by=manager.id)
    assert leave.status == LeaveStatus.APPROVED.value
    assert leave.approved_by_id == manager.id
    assert leave.approved_at is not None
    assert _ledger(db_session, balance) == (8.0, 12.0)

    leave = service.update_leave_request(leave.id, LeaveStatus.CANCELLED, cancellation_reason="Project deadline")
    assert leave.status == LeaveStatus.CANCELLED.value
    assert leave.cancellation_reason == "Project deadline"
    assert leave.cancelled_at is not None
    assert _ledger(db_session, balance) == (5.0, 15.0)


def test_ledger_always_sums_to_allowance(service, db_session, employee, policy, balance):
    first = _file(service, employee, policy, day(3, 1), day(3, 2))
    second = _file(service, employee, policy, day(4, 1), day(4, 4))
    for step in (
        lambda: service.approve(first.id),
        lambda: service.approve(second.id),
        lambda: service.cancel(first.id),
        lambda: service.cancel(second.id),
    ):
        step()
        used, remaining = _ledger(db_session, balance)
        assert used + remaining == policy.days_allowed
        assert remaining >= 0


def test_pending_cancel_has_no_balance_effect(service, db_session, employee, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    service.cancel(leave.id)
    assert _ledger(db_session, balance) == (5.0, 15.0)


def test_reject_records_reason_and_keeps_balance(service, db_session, employee, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    leave = service.reject(leave.id, "Peak season")
    assert leave.status == LeaveStatus.REJECTED.value
    assert leave.rejection_reason == "Peak season"
    assert leave.rejected_at is not None
    assert _ledger(db_session, balance) == (5.0, 15.0)


def test_reject_without_reason_fails(service, employee, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    with pytest.raises(InvalidTransitionError):
        service.update_leave_request(leave.id, LeaveStatus.REJECTED, rejection_reason="  ")


def test_resubmit_clears_rejection(service, employee, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    service.reject(leave.id, "Missing handover plan")
    leave = service.update_leave_request(leave.id, LeaveStatus.PENDING)
    assert leave.status == LeaveStatus.PENDING.value
    assert leave.rejection_reason is None
    assert leave.rejected_at is None


def test_resubmit_is_blocked_by_a_newer_overlapping_request(service, employee, policy, balance):
    rejected = _file(service, employee, policy, day(1, 1), day(1, 5))
    service.reject(rejected.id, "Clash")
    _file(service, employee, policy, day(1, 3), day(1, 7))
    with pytest.raises(OverlappingRequestError):
        service.update_leave_request(rejected.id, LeaveStatus.PENDING)


@pytest.mark.parametrize("prior, target", [
    (LeaveStatus.APPROVED, LeaveStatus.APPROVED),
    (LeaveStatus.REJECTED, LeaveStatus.APPROVED),
    (LeaveStatus.CANCELLED, LeaveStatus.PENDING),
    (LeaveStatus.APPROVED, LeaveStatus.PENDING),
])
def test_invalid_transitions(service, db_session, employee, policy, balance, prior, target):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    leave.status = prior.value
    db_session.commit()
    with pytest.raises(InvalidTransitionError):
        service.update_leave_request(leave.id, target)
    db_session.refresh(leave)
    assert leave.status == prior.value


def test_double_approval_is_invalid(service, db_session, employee, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    service.approve(leave.id)
    with pytest.raises(InvalidTransitionError):
        service.approve(leave.id)
    assert _ledger(db_session, balance) == (8.0, 12.0)


def test_approval_rechecks_balance(service, db_session, make_balance, employee, policy):
    balance = make_balance(employee, policy, used=16.0)  # remaining 4
    first = _file(service, employee, policy, day(3, 2), day(3, 4))
    second = _file(service, employee, policy, day(4, 2), day(4, 4))

    service.approve(first.id)
    assert _ledger(db_session, balance) == (19.0, 1.0)

    with pytest.raises(InsufficientBalanceError):
        service.approve(second.id)
    db_session.refresh(second)
    assert second.status == LeaveStatus.PENDING.value
    assert _ledger(db_session, balance) == (19.0, 1.0)


def test_approval_without_ledger_row(service, db_session, employee, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    db_session.delete(balance)
    db_session.commit()
    with pytest.raises(NoBalanceError):
        service.approve(leave.id)
    db_session.refresh(leave)
    assert leave.status == LeaveStatus.PENDING.value


def test_restore_is_clamped_to_the_allowance(service, db_session, employee, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    service.approve(leave.id)
    # Drift the row out of lockstep
    balance.used_days = 1.0
    balance.remaining_days = 19.0
    db_session.commit()

    service.cancel(leave.id)
    assert _ledger(db_session, balance) == (0.0, 20.0)


def test_update_unknown_request(service):
    with pytest.raises(NotFoundError):
        service.update_leave_request(424242, LeaveStatus.APPROVED)


def test_expected_status_must_match_the_locked_row(service, db_session, employee, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    service.approve(leave.id)
    with pytest.raises(InvalidTransitionError):
        service.update_leave_request(leave.id, LeaveStatus.CANCELLED, expected_status=LeaveStatus.PENDING)
    db_session.refresh(leave)
    assert leave.status == LeaveStatus.APPROVED.value
    assert _ledger(db_session, balance) == (8.0, 12.0)


# --- Lost races ---

def test_approval_loses_race_for_the_last_days(service, db_session, monkeypatch, competing_write, make_balance, employee, policy):
    balance = make_balance(employee, policy, used=15.0)  # remaining 5
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))

    find_balance = service._find_balance

    def find_then_drain(*args, **kwargs):
        row = find_balance(*args, **kwargs)
        competing_write(
            update(LeaveBalance).where(LeaveBalance.id == row.id).values(used_days=18.0, remaining_days=2.0)
        )
        return row

    monkeypatch.setattr(service, "_find_balance", find_then_drain)
    with pytest.raises(InsufficientBalanceError):
        service.approve(leave.id)

    db_session.refresh(leave)
    assert leave.status == LeaveStatus.PENDING.value
    assert leave.approved_at is None
    assert _ledger(db_session, balance) == (18.0, 2.0)


def test_restore_loses_race_with_another_balance_change(service, db_session, monkeypatch, competing_write, employee, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    service.approve(leave.id)

    find_balance = service._find_balance

    def find_then_spend(*args, **kwargs):
        row = find_balance(*args, **kwargs)
        competing_write(
            update(LeaveBalance).where(LeaveBalance.id == row.id).values(used_days=10.0, remaining_days=10.0)
        )
        return row

    monkeypatch.setattr(service, "_find_balance", find_then_spend)
    with pytest.raises(InvalidTransitionError):
        service.cancel(leave.id)

    db_session.refresh(leave)
    assert leave.status == LeaveStatus.APPROVED.value
    assert leave.cancelled_at is None
    assert _ledger(db_session, balance) == (10.0, 10.0)


def test_status_change_loses_race(service, db_session, monkeypatch, competing_write, employee, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    leave_id = leave.id
    ensure_transition = leave_service_module.ensure_transition

    def check_then_cancel_elsewhere(current, target):
        ensure_transition(current, target)
        competing_write(
            update(LeaveRequest).where(LeaveRequest.id == leave_id).values(status=LeaveStatus.CANCELLED.value)
        )

    monkeypatch.setattr(leave_service_module, "ensure_transition", check_then_cancel_elsewhere)
    with pytest.raises(InvalidTransitionError):
        service.reject(leave_id, "Peak season")

    db_session.refresh(leave)
    assert leave.status == LeaveStatus.CANCELLED.value
    assert leave.rejection_reason is None
    assert db_session.query(AuditLog).filter(AuditLog.action == "UPDATE").count() == 0


def test_lost_status_race_rolls_back_the_deduction(service, db_session, monkeypatch, competing_write, employee, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    leave_id = leave.id
    ensure_transition = leave_service_module.ensure_transition

    def check_then_cancel_elsewhere(current, target):
        ensure_transition(current, target)
        competing_write(
            update(LeaveRequest).where(LeaveRequest.id == leave_id).values(status=LeaveStatus.CANCELLED.value)
        )

    monkeypatch.setattr(leave_service_module, "ensure_transition", check_then_cancel_elsewhere)
    with pytest.raises(InvalidTransitionError):
        service.approve(leave_id)

    db_session.refresh(leave)
    assert leave.status == LeaveStatus.CANCELLED.value
    # The balance was charged before the status update failed; both are undone
    assert _ledger(db_session, balance) == (5.0, 15.0)


# --- Deletion ---

def test_delete_pending(service, db_session, employee, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    leave_id = leave.id
    service.delete_leave_request(leave_id)
    assert db_session.query(LeaveRequest).filter(LeaveRequest.id == leave_id).first() is None
    assert _ledger(db_session, balance) == (5.0, 15.0)


@pytest.mark.parametrize("status", [LeaveStatus.APPROVED, LeaveStatus.REJECTED, LeaveStatus.CANCELLED])
def test_delete_requires_pending(service, db_session, employee, policy, balance, status):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    leave.status = status.value
    db_session.commit()
    with pytest.raises(InvalidStateError):
        service.delete_leave_request(leave.id)
    assert db_session.query(LeaveRequest).count() == 1


def test_delete_unknown_request(service):
    with pytest.raises(NotFoundError):
        service.delete_leave_request(424242)


# --- Audit trail ---

def test_every_mutation_is_audited(service, db_session, hr, employee, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))
    service.approve(leave.id)
    service.cancel(leave.id)
    pending_id = _file(service, employee, policy, day(6, 1), day(6, 1)).id
    service.delete_leave_request(pending_id)

    entries = db_session.query(AuditLog).filter(AuditLog.resource == "leave_requests").order_by(AuditLog.id).all()
    assert [e.action for e in entries] == ["CREATE", "UPDATE", "UPDATE", "CREATE", "DELETE"]
    assert all(e.user_id == hr.user.id for e in entries)

    created, approved = entries[0], entries[1]
    assert created.old_values is None
    assert created.new_values["status"] == "PENDING"
    assert approved.old_values["status"] == "PENDING"
    assert approved.new_values["status"] == "APPROVED"
    assert entries[-1].old_values["id"] == pending_id
    assert entries[-1].new_values is None


def test_audit_failure_does_not_undo_the_mutation(service, db_session, monkeypatch, employee, policy, balance):
    leave = _file(service, employee, policy, day(3, 2), day(3, 4))

    def broken_persist(self, entry):
        raise RuntimeError("audit store unavailable")

    monkeypatch.setattr(AuditService, "_persist", broken_persist)
    leave = service.approve(leave.id)

    assert leave.status == LeaveStatus.APPROVED.value
    assert _ledger(db_session, balance) == (8.0, 12.0)
    assert db_session.query(AuditLog).filter(AuditLog.action == "UPDATE").count() == 0


# --- Reads ---

def test_list_filters_by_status_and_team(service, make_employee, make_balance, manager, employee, policy, balance):
    outsider = make_employee()
    make_balance(outsider, policy)
    mine = _file(service, employee, policy, day(3, 2), day(3, 4))
    _file(service, outsider, policy, day(3, 2), day(3, 4))
    service.approve(mine.id)

    approved, total = service.list_leave_requests(status=LeaveStatus.APPROVED)
    assert total == 1 and approved[0].id == mine.id

    team, total = service.list_leave_requests(manager_employee_id=manager.id)
    assert total == 1 and team[0].employee_id == employee.id

    everything, total = service.list_leave_requests()
    assert total == 2
