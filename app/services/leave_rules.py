"""
Pure leave rules: day counting, range overlap and the status transition table.
"""
from datetime import date
from typing import Dict, FrozenSet

from app.core.exceptions import InvalidTransitionError
from app.models.leave_request import LeaveStatus

# Statuses that hold days on the calendar
ACTIVE_STATUSES = (LeaveStatus.PENDING.value, LeaveStatus.APPROVED.value)

ALLOWED_TRANSITIONS: Dict[LeaveStatus, FrozenSet[LeaveStatus]] = {
    LeaveStatus.PENDING: frozenset({LeaveStatus.APPROVED, LeaveStatus.REJECTED, LeaveStatus.CANCELLED}),
    LeaveStatus.APPROVED: frozenset({LeaveStatus.CANCELLED}),
    LeaveStatus.REJECTED: frozenset({LeaveStatus.PENDING}),
    LeaveStatus.CANCELLED: frozenset(),
}


def count_leave_days(start_date: date, end_date: date) -> int:
    """Both endpoints count as leave days."""
    return (end_date - start_date).days + 1


def ranges_overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    """
    Inclusive ranges overlap when they share at least one day.

    LeaveRequestService._ensure_no_overlap runs the same comparison as a
    query filter; keep the two in step.
    """
    return start_a <= end_b and start_b <= end_a


def can_transition(current: LeaveStatus, target: LeaveStatus) -> bool:
    return LeaveStatus(target) in ALLOWED_TRANSITIONS[LeaveStatus(current)]


def ensure_transition(current: LeaveStatus, target: LeaveStatus) -> None:
    current, target = LeaveStatus(current), LeaveStatus(target)
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot change leave request status from {current.value} to {target.value}",
            details={"from": current.value, "to": target.value},
        )
