"""
Appointment lifecycle.

An appointment starts ``pending`` when a patient books it. The doctor then
approves or rejects it; either participant may cancel it while it is still
open; the doctor completes a confirmed visit. Rescheduling keeps the
appointment open, but a patient-initiated move needs fresh approval.
"""
from datetime import date, datetime, timedelta
from typing import NamedTuple, FrozenSet, Optional

from models.appointment_model import AppointmentStatus
from models.user_model import Role

AVAILABLE_SLOTS = ["09:00 AM", "10:00 AM", "11:00 AM", "02:00 PM", "03:00 PM"]

# Statuses that hold a doctor's slot
OPEN_STATUSES = [AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value]
HISTORY_STATUSES = [AppointmentStatus.COMPLETED.value, AppointmentStatus.CANCELED.value]


class InvalidTransition(Exception):
    pass


class ActionNotAllowed(Exception):
    """The caller's role may not perform this action."""


class SchedulingError(ValueError):
    pass


class Action(NamedTuple):
    sources: FrozenSet[str]
    target: Optional[str]
    roles: FrozenSet[Role]


ACTIONS = {
    "approve": Action(frozenset({"pending"}), "confirmed", frozenset({Role.DOCTOR})),
    "reject": Action(frozenset({"pending"}), "rejected", frozenset({Role.DOCTOR})),
    "cancel": Action(frozenset(OPEN_STATUSES), "canceled", frozenset({Role.DOCTOR, Role.PATIENT})),
    "complete": Action(frozenset({"confirmed"}), "completed", frozenset({Role.DOCTOR})),
    # target None: depends on who moves it, see reschedule_status
    "reschedule": Action(frozenset(OPEN_STATUSES), None, frozenset({Role.DOCTOR, Role.PATIENT})),
    # the document is deleted
    "withdraw": Action(frozenset({"pending"}), None, frozenset({Role.PATIENT})),
}


def next_status(action: str, current: str, role: Role) -> Optional[str]:
    """Return the status ``action`` leads to, or raise InvalidTransition."""
    rule = ACTIONS.get(action)
    if rule is None:
        raise InvalidTransition(f"Unknown action '{action}'")
    if role not in rule.roles:
        raise ActionNotAllowed(f"A {role.value} cannot {action} an appointment")
    if current not in rule.sources:
        raise InvalidTransition(f"Cannot {action} an appointment that is {current}")
    if action == "reschedule":
        return reschedule_status(current, role)
    return rule.target


def reschedule_status(current: str, role: Role) -> str:
    if role == Role.PATIENT:
        return AppointmentStatus.PENDING.value
    return current


def slot_start(day: str, time: str) -> datetime:
    """Combine a ``YYYY-MM-DD`` date and a slot label into one datetime."""
    try:
        return datetime.strptime(f"{day} {time}", "%Y-%m-%d %I:%M %p")
    except ValueError:
        raise SchedulingError("Please select a valid date (YYYY-MM-DD) and time.")


def validate_slot(day: str, time: str, today: Optional[date] = None) -> datetime:
    if time not in AVAILABLE_SLOTS:
        raise SchedulingError(f"'{time}' is not an available time slot.")
    starts_at = slot_start(day, time)
    today = today or date.today()
    if starts_at.date() < today:
        raise SchedulingError("Appointments cannot be booked in the past.")
    return starts_at


def day_bounds(day: str):
    try:
        start = datetime.strptime(day, "%Y-%m-%d")
    except ValueError:
        raise SchedulingError("Please select a valid date (YYYY-MM-DD).")
    return start, start + timedelta(days=1)


def slot_key(doctor_id: str, day: str, time: str) -> str:
    """Unique per held slot; only open appointments carry it."""
    return f"{doctor_id}|{day}|{time}"
