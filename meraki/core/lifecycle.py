# meraki/core/lifecycle.py
from __future__ import annotations

from enum import Enum

from meraki.core.errors import InvalidTransitionError


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# pending -> confirmed -> completed; cancelled and completed are terminal
TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
}


def is_terminal(status: AppointmentStatus) -> bool:
    return not TRANSITIONS[AppointmentStatus(status)]


def can_transition(current: AppointmentStatus, requested: AppointmentStatus) -> bool:
    current = AppointmentStatus(current)
    requested = AppointmentStatus(requested)
    return current == requested or requested in TRANSITIONS[current]


def ensure_transition(current: AppointmentStatus, requested: AppointmentStatus) -> None:
    if not can_transition(current, requested):
        raise InvalidTransitionError(AppointmentStatus(current).value, AppointmentStatus(requested).value)
