"""
Reminder lifecycle.

    WAITING -> PENDING -> DONE | ERROR
    WAITING -> NO_SUBSCRIPTION_WHEN_DUE

DONE, ERROR and NO_SUBSCRIPTION_WHEN_DUE are terminal for a due-event. The only
way out of a terminal state is an explicit edit of the reminder (``reschedule``),
which starts a new due-event in WAITING.
"""
from enum import Enum
from typing import Dict, FrozenSet

from .errors import InvalidTransitionError


class ReminderStatus(str, Enum):
    WAITING = "waiting"  # Waiting to be due
    PENDING = "pending"  # Due, notifications are in flight
    DONE = "done"  # Every notification was delivered
    ERROR = "error"  # At least one notification could not be delivered
    NO_SUBSCRIPTION_WHEN_DUE = "no_subscription_when_due"  # No device to send the reminder to

    def __str__(self) -> str:
        return self.value


_SOURCES: Dict[ReminderStatus, FrozenSet[ReminderStatus]] = {
    ReminderStatus.WAITING: frozenset(),
    ReminderStatus.PENDING: frozenset({ReminderStatus.WAITING}),
    ReminderStatus.NO_SUBSCRIPTION_WHEN_DUE: frozenset({ReminderStatus.WAITING}),
    ReminderStatus.DONE: frozenset({ReminderStatus.PENDING}),
    ReminderStatus.ERROR: frozenset({ReminderStatus.PENDING}),
}

TERMINAL_STATUSES: FrozenSet[ReminderStatus] = frozenset(
    {ReminderStatus.DONE, ReminderStatus.ERROR, ReminderStatus.NO_SUBSCRIPTION_WHEN_DUE}
)


def parse_status(value) -> ReminderStatus:
    try:
        return ReminderStatus(value)
    except ValueError:
        raise InvalidTransitionError(f"Unknown reminder status {value!r}")


def allowed_sources(target: ReminderStatus) -> FrozenSet[ReminderStatus]:
    """States a reminder may be in for a move to ``target`` to be legal."""
    return _SOURCES[parse_status(target)]


def can_transition(current: ReminderStatus, target: ReminderStatus) -> bool:
    return parse_status(current) in allowed_sources(target)


def transition(current: ReminderStatus, target: ReminderStatus) -> ReminderStatus:
    current = parse_status(current)
    target = parse_status(target)
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move reminder from {current.value!r} to {target.value!r}",
            current=current.value,
            target=target.value,
        )
    return target


def is_terminal(status: ReminderStatus) -> bool:
    return parse_status(status) in TERMINAL_STATUSES


def reschedule(current: ReminderStatus) -> ReminderStatus:
    """An edit of due/action/recipients opens a new due-event from any state."""
    parse_status(current)
    return ReminderStatus.WAITING
