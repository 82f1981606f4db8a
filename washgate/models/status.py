"""Status vocabularies and the allowed transitions between them.

Statuses are persisted as plain strings; the enums below are ``str`` subclasses so
they compare equal to the stored value.
"""
from enum import Enum

from washgate.errors import InvalidTransitionError


class Role(str, Enum):
    USER = 'user'
    WARDEN = 'warden'
    ADMIN = 'admin'


STAFF_ROLES = frozenset({Role.WARDEN.value, Role.ADMIN.value})


class AccountStatus(str, Enum):
    PENDING = 'pending'
    ACTIVE = 'active'
    BLOCKED = 'blocked'
    REJECTED = 'rejected'


class MachineStatus(str, Enum):
    AVAILABLE = 'available'
    IN_USE = 'in-use'
    MAINTENANCE = 'maintenance'
    REPAIR = 'repair'
    DISABLED = 'disabled'


OUT_OF_SERVICE = frozenset({
    MachineStatus.MAINTENANCE.value,
    MachineStatus.REPAIR.value,
    MachineStatus.DISABLED.value,
})


class BookingStatus(str, Enum):
    CONFIRMED = 'confirmed'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    NO_SHOW = 'no-show'
    INTERRUPTED = 'interrupted'


# Bookings in these states hold their window on the machine.
HOLDING_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.ACTIVE.value)


class SessionStatus(str, Enum):
    RUNNING = 'running'
    PAUSED = 'paused'
    COMPLETED = 'completed'
    TERMINATED = 'terminated'
    INTERRUPTED = 'interrupted'


LIVE_SESSION_STATUSES = (SessionStatus.RUNNING.value, SessionStatus.PAUSED.value)


class IssueType(str, Enum):
    WATER = 'water'
    POWER = 'power'
    MACHINE_FAULT = 'machine-fault'
    OTHER = 'other'


class IssueStatus(str, Enum):
    REPORTED = 'reported'
    VERIFIED = 'verified'
    RESOLVED = 'resolved'
    DISMISSED = 'dismissed'


class OfferStatus(str, Enum):
    OFFERED = 'offered'
    ACCEPTED = 'accepted'
    DECLINED = 'declined'
    EXPIRED = 'expired'
    COMPLETED = 'completed'


class NotificationType(str, Enum):
    BOOKING_CONFIRMED = 'booking-confirmed'
    NO_SHOW_WARNING = 'no-show-warning'
    SLOT_RELEASED = 'slot-released'
    SESSION_STARTED = 'session-started'
    SESSION_ENDING = 'session-ending'
    SESSION_COMPLETED = 'session-completed'
    EXTENSION_GRANTED = 'extension-granted'
    MAINTENANCE_ALERT = 'maintenance-alert'
    ISSUE_REPORTED = 'issue-reported'
    ISSUE_RESOLVED = 'issue-resolved'
    PRIORITY_REBOOK = 'priority-rebook'
    EMERGENCY = 'emergency'


BOOKING_TRANSITIONS = {
    BookingStatus.CONFIRMED: {BookingStatus.ACTIVE, BookingStatus.CANCELLED, BookingStatus.NO_SHOW},
    BookingStatus.ACTIVE: {BookingStatus.COMPLETED, BookingStatus.INTERRUPTED},
}

SESSION_TRANSITIONS = {
    SessionStatus.RUNNING: {
        SessionStatus.PAUSED,
        SessionStatus.COMPLETED,
        SessionStatus.TERMINATED,
        SessionStatus.INTERRUPTED,
    },
    SessionStatus.PAUSED: {
        SessionStatus.RUNNING,
        SessionStatus.COMPLETED,
        SessionStatus.TERMINATED,
        SessionStatus.INTERRUPTED,
    },
}

ISSUE_TRANSITIONS = {
    IssueStatus.REPORTED: {IssueStatus.VERIFIED, IssueStatus.RESOLVED, IssueStatus.DISMISSED},
    IssueStatus.VERIFIED: {IssueStatus.RESOLVED, IssueStatus.DISMISSED},
}

OFFER_TRANSITIONS = {
    OfferStatus.OFFERED: {OfferStatus.ACCEPTED, OfferStatus.DECLINED, OfferStatus.EXPIRED},
    OfferStatus.ACCEPTED: {OfferStatus.COMPLETED},
}


def check_transition(table, enum_cls, entity, current, target):
    """Return ``target`` as a stored value, or raise if ``table`` forbids the move."""
    current = enum_cls(current)
    target = enum_cls(target)
    if target not in table.get(current, ()):
        raise InvalidTransitionError(entity, current, target)
    return target.value
