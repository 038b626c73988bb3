"""
Package lifecycle statuses and the transition table consulted by the engine.
One row per target status: which date fields it derives, whether it forces
payment, and which customer notification (if any) it triggers.
"""
from dataclasses import dataclass
from enum import Enum

from clearance.errors import InvalidTransitionError


class PackageStatus(str, Enum):
    RECEIVED = "received"
    CUSTOMS_PENDING = "customs-pending"
    CUSTOMS_CLEARED = "customs-cleared"
    READY_PICKUP = "ready-pickup"
    DELIVERED = "delivered"
    ON_HOLD = "on-hold"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class NotificationType(str, Enum):
    CUSTOMS_CLEARED = "customs_cleared"
    READY_FOR_PICKUP = "ready_for_pickup"
    DELIVERED = "delivered"


# Canonical clearance pipeline; ON_HOLD is a side branch off any non-terminal status.
PIPELINE: tuple[PackageStatus, ...] = (
    PackageStatus.RECEIVED,
    PackageStatus.CUSTOMS_PENDING,
    PackageStatus.CUSTOMS_CLEARED,
    PackageStatus.READY_PICKUP,
    PackageStatus.DELIVERED,
)
TERMINAL: frozenset[PackageStatus] = frozenset({PackageStatus.DELIVERED})

STATUS_DISPLAY_TEXT: dict[PackageStatus, str] = {
    PackageStatus.RECEIVED: "Received",
    PackageStatus.CUSTOMS_PENDING: "In Customs",
    PackageStatus.CUSTOMS_CLEARED: "Customs Cleared",
    PackageStatus.READY_PICKUP: "Ready for Pickup",
    PackageStatus.DELIVERED: "Delivered",
    PackageStatus.ON_HOLD: "On Hold",
}


@dataclass(frozen=True)
class StatusRule:
    clears_customs: bool | None  # True: cleared date required, False: must be unset, None: untouched
    marks_delivered: bool | None
    forces_paid: bool
    notification: NotificationType | None


TRANSITION_RULES: dict[PackageStatus, StatusRule] = {
    PackageStatus.RECEIVED: StatusRule(False, False, False, None),
    PackageStatus.CUSTOMS_PENDING: StatusRule(False, False, False, None),
    PackageStatus.CUSTOMS_CLEARED: StatusRule(True, False, False, NotificationType.CUSTOMS_CLEARED),
    PackageStatus.READY_PICKUP: StatusRule(True, False, False, NotificationType.READY_FOR_PICKUP),
    PackageStatus.DELIVERED: StatusRule(True, True, True, NotificationType.DELIVERED),
    PackageStatus.ON_HOLD: StatusRule(None, False, False, None),
}


def parse_status(value: str | PackageStatus) -> PackageStatus:
    try:
        return PackageStatus(value)
    except ValueError:
        raise InvalidTransitionError(requested=str(value)) from None


def display_text(status: PackageStatus) -> str:
    return STATUS_DISPLAY_TEXT[status]


def notification_for(status: PackageStatus) -> NotificationType | None:
    return TRANSITION_RULES[status].notification


def is_valid_transition(current: PackageStatus, requested: PackageStatus, strict: bool = False) -> bool:
    """
    Unrestricted unless strict: any status may be assigned from any status
    (manual corrections, including moving backward out of DELIVERED).
    Strict: forward along PIPELINE, into ON_HOLD from any non-terminal status,
    out of ON_HOLD to any non-terminal status, or a repeat of the current one.
    """
    if not strict or current == requested:
        return True
    if current in TERMINAL:
        return False
    if requested == PackageStatus.ON_HOLD:
        return True
    if current == PackageStatus.ON_HOLD:
        return requested not in TERMINAL
    return PIPELINE.index(requested) > PIPELINE.index(current)
