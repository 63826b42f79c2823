from __future__ import annotations

from enum import Enum


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


INITIAL_STATUS = DeliveryStatus.PENDING

ALLOWED_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({DeliveryStatus.ASSIGNED, DeliveryStatus.CANCELLED}),
    DeliveryStatus.ASSIGNED: frozenset({DeliveryStatus.IN_PROGRESS, DeliveryStatus.CANCELLED}),
    DeliveryStatus.IN_PROGRESS: frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED}),
    DeliveryStatus.DELIVERED: frozenset(),
    DeliveryStatus.CANCELLED: frozenset(),
}


def is_terminal(status: DeliveryStatus) -> bool:
    return not ALLOWED_TRANSITIONS[status]


def can_transition(current: DeliveryStatus, requested: DeliveryStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


def allowed_next(status: DeliveryStatus) -> list[DeliveryStatus]:
    # stable order for API responses
    return [s for s in DeliveryStatus if s in ALLOWED_TRANSITIONS[status]]
