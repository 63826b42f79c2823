"""
Domain errors raised by the delivery lifecycle and generation services.

The HTTP layer maps them to responses (see app.api.v1.errors); nothing in
app.services knows about status codes.
"""
from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Any, Sequence

if TYPE_CHECKING:
    from app.models.delivery import Delivery
    from app.services.delivery_state import DeliveryStatus


class DeliveryError(Exception):
    code = "delivery_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def details(self) -> list[dict[str, Any]]:
        return []


class ValidationError(DeliveryError):
    code = "validation_error"

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field

    def details(self) -> list[dict[str, Any]]:
        return [{"field": self.field, "message": self.message}]


class NotFound(DeliveryError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id

    def details(self) -> list[dict[str, Any]]:
        return [{"entity": self.entity, "id": self.entity_id}]


class InvalidTransition(DeliveryError):
    code = "invalid_transition"

    def __init__(self, current: DeliveryStatus, requested: DeliveryStatus):
        super().__init__(f"Cannot move delivery from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested

    def details(self) -> list[dict[str, Any]]:
        return [{"from": self.current.value, "to": self.requested.value}]


class DuplicateDelivery(DeliveryError):
    code = "duplicate_delivery"

    def __init__(self, courier_id: int, scheduled_date: date):
        super().__init__(
            f"Courier {courier_id} already has an active delivery on {scheduled_date.isoformat()}"
        )
        self.courier_id = courier_id
        self.scheduled_date = scheduled_date

    def details(self) -> list[dict[str, Any]]:
        return [{"courier_id": self.courier_id, "scheduled_date": self.scheduled_date.isoformat()}]


class StoreUnavailable(DeliveryError):
    code = "store_unavailable"

    def __init__(self, operation: str):
        super().__init__(f"Delivery store unavailable during {operation}")
        self.operation = operation


class GenerationInterrupted(DeliveryError):
    """
    A generation run stopped partway. Records already inserted stay committed;
    `generated` lists them so the caller can decide whether to retry.
    """

    code = "generation_interrupted"

    def __init__(self, generated: Sequence[Delivery], cause: StoreUnavailable):
        super().__init__(f"Generation interrupted after {len(generated)} deliveries: {cause.message}")
        self.generated = tuple(generated)
        self.cause = cause

    @property
    def generated_count(self) -> int:
        return len(self.generated)

    def details(self) -> list[dict[str, Any]]:
        return [{
            "generated_count": self.generated_count,
            "generated_ids": [d.id for d in self.generated],
        }]
