from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Callable

from app.core.config import settings
from app.core.ids import MAX_NUMERIC_ID
from app.models.delivery import Delivery
from app.schemas.delivery import DeliveryCreate, DeliveryUpdate
from app.services.delivery_state import (
    INITIAL_STATUS,
    DeliveryStatus,
    can_transition,
    is_terminal,
)
from app.services.delivery_store import DeliveryFilter, DeliveryStore
from app.services.errors import InvalidTransition, NotFound, ValidationError


log = logging.getLogger(__name__)

Clock = Callable[[], date]

NOTES_MAX_LEN = 2000


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def check_positive_id(field: str, value: Any) -> int:
    if value is None:
        raise ValidationError(field, "is required")
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(field, "must be a positive integer")
    if value > MAX_NUMERIC_ID:
        raise ValidationError(field, f"must be at most {MAX_NUMERIC_ID}")
    return value


def check_schedulable(field: str, value: Any, *, today: date) -> date:
    if value is None:
        raise ValidationError(field, "is required")
    if not isinstance(value, date) or isinstance(value, datetime):
        raise ValidationError(field, "must be a calendar date")
    if value < today and not settings.allow_past_scheduled_dates:
        raise ValidationError(field, f"must be today ({today.isoformat()}) or later")
    return value


def check_notes(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("notes", "must be a string")
    if len(value) > NOTES_MAX_LEN:
        raise ValidationError("notes", f"must be at most {NOTES_MAX_LEN} characters")
    return value


class DeliveryService:
    """
    Delivery lifecycle: validates input, enforces the status state machine and
    reads/writes through a DeliveryStore.
    """

    def __init__(self, store: DeliveryStore, *, today: Clock = utc_today):
        self.store = store
        self.today = today

    async def create(self, request: DeliveryCreate, acting_user_id: int) -> Delivery:
        check_positive_id("acting_user_id", acting_user_id)
        courier_id = check_positive_id("courier_id", request.courier_id)
        scheduled_date = check_schedulable("scheduled_date", request.scheduled_date, today=self.today())
        notes = check_notes(request.notes)

        if request.status is not None and request.status != INITIAL_STATUS:
            raise ValidationError(
                "status", f"new deliveries start as {INITIAL_STATUS.value}, got {request.status.value}"
            )

        delivery = await self.store.insert(
            Delivery(
                courier_id=courier_id,
                scheduled_date=scheduled_date,
                notes=notes,
                status=INITIAL_STATUS,
                created_by_user_id=acting_user_id,
            )
        )
        log.info("deliveries: created %s for courier %s on %s by user %s",
                 delivery.id, courier_id, scheduled_date, acting_user_id)
        return delivery

    async def update(self, delivery_id: str, request: DeliveryUpdate) -> Delivery:
        # Only fields present in the request change (explicit nulls included).
        changes = request.model_dump(exclude_unset=True)
        patch: dict[str, Any] = {}

        if "courier_id" in changes:
            patch["courier_id"] = check_positive_id("courier_id", changes["courier_id"])
        if "scheduled_date" in changes:
            patch["scheduled_date"] = check_schedulable(
                "scheduled_date", changes["scheduled_date"], today=self.today()
            )
        if "notes" in changes:
            patch["notes"] = check_notes(changes["notes"])
        if "status" in changes:
            if changes["status"] is None:
                raise ValidationError("status", "cannot be cleared")
            patch["status"] = DeliveryStatus(changes["status"])

        def guard(current: Delivery) -> None:
            requested = patch.get("status", current.status)
            if requested != current.status:
                if not can_transition(current.status, requested):
                    raise InvalidTransition(current.status, requested)
                return
            field_changes = [k for k in patch if k != "status" and getattr(current, k) != patch[k]]
            if field_changes and is_terminal(current.status):
                raise ValidationError(
                    field_changes[0], f"delivery is {current.status.value} and can no longer be modified"
                )

        updated = await self.store.update(delivery_id, patch, guard=guard)
        if updated is None:
            raise NotFound("Delivery", delivery_id)

        log.info("deliveries: updated %s fields=%s", delivery_id, sorted(patch))
        return updated

    async def delete(self, delivery_id: str) -> None:
        if not await self.store.delete(delivery_id):
            raise NotFound("Delivery", delivery_id)
        log.info("deliveries: deleted %s", delivery_id)

    async def get_by_id(self, delivery_id: str) -> Delivery:
        delivery = await self.store.get(delivery_id)
        if delivery is None:
            raise NotFound("Delivery", delivery_id)
        return delivery

    async def list_filtered(
        self,
        *,
        date: date | None = None,
        courier_id: int | None = None,
        status: DeliveryStatus | None = None,
    ) -> list[Delivery]:
        return await self.store.list(DeliveryFilter(date=date, courier_id=courier_id, status=status))
