from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from app.services.delivery_state import DeliveryStatus


class DeliveryCreate(BaseModel):
    courier_id: int
    scheduled_date: date
    notes: str | None = None
    # Accepted only so a client asking for another initial status gets a clear error.
    status: DeliveryStatus | None = None


class DeliveryUpdate(BaseModel):
    courier_id: int | None = None
    scheduled_date: date | None = None
    status: DeliveryStatus | None = None
    notes: str | None = None


class DeliveryOut(BaseModel):
    id: str
    courier_id: int
    status: DeliveryStatus
    scheduled_date: date
    notes: str | None
    created_by_user_id: int
    created_at: datetime
    updated_at: datetime
    allowed_transitions: list[DeliveryStatus]


class GenerateDeliveriesIn(BaseModel):
    date_range_start: date
    date_range_end: date
    courier_pool: list[int] = Field(min_length=1)
    pattern: str | None = None
    criteria: dict[str, Any] = Field(default_factory=dict)


class GenerateDeliveriesOut(BaseModel):
    generated_count: int
    skipped_count: int
    generated_deliveries: list[DeliveryOut]


class GenerationPatternsOut(BaseModel):
    default: str
    patterns: list[str]
