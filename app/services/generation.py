from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from types import MappingProxyType
from typing import Any, Mapping

from app.core.config import settings
from app.core.telemetry import get_tracer
from app.generation.base import GenerationPattern, Slot
from app.generation.registry import get_pattern, supported_patterns
from app.models.delivery import Delivery
from app.services.deliveries import Clock, check_positive_id, check_schedulable, utc_today
from app.services.delivery_state import INITIAL_STATUS
from app.services.delivery_store import DeliveryStore
from app.services.errors import DuplicateDelivery, GenerationInterrupted, StoreUnavailable, ValidationError


log = logging.getLogger(__name__)
tracer = get_tracer(__name__)


@dataclass(frozen=True)
class GenerationRequest:
    date_range_start: date
    date_range_end: date
    courier_pool: tuple[int, ...]
    pattern: str = field(default_factory=lambda: settings.default_generation_pattern)
    criteria: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def build(
        cls,
        *,
        date_range_start: date,
        date_range_end: date,
        courier_pool: list[int],
        pattern: str | None = None,
        criteria: Mapping[str, Any] | None = None,
    ) -> "GenerationRequest":
        # Pool keeps request order; repeated ids collapse onto the first occurrence.
        # Criteria are copied into a read-only view.
        return cls(
            date_range_start=date_range_start,
            date_range_end=date_range_end,
            courier_pool=tuple(dict.fromkeys(courier_pool)),
            pattern=pattern or settings.default_generation_pattern,
            criteria=MappingProxyType(dict(criteria or {})),
        )


@dataclass(frozen=True)
class GenerationResult:
    generated_count: int
    generated_deliveries: tuple[Delivery, ...]
    skipped_count: int = 0


def dates_between(start: date, end: date) -> list[date]:
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


class GenerationEngine:
    """
    Bulk delivery synthesis.

    Re-running the same request is safe: slots that already hold a
    non-cancelled delivery are skipped, both when seen up front and when a
    concurrent run wins the insert (unique index on courier + date).
    Each insert commits on its own; a store failure halts the run and
    reports what was committed via GenerationInterrupted.
    """

    def __init__(self, store: DeliveryStore, *, today: Clock = utc_today):
        self.store = store
        self.today = today

    def _validate(self, request: GenerationRequest) -> GenerationPattern:
        start, end = request.date_range_start, request.date_range_end
        if start is None:
            raise ValidationError("date_range_start", "is required")
        if end is None:
            raise ValidationError("date_range_end", "is required")
        if start > end:
            raise ValidationError("date_range_end", "must be on or after date_range_start")

        span = (end - start).days + 1
        if span > settings.generation_max_days:
            raise ValidationError(
                "date_range_end", f"range covers {span} days, limit is {settings.generation_max_days}"
            )
        check_schedulable("date_range_start", start, today=self.today())

        if not request.courier_pool:
            raise ValidationError("courier_pool", "must contain at least one courier")
        if len(request.courier_pool) > settings.generation_max_couriers:
            raise ValidationError(
                "courier_pool", f"at most {settings.generation_max_couriers} couriers per request"
            )
        for courier_id in request.courier_pool:
            check_positive_id("courier_pool", courier_id)

        try:
            pattern = get_pattern(request.pattern)
        except KeyError:
            raise ValidationError(
                "pattern", f"unknown pattern {request.pattern!r}; expected one of {supported_patterns()}"
            ) from None
        pattern.validate(request.criteria)
        return pattern

    def _plan(self, request: GenerationRequest, pattern: GenerationPattern) -> list[Slot]:
        dates = dates_between(request.date_range_start, request.date_range_end)
        pool_order = {c: i for i, c in enumerate(request.courier_pool)}

        slots = {
            s for s in pattern.expand(dates, request.courier_pool, request.criteria)
            if s.courier_id in pool_order
        }
        # date-major, then courier pool order
        return sorted(slots, key=lambda s: (s.scheduled_date, pool_order[s.courier_id]))

    async def generate(self, request: GenerationRequest, acting_user_id: int) -> GenerationResult:
        check_positive_id("acting_user_id", acting_user_id)
        pattern = self._validate(request)
        candidates = self._plan(request, pattern)

        with tracer.start_as_current_span("deliveries.generate") as span:
            span.set_attribute("generation.pattern", pattern.key)
            span.set_attribute("generation.candidates", len(candidates))

            try:
                taken = await self.store.active_slots(
                    request.courier_pool, request.date_range_start, request.date_range_end
                )
            except StoreUnavailable as e:
                raise GenerationInterrupted([], e) from e

            inserted: list[Delivery] = []
            skipped = 0
            for slot in candidates:
                if (slot.scheduled_date, slot.courier_id) in taken:
                    skipped += 1
                    continue
                try:
                    delivery = await self.store.insert(
                        Delivery(
                            courier_id=slot.courier_id,
                            scheduled_date=slot.scheduled_date,
                            status=INITIAL_STATUS,
                            created_by_user_id=acting_user_id,
                        )
                    )
                except DuplicateDelivery:
                    # lost the slot to a concurrent run
                    skipped += 1
                    continue
                except StoreUnavailable as e:
                    log.error("generation: interrupted after %d inserts (pattern=%s, user=%s)",
                              len(inserted), pattern.key, acting_user_id)
                    span.set_attribute("generation.generated", len(inserted))
                    raise GenerationInterrupted(inserted, e) from e
                inserted.append(delivery)

            span.set_attribute("generation.generated", len(inserted))
            span.set_attribute("generation.skipped", skipped)

        log.info("generation: %d created, %d skipped (pattern=%s, %s..%s, %d couriers, user=%s)",
                 len(inserted), skipped, pattern.key, request.date_range_start,
                 request.date_range_end, len(request.courier_pool), acting_user_id)
        return GenerationResult(
            generated_count=len(inserted),
            generated_deliveries=tuple(inserted),
            skipped_count=skipped,
        )
