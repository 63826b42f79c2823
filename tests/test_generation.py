from datetime import timedelta

import pytest

from app.core.config import settings
from app.schemas.delivery import DeliveryCreate, DeliveryUpdate
from app.services.delivery_state import DeliveryStatus
from app.services.delivery_store import DeliveryFilter, SqlDeliveryStore
from app.services.errors import GenerationInterrupted, StoreUnavailable, ValidationError
from app.services.generation import GenerationEngine, GenerationRequest


def _request(today, days=2, pool=(7, 9), **kw):
    return GenerationRequest.build(
        date_range_start=today,
        date_range_end=today + timedelta(days=days - 1),
        courier_pool=list(pool),
        **kw,
    )


class FlakyStore:
    """Delegates to a real store but fails the n-th insert."""

    def __init__(self, inner: SqlDeliveryStore, fail_on_insert: int):
        self.inner = inner
        self.fail_on_insert = fail_on_insert
        self.inserts = 0

    async def active_slots(self, courier_ids, start, end):
        return await self.inner.active_slots(courier_ids, start, end)

    async def insert(self, delivery):
        self.inserts += 1
        if self.inserts == self.fail_on_insert:
            raise StoreUnavailable("insert")
        return await self.inner.insert(delivery)


class BlindStore:
    """Never reports taken slots, as if another run inserted after our read."""

    def __init__(self, inner: SqlDeliveryStore):
        self.inner = inner

    async def active_slots(self, courier_ids, start, end):
        return set()

    async def insert(self, delivery):
        return await self.inner.insert(delivery)


@pytest.mark.asyncio
async def test_two_days_two_couriers_yields_four_pending(engine, today):
    result = await engine.generate(_request(today), acting_user_id=42)

    assert result.generated_count == 4
    assert result.skipped_count == 0
    d1, d2 = today, today + timedelta(days=1)
    # date-major, then courier pool order
    assert [(d.scheduled_date, d.courier_id) for d in result.generated_deliveries] == [
        (d1, 7), (d1, 9), (d2, 7), (d2, 9),
    ]
    assert all(d.status is DeliveryStatus.PENDING for d in result.generated_deliveries)
    assert all(d.created_by_user_id == 42 for d in result.generated_deliveries)
    assert len({d.id for d in result.generated_deliveries}) == 4


@pytest.mark.asyncio
async def test_second_identical_run_generates_nothing(engine, store, today):
    first = await engine.generate(_request(today), acting_user_id=42)
    total = len(await store.list(DeliveryFilter()))

    second = await engine.generate(_request(today), acting_user_id=42)

    assert first.generated_count == 4
    assert second.generated_count == 0
    assert second.generated_deliveries == ()
    assert second.skipped_count == 4
    assert len(await store.list(DeliveryFilter())) == total == 4


@pytest.mark.asyncio
async def test_existing_delivery_is_skipped_not_overwritten(engine, service, store, today):
    existing = await service.create(
        DeliveryCreate(courier_id=7, scheduled_date=today, notes="manual"), acting_user_id=1
    )

    result = await engine.generate(_request(today), acting_user_id=42)

    assert result.generated_count == 3
    assert result.skipped_count == 1
    assert (today, 7) not in {(d.scheduled_date, d.courier_id) for d in result.generated_deliveries}
    kept = await store.get(existing.id)
    assert kept.notes == "manual"
    assert kept.created_by_user_id == 1


@pytest.mark.asyncio
async def test_cancelled_delivery_does_not_block_generation(engine, service, today):
    d = await service.create(DeliveryCreate(courier_id=7, scheduled_date=today), acting_user_id=1)
    await service.update(d.id, DeliveryUpdate(status=DeliveryStatus.CANCELLED))

    result = await engine.generate(_request(today, days=1, pool=[7]), acting_user_id=42)
    assert result.generated_count == 1


@pytest.mark.asyncio
async def test_concurrent_winner_is_counted_as_skip(store, today):
    engine = GenerationEngine(store, today=lambda: today)
    await engine.generate(_request(today), acting_user_id=42)

    # A run that missed the other run's rows still cannot double-book a slot.
    blind = GenerationEngine(BlindStore(store), today=lambda: today)
    result = await blind.generate(_request(today), acting_user_id=43)

    assert result.generated_count == 0
    assert result.skipped_count == 4
    assert len(await store.list(DeliveryFilter())) == 4


@pytest.mark.asyncio
async def test_store_failure_reports_committed_count(store, today):
    flaky = FlakyStore(store, fail_on_insert=3)
    engine = GenerationEngine(flaky, today=lambda: today)

    with pytest.raises(GenerationInterrupted) as exc:
        await engine.generate(_request(today), acting_user_id=42)

    assert exc.value.generated_count == 2
    assert isinstance(exc.value.cause, StoreUnavailable)
    assert flaky.inserts == 3  # halted at the failure
    # no rollback of what was committed
    assert len(await store.list(DeliveryFilter())) == 2
    assert exc.value.details()[0]["generated_count"] == 2


@pytest.mark.asyncio
async def test_duplicate_pool_entries_collapse(engine, today):
    result = await engine.generate(_request(today, days=1, pool=[9, 7, 9]), acting_user_id=42)
    assert [d.courier_id for d in result.generated_deliveries] == [9, 7]


@pytest.mark.asyncio
async def test_pattern_is_applied(engine, today):
    result = await engine.generate(
        _request(today, days=4, pool=[1, 2, 3], pattern="round_robin"), acting_user_id=42
    )
    assert [d.courier_id for d in result.generated_deliveries] == [1, 2, 3, 1]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs,field",
    [
        ({"days": 0}, "date_range_end"),
        ({"pool": []}, "courier_pool"),
        ({"pool": [7, 0]}, "courier_pool"),
        ({"pool": [7, 2**63]}, "courier_pool"),
        ({"pattern": "lunar"}, "pattern"),
        ({"pattern": "daily", "criteria": {"interval": 2}}, "criteria"),
        ({"pattern": "every_n_days"}, "criteria.interval"),
    ],
)
async def test_invalid_requests_are_rejected(engine, store, today, kwargs, field):
    with pytest.raises(ValidationError) as exc:
        await engine.generate(_request(today, **kwargs), acting_user_id=42)
    assert exc.value.field == field
    assert await store.list(DeliveryFilter()) == []


@pytest.mark.asyncio
async def test_start_after_end_is_rejected(engine, today):
    req = GenerationRequest.build(
        date_range_start=today + timedelta(days=3), date_range_end=today, courier_pool=[7]
    )
    with pytest.raises(ValidationError) as exc:
        await engine.generate(req, acting_user_id=42)
    assert exc.value.field == "date_range_end"


@pytest.mark.asyncio
async def test_range_in_the_past_is_rejected(engine, today):
    req = GenerationRequest.build(
        date_range_start=today - timedelta(days=1), date_range_end=today, courier_pool=[7]
    )
    with pytest.raises(ValidationError) as exc:
        await engine.generate(req, acting_user_id=42)
    assert exc.value.field == "date_range_start"


@pytest.mark.asyncio
async def test_range_longer_than_limit_is_rejected(engine, today):
    with pytest.raises(ValidationError):
        await engine.generate(_request(today, days=settings.generation_max_days + 1), acting_user_id=42)


@pytest.mark.asyncio
async def test_acting_user_is_required(engine, today):
    with pytest.raises(ValidationError) as exc:
        await engine.generate(_request(today), acting_user_id=0)
    assert exc.value.field == "acting_user_id"


def test_request_defaults_to_configured_pattern(today):
    req = _request(today)
    assert req.pattern == settings.default_generation_pattern
    assert req.courier_pool == (7, 9)


def test_request_criteria_are_read_only(today):
    criteria = {"interval": 2}
    req = _request(today, pattern="every_n_days", criteria=criteria)

    criteria["interval"] = 5
    assert req.criteria["interval"] == 2
    with pytest.raises(TypeError):
        req.criteria["interval"] = 3
