from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date
from typing import Any, AsyncIterator, Callable, Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.delivery import Delivery
from app.services.delivery_state import DeliveryStatus
from app.services.errors import DeliveryError, DuplicateDelivery, StoreUnavailable


log = logging.getLogger(__name__)

# Failures that mean "the store is not reachable", as opposed to a bad row.
_UNAVAILABLE = (OperationalError, InterfaceError, PoolTimeoutError, asyncio.TimeoutError, OSError)

Guard = Callable[[Delivery], None]


@dataclass(frozen=True)
class DeliveryFilter:
    date: date | None = None
    courier_id: int | None = None
    status: DeliveryStatus | None = None


class DeliveryStore(Protocol):
    async def get(self, delivery_id: str) -> Delivery | None:
        ...

    async def list(self, filter: DeliveryFilter) -> list[Delivery]:
        ...

    async def active_slots(
        self, courier_ids: Iterable[int], start: date, end: date
    ) -> set[tuple[date, int]]:
        ...

    async def insert(self, delivery: Delivery) -> Delivery:
        ...

    async def update(
        self, delivery_id: str, patch: dict[str, Any], *, guard: Guard | None = None
    ) -> Delivery | None:
        ...

    async def delete(self, delivery_id: str) -> bool:
        ...


class SqlDeliveryStore:
    """
    SQLAlchemy-backed store. Every write commits on its own, so each record is
    atomic but a batch of inserts is not.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def _guarded(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except _UNAVAILABLE as e:
            log.warning("store: %s failed: %s", operation, e)
            raise StoreUnavailable(operation) from e

    async def get(self, delivery_id: str) -> Delivery | None:
        async with self._guarded("get"):
            return await self.db.get(Delivery, delivery_id)

    async def list(self, filter: DeliveryFilter) -> list[Delivery]:
        stmt = select(Delivery)
        if filter.date is not None:
            stmt = stmt.where(Delivery.scheduled_date == filter.date)
        if filter.courier_id is not None:
            stmt = stmt.where(Delivery.courier_id == filter.courier_id)
        if filter.status is not None:
            stmt = stmt.where(Delivery.status == filter.status)
        stmt = stmt.order_by(Delivery.scheduled_date.asc(), Delivery.courier_id.asc(), Delivery.created_at.asc())

        async with self._guarded("list"):
            return list((await self.db.execute(stmt)).scalars().all())

    async def active_slots(
        self, courier_ids: Iterable[int], start: date, end: date
    ) -> set[tuple[date, int]]:
        ids = list(courier_ids)
        if not ids:
            return set()
        stmt = select(Delivery.scheduled_date, Delivery.courier_id).where(
            Delivery.courier_id.in_(ids),
            Delivery.scheduled_date >= start,
            Delivery.scheduled_date <= end,
            Delivery.status != DeliveryStatus.CANCELLED,
        )
        async with self._guarded("active_slots"):
            rows = (await self.db.execute(stmt)).all()
        return {(r.scheduled_date, r.courier_id) for r in rows}

    async def insert(self, delivery: Delivery) -> Delivery:
        slot = (delivery.courier_id, delivery.scheduled_date)
        async with self._guarded("insert"):
            self.db.add(delivery)
            try:
                await self.db.commit()
            except IntegrityError as e:
                await self.db.rollback()
                raise DuplicateDelivery(*slot) from e
        # Detach so a later rollback in this session (e.g. a lost slot during
        # generation) cannot expire the committed record.
        self.db.expunge(delivery)
        return delivery

    async def update(
        self, delivery_id: str, patch: dict[str, Any], *, guard: Guard | None = None
    ) -> Delivery | None:
        # Row lock serializes concurrent writers on the same id (no-op on SQLite).
        stmt = (
            select(Delivery)
            .where(Delivery.id == delivery_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        async with self._guarded("update"):
            row = (await self.db.execute(stmt)).scalar_one_or_none()
            if row is None:
                await self.db.rollback()
                return None

            try:
                if guard is not None:
                    guard(row)
            except DeliveryError:
                await self.db.rollback()
                raise

            for field, value in patch.items():
                setattr(row, field, value)
            slot = (row.courier_id, row.scheduled_date)

            try:
                await self.db.commit()
            except IntegrityError as e:
                await self.db.rollback()
                raise DuplicateDelivery(*slot) from e
        return row

    async def delete(self, delivery_id: str) -> bool:
        async with self._guarded("delete"):
            row = await self.db.get(Delivery, delivery_id, with_for_update=True)
            if row is None:
                await self.db.rollback()
                return False
            await self.db.delete(row)
            await self.db.commit()
        return True
