from __future__ import annotations

from datetime import date
from typing import Any, Iterator, Mapping, Sequence

from app.generation.base import Slot
from app.services.errors import ValidationError


def _reject_unknown(criteria: Mapping[str, Any], allowed: set[str]) -> None:
    unknown = sorted(set(criteria) - allowed)
    if unknown:
        raise ValidationError("criteria", f"unsupported keys: {', '.join(unknown)}")


def _positive_int(criteria: Mapping[str, Any], key: str, default: int | None = None) -> int:
    value = criteria.get(key, default)
    # bool is an int subclass; reject it explicitly
    if value is None or isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"criteria.{key}", "must be an integer")
    if value < 1:
        raise ValidationError(f"criteria.{key}", "must be >= 1")
    return value


class DailyPattern:
    """Every courier on every date of the range."""

    key = "daily"

    def validate(self, criteria: Mapping[str, Any]) -> None:
        _reject_unknown(criteria, set())

    def expand(self, dates: Sequence[date], couriers: Sequence[int], criteria: Mapping[str, Any]) -> Iterator[Slot]:
        for day in dates:
            for courier_id in couriers:
                yield Slot(day, courier_id)


class WeekdaysPattern:
    """Every courier on the listed ISO weekdays (Mon=1 .. Sun=7)."""

    key = "weekdays"
    default_days = (1, 2, 3, 4, 5)

    def _days(self, criteria: Mapping[str, Any]) -> set[int]:
        days = criteria.get("days", self.default_days)
        if not isinstance(days, (list, tuple)) or not days:
            raise ValidationError("criteria.days", "must be a non-empty list of ISO weekdays")
        for d in days:
            if isinstance(d, bool) or not isinstance(d, int) or not 1 <= d <= 7:
                raise ValidationError("criteria.days", f"invalid ISO weekday: {d!r}")
        return set(days)

    def validate(self, criteria: Mapping[str, Any]) -> None:
        _reject_unknown(criteria, {"days"})
        self._days(criteria)

    def expand(self, dates: Sequence[date], couriers: Sequence[int], criteria: Mapping[str, Any]) -> Iterator[Slot]:
        days = self._days(criteria)
        for day in dates:
            if day.isoweekday() not in days:
                continue
            for courier_id in couriers:
                yield Slot(day, courier_id)


class EveryNDaysPattern:
    """Every courier on every n-th date, counted from the first date of the range."""

    key = "every_n_days"

    def validate(self, criteria: Mapping[str, Any]) -> None:
        _reject_unknown(criteria, {"interval"})
        if "interval" not in criteria:
            raise ValidationError("criteria.interval", "is required")
        _positive_int(criteria, "interval")

    def expand(self, dates: Sequence[date], couriers: Sequence[int], criteria: Mapping[str, Any]) -> Iterator[Slot]:
        interval = _positive_int(criteria, "interval")
        if not dates:
            return
        start = dates[0]
        for day in dates:
            if (day - start).days % interval:
                continue
            for courier_id in couriers:
                yield Slot(day, courier_id)


class RoundRobinPattern:
    """
    `per_day` couriers per date, rotating through the pool so the load is
    spread evenly. Within a date the couriers keep their pool order.
    """

    key = "round_robin"

    def validate(self, criteria: Mapping[str, Any]) -> None:
        _reject_unknown(criteria, {"per_day"})
        _positive_int(criteria, "per_day", default=1)

    def expand(self, dates: Sequence[date], couriers: Sequence[int], criteria: Mapping[str, Any]) -> Iterator[Slot]:
        per_day = _positive_int(criteria, "per_day", default=1)
        n = len(couriers)
        if per_day > n:
            raise ValidationError("criteria.per_day", f"cannot exceed courier pool size ({n})")

        for i, day in enumerate(dates):
            picked = {(i * per_day + j) % n for j in range(per_day)}
            for idx in sorted(picked):
                yield Slot(day, couriers[idx])
