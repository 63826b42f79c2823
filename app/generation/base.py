from __future__ import annotations

from datetime import date
from typing import Any, Iterator, Mapping, NamedTuple, Protocol, Sequence, runtime_checkable


class Slot(NamedTuple):
    scheduled_date: date
    courier_id: int


@runtime_checkable
class GenerationPattern(Protocol):
    """
    Decides which (date, courier) slots a generation request implies.

    `expand` receives the dates of the range in ascending order and the
    courier pool in request order; slots must be yielded date-major.
    """
    key: str

    def validate(self, criteria: Mapping[str, Any]) -> None:
        ...

    def expand(
        self,
        dates: Sequence[date],
        couriers: Sequence[int],
        criteria: Mapping[str, Any],
    ) -> Iterator[Slot]:
        ...
