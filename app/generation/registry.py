from __future__ import annotations
from typing import Dict

from app.generation.base import GenerationPattern
from app.generation.patterns import DailyPattern, EveryNDaysPattern, RoundRobinPattern, WeekdaysPattern

_PATTERNS: Dict[str, GenerationPattern] = {
    p.key: p
    for p in (DailyPattern(), WeekdaysPattern(), EveryNDaysPattern(), RoundRobinPattern())
}

def get_pattern(key: str) -> GenerationPattern:
    k = key.lower().strip()
    if k not in _PATTERNS:
        raise KeyError(f"No generation pattern registered for key={key}")
    return _PATTERNS[k]

def supported_patterns() -> list[str]:
    return sorted(_PATTERNS.keys())
