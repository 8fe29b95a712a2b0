"""Time-based freshness for long-term memories."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Callable, Mapping, Optional

from .memory_records import MemoryRecord, MemoryType, parse_datetime, utcnow

DEFAULT_DECAY_RATE = 0.02
_SECONDS_PER_DAY = 86400


class DecayCalculator:
    """Compute ``exp(-rate * days_since_last_access)`` with a per-type rate.

    Elapsed time is counted in whole days and never goes negative, so a clock
    skewed into the past yields 1.0 rather than a boost.
    """

    def __init__(
        self,
        rates: Optional[Mapping[MemoryType, float]] = None,
        *,
        default_rate: float = DEFAULT_DECAY_RATE,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._rates = {memory_type: memory_type.decay_rate for memory_type in MemoryType}
        if rates:
            self._rates.update(rates)
        self._default_rate = default_rate
        self._clock = clock or utcnow

    def rate_for(self, memory_type: Optional[MemoryType]) -> float:
        if memory_type is None:
            return self._default_rate
        return self._rates.get(memory_type, self._default_rate)

    def calculate(self, record: Optional[MemoryRecord], now: Optional[datetime] = None) -> float:
        if record is None or record.last_accessed_at is None:
            return 1.0
        current = parse_datetime(now or self._clock())
        elapsed = (current - record.last_accessed_at).total_seconds()
        days = max(0, int(elapsed // _SECONDS_PER_DAY))
        return math.exp(-self.rate_for(record.type) * days)


_DEFAULT_CALCULATOR = DecayCalculator()


def calculate_decay(record: Optional[MemoryRecord], now: Optional[datetime] = None) -> float:
    return _DEFAULT_CALCULATOR.calculate(record, now)


__all__ = ["DEFAULT_DECAY_RATE", "DecayCalculator", "calculate_decay"]
