"""
Rate Schedule Evaluator

Prices a reservation interval against an owner-set tiered rate schedule
(hourly, daily, weekly, monthly). Tiers are tried largest-first; whole
units of the active tier are charged at its rate and the remainder is
priced by the smaller tiers, capped at one unit of the active tier.

The cap keeps the price monotonic non-decreasing in duration: adding time
never makes a reservation cheaper.
"""

import math
from dataclasses import dataclass
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple

from shared.domain.base import ValueObject
from shared.domain.exceptions import ValidationError
from shared.domain.value_objects import CENT, Money, TimeInterval, to_decimal

HOUR = timedelta(hours=1)

# (tier name, length in hours)
TIERS: Tuple[Tuple[str, int], ...] = (
    ('monthly', 30 * 24),
    ('weekly', 7 * 24),
    ('daily', 24),
    ('hourly', 1),
)

# The remainder of a monthly booking is billed by days and hours only
_SKIP_BELOW = {'monthly': {'weekly'}}


@dataclass(frozen=True)
class RateSchedule(ValueObject):
    """
    Per-resource price table

    A missing or zero rate means the tier is not offered.
    """
    hourly: Optional[Decimal] = None
    daily: Optional[Decimal] = None
    weekly: Optional[Decimal] = None
    monthly: Optional[Decimal] = None
    currency: str = 'USD'

    def __post_init__(self):
        for name, _ in TIERS:
            value = getattr(self, name)
            if value is None:
                continue
            amount = to_decimal(value)
            if amount < 0:
                raise ValidationError(f"{name} rate cannot be negative")
            object.__setattr__(self, name, amount)

    def available_tiers(self) -> List[Tuple[str, int, Decimal]]:
        """Offered tiers, largest unit first"""
        tiers = []
        for name, hours in TIERS:
            rate = getattr(self, name)
            if rate is not None and rate > 0:
                tiers.append((name, hours, rate))
        return tiers

    def to_dict(self) -> dict:
        return {
            name: (str(getattr(self, name)) if getattr(self, name) is not None else None)
            for name, _ in TIERS
        } | {'currency': self.currency}


def billable_hours(interval: TimeInterval) -> int:
    """Whole hours to bill; a partial hour bills as a full one, never zero"""
    seconds = interval.duration.total_seconds()
    return max(1, math.ceil(seconds / HOUR.total_seconds()))


def _cost(hours: int, tiers: List[Tuple[str, int, Decimal]]) -> Decimal:
    if hours <= 0:
        return Decimal('0')

    name, unit, rate = tiers[0]
    smaller = tiers[1:]

    if not smaller:
        # Smallest tier on offer: round up to whole units
        return math.ceil(hours / unit) * rate

    if hours < unit:
        # Tier not reached yet; one unit of it still caps the price
        return min(_cost(hours, smaller), rate)

    units, rest = divmod(hours, unit)
    remainder_tiers = [t for t in smaller if t[0] not in _SKIP_BELOW.get(name, ())] or smaller
    return units * rate + min(_cost(rest, remainder_tiers), rate)


def price_hours(hours: int, schedule: RateSchedule) -> Decimal:
    """Price for a number of billable hours"""
    if hours < 1:
        raise ValidationError("Billable hours must be at least 1")
    tiers = schedule.available_tiers()
    if not tiers:
        raise ValidationError("Rate schedule has no usable tier")
    return Decimal(_cost(hours, tiers)).quantize(CENT, rounding=ROUND_HALF_UP)


def price(interval: TimeInterval, schedule: RateSchedule) -> Money:
    """Amount owed for reserving `interval` under `schedule`"""
    return Money(price_hours(billable_hours(interval), schedule), schedule.currency)
