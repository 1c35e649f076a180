"""
Common Value Objects

Value objects used across multiple domains:
- Money: Represents monetary amounts with currency
- TimeInterval: Half-open time range [start, end) of a reservation
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from shared.domain.base import ValueObject
from shared.domain.exceptions import ValidationError

CENT = Decimal('0.01')

_CURRENCY_RE = re.compile(r'^[A-Z]{3}$')


def to_decimal(value) -> Decimal:
    """Convert int/str/Decimal to a cent-quantized Decimal"""
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (ArithmeticError, TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValidationError(f"Amount must be finite, got {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Money(ValueObject):
    """
    Money value object

    Represents a non-negative monetary amount with currency.
    Immutable and supports arithmetic operations.
    """
    amount: Decimal
    currency: str = 'USD'

    def __post_init__(self):
        object.__setattr__(self, 'amount', to_decimal(self.amount))
        if self.amount < 0:
            raise ValidationError("Amount cannot be negative")
        if not self.currency or not _CURRENCY_RE.match(self.currency):
            raise ValidationError(f"Unsupported currency: {self.currency!r}")

    @classmethod
    def zero(cls, currency: str = 'USD') -> 'Money':
        return cls(Decimal('0'), currency)

    def _check_currency(self, other: 'Money'):
        if not isinstance(other, Money):
            raise TypeError("Can only combine Money with Money")
        if self.currency != other.currency:
            raise ValidationError(
                f"Cannot combine different currencies: {self.currency} and {other.currency}"
            )

    def __add__(self, other: 'Money') -> 'Money':
        """Add two money objects"""
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        """Subtract two money objects"""
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, factor) -> 'Money':
        """Multiply money by a factor"""
        if not isinstance(factor, (int, float, Decimal)):
            raise TypeError("Can only multiply Money by number")
        return Money(self.amount * Decimal(str(factor)), self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other)
        return self.amount >= other.amount

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    def __str__(self):
        return f"{self.amount:,.2f} {self.currency}"

    def __repr__(self):
        return f"Money({self.amount}, '{self.currency}')"


@dataclass(frozen=True)
class TimeInterval(ValueObject):
    """
    Time interval value object

    Represents a range from start (inclusive) to end (exclusive).
    Both bounds must be timezone-aware.
    """
    start: datetime
    end: datetime

    def __post_init__(self):
        if not isinstance(self.start, datetime) or not isinstance(self.end, datetime):
            raise ValidationError("Interval bounds must be datetimes")
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValidationError("Interval bounds must include timezone information")
        if self.start >= self.end:
            raise ValidationError(f"Start ({self.start}) must be before end ({self.end})")

    def overlaps_with(self, other: 'TimeInterval') -> bool:
        """
        Check if this interval overlaps with another

        Note: end is exclusive, so back-to-back intervals don't overlap.

        Examples:
            - [10:00, 12:00) overlaps with [11:00, 13:00) -> True
            - [10:00, 12:00) overlaps with [12:00, 14:00) -> False (adjacent)
        """
        if not isinstance(other, TimeInterval):
            raise TypeError("Can only check overlap with another TimeInterval")

        # Overlap formula: start1 < end2 AND start2 < end1
        return self.start < other.end and other.start < self.end

    def contains(self, moment: datetime) -> bool:
        """start is inclusive, end is exclusive"""
        return self.start <= moment < self.end

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def __str__(self):
        return f"[{self.start.isoformat()}, {self.end.isoformat()})"

    def __repr__(self):
        return f"TimeInterval({self.start.isoformat()}, {self.end.isoformat()})"
