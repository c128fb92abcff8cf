"""
Common Value Objects

Value objects used across multiple domains:
- Money: Represents monetary amounts with currency
- StayPeriod: Represents a half-open range of nights (check-in to check-out)
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from shared.domain.base import ValueObject

SUPPORTED_CURRENCIES = ('USD', 'EUR', 'KZT')


@dataclass(frozen=True)
class Money(ValueObject):
    """
    Money value object

    Represents a monetary amount with currency.
    Immutable and supports the arithmetic needed for pricing.
    """
    amount: Decimal
    currency: str = 'USD'

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        if self.amount < 0:
            raise ValueError("Amount cannot be negative")
        if not self.currency:
            raise ValueError("Currency is required")
        if self.currency.upper() not in SUPPORTED_CURRENCIES:
            raise ValueError(f"Unsupported currency: {self.currency}")
        object.__setattr__(self, 'currency', self.currency.upper())

    def __add__(self, other: 'Money') -> 'Money':
        """Add two money objects"""
        if not isinstance(other, Money):
            raise TypeError("Can only add Money to Money")
        if self.currency != other.currency:
            raise ValueError(f"Cannot add different currencies: {self.currency} and {other.currency}")
        return Money(self.amount + other.amount, self.currency)

    def __mul__(self, factor: int) -> 'Money':
        """Multiply money by a whole number of units (nights)"""
        if not isinstance(factor, (int, Decimal)) or isinstance(factor, bool):
            raise TypeError("Can only multiply Money by an integer or Decimal")
        return Money(self.amount * Decimal(factor), self.currency)

    def minor_units(self) -> int:
        """Amount in cents/tiyn, as payment providers expect it"""
        return int((self.amount * 100).to_integral_value())

    def __str__(self):
        return f"{self.amount:,.2f} {self.currency}"

    def __repr__(self):
        return f"Money({self.amount}, '{self.currency}')"


@dataclass(frozen=True)
class StayPeriod(ValueObject):
    """
    Stay period value object

    Represents a range from check_in (inclusive) to check_out (exclusive).
    Used for booking intervals and availability checks.
    """
    check_in: date
    check_out: date

    def __post_init__(self):
        if self.check_in >= self.check_out:
            raise ValueError(f"Check-in ({self.check_in}) must be before check-out ({self.check_out})")

    def overlaps_with(self, other: 'StayPeriod') -> bool:
        """
        Check if this period overlaps with another

        Note: check_out is exclusive, so back-to-back stays don't overlap.

        Examples:
            - StayPeriod(1, 5) overlaps with StayPeriod(4, 10) -> True
            - StayPeriod(1, 4) overlaps with StayPeriod(4, 10) -> False (adjacent)
        """
        if not isinstance(other, StayPeriod):
            raise TypeError("Can only check overlap with another StayPeriod")

        # Overlap formula: start1 < end2 AND end1 > start2
        return (self.check_in < other.check_out and
                self.check_out > other.check_in)

    @property
    def nights(self) -> int:
        """Number of whole nights in the stay"""
        return (self.check_out - self.check_in).days

    def __len__(self) -> int:
        return self.nights

    def __str__(self):
        return f"{self.check_in.isoformat()} - {self.check_out.isoformat()}"

    def __repr__(self):
        return f"StayPeriod({self.check_in}, {self.check_out})"
