"""
Currency Module

Currency metadata (ISO code, decimal places, rounding increment) and the Money
value object. NEVER uses float for monetary values. Rounding is explicit: each
Money carries the rounding mode it was created with instead of reading a
process-wide setting.
"""

from decimal import Decimal
from dataclasses import dataclass, field
from typing import Optional

from .rate_math import RoundingMode, round_amount, to_decimal


@dataclass(frozen=True)
class Currency:
    """Currency with precision info"""
    code: str
    decimal_places: int = 2
    in_multiples_of: Optional[int] = None  # Rounding increment, e.g. 5 or 100

    def __post_init__(self):
        if not self.code:
            raise ValueError("Currency code is required")
        if self.decimal_places < 0:
            raise ValueError("Decimal places cannot be negative")
        if self.in_multiples_of is not None and self.in_multiples_of < 0:
            raise ValueError("Rounding increment cannot be negative")


def round_to_currency(amount, currency: Currency,
                      rounding: RoundingMode = RoundingMode.HALF_EVEN) -> Decimal:
    """
    Round to the currency's decimal places, then to its rounding increment.

    The increment rounding divides by the multiple, rounds to an integer with
    the same mode and multiplies back.
    """
    value = round_amount(amount, currency.decimal_places, rounding)
    if currency.in_multiples_of:
        multiple = Decimal(currency.in_multiples_of)
        value = round_amount(value / multiple, 0, rounding) * multiple
        value = round_amount(value, currency.decimal_places, rounding)
    return value


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    All monetary values MUST use this class or raw Decimal.
    """
    amount: Decimal
    currency: Currency
    rounding: RoundingMode = field(default=RoundingMode.HALF_EVEN, compare=False)

    def __post_init__(self):
        amount = to_decimal(self.amount)

        # Round to currency precision
        object.__setattr__(self, 'amount', round_to_currency(amount, self.currency, self.rounding))

    @classmethod
    def zero(cls, currency: Currency, rounding: RoundingMode = RoundingMode.HALF_EVEN) -> 'Money':
        return cls(Decimal('0'), currency, rounding)

    def _check_currency(self, other: 'Money', action: str) -> None:
        if self.currency.code != other.currency.code:
            raise ValueError(f"Cannot {action} {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency, self.rounding)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency, self.rounding)

    def __mul__(self, multiplier) -> 'Money':
        return Money(self.amount * to_decimal(multiplier), self.currency, self.rounding)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency, self.rounding)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount), self.currency, self.rounding)

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        """Check if amount is negative"""
        return self.amount < Decimal('0')

    def minus_to_zero(self, other: 'Money') -> 'Money':
        """Subtract, flooring the result at zero"""
        result = self - other
        return result if result.is_positive() else Money.zero(self.currency, self.rounding)

    def min(self, other: 'Money') -> 'Money':
        return self if self <= other else other

    def max(self, other: 'Money') -> 'Money':
        return self if self >= other else other

    def to_string(self) -> str:
        """Format for display"""
        if self.currency.decimal_places == 0:
            return f"{self.currency.code} {self.amount:,.0f}"
        else:
            return f"{self.currency.code} {self.amount:,.{self.currency.decimal_places}f}"
