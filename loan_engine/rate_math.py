"""
Rate Math Module

Daily and periodic rate derivation plus the annuity payment (PMT) formula.
Every operation runs inside an explicit, bounded decimal context so results
are reproducible and divisions always terminate. The process-wide decimal
context is never consulted.
"""

from decimal import (
    Decimal, Context, InvalidOperation, DivisionByZero, Overflow,
    ROUND_HALF_UP, ROUND_HALF_EVEN, ROUND_HALF_DOWN, ROUND_DOWN, ROUND_UP,
    ROUND_CEILING, ROUND_FLOOR
)
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

HUNDRED = Decimal('100')


class RoundingMode(Enum):
    """Supported rounding modes, mapped onto the decimal module constants"""
    HALF_UP = ROUND_HALF_UP
    HALF_EVEN = ROUND_HALF_EVEN
    HALF_DOWN = ROUND_HALF_DOWN
    DOWN = ROUND_DOWN          # Truncate toward zero
    UP = ROUND_UP
    CEILING = ROUND_CEILING
    FLOOR = ROUND_FLOOR

    @classmethod
    def from_name(cls, name: str) -> "RoundingMode":
        """Resolve "HALF_UP", "half_up" or "ROUND_HALF_UP" to a member"""
        key = name.strip().upper()
        if key.startswith("ROUND_"):
            key = key[len("ROUND_"):]
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"Unsupported rounding mode: {name}")


@dataclass(frozen=True)
class CalculationContext:
    """
    Precision and rounding configuration threaded through every calculation.

    precision is the number of significant digits kept by divisions, powers
    and multiplications; rounding is used both for that context and for
    rescaling money amounts.
    """
    precision: int = 12
    rounding: RoundingMode = RoundingMode.HALF_EVEN

    def __post_init__(self):
        if self.precision <= 0:
            raise ValueError("Precision must be a positive number of digits")

    def decimal_context(self) -> Context:
        """Build a fresh decimal.Context for this configuration"""
        return Context(
            prec=self.precision,
            rounding=self.rounding.value,
            traps=[InvalidOperation, DivisionByZero, Overflow]
        )


ContextLike = Union[CalculationContext, Context]


def as_decimal_context(context: ContextLike) -> Context:
    """Accept either a CalculationContext or an already built decimal.Context"""
    if isinstance(context, Context):
        return context
    return context.decimal_context()


def to_decimal(value) -> Decimal:
    """Convert ints, strings and Decimals without going through float"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def daily_rate(annual_nominal_rate, days_in_year: int, context: ContextLike) -> Decimal:
    """
    Daily rate for an annual nominal rate given in percent.

    Two separate divisions (by 100, then by days in year), each rounded to
    the context.
    """
    ctx = as_decimal_context(context)
    rate = ctx.divide(to_decimal(annual_nominal_rate), HUNDRED)
    return ctx.divide(rate, Decimal(days_in_year))


def interest_for_period(outstanding_balance, rate_per_day, num_days: int,
                        context: ContextLike) -> Decimal:
    """Interest on a balance for num_days days: balance * daily rate * days"""
    ctx = as_decimal_context(context)
    amount = ctx.multiply(to_decimal(outstanding_balance), to_decimal(rate_per_day))
    return ctx.multiply(amount, Decimal(num_days))


def rate_for_days(rate_per_day, num_days: int, context: ContextLike) -> Decimal:
    """Periodic rate covering num_days days"""
    ctx = as_decimal_context(context)
    return ctx.multiply(to_decimal(rate_per_day), Decimal(num_days))


def pmt(rate_per_period, num_periods: int, present_value, future_value=None,
        pay_at_period_start: bool = False, context: Optional[ContextLike] = None) -> Decimal:
    """
    Annuity payment per period.

    Follows the cash-flow sign convention: a positive present value (money
    received) gives a negative payment (money paid out). The sequence of
    operations is fixed so that rounding is reproducible:

        zero rate:  -(pv - fv) / n
        otherwise:  f = (1 + r) ** n
                    numerator = pv * f - fv
                    denominator = (f - 1) / r  [* (1 + r) when paying at period start]
                    payment = -(numerator / denominator)

    Args:
        rate_per_period: Interest rate per period as a fraction (0.01 for 1%)
        num_periods: Number of payments
        present_value: Present value (loan principal)
        future_value: Remaining value after the last payment, usually 0
        pay_at_period_start: True when payments are made at the start of each period
        context: CalculationContext or decimal.Context bounding every operation

    Returns:
        Payment per period, unrounded beyond the context precision
    """
    if context is None:
        context = CalculationContext()
    ctx = as_decimal_context(context)
    rate = to_decimal(rate_per_period)
    pv = to_decimal(present_value)
    fv = to_decimal(future_value) if future_value is not None else Decimal('0')
    periods = Decimal(num_periods)

    if rate.is_zero():
        return ctx.minus(ctx.divide(ctx.subtract(pv, fv), periods))

    one_plus_rate = ctx.add(Decimal('1'), rate)
    one_plus_rate_n = ctx.power(one_plus_rate, periods)

    numerator = ctx.subtract(ctx.multiply(pv, one_plus_rate_n), fv)
    denominator = ctx.divide(ctx.subtract(one_plus_rate_n, Decimal('1')), rate)
    if pay_at_period_start:
        denominator = ctx.multiply(denominator, one_plus_rate)

    return ctx.minus(ctx.divide(numerator, denominator))


def round_amount(amount, scale: int, rounding_mode: RoundingMode = RoundingMode.HALF_EVEN) -> Decimal:
    """Rescale amount to scale decimal places"""
    exponent = Decimal((0, (1,), -scale))
    return to_decimal(amount).quantize(exponent, rounding=rounding_mode.value)


def percentage_of(value, percentage, context: ContextLike) -> Decimal:
    """value * percentage / 100"""
    ctx = as_decimal_context(context)
    return ctx.divide(ctx.multiply(to_decimal(value), to_decimal(percentage)), HUNDRED)
