"""
Loan Module

Loan terms and the repayment schedule data model: disbursement, down payment
and repayment periods, and the schedule plan that owns them together with its
computed totals.
"""

from decimal import Decimal
from datetime import date, timedelta
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Union
from enum import Enum

from .currency import Currency, Money
from .day_count import DaysInYearType, DaysInMonthType, add_months, days_between
from .rate_math import RoundingMode, to_decimal


class PeriodFrequencyType(Enum):
    """Unit of the repayment frequency"""
    DAYS = "DAYS"
    WEEKS = "WEEKS"
    MONTHS = "MONTHS"


@dataclass(frozen=True)
class RepaymentFrequency:
    """Repay every `every` units, e.g. every 2 WEEKS"""
    every: int = 1
    unit: PeriodFrequencyType = PeriodFrequencyType.MONTHS

    def __post_init__(self):
        if self.every <= 0:
            raise ValueError("Repayment frequency must be positive")

    def advance(self, seed_date: date, periods: int) -> date:
        """Due date `periods` repayments after seed_date"""
        steps = self.every * periods
        if self.unit == PeriodFrequencyType.DAYS:
            return seed_date + timedelta(days=steps)
        elif self.unit == PeriodFrequencyType.WEEKS:
            return seed_date + timedelta(weeks=steps)
        elif self.unit == PeriodFrequencyType.MONTHS:
            return add_months(seed_date, steps)
        else:
            raise ValueError(f"Unsupported repayment frequency: {self.unit}")


@dataclass(frozen=True)
class LoanTerms:
    """Loan terms driving schedule generation"""
    currency: Currency
    principal: Decimal
    annual_nominal_interest_rate: Decimal   # Percent, e.g. 7 for 7%
    number_of_repayments: int
    disbursement_date: date
    repayment_frequency: RepaymentFrequency = field(default_factory=RepaymentFrequency)
    days_in_year_type: DaysInYearType = DaysInYearType.ACTUAL
    days_in_month_type: DaysInMonthType = DaysInMonthType.ACTUAL
    down_payment_percentage: Decimal = Decimal('0')   # 0 disables the down payment
    installment_amount_in_multiples_of: Optional[int] = None
    fixed_length: Optional[int] = None                # Loan length in days
    interest_recognition_on_disbursement_date: bool = False

    def __post_init__(self):
        for name in ('principal', 'annual_nominal_interest_rate', 'down_payment_percentage'):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))

        if self.principal <= Decimal('0'):
            raise ValueError("Principal must be positive")
        if self.annual_nominal_interest_rate < Decimal('0'):
            raise ValueError("Interest rate cannot be negative")
        if self.number_of_repayments <= 0:
            raise ValueError("Number of repayments must be positive")
        if self.down_payment_percentage < Decimal('0') or self.down_payment_percentage >= Decimal('100'):
            raise ValueError("Down payment percentage must be between 0 and 100")
        if self.fixed_length is not None and self.fixed_length <= 0:
            raise ValueError("Fixed length must be a positive number of days")
        if self.fixed_length is not None:
            # The pinned maturity must come after the second to last regular due date
            previous_due_date = self.repayment_frequency.advance(
                self.disbursement_date, self.number_of_repayments - 1
            )
            if self.disbursement_date + timedelta(days=self.fixed_length) <= previous_due_date:
                raise ValueError("Fixed length ends on or before the previous due date")
        if self.installment_amount_in_multiples_of is not None and self.installment_amount_in_multiples_of <= 0:
            raise ValueError("Installment multiple must be positive")

    @property
    def is_down_payment_enabled(self) -> bool:
        return self.down_payment_percentage > Decimal('0')


class PeriodType(Enum):
    """Schedule period variants"""
    DISBURSEMENT = "disbursement"
    DOWN_PAYMENT = "down_payment"
    REPAYMENT = "repayment"


@dataclass
class SchedulePeriod:
    """Fields shared by every period"""
    period_number: Optional[int]
    from_date: date
    due_date: date
    principal_amount: Money
    outstanding_balance_after: Money

    period_type = None

    @property
    def is_disbursement(self) -> bool:
        return self.period_type == PeriodType.DISBURSEMENT

    @property
    def is_down_payment(self) -> bool:
        return self.period_type == PeriodType.DOWN_PAYMENT

    @property
    def is_repayment(self) -> bool:
        return self.period_type == PeriodType.REPAYMENT


@dataclass
class DisbursementPeriod(SchedulePeriod):
    """Principal handed to the borrower"""
    period_type = PeriodType.DISBURSEMENT


@dataclass
class DownPaymentPeriod(SchedulePeriod):
    """Upfront principal reduction taken at disbursement"""
    principal_paid: Optional[Money] = None

    period_type = PeriodType.DOWN_PAYMENT

    def __post_init__(self):
        if self.principal_paid is None:
            self.principal_paid = Money.zero(self.principal_amount.currency, self.principal_amount.rounding)

    @property
    def total_due_amount(self) -> Money:
        return self.principal_amount

    @property
    def principal_outstanding(self) -> Money:
        return self.principal_amount.minus_to_zero(self.principal_paid)

    @property
    def total_outstanding(self) -> Money:
        return self.principal_outstanding


@dataclass
class RepaymentPeriod(SchedulePeriod):
    """Regular installment: principal, interest, fees and penalties"""
    interest_amount: Optional[Money] = None
    fee_amount: Optional[Money] = None
    penalty_amount: Optional[Money] = None
    total_outstanding_balance_after: Optional[Money] = None

    # Unscheduled principal paid inside this period (prepayments)
    prepaid_principal: Optional[Money] = None

    # Repayment tracking
    principal_paid: Optional[Money] = None
    interest_paid: Optional[Money] = None
    fee_paid: Optional[Money] = None
    penalty_paid: Optional[Money] = None

    # Charge adjustments mirrored from the installment accumulator
    fee_waived: Optional[Money] = None
    fee_written_off: Optional[Money] = None
    penalty_waived: Optional[Money] = None
    penalty_written_off: Optional[Money] = None

    period_type = PeriodType.REPAYMENT

    def __post_init__(self):
        zero = Money.zero(self.principal_amount.currency, self.principal_amount.rounding)
        for name in ('interest_amount', 'fee_amount', 'penalty_amount', 'total_outstanding_balance_after',
                     'prepaid_principal', 'principal_paid', 'interest_paid', 'fee_paid', 'penalty_paid',
                     'fee_waived', 'fee_written_off', 'penalty_waived', 'penalty_written_off'):
            if getattr(self, name) is None:
                setattr(self, name, zero)

    @property
    def total_due_amount(self) -> Money:
        return self.principal_amount + self.interest_amount + self.fee_amount + self.penalty_amount

    @property
    def principal_outstanding(self) -> Money:
        return self.principal_amount.minus_to_zero(self.principal_paid)

    @property
    def interest_outstanding(self) -> Money:
        return self.interest_amount.minus_to_zero(self.interest_paid)

    @property
    def fee_outstanding(self) -> Money:
        return self.fee_amount.minus_to_zero(self.fee_paid + self.fee_waived + self.fee_written_off)

    @property
    def penalty_outstanding(self) -> Money:
        return self.penalty_amount.minus_to_zero(self.penalty_paid + self.penalty_waived + self.penalty_written_off)

    @property
    def total_outstanding(self) -> Money:
        return self.principal_outstanding + self.interest_outstanding + self.fee_outstanding + self.penalty_outstanding

    @property
    def is_fully_paid(self) -> bool:
        return self.total_outstanding.is_zero()


Installment = Union[DownPaymentPeriod, RepaymentPeriod]


@dataclass
class LoanSchedulePlan:
    """Ordered schedule periods and their totals"""
    currency: Currency
    rounding: RoundingMode = RoundingMode.HALF_EVEN
    periods: List[SchedulePeriod] = field(default_factory=list)

    def __iter__(self) -> Iterator[SchedulePeriod]:
        return iter(self.periods)

    def __len__(self) -> int:
        return len(self.periods)

    def _zero(self) -> Money:
        return Money.zero(self.currency, self.rounding)

    def _sum(self, values) -> Money:
        total = self._zero()
        for value in values:
            total = total + value
        return total

    @property
    def disbursement_periods(self) -> List[DisbursementPeriod]:
        return [p for p in self.periods if isinstance(p, DisbursementPeriod)]

    @property
    def down_payment_periods(self) -> List[DownPaymentPeriod]:
        return [p for p in self.periods if isinstance(p, DownPaymentPeriod)]

    @property
    def repayment_periods(self) -> List[RepaymentPeriod]:
        return [p for p in self.periods if isinstance(p, RepaymentPeriod)]

    @property
    def installments(self) -> List[Installment]:
        """Down payment and repayment periods in schedule order"""
        return [p for p in self.periods if isinstance(p, (DownPaymentPeriod, RepaymentPeriod))]

    def find_period(self, period_number: int) -> Optional[SchedulePeriod]:
        for period in self.periods:
            if period.period_number == period_number:
                return period
        return None

    def period_for_date(self, target_date: date) -> Optional[RepaymentPeriod]:
        """
        Repayment period whose (from_date, due_date] window holds target_date.

        The first window also includes its from_date. Dates before the first
        window map to the first period, dates after the last due date to the
        last period.
        """
        repayments = self.repayment_periods
        if not repayments:
            return None
        if target_date <= repayments[0].due_date:
            return repayments[0]
        for period in repayments[1:]:
            if period.from_date < target_date <= period.due_date:
                return period
        return repayments[-1]

    @property
    def disbursement_date(self) -> Optional[date]:
        disbursements = self.disbursement_periods
        return disbursements[0].due_date if disbursements else None

    @property
    def maturity_date(self) -> Optional[date]:
        repayments = self.repayment_periods
        return repayments[-1].due_date if repayments else None

    @property
    def total_disbursed_amount(self) -> Money:
        return self._sum(p.principal_amount for p in self.disbursement_periods)

    @property
    def total_down_payment_amount(self) -> Money:
        return self._sum(p.principal_amount for p in self.down_payment_periods)

    @property
    def total_principal_amount(self) -> Money:
        return self._sum(p.principal_amount for p in self.installments)

    @property
    def total_interest_amount(self) -> Money:
        return self._sum(p.interest_amount for p in self.repayment_periods)

    @property
    def total_fee_amount(self) -> Money:
        return self._sum(p.fee_amount for p in self.repayment_periods)

    @property
    def total_penalty_amount(self) -> Money:
        return self._sum(p.penalty_amount for p in self.repayment_periods)

    @property
    def total_repayment_amount(self) -> Money:
        return self._sum(p.total_due_amount for p in self.installments)

    @property
    def total_outstanding_amount(self) -> Money:
        return self._sum(p.total_outstanding for p in self.installments)

    @property
    def loan_term_in_days(self) -> int:
        return days_between(self.disbursement_date, self.maturity_date)

    def refresh_outstanding_totals(self) -> None:
        """Recompute total_outstanding_balance_after for each repayment period"""
        remaining = self._zero()
        for period in reversed(self.repayment_periods):
            period.total_outstanding_balance_after = remaining
            remaining = remaining + period.total_outstanding

    def summary(self) -> Dict[str, object]:
        """Totals for persistence and accounting collaborators"""
        return {
            "total_disbursed_amount": self.total_disbursed_amount.amount,
            "total_down_payment_amount": self.total_down_payment_amount.amount,
            "total_principal_amount": self.total_principal_amount.amount,
            "total_interest_amount": self.total_interest_amount.amount,
            "total_fee_amount": self.total_fee_amount.amount,
            "total_penalty_amount": self.total_penalty_amount.amount,
            "total_repayment_amount": self.total_repayment_amount.amount,
            "loan_term_in_days": self.loan_term_in_days,
            "number_of_periods": len(self.periods),
        }
