"""
Charge Allocation Module

Places a loan charge (fee or penalty) on the installment whose period holds
its due date and reports the exact amounts added to that installment's due,
waived and written-off buckets.

The allocator never mutates the installments it is given. It returns the
delta as an InstallmentAccumulator; callers merge it into their own
installment-number indexed map.
"""

from decimal import Decimal
from datetime import date, datetime
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence, Tuple
import logging
import uuid

from .currency import Currency, Money
from .rate_math import RoundingMode, to_decimal

logger = logging.getLogger("loan_engine.charges")


@dataclass(frozen=True)
class LoanCharge:
    """
    Charge applied to a loan, already resolved to a flat amount.

    Percentage based charges are converted by the caller before they reach
    the engine.
    """
    amount: Decimal
    due_date: date
    submitted_on: date
    created_at: Optional[datetime]
    is_penalty: bool = False
    amount_waived: Decimal = Decimal('0')
    amount_written_off: Decimal = Decimal('0')
    id: str = field(default_factory=lambda: str(uuid.uuid4()), compare=False)

    def __post_init__(self):
        for name in ('amount', 'amount_waived', 'amount_written_off'):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))

        if self.amount < Decimal('0'):
            raise ValueError("Charge amount cannot be negative")
        if self.amount_waived < Decimal('0') or self.amount_written_off < Decimal('0'):
            raise ValueError("Waived and written-off amounts cannot be negative")
        if self.amount_waived + self.amount_written_off > self.amount:
            raise ValueError("Waived plus written-off amount exceeds the charge amount")

    @property
    def is_fee(self) -> bool:
        return not self.is_penalty


@dataclass
class InstallmentAccumulator:
    """Running fee and penalty totals of one installment"""
    currency: Currency
    rounding: RoundingMode = RoundingMode.HALF_EVEN
    fee_due: Optional[Money] = None
    fee_waived: Optional[Money] = None
    fee_written_off: Optional[Money] = None
    penalty_due: Optional[Money] = None
    penalty_waived: Optional[Money] = None
    penalty_written_off: Optional[Money] = None

    FIELDS = ('fee_due', 'fee_waived', 'fee_written_off',
              'penalty_due', 'penalty_waived', 'penalty_written_off')

    def __post_init__(self):
        zero = Money.zero(self.currency, self.rounding)
        for name in self.FIELDS:
            if getattr(self, name) is None:
                setattr(self, name, zero)

    def merge(self, delta: "InstallmentAccumulator") -> None:
        """Add every bucket of delta to this accumulator"""
        for name in self.FIELDS:
            setattr(self, name, getattr(self, name) + getattr(delta, name))

    def waive_fee(self, amount: Money) -> None:
        self.fee_waived = self.fee_waived + amount

    def write_off_fee(self, amount: Money) -> None:
        self.fee_written_off = self.fee_written_off + amount

    def waive_penalty(self, amount: Money) -> None:
        self.penalty_waived = self.penalty_waived + amount

    def write_off_penalty(self, amount: Money) -> None:
        self.penalty_written_off = self.penalty_written_off + amount

    @property
    def fee_outstanding(self) -> Money:
        return self.fee_due.minus_to_zero(self.fee_waived + self.fee_written_off)

    @property
    def penalty_outstanding(self) -> Money:
        return self.penalty_due.minus_to_zero(self.penalty_waived + self.penalty_written_off)

    def as_tuple(self) -> Tuple[Money, Money, Money, Money, Money, Money]:
        """(fee due, fee waived, fee written off, penalty due, penalty waived, penalty written off)"""
        return tuple(getattr(self, name) for name in self.FIELDS)

    def is_empty(self) -> bool:
        return all(value.is_zero() for value in self.as_tuple())


@dataclass(frozen=True)
class ChargeAllocation:
    """Where a charge landed and what it added"""
    charge: LoanCharge
    installment_number: int
    due_date: date
    delta: InstallmentAccumulator

    def apply_to(self, accumulators: Dict[int, InstallmentAccumulator]) -> InstallmentAccumulator:
        """Merge the delta into an installment-number indexed map"""
        accumulator = accumulators.get(self.installment_number)
        if accumulator is None:
            accumulator = InstallmentAccumulator(self.delta.currency, self.delta.rounding)
            accumulators[self.installment_number] = accumulator
        accumulator.merge(self.delta)
        return accumulator


def is_due_in_period(due_date: date, from_date: date, to_date: date, is_first_period: bool) -> bool:
    """from_date is inclusive only for the first period; to_date is always inclusive"""
    if is_first_period:
        return from_date <= due_date <= to_date
    return from_date < due_date <= to_date


class ChargeAllocator:
    """Allocates flat fee and penalty charges onto schedule installments"""

    def __init__(self, rounding: RoundingMode = RoundingMode.HALF_EVEN):
        self.rounding = rounding

    def reprocess(
        self,
        currency: Currency,
        reference_date: date,
        installments: Sequence,
        charge: LoanCharge
    ) -> ChargeAllocation:
        """
        Allocate a charge to the installment holding its due date

        Args:
            currency: Loan currency
            reference_date: Start of the first installment window (disbursement date)
            installments: Time-ordered schedule periods; only repayment periods take charges
            charge: Charge to allocate

        Returns:
            ChargeAllocation with the target installment and the applied delta

        Raises:
            ValueError: If there is no repayment installment to allocate to
        """
        target = self.find_installment(reference_date, installments, charge.due_date)

        amount = Money(charge.amount, currency, self.rounding)
        waived = Money(charge.amount_waived, currency, self.rounding)
        written_off = Money(charge.amount_written_off, currency, self.rounding)

        delta = InstallmentAccumulator(currency, self.rounding)
        if charge.is_penalty:
            delta.penalty_due = amount
            delta.penalty_waived = waived
            delta.penalty_written_off = written_off
        else:
            delta.fee_due = amount
            delta.fee_waived = waived
            delta.fee_written_off = written_off

        logger.debug(
            f"{'Penalty' if charge.is_penalty else 'Fee'} {charge.id} due {charge.due_date.isoformat()} "
            f"allocated to installment {target.period_number}: {amount.to_string()}"
        )

        return ChargeAllocation(
            charge=charge,
            installment_number=target.period_number,
            due_date=target.due_date,
            delta=delta
        )

    @staticmethod
    def find_installment(reference_date: date, installments: Sequence, charge_due_date: date):
        """
        Repayment installment for a charge due date, clamping to the first or
        last installment when the date falls outside the schedule
        """
        repayments = [i for i in installments if getattr(i, 'is_repayment', False)]
        if not repayments:
            raise ValueError("No repayment installment to allocate the charge to")

        # The first window never starts after the first repayment period does
        start_date = min(reference_date, repayments[0].from_date)
        first_start = start_date
        for position, installment in enumerate(repayments):
            if is_due_in_period(charge_due_date, start_date, installment.due_date, position == 0):
                return installment
            start_date = installment.due_date

        if charge_due_date < first_start:
            return repayments[0]
        return repayments[-1]
