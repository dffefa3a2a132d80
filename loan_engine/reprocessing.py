"""
Loan Reprocessing Module

Replays a loan's mutation history over a freshly generated schedule. The
operations are sorted with the change timeline order and applied one by one:

- term variations change the interest rate and recalculate the schedule from
  their applicable date forward,
- charges are allocated to an installment and merged into that
  installment's accumulator,
- transactions are allocated to the installments due by the transaction
  date (penalties, fees, interest, then principal); what is left prepays
  principal and the schedule is recalculated from the next installment.
"""

from decimal import Decimal
from datetime import date, timedelta
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union
import logging

from .charges import ChargeAllocator, ChargeAllocation, InstallmentAccumulator, LoanCharge
from .currency import Money
from .loans import LoanTerms, LoanSchedulePlan, RepaymentPeriod
from .logging_config import log_action
from .rate_math import CalculationContext
from .schedule import ScheduleGenerator
from .timeline import (
    ChangeOperation, ChangeTimeline, ChangeSource, LoanTransaction, TermVariation
)

logger = logging.getLogger("loan_engine.reprocessing")


@dataclass
class InstallmentPortion:
    """Amounts of one transaction that went to one installment"""
    installment_number: int
    principal: Money
    interest: Money
    fee: Money
    penalty: Money

    @property
    def total(self) -> Money:
        return self.principal + self.interest + self.fee + self.penalty


@dataclass
class TransactionAllocation:
    """How a repayment was spread over the schedule"""
    transaction: LoanTransaction
    portions: List[InstallmentPortion] = field(default_factory=list)
    prepaid_principal: Optional[Money] = None
    prepaid_installment_number: Optional[int] = None
    overpayment: Optional[Money] = None

    @property
    def allocated_amount(self) -> Money:
        total = self.prepaid_principal
        for portion in self.portions:
            total = total + portion.total
        return total


@dataclass
class ReprocessingResult:
    """Outcome of replaying a loan's history"""
    plan: LoanSchedulePlan
    accumulators: Dict[int, InstallmentAccumulator]
    operations: List[ChangeOperation]
    charge_allocations: List[ChargeAllocation] = field(default_factory=list)
    transaction_allocations: List[TransactionAllocation] = field(default_factory=list)
    rate_changes: List[Tuple[date, Decimal]] = field(default_factory=list)

    # Payments left over after a rate change shrank installments already paid
    unallocated_payments: Optional[Money] = None

    @property
    def total_overpayment(self) -> Money:
        total = Money.zero(self.plan.currency, self.plan.rounding)
        if self.unallocated_payments is not None:
            total = total + self.unallocated_payments
        for allocation in self.transaction_allocations:
            total = total + allocation.overpayment
        return total


class LoanReprocessor:
    """
    Rebuilds a loan schedule from its terms and mutation history.

    A reprocess run owns its plan and accumulators; nothing is shared
    between runs or between loans.
    """

    def __init__(self, context: Optional[CalculationContext] = None):
        self.context = context or CalculationContext()
        self.generator = ScheduleGenerator(self.context)
        self.charge_allocator = ChargeAllocator(self.context.rounding)

    def reprocess(
        self,
        terms: LoanTerms,
        operations: Iterable[Union[ChangeOperation, ChangeSource]] = (),
        loan_id: Optional[str] = None
    ) -> ReprocessingResult:
        """
        Generate the schedule and replay every operation in timeline order

        Args:
            terms: Loan terms
            operations: Term variations, charges and transactions, raw or wrapped
            loan_id: Only used for logging

        Returns:
            ReprocessingResult with the final plan and allocation details
        """
        timeline = operations if isinstance(operations, ChangeTimeline) else ChangeTimeline(operations)
        ordered = timeline.sorted_operations()

        plan = self.generator.generate(terms)
        result = ReprocessingResult(plan=plan, accumulators={}, operations=ordered)

        for operation in ordered:
            if operation.is_term_variation:
                self._apply_term_variation(terms, result, operation.source)
            elif operation.is_charge:
                self._apply_charge(terms, result, operation.source)
            elif operation.is_transaction:
                self._apply_transaction(terms, result, operation.source)

        plan.refresh_outstanding_totals()

        log_action(
            logger, "info", f"Reprocessed {len(ordered)} operations",
            loan_id=loan_id, operation="reprocess",
            extra={
                "term_variations": len(result.rate_changes),
                "charges": len(result.charge_allocations),
                "transactions": len(result.transaction_allocations),
                "total_outstanding": str(plan.total_outstanding_amount.amount),
            }
        )
        return result

    def _apply_term_variation(self, terms: LoanTerms, result: ReprocessingResult,
                              variation: TermVariation) -> None:
        result.rate_changes.append((variation.applicable_from, variation.annual_nominal_interest_rate))
        self.generator.recalculate_from(result.plan, terms, variation.applicable_from, result.rate_changes)

        zero = Money.zero(terms.currency, self.context.rounding)
        leftover = self._reallocate_excess_payments(result.plan, zero)
        if leftover.is_positive():
            result.unallocated_payments = (result.unallocated_payments or zero) + leftover
            logger.warning(
                f"Rate change from {variation.applicable_from.isoformat()} leaves "
                f"{leftover.to_string()} of earlier payments unallocated"
            )
        logger.debug(
            f"Interest rate {variation.annual_nominal_interest_rate} applied from "
            f"{variation.applicable_from.isoformat()}"
        )

    def _apply_charge(self, terms: LoanTerms, result: ReprocessingResult, charge: LoanCharge) -> None:
        allocation = self.charge_allocator.reprocess(
            terms.currency, terms.disbursement_date, result.plan.periods, charge
        )
        accumulator = allocation.apply_to(result.accumulators)
        period = result.plan.find_period(allocation.installment_number)
        sync_charges(period, accumulator)
        result.plan.refresh_outstanding_totals()
        result.charge_allocations.append(allocation)

    def _apply_transaction(self, terms: LoanTerms, result: ReprocessingResult,
                           transaction: LoanTransaction) -> None:
        plan = result.plan
        zero = Money.zero(terms.currency, self.context.rounding)
        remaining = Money(transaction.amount, terms.currency, self.context.rounding)
        allocation = TransactionAllocation(transaction=transaction, prepaid_principal=zero, overpayment=zero)

        current = plan.period_for_date(transaction.transaction_date)

        for installment in plan.installments:
            if remaining.is_zero():
                break
            if installment.due_date > transaction.transaction_date and installment is not current:
                continue
            portion, remaining = self._pay_installment(installment, remaining, zero)
            if not portion.total.is_zero():
                allocation.portions.append(portion)

        if remaining.is_positive() and current is not None and current.outstanding_balance_after.is_positive():
            prepaid = remaining.min(current.outstanding_balance_after)
            current.prepaid_principal = current.prepaid_principal + prepaid
            current.principal_amount = current.principal_amount + prepaid
            current.principal_paid = current.principal_paid + prepaid
            current.outstanding_balance_after = current.outstanding_balance_after - prepaid
            remaining = remaining - prepaid

            allocation.prepaid_principal = prepaid
            allocation.prepaid_installment_number = current.period_number
            self.generator.recalculate_from(
                plan, terms, current.due_date + timedelta(days=1), result.rate_changes
            )
            remaining = remaining + self._reallocate_excess_payments(plan, zero)

        if remaining.is_positive():
            allocation.overpayment = remaining
            logger.warning(
                f"Transaction {transaction.id} on {transaction.transaction_date.isoformat()} "
                f"overpays the loan by {remaining.to_string()}"
            )

        plan.refresh_outstanding_totals()
        result.transaction_allocations.append(allocation)

    def _reallocate_excess_payments(self, plan: LoanSchedulePlan, zero: Money) -> Money:
        """
        Move principal and interest paid above a recalculated installment's
        due amount onto the oldest installments still outstanding.

        Recalculation can shrink installments that later-dated repayments
        already settled. The amount paid above the new due is taken back and
        re-applied with the usual waterfall.

        Returns:
            The part no installment could absorb
        """
        excess = zero
        for period in plan.repayment_periods:
            if period.principal_paid > period.principal_amount:
                excess = excess + (period.principal_paid - period.principal_amount)
                period.principal_paid = period.principal_amount
            if period.interest_paid > period.interest_amount:
                excess = excess + (period.interest_paid - period.interest_amount)
                period.interest_paid = period.interest_amount

        if excess.is_zero():
            return excess

        logger.debug(f"Reallocating {excess.to_string()} paid above recalculated installments")
        for installment in plan.installments:
            if excess.is_zero():
                break
            _, excess = self._pay_installment(installment, excess, zero)
        return excess

    @staticmethod
    def _pay_installment(installment, amount: Money, zero: Money) -> Tuple[InstallmentPortion, Money]:
        """Pay penalty, fee, interest, then principal of one installment"""
        portion = InstallmentPortion(
            installment_number=installment.period_number,
            principal=zero, interest=zero, fee=zero, penalty=zero
        )

        if isinstance(installment, RepaymentPeriod):
            paid = amount.min(installment.penalty_outstanding)
            installment.penalty_paid = installment.penalty_paid + paid
            portion.penalty = paid
            amount = amount - paid

            paid = amount.min(installment.fee_outstanding)
            installment.fee_paid = installment.fee_paid + paid
            portion.fee = paid
            amount = amount - paid

            paid = amount.min(installment.interest_outstanding)
            installment.interest_paid = installment.interest_paid + paid
            portion.interest = paid
            amount = amount - paid

        paid = amount.min(installment.principal_outstanding)
        installment.principal_paid = installment.principal_paid + paid
        portion.principal = paid
        amount = amount - paid

        return portion, amount


def sync_charges(period, accumulator: InstallmentAccumulator) -> None:
    """Copy an installment accumulator onto its repayment period"""
    if not isinstance(period, RepaymentPeriod):
        return
    period.fee_amount = accumulator.fee_due
    period.fee_waived = accumulator.fee_waived
    period.fee_written_off = accumulator.fee_written_off
    period.penalty_amount = accumulator.penalty_due
    period.penalty_waived = accumulator.penalty_waived
    period.penalty_written_off = accumulator.penalty_written_off
