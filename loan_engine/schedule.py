"""
Schedule Generator Module

Builds a progressive repayment schedule from loan terms and re-runs the
balance-tracking step from any period forward when the loan's history
changes. "Progressive" means the installment amount is recomputed for every
period from the balance still outstanding and the number of periods left.
"""

from decimal import Decimal
from datetime import date, timedelta
from typing import Optional, Sequence, Tuple
import logging

from .currency import Money
from .day_count import (
    DaysInMonthType, resolve_days_in_month_type, days_in_year, days_in_month, days_between
)
from .loans import (
    LoanTerms, LoanSchedulePlan, DisbursementPeriod, DownPaymentPeriod, RepaymentPeriod,
    PeriodFrequencyType
)
from .rate_math import (
    CalculationContext, daily_rate, interest_for_period, rate_for_days, pmt, percentage_of,
    round_amount
)

logger = logging.getLogger("loan_engine.schedule")

RateChange = Tuple[date, Decimal]


class ScheduleGenerator:
    """
    Generates and recalculates progressive loan schedules.

    All arithmetic goes through the CalculationContext given at construction;
    money amounts are rounded with the context's rounding mode.
    """

    def __init__(self, context: Optional[CalculationContext] = None):
        self.context = context or CalculationContext()

    def generate(self, terms: LoanTerms) -> LoanSchedulePlan:
        """
        Generate the initial schedule

        Args:
            terms: Loan terms

        Returns:
            LoanSchedulePlan with a disbursement period, an optional down
            payment period and the repayment periods
        """
        plan = LoanSchedulePlan(currency=terms.currency, rounding=self.context.rounding)
        disbursement_date = terms.disbursement_date

        principal = self._money(terms, terms.principal)
        plan.periods.append(DisbursementPeriod(
            period_number=None,
            from_date=disbursement_date,
            due_date=disbursement_date,
            principal_amount=principal,
            outstanding_balance_after=principal
        ))

        balance = principal
        period_number = 1

        if terms.is_down_payment_enabled:
            down_payment = self._money(
                terms, percentage_of(principal.amount, terms.down_payment_percentage, self.context)
            )
            balance = balance - down_payment
            plan.periods.append(DownPaymentPeriod(
                period_number=period_number,
                from_date=disbursement_date,
                due_date=disbursement_date,
                principal_amount=down_payment,
                outstanding_balance_after=balance
            ))
            period_number += 1

        from_date = disbursement_date
        zero = self._money(terms, Decimal('0'))
        for index in range(terms.number_of_repayments):
            due_date = self._due_date(terms, index)
            period = RepaymentPeriod(
                period_number=period_number,
                from_date=from_date,
                due_date=due_date,
                principal_amount=zero,
                outstanding_balance_after=balance
            )
            self._calculate_period(
                terms, period, index, balance, terms.number_of_repayments - index,
                terms.annual_nominal_interest_rate
            )
            plan.periods.append(period)

            balance = period.outstanding_balance_after
            from_date = due_date
            period_number += 1

            # Break if balance is paid off
            if balance.is_zero():
                break

        plan.refresh_outstanding_totals()

        logger.info(
            f"Generated schedule: {len(plan.repayment_periods)} repayment periods, "
            f"principal {principal.to_string()}, interest {plan.total_interest_amount.to_string()}"
        )
        return plan

    def recalculate_from(
        self,
        plan: LoanSchedulePlan,
        terms: LoanTerms,
        from_date: date,
        rate_changes: Optional[Sequence[RateChange]] = None
    ) -> Optional[int]:
        """
        Re-run the balance-tracking step from the first repayment period whose
        due date is on or after from_date. Earlier periods are left untouched.

        Args:
            plan: Schedule to update in place
            terms: Loan terms the schedule was generated from
            from_date: Earliest affected date
            rate_changes: (applicable_from, annual rate) pairs in application order

        Returns:
            Index into plan.repayment_periods where recalculation started, or
            None when no period is affected
        """
        repayments = plan.repayment_periods
        start = None
        for index, period in enumerate(repayments):
            if period.due_date >= from_date:
                start = index
                break
        if start is None:
            return None

        first = repayments[start]
        previous = plan.periods[plan.periods.index(first) - 1]
        balance = previous.outstanding_balance_after

        total = len(repayments)
        for index in range(start, total):
            period = repayments[index]
            rate = self.rate_in_effect(terms, period.from_date, rate_changes)
            self._calculate_period(terms, period, index, balance, total - index, rate)
            balance = period.outstanding_balance_after

        plan.refresh_outstanding_totals()

        logger.debug(
            f"Recalculated schedule from period {first.period_number} ({first.due_date.isoformat()})"
        )
        return start

    @staticmethod
    def rate_in_effect(terms: LoanTerms, on_date: date,
                       rate_changes: Optional[Sequence[RateChange]] = None) -> Decimal:
        """Annual rate applying on on_date: the latest change not after it, else the loan rate"""
        rate = terms.annual_nominal_interest_rate
        latest = None
        for applicable_from, new_rate in rate_changes or ():
            if applicable_from <= on_date and (latest is None or applicable_from >= latest):
                latest = applicable_from
                rate = new_rate
        return rate

    def _calculate_period(
        self,
        terms: LoanTerms,
        period: RepaymentPeriod,
        index: int,
        balance: Money,
        remaining_periods: int,
        annual_rate: Decimal
    ) -> None:
        """Fill principal, interest and balance of one repayment period"""
        zero = self._money(terms, Decimal('0'))

        if balance.is_zero():
            period.interest_amount = zero
            period.principal_amount = zero
            period.outstanding_balance_after = balance
            return

        year_days = days_in_year(terms.days_in_year_type, period.due_date)
        rate_per_day = daily_rate(annual_rate, year_days, self.context)
        num_days = self._days_in_period(terms, period, index)

        interest = self._money(terms, interest_for_period(balance.amount, rate_per_day, num_days, self.context))

        if remaining_periods <= 1:
            principal = balance
        else:
            period_rate = rate_for_days(rate_per_day, num_days, self.context)
            installment = self._installment_amount(
                terms, -pmt(period_rate, remaining_periods, balance.amount, Decimal('0'), False, self.context)
            )
            principal = installment.minus_to_zero(interest)
            principal = (principal + period.prepaid_principal).min(balance)

        period.interest_amount = interest
        period.principal_amount = principal
        period.outstanding_balance_after = balance - principal

        logger.debug(
            f"Period {period.period_number}: days={num_days} interest={interest.amount} "
            f"principal={principal.amount} balance={period.outstanding_balance_after.amount}"
        )

    def _days_in_period(self, terms: LoanTerms, period: RepaymentPeriod, index: int) -> int:
        """Interest-bearing days of a repayment period"""
        frequency = terms.repayment_frequency
        if (frequency.unit == PeriodFrequencyType.MONTHS
                and resolve_days_in_month_type(terms.days_in_month_type) == DaysInMonthType.DAYS_30
                and not self._is_fixed_length_period(terms, index)):
            num_days = days_in_month(terms.days_in_month_type, period.due_date) * frequency.every
        else:
            num_days = days_between(period.from_date, period.due_date)

        if index == 0 and terms.interest_recognition_on_disbursement_date:
            num_days += 1
        return num_days

    @staticmethod
    def _is_fixed_length_period(terms: LoanTerms, index: int) -> bool:
        return terms.fixed_length is not None and index == terms.number_of_repayments - 1

    def _due_date(self, terms: LoanTerms, index: int) -> date:
        """Due date of the repayment period at index, seeded from the disbursement date"""
        if self._is_fixed_length_period(terms, index):
            return terms.disbursement_date + timedelta(days=terms.fixed_length)
        return terms.repayment_frequency.advance(terms.disbursement_date, index + 1)

    def _installment_amount(self, terms: LoanTerms, amount: Decimal) -> Money:
        """Round the installment to currency and, if configured, to the installment multiple"""
        if terms.installment_amount_in_multiples_of:
            ctx = self.context.decimal_context()
            multiple = Decimal(terms.installment_amount_in_multiples_of)
            amount = ctx.multiply(round_amount(ctx.divide(amount, multiple), 0, self.context.rounding), multiple)
        return self._money(terms, amount)

    def _money(self, terms: LoanTerms, amount) -> Money:
        return Money(amount, terms.currency, self.context.rounding)
