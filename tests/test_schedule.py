"""
Test suite for schedule generator

Tests progressive schedule generation, down payments, frequencies,
day-count handling and recalculation from a date.
"""

import pytest
from decimal import Decimal
from datetime import date

from hypothesis import given, settings
from hypothesis import strategies as st

from loan_engine.currency import Currency
from loan_engine.day_count import DaysInYearType, DaysInMonthType
from loan_engine.loans import (
    LoanTerms, RepaymentFrequency, PeriodFrequencyType, DisbursementPeriod, DownPaymentPeriod
)
from loan_engine.rate_math import CalculationContext, RoundingMode
from loan_engine.schedule import ScheduleGenerator

USD = Currency("USD")
HALF_UP = CalculationContext(precision=12, rounding=RoundingMode.HALF_UP)


def make_terms(**overrides):
    """100 at 7% over 6 monthly repayments, 30/360"""
    values = dict(
        currency=USD,
        principal=Decimal('100'),
        annual_nominal_interest_rate=Decimal('7'),
        number_of_repayments=6,
        disbursement_date=date(2024, 1, 1),
        repayment_frequency=RepaymentFrequency(1, PeriodFrequencyType.MONTHS),
        days_in_year_type=DaysInYearType.DAYS_360,
        days_in_month_type=DaysInMonthType.DAYS_30,
    )
    values.update(overrides)
    return LoanTerms(**values)


def amounts(periods, attribute):
    return [getattr(p, attribute).amount for p in periods]


class TestLoanTerms:
    """Test loan terms validation"""

    @pytest.mark.parametrize("overrides", [
        {"principal": Decimal('0')},
        {"annual_nominal_interest_rate": Decimal('-1')},
        {"number_of_repayments": 0},
        {"down_payment_percentage": Decimal('100')},
        {"down_payment_percentage": Decimal('-5')},
        {"fixed_length": 0},
        {"number_of_repayments": 3, "fixed_length": 40},
        {"number_of_repayments": 3, "fixed_length": 60},
        {"installment_amount_in_multiples_of": 0},
    ])
    def test_invalid_terms(self, overrides):
        with pytest.raises(ValueError):
            make_terms(**overrides)

    def test_invalid_frequency(self):
        with pytest.raises(ValueError):
            RepaymentFrequency(0, PeriodFrequencyType.WEEKS)

    def test_numbers_are_coerced_to_decimal(self):
        terms = make_terms(principal=100, annual_nominal_interest_rate="7")
        assert terms.principal == Decimal('100')
        assert isinstance(terms.annual_nominal_interest_rate, Decimal)
        assert not terms.is_down_payment_enabled


class TestScheduleGeneration:
    """Test progressive schedule generation"""

    def test_reference_schedule(self):
        """Test 100 at 7% over 6 months with 30/360 and half-up rounding"""
        plan = ScheduleGenerator(HALF_UP).generate(make_terms())
        repayments = plan.repayment_periods

        assert len(plan.periods) == 7
        assert isinstance(plan.periods[0], DisbursementPeriod)
        assert plan.periods[0].principal_amount.amount == Decimal('100.00')
        assert len(repayments) == 6

        assert amounts(repayments, 'principal_amount') == [
            Decimal('16.43'), Decimal('16.52'), Decimal('16.62'),
            Decimal('16.72'), Decimal('16.80'), Decimal('16.91')
        ]
        assert amounts(repayments, 'interest_amount') == [
            Decimal('0.58'), Decimal('0.49'), Decimal('0.39'),
            Decimal('0.29'), Decimal('0.20'), Decimal('0.10')
        ]
        assert [p.total_due_amount.amount for p in repayments] == [
            Decimal('17.01'), Decimal('17.01'), Decimal('17.01'),
            Decimal('17.01'), Decimal('17.00'), Decimal('17.01')
        ]
        assert amounts(repayments, 'outstanding_balance_after') == [
            Decimal('83.57'), Decimal('67.05'), Decimal('50.43'),
            Decimal('33.71'), Decimal('16.91'), Decimal('0.00')
        ]

    def test_reference_schedule_totals(self):
        plan = ScheduleGenerator(HALF_UP).generate(make_terms())

        assert plan.total_principal_amount.amount == Decimal('100.00')
        assert plan.total_interest_amount.amount == Decimal('2.05')
        assert plan.total_repayment_amount.amount == Decimal('102.05')
        assert plan.loan_term_in_days == 182
        assert plan.maturity_date == date(2024, 7, 1)

        summary = plan.summary()
        assert summary["total_interest_amount"] == Decimal('2.05')
        assert summary["number_of_periods"] == 7

    def test_total_outstanding_balance_after(self):
        """Test each period reports what is still due after it"""
        plan = ScheduleGenerator(HALF_UP).generate(make_terms())
        repayments = plan.repayment_periods

        assert repayments[0].total_outstanding_balance_after.amount == Decimal('85.04')
        assert repayments[4].total_outstanding_balance_after.amount == Decimal('17.01')
        assert repayments[5].total_outstanding_balance_after.is_zero()

    def test_period_dates(self):
        """Test due dates follow the frequency and periods are contiguous"""
        plan = ScheduleGenerator(HALF_UP).generate(make_terms())
        repayments = plan.repayment_periods

        assert [p.due_date for p in repayments] == [
            date(2024, m, 1) for m in range(2, 8)
        ]
        assert repayments[0].from_date == date(2024, 1, 1)
        for previous, period in zip(repayments, repayments[1:]):
            assert period.from_date == previous.due_date

    def test_month_end_due_dates_do_not_drift(self):
        """Test due dates are derived from the disbursement date"""
        terms = make_terms(disbursement_date=date(2024, 1, 31), number_of_repayments=4)
        plan = ScheduleGenerator(HALF_UP).generate(terms)

        assert [p.due_date for p in plan.repayment_periods] == [
            date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30), date(2024, 5, 31)
        ]

    def test_zero_interest_divisible(self):
        """Test zero interest splits principal evenly"""
        terms = make_terms(principal=Decimal('1200'), annual_nominal_interest_rate=Decimal('0'),
                           number_of_repayments=12)
        plan = ScheduleGenerator().generate(terms)

        assert amounts(plan.repayment_periods, 'principal_amount') == [Decimal('100.00')] * 12
        assert plan.total_interest_amount.is_zero()

    def test_zero_interest_rounding(self):
        """Test rounding differences are absorbed by recomputing each period"""
        terms = make_terms(principal=Decimal('1000'), annual_nominal_interest_rate=Decimal('0'),
                           number_of_repayments=3)
        plan = ScheduleGenerator().generate(terms)

        assert amounts(plan.repayment_periods, 'principal_amount') == [
            Decimal('333.33'), Decimal('333.34'), Decimal('333.33')
        ]

    def test_down_payment(self):
        """Test down payment is taken at disbursement and the rest amortized"""
        terms = make_terms(principal=Decimal('1000'), annual_nominal_interest_rate=Decimal('0'),
                           number_of_repayments=3, down_payment_percentage=Decimal('25'))
        plan = ScheduleGenerator(HALF_UP).generate(terms)

        assert len(plan.periods) == 5
        down_payment = plan.periods[1]
        assert isinstance(down_payment, DownPaymentPeriod)
        assert down_payment.period_number == 1
        assert down_payment.due_date == date(2024, 1, 1)
        assert down_payment.principal_amount.amount == Decimal('250.00')
        assert down_payment.outstanding_balance_after.amount == Decimal('750.00')

        assert [p.period_number for p in plan.repayment_periods] == [2, 3, 4]
        assert amounts(plan.repayment_periods, 'principal_amount') == [Decimal('250.00')] * 3
        assert plan.total_down_payment_amount.amount == Decimal('250.00')
        assert plan.total_principal_amount.amount == Decimal('1000.00')
        assert plan.total_repayment_amount.amount == Decimal('1000.00')

    def test_weekly_frequency(self):
        """Test every-two-weeks schedule uses actual days"""
        terms = make_terms(
            principal=Decimal('1000'), annual_nominal_interest_rate=Decimal('36.5'),
            number_of_repayments=3, repayment_frequency=RepaymentFrequency(2, PeriodFrequencyType.WEEKS),
            days_in_year_type=DaysInYearType.DAYS_365, days_in_month_type=DaysInMonthType.ACTUAL
        )
        plan = ScheduleGenerator(HALF_UP).generate(terms)
        repayments = plan.repayment_periods

        assert [p.due_date for p in repayments] == [
            date(2024, 1, 15), date(2024, 1, 29), date(2024, 2, 12)
        ]
        assert repayments[0].interest_amount.amount == Decimal('14.00')
        assert plan.total_principal_amount.amount == Decimal('1000.00')
        assert repayments[-1].outstanding_balance_after.is_zero()

    def test_actual_days_in_month(self):
        """Test actual month lengths drive the interest of each period"""
        terms = make_terms(
            principal=Decimal('1000'), annual_nominal_interest_rate=Decimal('36.6'),
            number_of_repayments=2, days_in_year_type=DaysInYearType.ACTUAL,
            days_in_month_type=DaysInMonthType.ACTUAL
        )
        plan = ScheduleGenerator(HALF_UP).generate(terms)

        # 2024 has 366 days, January 31 of them
        assert plan.repayment_periods[0].interest_amount.amount == Decimal('31.00')

    def test_interest_recognition_on_disbursement_date(self):
        """Test the first period earns one extra day of interest"""
        plan = ScheduleGenerator(HALF_UP).generate(
            make_terms(interest_recognition_on_disbursement_date=True)
        )
        assert plan.repayment_periods[0].interest_amount.amount == Decimal('0.60')
        assert plan.repayment_periods[1].interest_amount.amount == Decimal('0.49')

    def test_fixed_length(self):
        """Test the last due date is pinned to the fixed loan length"""
        terms = make_terms(number_of_repayments=3, fixed_length=100)
        plan = ScheduleGenerator(HALF_UP).generate(terms)

        assert [p.due_date for p in plan.repayment_periods] == [
            date(2024, 2, 1), date(2024, 3, 1), date(2024, 4, 10)
        ]
        assert plan.loan_term_in_days == 100
        assert plan.repayment_periods[-1].outstanding_balance_after.is_zero()

    def test_shortest_fixed_length(self):
        """Test a fixed length one day past the previous due date keeps dates ordered"""
        terms = make_terms(number_of_repayments=3, fixed_length=61)
        plan = ScheduleGenerator(HALF_UP).generate(terms)
        repayments = plan.repayment_periods

        assert [p.due_date for p in repayments] == [
            date(2024, 2, 1), date(2024, 3, 1), date(2024, 3, 2)
        ]
        assert not repayments[-1].interest_amount.is_negative()
        assert repayments[-1].outstanding_balance_after.is_zero()

    def test_installment_in_multiples(self):
        """Test installments are rounded to the configured multiple"""
        terms = make_terms(principal=Decimal('1000'), annual_nominal_interest_rate=Decimal('0'),
                           number_of_repayments=3, installment_amount_in_multiples_of=10)
        plan = ScheduleGenerator(HALF_UP).generate(terms)

        assert amounts(plan.repayment_periods, 'principal_amount') == [
            Decimal('330.00'), Decimal('340.00'), Decimal('330.00')
        ]

    def test_single_repayment(self):
        """Test a one-period loan repays everything at once"""
        plan = ScheduleGenerator(HALF_UP).generate(make_terms(number_of_repayments=1))
        period = plan.repayment_periods[0]

        assert period.principal_amount.amount == Decimal('100.00')
        assert period.interest_amount.amount == Decimal('0.58')
        assert period.outstanding_balance_after.is_zero()

    def test_rounding_mode_changes_result(self):
        """Test the context rounding mode reaches money amounts"""
        terms = make_terms(principal=Decimal('1000'), annual_nominal_interest_rate=Decimal('0'),
                           number_of_repayments=3)
        down = ScheduleGenerator(CalculationContext(rounding=RoundingMode.DOWN)).generate(terms)

        assert amounts(down.repayment_periods, 'principal_amount') == [
            Decimal('333.33'), Decimal('333.33'), Decimal('333.34')
        ]


class TestPeriodLookup:
    """Test mapping dates onto repayment periods"""

    def test_period_for_date(self):
        plan = ScheduleGenerator(HALF_UP).generate(make_terms())
        numbers = lambda d: plan.period_for_date(d).period_number

        assert numbers(date(2023, 12, 1)) == 1
        assert numbers(date(2024, 1, 1)) == 1
        assert numbers(date(2024, 2, 1)) == 1
        assert numbers(date(2024, 2, 2)) == 2
        assert numbers(date(2024, 7, 1)) == 6
        assert numbers(date(2024, 9, 1)) == 6

    def test_find_period(self):
        plan = ScheduleGenerator(HALF_UP).generate(make_terms())
        assert plan.find_period(3).due_date == date(2024, 4, 1)
        assert plan.find_period(42) is None


class TestRecalculation:
    """Test recalculating the schedule from a date"""

    def test_recalculation_without_changes_is_stable(self):
        generator = ScheduleGenerator(HALF_UP)
        terms = make_terms()
        plan = generator.generate(terms)
        before = amounts(plan.repayment_periods, 'principal_amount')

        start = generator.recalculate_from(plan, terms, date(2024, 3, 15))

        assert start == 2
        assert amounts(plan.repayment_periods, 'principal_amount') == before

    def test_recalculation_after_maturity(self):
        generator = ScheduleGenerator(HALF_UP)
        terms = make_terms()
        plan = generator.generate(terms)
        assert generator.recalculate_from(plan, terms, date(2024, 8, 1)) is None

    def test_rate_change(self):
        """Test a new rate applies to periods starting on or after its date"""
        generator = ScheduleGenerator(HALF_UP)
        terms = make_terms()
        plan = generator.generate(terms)

        generator.recalculate_from(plan, terms, date(2024, 3, 1), [(date(2024, 3, 1), Decimal('0'))])
        repayments = plan.repayment_periods

        assert amounts(repayments[:2], 'principal_amount') == [Decimal('16.43'), Decimal('16.52')]
        assert amounts(repayments[:2], 'interest_amount') == [Decimal('0.58'), Decimal('0.49')]
        assert amounts(repayments[2:], 'principal_amount') == [
            Decimal('16.76'), Decimal('16.76'), Decimal('16.77'), Decimal('16.76')
        ]
        assert all(p.interest_amount.is_zero() for p in repayments[2:])
        assert plan.total_interest_amount.amount == Decimal('1.07')
        assert plan.total_principal_amount.amount == Decimal('100.00')

    def test_rate_in_effect(self):
        terms = make_terms()
        changes = [(date(2024, 3, 1), Decimal('5')), (date(2024, 5, 1), Decimal('3'))]

        assert ScheduleGenerator.rate_in_effect(terms, date(2024, 2, 1), changes) == Decimal('7')
        assert ScheduleGenerator.rate_in_effect(terms, date(2024, 3, 1), changes) == Decimal('5')
        assert ScheduleGenerator.rate_in_effect(terms, date(2024, 6, 1), changes) == Decimal('3')
        assert ScheduleGenerator.rate_in_effect(terms, date(2024, 6, 1)) == Decimal('7')


class TestScheduleProperties:
    """Property tests over generated loan terms"""

    @settings(max_examples=150, deadline=None)
    @given(
        principal=st.decimals(min_value=Decimal('1'), max_value=Decimal('1000000'), places=2),
        rate=st.decimals(min_value=Decimal('0'), max_value=Decimal('40'), places=2),
        repayments=st.integers(min_value=1, max_value=48),
        every=st.integers(min_value=1, max_value=3),
        unit=st.sampled_from(list(PeriodFrequencyType)),
        year_type=st.sampled_from(list(DaysInYearType)),
        month_type=st.sampled_from(list(DaysInMonthType)),
        down_payment=st.sampled_from([Decimal('0'), Decimal('10'), Decimal('33.3')]),
        rounding=st.sampled_from([RoundingMode.HALF_UP, RoundingMode.HALF_EVEN, RoundingMode.DOWN]),
    )
    def test_schedule_amortizes_fully(self, principal, rate, repayments, every, unit,
                                      year_type, month_type, down_payment, rounding):
        """Test principal is fully repaid and no amount goes negative"""
        terms = make_terms(
            principal=principal, annual_nominal_interest_rate=rate,
            number_of_repayments=repayments,
            repayment_frequency=RepaymentFrequency(every, unit),
            days_in_year_type=year_type, days_in_month_type=month_type,
            down_payment_percentage=down_payment
        )
        plan = ScheduleGenerator(CalculationContext(rounding=rounding)).generate(terms)
        repayments_ = plan.repayment_periods

        assert plan.total_principal_amount.amount == principal
        assert repayments_[-1].outstanding_balance_after.is_zero()
        assert len(repayments_) <= repayments

        balance = None
        for period in repayments_:
            assert not period.principal_amount.is_negative()
            assert not period.interest_amount.is_negative()
            assert not period.outstanding_balance_after.is_negative()
            if balance is not None:
                assert period.outstanding_balance_after <= balance
            balance = period.outstanding_balance_after

        due_dates = [p.due_date for p in repayments_]
        assert due_dates == sorted(set(due_dates))
