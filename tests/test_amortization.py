"""
Tests for amortization schedule generation

Covers the single-lender and staggered two-lender projections, payment
consolidation, overdue periods, re-solving after partial payments and the
conservation of principal across the schedule.
"""

import json
from datetime import date, timedelta
from decimal import Decimal

from peer_lending.amortization import (
    RowType, generate_schedule, first_payment_date, due_dates,
    overdue_rows, next_due_row, amount_due, repayment_status,
)
from peer_lending.currency import Money, Currency, round_amount
from peer_lending.loans import LoanStatus, DisbursementStatus
from peer_lending.rates import daily_rate, daily_fee
from peer_lending.valuation import payoff_balance
from factories import DAY_ZERO, make_loan, make_disbursement, pay_next_installment, pay_off


RATE = daily_rate(Decimal('0.021'))
FEE = daily_fee(Decimal('8000.00'))


def cents(value):
    return round_amount(value, Currency.COP)


def principal_total(schedule):
    return sum((row.principal for row in schedule.payment_rows), Decimal('0'))


class TestPaymentDates:
    """Test first payment date and due date rules"""

    def test_pushed_past_disbursement(self):
        assert first_payment_date(date(2025, 1, 10), 5, 15) == date(2025, 2, 5)

    def test_pushed_when_first_period_too_short(self):
        # Feb 5 is only 11 days after Jan 25
        assert first_payment_date(date(2025, 1, 25), 5, 15) == date(2025, 3, 5)
        assert first_payment_date(date(2025, 1, 10), 20, 15) == date(2025, 2, 20)

    def test_same_month_when_far_enough(self):
        assert first_payment_date(date(2025, 1, 2), 20, 15) == date(2025, 1, 20)

    def test_due_dates_are_monthly(self):
        dates = due_dates(date(2025, 11, 28), 4, 28)
        assert dates == [date(2025, 11, 28), date(2025, 12, 28), date(2026, 1, 28), date(2026, 2, 28)]


class TestScheduleReadiness:
    """Test the not-ready cases"""

    def setup_method(self):
        self.loan = make_loan()
        self.disbursements = [make_disbursement(self.loan, "investor-a", "1000000", DAY_ZERO)]

    def test_missing_payment_day(self):
        assert generate_schedule(make_loan(payment_day=None), self.disbursements, [], DAY_ZERO) is None

    def test_missing_rate_or_term(self):
        assert generate_schedule(make_loan(rate=None), self.disbursements, [], DAY_ZERO) is None
        assert generate_schedule(make_loan(term=None), self.disbursements, [], DAY_ZERO) is None

    def test_only_pending_disbursements(self):
        pending = [make_disbursement(self.loan, "investor-a", "1000000", DAY_ZERO,
                                     status=DisbursementStatus.PENDING_CONFIRMATION)]
        assert generate_schedule(self.loan, pending, [], DAY_ZERO) is None


class TestSingleLenderProjection:
    """One investor funds 1,000,000 COP at 2.1% monthly over 12 months"""

    def setup_method(self):
        self.loan = make_loan()
        self.disbursements = [make_disbursement(self.loan, "investor-a", "1000000", DAY_ZERO)]
        self.schedule = generate_schedule(self.loan, self.disbursements, [], DAY_ZERO)

    def test_row_layout(self):
        rows = self.schedule.rows
        assert len(rows) == 13
        assert rows[0].row_type == RowType.DISBURSEMENT
        assert rows[0].period == "-"
        assert rows[0].balance == Decimal('1000000.00')
        assert [row.period for row in rows[1:]] == [str(n) for n in range(1, 13)]
        assert rows[1].date == date(2025, 2, 5)
        assert rows[-1].date == date(2026, 1, 5)

    def test_ends_at_zero(self):
        assert self.schedule.rows[-1].balance == Decimal('0')
        assert principal_total(self.schedule) == Decimal('1000000.00')

    def test_installments_are_level(self):
        for row in self.schedule.payment_rows:
            assert abs(row.flow - self.schedule.installment) < Decimal('0.05')

    def test_components_sum_to_flow(self):
        for row in self.schedule.payment_rows:
            assert row.principal + row.interest + row.technology_fee == row.flow

    def test_first_period_accrues_from_disbursement(self):
        first = self.schedule.payment_rows[0]
        assert first.interest == cents(Decimal('1000000.00') * (1 + RATE) ** 26 - Decimal('1000000.00'))
        assert first.technology_fee == cents(FEE * 26)

    def test_exactly_one_next_due(self):
        flagged = [row for row in self.schedule.payment_rows if row.is_next_due]
        assert len(flagged) == 1
        assert flagged[0].period == "1"

    def test_projection_flag_follows_status(self):
        assert not self.schedule.is_projection
        funded = make_loan(status=LoanStatus.FUNDED)
        assert generate_schedule(funded, self.disbursements, [], DAY_ZERO).is_projection

    def test_balances_decrease(self):
        balances = [row.balance for row in self.schedule.payment_rows]
        assert balances == sorted(balances, reverse=True)


class TestStaggeredDisbursements:
    """Lender A funds 600,000 on day 0, lender B 400,000 on day 10"""

    def setup_method(self):
        self.loan = make_loan()
        self.disbursements = [
            make_disbursement(self.loan, "investor-a", "600000", DAY_ZERO),
            make_disbursement(self.loan, "investor-b", "400000", DAY_ZERO + timedelta(days=10)),
        ]
        self.schedule = generate_schedule(self.loan, self.disbursements, [], DAY_ZERO + timedelta(days=10))

    def test_disbursement_rows_accumulate(self):
        rows = self.schedule.disbursement_rows
        assert [row.balance for row in rows] == [Decimal('600000.00'), Decimal('1000000.00')]
        assert [row.principal for row in rows] == [Decimal('-600000.00'), Decimal('-400000.00')]

    def test_first_interest_uses_each_disbursement_date(self):
        first = self.schedule.payment_rows[0]
        assert first.date == date(2025, 2, 5)
        expected = cents(
            Decimal('600000.00') * (1 + RATE) ** 26
            + Decimal('400000.00') * (1 + RATE) ** 16
            - Decimal('1000000.00')
        )
        naive = cents(Decimal('1000000.00') * ((1 + RATE) ** 16 - 1))
        assert first.interest == expected
        assert first.interest > naive

    def test_deterministic(self):
        again = generate_schedule(self.loan, list(reversed(self.disbursements)), [],
                                  DAY_ZERO + timedelta(days=10))
        assert json.dumps(self.schedule.to_dict()) == json.dumps(again.to_dict())

    def test_fee_runs_from_last_disbursement(self):
        assert self.schedule.payment_rows[0].technology_fee == cents(FEE * 16)

    def test_ends_at_zero(self):
        assert self.schedule.rows[-1].balance == Decimal('0')
        assert principal_total(self.schedule) == Decimal('1000000.00')


class TestRecordedPayments:
    """Test schedules that include real payments"""

    def setup_method(self):
        self.loan = make_loan()
        self.disbursements = [make_disbursement(self.loan, "investor-a", "1000000", DAY_ZERO)]
        self.dates = due_dates(date(2025, 2, 5), 12, 5)
        self.initial = generate_schedule(self.loan, self.disbursements, [], DAY_ZERO)

    def pay(self, payments, on, fraction=Decimal('1')):
        payments.append(pay_next_installment(self.loan, self.disbursements, payments, on, fraction))

    def test_on_time_payment_matches_projection(self):
        payments = []
        self.pay(payments, self.dates[0])
        schedule = generate_schedule(self.loan, self.disbursements, payments, self.dates[0])
        paid = schedule.payment_rows[0]
        projected = self.initial.payment_rows[0]
        assert paid.is_paid
        assert paid.actual_payment.payment_count == 1
        assert paid.interest == projected.interest
        assert paid.technology_fee == projected.technology_fee
        assert paid.principal == projected.principal
        assert schedule.payment_rows[1].is_next_due

    def test_payments_in_same_period_consolidate(self):
        payments = []
        self.pay(payments, self.dates[0] - timedelta(days=3), Decimal('0.5'))
        self.pay(payments, self.dates[0], Decimal('0.5'))
        schedule = generate_schedule(self.loan, self.disbursements, payments, self.dates[0])
        first = schedule.payment_rows[0]
        assert first.actual_payment.payment_count == 2
        assert first.flow == payments[0].amount.amount + payments[1].amount.amount
        assert first.date == self.dates[0]

    def test_partial_payment_resolves_installment(self):
        payments = []
        self.pay(payments, self.dates[0])
        self.pay(payments, self.dates[1])
        self.pay(payments, self.dates[2], Decimal('0.5'))
        schedule = generate_schedule(self.loan, self.disbursements, payments, self.dates[2])

        assert [r.period for r in schedule.revisions] == [0, 1, 2, 3]
        # Full payments keep the installment level
        assert abs(schedule.revisions[2].installment - schedule.revisions[0].installment) < Decimal('1')
        # Half a payment spreads the shortfall over the remaining nine periods
        assert schedule.revisions[3].installment - schedule.revisions[0].installment > Decimal('1000')

        fourth = schedule.payment_rows[3]
        assert fourth.is_next_due
        assert fourth.flow - self.initial.payment_rows[0].flow > Decimal('1000')
        assert schedule.rows[-1].balance == Decimal('0')
        assert principal_total(schedule) == Decimal('1000000.00')

    def test_full_repayment_completes(self):
        payments = []
        for due in self.dates:
            self.pay(payments, due)
        schedule = generate_schedule(self.loan, self.disbursements, payments, self.dates[-1])
        assert all(row.is_paid for row in schedule.payment_rows)
        assert repayment_status(self.loan, schedule) == LoanStatus.COMPLETED

    def test_payoff_settles_early(self):
        payments = [pay_off(self.loan, self.disbursements, [], self.dates[0])]
        schedule = generate_schedule(self.loan, self.disbursements, payments, self.dates[0])
        assert len(schedule.payment_rows) == 12
        later = schedule.payment_rows[1:]
        assert all(row.is_paid and row.flow == Decimal('0') for row in later)
        assert repayment_status(self.loan, schedule) == LoanStatus.COMPLETED
        assert principal_total(schedule) == Decimal('1000000.00')
        assert schedule.payment_rows[0].balance == Decimal('0')

    def test_recorded_overpayment_books_only_the_balance(self):
        payment = pay_off(self.loan, self.disbursements, [], self.dates[0])
        payment.capital = Money(payment.capital.amount * 2, Currency.COP)
        payment.amount = Money(payment.amount.amount + Decimal('1000000.00'), Currency.COP)
        schedule = generate_schedule(self.loan, self.disbursements, [payment], self.dates[0])
        first = schedule.payment_rows[0]
        assert first.principal == Decimal('1000000.00')
        assert first.balance == Decimal('0')
        assert principal_total(schedule) == Decimal('1000000.00')


class TestOverduePeriods:
    """Test periods that passed without payment"""

    def setup_method(self):
        self.loan = make_loan()
        self.disbursements = [make_disbursement(self.loan, "investor-a", "1000000", DAY_ZERO)]
        self.as_of = date(2025, 3, 10)
        self.schedule = generate_schedule(self.loan, self.disbursements, [], self.as_of)

    def test_overdue_rows_carry_no_flow(self):
        overdue = overdue_rows(self.schedule)
        assert [row.period for row in overdue] == ["1", "2"]
        for row in overdue:
            assert row.flow == Decimal('0')
            assert row.balance == Decimal('1000000.00')
            assert not row.is_paid

    def test_next_due_accrues_from_disbursement(self):
        row = next_due_row(self.schedule)
        assert row.period == "3"
        assert row.date == date(2025, 4, 5)
        assert row.interest == cents(Decimal('1000000.00') * (1 + RATE) ** 85 - Decimal('1000000.00'))
        assert row.technology_fee == cents(FEE * 85)

    def test_still_amortizes_to_zero(self):
        assert self.schedule.rows[-1].balance == Decimal('0')

    def test_due_date_itself_is_not_overdue(self):
        schedule = generate_schedule(self.loan, self.disbursements, [], date(2025, 2, 5))
        assert overdue_rows(schedule) == []

    def test_status_and_amount_due(self):
        assert repayment_status(self.loan, self.schedule) == LoanStatus.REPAYMENT_OVERDUE
        due = amount_due(self.schedule, self.loan, self.disbursements, [], self.as_of)
        assert due == payoff_balance(self.loan, self.disbursements, [], self.as_of).amount

    def test_amount_due_is_next_installment_when_current(self):
        schedule = generate_schedule(self.loan, self.disbursements, [], DAY_ZERO)
        assert amount_due(schedule, self.loan, self.disbursements, [], DAY_ZERO) == schedule.payment_rows[0].flow
        assert repayment_status(self.loan, schedule) == LoanStatus.REPAYMENT_ACTIVE
