"""
Tests for focal-date valuation and payoff balances
"""

from datetime import date, timedelta
from decimal import Decimal

from peer_lending.loans import DisbursementStatus
from peer_lending.rates import daily_rate
from peer_lending.valuation import CashFlow, value_at, group_by_date, payoff_balance
from factories import DAY_ZERO, make_loan, make_disbursement, pay_next_installment, pay_off


RATE = daily_rate(Decimal('0.021'))


class TestValueAt:
    """Test moving cash flows through time"""

    def test_compounds_forward(self):
        flows = [CashFlow(Decimal('1000'), DAY_ZERO)]
        assert value_at(flows, DAY_ZERO + timedelta(days=10), RATE) == Decimal('1000') * (1 + RATE) ** 10

    def test_discounts_backward(self):
        flows = [CashFlow(Decimal('1000'), DAY_ZERO + timedelta(days=10))]
        assert value_at(flows, DAY_ZERO, RATE) == Decimal('1000') / (1 + RATE) ** 10

    def test_sums_flows(self):
        flows = [CashFlow(Decimal('600'), DAY_ZERO), CashFlow(Decimal('400'), DAY_ZERO)]
        assert value_at(flows, DAY_ZERO, RATE) == Decimal('1000')


class TestGroupByDate:
    """Test pooling of same-day disbursements"""

    def test_same_day_disbursements_pool(self):
        loan = make_loan()
        disbursements = [
            make_disbursement(loan, "investor-a", "600000", DAY_ZERO, hour=9),
            make_disbursement(loan, "investor-b", "400000", DAY_ZERO, hour=15),
            make_disbursement(loan, "investor-c", "100000", DAY_ZERO + timedelta(days=3)),
        ]
        groups = group_by_date(disbursements)
        assert [g.on for g in groups] == [DAY_ZERO, DAY_ZERO + timedelta(days=3)]
        assert groups[0].amount == Decimal('1000000.00')
        assert len(groups[0].sources) == 2


class TestPayoffBalance:
    """Test payoff on arbitrary dates"""

    def setup_method(self):
        self.loan = make_loan()
        self.disbursements = [make_disbursement(self.loan, "investor-a", "1000000", DAY_ZERO)]

    def test_payoff_on_disbursement_day_is_principal(self):
        payoff = payoff_balance(self.loan, self.disbursements, [], DAY_ZERO)
        assert payoff.amount == Decimal('1000000.00')

    def test_payoff_grows_without_payments(self):
        values = [
            payoff_balance(self.loan, self.disbursements, [], DAY_ZERO + timedelta(days=days)).amount
            for days in (0, 10, 30, 90)
        ]
        assert values == sorted(values)
        assert len(set(values)) == len(values)

    def test_payment_reduces_payoff(self):
        due = date(2025, 2, 5)
        payment = pay_next_installment(self.loan, self.disbursements, [], due)
        later = due + timedelta(days=5)
        without = payoff_balance(self.loan, self.disbursements, [], later)
        with_payment = payoff_balance(self.loan, self.disbursements, [payment], later)
        assert with_payment < without
        # Capital repaid is what reduces the balance
        assert without.amount - with_payment.amount > payment.capital.amount

    def test_zero_without_rate_or_disbursements(self):
        assert payoff_balance(make_loan(rate=None), self.disbursements, [], DAY_ZERO).is_zero()
        assert payoff_balance(self.loan, [], [], DAY_ZERO).is_zero()

    def test_pending_disbursements_ignored(self):
        pending = [make_disbursement(self.loan, "investor-b", "500000", DAY_ZERO,
                                     status=DisbursementStatus.PENDING_CONFIRMATION)]
        assert payoff_balance(self.loan, pending, [], DAY_ZERO).is_zero()
        assert payoff_balance(self.loan, self.disbursements + pending, [], DAY_ZERO).amount == Decimal('1000000.00')

    def test_settled_after_paying_payoff(self):
        due = date(2025, 2, 5)
        payment = pay_off(self.loan, self.disbursements, [], due)
        assert payment.capital.amount == Decimal('1000000.00')
        # Only cent rounding of the accrued interest and fee can remain
        assert payoff_balance(self.loan, self.disbursements, [payment], due).amount <= Decimal('0.01')
