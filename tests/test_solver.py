"""
Tests for the fixed-installment solver
"""

import logging
from datetime import date
from decimal import Decimal

from peer_lending.amortization import due_dates
from peer_lending.rates import daily_rate, daily_fee
from peer_lending.solver import simulate_ending_balance, solve_fixed_installment


RATE = daily_rate(Decimal('0.021'))
FEE = daily_fee(Decimal('8000'))
ANCHOR = date(2025, 1, 10)
DATES = due_dates(date(2025, 2, 5), 12, 5)


class TestSimulateEndingBalance:
    """Test the balance walk used by the solver"""

    def test_no_interest_no_fee(self):
        ending = simulate_ending_balance(Decimal('100'), Decimal('1200'), Decimal('0'), Decimal('0'),
                                         DATES, ANCHOR)
        assert ending == Decimal('0')

    def test_larger_installment_leaves_less(self):
        low = simulate_ending_balance(Decimal('90000'), Decimal('1000000'), RATE, FEE, DATES, ANCHOR)
        high = simulate_ending_balance(Decimal('110000'), Decimal('1000000'), RATE, FEE, DATES, ANCHOR)
        assert high < low


class TestSolveFixedInstallment:
    """Test bisection for the amortizing installment"""

    def test_installment_amortizes_balance(self):
        solution = solve_fixed_installment(Decimal('1000000'), DATES, RATE, FEE, ANCHOR)
        assert solution.converged
        assert abs(solution.ending_balance) < Decimal('0.01')
        ending = simulate_ending_balance(solution.installment, Decimal('1000000'), RATE, FEE, DATES, ANCHOR)
        assert abs(ending) < Decimal('0.01')
        # 2.1% monthly plus an 8,000 fee on 1,000,000 over 12 months
        assert Decimal('100000') < solution.installment < Decimal('105000')

    def test_interest_free_installment(self):
        solution = solve_fixed_installment(Decimal('1200'), DATES, Decimal('0'), Decimal('0'), ANCHOR)
        assert abs(solution.installment - Decimal('100')) < Decimal('0.01')

    def test_zero_balance_or_no_dates(self):
        assert solve_fixed_installment(Decimal('0'), DATES, RATE, FEE, ANCHOR).installment == Decimal('0')
        assert solve_fixed_installment(Decimal('1000'), [], RATE, FEE, ANCHOR).installment == Decimal('0')

    def test_non_convergence_warns_and_returns_midpoint(self, caplog):
        with caplog.at_level(logging.WARNING, logger="peer_lending.solver"):
            solution = solve_fixed_installment(Decimal('1000000'), DATES, RATE, FEE, ANCHOR,
                                               max_iterations=1)
        assert not solution.converged
        assert solution.iterations == 1
        # First midpoint of [B/n, 3B/n]
        assert abs(solution.installment - Decimal('166666.67')) < Decimal('0.01')
        assert any("did not converge" in record.getMessage() for record in caplog.records)
