"""
Installment Solver Module

Finds the fixed installment that amortizes a balance to zero over a set of
due dates, when every installment first pays the interest and technology
fee accrued since the previous event.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

from .config import get_config
from .logging_config import get_logger, log_action
from .rates import ZERO, compound_interest, days_between

logger = get_logger("peer_lending.solver")

TWO = Decimal('2')
THREE = Decimal('3')


@dataclass(frozen=True)
class InstallmentSolution:
    installment: Decimal
    iterations: int
    converged: bool
    ending_balance: Decimal


def simulate_ending_balance(installment: Decimal, balance: Decimal, daily_rate: Decimal,
                            daily_fee: Decimal, due_dates: Sequence[date],
                            anchor_date: date) -> Decimal:
    """Balance left after paying installment on every due date"""
    previous = anchor_date
    for due in due_dates:
        days = days_between(previous, due)
        interest = compound_interest(balance, daily_rate, days)
        fee = daily_fee * days
        balance -= installment - interest - fee
        previous = due
    return balance


def solve_fixed_installment(balance: Decimal, due_dates: Sequence[date], daily_rate: Decimal,
                            daily_fee: Decimal, anchor_date: date,
                            tolerance: Optional[Decimal] = None,
                            max_iterations: Optional[int] = None) -> InstallmentSolution:
    """
    Bisect on [balance / n, 3 * balance / n] until the simulated ending
    balance is within tolerance of zero. A non-converged search returns the
    last midpoint and logs a warning.
    """
    config = get_config()
    if tolerance is None:
        tolerance = Decimal(config.solver_tolerance)
    if max_iterations is None:
        max_iterations = config.solver_max_iterations

    periods = len(due_dates)
    if balance <= ZERO or periods == 0:
        return InstallmentSolution(ZERO, 0, True, ZERO)

    low = balance / periods
    high = balance * THREE / periods
    installment = low
    ending = balance
    for iteration in range(1, max_iterations + 1):
        installment = (low + high) / TWO
        ending = simulate_ending_balance(installment, balance, daily_rate, daily_fee,
                                         due_dates, anchor_date)
        if abs(ending) < tolerance:
            return InstallmentSolution(installment, iteration, True, ending)
        if ending > ZERO:
            low = installment
        else:
            high = installment

    log_action(logger, "warning", "Installment search did not converge",
               action="solve_fixed_installment",
               extra={'balance': str(balance), 'periods': periods,
                      'installment': str(installment), 'ending_balance': str(ending)})
    return InstallmentSolution(installment, max_iterations, False, ending)
