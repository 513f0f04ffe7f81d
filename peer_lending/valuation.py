"""
Valuation Module

Moves cash flows through time at a daily rate and computes the payoff
balance of a loan on an arbitrary date.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Sequence, Tuple

from .currency import Money, round_amount
from .loans import Loan, Disbursement, Payment
from .rates import LoanRates, ZERO, days_between, growth_factor


@dataclass(frozen=True)
class CashFlow:
    """An amount dated on a calendar day; sources name the records it pools"""
    amount: Decimal
    on: date
    sources: Tuple[str, ...] = ()


def value_at(cashflows: Iterable[CashFlow], focal_date: date, rate: Decimal) -> Decimal:
    """
    Value of cashflows on focal_date. Earlier flows are compounded forward,
    later ones discounted back.
    """
    total = ZERO
    for flow in cashflows:
        days = days_between(flow.on, focal_date)
        if days >= 0:
            total += flow.amount * growth_factor(rate, days)
        else:
            total += flow.amount / growth_factor(rate, -days)
    return total


def confirmed_disbursements(disbursements: Iterable[Disbursement]) -> List[Disbursement]:
    return sorted((d for d in disbursements if d.is_confirmed), key=lambda d: (d.created_at, d.id))


def group_by_date(disbursements: Sequence[Disbursement]) -> List[CashFlow]:
    """Pool disbursements sharing a calendar day into one flow, oldest first"""
    pooled = OrderedDict()
    for disbursement in sorted(disbursements, key=lambda d: (d.disbursed_on, d.id)):
        amount, sources = pooled.get(disbursement.disbursed_on, (ZERO, ()))
        pooled[disbursement.disbursed_on] = (
            amount + disbursement.amount.amount,
            sources + (disbursement.id,),
        )
    return [CashFlow(amount, on, sources) for on, (amount, sources) in pooled.items()]


def payoff_balance(loan: Loan, disbursements: Sequence[Disbursement],
                   payments: Sequence[Payment], focal_date: date) -> Money:
    """
    Amount that settles the loan on focal_date.

    Confirmed disbursements are valued forward to the focal date, capital
    repaid is valued the same way and subtracted, interest already paid is
    subtracted at face value, and technology fee accrues daily from the
    last disbursement. Payments dated after the focal date only discount
    their capital. The result is floored at zero.
    """
    zero = Money.zero(loan.currency)
    funded = confirmed_disbursements(disbursements)
    if not loan.monthly_interest_rate or not funded:
        return zero

    rates = LoanRates.for_loan(loan)
    balance = value_at(group_by_date(funded), focal_date, rates.daily_rate)

    capital_flows = [CashFlow(p.capital.amount, p.payment_date) for p in payments]
    balance -= value_at(capital_flows, focal_date, rates.daily_rate)
    balance -= sum((p.interest.amount for p in payments if p.payment_date <= focal_date), ZERO)

    last_disbursed = funded[-1].disbursed_on
    fee_days = max(0, days_between(last_disbursed, focal_date))
    fee_paid = sum((p.technology_fee.amount for p in payments), ZERO)
    balance += rates.daily_fee * fee_days - fee_paid

    if balance <= ZERO:
        return zero
    return Money(round_amount(balance, loan.currency), loan.currency)
