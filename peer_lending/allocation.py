"""
Payment Allocation Module

Splits a borrower payment into interest, technology fee and capital.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Optional, Any, Sequence, Union

from .amortization import AmortizationSchedule
from .currency import Money, round_amount, to_decimal
from .loans import Loan, Disbursement
from .rates import LoanRates, ZERO, compound_interest, days_between
from .valuation import confirmed_disbursements, group_by_date, value_at


@dataclass(frozen=True)
class PaymentBreakdown:
    """Components of one payment; they always sum to total"""
    capital: Decimal
    interest: Decimal
    technology_fee: Decimal
    late_fee: Decimal
    total: Decimal
    payment_date: date
    period: int

    def __post_init__(self):
        if self.capital + self.interest + self.technology_fee + self.late_fee != self.total:
            raise ValueError("Breakdown components must sum to the total")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'capital': str(self.capital),
            'interest': str(self.interest),
            'technology_fee': str(self.technology_fee),
            'late_fee': str(self.late_fee),
            'total': str(self.total),
            'payment_date': self.payment_date.isoformat(),
            'period': self.period,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaymentBreakdown':
        return cls(
            capital=Decimal(data['capital']),
            interest=Decimal(data['interest']),
            technology_fee=Decimal(data['technology_fee']),
            late_fee=Decimal(data['late_fee']),
            total=Decimal(data['total']),
            payment_date=date.fromisoformat(data['payment_date']),
            period=data['period'],
        )


def _accrued_since_start(rates: LoanRates, disbursements: Sequence[Disbursement], as_of: date):
    """Interest and fee accrued from each pooled disbursement up to as_of"""
    groups = group_by_date(confirmed_disbursements(disbursements))
    funded = [g for g in groups if g.on <= as_of]
    principal = sum((g.amount for g in funded), ZERO)
    # Pooled flows dated after as_of would discount; interest never goes negative
    interest = max(ZERO, value_at(funded, as_of, rates.daily_rate) - principal)
    fee_days = max(0, days_between(groups[-1].on, as_of))
    return interest, rates.daily_fee * fee_days, principal


def _amounts_due(schedule: AmortizationSchedule, loan: Loan, as_of: date,
                 disbursements: Optional[Sequence[Disbursement]]):
    """Interest, fee and outstanding capital chargeable on as_of"""
    currency = loan.currency
    rows = schedule.payment_rows
    paid = [row for row in rows if row.actual_payment is not None]

    if all(row.is_paid for row in rows):
        return ZERO, ZERO, paid[-1].balance if paid else ZERO

    rates = LoanRates.for_loan(loan)
    is_first_payment = not any(row.is_paid for row in rows)

    if is_first_payment and disbursements and confirmed_disbursements(disbursements):
        interest, fee, balance = _accrued_since_start(rates, disbursements, as_of)
    else:
        if paid:
            anchor_date, balance = paid[-1].actual_payment.date, paid[-1].balance
        else:
            last = schedule.disbursement_rows[-1]
            anchor_date, balance = last.date, last.balance
        days = max(0, days_between(anchor_date, as_of))
        interest = compound_interest(balance, rates.daily_rate, days)
        fee = rates.daily_fee * days

    return round_amount(interest, currency), round_amount(fee, currency), round_amount(balance, currency)


def payoff_amount(schedule: Optional[AmortizationSchedule], loan: Loan, as_of: date,
                  disbursements: Optional[Sequence[Disbursement]] = None) -> Optional[Decimal]:
    """Largest payment allocate_payment accepts on as_of"""
    if schedule is None:
        return None
    return sum(_amounts_due(schedule, loan, as_of, disbursements), ZERO)


def allocate_payment(amount: Union[Money, Decimal], schedule: Optional[AmortizationSchedule],
                     loan: Loan, as_of: date,
                     disbursements: Optional[Sequence[Disbursement]] = None) -> Optional[PaymentBreakdown]:
    """
    Allocate amount paid on as_of against the schedule: interest first,
    then technology fee, then capital.

    Capital is capped at the outstanding balance, so an amount above the
    payoff raises ValueError. Returns None when there is no schedule yet.
    """
    if schedule is None:
        return None

    currency = loan.currency
    raw = amount.amount if isinstance(amount, Money) else to_decimal(amount)
    total = round_amount(raw, currency)
    if total < ZERO:
        raise ValueError("Payment amount cannot be negative")

    period = sum(1 for row in schedule.payment_rows if row.actual_payment is not None) + 1
    interest_due, fee_due, balance_due = _amounts_due(schedule, loan, as_of, disbursements)

    interest_paid = min(total, interest_due)
    fee_paid = min(total - interest_paid, fee_due)
    capital_paid = total - interest_paid - fee_paid
    if capital_paid > balance_due:
        payoff = Money(interest_due + fee_due + balance_due, currency)
        raise ValueError(f"Payment exceeds the payoff amount of {payoff.to_string()} on {as_of.isoformat()}")

    return PaymentBreakdown(
        capital=capital_paid,
        interest=interest_paid,
        technology_fee=fee_paid,
        late_fee=ZERO,
        total=total,
        payment_date=as_of,
        period=period,
    )
