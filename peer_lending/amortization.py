"""
Amortization Schedule Module

Derives the full schedule of a loan from its confirmed disbursements, the
payments recorded against it and an as-of date. The schedule is never
persisted; it is recomputed from the records every time.

Real payments replace projected rows and trigger a re-solve of the fixed
installment for the remaining periods, so partial or early payments change
what the borrower owes from then on.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Any, Sequence

from .config import get_config
from .currency import Currency, round_amount
from .loans import Loan, LoanStatus, Disbursement, Payment, REPAYMENT_STATUSES
from .rates import LoanRates, ONE, ZERO, add_months, compound_interest, days_between, set_day
from .solver import solve_fixed_installment
from .valuation import confirmed_disbursements, group_by_date, payoff_balance, value_at


class RowType(Enum):
    DISBURSEMENT = "disbursement"
    PAYMENT = "payment"
    CAPITALIZATION = "capitalization"


@dataclass
class ActualPayment:
    """Payments recorded in one period, consolidated"""
    date: date
    amount: Decimal
    capital: Decimal
    interest: Decimal
    technology_fee: Decimal
    late_fee: Decimal
    receipt_urls: List[str]
    payment_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date.isoformat(),
            'amount': str(self.amount),
            'capital': str(self.capital),
            'interest': str(self.interest),
            'technology_fee': str(self.technology_fee),
            'late_fee': str(self.late_fee),
            'receipt_urls': list(self.receipt_urls),
            'payment_count': self.payment_count,
        }


@dataclass
class AmortizationRow:
    period: str  # "-" for disbursement rows
    date: date
    row_type: RowType
    flow: Decimal
    interest: Decimal
    principal: Decimal
    technology_fee: Decimal
    balance: Decimal
    is_paid: bool = False
    is_overdue: bool = False
    is_next_due: bool = False
    actual_payment: Optional[ActualPayment] = None
    disbursement_ids: List[str] = field(default_factory=list)

    @property
    def is_payment(self) -> bool:
        return self.row_type == RowType.PAYMENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            'period': self.period,
            'date': self.date.isoformat(),
            'type': self.row_type.value,
            'flow': str(self.flow),
            'interest': str(self.interest),
            'principal': str(self.principal),
            'technology_fee': str(self.technology_fee),
            'balance': str(self.balance),
            'is_paid': self.is_paid,
            'is_overdue': self.is_overdue,
            'is_next_due': self.is_next_due,
            'actual_payment': self.actual_payment.to_dict() if self.actual_payment else None,
            'disbursement_ids': list(self.disbursement_ids),
        }


@dataclass(frozen=True)
class InstallmentRevision:
    period: int  # 0 for the initial solve, else the period whose payment triggered it
    anchor_date: date
    balance: Decimal
    installment: Decimal
    converged: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'period': self.period,
            'anchor_date': self.anchor_date.isoformat(),
            'balance': str(self.balance),
            'installment': str(self.installment),
            'converged': self.converged,
        }


@dataclass
class AmortizationSchedule:
    rows: List[AmortizationRow]
    is_projection: bool
    installment: Decimal
    revisions: List[InstallmentRevision]
    currency: Currency

    @property
    def payment_rows(self) -> List[AmortizationRow]:
        return [row for row in self.rows if row.is_payment]

    @property
    def disbursement_rows(self) -> List[AmortizationRow]:
        return [row for row in self.rows if row.row_type == RowType.DISBURSEMENT]

    @property
    def current_installment(self) -> Decimal:
        return self.revisions[-1].installment if self.revisions else self.installment

    def to_dict(self) -> Dict[str, Any]:
        return {
            'currency': self.currency.code,
            'is_projection': self.is_projection,
            'installment': str(self.installment),
            'revisions': [revision.to_dict() for revision in self.revisions],
            'rows': [row.to_dict() for row in self.rows],
        }


def first_payment_date(last_disbursement: date, payment_day: int,
                       min_days: Optional[int] = None) -> date:
    """
    Payment day on or after the last disbursement, pushed a month at a time
    until at least min_days separate them.
    """
    if min_days is None:
        min_days = get_config().min_first_period_days
    candidate = set_day(last_disbursement, payment_day)
    if candidate <= last_disbursement:
        candidate = set_day(add_months(candidate, 1), payment_day)
    while days_between(last_disbursement, candidate) < min_days:
        candidate = set_day(add_months(candidate, 1), payment_day)
    return candidate


def due_dates(first_due: date, term_months: int, payment_day: int) -> List[date]:
    return [set_day(add_months(first_due, offset), payment_day) for offset in range(term_months)]


def _bucket_payments(payments: Sequence[Payment], dates: Sequence[date]) -> Dict[int, List[Payment]]:
    """Period index for each payment; the first due date on or after it, else the last"""
    buckets: Dict[int, List[Payment]] = {}
    for payment in sorted(payments, key=lambda p: (p.payment_date, p.created_at, p.id)):
        period = len(dates)
        for index, due in enumerate(dates, start=1):
            if payment.payment_date <= due:
                period = index
                break
        buckets.setdefault(period, []).append(payment)
    return buckets


def _consolidate(payments: Sequence[Payment]) -> ActualPayment:
    return ActualPayment(
        date=max(p.payment_date for p in payments),
        amount=sum((p.amount.amount for p in payments), ZERO),
        capital=sum((p.capital.amount for p in payments), ZERO),
        interest=sum((p.interest.amount for p in payments), ZERO),
        technology_fee=sum((p.technology_fee.amount for p in payments), ZERO),
        late_fee=sum((p.late_fee.amount for p in payments), ZERO),
        receipt_urls=[p.receipt_url for p in payments if p.receipt_url],
        payment_count=len(payments),
    )


def generate_schedule(loan: Loan, disbursements: Sequence[Disbursement],
                      payments: Sequence[Payment], as_of: date) -> Optional[AmortizationSchedule]:
    """
    Build the amortization schedule of loan as seen on as_of.

    Returns None while the loan lacks a rate, a term, a payment day or any
    confirmed disbursement.
    """
    funded = confirmed_disbursements(disbursements)
    if not loan.monthly_interest_rate or not loan.term_months or not loan.payment_day or not funded:
        return None

    currency = loan.currency
    rates = LoanRates.for_loan(loan)
    term = loan.term_months

    def cents(value: Decimal) -> Decimal:
        return round_amount(value, currency)

    rows: List[AmortizationRow] = []
    groups = group_by_date(funded)
    principal = ZERO
    for group in groups:
        principal += group.amount
        rows.append(AmortizationRow(
            period="-",
            date=group.on,
            row_type=RowType.DISBURSEMENT,
            flow=cents(-group.amount),
            interest=ZERO,
            principal=cents(-group.amount),
            technology_fee=ZERO,
            balance=cents(principal),
            disbursement_ids=list(group.sources),
        ))

    last_disbursed = groups[-1].on
    dates = due_dates(first_payment_date(last_disbursed, loan.payment_day), term, loan.payment_day)

    focal_balance = value_at(groups, last_disbursed, rates.daily_rate)
    solution = solve_fixed_installment(focal_balance, dates, rates.daily_rate,
                                       rates.daily_fee, last_disbursed)
    installment = solution.installment
    revisions = [InstallmentRevision(0, last_disbursed, focal_balance, installment, solution.converged)]

    buckets = _bucket_payments(payments, dates)
    balance = principal
    anchor = last_disbursed
    # Until a payment or projected row is applied, interest is the future
    # value of every pooled disbursement rather than of the pooled balance
    untouched = True
    principal_shown = ZERO
    next_due_marked = False

    for index, due in enumerate(dates):
        period = index + 1
        period_payments = buckets.get(period)

        if period_payments:
            actual = _consolidate(period_payments)
            # Capital beyond the outstanding balance was never owed
            capital = min(actual.capital, max(balance, ZERO))
            balance -= capital
            principal_shown += capital
            rows.append(AmortizationRow(
                period=str(period),
                date=actual.date,
                row_type=RowType.PAYMENT,
                flow=actual.amount,
                interest=actual.interest,
                principal=capital,
                technology_fee=actual.technology_fee,
                balance=cents(balance) if balance >= Decimal('0.01') else ZERO,
                is_paid=True,
                actual_payment=actual,
            ))
            anchor = actual.date
            untouched = False
            remaining = dates[period:]
            if balance > ONE and remaining:
                solution = solve_fixed_installment(balance, remaining, rates.daily_rate,
                                                   rates.daily_fee, anchor)
                installment = solution.installment
                revisions.append(InstallmentRevision(period, anchor, balance, installment,
                                                     solution.converged))

        elif as_of > due:
            rows.append(AmortizationRow(
                period=str(period),
                date=due,
                row_type=RowType.PAYMENT,
                flow=ZERO,
                interest=ZERO,
                principal=ZERO,
                technology_fee=ZERO,
                balance=cents(balance),
                is_overdue=True,
            ))

        else:
            days = days_between(anchor, due)
            if untouched:
                interest = value_at(groups, due, rates.daily_rate) - balance
            else:
                interest = compound_interest(balance, rates.daily_rate, days)
            fee = rates.daily_fee * days
            capital = installment - interest - fee
            payoff = period == term or balance - capital < ONE
            if payoff:
                capital = balance
                shown_capital = cents(principal - principal_shown)
            else:
                shown_capital = cents(capital)
            balance -= capital
            principal_shown += shown_capital
            shown_interest = cents(interest)
            shown_fee = cents(fee)
            rows.append(AmortizationRow(
                period=str(period),
                date=due,
                row_type=RowType.PAYMENT,
                flow=shown_capital + shown_interest + shown_fee,
                interest=shown_interest,
                principal=shown_capital,
                technology_fee=shown_fee,
                balance=ZERO if payoff else cents(balance),
                is_next_due=not next_due_marked,
            ))
            next_due_marked = True
            anchor = due
            untouched = False

        if balance < ONE:
            for later, later_due in enumerate(dates[period:], start=period + 1):
                rows.append(AmortizationRow(
                    period=str(later),
                    date=later_due,
                    row_type=RowType.PAYMENT,
                    flow=ZERO,
                    interest=ZERO,
                    principal=ZERO,
                    technology_fee=ZERO,
                    balance=ZERO,
                    is_paid=True,
                ))
            break

    return AmortizationSchedule(
        rows=rows,
        is_projection=loan.status not in REPAYMENT_STATUSES,
        installment=cents(revisions[0].installment),
        revisions=revisions,
        currency=currency,
    )


def overdue_rows(schedule: AmortizationSchedule) -> List[AmortizationRow]:
    return [row for row in schedule.payment_rows if row.is_overdue]


def next_due_row(schedule: AmortizationSchedule) -> Optional[AmortizationRow]:
    for row in schedule.payment_rows:
        if row.is_next_due:
            return row
    return None


def amount_due(schedule: AmortizationSchedule, loan: Loan, disbursements: Sequence[Disbursement],
               payments: Sequence[Payment], as_of: date) -> Decimal:
    """
    What the borrower should pay on as_of: the payoff-style accrual when
    periods are overdue, else the next projected installment.
    """
    if overdue_rows(schedule):
        # Overdue rows carry no flow; settle everything accrued so far
        return payoff_balance(loan, disbursements, payments, as_of).amount
    row = next_due_row(schedule)
    return row.flow if row else ZERO


def repayment_status(loan: Loan, schedule: Optional[AmortizationSchedule]) -> LoanStatus:
    """Status a loan in repayment should carry given its schedule"""
    if schedule is None or loan.status not in REPAYMENT_STATUSES:
        return loan.status
    rows = schedule.payment_rows
    if rows and all(row.is_paid for row in rows) and rows[-1].balance < ONE:
        return LoanStatus.COMPLETED
    if overdue_rows(schedule):
        return LoanStatus.REPAYMENT_OVERDUE
    return LoanStatus.REPAYMENT_ACTIVE
