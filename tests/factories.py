"""
Record builders shared by the test modules
"""

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal

from peer_lending.allocation import PaymentBreakdown, allocate_payment, payoff_amount
from peer_lending.amortization import generate_schedule, next_due_row
from peer_lending.currency import Money, Currency, round_amount
from peer_lending.loans import Loan, LoanStatus, Disbursement, DisbursementStatus, Payment


DAY_ZERO = date(2025, 1, 10)


def at_midnight(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def make_loan(loan_id="loan-1", amount="1000000", rate="0.021", term=12, payment_day=5,
              fee="8000", status=LoanStatus.REPAYMENT_ACTIVE, funded="100", committed="100",
              **kwargs) -> Loan:
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    return Loan(
        id=loan_id,
        created_at=now,
        updated_at=now,
        borrower_id=kwargs.pop('borrower_id', f"borrower-{loan_id}"),
        amount=Money(Decimal(amount), Currency.COP),
        monthly_interest_rate=Decimal(rate) if rate is not None else None,
        term_months=term,
        payment_day=payment_day,
        technology_fee=Money(Decimal(fee), Currency.COP),
        status=status,
        funded_percentage=Decimal(funded),
        committed_percentage=Decimal(committed),
        **kwargs
    )


def make_disbursement(loan: Loan, investor_id: str, amount, on: date,
                      status=DisbursementStatus.CONFIRMED, disbursement_id=None,
                      hour: int = 0) -> Disbursement:
    created = at_midnight(on).replace(hour=hour)
    return Disbursement(
        id=disbursement_id or f"{investor_id}-{on.isoformat()}-{hour}",
        created_at=created,
        updated_at=created,
        loan_id=loan.id,
        investor_id=investor_id,
        amount=Money(Decimal(amount), loan.currency),
        status=status,
    )


def payment_from_breakdown(loan: Loan, breakdown: PaymentBreakdown, payer_id="borrower") -> Payment:
    created = at_midnight(breakdown.payment_date)
    currency = loan.currency
    return Payment(
        id=str(uuid.uuid4()),
        created_at=created,
        updated_at=created,
        loan_id=loan.id,
        payer_id=payer_id,
        payment_date=breakdown.payment_date,
        amount=Money(breakdown.total, currency),
        capital=Money(breakdown.capital, currency),
        interest=Money(breakdown.interest, currency),
        technology_fee=Money(breakdown.technology_fee, currency),
        late_fee=Money(breakdown.late_fee, currency),
    )


def pay_next_installment(loan, disbursements, payments, on: date, fraction=Decimal('1')) -> Payment:
    """Pay fraction of the next due installment on the given date"""
    schedule = generate_schedule(loan, disbursements, payments, on)
    row = next_due_row(schedule)
    amount = round_amount(row.flow * fraction, loan.currency)
    breakdown = allocate_payment(amount, schedule, loan, on, disbursements)
    return payment_from_breakdown(loan, breakdown)


def pay_off(loan, disbursements, payments, on: date) -> Payment:
    """Pay the whole outstanding amount on the given date"""
    schedule = generate_schedule(loan, disbursements, payments, on)
    amount = payoff_amount(schedule, loan, on, disbursements)
    breakdown = allocate_payment(amount, schedule, loan, on, disbursements)
    return payment_from_breakdown(loan, breakdown)
