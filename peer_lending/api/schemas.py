"""
Pydantic schemas for API requests and responses
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from pydantic import BaseModel, Field

from ..config import get_config
from ..currency import Money, Currency
from ..loans import Loan, LoanStatus, Disbursement, DisbursementStatus, Payment
from ..reservations import LoanAllocation


def _start_of_day(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def parse_decimal(value: str, field: str = "amount") -> Decimal:
    """Parse a decimal string from a request, raising ValueError when it is not a finite number"""
    try:
        parsed = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid {field}: {value!r} is not a decimal number")
    if not parsed.is_finite():
        raise ValueError(f"Invalid {field}: {value!r} is not a finite number")
    return parsed


def parse_currency(code: Optional[str]) -> Currency:
    """Currency for a code, the configured default when code is None"""
    code = code or get_config().currency
    try:
        return Currency[code.upper()]
    except KeyError:
        supported = ", ".join(c.code for c in Currency)
        raise ValueError(f"Unsupported currency {code!r}, expected one of {supported}")


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: Optional[str] = Field(None, description="Currency code (COP, USD, etc.), the configured currency when omitted")

    def to_money(self) -> Money:
        return Money(parse_decimal(self.amount), parse_currency(self.currency))

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


class LoanModel(BaseModel):
    id: str
    borrower_id: str = "borrower"
    amount: MoneyModel
    monthly_interest_rate: Optional[str] = Field(None, description="Monthly rate as a fraction, e.g. 0.021")
    term_months: Optional[int] = None
    payment_day: Optional[int] = Field(None, ge=1, le=28)
    technology_fee: Optional[MoneyModel] = None
    status: str = LoanStatus.REPAYMENT_ACTIVE.value

    def to_loan(self) -> Loan:
        now = datetime.now(timezone.utc)
        return Loan(
            id=self.id,
            created_at=now,
            updated_at=now,
            borrower_id=self.borrower_id,
            amount=self.amount.to_money(),
            monthly_interest_rate=parse_decimal(self.monthly_interest_rate, "monthly_interest_rate") if self.monthly_interest_rate else None,
            term_months=self.term_months,
            payment_day=self.payment_day,
            technology_fee=self.technology_fee.to_money() if self.technology_fee else None,
            status=LoanStatus(self.status),
        )


class DisbursementModel(BaseModel):
    id: str
    investor_id: str
    amount: str
    disbursed_on: date
    status: str = DisbursementStatus.CONFIRMED.value

    def to_disbursement(self, loan: Loan) -> Disbursement:
        created = _start_of_day(self.disbursed_on)
        return Disbursement(
            id=self.id,
            created_at=created,
            updated_at=created,
            loan_id=loan.id,
            investor_id=self.investor_id,
            amount=Money(parse_decimal(self.amount, "amount"), loan.currency),
            status=DisbursementStatus(self.status),
        )


class PaymentModel(BaseModel):
    id: str
    payer_id: str = "borrower"
    payment_date: date
    amount: str
    capital: str = "0"
    interest: str = "0"
    technology_fee: str = "0"
    late_fee: str = "0"
    receipt_url: Optional[str] = None

    def to_payment(self, loan: Loan) -> Payment:
        created = _start_of_day(self.payment_date)
        currency = loan.currency
        return Payment(
            id=self.id,
            created_at=created,
            updated_at=created,
            loan_id=loan.id,
            payer_id=self.payer_id,
            payment_date=self.payment_date,
            amount=Money(parse_decimal(self.amount, "amount"), currency),
            capital=Money(parse_decimal(self.capital, "capital"), currency),
            interest=Money(parse_decimal(self.interest, "interest"), currency),
            technology_fee=Money(parse_decimal(self.technology_fee, "technology_fee"), currency),
            late_fee=Money(parse_decimal(self.late_fee, "late_fee"), currency),
            receipt_url=self.receipt_url,
        )


# Engine schemas
class LoanSnapshotRequest(BaseModel):
    loan: LoanModel
    disbursements: List[DisbursementModel] = []
    payments: List[PaymentModel] = []
    as_of: date

    def records(self):
        loan = self.loan.to_loan()
        return (
            loan,
            [d.to_disbursement(loan) for d in self.disbursements],
            [p.to_payment(loan) for p in self.payments],
        )


class BreakdownRequest(LoanSnapshotRequest):
    amount: str


# Loan schemas
class CreateLoanRequest(BaseModel):
    borrower_id: str
    amount: MoneyModel
    monthly_interest_rate: Optional[str] = None
    term_months: Optional[int] = None
    technology_fee: Optional[MoneyModel] = None
    purpose: str = ""


class StatusChangeRequest(BaseModel):
    status: str
    user_id: Optional[str] = None


class PaymentDayRequest(BaseModel):
    payment_day: int = Field(..., ge=1, le=28)


# Reservation schemas
class ReservationRequest(BaseModel):
    loan_id: str
    payer_id: str
    amount: MoneyModel


# Funding schemas
class AllocationModel(BaseModel):
    loan_id: str
    amount: MoneyModel

    def to_allocation(self) -> LoanAllocation:
        return LoanAllocation(self.loan_id, self.amount.to_money())


class CommitRepaymentRequest(BaseModel):
    paying_loan_id: str
    payer_id: str
    amount: MoneyModel
    allocations: Optional[List[AllocationModel]] = Field(
        None, description="Target loans; the funding queue is filled in order when omitted"
    )
    proof_urls: List[str] = []
    as_of: Optional[date] = None


class CommitInvestmentRequest(BaseModel):
    loan_id: str
    investor_id: str
    amount: MoneyModel
    proof_url: Optional[str] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None
