"""
Loans Module

Loan, disbursement and payment records, the loan lifecycle state machine,
and LoanManager for persisting them through the storage layer.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Any

from .audit import AuditTrail, AuditEventType
from .config import get_config
from .currency import Money, Currency
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord, parse_datetime


HUNDRED = Decimal('100')


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING = "pending"
    PRE_APPROVED = "pre-approved"
    PENDING_REVIEW = "pending-review"
    APPROVED = "approved"
    FUNDING_ACTIVE = "funding-active"
    FUNDED = "funded"
    REPAYMENT_ACTIVE = "repayment-active"
    REPAYMENT_OVERDUE = "repayment-overdue"
    COMPLETED = "completed"
    REJECTED = "rejected"
    REJECTED_DOCS = "rejected-docs"
    WITHDRAWN = "withdrawn"


class DisbursementStatus(Enum):
    """Disbursement confirmation states"""
    PENDING_CONFIRMATION = "pending-confirmation"
    CONFIRMED = "confirmed"
    DISPUTED = "disputed"
    REJECTED_BY_ADMIN = "rejected-by-admin"


ALLOWED_TRANSITIONS = {
    LoanStatus.PENDING: {LoanStatus.PRE_APPROVED, LoanStatus.REJECTED,
                         LoanStatus.REJECTED_DOCS, LoanStatus.WITHDRAWN},
    LoanStatus.PRE_APPROVED: {LoanStatus.PENDING_REVIEW, LoanStatus.APPROVED, LoanStatus.REJECTED,
                              LoanStatus.REJECTED_DOCS, LoanStatus.WITHDRAWN},
    LoanStatus.PENDING_REVIEW: {LoanStatus.APPROVED, LoanStatus.REJECTED,
                                LoanStatus.REJECTED_DOCS, LoanStatus.WITHDRAWN},
    LoanStatus.APPROVED: {LoanStatus.FUNDING_ACTIVE, LoanStatus.REJECTED, LoanStatus.WITHDRAWN},
    LoanStatus.FUNDING_ACTIVE: {LoanStatus.FUNDED, LoanStatus.WITHDRAWN},
    LoanStatus.FUNDED: {LoanStatus.REPAYMENT_ACTIVE},
    LoanStatus.REPAYMENT_ACTIVE: {LoanStatus.REPAYMENT_OVERDUE, LoanStatus.COMPLETED},
    LoanStatus.REPAYMENT_OVERDUE: {LoanStatus.REPAYMENT_ACTIVE, LoanStatus.COMPLETED},
    LoanStatus.COMPLETED: set(),
    LoanStatus.REJECTED: set(),
    LoanStatus.REJECTED_DOCS: set(),
    LoanStatus.WITHDRAWN: set(),
}

# Statuses in which the schedule reflects a real repayment history
REPAYMENT_STATUSES = frozenset({
    LoanStatus.REPAYMENT_ACTIVE, LoanStatus.REPAYMENT_OVERDUE, LoanStatus.COMPLETED,
})

# Statuses in which a loan may receive repayment-sourced funding
FUNDABLE_STATUSES = frozenset({LoanStatus.FUNDING_ACTIVE})


def _money_or_none(data: Optional[dict]) -> Optional[Money]:
    return Money.from_dict(data) if data else None


@dataclass
class Loan(StorageRecord):
    """A borrower's loan request and its funding state"""
    borrower_id: str
    amount: Money
    monthly_interest_rate: Optional[Decimal] = None  # Fraction, 0.021 for 2.1%
    term_months: Optional[int] = None
    payment_day: Optional[int] = None
    technology_fee: Optional[Money] = None  # Monthly
    status: LoanStatus = LoanStatus.PENDING
    funded_percentage: Decimal = Decimal('0')
    committed_percentage: Decimal = Decimal('0')
    funding_order: Optional[int] = None
    disbursement_fee: Optional[Money] = None  # Charged by the platform on publish
    purpose: str = ""

    def __post_init__(self):
        if not self.amount.is_positive():
            raise ValueError("Loan amount must be positive")
        if self.monthly_interest_rate is not None and self.monthly_interest_rate < 0:
            raise ValueError("Interest rate cannot be negative")
        if self.term_months is not None and self.term_months <= 0:
            raise ValueError("Term must be positive")
        if self.payment_day is not None and not 1 <= self.payment_day <= 28:
            raise ValueError("Payment day must be between 1 and 28")
        if not Decimal('0') <= self.funded_percentage <= self.committed_percentage <= HUNDRED:
            raise ValueError("Funding percentages must satisfy 0 <= funded <= committed <= 100")
        if self.technology_fee is None:
            self.technology_fee = Money(Decimal(get_config().default_technology_fee), self.amount.currency)

    @property
    def currency(self) -> Currency:
        return self.amount.currency

    @property
    def committed_amount(self) -> Money:
        return self.amount * (self.committed_percentage / HUNDRED)

    @property
    def funded_amount(self) -> Money:
        return self.amount * (self.funded_percentage / HUNDRED)

    @property
    def uncommitted_amount(self) -> Money:
        """Principal not yet pledged by any pending or confirmed disbursement"""
        return self.amount - self.committed_amount

    @property
    def is_projection(self) -> bool:
        return self.status not in REPAYMENT_STATUSES

    def can_transition_to(self, new_status: LoanStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            borrower_id=data['borrower_id'],
            amount=Money.from_dict(data['amount']),
            monthly_interest_rate=Decimal(data['monthly_interest_rate']) if data.get('monthly_interest_rate') is not None else None,
            term_months=data.get('term_months'),
            payment_day=data.get('payment_day'),
            technology_fee=_money_or_none(data.get('technology_fee')),
            status=LoanStatus(data['status']),
            funded_percentage=Decimal(data['funded_percentage']),
            committed_percentage=Decimal(data['committed_percentage']),
            funding_order=data.get('funding_order'),
            disbursement_fee=_money_or_none(data.get('disbursement_fee')),
            purpose=data.get('purpose', ''),
        )


@dataclass
class Disbursement(StorageRecord):
    """
    Money moved into a loan by an investor, by the platform (fee) or by a
    repaying borrower. created_at is the disbursement instant.
    """
    loan_id: str
    investor_id: str
    amount: Money
    status: DisbursementStatus = DisbursementStatus.PENDING_CONFIRMATION
    borrower_id: Optional[str] = None
    is_repayment: bool = False
    paying_loan_id: Optional[str] = None
    payment_breakdown: Optional[Dict[str, Any]] = None
    source_breakdown: List[Dict[str, Any]] = field(default_factory=list)
    proof_url: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    dispute_reason: Optional[str] = None

    @property
    def disbursed_on(self) -> date:
        return self.created_at.date()

    @property
    def is_confirmed(self) -> bool:
        return self.status == DisbursementStatus.CONFIRMED

    @property
    def is_platform_fee(self) -> bool:
        return self.investor_id == get_config().platform_investor_id

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Disbursement':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            loan_id=data['loan_id'],
            investor_id=data['investor_id'],
            amount=Money.from_dict(data['amount']),
            status=DisbursementStatus(data['status']),
            borrower_id=data.get('borrower_id'),
            is_repayment=data.get('is_repayment', False),
            paying_loan_id=data.get('paying_loan_id'),
            payment_breakdown=data.get('payment_breakdown'),
            source_breakdown=data.get('source_breakdown') or [],
            proof_url=data.get('proof_url'),
            confirmed_at=parse_datetime(data.get('confirmed_at')),
            dispute_reason=data.get('dispute_reason'),
        )


@dataclass
class Payment(StorageRecord):
    """A borrower payment with its component split"""
    loan_id: str
    payer_id: str
    payment_date: date
    amount: Money
    capital: Optional[Money] = None
    interest: Optional[Money] = None
    technology_fee: Optional[Money] = None
    late_fee: Optional[Money] = None
    receipt_url: Optional[str] = None

    def __post_init__(self):
        zero = Money.zero(self.amount.currency)
        for name in ('capital', 'interest', 'technology_fee', 'late_fee'):
            if getattr(self, name) is None:
                setattr(self, name, zero)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Payment':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            loan_id=data['loan_id'],
            payer_id=data['payer_id'],
            payment_date=date.fromisoformat(data['payment_date']),
            amount=Money.from_dict(data['amount']),
            capital=_money_or_none(data.get('capital')),
            interest=_money_or_none(data.get('interest')),
            technology_fee=_money_or_none(data.get('technology_fee')),
            late_fee=_money_or_none(data.get('late_fee')),
            receipt_url=data.get('receipt_url'),
        )


def transition_status(loan: Loan, new_status: LoanStatus) -> LoanStatus:
    """
    Move a loan to new_status, returning the previous status.

    Raises:
        ValueError: If the transition is not allowed
    """
    if new_status == loan.status:
        return loan.status
    if not loan.can_transition_to(new_status):
        raise ValueError(f"Invalid status transition: {loan.status.value} -> {new_status.value}")
    previous = loan.status
    loan.status = new_status
    loan.touch()
    return previous


class LoanManager:
    """
    Persists loans, disbursements and payments and drives status changes
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.logger = get_logger("peer_lending.loans")

        self.loans_table = "loans"
        self.disbursements_table = "disbursements"
        self.payments_table = "payments"

    def create_loan(
        self,
        borrower_id: str,
        amount: Money,
        monthly_interest_rate: Optional[Decimal] = None,
        term_months: Optional[int] = None,
        technology_fee: Optional[Money] = None,
        purpose: str = "",
    ) -> Loan:
        """Create a loan request in the pending state"""
        now = datetime.now(timezone.utc)
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            borrower_id=borrower_id,
            amount=amount,
            monthly_interest_rate=monthly_interest_rate,
            term_months=term_months,
            technology_fee=technology_fee,
            purpose=purpose,
        )
        with self.storage.atomic():
            self.save_loan(loan)
            self.audit_trail.log_event(
                AuditEventType.LOAN_CREATED, "loan", loan.id,
                {'borrower_id': borrower_id, 'amount': amount.to_dict()},
                user_id=borrower_id,
            )
        return loan

    def change_status(self, loan_id: str, new_status: LoanStatus,
                      user_id: Optional[str] = None) -> Loan:
        """Apply a status transition and record it in the audit trail"""
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            previous = transition_status(loan, new_status)
            if previous == new_status:
                return loan
            self.save_loan(loan)
            self.audit_trail.log_event(
                AuditEventType.LOAN_STATUS_CHANGED, "loan", loan.id,
                {'from': previous.value, 'to': new_status.value},
                user_id=user_id,
            )
        log_action(self.logger, "info", f"Loan {loan_id} moved to {new_status.value}",
                   user_id=user_id, action="change_status", loan_id=loan_id)
        return loan

    def set_payment_day(self, loan_id: str, payment_day: int,
                        user_id: Optional[str] = None) -> Loan:
        """Record the borrower's chosen payment day and start repayment"""
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            if loan.status != LoanStatus.FUNDED:
                raise ValueError(f"Loan {loan_id} must be funded before choosing a payment day")
            if not 1 <= payment_day <= 28:
                raise ValueError("Payment day must be between 1 and 28")
            loan.payment_day = payment_day
            transition_status(loan, LoanStatus.REPAYMENT_ACTIVE)
            self.save_loan(loan)
            self.audit_trail.log_event(
                AuditEventType.PAYMENT_DAY_SET, "loan", loan.id,
                {'payment_day': payment_day}, user_id=user_id,
            )
        return loan

    def save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.loans_table, loan_id)
        return Loan.from_dict(data) if data else None

    def require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan:
            raise ValueError(f"Loan {loan_id} not found")
        return loan

    def get_loans_by_status(self, status: LoanStatus) -> List[Loan]:
        loans = [Loan.from_dict(d) for d in self.storage.find(self.loans_table, {'status': status.value})]
        return sorted(loans, key=lambda l: (l.funding_order is None, l.funding_order or 0, l.created_at))

    def funding_queue(self) -> List[Loan]:
        """Loans accepting funding, ordered by funding_order"""
        return self.get_loans_by_status(LoanStatus.FUNDING_ACTIVE)

    def save_disbursement(self, disbursement: Disbursement) -> None:
        self.storage.save(self.disbursements_table, disbursement.id, disbursement.to_dict())

    def get_disbursement(self, disbursement_id: str) -> Optional[Disbursement]:
        data = self.storage.load(self.disbursements_table, disbursement_id)
        return Disbursement.from_dict(data) if data else None

    def delete_disbursement(self, disbursement_id: str) -> bool:
        return self.storage.delete(self.disbursements_table, disbursement_id)

    def get_disbursements(self, loan_id: str,
                          status: Optional[DisbursementStatus] = None) -> List[Disbursement]:
        filters = {'loan_id': loan_id}
        if status:
            filters['status'] = status.value
        items = [Disbursement.from_dict(d) for d in self.storage.find(self.disbursements_table, filters)]
        return sorted(items, key=lambda d: (d.created_at, d.id))

    def get_pending_disbursements(self) -> List[Disbursement]:
        items = self.storage.find(self.disbursements_table,
                                  {'status': DisbursementStatus.PENDING_CONFIRMATION.value})
        return sorted((Disbursement.from_dict(d) for d in items), key=lambda d: (d.created_at, d.id))

    def save_payment(self, payment: Payment) -> None:
        self.storage.save(self.payments_table, payment.id, payment.to_dict())

    def get_payments(self, loan_id: str) -> List[Payment]:
        items = [Payment.from_dict(d) for d in self.storage.find(self.payments_table, {'loan_id': loan_id})]
        return sorted(items, key=lambda p: (p.payment_date, p.created_at))
