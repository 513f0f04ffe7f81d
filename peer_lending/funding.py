"""
Funding Ledger Module

Writes investments and reinvested repayments against loans. Every operation
reads and validates inside one storage transaction before writing, so a
failed validation leaves no partial state behind.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Any, Sequence

from .allocation import PaymentBreakdown
from .amortization import generate_schedule, repayment_status
from .audit import AuditTrail, AuditEventType
from .config import get_config
from .currency import Currency, Money, round_amount
from .logging_config import get_logger, log_action
from .loans import (
    Loan, LoanStatus, LoanManager, Disbursement, DisbursementStatus, Payment,
    FUNDABLE_STATUSES, HUNDRED, transition_status,
)
from .reservations import LoanAllocation, ReservationManager
from .storage import StorageInterface

PERCENT_PLACES = Decimal('0.000001')


class CapacityConflictError(ValueError):
    """A loan's capacity shrank between reservation and commit"""

    def __init__(self, loan_id: str, requested: Money, available: Money):
        self.loan_id = loan_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Loan {loan_id}: capacity changed, please retry with a smaller amount "
            f"(requested {requested.to_string()}, available {available.to_string()})"
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _percent_of(amount: Money, loan: Loan) -> Decimal:
    return (amount.amount / loan.amount.amount * HUNDRED).quantize(PERCENT_PLACES)


def prorate(amount: Decimal, parts: Sequence[Decimal], currency: Currency) -> List[Decimal]:
    """Split amount in proportion to parts; the last share absorbs rounding"""
    total = sum(parts, Decimal('0'))
    if not parts:
        return []
    if total == 0:
        return [Decimal('0')] * (len(parts) - 1) + [amount]
    shares = [round_amount(amount * part / total, currency) for part in parts[:-1]]
    shares.append(amount - sum(shares, Decimal('0')))
    return shares


def split_breakdown(breakdown: PaymentBreakdown, parts: Sequence[Decimal],
                    currency: Currency) -> List[PaymentBreakdown]:
    """One breakdown per part, components prorated, capital taking the residual"""
    interests = prorate(breakdown.interest, parts, currency)
    fees = prorate(breakdown.technology_fee, parts, currency)
    late_fees = prorate(breakdown.late_fee, parts, currency)
    return [
        PaymentBreakdown(
            capital=part - interest - fee - late_fee,
            interest=interest,
            technology_fee=fee,
            late_fee=late_fee,
            total=part,
            payment_date=breakdown.payment_date,
            period=breakdown.period,
        )
        for part, interest, fee, late_fee in zip(parts, interests, fees, late_fees)
    ]


class FundingLedger:
    """
    Commits, confirms, rejects and reverts funding against loans
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 reservations: Optional[ReservationManager] = None,
                 loan_manager: Optional[LoanManager] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.reservations = reservations or ReservationManager(storage, audit_trail)
        self.loans = loan_manager or LoanManager(storage, audit_trail)
        self.logger = get_logger("peer_lending.funding")

    def _validate_capacity(self, loan: Loan, amount: Money) -> None:
        tolerance = Decimal(get_config().capacity_tolerance)
        if loan.status not in FUNDABLE_STATUSES:
            raise CapacityConflictError(loan.id, amount, Money.zero(loan.currency))
        available = loan.uncommitted_amount
        if amount.amount > available.amount + tolerance:
            raise CapacityConflictError(loan.id, amount, available)

    def _commit_percentage(self, loan: Loan, amount: Money) -> None:
        loan.committed_percentage = min(HUNDRED, loan.committed_percentage + _percent_of(amount, loan))
        loan.touch()

    def _fund_percentage(self, loan: Loan, amount: Money) -> None:
        tolerance = Decimal(get_config().capacity_tolerance)
        loan.funded_percentage = min(HUNDRED, loan.funded_percentage + _percent_of(amount, loan))
        if loan.amount.amount - loan.funded_amount.amount <= tolerance:
            loan.funded_percentage = HUNDRED
        loan.committed_percentage = max(loan.committed_percentage, loan.funded_percentage)
        if loan.funded_percentage == HUNDRED and loan.status == LoanStatus.FUNDING_ACTIVE:
            transition_status(loan, LoanStatus.FUNDED)
        loan.touch()

    def _require_pending(self, disbursement_id: str) -> Disbursement:
        disbursement = self.loans.get_disbursement(disbursement_id)
        if not disbursement:
            raise ValueError(f"Disbursement {disbursement_id} not found")
        if disbursement.status != DisbursementStatus.PENDING_CONFIRMATION:
            raise ValueError(
                f"Disbursement {disbursement_id} is {disbursement.status.value}, not pending confirmation"
            )
        return disbursement

    def publish_loan(self, loan_id: str, as_of: Optional[datetime] = None,
                     user_id: Optional[str] = None) -> Loan:
        """Open an approved loan for funding, booking the platform's disbursement fee"""
        as_of = as_of or _utcnow()
        with self.storage.atomic():
            loan = self.loans.require_loan(loan_id)
            transition_status(loan, LoanStatus.FUNDING_ACTIVE)
            fee = loan.disbursement_fee
            if fee is not None and fee.is_positive():
                disbursement = Disbursement(
                    id=str(uuid.uuid4()),
                    created_at=as_of,
                    updated_at=as_of,
                    loan_id=loan.id,
                    investor_id=get_config().platform_investor_id,
                    amount=fee,
                    status=DisbursementStatus.CONFIRMED,
                    borrower_id=loan.borrower_id,
                    confirmed_at=as_of,
                )
                self.loans.save_disbursement(disbursement)
                self._commit_percentage(loan, fee)
                self._fund_percentage(loan, fee)
            self.loans.save_loan(loan)
            self.audit_trail.log_event(
                AuditEventType.LOAN_PUBLISHED, "loan", loan.id,
                {'disbursement_fee': fee.to_dict() if fee else None}, user_id=user_id,
            )
        return loan

    def commit_investment(self, loan_id: str, investor_id: str, amount: Money,
                          proof_url: Optional[str] = None,
                          as_of: Optional[datetime] = None) -> Disbursement:
        """
        Record a direct investment awaiting confirmation.

        Raises:
            CapacityConflictError: If the loan cannot take amount
        """
        as_of = as_of or _utcnow()
        if not amount.is_positive():
            raise ValueError("Investment amount must be positive")

        with self.storage.atomic():
            loan = self.loans.require_loan(loan_id)
            self._validate_capacity(loan, amount)

            disbursement = Disbursement(
                id=str(uuid.uuid4()),
                created_at=as_of,
                updated_at=as_of,
                loan_id=loan.id,
                investor_id=investor_id,
                amount=amount,
                borrower_id=loan.borrower_id,
                proof_url=proof_url,
            )
            self.loans.save_disbursement(disbursement)
            self._commit_percentage(loan, amount)
            self.loans.save_loan(loan)
            self.reservations.release(loan.id, investor_id)
            self.audit_trail.log_event(
                AuditEventType.INVESTMENT_COMMITTED, "disbursement", disbursement.id,
                {'loan_id': loan.id, 'amount': amount.to_dict()}, user_id=investor_id,
            )

        log_action(self.logger, "info", f"Investment of {amount.to_string()} committed",
                   user_id=investor_id, action="commit_investment", loan_id=loan_id)
        return disbursement

    def commit_repayment(self, paying_loan_id: str, payer_id: str, breakdown: PaymentBreakdown,
                         allocations: Sequence[LoanAllocation],
                         source_breakdown: Sequence[Dict[str, Any]],
                         proof_urls: Optional[Sequence[str]] = None,
                         as_of: Optional[datetime] = None) -> List[Disbursement]:
        """
        Reinvest a repayment into the loans named by allocations.

        All target loans are read and validated before anything is written;
        one pending disbursement is then written per loan, carrying its
        prorated share of the breakdown and of the per-investor sources.

        Raises:
            CapacityConflictError: If any target loan no longer has room
            ValueError: If the allocations do not cover the payment
        """
        as_of = as_of or _utcnow()
        tolerance = Decimal(get_config().capacity_tolerance)

        with self.storage.atomic():
            paying_loan = self.loans.require_loan(paying_loan_id)
            currency = paying_loan.currency

            per_loan: Dict[str, Money] = {}
            for allocation in allocations:
                if not allocation.amount.is_positive():
                    raise ValueError("Allocation amounts must be positive")
                previous = per_loan.get(allocation.loan_id)
                per_loan[allocation.loan_id] = previous + allocation.amount if previous else allocation.amount
            if not per_loan:
                raise ValueError("A repayment needs at least one target loan")

            allocated = sum((money.amount for money in per_loan.values()), Decimal('0'))
            if abs(allocated - breakdown.total) > tolerance:
                raise ValueError(
                    f"Allocations total {allocated} but the payment is {breakdown.total}"
                )

            targets = [self.loans.require_loan(loan_id) for loan_id in per_loan]
            for loan in targets:
                self._validate_capacity(loan, per_loan[loan.id])

            parts = [per_loan[loan.id].amount for loan in targets]
            breakdowns = split_breakdown(breakdown, parts, currency)
            source_amounts = [Decimal(entry['amount']) for entry in source_breakdown]
            # Each investor's share spread across the target loans
            per_source = [prorate(amount, parts, currency) for amount in source_amounts]

            urls = list(proof_urls or [])
            written = []
            for index, loan in enumerate(targets):
                sources = [
                    {'investor_id': entry['investor_id'], 'amount': str(per_source[i][index])}
                    for i, entry in enumerate(source_breakdown)
                    if per_source[i][index] > 0
                ]
                disbursement = Disbursement(
                    id=str(uuid.uuid4()),
                    created_at=as_of,
                    updated_at=as_of,
                    loan_id=loan.id,
                    investor_id=payer_id,
                    amount=per_loan[loan.id],
                    borrower_id=loan.borrower_id,
                    is_repayment=True,
                    paying_loan_id=paying_loan.id,
                    payment_breakdown=breakdowns[index].to_dict(),
                    source_breakdown=sources,
                    proof_url=urls[0] if urls else None,
                )
                self.loans.save_disbursement(disbursement)
                self._commit_percentage(loan, disbursement.amount)
                self.loans.save_loan(loan)
                written.append(disbursement)

            self.reservations.release_all(payer_id, list(per_loan))
            self.audit_trail.log_event(
                AuditEventType.REPAYMENT_COMMITTED, "loan", paying_loan.id,
                {'breakdown': breakdown.to_dict(),
                 'disbursements': [d.id for d in written],
                 'proof_urls': urls},
                user_id=payer_id,
            )

        log_action(self.logger, "info", f"Repayment of {breakdown.total} committed to {len(written)} loans",
                   user_id=payer_id, action="commit_repayment", loan_id=paying_loan_id)
        return written

    def confirm_investment(self, disbursement_id: str, as_of: Optional[datetime] = None,
                           user_id: Optional[str] = None) -> List[Disbursement]:
        """
        Confirm receipt of a pending disbursement.

        A direct investment becomes confirmed. A repayment entry records the
        payment on the paying loan and is replaced by one confirmed
        disbursement per source investor. Returns the confirmed disbursements.
        """
        as_of = as_of or _utcnow()
        with self.storage.atomic():
            pending = self._require_pending(disbursement_id)
            loan = self.loans.require_loan(pending.loan_id)

            if not pending.is_repayment:
                pending.status = DisbursementStatus.CONFIRMED
                pending.confirmed_at = as_of
                pending.touch()
                self.loans.save_disbursement(pending)
                confirmed = [pending]
                self.audit_trail.log_event(
                    AuditEventType.INVESTMENT_CONFIRMED, "disbursement", pending.id,
                    {'loan_id': loan.id, 'amount': pending.amount.to_dict()}, user_id=user_id,
                )
            else:
                self._record_payment(pending, as_of, user_id)
                confirmed = []
                for entry in pending.source_breakdown:
                    disbursement = Disbursement(
                        id=str(uuid.uuid4()),
                        created_at=pending.created_at,
                        updated_at=as_of,
                        loan_id=loan.id,
                        investor_id=entry['investor_id'],
                        amount=Money(Decimal(entry['amount']), loan.currency),
                        status=DisbursementStatus.CONFIRMED,
                        borrower_id=loan.borrower_id,
                        proof_url=pending.proof_url,
                        confirmed_at=as_of,
                    )
                    self.loans.save_disbursement(disbursement)
                    confirmed.append(disbursement)
                self.loans.delete_disbursement(pending.id)
                self.audit_trail.log_event(
                    AuditEventType.REPAYMENT_CONFIRMED, "disbursement", pending.id,
                    {'loan_id': loan.id, 'paying_loan_id': pending.paying_loan_id,
                     'confirmed': [d.id for d in confirmed]},
                    user_id=user_id,
                )

            self._fund_percentage(loan, pending.amount)
            self.loans.save_loan(loan)

        log_action(self.logger, "info", f"Disbursement {disbursement_id} confirmed",
                   user_id=user_id, action="confirm_investment", loan_id=loan.id)
        return confirmed

    def _record_payment(self, pending: Disbursement, as_of: datetime,
                        user_id: Optional[str]) -> Payment:
        """Book the repayment on the paying loan and refresh its status"""
        paying_loan = self.loans.require_loan(pending.paying_loan_id)
        breakdown = PaymentBreakdown.from_dict(pending.payment_breakdown)
        currency = paying_loan.currency
        payment = Payment(
            id=str(uuid.uuid4()),
            created_at=as_of,
            updated_at=as_of,
            loan_id=paying_loan.id,
            payer_id=pending.investor_id,
            payment_date=breakdown.payment_date,
            amount=Money(breakdown.total, currency),
            capital=Money(breakdown.capital, currency),
            interest=Money(breakdown.interest, currency),
            technology_fee=Money(breakdown.technology_fee, currency),
            late_fee=Money(breakdown.late_fee, currency),
            receipt_url=pending.proof_url,
        )
        self.loans.save_payment(payment)

        schedule = generate_schedule(
            paying_loan,
            self.loans.get_disbursements(paying_loan.id),
            self.loans.get_payments(paying_loan.id),
            as_of.date(),
        )
        new_status = repayment_status(paying_loan, schedule)
        if new_status == LoanStatus.REPAYMENT_OVERDUE:
            # A payment clears the overdue flag until the next status refresh
            new_status = LoanStatus.REPAYMENT_ACTIVE
        self._apply_repayment_status(paying_loan, new_status, user_id)
        self.loans.save_loan(paying_loan)
        self.audit_trail.log_event(
            AuditEventType.PAYMENT_RECORDED, "payment", payment.id,
            {'loan_id': paying_loan.id, 'breakdown': breakdown.to_dict()}, user_id=user_id,
        )
        return payment

    def reject_investment(self, disbursement_id: str, reason: Optional[str] = None,
                          user_id: Optional[str] = None) -> Disbursement:
        """Mark a pending disbursement rejected and give its capacity back"""
        with self.storage.atomic():
            disbursement = self._require_pending(disbursement_id)
            loan = self.loans.require_loan(disbursement.loan_id)

            disbursement.status = DisbursementStatus.REJECTED_BY_ADMIN
            disbursement.dispute_reason = reason
            disbursement.touch()
            self.loans.save_disbursement(disbursement)

            self._release_percentage(loan, disbursement.amount)
            self.loans.save_loan(loan)
            self.audit_trail.log_event(
                AuditEventType.INVESTMENT_REJECTED, "disbursement", disbursement.id,
                {'loan_id': loan.id, 'reason': reason}, user_id=user_id,
            )
        return disbursement

    def revert_repayment(self, disbursement_id: str, user_id: Optional[str] = None) -> Loan:
        """Delete a pending repayment entry and restore the loan's capacity"""
        with self.storage.atomic():
            disbursement = self._require_pending(disbursement_id)
            if not disbursement.is_repayment:
                raise ValueError(f"Disbursement {disbursement_id} is not a repayment")
            loan = self.loans.require_loan(disbursement.loan_id)

            self.loans.delete_disbursement(disbursement.id)
            self._release_percentage(loan, disbursement.amount)
            self.loans.save_loan(loan)
            self.audit_trail.log_event(
                AuditEventType.REPAYMENT_REVERTED, "disbursement", disbursement.id,
                {'loan_id': loan.id, 'paying_loan_id': disbursement.paying_loan_id},
                user_id=user_id,
            )
        return loan

    def _release_percentage(self, loan: Loan, amount: Money) -> None:
        loan.committed_percentage = max(loan.funded_percentage,
                                        loan.committed_percentage - _percent_of(amount, loan))
        loan.touch()

    def _apply_repayment_status(self, loan: Loan, new_status: LoanStatus,
                                user_id: Optional[str]) -> None:
        if new_status == loan.status or not loan.can_transition_to(new_status):
            return
        previous = transition_status(loan, new_status)
        self.audit_trail.log_event(
            AuditEventType.LOAN_STATUS_CHANGED, "loan", loan.id,
            {'from': previous.value, 'to': new_status.value}, user_id=user_id,
        )

    def refresh_repayment_status(self, loan_id: str, as_of: datetime,
                                 user_id: Optional[str] = None) -> Loan:
        """Re-derive active, overdue or completed from the loan's schedule"""
        with self.storage.atomic():
            loan = self.loans.require_loan(loan_id)
            schedule = generate_schedule(
                loan,
                self.loans.get_disbursements(loan.id),
                self.loans.get_payments(loan.id),
                as_of.date(),
            )
            self._apply_repayment_status(loan, repayment_status(loan, schedule), user_id)
            self.loans.save_loan(loan)
        return loan
