"""
Reservations Module

Short-lived holds on loan capacity while a payer prepares a repayment that
will be reinvested into other loans. Holds are advisory: the funding ledger
re-validates capacity when the repayment is committed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Any, Sequence

from .audit import AuditTrail, AuditEventType
from .config import get_config
from .currency import Money
from .logging_config import get_logger, log_action
from .loans import Loan
from .storage import StorageInterface, StorageRecord, parse_datetime


class InsufficientCapacityError(ValueError):
    """Requested reservation exceeds the loan's available capacity"""

    def __init__(self, loan_id: str, requested: Money, available: Money):
        self.loan_id = loan_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Loan {loan_id} has {available.to_string()} available, "
            f"cannot reserve {requested.to_string()}"
        )


def reservation_key(loan_id: str, payer_id: str) -> str:
    return f"{loan_id}/{payer_id}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Reservation(StorageRecord):
    loan_id: str
    payer_id: str
    amount: Money
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Reservation':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            loan_id=data['loan_id'],
            payer_id=data['payer_id'],
            amount=Money.from_dict(data['amount']),
            expires_at=parse_datetime(data['expires_at']),
        )


@dataclass(frozen=True)
class LoanAllocation:
    loan_id: str
    amount: Money


@dataclass
class RedistributionPlan:
    allocations: List[LoanAllocation] = field(default_factory=list)
    undistributed: Optional[Money] = None

    @property
    def allocated(self) -> Optional[Money]:
        if not self.allocations:
            return None
        total = self.allocations[0].amount
        for allocation in self.allocations[1:]:
            total = total + allocation.amount
        return total


def available_capacity(loan: Loan, reservations: Sequence[Reservation], payer_id: str,
                       now: Optional[datetime] = None) -> Money:
    """
    Uncommitted principal minus what other payers hold on the loan.
    The payer's own hold does not reduce their capacity.
    """
    now = now or _utcnow()
    held = Money.zero(loan.currency)
    for reservation in reservations:
        if reservation.loan_id != loan.id or reservation.payer_id == payer_id:
            continue
        if reservation.is_expired(now):
            continue
        held = held + reservation.amount
    capacity = loan.uncommitted_amount - held
    return capacity if capacity.is_positive() else Money.zero(loan.currency)


def redistribute_payment(total: Money, queue: Sequence[Loan], reservations: Sequence[Reservation],
                         payer_id: str, now: Optional[datetime] = None,
                         exclude_loan_id: Optional[str] = None) -> RedistributionPlan:
    """Fill the funding queue in order until total is exhausted"""
    plan = RedistributionPlan(undistributed=total)
    remaining = total
    for loan in queue:
        if not remaining.is_positive():
            break
        if loan.id == exclude_loan_id:
            continue
        capacity = available_capacity(loan, reservations, payer_id, now)
        if not capacity.is_positive():
            continue
        amount = min(remaining, capacity)
        plan.allocations.append(LoanAllocation(loan.id, amount))
        remaining = remaining - amount
    plan.undistributed = remaining
    return plan


class ReservationManager:
    """
    Claims and releases capacity holds. Claims run inside storage.atomic(),
    which serializes them against each other and against ledger commits.
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 ttl_seconds: Optional[int] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None
                             else get_config().reservation_ttl_seconds)
        self.logger = get_logger("peer_lending.reservations")
        self.table = "loan_reservations"

    def _sweep(self, records: List[Dict[str, Any]], now: datetime) -> List[Reservation]:
        """Delete expired records, returning the live ones"""
        live = []
        for data in records:
            reservation = Reservation.from_dict(data)
            if reservation.is_expired(now):
                self.storage.delete(self.table, reservation.id)
                self.audit_trail.log_event(
                    AuditEventType.RESERVATION_EXPIRED, "reservation", reservation.id,
                    {'amount': reservation.amount.to_dict()}, user_id=reservation.payer_id,
                )
            else:
                live.append(reservation)
        return live

    def active_reservations(self, loan_id: str, now: Optional[datetime] = None) -> List[Reservation]:
        now = now or _utcnow()
        with self.storage.atomic():
            return self._sweep(self.storage.find(self.table, {'loan_id': loan_id}), now)

    def payer_reservations(self, payer_id: str, now: Optional[datetime] = None) -> List[Reservation]:
        now = now or _utcnow()
        with self.storage.atomic():
            return self._sweep(self.storage.find(self.table, {'payer_id': payer_id}), now)

    def claim(self, loan: Loan, payer_id: str, amount: Money,
              now: Optional[datetime] = None) -> Reservation:
        """
        Hold amount of loan's capacity for payer_id, replacing any previous
        hold by the same payer.

        Raises:
            InsufficientCapacityError: If other payers' holds and committed
                funding leave less than amount
        """
        now = now or _utcnow()
        if not amount.is_positive():
            raise ValueError("Reservation amount must be positive")
        tolerance = Decimal(get_config().capacity_tolerance)

        with self.storage.atomic():
            live = self._sweep(self.storage.find(self.table, {'loan_id': loan.id}), now)
            capacity = available_capacity(loan, live, payer_id, now)
            if amount.amount > capacity.amount + tolerance:
                raise InsufficientCapacityError(loan.id, amount, capacity)

            key = reservation_key(loan.id, payer_id)
            reservation = Reservation(
                id=key,
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                payer_id=payer_id,
                amount=amount,
                expires_at=now + self.ttl,
            )
            self.storage.save(self.table, key, reservation.to_dict())
            self.audit_trail.log_event(
                AuditEventType.RESERVATION_CLAIMED, "reservation", key,
                {'loan_id': loan.id, 'amount': amount.to_dict(),
                 'expires_at': reservation.expires_at},
                user_id=payer_id,
            )

        log_action(self.logger, "info", f"Reserved {amount.to_string()}",
                   user_id=payer_id, action="claim", loan_id=loan.id)
        return reservation

    def claim_plan(self, allocations: Sequence[LoanAllocation], loans: Dict[str, Loan],
                   payer_id: str, now: Optional[datetime] = None) -> List[Reservation]:
        """Claim every allocation or none of them"""
        now = now or _utcnow()
        with self.storage.atomic():
            return [
                self.claim(loans[allocation.loan_id], payer_id, allocation.amount, now)
                for allocation in allocations
            ]

    def release(self, loan_id: str, payer_id: str) -> bool:
        key = reservation_key(loan_id, payer_id)
        with self.storage.atomic():
            removed = self.storage.delete(self.table, key)
            if removed:
                self.audit_trail.log_event(
                    AuditEventType.RESERVATION_RELEASED, "reservation", key,
                    {'loan_id': loan_id}, user_id=payer_id,
                )
        return removed

    def release_all(self, payer_id: str, loan_ids: Optional[Sequence[str]] = None) -> int:
        """Release the payer's holds, restricted to loan_ids when given"""
        with self.storage.atomic():
            if loan_ids is None:
                loan_ids = [data['loan_id'] for data in self.storage.find(self.table, {'payer_id': payer_id})]
            return sum(1 for loan_id in loan_ids if self.release(loan_id, payer_id))
