"""
Audit Trail Module

Hash-chained audit log with SHA-256 for tamper detection. Every loan status
change, reservation and funding write is recorded here.
"""

import hashlib
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Any

from .config import get_config
from .storage import StorageInterface, StorageRecord, to_storable, parse_datetime


class AuditEventType(Enum):
    """Types of audit events"""
    # Loan lifecycle
    LOAN_CREATED = "loan_created"
    LOAN_STATUS_CHANGED = "loan_status_changed"
    LOAN_PUBLISHED = "loan_published"
    PAYMENT_DAY_SET = "payment_day_set"

    # Reservations
    RESERVATION_CLAIMED = "reservation_claimed"
    RESERVATION_RELEASED = "reservation_released"
    RESERVATION_EXPIRED = "reservation_expired"

    # Funding ledger
    INVESTMENT_COMMITTED = "investment_committed"
    INVESTMENT_CONFIRMED = "investment_confirmed"
    INVESTMENT_REJECTED = "investment_rejected"
    REPAYMENT_COMMITTED = "repayment_committed"
    REPAYMENT_CONFIRMED = "repayment_confirmed"
    REPAYMENT_REVERTED = "repayment_reverted"
    PAYMENT_RECORDED = "payment_recorded"

    # System
    AUDIT_INTEGRITY_CHECK = "audit_integrity_check"


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    entity_type: str  # loan, disbursement, reservation, payment
    entity_id: str
    sequence: int  # Position in the chain
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None  # Payer, investor or admin who initiated the action

    def __post_init__(self):
        self.metadata = to_storable(self.metadata or {})

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event.
        Hash includes all fields except current_hash.
        """
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'sequence': self.sequence,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata,
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['created_at'] = parse_datetime(data['created_at'])
        data['updated_at'] = parse_datetime(data['updated_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail.

    Appends run inside storage.atomic(), so the chain head is read and
    extended under the same lock that guards ledger writes.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self._head: Optional[AuditEvent] = None

    def _load_events(self, filters: Optional[Dict[str, Any]] = None) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.find(self.table_name, filters or {})]
        events.sort(key=lambda e: e.sequence)
        return events

    def _chain_head(self) -> Optional[AuditEvent]:
        """Last event of the chain, from the cache while storage still ends with it"""
        head = self._head
        if head is not None and self.storage.count(self.table_name) == head.sequence:
            stored = self.storage.load(self.table_name, head.id)
            if stored is not None and stored.get('current_hash') == head.current_hash:
                return head
        # Stale after a rollback or an append through another trail
        events = self._load_events()
        self._head = events[-1] if events else None
        return self._head

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> Optional[AuditEvent]:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: ID of the actor

        Returns:
            Created AuditEvent, None when audit logging is disabled
        """
        if not get_config().enable_audit_logging:
            return None

        with self.storage.atomic():
            head = self._chain_head()
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                sequence=head.sequence + 1 if head else 1,
                previous_hash=head.current_hash if head else "",
                current_hash="",
                metadata=metadata or {},
                user_id=user_id,
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
            self._head = event
            return event

    def get_events_for_entity(self, entity_type: str, entity_id: str,
                              limit: Optional[int] = None) -> List[AuditEvent]:
        """Audit events for one entity, oldest first"""
        events = self._load_events({'entity_type': entity_type, 'entity_id': entity_id})
        if limit:
            events = events[-limit:]
        return events

    def get_events_by_type(self, event_type: AuditEventType,
                           limit: Optional[int] = None) -> List[AuditEvent]:
        events = self._load_events({'event_type': event_type.value})
        if limit:
            events = events[-limit:]
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': [],
        }

        events = self._load_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash,
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash,
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        return self.storage.count(self.table_name)
