"""
Test suite for audit module

Tests the hash-chained audit trail, tamper detection and integrity
verification across ledger writes.
"""

import pytest
from datetime import datetime, timezone

from peer_lending import config as config_module
from peer_lending.config import reload_config
from peer_lending.storage import InMemoryStorage
from peer_lending.audit import AuditTrail, AuditEvent, AuditEventType


class CountingStorage(InMemoryStorage):
    """In-memory storage that counts full table scans"""

    def __init__(self):
        super().__init__()
        self.scans = 0

    def find(self, table, filters):
        self.scans += 1
        return super().find(table, filters)


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def make_event(self, **overrides):
        now = datetime(2025, 1, 10, tzinfo=timezone.utc)
        values = dict(
            id="AUDIT001",
            created_at=now,
            updated_at=now,
            event_type=AuditEventType.RESERVATION_CLAIMED,
            entity_type="reservation",
            entity_id="loan-1/payer-a",
            sequence=1,
            previous_hash="",
            current_hash="",
            metadata={"amount": {"amount": "100000.00", "currency": "COP"}, "expires_at": now},
            user_id="payer-a",
        )
        values.update(overrides)
        return AuditEvent(**values)

    def test_metadata_is_made_storable(self):
        event = self.make_event()
        assert event.metadata["expires_at"] == "2025-01-10T00:00:00+00:00"

    def test_hash_is_deterministic(self):
        first = self.make_event()
        second = self.make_event()
        assert first.calculate_hash() == second.calculate_hash()
        assert len(first.calculate_hash()) == 64

    def test_hash_covers_fields(self):
        base = self.make_event().calculate_hash()
        assert self.make_event(sequence=2).calculate_hash() != base
        assert self.make_event(user_id="payer-b").calculate_hash() != base
        assert self.make_event(previous_hash="abc").calculate_hash() != base

    def test_verify_hash(self):
        event = self.make_event()
        event.current_hash = event.calculate_hash()
        assert event.verify_hash()
        event.metadata["amount"] = {"amount": "1.00", "currency": "COP"}
        assert not event.verify_hash()

    def test_round_trip(self):
        event = self.make_event()
        event.current_hash = event.calculate_hash()
        restored = AuditEvent.from_dict(event.to_dict())
        assert restored.event_type == AuditEventType.RESERVATION_CLAIMED
        assert restored.verify_hash()


class TestAuditTrail:
    """Test chained logging and integrity checks"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)

    def log_three(self):
        return [
            self.audit.log_event(AuditEventType.LOAN_CREATED, "loan", "loan-1", {"amount": "1000000"}),
            self.audit.log_event(AuditEventType.LOAN_STATUS_CHANGED, "loan", "loan-1",
                                 {"from": "pending", "to": "pre-approved"}, user_id="admin"),
            self.audit.log_event(AuditEventType.INVESTMENT_COMMITTED, "disbursement", "d-1"),
        ]

    def test_events_are_chained(self):
        events = self.log_three()
        assert [e.sequence for e in events] == [1, 2, 3]
        assert events[0].previous_hash == ""
        assert events[1].previous_hash == events[0].current_hash
        assert events[2].previous_hash == events[1].current_hash
        assert self.audit.count_events() == 3

    def test_queries(self):
        self.log_three()
        loan_events = self.audit.get_events_for_entity("loan", "loan-1")
        assert [e.event_type for e in loan_events] == [
            AuditEventType.LOAN_CREATED, AuditEventType.LOAN_STATUS_CHANGED,
        ]
        assert len(self.audit.get_events_for_entity("loan", "loan-1", limit=1)) == 1
        assert len(self.audit.get_events_by_type(AuditEventType.INVESTMENT_COMMITTED)) == 1

    def test_clean_chain_verifies(self):
        self.log_three()
        result = self.audit.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 3
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_tampered_metadata_detected(self):
        events = self.log_three()
        data = self.storage.load("audit_events", events[1].id)
        data["metadata"]["to"] = "approved"
        self.storage.save("audit_events", events[1].id, data)

        result = self.audit.verify_integrity()
        assert not result["valid"]
        assert [e["event_id"] for e in result["hash_errors"]] == [events[1].id]

    def test_deleted_event_breaks_chain(self):
        events = self.log_three()
        self.storage.delete("audit_events", events[1].id)
        result = self.audit.verify_integrity()
        assert not result["valid"]
        assert result["chain_breaks"][0]["event_id"] == events[2].id

    def test_rolled_back_events_leave_no_gap(self):
        self.audit.log_event(AuditEventType.LOAN_CREATED, "loan", "loan-1")
        with pytest.raises(ValueError):
            with self.storage.atomic():
                self.audit.log_event(AuditEventType.LOAN_PUBLISHED, "loan", "loan-1")
                raise ValueError("abort")
        event = self.audit.log_event(AuditEventType.LOAN_PUBLISHED, "loan", "loan-1")
        assert event.sequence == 2
        assert self.audit.verify_integrity()["valid"]

    def test_appends_do_not_rescan_the_table(self):
        storage = CountingStorage()
        audit = AuditTrail(storage)
        for index in range(20):
            audit.log_event(AuditEventType.RESERVATION_CLAIMED, "reservation", f"loan-1/payer-{index}")
        assert storage.scans == 1
        assert audit.verify_integrity()["valid"]

    def test_two_trails_share_one_chain(self):
        other = AuditTrail(self.storage)
        self.audit.log_event(AuditEventType.LOAN_CREATED, "loan", "loan-1")
        other.log_event(AuditEventType.LOAN_PUBLISHED, "loan", "loan-1")
        event = self.audit.log_event(AuditEventType.INVESTMENT_COMMITTED, "disbursement", "d-1")
        assert event.sequence == 3
        assert self.audit.verify_integrity()["valid"]


class TestAuditSwitch:
    """Test the enable_audit_logging setting"""

    def setup_method(self):
        self.original = config_module.config

    def teardown_method(self):
        config_module.config = self.original

    def test_disabled_trail_writes_nothing(self, monkeypatch):
        monkeypatch.setenv("PEER_LENDING_ENABLE_AUDIT_LOGGING", "false")
        reload_config()
        audit = AuditTrail(InMemoryStorage())
        assert audit.log_event(AuditEventType.LOAN_CREATED, "loan", "loan-1") is None
        assert audit.count_events() == 0
