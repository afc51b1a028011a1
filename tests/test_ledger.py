"""
Tests for the audit ledger hash chain.

Validates:
- Append-only semantics
- SHA-256 hash chain integrity
- Chain verification
- Tamper detection
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from battery_governance.ledger.audit import run_audit
from battery_governance.ledger.models import AuditEntryDB
from battery_governance.ledger.service import (
    GENESIS_HASH,
    LedgerIntegrityError,
    LedgerService,
)


class TestHashComputation:
    """Test the entry hash function."""

    def _hash(self, **overrides):
        fields = {
            "entry_id": uuid4(),
            "sequence_number": 1,
            "previous_hash": GENESIS_HASH,
            "timestamp": datetime(2025, 3, 27, 12, 0, tzinfo=timezone.utc),
            "entry_type": "vote_cast",
            "actor": "oem-a",
            "content": {"proposal_id": 0},
        }
        fields.update(overrides)
        return LedgerService._compute_hash(**fields)

    def test_deterministic(self):
        entry_id = uuid4()
        assert self._hash(entry_id=entry_id) == self._hash(entry_id=entry_id)

    def test_changes_with_content(self):
        entry_id = uuid4()
        h1 = self._hash(entry_id=entry_id, content={"proposal_id": 0})
        h2 = self._hash(entry_id=entry_id, content={"proposal_id": 1})
        assert h1 != h2, "Different content should produce different hash"

    def test_format(self):
        h = self._hash()
        assert len(h) == 64, "SHA-256 hex digest should be 64 chars"
        assert all(c in "0123456789abcdef" for c in h), "Hash should be lowercase hex"

    def test_naive_timestamp_treated_as_utc(self):
        entry_id = uuid4()
        aware = self._hash(entry_id=entry_id)
        naive = self._hash(entry_id=entry_id, timestamp=datetime(2025, 3, 27, 12, 0))
        assert aware == naive


class TestLedgerService:
    """Test the SQLAlchemy-backed append-only chain."""

    def setup_method(self):
        self.service = LedgerService("sqlite://")
        self.service.initialize()

    def test_genesis(self):
        genesis = self.service.get_by_sequence(0)
        assert genesis.entry_type == "genesis"
        assert genesis.previous_hash == GENESIS_HASH
        assert self.service.get_entry_count() == 1

    def test_initialize_is_idempotent(self):
        self.service.initialize()
        assert self.service.get_entry_count() == 1

    def test_append_links_to_previous(self):
        first = self.service.append("role_granted", "admin", {"role": "governance"})
        second = self.service.append("proposal_created", "oem-a", {"proposal_id": 0})

        assert first.sequence_number == 1
        assert second.sequence_number == 2
        assert first.previous_hash == self.service.get_by_sequence(0).entry_hash
        assert second.previous_hash == first.entry_hash

    def test_verify_chain(self):
        for i in range(3):
            self.service.append("vote_cast", f"oem-{i}", {"proposal_id": 0})
        is_valid, verified, message = self.service.verify_chain()
        assert is_valid, message
        assert verified == 4

    def test_tamper_detection(self):
        self.service.append("vote_cast", "oem-a", {"proposal_id": 0})
        self.service.append("vote_cast", "oem-b", {"proposal_id": 0})

        with self.service.SessionLocal() as session:
            entry = session.query(AuditEntryDB).filter_by(sequence_number=1).one()
            entry.content = {"proposal_id": 99}
            session.commit()

        is_valid, failed_at, message = self.service.verify_chain()
        assert not is_valid
        assert failed_at == 1
        assert "altered" in message

    def test_broken_link_detection(self):
        self.service.append("vote_cast", "oem-a", {"proposal_id": 0})
        with self.service.SessionLocal() as session:
            entry = session.query(AuditEntryDB).filter_by(sequence_number=1).one()
            entry.previous_hash = "f" * 64
            session.commit()

        is_valid, failed_at, message = self.service.verify_chain()
        assert not is_valid
        assert failed_at == 1
        assert "does not link" in message

    def test_queries(self):
        self.service.append("vote_cast", "oem-a", {"proposal_id": 0})
        self.service.append("vote_cast", "oem-b", {"proposal_id": 0})
        self.service.append("proposal_executed", "oem-b", {"proposal_id": 0})

        votes = self.service.get_entries_by_type("vote_cast")
        assert [e.actor for e in votes] == ["oem-b", "oem-a"]
        assert len(self.service.get_entries_by_actor("oem-b")) == 2
        assert self.service.get_latest_entries(limit=1)[0].entry_type == "proposal_executed"

    def test_append_without_genesis(self):
        service = LedgerService("sqlite://")
        service.initialize()
        with service.SessionLocal() as session:
            session.query(AuditEntryDB).delete()
            session.commit()
        with pytest.raises(LedgerIntegrityError):
            service.append("vote_cast", "oem-a", {})


class TestAuditTool:
    """Test the integrity audit entrypoint."""

    def test_run_audit_valid(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'audit.db'}"
        service = LedgerService(url)
        service.initialize()
        service.append("proposal_created", "oem-a", {"proposal_id": 0})

        assert run_audit(url, verbose=True)

    def test_run_audit_detects_tampering(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'audit.db'}"
        service = LedgerService(url)
        service.initialize()
        service.append("proposal_created", "oem-a", {"proposal_id": 0})
        with service.SessionLocal() as session:
            entry = session.query(AuditEntryDB).filter_by(sequence_number=1).one()
            entry.actor = "mallory"
            session.commit()

        assert not run_audit(url)
