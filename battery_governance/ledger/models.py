"""
Audit Ledger — SQLAlchemy models for the append-only governance record.

Every role change, compromise report, proposal, vote and execution is
recorded here. The table is append-only and hash-chained: each entry stores
SHA-256(previous_hash || canonical_json(entry_fields)), so a retroactive
edit to any row breaks verification from that row onward.

Column types are portable (JSON, Uuid) so the ledger runs on PostgreSQL in
deployment and on SQLite in tests.
"""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all ledger models."""
    pass


class AuditEntryDB(Base):
    """
    A single entry in the governance audit ledger.

    This table is APPEND-ONLY. No rows may be updated or deleted.
    """

    __tablename__ = "audit_entries"

    id = Column(Uuid, primary_key=True, default=uuid4)

    # Chain ordering
    sequence_number = Column(
        Integer, nullable=False, unique=True, index=True,
        comment="Monotonically increasing sequence number",
    )

    # Hash chain
    previous_hash = Column(
        String(64), nullable=False,
        comment="SHA-256 hash of the previous entry",
    )
    entry_hash = Column(
        String(64), nullable=False, unique=True,
        comment="SHA-256 hash of this entry",
    )

    timestamp = Column(
        DateTime(timezone=True), nullable=False, default=func.now(),
        comment="When this entry was recorded",
    )

    entry_type = Column(
        String(50), nullable=False, index=True,
        comment="Governance event type",
    )
    actor = Column(
        String(200), nullable=False,
        comment="Identity that performed the recorded action",
    )
    content = Column(
        JSON, nullable=False,
        comment="Entry content — structure varies by entry_type",
    )

    __table_args__ = (
        Index("ix_audit_entry_type_timestamp", "entry_type", "timestamp"),
        Index("ix_audit_actor", "actor"),
        {"comment": "Append-only, hash-chained battery governance audit ledger"},
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEntry seq={self.sequence_number} "
            f"type={self.entry_type} hash={self.entry_hash[:12]}...>"
        )
