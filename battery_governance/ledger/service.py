"""
Audit Ledger Service — where every governance decision is written down.

Each entry carries the SHA-256 digest of its predecessor, so rewriting any
recorded role change, compromise report, proposal or vote breaks the chain
from that point on. `verify_chain` finds the first such break.

The participant registry and the governance engine append to the ledger
before applying a state change, so a failed append leaves their state
untouched.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from battery_governance.ledger.models import AuditEntryDB, Base

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════
# Genesis Constants
# ════════════════════════════════════════════════════════════════

GENESIS_HASH = "0" * 64  # The "previous hash" for the first entry in the chain
GENESIS_ACTOR = "system"


class LedgerIntegrityError(Exception):
    """Raised when the hash chain cannot be extended."""
    pass


class LedgerService:
    """
    Audit Ledger Service — the permanent record of governance decisions.

    Usage:
        service = LedgerService("sqlite:///audit.db")
        service.initialize()  # Create tables, seed genesis block

        entry = service.append(
            entry_type="proposal_executed",
            actor="oem-2",
            content={"proposal_id": 3, "for_votes": 2},
        )
    """

    def __init__(self, database_url: str) -> None:
        """
        Initialize the ledger service.

        Args:
            database_url: SQLAlchemy connection string (sync driver).
        """
        self.engine = create_engine(database_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def initialize(self) -> None:
        """
        Initialize the database schema and seed the genesis block.

        The genesis block anchors the hash chain; its previous_hash is all zeros.
        """
        Base.metadata.create_all(self.engine)

        with self.SessionLocal() as session:
            existing = session.execute(
                select(AuditEntryDB).where(AuditEntryDB.sequence_number == 0)
            ).scalar_one_or_none()

            if existing is None:
                genesis = self._build_entry(
                    sequence_number=0,
                    previous_hash=GENESIS_HASH,
                    entry_type="genesis",
                    actor=GENESIS_ACTOR,
                    content={
                        "message": "Genesis of the battery governance audit ledger",
                        "append_only": True,
                    },
                )
                session.add(genesis)
                session.commit()
                logger.info("Genesis block created: hash=%s", genesis.entry_hash[:16])

    def append(
        self,
        entry_type: str,
        actor: str,
        content: dict[str, Any],
    ) -> AuditEntryDB:
        """
        Chain a new entry onto the latest one.

        Entries are never updated or deleted once written.

        Raises:
            LedgerIntegrityError: If the ledger has not been initialized.
        """
        with self.SessionLocal() as session:
            last_entry = session.execute(
                select(AuditEntryDB)
                .order_by(AuditEntryDB.sequence_number.desc())
                .limit(1)
            ).scalar_one_or_none()

            if last_entry is None:
                raise LedgerIntegrityError(
                    "Cannot append: no genesis block found. Call initialize() first."
                )

            entry = self._build_entry(
                sequence_number=last_entry.sequence_number + 1,
                previous_hash=last_entry.entry_hash,
                entry_type=entry_type,
                actor=actor,
                content=content,
            )

            session.add(entry)
            session.commit()
            session.refresh(entry)

            logger.info(
                "Ledger entry appended: seq=%d type=%s hash=%s",
                entry.sequence_number, entry_type, entry.entry_hash[:16],
            )
            return entry

    def verify_chain(self) -> tuple[bool, int, str]:
        """
        Recompute every entry hash and check that each entry points at its predecessor.

        Returns:
            (is_valid, count, message). When the chain is broken, `count` is the
            position of the first bad entry.
        """
        with self.SessionLocal() as session:
            entries = session.execute(
                select(AuditEntryDB).order_by(AuditEntryDB.sequence_number.asc())
            ).scalars().all()

        if not entries:
            return False, 0, "Ledger has no genesis entry"

        previous_hash = GENESIS_HASH
        for position, entry in enumerate(entries):
            if entry.sequence_number != position:
                return (
                    False, position,
                    f"Expected sequence {position}, found {entry.sequence_number}"
                )
            if entry.previous_hash != previous_hash:
                return (
                    False, position,
                    f"Entry {entry.sequence_number} does not link to the entry before it"
                )
            recomputed = self._compute_hash(
                entry_id=entry.id,
                sequence_number=entry.sequence_number,
                previous_hash=entry.previous_hash,
                timestamp=entry.timestamp,
                entry_type=entry.entry_type,
                actor=entry.actor,
                content=entry.content,
            )
            if recomputed != entry.entry_hash:
                return (
                    False, position,
                    f"Entry {entry.sequence_number} was altered: stored digest "
                    f"{entry.entry_hash[:16]} != recomputed {recomputed[:16]}"
                )
            previous_hash = entry.entry_hash

        return True, len(entries), f"{len(entries)} entries verified"

    def get_by_sequence(self, sequence_number: int) -> AuditEntryDB | None:
        with self.SessionLocal() as session:
            return session.execute(
                select(AuditEntryDB).where(AuditEntryDB.sequence_number == sequence_number)
            ).scalar_one_or_none()

    def get_entries_by_type(
        self,
        entry_type: str,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditEntryDB]:
        """Retrieve entries by type, newest first."""
        with self.SessionLocal() as session:
            return list(
                session.execute(
                    select(AuditEntryDB)
                    .where(AuditEntryDB.entry_type == entry_type)
                    .order_by(AuditEntryDB.sequence_number.desc())
                    .limit(limit)
                    .offset(offset)
                ).scalars().all()
            )

    def get_entries_by_actor(self, actor: str, limit: int = 100) -> list[AuditEntryDB]:
        """Retrieve entries recorded for an identity, newest first."""
        with self.SessionLocal() as session:
            return list(
                session.execute(
                    select(AuditEntryDB)
                    .where(AuditEntryDB.actor == actor)
                    .order_by(AuditEntryDB.sequence_number.desc())
                    .limit(limit)
                ).scalars().all()
            )

    def get_latest_entries(self, limit: int = 50) -> list[AuditEntryDB]:
        with self.SessionLocal() as session:
            return list(
                session.execute(
                    select(AuditEntryDB)
                    .order_by(AuditEntryDB.sequence_number.desc())
                    .limit(limit)
                ).scalars().all()
            )

    def get_entry_count(self) -> int:
        with self.SessionLocal() as session:
            result = session.execute(select(func.count()).select_from(AuditEntryDB))
            return result.scalar() or 0

    # ── Internal ────────────────────────────────────────────────

    def _build_entry(
        self,
        sequence_number: int,
        previous_hash: str,
        entry_type: str,
        actor: str,
        content: dict[str, Any],
    ) -> AuditEntryDB:
        entry_id = uuid4()
        timestamp = datetime.now(timezone.utc)
        entry_hash = self._compute_hash(
            entry_id=entry_id,
            sequence_number=sequence_number,
            previous_hash=previous_hash,
            timestamp=timestamp,
            entry_type=entry_type,
            actor=actor,
            content=content,
        )
        return AuditEntryDB(
            id=entry_id,
            sequence_number=sequence_number,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
            timestamp=timestamp,
            entry_type=entry_type,
            actor=actor,
            content=content,
        )

    @staticmethod
    def _compute_hash(
        entry_id: UUID,
        sequence_number: int,
        previous_hash: str,
        timestamp: datetime,
        entry_type: str,
        actor: str,
        content: dict[str, Any],
    ) -> str:
        """
        Compute the SHA-256 hash for a ledger entry.

        Hash = SHA-256(previous_hash || canonical_json(entry_fields))

        Timestamps are hashed as UTC; backends that drop the offset on
        read (SQLite) return naive values, which are taken to be UTC.
        """
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        hashable = {
            "id": str(entry_id),
            "sequence_number": sequence_number,
            "previous_hash": previous_hash,
            "timestamp": timestamp.astimezone(timezone.utc).isoformat(),
            "entry_type": entry_type,
            "actor": actor,
            "content": content,
        }
        canonical = json.dumps(hashable, sort_keys=True, default=str)
        return hashlib.sha256(
            (previous_hash + canonical).encode("utf-8")
        ).hexdigest()
