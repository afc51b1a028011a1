"""
Participant Registry — role hierarchy and compromise tracking.

Owns two pieces of state:

- Role assignments. Roles form a strict grant chain
  ADMIN → GOVERNANCE → MANUFACTURER → REPAIR_AGENT; a role may only be
  granted or revoked by a holder of its parent role, or by ADMIN.
- Compromise records. An identity with an active record is blocked from
  submitting proposals and voting until an ADMIN restores it. Records are
  deactivated, never deleted.

Authorization is table-driven (see passport.schema): `can_grant` consults
ROLE_PARENT, `authorize` consults CAPABILITY_MIN_ROLE, and compromise
reporting consults COMPROMISE_REPORTER_MIN_ROLE.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from battery_governance.governance.errors import (
    AuthorizationError,
    ComplianceError,
    ConflictError,
    StateError,
    ValidationError,
)
from battery_governance.passport.schema import (
    CAPABILITY_MIN_ROLE,
    COMPROMISE_REPORTER_MIN_ROLE,
    DEFAULT_REPORTER_MIN_ROLE,
    ROLE_PARENT,
    Capability,
    CompromiseRecord,
    GovernanceEvent,
    GovernanceEventType,
    Participant,
    Role,
    role_satisfies,
    utcnow,
)

logger = logging.getLogger(__name__)


class ParticipantRegistry:
    """
    Role assignments and compromise records for every identity.

    Usage:
        registry = ParticipantRegistry(admin_identity="registry-admin")
        registry.grant_role("registry-admin", Role.GOVERNANCE, "gov-1")
        registry.grant_role("gov-1", Role.MANUFACTURER, "oem-1")
        registry.mark_compromised("gov-1", "oem-1", "key leak")
    """

    def __init__(
        self,
        admin_identity: str,
        ledger_service: Any = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the registry.

        Args:
            admin_identity: Identity seeded with the ADMIN role.
            ledger_service: Optional audit LedgerService; every state change
                is appended to it before being applied.
            clock: Source of timestamps for compromise records.
        """
        self.ledger_service = ledger_service
        self.clock = clock
        self.participants: dict[str, Participant] = {}
        self.compromises: dict[str, CompromiseRecord] = {}
        self.compromise_archive: dict[str, list[CompromiseRecord]] = {}
        self.history: list[GovernanceEvent] = []

        self._participant(admin_identity).roles.add(Role.ADMIN)
        logger.info("Participant registry initialized: admin=%s", admin_identity)

    # ── Table-driven authorization ──────────────────────────────

    @staticmethod
    def can_grant(parent_role: Role, child_role: Role) -> bool:
        """Whether holders of `parent_role` may grant or revoke `child_role`."""
        return parent_role == Role.ADMIN or ROLE_PARENT[child_role] == parent_role

    def authorize(self, identity: str, capability: Capability) -> bool:
        """Whether `identity` holds a role senior enough for `capability`."""
        return self.holds_at_least(identity, CAPABILITY_MIN_ROLE[capability])

    def holds_at_least(self, identity: str, minimum: Role) -> bool:
        highest = self.highest_role(identity)
        return highest is not None and role_satisfies(highest, minimum)

    # ── Queries ─────────────────────────────────────────────────

    def has_role(self, identity: str, role: Role) -> bool:
        participant = self.participants.get(identity)
        return participant is not None and role in participant.roles

    def roles_of(self, identity: str) -> set[Role]:
        participant = self.participants.get(identity)
        return set(participant.roles) if participant else set()

    def highest_role(self, identity: str) -> Role | None:
        participant = self.participants.get(identity)
        return participant.highest_role if participant else None

    def members_of(self, role: Role) -> list[str]:
        """Identities currently holding `role`, in registration order."""
        return [p.identity for p in self.participants.values() if role in p.roles]

    def is_compromised(self, identity: str) -> bool:
        record = self.compromises.get(identity)
        return record is not None and record.active

    def get_compromise_record(self, identity: str) -> CompromiseRecord | None:
        """Latest compromise record for `identity`, active or restored."""
        record = self.compromises.get(identity)
        return record.model_copy() if record else None

    def compromise_history(self, identity: str) -> list[CompromiseRecord]:
        """Every record ever filed against `identity`, oldest first."""
        archived = self.compromise_archive.get(identity, [])
        current = self.compromises.get(identity)
        records = list(archived) + ([current] if current else [])
        return [r.model_copy() for r in records]

    # ── Role management ─────────────────────────────────────────

    def grant_role(self, caller: str, role: Role, identity: str) -> None:
        """
        Grant `role` to `identity`. Idempotent if already held.

        Raises:
            AuthorizationError: If `caller` holds neither the parent role nor ADMIN.
        """
        self._require_grant_authority(caller, role)
        if self.has_role(identity, role):
            return

        self._record(
            GovernanceEventType.ROLE_GRANTED,
            actor=caller,
            detail={"role": role.value, "identity": identity},
        )
        self._participant(identity).roles.add(role)
        logger.info("Role granted: %s -> %s by %s", role.value, identity, caller)

    def revoke_role(self, caller: str, role: Role, identity: str) -> None:
        """
        Remove `role` from `identity`. Idempotent if not held.

        Raises:
            AuthorizationError: If `caller` holds neither the parent role nor ADMIN.
        """
        self._require_grant_authority(caller, role)
        if not self.has_role(identity, role):
            return

        self._record(
            GovernanceEventType.ROLE_REVOKED,
            actor=caller,
            detail={"role": role.value, "identity": identity},
        )
        self.participants[identity].roles.discard(role)
        logger.info("Role revoked: %s from %s by %s", role.value, identity, caller)

    # ── Compromise tracking ─────────────────────────────────────

    def mark_compromised(self, reporter: str, identity: str, reason: str) -> CompromiseRecord:
        """
        File an active compromise record against `identity`.

        The reporter's required seniority depends on the target's highest
        role: a MANUFACTURER needs GOVERNANCE or above to be marked, a
        REPAIR_AGENT needs MANUFACTURER or above, and any other identity
        needs MANUFACTURER or above.

        Raises:
            ValidationError: If `reason` is empty.
            ComplianceError: If the reporter is itself compromised.
            AuthorizationError: If the reporter is not senior enough.
            ConflictError: If `identity` already has an active record.
        """
        if not reason or not reason.strip():
            raise ValidationError("A compromise report must state a reason")

        if self.is_compromised(reporter):
            raise ComplianceError(
                f"Reporter {reporter} is compromised and cannot file reports"
            )

        target_role = self.highest_role(identity)
        required = COMPROMISE_REPORTER_MIN_ROLE.get(target_role, DEFAULT_REPORTER_MIN_ROLE)
        if not self.holds_at_least(reporter, required):
            raise AuthorizationError(
                f"Marking {identity} (highest role: "
                f"{target_role.value if target_role else 'none'}) requires "
                f"{required.value} or above; {reporter} does not qualify"
            )

        if self.is_compromised(identity):
            raise ConflictError(f"Identity {identity} is already marked compromised")

        record = CompromiseRecord(
            identity=identity,
            reporter=reporter,
            reason=reason,
            reported_at=self.clock(),
        )
        self._record(
            GovernanceEventType.IDENTITY_COMPROMISED,
            actor=reporter,
            detail={"identity": identity, "reason": reason},
        )

        previous = self.compromises.get(identity)
        if previous is not None:
            self.compromise_archive.setdefault(identity, []).append(previous)
        self.compromises[identity] = record

        logger.warning(
            "Identity marked compromised: %s by %s reason='%s'",
            identity, reporter, reason[:80],
        )
        return record.model_copy()

    def restore(self, caller: str, identity: str) -> CompromiseRecord:
        """
        Deactivate the active compromise record for `identity`.

        Role memberships are untouched.

        Raises:
            AuthorizationError: If `caller` is not ADMIN.
            StateError: If `identity` has no active record.
        """
        if not self.authorize(caller, Capability.RESTORE_IDENTITY):
            raise AuthorizationError(f"Only ADMIN may restore identities; {caller} is not ADMIN")

        record = self.compromises.get(identity)
        if record is None or not record.active:
            raise StateError(f"Identity {identity} has no active compromise record")

        restored_at = self.clock()
        self._record(
            GovernanceEventType.IDENTITY_RESTORED,
            actor=caller,
            detail={"identity": identity, "reported_by": record.reporter},
        )
        record.active = False
        record.restored_at = restored_at

        logger.info("Identity restored: %s by %s", identity, caller)
        return record.model_copy()

    # ── Internal ────────────────────────────────────────────────

    def _participant(self, identity: str) -> Participant:
        participant = self.participants.get(identity)
        if participant is None:
            participant = Participant(identity=identity, registered_at=self.clock())
            self.participants[identity] = participant
        return participant

    def _require_grant_authority(self, caller: str, role: Role) -> None:
        if not any(self.can_grant(held, role) for held in self.roles_of(caller)):
            raise AuthorizationError(
                f"{caller} may not grant or revoke {role.value}: requires "
                f"{ROLE_PARENT[role].value} or admin"
            )

    def _record(self, event_type: GovernanceEventType, actor: str, detail: dict[str, Any]) -> None:
        event = GovernanceEvent(
            event_type=event_type, actor=actor, detail=detail, timestamp=self.clock()
        )
        if self.ledger_service is not None:
            self.ledger_service.append(
                entry_type=event_type.value,
                actor=actor,
                content=event.model_dump(mode="json"),
            )
        self.history.append(event)
