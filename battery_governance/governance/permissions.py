"""
Permission Authority — delegated capabilities for non-role holders.

Repair agents do not vote and usually hold no senior role. To let them
submit data updates for a battery they are servicing, the ecosystem grants
them delegated permissions through governance:

- TEMPORARY: scoped to one battery, expires after a validity period,
  may allow data submission and/or data reading.
- PERMANENT: no battery scope, no expiry, read access only.

Every capability query excludes grants that are revoked or expired and
grants held by an identity with an active compromise record. The check
happens at query time, so revocation and compromise take effect immediately.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from battery_governance.governance.errors import (
    AuthorizationError,
    ComplianceError,
    StateError,
)
from battery_governance.governance.participants import ParticipantRegistry
from battery_governance.passport.schema import (
    Capability,
    DelegatedPermission,
    PermissionKind,
    utcnow,
)

logger = logging.getLogger(__name__)


class PermissionDecision(str, Enum):
    """Result of a delegated capability check."""

    AUTHORIZED = "authorized"
    NO_GRANT = "no_grant"
    EXPIRED = "expired"
    REVOKED = "revoked"
    HOLDER_COMPROMISED = "holder_compromised"


@dataclass
class PermissionCheckResult:
    """Result of checking an identity's delegated capability."""

    decision: PermissionDecision
    identity: str
    reason: str
    subject_id: int | None = None
    token_id: int | None = None

    @property
    def is_allowed(self) -> bool:
        return self.decision == PermissionDecision.AUTHORIZED


class PermissionAuthority:
    """
    Issues, revokes and answers queries about delegated permissions.

    Minting is only accepted from the governance engine identity, so every
    grant passes through a voted proposal. Revocation is also accepted
    directly from any MANUFACTURER-or-above holder.
    """

    MUTATING_ACTIONS = frozenset({
        "mint_temporary_permission",
        "mint_permanent_permission",
        "revoke_permission",
    })

    def __init__(
        self,
        registry: ParticipantRegistry,
        governance_identity: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.registry = registry
        self.governance_identity = governance_identity
        self.clock = clock
        self.permissions: dict[int, DelegatedPermission] = {}
        self._next_token_id = 1

    # ── Minting ─────────────────────────────────────────────────

    def mint_temporary_permission(
        self,
        caller: str,
        recipient: str,
        battery_id: int,
        validity_seconds: int,
        allow_data_submission: bool,
        allow_data_reading: bool,
        metadata_uri: str = "",
    ) -> int:
        """
        Grant `recipient` a battery-scoped permission that expires after
        `validity_seconds`.

        Returns:
            The new permission token id.
        """
        self._require_governance(caller)
        if validity_seconds <= 0:
            raise ValueError("validity_seconds must be positive")
        if battery_id <= 0:
            raise ValueError(f"Invalid battery id: {battery_id}")

        now = self.clock()
        permission = DelegatedPermission(
            token_id=self._next_token_id,
            holder=recipient,
            kind=PermissionKind.TEMPORARY,
            battery_id=battery_id,
            expires_at=now + timedelta(seconds=validity_seconds),
            can_submit_data=allow_data_submission,
            can_read_data=allow_data_reading,
            metadata_uri=metadata_uri,
            created_at=now,
        )
        return self._store(permission)

    def mint_permanent_permission(
        self,
        caller: str,
        recipient: str,
        allow_data_reading: bool,
        metadata_uri: str = "",
    ) -> int:
        """Grant `recipient` a permanent, unscoped read permission."""
        self._require_governance(caller)
        permission = DelegatedPermission(
            token_id=self._next_token_id,
            holder=recipient,
            kind=PermissionKind.PERMANENT,
            can_read_data=allow_data_reading,
            metadata_uri=metadata_uri,
            created_at=self.clock(),
        )
        return self._store(permission)

    def revoke_permission(self, caller: str, token_id: int) -> None:
        """
        Revoke a permission. Takes effect on the next capability query.

        Raises:
            AuthorizationError: If the caller is neither the governance engine
                nor a MANUFACTURER-or-above holder.
            ComplianceError: If a direct caller is compromised.
            StateError: If the permission is already revoked.
            ValueError: If the permission does not exist.
        """
        if caller != self.governance_identity:
            if not self.registry.authorize(caller, Capability.REVOKE_DELEGATION):
                raise AuthorizationError(
                    f"{caller} may not revoke delegated permissions"
                )
            if self.registry.is_compromised(caller):
                raise ComplianceError(f"Identity {caller} is compromised")

        permission = self.permissions.get(token_id)
        if permission is None:
            raise ValueError(f"Permission {token_id} not found")
        if permission.revoked:
            raise StateError(f"Permission {token_id} is already revoked")

        permission.revoked = True
        logger.info("Permission revoked: token=%d holder=%s by %s", token_id, permission.holder, caller)

    # ── Queries ─────────────────────────────────────────────────

    def check_submit(self, identity: str, subject_id: int) -> PermissionCheckResult:
        """Check whether `identity` may submit data for battery `subject_id`."""
        candidates = [
            p for p in self.permissions.values()
            if p.holder == identity
            and p.kind == PermissionKind.TEMPORARY
            and p.battery_id == subject_id
            and p.can_submit_data
        ]
        return self._evaluate(identity, candidates, subject_id)

    def check_read(self, identity: str) -> PermissionCheckResult:
        """Check whether `identity` may read or verify passport data."""
        candidates = [
            p for p in self.permissions.values()
            if p.holder == identity and p.can_read_data
        ]
        return self._evaluate(identity, candidates, None)

    def has_submit_capability(self, identity: str, subject_id: int) -> bool:
        return self.check_submit(identity, subject_id).is_allowed

    def has_read_or_verify_capability(self, identity: str) -> bool:
        return self.check_read(identity).is_allowed

    def get_permission(self, token_id: int) -> DelegatedPermission | None:
        permission = self.permissions.get(token_id)
        return permission.model_copy() if permission else None

    def permissions_of(self, identity: str) -> list[DelegatedPermission]:
        return [p.model_copy() for p in self.permissions.values() if p.holder == identity]

    # ── Transaction support ─────────────────────────────────────

    def snapshot(self) -> Any:
        return copy.deepcopy((self.permissions, self._next_token_id))

    def restore(self, state: Any) -> None:
        self.permissions, self._next_token_id = state

    # ── Internal ────────────────────────────────────────────────

    def _require_governance(self, caller: str) -> None:
        if caller != self.governance_identity:
            raise AuthorizationError(
                "Only the governance engine may issue delegated permissions"
            )

    def _store(self, permission: DelegatedPermission) -> int:
        self.permissions[permission.token_id] = permission
        self._next_token_id += 1
        logger.info(
            "Permission minted: token=%d kind=%s holder=%s battery=%s",
            permission.token_id, permission.kind.value, permission.holder, permission.battery_id,
        )
        return permission.token_id

    def _evaluate(
        self,
        identity: str,
        candidates: list[DelegatedPermission],
        subject_id: int | None,
    ) -> PermissionCheckResult:
        if self.registry.is_compromised(identity):
            return PermissionCheckResult(
                decision=PermissionDecision.HOLDER_COMPROMISED,
                identity=identity,
                subject_id=subject_id,
                reason=f"{identity} has an active compromise record",
            )

        now = self.clock()
        for permission in candidates:
            if not permission.revoked and not permission.is_expired(now):
                return PermissionCheckResult(
                    decision=PermissionDecision.AUTHORIZED,
                    identity=identity,
                    subject_id=subject_id,
                    token_id=permission.token_id,
                    reason=f"Live {permission.kind.value} permission {permission.token_id}",
                )

        if not candidates:
            return PermissionCheckResult(
                decision=PermissionDecision.NO_GRANT,
                identity=identity,
                subject_id=subject_id,
                reason=f"{identity} holds no matching permission",
            )

        # Every candidate is dead; report expiry ahead of revocation
        expired = [p for p in candidates if not p.revoked]
        if expired:
            return PermissionCheckResult(
                decision=PermissionDecision.EXPIRED,
                identity=identity,
                subject_id=subject_id,
                token_id=expired[-1].token_id,
                reason=f"Permission {expired[-1].token_id} expired at {expired[-1].expires_at}",
            )
        return PermissionCheckResult(
            decision=PermissionDecision.REVOKED,
            identity=identity,
            subject_id=subject_id,
            token_id=candidates[-1].token_id,
            reason=f"Permission {candidates[-1].token_id} has been revoked",
        )
