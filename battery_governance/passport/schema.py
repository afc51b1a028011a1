"""
Passport Schema — Pydantic models for the battery passport governance layer.

These models are the canonical data structures shared by the participant
registry, the permission authority, the asset registry and the governance
engine. They also define the role hierarchy and capability tables the
authorization checks are driven from.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, computed_field


def utcnow() -> datetime:
    """Timezone-aware current time; the default clock for every service."""
    return datetime.now(timezone.utc)


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class Role(str, enum.Enum):
    """Participant roles, highest first."""

    ADMIN = "admin"
    GOVERNANCE = "governance"
    MANUFACTURER = "manufacturer"
    REPAIR_AGENT = "repair_agent"


class Capability(str, enum.Enum):
    """Role-gated capabilities checked by the registry."""

    SUBMIT_PROPOSAL = "submit_proposal"
    CAST_VOTE = "cast_vote"
    RESTORE_IDENTITY = "restore_identity"
    REVOKE_DELEGATION = "revoke_delegation"
    MANAGE_VOTING_BODY = "manage_voting_body"


class ProposalCategory(str, enum.Enum):
    """Proposal categories with different vote thresholds."""

    CRITICAL = "critical"  # structural changes: minting, permission grants
    ROUTINE = "routine"  # data updates on an existing battery


class ProposalStatus(str, enum.Enum):
    PENDING = "pending"
    EXECUTED = "executed"


class CallTarget(str, enum.Enum):
    """Collaborators a proposal may invoke once it clears its threshold."""

    ASSET_REGISTRY = "asset_registry"
    PERMISSION_AUTHORITY = "permission_authority"


class AssetKind(str, enum.Enum):
    BATTERY = "battery"
    MODULE = "module"


class PermissionKind(str, enum.Enum):
    """Delegated permission kinds."""

    PERMANENT = "permanent"  # no expiry, not scoped to a battery
    TEMPORARY = "temporary"  # expires, scoped to one battery


class GovernanceEventType(str, enum.Enum):
    """Audit event types emitted by the registry and the engine."""

    ROLE_GRANTED = "role_granted"
    ROLE_REVOKED = "role_revoked"
    IDENTITY_COMPROMISED = "identity_compromised"
    IDENTITY_RESTORED = "identity_restored"
    PROPOSAL_CREATED = "proposal_created"
    VOTE_CAST = "vote_cast"
    PROPOSAL_EXECUTED = "proposal_executed"
    SEAT_ASSIGNED = "seat_assigned"
    SEAT_VACATED = "seat_vacated"


# ════════════════════════════════════════════════════════════════
# Role Hierarchy Tables
# ════════════════════════════════════════════════════════════════

# Higher rank = more authority
ROLE_RANK: dict[Role, int] = {
    Role.REPAIR_AGENT: 0,
    Role.MANUFACTURER: 1,
    Role.GOVERNANCE: 2,
    Role.ADMIN: 3,
}

# Role that administers each role. ADMIN administers itself.
ROLE_PARENT: dict[Role, Role] = {
    Role.ADMIN: Role.ADMIN,
    Role.GOVERNANCE: Role.ADMIN,
    Role.MANUFACTURER: Role.GOVERNANCE,
    Role.REPAIR_AGENT: Role.MANUFACTURER,
}

CAPABILITY_MIN_ROLE: dict[Capability, Role] = {
    Capability.SUBMIT_PROPOSAL: Role.MANUFACTURER,
    Capability.CAST_VOTE: Role.MANUFACTURER,
    Capability.RESTORE_IDENTITY: Role.ADMIN,
    Capability.REVOKE_DELEGATION: Role.MANUFACTURER,
    Capability.MANAGE_VOTING_BODY: Role.ADMIN,
}

# Minimum reporter role by the target's highest held role. Targets holding
# any other role, or none at all, fall back to DEFAULT_REPORTER_MIN_ROLE.
COMPROMISE_REPORTER_MIN_ROLE: dict[Role, Role] = {
    Role.MANUFACTURER: Role.GOVERNANCE,
    Role.REPAIR_AGENT: Role.MANUFACTURER,
}
DEFAULT_REPORTER_MIN_ROLE = Role.MANUFACTURER


def role_satisfies(actual: Role, required: Role) -> bool:
    """True if `actual` is at least as senior as `required`."""
    return ROLE_RANK[actual] >= ROLE_RANK[required]


# ════════════════════════════════════════════════════════════════
# Participant Models
# ════════════════════════════════════════════════════════════════


class Participant(BaseModel):
    """An identity and the roles it holds. Created on first role grant."""

    identity: str
    roles: set[Role] = Field(default_factory=set)
    registered_at: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def highest_role(self) -> Role | None:
        if not self.roles:
            return None
        return max(self.roles, key=ROLE_RANK.__getitem__)


class CompromiseRecord(BaseModel):
    """
    Marks an identity as untrusted.

    Restoration only flips `active` and stamps `restored_at`; reporter,
    reason and timestamp are preserved for audit.
    """

    identity: str
    reporter: str = Field(description="Identity that reported the compromise")
    reason: str
    reported_at: datetime = Field(default_factory=utcnow)
    active: bool = True
    restored_at: datetime | None = None


# ════════════════════════════════════════════════════════════════
# Proposal Models
# ════════════════════════════════════════════════════════════════


class CallPayload(BaseModel):
    """The operation a proposal call performs on its target."""

    action: str = Field(description="Name of a mutating action exposed by the target")
    arguments: dict[str, Any] = Field(default_factory=dict)


class ProposalCall(BaseModel):
    """One entry of a proposal's ordered call list."""

    target: CallTarget
    value: int = Field(default=0, ge=0, description="Auxiliary value sent with the call")
    payload: CallPayload


class Proposal(BaseModel):
    """
    A governance proposal. Proposals form an append-only ledger: they are
    never deleted, and `executed` flips to True at most once.
    """

    id: int = Field(ge=0, description="Sequential id assigned by the engine")
    proposer: str
    calls: list[ProposalCall]
    description: str = ""
    category: ProposalCategory
    subject_id: int | None = Field(
        default=None, description="Battery the proposal concerns, if any"
    )
    voters: list[str] = Field(default_factory=list, description="In vote order")
    for_votes: int = 0
    executed: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    executed_at: datetime | None = None

    @computed_field
    @property
    def status(self) -> ProposalStatus:
        return ProposalStatus.EXECUTED if self.executed else ProposalStatus.PENDING


class GovernanceEvent(BaseModel):
    """In-memory audit event."""

    event_type: GovernanceEventType
    actor: str
    proposal_id: int | None = None
    detail: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


# ════════════════════════════════════════════════════════════════
# Asset Models
# ════════════════════════════════════════════════════════════════


class BatteryRecord(BaseModel):
    """A battery passport entry."""

    token_id: int
    owner: str
    data_hash: str
    metadata_uri: str = ""
    module_ids: list[int] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    latest_update_ref: str = ""
    update_history: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def kind(self) -> AssetKind:
        return AssetKind.BATTERY


class ModuleRecord(BaseModel):
    """A battery module, linked to its parent battery."""

    token_id: int
    owner: str
    parent_battery_id: int
    data_hash: str
    metadata_uri: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    latest_update_ref: str = ""
    update_history: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def kind(self) -> AssetKind:
        return AssetKind.MODULE


# ════════════════════════════════════════════════════════════════
# Delegated Permission Models
# ════════════════════════════════════════════════════════════════


class DelegatedPermission(BaseModel):
    """
    A capability granted to a non-role holder, usually a repair agent.

    Temporary permissions are scoped to a single battery and expire;
    permanent permissions carry no battery and no expiry.
    """

    token_id: int
    holder: str
    kind: PermissionKind
    battery_id: int | None = None
    expires_at: datetime | None = None
    can_submit_data: bool = False
    can_read_data: bool = False
    revoked: bool = False
    metadata_uri: str = ""
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at
