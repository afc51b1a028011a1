"""
Tests for the Permission Authority — delegated capabilities.

Validates:
- Minting is restricted to the governance engine identity
- Temporary permissions are battery-scoped and expire
- Revocation and compromise take effect immediately
- Snapshot / restore round trip
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from battery_governance.governance.errors import (
    AuthorizationError,
    ComplianceError,
    StateError,
)
from battery_governance.governance.participants import ParticipantRegistry
from battery_governance.governance.permissions import (
    PermissionAuthority,
    PermissionDecision,
)
from battery_governance.passport.schema import PermissionKind, Role

ENGINE = "governance-engine"
ADMIN = "admin"
GOV = "gov-1"
OEM = "oem-1"
REPAIR = "repair-1"


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 3, 27, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class TestPermissionAuthority:
    """Test delegated permission issuance and queries."""

    def setup_method(self):
        self.clock = FakeClock()
        self.registry = ParticipantRegistry(admin_identity=ADMIN, clock=self.clock)
        self.registry.grant_role(ADMIN, Role.GOVERNANCE, GOV)
        self.registry.grant_role(GOV, Role.MANUFACTURER, OEM)
        self.registry.grant_role(OEM, Role.REPAIR_AGENT, REPAIR)
        self.authority = PermissionAuthority(self.registry, ENGINE, clock=self.clock)

    def _mint_temporary(self, battery_id: int = 7, hours: int = 24, submit: bool = True) -> int:
        return self.authority.mint_temporary_permission(
            caller=ENGINE,
            recipient=REPAIR,
            battery_id=battery_id,
            validity_seconds=hours * 3600,
            allow_data_submission=submit,
            allow_data_reading=True,
        )

    def test_only_engine_may_mint(self):
        with pytest.raises(AuthorizationError):
            self.authority.mint_temporary_permission(
                caller=OEM,
                recipient=REPAIR,
                battery_id=7,
                validity_seconds=3600,
                allow_data_submission=True,
                allow_data_reading=True,
            )
        with pytest.raises(AuthorizationError):
            self.authority.mint_permanent_permission(OEM, REPAIR, True)

    def test_temporary_permission_grants_scoped_submit(self):
        token_id = self._mint_temporary(battery_id=7)
        assert token_id == 1
        assert self.authority.has_submit_capability(REPAIR, 7)
        assert not self.authority.has_submit_capability(REPAIR, 8)

        permission = self.authority.get_permission(token_id)
        assert permission.kind == PermissionKind.TEMPORARY
        assert permission.expires_at == self.clock.now + timedelta(hours=24)

    def test_submit_requires_submission_flag(self):
        self._mint_temporary(submit=False)
        assert not self.authority.has_submit_capability(REPAIR, 7)
        assert self.authority.has_read_or_verify_capability(REPAIR)

    def test_expiry(self):
        self._mint_temporary(hours=1)
        self.clock.advance(minutes=59)
        assert self.authority.has_submit_capability(REPAIR, 7)
        self.clock.advance(minutes=1)
        result = self.authority.check_submit(REPAIR, 7)
        assert result.decision == PermissionDecision.EXPIRED
        assert not result.is_allowed

    def test_revocation_by_manufacturer(self):
        token_id = self._mint_temporary()
        self.authority.revoke_permission(OEM, token_id)
        result = self.authority.check_submit(REPAIR, 7)
        assert result.decision == PermissionDecision.REVOKED
        assert self.authority.get_permission(token_id).revoked

    def test_revocation_rules(self):
        token_id = self._mint_temporary()
        with pytest.raises(AuthorizationError):
            self.authority.revoke_permission(REPAIR, token_id)
        self.authority.revoke_permission(ENGINE, token_id)
        with pytest.raises(StateError):
            self.authority.revoke_permission(ENGINE, token_id)
        with pytest.raises(ValueError):
            self.authority.revoke_permission(ENGINE, 99)

    def test_compromised_revoker_rejected(self):
        token_id = self._mint_temporary()
        self.registry.mark_compromised(GOV, OEM, "key leak")
        with pytest.raises(ComplianceError):
            self.authority.revoke_permission(OEM, token_id)

    def test_compromised_holder_excluded(self):
        self._mint_temporary()
        self.registry.mark_compromised(OEM, REPAIR, "stolen laptop")
        result = self.authority.check_submit(REPAIR, 7)
        assert result.decision == PermissionDecision.HOLDER_COMPROMISED
        assert not self.authority.has_read_or_verify_capability(REPAIR)

        self.registry.restore(ADMIN, REPAIR)
        assert self.authority.has_submit_capability(REPAIR, 7)

    def test_no_grant(self):
        result = self.authority.check_submit("stranger", 7)
        assert result.decision == PermissionDecision.NO_GRANT

    def test_permanent_permission_reads_but_never_submits(self):
        token_id = self.authority.mint_permanent_permission(ENGINE, "known-shop", True)
        permission = self.authority.get_permission(token_id)
        assert permission.kind == PermissionKind.PERMANENT
        assert permission.battery_id is None
        assert permission.expires_at is None

        self.clock.advance(days=3650)
        assert self.authority.has_read_or_verify_capability("known-shop")
        assert not self.authority.has_submit_capability("known-shop", 7)

    def test_invalid_temporary_arguments(self):
        with pytest.raises(ValueError):
            self._mint_temporary(hours=0)
        with pytest.raises(ValueError):
            self._mint_temporary(battery_id=0)

    def test_snapshot_restore(self):
        state = self.authority.snapshot()
        self._mint_temporary()
        assert self.authority.permissions_of(REPAIR)
        self.authority.restore(state)
        assert self.authority.permissions_of(REPAIR) == []
        assert self._mint_temporary() == 1
