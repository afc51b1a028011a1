"""
Tests for ecosystem wiring.
"""

from __future__ import annotations

import pytest

from battery_governance.bootstrap import build_ecosystem
from battery_governance.config import GovernanceSettings
from battery_governance.governance.errors import AuthorizationError
from battery_governance.passport.schema import CallTarget, ProposalCategory, Role


class TestBuildEcosystem:

    def setup_method(self):
        self.config = GovernanceSettings(
            admin_identity="admin",
            governance_identity="engine",
            initial_manufacturers=["oem-a", "oem-b", "oem-c"],
            audit_database_url="sqlite://",
        )

    def test_initial_roles(self):
        eco = build_ecosystem(self.config)
        assert eco.registry.has_role("admin", Role.ADMIN)
        assert eco.registry.roles_of("engine") == set()
        assert eco.registry.members_of(Role.MANUFACTURER) == ["oem-a", "oem-b", "oem-c"]
        assert eco.engine.voting_body == ["oem-a", "oem-b", "oem-c"]

    def test_components_share_engine_identity(self):
        eco = build_ecosystem(self.config)
        assert eco.engine.identity == "engine"
        assert eco.asset_registry.governance_identity == "engine"
        assert eco.permission_authority.governance_identity == "engine"

    def test_ledger_records_seed_grants(self):
        eco = build_ecosystem(self.config)
        is_valid, verified, message = eco.ledger.verify_chain()
        assert is_valid, message
        # genesis + three manufacturer grants
        assert verified == 4

    def test_audit_disabled(self):
        config = self.config.model_copy(update={"audit_enabled": False})
        assert build_ecosystem(config).ledger is None

    def test_thresholds_from_settings(self):
        config = self.config.model_copy(update={"critical_threshold": 3, "audit_enabled": False})
        eco = build_ecosystem(config)
        assert eco.engine.required_votes(ProposalCategory.CRITICAL) == 3

        pid = eco.engine.propose(
            "oem-a",
            [CallTarget.ASSET_REGISTRY],
            [0],
            [{"action": "mint_battery", "arguments": {"owner": "oem-a", "data_hash": "0x1"}}],
            "mint",
            ProposalCategory.CRITICAL,
        )
        eco.engine.cast_vote("oem-a", pid)
        eco.engine.cast_vote("oem-b", pid)
        assert not eco.engine.is_executed(pid)
        assert eco.engine.cast_vote("oem-c", pid).executed

    def test_more_manufacturers_than_seats(self):
        config = self.config.model_copy(update={
            "initial_manufacturers": ["oem-a", "oem-b", "oem-c", "oem-d"],
            "audit_enabled": False,
        })
        with pytest.raises(ValueError):
            build_ecosystem(config)

    def test_engine_identity_needs_real_votes(self):
        config = self.config.model_copy(update={"audit_enabled": False})
        eco = build_ecosystem(config)
        payload = {"action": "mint_battery", "arguments": {"owner": "oem-a", "data_hash": "0x1"}}

        with pytest.raises(AuthorizationError):
            eco.engine.propose(
                "engine", [CallTarget.ASSET_REGISTRY], [0], [payload], "mint",
                ProposalCategory.CRITICAL,
            )

        pid = eco.engine.propose(
            "oem-a", [CallTarget.ASSET_REGISTRY], [0], [payload], "mint",
            ProposalCategory.CRITICAL,
        )
        with pytest.raises(AuthorizationError):
            eco.engine.cast_vote("engine", pid)
        eco.engine.cast_vote("oem-a", pid)
        assert not eco.engine.is_executed(pid)
