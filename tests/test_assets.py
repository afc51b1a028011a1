"""
Tests for the Asset Registry.

Validates:
- Only the governance engine may mutate records
- Batteries and modules use separate id spaces
- Update history tracking
"""

from __future__ import annotations

import pytest

from battery_governance.assets.registry import AssetRegistry
from battery_governance.governance.errors import AuthorizationError
from battery_governance.passport.schema import AssetKind

ENGINE = "governance-engine"


class TestAssetRegistry:
    """Test battery and module record management."""

    def setup_method(self):
        self.assets = AssetRegistry(governance_identity=ENGINE)

    def test_mint_battery(self):
        battery_id = self.assets.mint_battery(ENGINE, "oem-1", "0xabc", "https://example.com/battery/1")
        assert battery_id == 1
        battery = self.assets.get_battery(battery_id)
        assert battery.owner == "oem-1"
        assert battery.data_hash == "0xabc"
        assert battery.kind == AssetKind.BATTERY
        assert self.assets.battery_count == 1

    def test_non_governance_caller_rejected(self):
        with pytest.raises(AuthorizationError):
            self.assets.mint_battery("oem-1", "oem-1", "0xabc")
        battery_id = self.assets.mint_battery(ENGINE, "oem-1", "0xabc")
        with pytest.raises(AuthorizationError):
            self.assets.update_battery_data("repair-1", battery_id, "0xdef", "ipfs://update")

    def test_modules_have_their_own_id_space(self):
        first = self.assets.mint_battery(ENGINE, "oem-1", "0x1")
        second = self.assets.mint_battery(ENGINE, "oem-1", "0x2")
        module_id = self.assets.mint_module(ENGINE, "oem-1", second, "0xm1")

        assert (first, second) == (1, 2)
        assert module_id == 1
        assert self.assets.get_battery(module_id).data_hash == "0x1"
        assert self.assets.get_module(module_id).parent_battery_id == second
        assert self.assets.get_battery(second).module_ids == [module_id]
        assert self.assets.module_count == 1

    def test_module_requires_existing_battery(self):
        with pytest.raises(ValueError):
            self.assets.mint_module(ENGINE, "oem-1", 42, "0xm1")
        assert self.assets.module_count == 0

    def test_update_history(self):
        battery_id = self.assets.mint_battery(ENGINE, "oem-1", "0xabc")
        self.assets.update_battery_data(ENGINE, battery_id, "0xdef", "ipfs://QmFirst")
        self.assets.update_battery_data(ENGINE, battery_id, "0x123", "ipfs://QmSecond")

        battery = self.assets.get_battery(battery_id)
        assert battery.data_hash == "0x123"
        assert battery.latest_update_ref == "ipfs://QmSecond"
        assert self.assets.get_update_history(battery_id) == ["ipfs://QmFirst", "ipfs://QmSecond"]

    def test_update_missing_battery(self):
        with pytest.raises(ValueError):
            self.assets.update_battery_data(ENGINE, 7, "0xdef", "ipfs://update")

    def test_update_module_data(self):
        battery_id = self.assets.mint_battery(ENGINE, "oem-1", "0xabc")
        module_id = self.assets.mint_module(ENGINE, "oem-1", battery_id, "0xm1")
        self.assets.update_module_data(ENGINE, module_id, "0xm2", "ipfs://QmModule")
        module = self.assets.get_module(module_id)
        assert module.data_hash == "0xm2"
        assert module.update_history == ["ipfs://QmModule"]
        with pytest.raises(ValueError):
            self.assets.update_module_data(ENGINE, 99, "0xm2", "ipfs://QmModule")

    def test_lookups_are_detached(self):
        battery_id = self.assets.mint_battery(ENGINE, "oem-1", "0xabc")
        copy = self.assets.get_battery(battery_id)
        copy.update_history.append("forged")
        assert self.assets.get_update_history(battery_id) == []

    def test_snapshot_restore(self):
        state = self.assets.snapshot()
        battery_id = self.assets.mint_battery(ENGINE, "oem-1", "0xabc")
        self.assets.mint_module(ENGINE, "oem-1", battery_id, "0xm1")
        self.assets.restore(state)

        assert self.assets.battery_count == 0
        assert self.assets.module_count == 0
        assert self.assets.mint_battery(ENGINE, "oem-1", "0xabc") == 1
