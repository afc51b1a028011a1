"""
Asset Registry — battery and module passport records.

Batteries and modules each draw ids from their own counter, so a module id
never collides with a battery id space. Every mutating operation is only
accepted from the governance engine identity; the registry itself makes no
governance decisions.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Any, Callable

from battery_governance.governance.errors import AuthorizationError
from battery_governance.passport.schema import BatteryRecord, ModuleRecord, utcnow

logger = logging.getLogger(__name__)


class AssetRegistry:
    """Stores battery and module records and their update histories."""

    MUTATING_ACTIONS = frozenset({
        "mint_battery",
        "mint_module",
        "update_battery_data",
        "update_module_data",
    })

    def __init__(
        self,
        governance_identity: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.governance_identity = governance_identity
        self.clock = clock
        self.batteries: dict[int, BatteryRecord] = {}
        self.modules: dict[int, ModuleRecord] = {}
        self._next_battery_id = 1
        self._next_module_id = 1

    # ── Mutating operations (governance only) ───────────────────

    def mint_battery(
        self,
        caller: str,
        owner: str,
        data_hash: str,
        metadata_uri: str = "",
    ) -> int:
        """Create a battery record. Returns the new battery id."""
        self._require_governance(caller)
        battery_id = self._next_battery_id
        self.batteries[battery_id] = BatteryRecord(
            token_id=battery_id,
            owner=owner,
            data_hash=data_hash,
            metadata_uri=metadata_uri,
            created_at=self.clock(),
        )
        self._next_battery_id += 1
        logger.info("Battery minted: id=%d owner=%s", battery_id, owner)
        return battery_id

    def mint_module(
        self,
        caller: str,
        owner: str,
        battery_id: int,
        data_hash: str,
        metadata_uri: str = "",
    ) -> int:
        """Create a module record linked to an existing battery."""
        self._require_governance(caller)
        battery = self._battery(battery_id)
        module_id = self._next_module_id
        self.modules[module_id] = ModuleRecord(
            token_id=module_id,
            owner=owner,
            parent_battery_id=battery_id,
            data_hash=data_hash,
            metadata_uri=metadata_uri,
            created_at=self.clock(),
        )
        battery.module_ids.append(module_id)
        self._next_module_id += 1
        logger.info("Module minted: id=%d battery=%d owner=%s", module_id, battery_id, owner)
        return module_id

    def update_battery_data(
        self,
        caller: str,
        battery_id: int,
        data_hash: str,
        update_ref: str,
    ) -> None:
        """Replace a battery's data hash and append `update_ref` to its history."""
        self._require_governance(caller)
        battery = self._battery(battery_id)
        battery.data_hash = data_hash
        battery.latest_update_ref = update_ref
        battery.update_history.append(update_ref)
        logger.info("Battery data updated: id=%d ref=%s", battery_id, update_ref)

    def update_module_data(
        self,
        caller: str,
        module_id: int,
        data_hash: str,
        update_ref: str,
    ) -> None:
        self._require_governance(caller)
        module = self.modules.get(module_id)
        if module is None:
            raise ValueError(f"Module {module_id} not found")
        module.data_hash = data_hash
        module.latest_update_ref = update_ref
        module.update_history.append(update_ref)
        logger.info("Module data updated: id=%d ref=%s", module_id, update_ref)

    # ── Queries ─────────────────────────────────────────────────

    def get_battery(self, battery_id: int) -> BatteryRecord | None:
        battery = self.batteries.get(battery_id)
        return battery.model_copy(deep=True) if battery else None

    def get_module(self, module_id: int) -> ModuleRecord | None:
        module = self.modules.get(module_id)
        return module.model_copy(deep=True) if module else None

    def get_update_history(self, battery_id: int) -> list[str]:
        return list(self._battery(battery_id).update_history)

    @property
    def battery_count(self) -> int:
        return len(self.batteries)

    @property
    def module_count(self) -> int:
        return len(self.modules)

    # ── Transaction support ─────────────────────────────────────

    def snapshot(self) -> Any:
        return copy.deepcopy(
            (self.batteries, self.modules, self._next_battery_id, self._next_module_id)
        )

    def restore(self, state: Any) -> None:
        self.batteries, self.modules, self._next_battery_id, self._next_module_id = state

    # ── Internal ────────────────────────────────────────────────

    def _require_governance(self, caller: str) -> None:
        if caller != self.governance_identity:
            raise AuthorizationError(
                "Only the governance engine may invoke mutating entity operations"
            )

    def _battery(self, battery_id: int) -> BatteryRecord:
        battery = self.batteries.get(battery_id)
        if battery is None:
            raise ValueError(f"Battery {battery_id} not found")
        return battery
