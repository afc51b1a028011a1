"""
Battery Governance — Bootstrap.

Central wiring entrypoint that:
1. Configures structured logging
2. Initializes the audit ledger (when enabled)
3. Instantiates the participant registry, permission authority, asset
   registry and governance engine, all sharing one engine identity
4. Seeds the MANUFACTURER role for every initial manufacturer and seats
   them in the voting body. The engine identity holds no role and no seat.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Any

import structlog

from battery_governance.assets.registry import AssetRegistry
from battery_governance.config import GovernanceSettings, settings
from battery_governance.governance.participants import ParticipantRegistry
from battery_governance.governance.permissions import PermissionAuthority
from battery_governance.governance.proposals import GovernanceEngine
from battery_governance.ledger.service import LedgerService
from battery_governance.passport.schema import ProposalCategory, Role

logger = logging.getLogger(__name__)


def configure_logging(config: GovernanceSettings = settings) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if config.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.log_level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=config.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@dataclass
class Ecosystem:
    """The wired-up governance components."""

    registry: ParticipantRegistry
    permission_authority: PermissionAuthority
    asset_registry: AssetRegistry
    engine: GovernanceEngine
    ledger: LedgerService | None = None


def build_ecosystem(config: GovernanceSettings = settings, ledger: Any = None) -> Ecosystem:
    """
    Build every component from settings and seed the initial roles.

    Args:
        config: Settings to build from.
        ledger: Pre-built LedgerService. When omitted and auditing is enabled,
            one is created from `config.audit_database_url` and initialized.

    Raises:
        ValueError: If there are more initial manufacturers than voting seats.
    """
    if ledger is None and config.audit_enabled:
        ledger = LedgerService(config.audit_database_url)
        ledger.initialize()

    registry = ParticipantRegistry(config.admin_identity, ledger_service=ledger)
    permission_authority = PermissionAuthority(registry, config.governance_identity)
    asset_registry = AssetRegistry(config.governance_identity)
    engine = GovernanceEngine(
        registry,
        permission_authority,
        asset_registry,
        identity=config.governance_identity,
        thresholds={
            ProposalCategory.CRITICAL: config.critical_threshold,
            ProposalCategory.ROUTINE: config.routine_threshold,
        },
        voting_body_size=config.voting_body_size,
        voting_body=config.initial_manufacturers,
        ledger_service=ledger,
    )

    for manufacturer in config.initial_manufacturers:
        registry.grant_role(config.admin_identity, Role.MANUFACTURER, manufacturer)

    return Ecosystem(
        registry=registry,
        permission_authority=permission_authority,
        asset_registry=asset_registry,
        engine=engine,
        ledger=ledger,
    )


def main() -> None:
    """Build the ecosystem, verify the audit chain and report readiness."""
    configure_logging()
    log = structlog.get_logger()

    log.info(
        "battery_governance.bootstrap.starting",
        admin=settings.admin_identity,
        engine_identity=settings.governance_identity,
        audit_enabled=settings.audit_enabled,
    )

    try:
        ecosystem = build_ecosystem(settings)
    except Exception as e:
        log.exception("battery_governance.bootstrap.fatal_error", error=str(e))
        sys.exit(1)

    if ecosystem.ledger is not None:
        is_valid, entries, msg = ecosystem.ledger.verify_chain()
        if not is_valid:
            log.critical("battery_governance.bootstrap.integrity_failure", message=msg, entries=entries)
            sys.exit(1)
        log.info("battery_governance.bootstrap.ledger_ready", entries=entries)

    log.info(
        "battery_governance.bootstrap.ready",
        manufacturers=ecosystem.registry.members_of(Role.MANUFACTURER),
        voting_body=ecosystem.engine.voting_body,
        critical_threshold=ecosystem.engine.required_votes(ProposalCategory.CRITICAL),
        routine_threshold=ecosystem.engine.required_votes(ProposalCategory.ROUTINE),
    )


if __name__ == "__main__":
    main()
