"""Battery Governance — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class GovernanceSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "BATTERY_GOV_",
        "extra": "ignore",
    }

    # ── Identities ─────────────────────────────────────────────
    admin_identity: str = "registry-admin"
    governance_identity: str = "governance-engine"
    initial_manufacturers: list[str] = []  # seated in the voting body

    # ── Voting ─────────────────────────────────────────────────
    voting_body_size: int = 3
    critical_threshold: int = 2
    routine_threshold: int = 1

    # ── Audit Ledger ───────────────────────────────────────────
    audit_enabled: bool = True
    audit_database_url: str = "sqlite:///battery_governance_audit.db"

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = GovernanceSettings()
