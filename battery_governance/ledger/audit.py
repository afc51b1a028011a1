"""
Audit Ledger Tool — checks the governance audit trail from the outside.

Reads the audit database directly, recomputes the hash chain, and
summarises what was recorded: role changes, compromise reports, proposals,
votes and executions.

Usage:
    python -m battery_governance.ledger.audit
    python -m battery_governance.ledger.audit --database-url sqlite:///audit.db
    python -m battery_governance.ledger.audit --verbose --limit 20
"""

from __future__ import annotations

import argparse
import sys
import time
from collections import Counter

from rich.console import Console
from rich.table import Table

from battery_governance.config import settings
from battery_governance.ledger.service import LedgerService

console = Console()


def run_audit(database_url: str, verbose: bool = False, limit: int | None = None) -> bool:
    """
    Verify the ledger at `database_url` and print a report.

    Args:
        database_url: SQLAlchemy connection string.
        verbose: Also list individual entries, oldest first.
        limit: List only the most recent `limit` entries.

    Returns:
        Whether the hash chain verified.
    """
    service = LedgerService(database_url)
    count = service.get_entry_count()

    console.rule("[bold]Battery governance audit[/bold]")
    console.print(f"Database: [cyan]{database_url}[/cyan]")
    console.print(f"Entries:  [bold]{count}[/bold]")

    if count == 0:
        console.print("[yellow]Nothing recorded yet; there is no chain to check.[/yellow]")
        return True

    started = time.perf_counter()
    is_valid, position, message = service.verify_chain()
    took = time.perf_counter() - started

    if is_valid:
        console.print(f"Chain:    [bold green]intact[/bold green] ({message}, {took:.3f}s)")
    else:
        console.print(f"Chain:    [bold red]BROKEN[/bold red] at position {position}")
        console.print(f"          {message}")

    entries = list(reversed(service.get_latest_entries(limit=count)))

    summary = Table(title="Recorded events")
    summary.add_column("Event type", style="green")
    summary.add_column("Count", justify="right")
    for entry_type, total in sorted(Counter(e.entry_type for e in entries).items()):
        summary.add_row(entry_type, str(total))
    console.print(summary)

    if verbose:
        shown = entries[-limit:] if limit else entries
        listing = Table(show_lines=True)
        listing.add_column("Seq", style="cyan", width=6)
        listing.add_column("Type", style="green", width=22)
        listing.add_column("Actor", style="yellow", width=25)
        listing.add_column("Proposal", width=9)
        listing.add_column("Hash", style="dim", width=18)
        listing.add_column("Recorded at", width=22)
        for entry in shown:
            proposal_id = entry.content.get("proposal_id")
            listing.add_row(
                str(entry.sequence_number),
                entry.entry_type,
                entry.actor,
                "-" if proposal_id is None else f"#{proposal_id}",
                entry.entry_hash[:16],
                str(entry.timestamp)[:19],
            )
        console.print(listing)

    return is_valid


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Verify the battery governance audit ledger"
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy connection string (defaults to BATTERY_GOV_AUDIT_DATABASE_URL)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="List individual entries",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="With --verbose, list only the most recent N entries",
    )
    args = parser.parse_args()

    is_valid = run_audit(
        args.database_url or settings.audit_database_url,
        verbose=args.verbose,
        limit=args.limit,
    )
    sys.exit(0 if is_valid else 1)


if __name__ == "__main__":
    main()
