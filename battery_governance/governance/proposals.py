"""
Governance Engine — tiered multi-party approval for passport mutations.

Every mutating operation on the asset registry or the permission authority
is wrapped in a proposal. A proposal moves through two states:

    PENDING  → created by `propose`, collecting votes
    EXECUTED → terminal; reached the moment its vote count crosses the
               category threshold and every call succeeded

There is no rejection state: a proposal that never reaches its threshold
stays PENDING. Thresholds are fixed per category against a three-seat
voting body:

    CRITICAL — 2 votes (minting, permission grants)
    ROUTINE  — 1 vote  (data updates on an existing battery)

Only identities holding one of the body's seats may vote, and the engine's own
identity may neither propose nor vote.

The vote that crosses the threshold executes the proposal synchronously.
Execution is all-or-nothing: if any call fails, the vote itself is rolled
back along with every change the earlier calls made, and the voter gets an
ExecutionFailure. They may vote again once the cause is fixed.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Sequence

from pydantic import ValidationError as PydanticValidationError

from battery_governance.governance.errors import (
    AuthorizationError,
    ComplianceError,
    ConflictError,
    ExecutionFailure,
    StateError,
    ValidationError,
)
from battery_governance.governance.participants import ParticipantRegistry
from battery_governance.governance.transactions import transactional_apply
from battery_governance.passport.schema import (
    CallPayload,
    CallTarget,
    Capability,
    GovernanceEvent,
    GovernanceEventType,
    Proposal,
    ProposalCall,
    ProposalCategory,
    utcnow,
)

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════
# Voting Constants
# ════════════════════════════════════════════════════════════════

DEFAULT_VOTING_BODY_SIZE = 3

DEFAULT_VOTE_THRESHOLDS: dict[ProposalCategory, int] = {
    ProposalCategory.CRITICAL: 2,
    ProposalCategory.ROUTINE: 1,
}

# Actions a delegated (non-role) proposer may put in a ROUTINE proposal
DELEGABLE_ACTIONS = frozenset({"update_battery_data"})


class _ProposalCheckpoint:
    """Snapshots a single proposal inside the engine's proposal arena."""

    def __init__(self, proposals: dict[int, Proposal], proposal_id: int) -> None:
        self.proposals = proposals
        self.proposal_id = proposal_id

    def snapshot(self) -> Proposal:
        return self.proposals[self.proposal_id].model_copy(deep=True)

    def restore(self, state: Proposal) -> None:
        self.proposals[self.proposal_id] = state


class GovernanceEngine:
    """
    Proposal lifecycle: create, vote, auto-execute.

    The engine consults the ParticipantRegistry for roles and compromise
    records and the PermissionAuthority for delegated submit capabilities.
    It invokes collaborators under its own identity, which is the only
    identity they accept mutating calls from.

    Usage:
        engine = GovernanceEngine(
            registry, authority, assets, voting_body=["oem-1", "oem-2", "oem-3"]
        )
        pid = engine.propose(
            proposer="oem-1",
            targets=[CallTarget.ASSET_REGISTRY],
            values=[0],
            payloads=[{"action": "mint_battery", "arguments": {...}}],
            description="Mint battery for OEM 1",
            category=ProposalCategory.CRITICAL,
        )
        engine.cast_vote("oem-1", pid)
        engine.cast_vote("oem-2", pid)  # crosses threshold, executes
    """

    def __init__(
        self,
        registry: ParticipantRegistry,
        permission_authority: Any,
        asset_registry: Any,
        identity: str = "governance-engine",
        thresholds: dict[ProposalCategory, int] | None = None,
        voting_body_size: int = DEFAULT_VOTING_BODY_SIZE,
        voting_body: Sequence[str] = (),
        ledger_service: Any = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the engine.

        Args:
            registry: Source of roles and compromise records.
            permission_authority: Delegated capability authority; also a call target.
            asset_registry: Battery/module registry; a call target.
            identity: Identity the engine presents to collaborators.
            thresholds: Votes required per category. Defaults to 2 / 1.
            voting_body_size: Seats in the voting body; thresholds may not exceed it.
            voting_body: Identities seated at construction.
            ledger_service: Optional audit LedgerService.
            clock: Source of timestamps.

        Raises:
            ValueError: If a threshold is below 1 or above the body size, or
                the initial seats are duplicated, exceed the body size or
                include the engine identity.
        """
        self.thresholds = dict(DEFAULT_VOTE_THRESHOLDS)
        if thresholds:
            self.thresholds.update(thresholds)
        for category, required in self.thresholds.items():
            if not 1 <= required <= voting_body_size:
                raise ValueError(
                    f"Threshold for {category.value} must be between 1 and "
                    f"{voting_body_size}, got {required}"
                )

        seats = list(voting_body)
        if len(set(seats)) != len(seats):
            raise ValueError(f"Voting body lists a seat holder twice: {seats}")
        if len(seats) > voting_body_size:
            raise ValueError(
                f"Voting body has {voting_body_size} seats, got {len(seats)} members"
            )
        if identity in seats:
            raise ValueError("The engine identity cannot hold a voting seat")

        self.registry = registry
        self.permission_authority = permission_authority
        self.asset_registry = asset_registry
        self.identity = identity
        self.voting_body_size = voting_body_size
        self.seats: list[str] = seats
        self.ledger_service = ledger_service
        self.clock = clock
        self.collaborators: dict[CallTarget, Any] = {
            CallTarget.ASSET_REGISTRY: asset_registry,
            CallTarget.PERMISSION_AUTHORITY: permission_authority,
        }
        self.proposals: dict[int, Proposal] = {}
        self.events: list[GovernanceEvent] = []
        self._next_proposal_id = 0

    # ── Submission ──────────────────────────────────────────────

    def propose(
        self,
        proposer: str,
        targets: Sequence[CallTarget | str],
        values: Sequence[int],
        payloads: Sequence[CallPayload | dict[str, Any]],
        description: str,
        category: ProposalCategory | str,
        subject_id: int | None = None,
    ) -> int:
        """
        Submit a proposal.

        The three call sequences are parallel: call i invokes `payloads[i]`
        on `targets[i]` with auxiliary value `values[i]`.

        Args:
            proposer: Submitting identity.
            targets: Collaborator for each call.
            values: Auxiliary value for each call (non-negative).
            payloads: Action name and keyword arguments for each call.
            description: Human-readable description.
            category: CRITICAL or ROUTINE.
            subject_id: Battery the proposal concerns; required for delegated
                ROUTINE submissions.

        Returns:
            The new proposal id.

        Raises:
            ValidationError: If the call list is empty or inconsistent, or a
                call names its own `caller` argument.
            ComplianceError: If the proposer is compromised.
            AuthorizationError: If the proposer is the engine itself, or holds
                neither a MANUFACTURER-or-above role nor (ROUTINE only) a live
                delegated submit capability.
        """
        calls = self._build_calls(targets, values, payloads)
        category = self._coerce_category(category)
        if subject_id is not None and subject_id <= 0:
            raise ValidationError(f"Invalid subject id: {subject_id}")

        if self.registry.is_compromised(proposer):
            raise ComplianceError(
                f"Identity {proposer} is compromised and may not submit proposals"
            )

        delegated = self._authorize_proposer(proposer, calls, category, subject_id)

        proposal = Proposal(
            id=self._next_proposal_id,
            proposer=proposer,
            calls=calls,
            description=description,
            category=category,
            subject_id=subject_id,
            created_at=self.clock(),
        )
        event = self._event(
            GovernanceEventType.PROPOSAL_CREATED,
            actor=proposer,
            proposal_id=proposal.id,
            detail={
                "category": category.value,
                "subject_id": subject_id,
                "description": description,
                "calls": [call.model_dump(mode="json") for call in calls],
                "delegated": delegated,
            },
        )
        self._append_to_ledger(event)

        self.proposals[proposal.id] = proposal
        self._next_proposal_id += 1
        self.events.append(event)

        logger.info(
            "Proposal created: #%d [%s] proposer=%s calls=%d delegated=%s desc='%s'",
            proposal.id, category.value, proposer, len(calls), delegated, description[:80],
        )
        return proposal.id

    # ── Voting ──────────────────────────────────────────────────

    def cast_vote(self, voter: str, proposal_id: int) -> Proposal:
        """
        Vote in favour of a proposal, executing it if the threshold is crossed.

        Returns:
            A detached copy of the proposal after the vote.

        Raises:
            ValidationError: If the proposal does not exist.
            StateError: If the proposal is executed or `voter` already voted.
            ComplianceError: If `voter` is compromised.
            AuthorizationError: If `voter` is the engine, holds no
                MANUFACTURER-or-above role, or holds no seat. Delegated
                permissions never confer a vote.
            ExecutionFailure: If execution failed; the vote was rolled back.
        """
        proposal = self._require_proposal(proposal_id)

        if proposal.executed:
            raise StateError(f"Proposal {proposal_id} has already been executed")
        if voter in proposal.voters:
            raise StateError(f"{voter} has already voted on proposal {proposal_id}")
        if voter == self.identity:
            raise AuthorizationError("The governance engine cannot vote on proposals")
        if self.registry.is_compromised(voter):
            raise ComplianceError(f"Identity {voter} is compromised and may not vote")
        if not self.registry.authorize(voter, Capability.CAST_VOTE):
            raise AuthorizationError(
                f"{voter} holds no voting role; delegated permissions do not confer votes"
            )
        if voter not in self.seats:
            raise AuthorizationError(f"{voter} holds no seat in the voting body")

        required = self.required_votes(proposal.category)
        crosses_threshold = proposal.for_votes + 1 >= required

        participants: list[Any] = [_ProposalCheckpoint(self.proposals, proposal_id)]
        if crosses_threshold:
            participants.extend(self.collaborators.values())

        pending_events: list[GovernanceEvent] = []
        with transactional_apply(*participants):
            proposal = self.proposals[proposal_id]
            proposal.voters.append(voter)
            proposal.for_votes += 1
            pending_events.append(self._event(
                GovernanceEventType.VOTE_CAST,
                actor=voter,
                proposal_id=proposal_id,
                detail={"for_votes": proposal.for_votes, "required": required},
            ))

            if crosses_threshold:
                results = self._execute(proposal)
                proposal.executed = True
                proposal.executed_at = self.clock()
                pending_events.append(self._event(
                    GovernanceEventType.PROPOSAL_EXECUTED,
                    actor=voter,
                    proposal_id=proposal_id,
                    detail={"for_votes": proposal.for_votes, "results": results},
                ))

            # One ledger entry per vote, written inside the transaction
            self._append_to_ledger(pending_events[-1])

        self.events.extend(pending_events)
        logger.info(
            "Vote cast: proposal=#%d voter=%s for_votes=%d/%d executed=%s",
            proposal_id, voter, proposal.for_votes, required, proposal.executed,
        )
        return proposal.model_copy(deep=True)

    # ── Voting body ─────────────────────────────────────────────

    def assign_seat(self, caller: str, identity: str) -> None:
        """
        Seat `identity` in the voting body.

        Raises:
            AuthorizationError: If `caller` is not ADMIN, or `identity` is the
                engine or holds no voting role.
            ConflictError: If `identity` is already seated.
            StateError: If every seat is taken.
        """
        self._require_seat_authority(caller)
        if identity == self.identity:
            raise AuthorizationError("The engine identity cannot hold a voting seat")
        if not self.registry.authorize(identity, Capability.CAST_VOTE):
            raise AuthorizationError(f"{identity} holds no voting role")
        if identity in self.seats:
            raise ConflictError(f"{identity} already holds a seat")
        if len(self.seats) >= self.voting_body_size:
            raise StateError(
                f"All {self.voting_body_size} seats of the voting body are taken"
            )

        event = self._event(
            GovernanceEventType.SEAT_ASSIGNED,
            actor=caller,
            proposal_id=None,
            detail={"identity": identity},
        )
        self._append_to_ledger(event)
        self.seats.append(identity)
        self.events.append(event)
        logger.info("Seat assigned: %s by %s (%d/%d)", identity, caller,
                    len(self.seats), self.voting_body_size)

    def vacate_seat(self, caller: str, identity: str) -> None:
        """
        Remove `identity` from the voting body.

        Votes it already cast on pending proposals still count.

        Raises:
            AuthorizationError: If `caller` is not ADMIN.
            StateError: If `identity` holds no seat.
        """
        self._require_seat_authority(caller)
        if identity not in self.seats:
            raise StateError(f"{identity} holds no seat in the voting body")

        event = self._event(
            GovernanceEventType.SEAT_VACATED,
            actor=caller,
            proposal_id=None,
            detail={"identity": identity},
        )
        self._append_to_ledger(event)
        self.seats.remove(identity)
        self.events.append(event)
        logger.info("Seat vacated: %s by %s", identity, caller)

    def is_seated(self, identity: str) -> bool:
        return identity in self.seats

    @property
    def voting_body(self) -> list[str]:
        return list(self.seats)

    # ── Read-only lookups ───────────────────────────────────────

    def get_proposal(self, proposal_id: int) -> Proposal | None:
        """Detached copy of a proposal, or None if it does not exist."""
        proposal = self.proposals.get(proposal_id)
        return proposal.model_copy(deep=True) if proposal else None

    def vote_count(self, proposal_id: int) -> int:
        return self._require_proposal(proposal_id).for_votes

    def is_executed(self, proposal_id: int) -> bool:
        return self._require_proposal(proposal_id).executed

    def has_voted(self, proposal_id: int, identity: str) -> bool:
        return identity in self._require_proposal(proposal_id).voters

    def required_votes(self, category: ProposalCategory) -> int:
        return self.thresholds[category]

    @property
    def proposal_count(self) -> int:
        return self._next_proposal_id

    def list_proposals(self, pending_only: bool = False) -> list[Proposal]:
        """All proposals in id order, optionally only those still PENDING."""
        return [
            p.model_copy(deep=True) for p in self.proposals.values()
            if not (pending_only and p.executed)
        ]

    # ── Internal ────────────────────────────────────────────────

    def _build_calls(
        self,
        targets: Sequence[CallTarget | str],
        values: Sequence[int],
        payloads: Sequence[CallPayload | dict[str, Any]],
    ) -> list[ProposalCall]:
        if not targets:
            raise ValidationError("A proposal must contain at least one call")
        if len(values) != len(targets) or len(payloads) != len(targets):
            raise ValidationError(
                f"Call sequences differ in length: targets={len(targets)} "
                f"values={len(values)} payloads={len(payloads)}"
            )

        calls = []
        for index, (target, value, payload) in enumerate(zip(targets, values, payloads)):
            try:
                call = ProposalCall(target=target, value=value, payload=payload)
            except PydanticValidationError as exc:
                raise ValidationError(f"Call {index} is malformed: {exc}") from exc

            allowed = self.collaborators[call.target].MUTATING_ACTIONS
            if call.payload.action not in allowed:
                raise ValidationError(
                    f"Call {index}: '{call.payload.action}' is not a mutating "
                    f"action of {call.target.value}"
                )
            # The engine supplies `caller` itself at execution time
            if "caller" in call.payload.arguments:
                raise ValidationError(f"Call {index}: arguments may not name a caller")
            calls.append(call)
        return calls

    @staticmethod
    def _coerce_category(category: ProposalCategory | str) -> ProposalCategory:
        try:
            return ProposalCategory(category)
        except ValueError as exc:
            raise ValidationError(f"Unknown proposal category: {category!r}") from exc

    def _authorize_proposer(
        self,
        proposer: str,
        calls: list[ProposalCall],
        category: ProposalCategory,
        subject_id: int | None,
    ) -> bool:
        """Returns True when the proposer is authorized by delegation."""
        if proposer == self.identity:
            raise AuthorizationError("The governance engine cannot submit proposals")
        if self.registry.authorize(proposer, Capability.SUBMIT_PROPOSAL):
            return False

        if category == ProposalCategory.CRITICAL:
            raise AuthorizationError(
                f"{proposer} holds no proposing role; critical proposals "
                f"cannot be submitted under delegation"
            )
        if subject_id is None:
            raise AuthorizationError(
                f"{proposer} holds no proposing role and named no subject "
                f"for a delegated submission"
            )

        check = self.permission_authority.check_submit(proposer, subject_id)
        if not check.is_allowed:
            raise AuthorizationError(
                f"{proposer} lacks a live submit capability for battery "
                f"{subject_id}: {check.reason}"
            )

        for index, call in enumerate(calls):
            scoped = (
                call.target == CallTarget.ASSET_REGISTRY
                and call.payload.action in DELEGABLE_ACTIONS
                and call.payload.arguments.get("battery_id") == subject_id
            )
            if not scoped:
                raise AuthorizationError(
                    f"Call {index} falls outside {proposer}'s delegation for "
                    f"battery {subject_id}"
                )
        return True

    def _execute(self, proposal: Proposal) -> list[Any]:
        results = []
        for index, call in enumerate(proposal.calls):
            operation = getattr(self.collaborators[call.target], call.payload.action)
            try:
                results.append(operation(caller=self.identity, **call.payload.arguments))
            except Exception as exc:
                logger.warning(
                    "Proposal #%d execution failed at call %d (%s.%s): %s",
                    proposal.id, index, call.target.value, call.payload.action, exc,
                )
                raise ExecutionFailure(proposal.id, index, exc) from exc

        logger.info("Proposal executed: #%d calls=%d", proposal.id, len(proposal.calls))
        return results

    def _require_seat_authority(self, caller: str) -> None:
        if not self.registry.authorize(caller, Capability.MANAGE_VOTING_BODY):
            raise AuthorizationError(f"Only ADMIN may change the voting body; {caller} is not ADMIN")

    def _require_proposal(self, proposal_id: int) -> Proposal:
        proposal = self.proposals.get(proposal_id)
        if proposal is None:
            raise ValidationError(f"Proposal {proposal_id} not found")
        return proposal

    def _event(
        self,
        event_type: GovernanceEventType,
        actor: str,
        proposal_id: int | None,
        detail: dict[str, Any],
    ) -> GovernanceEvent:
        return GovernanceEvent(
            event_type=event_type,
            actor=actor,
            proposal_id=proposal_id,
            detail=detail,
            timestamp=self.clock(),
        )

    def _append_to_ledger(self, event: GovernanceEvent) -> None:
        if self.ledger_service is None:
            return
        self.ledger_service.append(
            entry_type=event.event_type.value,
            actor=event.actor,
            content=event.model_dump(mode="json"),
        )
