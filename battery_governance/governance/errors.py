"""
Governance error taxonomy.

Every rejected call surfaces one of these kinds to the caller. None of them
is retried by the engine; the enclosing operation is aborted and all state
it touched is left exactly as it was before the call.
"""

from __future__ import annotations


class GovernanceError(Exception):
    """Base class for every rejection raised by the governance layer."""
    pass


class ValidationError(GovernanceError, ValueError):
    """Malformed input (empty call list, mismatched call sequences, unknown ids)."""
    pass


class AuthorizationError(GovernanceError):
    """The caller lacks the role or delegated capability the operation needs."""
    pass


class ComplianceError(GovernanceError):
    """The caller holds an active compromise record."""
    pass


class StateError(GovernanceError):
    """The operation is not valid in the target's current state."""
    pass


class ConflictError(StateError):
    """A compromise record is already active for the identity."""
    pass


class ExecutionFailure(GovernanceError):
    """
    A downstream call failed during threshold-triggered execution.

    The triggering vote has been rolled back; the caller may vote again once
    the underlying condition is fixed.
    """

    def __init__(self, proposal_id: int, call_index: int, cause: BaseException) -> None:
        self.proposal_id = proposal_id
        self.call_index = call_index
        self.cause = cause
        super().__init__(
            f"Proposal {proposal_id} failed at call {call_index}: "
            f"{type(cause).__name__}: {cause}"
        )
