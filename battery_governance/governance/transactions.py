"""
Transactional apply — all-or-nothing state changes across services.

Each participant exposes `snapshot()` and `restore(state)`. The helper
snapshots every participant before the body runs; if the body raises, each
participant is restored (in reverse order) and the exception propagates.
Nothing is committed explicitly: leaving the block normally keeps the
tentative changes.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Protocol

logger = logging.getLogger(__name__)


class Snapshottable(Protocol):
    """State holder that can be checkpointed and rolled back."""

    def snapshot(self) -> Any: ...

    def restore(self, state: Any) -> None: ...


@contextmanager
def transactional_apply(*participants: Snapshottable) -> Iterator[None]:
    """
    Apply the body tentatively across `participants`.

    Usage:
        with transactional_apply(proposal_checkpoint, asset_registry):
            ...  # any exception restores every participant
    """
    checkpoints = [(participant, participant.snapshot()) for participant in participants]
    try:
        yield
    except BaseException:
        for participant, state in reversed(checkpoints):
            participant.restore(state)
        logger.info("Transaction rolled back: %d participants restored", len(checkpoints))
        raise
