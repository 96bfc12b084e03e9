from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from domain.models import Phase, User
from domain.repositories import PhaseRepository

from .results import OperationResult

logger = logging.getLogger(__name__)


@dataclass
class PhaseResult(OperationResult):
    """Result of a phase transition, carrying the phase after it."""

    phase: Optional[Phase] = None


def load_phase(phase_repo: PhaseRepository) -> Phase:
    """Return the current phase; missing or unknown values mean registration."""

    return Phase.parse(phase_repo.get_current_phase())


def _move(user: User, phase_repo: PhaseRepository, forward: bool) -> PhaseResult:
    if not user.is_admin:
        return PhaseResult(
            status=403,
            error_message="Only the administrator can change the phase.",
        )

    current = load_phase(phase_repo)
    target = current.next() if forward else current.prev()
    if target != current:
        phase_repo.set_current_phase(target)
        logger.info("Phase changed from %s to %s by %s", current.value, target.value, user.email)

    return PhaseResult(phase=target)


def advance_phase(user: User, phase_repo: PhaseRepository) -> PhaseResult:
    """Move to the next phase. In the last phase this is a no-op."""

    return _move(user, phase_repo, forward=True)


def retreat_phase(user: User, phase_repo: PhaseRepository) -> PhaseResult:
    """Move to the previous phase. In the first phase this is a no-op."""

    return _move(user, phase_repo, forward=False)
