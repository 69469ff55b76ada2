"""
Deletion Safety Guard

Blocks a run whose plan deletes more files than the configured ceilings
allow. A blocked run performs no provider mutation and no state write.

Author: CADSync Project
License: MIT
"""

from dataclasses import dataclass, field
from typing import Dict, List

from ..utils.logger import get_logger
from .exceptions import DeletionBlockedError
from .models import SyncPlan

logger = get_logger(__name__)

DEFAULT_MAX_DELETIONS = 50
DEFAULT_MAX_DELETION_RATIO = 0.30


@dataclass(frozen=True)
class GuardDecision:
    """Allow or block, with the numbers behind it."""
    allowed: bool
    deletion_count: int
    deletion_ratio: float
    known_files: int
    reasons: List[str] = field(default_factory=list)
    per_location: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'allowed': self.allowed,
            'deletion_count': self.deletion_count,
            'deletion_ratio': self.deletion_ratio,
            'known_files': self.known_files,
            'reasons': list(self.reasons),
            'per_location': dict(self.per_location)
        }


class DeletionSafetyGuard:
    """
    Gate applied to every plan before execution.

    A ceiling must be strictly exceeded to block: 30 deletions out of 100
    known files pass a 30% ceiling, 31 do not.
    """

    def __init__(
        self,
        max_deletions: int = DEFAULT_MAX_DELETIONS,
        max_deletion_ratio: float = DEFAULT_MAX_DELETION_RATIO
    ):
        """
        Initialize guard.

        Args:
            max_deletions: Absolute ceiling on paths deleted per run
            max_deletion_ratio: Ceiling on deletions / known files (0-1)
        """
        self.max_deletions = max_deletions
        self.max_deletion_ratio = max_deletion_ratio

    def evaluate(self, plan: SyncPlan) -> GuardDecision:
        """Decide whether ``plan`` may execute."""
        per_location = {loc.value: n for loc, n in plan.deletions_by_location().items()}
        reasons = []

        if plan.deletion_count > self.max_deletions:
            reasons.append(
                f"{plan.deletion_count} deletions exceed the limit of {self.max_deletions} files"
            )

        if plan.deletion_ratio > self.max_deletion_ratio:
            reasons.append(
                f"{plan.deletion_count} of {plan.known_files} known files "
                f"({plan.deletion_ratio:.1%}) exceed the limit of {self.max_deletion_ratio:.1%}"
            )

        if reasons:
            breakdown = ", ".join(f"{name}: {n}" for name, n in per_location.items())
            reasons.append(f"deletions per location: {breakdown}")
            if not plan.complete:
                missing = sorted(loc.value for loc in plan.scope - plan.active_locations)
                reasons.append(f"locations excluded from this run: {', '.join(missing)}")
            logger.warning(f"Deletion safety guard blocked the run: {'; '.join(reasons)}")
        elif plan.deletion_count:
            logger.info(
                f"Deletion safety guard allowed {plan.deletion_count} deletions "
                f"({plan.deletion_ratio:.1%} of {plan.known_files})"
            )

        return GuardDecision(
            allowed=not reasons,
            deletion_count=plan.deletion_count,
            deletion_ratio=plan.deletion_ratio,
            known_files=plan.known_files,
            reasons=reasons,
            per_location=per_location
        )

    def enforce(self, plan: SyncPlan) -> GuardDecision:
        """
        Evaluate ``plan`` and raise if it is blocked.

        Raises:
            DeletionBlockedError: If a ceiling is exceeded
        """
        decision = self.evaluate(plan)
        if not decision.allowed:
            raise DeletionBlockedError(decision.reasons)
        return decision
