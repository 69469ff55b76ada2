"""
Unit Tests for the Deletion Safety Guard

Author: CADSync Project
License: MIT
"""

import pytest

from cadsync.core.exceptions import DeletionBlockedError
from cadsync.core.models import SyncAction, SyncPlan, SyncPlanItem
from cadsync.core.safety_guard import DeletionSafetyGuard
from cadsync.providers.base import ALL_LOCATIONS, Location


def make_plan(deletions: int, known_files: int, others: int = 0, active=ALL_LOCATIONS) -> SyncPlan:
    items = [
        SyncPlanItem(
            path=f"del-{i}.step",
            action=SyncAction.DELETE,
            sources=(Location.LOCAL,),
            targets=(Location.CLOUD, Location.SHARE)
        )
        for i in range(deletions)
    ]
    items += [SyncPlanItem(path=f"keep-{i}.step", action=SyncAction.NO_OP) for i in range(others)]
    return SyncPlan(
        items=items,
        known_files=known_files,
        active_locations=frozenset(active),
        scope=frozenset(ALL_LOCATIONS)
    )


class TestDeletionSafetyGuard:
    """Test suite for deletion thresholds."""

    def test_exactly_thirty_percent_allowed(self):
        """Test 30 of 100 deletions does not strictly exceed 30%."""
        decision = DeletionSafetyGuard().evaluate(make_plan(30, 100, others=70))

        assert decision.allowed
        assert decision.deletion_ratio == pytest.approx(0.30)

    def test_thirty_one_percent_blocked(self):
        """Test 31 of 100 deletions is blocked."""
        decision = DeletionSafetyGuard().evaluate(make_plan(31, 100, others=69))

        assert not decision.allowed
        assert any("31 of 100" in reason for reason in decision.reasons)

    def test_count_ceiling_blocks_despite_loose_ratio(self):
        """Test 51 deletions exceed the 50-file ceiling with a 90% ratio ceiling."""
        guard = DeletionSafetyGuard(max_deletions=50, max_deletion_ratio=0.90)

        decision = guard.evaluate(make_plan(51, 50))

        assert not decision.allowed
        assert "51 deletions exceed the limit of 50 files" in decision.reasons[0]

    def test_count_ceiling_is_strict(self):
        """Test exactly 50 deletions pass a 50-file ceiling."""
        guard = DeletionSafetyGuard(max_deletions=50, max_deletion_ratio=1.0)

        assert guard.evaluate(make_plan(50, 100)).allowed

    def test_reasons_include_per_location_breakdown(self):
        """Test a block explains deletions per location."""
        decision = DeletionSafetyGuard(max_deletions=1).evaluate(make_plan(2, 100))

        assert decision.per_location == {"local": 0, "cloud": 2, "share": 2}
        assert any("cloud: 2" in reason for reason in decision.reasons)

    def test_reasons_name_excluded_locations(self):
        """Test a block mentions locations missing from the run."""
        plan = make_plan(40, 100, active=(Location.LOCAL, Location.CLOUD))

        decision = DeletionSafetyGuard().evaluate(plan)

        assert any("excluded" in reason and "share" in reason for reason in decision.reasons)

    def test_no_deletions_allowed(self):
        """Test a plan without deletions passes with an empty state store."""
        decision = DeletionSafetyGuard().evaluate(make_plan(0, 0, others=5))

        assert decision.allowed
        assert decision.deletion_ratio == 0.0

    def test_enforce_raises(self):
        """Test enforce raises with the reasons."""
        with pytest.raises(DeletionBlockedError) as exc_info:
            DeletionSafetyGuard().enforce(make_plan(31, 100))

        assert exc_info.value.reasons


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
