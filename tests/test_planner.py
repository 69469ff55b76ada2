"""
Unit Tests for the Sync Planner

Author: CADSync Project
License: MIT
"""

from datetime import datetime, timezone

import pytest

from cadsync.core.models import SyncAction, SyncState
from cadsync.core.planner import SyncPlanner
from cadsync.providers.base import ALL_LOCATIONS, FileEntry, Location

LOCAL, CLOUD, SHARE = Location.LOCAL, Location.CLOUD, Location.SHARE
H0, H1, H2 = "a" * 64, "b" * 64, "c" * 64


def entry(path, digest, modified=None):
    return FileEntry(
        path=path,
        size=10,
        modified_time=modified or datetime(2024, 5, 1, tzinfo=timezone.utc),
        content_hash=digest
    )


def state(path, digest, presence=ALL_LOCATIONS):
    return SyncState(
        path=path,
        last_synced_hash=digest,
        last_synced_at=datetime(2024, 4, 1, tzinfo=timezone.utc),
        presence=frozenset(presence)
    )


class TestSyncPlanner:
    """Test suite for plan construction."""

    @pytest.fixture
    def planner(self):
        return SyncPlanner(ALL_LOCATIONS)

    def test_local_edit_plans_push(self, planner):
        """Test part.sldprt edited locally is pushed to cloud and share."""
        snapshots = {
            LOCAL: [entry("part.sldprt", H1)],
            CLOUD: [entry("part.sldprt", H0)],
            SHARE: [entry("part.sldprt", H0)],
        }

        plan = planner.plan(snapshots, {"part.sldprt": state("part.sldprt", H0)})

        item = plan.items[0]
        assert item.action == SyncAction.PUSH
        assert item.targets == (CLOUD, SHARE)
        assert item.source_hash == H1
        assert plan.conflicts == []

    def test_cloud_edit_plans_pull(self, planner):
        """Test a remote edit is a pull."""
        snapshots = {
            LOCAL: [entry("part.sldprt", H0)],
            CLOUD: [entry("part.sldprt", H2)],
            SHARE: [entry("part.sldprt", H0)],
        }

        item = planner.plan(snapshots, {"part.sldprt": state("part.sldprt", H0)}).items[0]

        assert item.action == SyncAction.PULL
        assert item.sources == (CLOUD,)
        assert item.targets == (LOCAL, SHARE)

    def test_divergent_edits_conflict_with_details(self, planner):
        """Test conflict items carry per-location hash and time."""
        cloud_time = datetime(2024, 5, 2, 8, 30, tzinfo=timezone.utc)
        snapshots = {
            LOCAL: [entry("part.sldprt", H1)],
            CLOUD: [entry("part.sldprt", H2, cloud_time)],
            SHARE: [entry("part.sldprt", H0)],
        }

        plan = planner.plan(snapshots, {"part.sldprt": state("part.sldprt", H0)})

        item = plan.items[0]
        assert item.action == SyncAction.CONFLICT
        assert item.observation_for(LOCAL).content_hash == H1
        assert item.observation_for(CLOUD).content_hash == H2
        assert item.observation_for(CLOUD).modified_time == cloud_time
        assert item.affected_locations == (LOCAL, CLOUD, SHARE)

    def test_same_hash_different_times_is_no_op(self, planner):
        """Test modification times never cause a conflict."""
        snapshots = {
            LOCAL: [entry("a.step", H0, datetime(2020, 1, 1, tzinfo=timezone.utc))],
            CLOUD: [entry("a.step", H0, datetime(2024, 1, 1, tzinfo=timezone.utc))],
            SHARE: [entry("a.step", H0, datetime(2022, 1, 1, tzinfo=timezone.utc))],
        }

        plan = planner.plan(snapshots, {"a.step": state("a.step", H0)})

        assert plan.items[0].action == SyncAction.NO_OP
        assert plan.actionable == []

    def test_union_of_paths(self, planner):
        """Test every path seen anywhere or known gets an item."""
        snapshots = {
            LOCAL: [entry("only-local.step", H1)],
            CLOUD: [entry("only-cloud.step", H2)],
            SHARE: [],
        }
        states = {"gone.step": state("gone.step", H0, presence={SHARE})}

        plan = planner.plan(snapshots, states)

        assert [i.path for i in plan.items] == ["gone.step", "only-cloud.step", "only-local.step"]
        assert plan.known_files == 1

    def test_unavailable_location_not_deletion_evidence(self, planner):
        """Test an excluded share never produces deletions or targets."""
        snapshots = {
            LOCAL: [entry("a.step", H0), entry("b.step", H1)],
            CLOUD: [entry("a.step", H0), entry("b.step", H1)],
        }
        states = {"a.step": state("a.step", H0), "b.step": state("b.step", H0)}

        plan = planner.plan(snapshots, states)

        assert plan.deletion_count == 0
        assert not plan.complete
        for item in plan.items:
            assert SHARE not in item.targets

    def test_deletion_counters(self, planner):
        """Test deletion count and ratio use the pre-run state size."""
        states = {f"f{i}.step": state(f"f{i}.step", H0) for i in range(10)}
        snapshots = {
            LOCAL: [entry(f"f{i}.step", H0) for i in range(3, 10)],
            CLOUD: [entry(f"f{i}.step", H0) for i in range(10)],
            SHARE: [entry(f"f{i}.step", H0) for i in range(10)],
        }

        plan = planner.plan(snapshots, states)

        assert plan.deletion_count == 3
        assert plan.deletion_ratio == pytest.approx(0.3)
        assert plan.deletions_by_location() == {LOCAL: 0, CLOUD: 3, SHARE: 3}

    def test_held_conflict_stays_conflict_while_incomplete(self, planner):
        """Test a pending conflict is not propagated when a location is missing."""
        snapshots = {
            LOCAL: [entry("part.sldprt", H1)],
            SHARE: [entry("part.sldprt", H0)],
        }

        plan = planner.plan(
            snapshots,
            {"part.sldprt": state("part.sldprt", H0)},
            held_paths={"part.sldprt"}
        )

        assert plan.items[0].action == SyncAction.CONFLICT
        assert plan.items[0].targets == ()

    def test_unconfigured_location_is_out_of_scope(self):
        """Test a two-location scope plans complete runs."""
        planner = SyncPlanner({LOCAL, SHARE})
        snapshots = {LOCAL: [entry("a.step", H1)], SHARE: []}

        plan = planner.plan(snapshots, {})

        assert plan.complete
        assert plan.items[0].targets == (SHARE,)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
