"""
Unit Tests for the Sync Executor and Progress Channel

Author: CADSync Project
License: MIT
"""

import threading

import pytest

from cadsync.core.executor import SyncExecutor, TransferError
from cadsync.core.models import ProgressOperation
from cadsync.core.planner import SyncPlanner
from cadsync.core.progress import ProgressChannel
from cadsync.providers.base import ALL_LOCATIONS, Location

from fakes import sha256

LOCAL, CLOUD, SHARE = Location.LOCAL, Location.CLOUD, Location.SHARE


def plan_for(providers, state_store):
    snapshots = {loc: provider.list() for loc, provider in providers.items()}
    return SyncPlanner(ALL_LOCATIONS).plan(snapshots, state_store.load_all())


class TestSyncExecutor:
    """Test suite for plan execution."""

    @pytest.fixture
    def executor(self, providers, state_store):
        return SyncExecutor(providers, state_store, max_workers=2)

    def test_new_files_converge(self, executor, providers, state_store):
        """Test files at one location reach all three."""
        providers[LOCAL].put("parts/bolt.step", b"bolt v1")
        providers[CLOUD].put("drawings/frame.dwg", b"frame v1")

        result = executor.execute(plan_for(providers, state_store))

        assert result.synced == 2
        assert result.failed == 0
        for provider in providers.values():
            assert provider.files == {"parts/bolt.step": b"bolt v1", "drawings/frame.dwg": b"frame v1"}
        assert state_store.get("parts/bolt.step").last_synced_hash == sha256(b"bolt v1")
        assert state_store.get("parts/bolt.step").presence == set(ALL_LOCATIONS)

    def test_hash_mismatch_fails_path_without_state(self, executor, providers, state_store):
        """Test content committed with a different hash is a failure."""
        providers[LOCAL].put("part.sldprt", b"geometry")
        providers[SHARE].corrupt_store.add("part.sldprt")

        result = executor.execute(plan_for(providers, state_store))

        assert result.failed == 1
        assert "hash mismatch at share" in result.failures["part.sldprt"]
        assert state_store.get("part.sldprt") is None
        # The healthy target still received the file
        assert providers[CLOUD].files["part.sldprt"] == b"geometry"

    def test_failure_isolated_per_path(self, executor, providers, state_store):
        """Test one failing path does not stop others."""
        providers[LOCAL].put("a.step", b"a")
        providers[LOCAL].put("b.step", b"b")
        providers[CLOUD].fail_store.add("a.step")

        result = executor.execute(plan_for(providers, state_store))

        assert result.failed == 1
        assert result.synced == 1
        assert state_store.get("a.step") is None
        assert state_store.get("b.step") is not None

    def test_fetch_falls_back_to_other_source(self, executor, providers, state_store):
        """Test the second agreeing source is used when the first fails."""
        providers[LOCAL].put("part.sldprt", b"agreed")
        providers[CLOUD].put("part.sldprt", b"agreed")
        providers[LOCAL].fail_fetch.add("part.sldprt")

        result = executor.execute(plan_for(providers, state_store))

        assert result.synced == 1
        assert providers[SHARE].files["part.sldprt"] == b"agreed"

    def test_source_changed_after_snapshot(self, executor, providers, state_store):
        """Test a source edited after the snapshot is not distributed."""
        providers[LOCAL].put("part.sldprt", b"planned")
        plan = plan_for(providers, state_store)
        providers[LOCAL].put("part.sldprt", b"edited meanwhile")

        result = executor.execute(plan)

        assert result.failed == 1
        assert "part.sldprt" not in providers[CLOUD].files

    def test_deletion_of_missing_file_succeeds(self, executor, providers):
        """Test deleting an already-absent file is not an error."""
        providers[CLOUD].put("gone.step", b"x")

        executor.delete("gone.step", [CLOUD, SHARE])

        assert "gone.step" not in providers[CLOUD].files

    def test_deletion_failure_raises(self, executor, providers):
        """Test removal errors are reported."""
        providers[CLOUD].put("stuck.step", b"x")
        providers[CLOUD].fail_remove.add("stuck.step")

        with pytest.raises(TransferError, match="remove at cloud failed"):
            executor.delete("stuck.step", [CLOUD])

    def test_incomplete_plan_writes_no_state(self, providers, state_store):
        """Test transfers among reachable locations do not advance state."""
        providers[LOCAL].put("part.sldprt", b"v1")
        snapshots = {LOCAL: providers[LOCAL].list(), CLOUD: providers[CLOUD].list()}
        plan = SyncPlanner(ALL_LOCATIONS).plan(snapshots, {})

        result = SyncExecutor(providers, state_store).execute(plan)

        assert result.synced == 1
        assert providers[CLOUD].files["part.sldprt"] == b"v1"
        assert "part.sldprt" not in providers[SHARE].files
        assert state_store.count() == 0

    def test_cancel_before_start(self, executor, providers, state_store):
        """Test a set cancel event starts no file."""
        providers[LOCAL].put("part.sldprt", b"v1")
        cancel = threading.Event()
        cancel.set()

        result = executor.execute(plan_for(providers, state_store), cancel_event=cancel)

        assert result.cancelled
        assert result.synced == 0
        assert providers[CLOUD].mutations == []

    def test_progress_is_monotonic_and_completes(self, providers, state_store):
        """Test processed counts never decrease and the run ends completed."""
        channel = ProgressChannel()
        for i in range(20):
            providers[LOCAL].put(f"parts/p{i}.step", f"part {i}".encode())

        SyncExecutor(providers, state_store, progress=channel, max_workers=4).execute(
            plan_for(providers, state_store)
        )

        events = channel.drain()
        processed = [event.files_processed for event in events]
        assert processed == sorted(processed)
        assert events[-1].operation == ProgressOperation.COMPLETED
        assert events[-1].files_processed == 20
        assert events[-1].percentage == 100.0

    def test_record_only_items_report_verifying(self, providers, state_store):
        """Test files already identical everywhere are not reported as transfers."""
        channel = ProgressChannel()
        for provider in providers.values():
            provider.put("part.sldprt", b"same")

        SyncExecutor(providers, state_store, progress=channel).execute(plan_for(providers, state_store))

        operations = [e.operation for e in channel.drain() if e.current_file == "part.sldprt"]
        assert operations == [ProgressOperation.VERIFYING]
        assert state_store.get("part.sldprt") is not None


class TestProgressChannel:
    """Test suite for the progress channel."""

    def test_percentage_rounding(self):
        """Test percentage is rounded to one decimal."""
        channel = ProgressChannel()

        event = channel.emit("a.step", 1, 3, ProgressOperation.TRANSFERRING)

        assert event.percentage == 33.3

    def test_counter_never_goes_backwards(self):
        """Test a lower processed count is raised to the published maximum."""
        channel = ProgressChannel()
        channel.emit("a.step", 5, 10, ProgressOperation.TRANSFERRING)

        event = channel.emit("b.step", 3, 10, ProgressOperation.TRANSFERRING)

        assert event.files_processed == 5

    def test_start_run_resets(self):
        """Test a new run starts from zero."""
        channel = ProgressChannel()
        channel.emit("a.step", 5, 10, ProgressOperation.TRANSFERRING)

        event = channel.start_run(0)

        assert event.files_processed == 0
        assert event.operation == ProgressOperation.SCANNING

    def test_drops_oldest_when_full(self):
        """Test a full channel keeps the newest events."""
        channel = ProgressChannel(max_size=3)
        for i in range(5):
            channel.emit(f"f{i}", i, 5, ProgressOperation.TRANSFERRING)

        events = channel.drain()

        assert [e.current_file for e in events] == ["f2", "f3", "f4"]
        assert channel.get_statistics()['total_dropped'] == 2

    def test_get_timeout(self):
        """Test get returns None when no event arrives."""
        assert ProgressChannel().get(timeout=0.01) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
