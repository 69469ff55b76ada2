"""
Unit Tests for the Conflict Detector

Author: CADSync Project
License: MIT
"""

import itertools

import pytest

from cadsync.core.conflict_detector import Verdict, classify
from cadsync.providers.base import Location

LOCAL, CLOUD, SHARE = Location.LOCAL, Location.CLOUD, Location.SHARE
H0, H1, H2 = "h0" * 32, "h1" * 32, "h2" * 32


class TestKnownPaths:
    """Classification against a recorded baseline."""

    def test_unchanged_everywhere(self):
        """Test identical observations are a no-op without state write."""
        result = classify(H0, {LOCAL: H0, CLOUD: H0, SHARE: H0})

        assert result.verdict == Verdict.NO_OP
        assert result.record_state is False

    def test_single_modification_propagates(self):
        """Test local edit is pushed to cloud and share."""
        result = classify(H0, {LOCAL: H1, CLOUD: H0, SHARE: H0})

        assert result.verdict == Verdict.PROPAGATE
        assert result.content_hash == H1
        assert result.sources == (LOCAL,)
        assert result.targets == (CLOUD, SHARE)

    def test_single_deletion_propagates(self):
        """Test a deletion at one location deletes at the others."""
        result = classify(H0, {LOCAL: H0, CLOUD: None, SHARE: H0})

        assert result.verdict == Verdict.PROPAGATE
        assert result.deletes
        assert result.sources == (CLOUD,)
        assert result.targets == (LOCAL, SHARE)

    def test_divergent_modifications_conflict(self):
        """Test two different edits conflict."""
        result = classify(H0, {LOCAL: H1, CLOUD: H2, SHARE: H0})

        assert result.verdict == Verdict.CONFLICT
        assert result.targets == ()

    def test_deletion_versus_modification_conflicts(self):
        """Test delete at one place and edit at another is never auto-resolved."""
        result = classify(H0, {LOCAL: None, CLOUD: H1, SHARE: H0})

        assert result.verdict == Verdict.CONFLICT
        assert "deleted at local" in result.reason

    def test_converged_edits_record_state(self):
        """Test identical concurrent edits need no transfer but update state."""
        result = classify(H0, {LOCAL: H1, CLOUD: H1, SHARE: H1})

        assert result.verdict == Verdict.NO_OP
        assert result.record_state is True
        assert result.content_hash == H1

    def test_partial_convergence_pushes_to_remaining(self):
        """Test two locations agreeing on a new hash update the third."""
        result = classify(H0, {LOCAL: H1, CLOUD: H1, SHARE: H0})

        assert result.verdict == Verdict.PROPAGATE
        assert result.targets == (SHARE,)
        assert result.sources == (LOCAL, CLOUD)

    def test_deleted_everywhere(self):
        """Test all copies gone means state removal only."""
        result = classify(H0, {LOCAL: None, CLOUD: None, SHARE: None})

        assert result.verdict == Verdict.NO_OP
        assert result.record_state is True
        assert result.content_hash is None

    def test_unreachable_location_is_ignored(self):
        """Test only reachable locations take part."""
        result = classify(H0, {LOCAL: H1, CLOUD: H0})

        assert result.verdict == Verdict.PROPAGATE
        assert result.targets == (CLOUD,)

    def test_presence_mask_limits_baseline(self):
        """Test a location that never held the file is not a deletion source."""
        result = classify(H0, {LOCAL: H0, CLOUD: H0, SHARE: None}, synced_locations={LOCAL, CLOUD})

        assert result.verdict == Verdict.NO_OP
        assert result.record_state is False


class TestFirstSeenPaths:
    """Classification without a baseline."""

    def test_single_location_pushes_to_others(self):
        """Test a new file is copied everywhere."""
        result = classify(None, {LOCAL: None, CLOUD: H1, SHARE: None})

        assert result.verdict == Verdict.PROPAGATE
        assert result.sources == (CLOUD,)
        assert result.targets == (LOCAL, SHARE)

    def test_identical_everywhere_records_state(self):
        """Test identical copies everywhere need only a state record."""
        result = classify(None, {LOCAL: H1, CLOUD: H1, SHARE: H1})

        assert result.verdict == Verdict.NO_OP
        assert result.record_state is True

    def test_differing_copies_conflict(self):
        """Test first-seen files with different content conflict."""
        result = classify(None, {LOCAL: H1, CLOUD: H2, SHARE: None})

        assert result.verdict == Verdict.CONFLICT


class TestTotality:
    """Every combination maps to a verdict, deterministically."""

    VALUES = [None, H0, H1, H2]

    @pytest.mark.parametrize("baseline", [None, H0])
    def test_all_combinations(self, baseline):
        """Test every observation triple classifies without error."""
        for local, cloud, share in itertools.product(self.VALUES, repeat=3):
            observations = {LOCAL: local, CLOUD: cloud, SHARE: share}
            first = classify(baseline, observations)
            second = classify(baseline, dict(reversed(list(observations.items()))))

            assert first.verdict in (Verdict.NO_OP, Verdict.PROPAGATE, Verdict.CONFLICT)
            assert first == second

    def test_equal_hashes_never_conflict(self):
        """Test reachable locations sharing a hash never conflict with each other."""
        for baseline in (None, H0, H1):
            for digest in (H0, H1, H2):
                result = classify(baseline, {LOCAL: digest, SHARE: digest})
                assert result.verdict != Verdict.CONFLICT

                result = classify(baseline, {LOCAL: digest, CLOUD: digest, SHARE: digest})
                assert result.verdict == Verdict.NO_OP


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
