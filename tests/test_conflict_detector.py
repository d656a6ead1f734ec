"""Tests for the local-edit versus remote-change classifier."""

import pytest

from stargazer_sync.data.models import ConflictState
from stargazer_sync.data.services.conflict_detector import ConflictDetector


class TestConflictDetector:
    def setup_method(self):
        self.detector = ConflictDetector()

    @pytest.mark.parametrize(
        "local_modified,remote_fingerprint,state,remote_modified",
        [
            (False, "old", ConflictState.NO_CONFLICT, False),
            (False, "new", ConflictState.NO_CONFLICT, True),
            (True, "old", ConflictState.NO_CONFLICT, False),
            (True, "new", ConflictState.CONFLICT, True),
        ],
    )
    def test_truth_table(self, local_modified, remote_fingerprint, state, remote_modified):
        result = self.detector.detect_conflict(local_modified, "old", remote_fingerprint)

        assert result.state is state
        assert result.has_conflict is (state is ConflictState.CONFLICT)
        assert result.local_modified is local_modified
        assert result.remote_modified is remote_modified
        assert result.local_fingerprint == "old"
        assert result.remote_fingerprint == remote_fingerprint

    def test_missing_remote_fingerprint_is_not_a_remote_change(self):
        result = self.detector.detect_conflict(True, "old", None)
        assert result.remote_modified is False
        assert result.has_conflict is False

    def test_first_fetch_counts_as_remote_change(self):
        result = self.detector.detect_conflict(False, None, "new")
        assert result.remote_modified is True
        assert result.has_conflict is False

    def test_reasons(self):
        assert self.detector.detect_conflict(False, "a", "b").reason == "Local content not modified"
        assert self.detector.detect_conflict(True, "a", "a").reason == "Remote content unchanged"
        assert self.detector.detect_conflict(True, "a", "b").reason == "Both local and remote content have changed"

    def test_pure(self):
        first = self.detector.detect_conflict(True, "a", "b", item_id="R_1")
        second = ConflictDetector().detect_conflict(True, "a", "b", item_id="R_1")
        assert first == second
