"""Tests for FeatureDecisionTracker."""

import pytest

from codeassist.decisions import FeatureDecisionTracker
from codeassist.errors import DecisionError
from codeassist.session_schema import ChatTurn, Decision, DecisionRecord, Feature, FeatureSource


def features(*names: str) -> list[Feature]:
    return [Feature(name=name, source=FeatureSource.COMMON) for name in names]


@pytest.fixture
def tracker():
    tracker = FeatureDecisionTracker()
    tracker.load(features("Auth", "Caching", "Logging"))
    return tracker


class TestCompleteness:
    """Tests for decision completeness."""

    def test_empty_matrix_never_complete(self):
        tracker = FeatureDecisionTracker()
        assert not tracker.loaded
        assert not tracker.is_complete()
        with pytest.raises(DecisionError):
            tracker.finalize()

    def test_complete_iff_every_feature_decided(self, tracker):
        tracker.decide("Auth", Decision.INCLUDE)
        tracker.decide("Caching", Decision.REMOVE)
        assert not tracker.is_complete()
        assert [f.name for f in tracker.pending()] == ["Logging"]

        tracker.decide("Logging", "include")
        assert tracker.is_complete()

        tracker.undecide("Caching")
        assert not tracker.is_complete()

    def test_overwrite_decision(self, tracker):
        tracker.decide("Auth", Decision.INCLUDE)
        tracker.decide("Auth", Decision.REMOVE)
        assert tracker.get("Auth").decision is Decision.REMOVE


class TestDecide:
    """Tests for decide validation."""

    def test_discussed_only_through_discussion(self, tracker):
        with pytest.raises(DecisionError):
            tracker.decide("Auth", Decision.DISCUSSED)
        assert tracker.get("Auth") is None

    def test_unknown_feature(self, tracker):
        with pytest.raises(DecisionError):
            tracker.decide("Metrics", Decision.INCLUDE)

    def test_unknown_decision_value(self, tracker):
        with pytest.raises(DecisionError):
            tracker.decide("Auth", "maybe")

    def test_discussion_transcript_is_copied(self, tracker):
        turns = [ChatTurn(role="user", content="keep?"), ChatTurn(role="model", content="yes")]
        tracker.finalize_discussion("Auth", turns)
        turns[1].content = "changed"

        record = tracker.get("Auth")
        assert record.decision is Decision.DISCUSSED
        assert record.transcript[1].content == "yes"
        assert list(tracker.transcripts()) == ["Auth"]


class TestLoad:
    """Tests for matrix loading and restore."""

    def test_duplicate_names_keep_first(self):
        tracker = FeatureDecisionTracker()
        tracker.load(
            [
                Feature(name="Auth", description="first", source=FeatureSource.UNIQUE_A),
                Feature(name="Auth", description="second", source=FeatureSource.UNIQUE_B),
            ]
        )
        assert len(tracker.features) == 1
        assert tracker.features[0].description == "first"

    def test_load_drops_decisions(self, tracker):
        tracker.decide("Auth", Decision.INCLUDE)
        tracker.load(features("Auth"))
        assert tracker.decisions == {}

    def test_restore_rejects_unknown_keys(self):
        tracker = FeatureDecisionTracker()
        with pytest.raises(DecisionError):
            tracker.restore(features("Auth"), {"Ghost": DecisionRecord(decision=Decision.INCLUDE)})
        assert not tracker.loaded


class TestFinalize:
    """Tests for the finalization summary."""

    def test_partition_in_matrix_order(self, tracker):
        tracker.decide("Logging", Decision.REMOVE)
        tracker.decide("Auth", Decision.INCLUDE)
        tracker.finalize_discussion("Caching", [])

        summary = tracker.finalize()

        assert [f.name for f in summary.included] == ["Auth"]
        assert [f.name for f in summary.removed] == ["Logging"]
        assert [f.name for f in summary.discussed] == ["Caching"]

    def test_finalize_names_pending_features(self, tracker):
        tracker.decide("Auth", Decision.INCLUDE)
        with pytest.raises(DecisionError, match="Caching, Logging"):
            tracker.finalize()
