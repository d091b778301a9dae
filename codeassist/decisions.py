"""
Feature merge decisions for comparison sessions.

The tracker holds the feature matrix returned by a structured call and one
DecisionRecord per decided feature. Decision keys are always a subset of the
matrix names; the session is decision-complete once every feature has one.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .errors import DecisionError
from .session_schema import (
    ChatTurn,
    Decision,
    DecisionRecord,
    Feature,
    FinalizationSummary,
)

logger = logging.getLogger(__name__)


class FeatureDecisionTracker:
    """
    Decision records for one comparison-merge request.

    Example:
        tracker = FeatureDecisionTracker()
        tracker.load([Feature(name="Auth", source="Common")])
        tracker.decide("Auth", Decision.INCLUDE)
        summary = tracker.finalize()
    """

    def __init__(self) -> None:
        self._features: list[Feature] = []
        self._decisions: dict[str, DecisionRecord] = {}

    @property
    def features(self) -> list[Feature]:
        return list(self._features)

    @property
    def decisions(self) -> dict[str, DecisionRecord]:
        return dict(self._decisions)

    @property
    def loaded(self) -> bool:
        return bool(self._features)

    def load(self, features: Iterable[Feature]) -> None:
        """
        Replace the matrix and drop all decisions.

        Feature names are unique keys; later duplicates are ignored.
        """
        self._features = []
        self._decisions = {}
        seen: set[str] = set()
        for feature in features:
            if feature.name in seen:
                logger.warning(f"Ignoring duplicate feature in matrix: {feature.name}")
                continue
            seen.add(feature.name)
            self._features.append(feature)
        logger.info(f"Loaded feature matrix with {len(self._features)} features")

    def restore(self, features: Iterable[Feature], decisions: dict[str, DecisionRecord]) -> None:
        """
        Load a saved matrix together with its decisions.

        Raises:
            DecisionError: If a decision refers to a feature not in the matrix
        """
        self.load(features)
        names = self._names()
        unknown = sorted(set(decisions) - names)
        if unknown:
            self._features = []
            raise DecisionError(f"Decisions for unknown features: {', '.join(unknown)}")
        self._decisions = {name: record.model_copy(deep=True) for name, record in decisions.items()}

    def clear(self) -> None:
        self._features = []
        self._decisions = {}

    def _names(self) -> set[str]:
        return {f.name for f in self._features}

    def _require_feature(self, name: str) -> Feature:
        for feature in self._features:
            if feature.name == name:
                return feature
        raise DecisionError(f"Unknown feature: {name}")

    def get(self, name: str) -> DecisionRecord | None:
        self._require_feature(name)
        return self._decisions.get(name)

    def decide(self, name: str, decision: Decision | str) -> None:
        """
        Set or overwrite the include/remove decision for a feature.

        Args:
            name: Feature name
            decision: Decision.INCLUDE or Decision.REMOVE

        Raises:
            DecisionError: If the feature is unknown or the decision is DISCUSSED
        """
        self._require_feature(name)
        try:
            decision = Decision(decision)
        except ValueError as e:
            raise DecisionError(f"Unknown decision: {decision}") from e
        if decision is Decision.DISCUSSED:
            raise DecisionError(
                f"Feature '{name}' can only be marked discussed by finalizing its discussion"
            )
        self._decisions[name] = DecisionRecord(decision=decision)

    def finalize_discussion(self, name: str, transcript: Iterable[ChatTurn]) -> None:
        """Mark a feature discussed, storing a copy of its sub-dialogue."""
        self._require_feature(name)
        self._decisions[name] = DecisionRecord(
            decision=Decision.DISCUSSED,
            transcript=[turn.model_copy(deep=True) for turn in transcript],
        )

    def undecide(self, name: str) -> None:
        self._require_feature(name)
        self._decisions.pop(name, None)

    def pending(self) -> list[Feature]:
        """Features still without a decision, in matrix order."""
        return [f for f in self._features if f.name not in self._decisions]

    def is_complete(self) -> bool:
        """True iff the matrix is non-empty and every feature has a decision."""
        return bool(self._features) and not self.pending()

    def transcripts(self) -> dict[str, list[ChatTurn]]:
        """Discussion transcripts of discussed features, in matrix order."""
        return {
            f.name: list(self._decisions[f.name].transcript)
            for f in self._features
            if f.name in self._decisions and self._decisions[f.name].decision is Decision.DISCUSSED
        }

    def finalize(self) -> FinalizationSummary:
        """
        Partition features by decision.

        Raises:
            DecisionError: If any feature is undecided
        """
        if not self.is_complete():
            pending = ", ".join(f.name for f in self.pending()) or "no features loaded"
            raise DecisionError(f"Cannot finalize, undecided: {pending}")

        summary = FinalizationSummary()
        buckets = {
            Decision.INCLUDE: summary.included,
            Decision.REMOVE: summary.removed,
            Decision.DISCUSSED: summary.discussed,
        }
        for feature in self._features:
            buckets[self._decisions[feature.name].decision].append(feature)
        return summary


__all__ = ["FeatureDecisionTracker"]
