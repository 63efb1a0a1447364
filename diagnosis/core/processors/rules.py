"""
Pattern rule evaluation.

Scores a session feature vector against a pattern's weighted detection
rules and assigns a confidence tier. Evaluation is a pure function of
(pattern, vector).
"""

import operator
from typing import Callable, Dict, Iterable

from diagnosis.core.models.features import SessionFeatureVector
from diagnosis.core.models.patterns import (
    CONFIDENCE_ORDER,
    Condition,
    Confidence,
    ConfidenceThresholds,
    Operator,
    PatternDefinition,
)
from diagnosis.core.models.results import DetectionResult

MAX_SCORE = 100.0

_COMPARATORS: Dict[Operator, Callable[[float, float], bool]] = {
    Operator.GT: operator.gt,
    Operator.GTE: operator.ge,
    Operator.LT: operator.lt,
    Operator.LTE: operator.le,
    Operator.EQ: operator.eq,
    Operator.NEQ: operator.ne,
}


def evaluate_condition(condition: Condition, features: SessionFeatureVector) -> bool:
    """Evaluate ``metric op value``; unknown or non-numeric metrics are False."""
    value = features.get_metric(condition.metric)
    if value is None:
        return False
    comparator = _COMPARATORS.get(condition.operator)
    if comparator is None:
        return False
    return comparator(value, condition.value)


def evaluate_conditions(conditions: Iterable[Condition], features: SessionFeatureVector) -> bool:
    """True when every condition holds."""
    return all(evaluate_condition(c, features) for c in conditions)


def determine_confidence(score: float, thresholds: ConfidenceThresholds) -> Confidence:
    """Map a score to a tier; boundaries are inclusive."""
    if score >= thresholds.high:
        return Confidence.HIGH
    if score >= thresholds.medium:
        return Confidence.MEDIUM
    if score >= thresholds.low:
        return Confidence.LOW
    return Confidence.NONE


def evaluate_pattern(pattern: PatternDefinition, features: SessionFeatureVector) -> DetectionResult:
    """
    Score one session against one pattern.

    Triggered rule weights are summed, bonus points from holding bonus
    conditions are added up to the pattern's bonus cap, and the tier is
    chosen from that total. The reported score is clamped to 100.
    """
    detection = pattern.detection_rules

    raw_score = 0.0
    triggered = []
    for rule in detection.rules:
        if evaluate_conditions(rule.conditions, features):
            raw_score += rule.weight
            triggered.append(rule.id)

    bonus = sum(b.points for b in detection.bonus_conditions
                if evaluate_condition(b.condition, features))
    bonus = min(bonus, detection.bonus_cap)

    total = raw_score + bonus
    confidence = determine_confidence(total, detection.confidence_thresholds)

    return DetectionResult(
        confidence_score=min(total, MAX_SCORE),
        raw_score=raw_score,
        bonus_points=bonus,
        confidence=confidence,
        detected=confidence != Confidence.NONE,
        triggered_rules=tuple(triggered),
    )


def evaluate_pattern_across_sessions(pattern: PatternDefinition,
                                     sessions: Iterable[SessionFeatureVector]) -> Dict[str, DetectionResult]:
    """Evaluate a pattern for every session, keyed by session id in input order."""
    return {features.session_id: evaluate_pattern(pattern, features) for features in sessions}


def get_detected_sessions(results: Dict[str, DetectionResult],
                          min_confidence: Confidence = Confidence.LOW) -> Dict[str, DetectionResult]:
    """Keep results at or above ``min_confidence``, never including the ``none`` tier."""
    floor = max(CONFIDENCE_ORDER.index(Confidence(min_confidence)), 1)
    return {
        session_id: result
        for session_id, result in results.items()
        if CONFIDENCE_ORDER.index(result.confidence) >= floor
    }
