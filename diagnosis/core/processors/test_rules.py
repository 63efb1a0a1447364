#!/usr/bin/env python3
"""
Tests for pattern rule evaluation and confidence tiers.
"""

import pytest
from pydantic import ValidationError

from diagnosis.core.models.features import SessionFeatureVector
from diagnosis.core.models.patterns import (
    Condition,
    Confidence,
    ConfidenceThresholds,
    Operator,
    PatternDefinition,
)
from diagnosis.core.processors.rules import (
    determine_confidence,
    evaluate_condition,
    evaluate_conditions,
    evaluate_pattern,
    evaluate_pattern_across_sessions,
    get_detected_sessions,
)


def make_pattern(rules, thresholds=(20, 40, 75), bonus_conditions=(), bonus_cap=10):
    low, medium, high = thresholds
    return PatternDefinition.model_validate({
        'pattern_id': 'test_pattern',
        'label': 'Test Pattern',
        'behavioral_stage': 'pre_intent',
        'detection_rules': {
            'rules': list(rules),
            'confidence_thresholds': {'low': low, 'medium': medium, 'high': high},
            'bonus_conditions': list(bonus_conditions),
            'bonus_cap': bonus_cap,
        },
        'intervention_buckets': [{'id': 'nudge', 'name': 'Nudge'}],
        'intervention_mapping': {'default_primary': 'nudge', 'default_secondary': 'nudge'},
    })


def rule(rule_id, weight, *conditions):
    return {
        'id': rule_id,
        'weight': weight,
        'conditions': [{'metric': m, 'operator': op, 'value': v} for m, op, v in conditions],
    }


def bonus(points, metric, op, value):
    return {'condition': {'metric': metric, 'operator': op, 'value': value}, 'points': points}


def session(session_id="s1", **features):
    return SessionFeatureVector(session_id=session_id, **features)


@pytest.mark.parametrize("op,value,expected", [
    (">", 4, True), (">", 5, False),
    (">=", 5, True), (">=", 6, False),
    ("<", 6, True), ("<", 5, False),
    ("<=", 5, True), ("<=", 4, False),
    ("==", 5, True), ("==", 4, False),
    ("!=", 4, True), ("!=", 5, False),
])
def test_evaluate_condition_operators(op, value, expected):
    condition = Condition(metric='products_viewed', operator=op, value=value)
    assert evaluate_condition(condition, session(products_viewed=5)) is expected


def test_unknown_metric_fails_closed():
    features = session(products_viewed=5)
    assert evaluate_condition(Condition(metric='variant_switches', operator='>=', value=0), features) is False
    assert evaluate_condition(Condition(metric='variant_switches', operator='!=', value=1), features) is False


def test_non_numeric_metric_fails_closed():
    features = session(primary_category="shoes", categories_viewed=["shoes"])
    assert evaluate_condition(Condition(metric='primary_category', operator='!=', value=0), features) is False
    assert evaluate_condition(Condition(metric='categories_viewed', operator='>=', value=0), features) is False


def test_evaluate_conditions_requires_all():
    conditions = [
        Condition(metric='products_viewed', operator=Operator.GTE, value=5),
        Condition(metric='add_to_cart_count', operator=Operator.EQ, value=0),
    ]
    assert evaluate_conditions(conditions, session(products_viewed=6))
    assert not evaluate_conditions(conditions, session(products_viewed=6, add_to_cart_count=1))


def test_rule_weights_sum_and_triggered_rules_are_reported():
    pattern = make_pattern([
        rule('browse', 30, ('products_viewed', '>=', 5)),
        rule('no_cart', 25, ('add_to_cart_count', '==', 0)),
        rule('search', 40, ('search_count', '>=', 3)),
    ])
    result = evaluate_pattern(pattern, session(products_viewed=7, search_count=1))

    assert result.raw_score == 55
    assert result.confidence_score == 55
    assert result.triggered_rules == ('browse', 'no_cart')
    assert result.confidence == Confidence.MEDIUM
    assert result.detected is True


def test_bonus_points_are_capped():
    pattern = make_pattern(
        [rule('browse', 30, ('products_viewed', '>=', 5))],
        bonus_conditions=[bonus(8, 'products_viewed', '>=', 5), bonus(8, 'return_views', '>=', 1)],
        bonus_cap=10,
    )
    result = evaluate_pattern(pattern, session(products_viewed=5, return_views=2))

    assert result.bonus_points == 10
    assert result.confidence_score == 40
    assert result.confidence == Confidence.MEDIUM


def test_bonus_alone_can_reach_a_tier():
    pattern = make_pattern(
        [rule('never', 50, ('products_viewed', '>=', 100))],
        thresholds=(5, 40, 75),
        bonus_conditions=[bonus(6, 'search_count', '>=', 1)],
    )
    result = evaluate_pattern(pattern, session(search_count=1))

    assert result.raw_score == 0
    assert result.confidence == Confidence.LOW


def test_score_is_clamped_but_tier_uses_unclamped_total():
    pattern = make_pattern(
        [rule('big', 90, ('products_viewed', '>=', 1)), rule('bigger', 20, ('products_viewed', '>=', 1))],
        thresholds=(20, 60, 105),
    )
    result = evaluate_pattern(pattern, session(products_viewed=3))

    assert result.raw_score == 110
    assert result.confidence_score == 100
    assert result.confidence == Confidence.HIGH


@pytest.mark.parametrize("score,expected", [
    (19.99, Confidence.NONE),
    (20, Confidence.LOW),
    (39.99, Confidence.LOW),
    (40, Confidence.MEDIUM),
    (74.99, Confidence.MEDIUM),
    (75, Confidence.HIGH),
    (100, Confidence.HIGH),
])
def test_threshold_boundaries_are_inclusive(score, expected):
    thresholds = ConfidenceThresholds(low=20, medium=40, high=75)
    assert determine_confidence(score, thresholds) == expected


def test_equal_thresholds_collapse_to_highest_tier():
    thresholds = ConfidenceThresholds(low=50, medium=50, high=50)
    assert determine_confidence(50, thresholds) == Confidence.HIGH
    assert determine_confidence(49, thresholds) == Confidence.NONE


def test_unordered_thresholds_are_rejected():
    with pytest.raises(ValidationError):
        ConfidenceThresholds(low=50, medium=40, high=75)


def test_raising_condition_thresholds_never_increases_score():
    """Tightening a condition can only turn a rule off, never on."""
    features = session(products_viewed=6, return_views=2, search_count=3)
    scores = []
    for threshold in range(0, 10):
        pattern = make_pattern([
            rule('browse', 30, ('products_viewed', '>=', threshold), ('search_count', '>=', threshold)),
            rule('revisit', 20, ('return_views', '>=', threshold)),
        ])
        scores.append(evaluate_pattern(pattern, features).confidence_score)

    print(f"📉 Scores by threshold: {scores}")
    assert all(later <= earlier for earlier, later in zip(scores, scores[1:]))
    assert scores[0] == 50
    assert scores[-1] == 0


def test_detected_sessions_respect_minimum_tier():
    pattern = make_pattern([
        rule('browse', 25, ('products_viewed', '>=', 5)),
        rule('no_cart', 25, ('add_to_cart_count', '==', 0)),
        rule('search', 30, ('search_count', '>=', 2)),
    ])
    sessions = [
        session("none", products_viewed=1, add_to_cart_count=1),
        session("low", products_viewed=1),
        session("medium", products_viewed=5),
        session("high", products_viewed=5, search_count=2),
    ]
    results = evaluate_pattern_across_sessions(pattern, sessions)

    assert list(results) == ["none", "low", "medium", "high"]
    assert list(get_detected_sessions(results)) == ["low", "medium", "high"]
    assert list(get_detected_sessions(results, Confidence.MEDIUM)) == ["medium", "high"]
    assert list(get_detected_sessions(results, Confidence.HIGH)) == ["high"]
    # A floor of "none" still excludes undetected sessions
    assert list(get_detected_sessions(results, Confidence.NONE)) == ["low", "medium", "high"]
