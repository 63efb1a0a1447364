#!/usr/bin/env python3
"""
Tests for intervention selection and rationale generation.
"""

from itertools import combinations
from pathlib import Path

import pytest

from diagnosis.core.errors import InterventionBucketNotFoundError, PatternConfigurationError
from diagnosis.core.models.patterns import PatternDefinition
from diagnosis.core.processors.interventions import (
    FALLBACK_RATIONALE,
    SECONDARY_RATIONALE,
    generate_rationale,
    get_all_relevant_buckets,
    matches_drivers,
    select_interventions,
)
from diagnosis.core.registry import load_pattern_file

PATTERNS_DIR = Path(__file__).resolve().parents[3] / "patterns"

COMPARISON = load_pattern_file(PATTERNS_DIR / "comparison_paralysis.json")
TRUST = load_pattern_file(PATTERNS_DIR / "trust_risk_social_proof.json")


def all_driver_sets(pattern):
    ids = [d.id for d in pattern.driver_definitions]
    for size in range(len(ids) + 1):
        yield from combinations(ids, size)


def test_matches_drivers_semantics():
    active = {"a", "b"}
    assert matches_drivers(None, None, active)
    assert matches_drivers(["a", "z"], None, active)
    assert not matches_drivers(["z"], None, active)
    assert matches_drivers(None, ["a", "b"], active)
    assert not matches_drivers(None, ["a", "z"], active)
    assert matches_drivers(["b"], ["a"], active)
    assert not matches_drivers(["z"], ["a"], active)


def test_empty_driver_set_uses_defaults():
    recs = select_interventions(COMPARISON, ())

    assert recs.primary.bucket == "curation_defaults"
    assert recs.secondary.bucket == "social_proof"
    assert recs.matched_rule is None
    assert recs.primary.rationale == COMPARISON.get_bucket("curation_defaults").default_rationale
    assert recs.all_relevant_buckets == ("curation_defaults", "social_proof")


@pytest.mark.parametrize("pattern", [COMPARISON, TRUST], ids=lambda p: p.pattern_id)
def test_every_driver_set_yields_one_primary_and_one_secondary(pattern):
    checked = 0
    for drivers in all_driver_sets(pattern):
        recs = select_interventions(pattern, drivers)
        assert pattern.get_bucket(recs.primary.bucket) is not None
        assert pattern.get_bucket(recs.secondary.bucket) is not None
        assert recs.primary.rationale
        assert recs.secondary.rationale == SECONDARY_RATIONALE
        checked += 1
    print(f"✅ {pattern.pattern_id}: {checked} driver sets checked")


def test_first_matching_rule_wins():
    drivers = ("high_exploration_breadth", "deep_within_category", "zero_cart_commitment")
    recs = select_interventions(COMPARISON, drivers)

    assert recs.matched_rule == 0
    assert recs.primary.bucket == "curation_defaults"
    assert recs.secondary.bucket == "decision_aids"
    assert recs.primary.rationale == "High exploration with zero commitment signals need for clear starting points"


def test_rationale_follows_matching_template():
    recs = select_interventions(COMPARISON, ("narrow_price_band_comparison",))

    assert recs.matched_rule == 2
    assert recs.primary.bucket == "decision_aids"
    assert recs.secondary.bucket == "anchoring_best_value"
    assert recs.primary.rationale == "Fine-grained price comparison indicates need for side-by-side feature analysis"


def test_quick_wins_are_truncated_for_primary_only():
    recs = select_interventions(TRUST, ("checkout_trust_dropoff",))
    primary_bucket = TRUST.get_bucket(recs.primary.bucket)
    secondary_bucket = TRUST.get_bucket(recs.secondary.bucket)

    assert recs.primary.bucket == "trust_signals_risk_reversal"
    assert recs.secondary.bucket == "checkout_reassurance_friction_reduction"
    assert recs.primary.quick_wins == primary_bucket.implementation_examples[:3]
    assert recs.secondary.quick_wins == secondary_bucket.implementation_examples


def test_all_relevant_buckets_are_deduplicated_in_order():
    relevant = get_all_relevant_buckets(COMPARISON, ("narrow_price_band_comparison", "category_back_and_forth"))
    assert relevant == (
        "decision_aids",
        "anchoring_best_value",
        "attribute_simplification",
        "curation_defaults",
        "social_proof",
    )


def test_generate_rationale_falls_back():
    bucket = COMPARISON.get_bucket("social_proof").model_copy(update={'default_rationale': None})
    assert generate_rationale(bucket, ()) == FALLBACK_RATIONALE


def test_missing_bucket_raises_configuration_error():
    pattern = PatternDefinition.model_validate({
        'pattern_id': 'broken_mapping',
        'label': 'Broken Mapping',
        'behavioral_stage': 'pre_intent',
        'detection_rules': {
            'rules': [{'id': 'r', 'weight': 50,
                       'conditions': [{'metric': 'products_viewed', 'operator': '>=', 'value': 1}]}],
            'confidence_thresholds': {'low': 10, 'medium': 20, 'high': 30},
        },
        'driver_definitions': [{'id': 'busy', 'label': 'Busy',
                                'detection_conditions': [{'metric': 'products_viewed', 'operator': '>=', 'value': 1}]}],
        'intervention_buckets': [{'id': 'real', 'name': 'Real'}],
        'intervention_mapping': {
            'rules': [{'condition': {'drivers_include': ['busy']}, 'primary': 'ghost', 'secondary': 'real'}],
            'default_primary': 'real',
            'default_secondary': 'real',
        },
    })

    assert pattern.unknown_bucket_references() == ('ghost',)
    assert select_interventions(pattern, ()).primary.bucket == "real"

    with pytest.raises(InterventionBucketNotFoundError) as exc_info:
        select_interventions(pattern, ("busy",))

    assert isinstance(exc_info.value, PatternConfigurationError)
    assert exc_info.value.bucket_ids == ["ghost"]
    assert exc_info.value.pattern_id == "broken_mapping"
