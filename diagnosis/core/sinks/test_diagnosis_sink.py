#!/usr/bin/env python3
"""
Tests for the diagnosis sinks.

The Redis sink is exercised against an in-process mock so no Redis
server is required.
"""

import json
import time
from typing import Any, Dict

import redis

from diagnosis.core.models.config import RedisConfig
from diagnosis.core.models.patterns import Confidence
from diagnosis.core.models.results import (
    BenchmarkComparison,
    DataQuality,
    DiagnosisOutput,
    EvidenceMetrics,
    InterventionRecommendation,
    InterventionRecommendations,
    RevenueEstimate,
    Severity,
)
from diagnosis.core.sinks.diagnosis_sink import InMemoryDiagnosisSink, RedisDiagnosisSink


class MockRedisClient:
    """Mock Redis client for testing."""

    def __init__(self):
        self.data = {}
        self.expirations = {}
        self.closed = False

    def hset(self, key: str, mapping: Dict[str, Any]):
        """Set hash values."""
        self.data.setdefault(key, {}).update(mapping)

    def set(self, key: str, value: str, ex: int = None):
        """Set string value."""
        self.data[key] = value
        if ex:
            self.expirations[key] = time.time() + ex

    def expire(self, key: str, seconds: int):
        """Set expiration."""
        self.expirations[key] = time.time() + seconds

    def zadd(self, key: str, mapping: Dict[str, float]):
        """Add to sorted set."""
        members = self.data.setdefault(key, {})
        members.update(mapping)

    def close(self):
        self.closed = True


class FailingRedisClient(MockRedisClient):
    """Redis client whose writes fail as if the server were down."""

    def hset(self, key: str, mapping: Dict[str, Any]):
        raise redis.ConnectionError("Connection refused")


def make_diagnosis(pattern_id="checkout_trust", priority_score=42.5):
    primary = InterventionRecommendation(
        bucket="trust_signals", label="Trust Signals", description="Show guarantees",
        why_it_works="Reduces perceived risk", rationale="Policy checks at checkout",
        quick_wins=("Money-back badge",))
    secondary = InterventionRecommendation(
        bucket="policy_clarity", label="Policy Clarity", description="Summarize policies",
        why_it_works="Answers questions in place", rationale="Supporting intervention")
    return DiagnosisOutput(
        pattern_id=pattern_id,
        label="Checkout Trust",
        category="trust",
        confidence=Confidence.MEDIUM,
        confidence_score=70.0,
        severity=Severity.CRITICAL,
        summary="Shoppers hesitate at checkout.",
        primary_drivers=("checkout_trust_dropoff",),
        evidence_metrics=EvidenceMetrics(
            avg_products_viewed_per_session=2, avg_same_category_ratio=1, avg_view_to_cart_rate=0.5,
            avg_session_duration_minutes=4.2, avg_return_views=0, avg_search_count=0, avg_price_range_cv=0.1,
            cohort_avg_products_viewed=3, cohort_avg_view_to_cart_rate=0.2,
            cohort_avg_session_duration_minutes=3.1, pct_sessions_flagged=0.25,
            affected_session_count=1, total_sessions_analyzed=4, intent_session_count=1,
        ),
        benchmark_comparison=BenchmarkComparison(
            your_view_to_cart_rate="50.0%", industry_benchmark="6-11%",
            deviation="+488% above benchmark", category_benchmark="8.5%"),
        intervention_recommendations=InterventionRecommendations(
            primary=primary, secondary=secondary,
            all_relevant_buckets=("trust_signals", "policy_clarity"), matched_rule=0),
        financials=RevenueEstimate(
            pattern_id=pattern_id, detected_sessions=1, eligible_sessions=1, conversion_rate=0.3,
            conversion_rate_source="pattern", aov=112.0, aov_is_placeholder=True,
            revenue_at_risk=33.6, max_potential_revenue=112.0),
        revenue_at_risk=33.6,
        aov_is_placeholder=True,
        priority_score=priority_score,
        data_quality=DataQuality(sample_size=4, flagged_count=1),
    )


def test_record_shape():
    record = make_diagnosis().to_record()

    for field in ['pattern_id', 'label', 'category', 'severity', 'confidence', 'confidence_score',
                  'priority_score', 'primary_drivers', 'evidence_metrics', 'primary_intervention',
                  'secondary_intervention', 'relevant_buckets', 'example_sessions',
                  'revenue_at_risk', 'journey_timeline', 'aov_is_placeholder']:
        assert field in record, f"Missing field: {field}"
    assert record['severity'] == "critical"
    assert record['primary_intervention'] == "trust_signals"


def test_in_memory_sink():
    sink = InMemoryDiagnosisSink()
    assert sink.write_diagnosis("batch-1", make_diagnosis("a"))
    assert sink.write_diagnosis("batch-1", make_diagnosis("b"))
    assert sink.write_diagnosis("batch-2", make_diagnosis("a"))

    assert sink.get("batch-1", "a")['pattern_id'] == "a"
    assert sink.get("batch-3", "a") is None
    assert len(sink.for_group("batch-1")) == 2


def test_redis_sink_writes_hash_latest_and_ranking():
    print("🧪 Testing Redis diagnosis sink...")
    client = MockRedisClient()
    sink = RedisDiagnosisSink(RedisConfig(key_prefix="diag", result_ttl_hours=2), redis_client=client)

    assert sink.write_diagnosis("batch-1", make_diagnosis(priority_score=42.5)) is True

    stored = client.data["diag:batch-1:checkout_trust"]
    assert stored['severity'] == "critical"
    assert stored['aov_is_placeholder'] == "true"
    assert stored['confidence_score'] == "70.0"
    assert json.loads(stored['primary_drivers']) == ["checkout_trust_dropoff"]
    assert json.loads(stored['evidence_metrics'])['affected_session_count'] == 1

    latest = json.loads(client.data["diag:latest:batch-1:checkout_trust"])
    assert latest['pattern_id'] == "checkout_trust"
    assert latest['intervention_recommendations']['matched_rule'] == 0

    assert client.data["diag:ranked:batch-1"] == {"checkout_trust": 42.5}
    for key in ("diag:batch-1:checkout_trust", "diag:latest:batch-1:checkout_trust", "diag:ranked:batch-1"):
        assert key in client.expirations
    print(f"  📝 Keys written: {sorted(client.data)}")


def test_redis_sink_serializes_nulls_and_booleans():
    sink = RedisDiagnosisSink(RedisConfig(), redis_client=MockRedisClient())
    serialized = sink._serialize_for_redis({'a': None, 'b': False, 'c': 3, 'd': [1, 2], 'e': "x"})

    assert serialized == {'a': "null", 'b': "false", 'c': "3", 'd': "[1, 2]", 'e': "x"}


def test_redis_sink_failure_returns_false():
    client = FailingRedisClient()
    sink = RedisDiagnosisSink(RedisConfig(), redis_client=client)

    assert sink.write_diagnosis("batch-1", make_diagnosis()) is False
    assert client.data == {}


def test_redis_sink_close():
    client = MockRedisClient()
    RedisDiagnosisSink(RedisConfig(), redis_client=client).close()
    assert client.closed
