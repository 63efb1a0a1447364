#!/usr/bin/env python3
"""
Result models for behavioral diagnosis.

Everything here is built once per run and never mutated: per-session
detection results, intervention recommendations, financial estimates and
the per-pattern ``DiagnosisOutput`` records handed to sinks.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from diagnosis.core.models.patterns import Confidence


class Severity(str, Enum):
    """Triage severity of a diagnosis."""
    CRITICAL = "critical"
    WARNING = "warning"


class _Result(BaseModel):
    model_config = ConfigDict(frozen=True)


# === Detection ===

class DetectionResult(_Result):
    """Outcome of evaluating one pattern against one session."""

    confidence_score: float = Field(..., ge=0, le=100, description="Rule weights plus capped bonus, clamped to 100")
    raw_score: float = Field(..., ge=0, description="Sum of triggered rule weights")
    bonus_points: float = Field(default=0.0, ge=0, description="Bonus points after the cap")
    confidence: Confidence
    detected: bool
    triggered_rules: Tuple[str, ...] = ()


# === Interventions ===

class InterventionRecommendation(_Result):
    bucket: str
    label: str
    description: str
    why_it_works: str
    rationale: str
    quick_wins: Tuple[str, ...] = ()


class InterventionRecommendations(_Result):
    """Primary and secondary recommendation for a set of active drivers."""

    primary: InterventionRecommendation
    secondary: InterventionRecommendation
    all_relevant_buckets: Tuple[str, ...] = ()
    matched_rule: Optional[int] = Field(default=None, description="Index of the mapping rule used; None for defaults")


# === Financials ===

class FinancialMetrics(_Result):
    """Store-wide financial figures derived from a batch of raw events."""

    aov: float = Field(..., gt=0)
    aov_is_placeholder: bool
    conversion_rate: float = Field(..., ge=0, le=1)
    conversion_is_calculated: bool
    total_sessions: int = Field(..., ge=0)
    purchasing_sessions: int = Field(default=0, ge=0)
    valid_purchase_values: int = Field(default=0, ge=0)


class RevenueEstimate(_Result):
    """Revenue at risk attributed to one pattern."""

    pattern_id: str
    detected_sessions: int = Field(..., ge=0)
    eligible_sessions: int = Field(..., ge=0)
    conversion_rate: float = Field(..., ge=0, le=1)
    conversion_rate_source: str = Field(..., description="'pattern' override or 'store' rate")
    aov: float
    aov_is_placeholder: bool
    revenue_at_risk: float = Field(..., ge=0)
    max_potential_revenue: float = Field(..., ge=0)


# === Diagnosis components ===

class DriverInfo(_Result):
    id: str
    label: str
    description: str = ""


class EvidenceMetrics(_Result):
    """Averages over detected sessions with cohort averages alongside."""

    avg_products_viewed_per_session: float
    avg_same_category_ratio: float
    avg_view_to_cart_rate: float
    avg_session_duration_minutes: float
    avg_return_views: float
    avg_search_count: float
    avg_price_range_cv: float

    cohort_avg_products_viewed: float
    cohort_avg_view_to_cart_rate: float
    cohort_avg_session_duration_minutes: float

    pct_sessions_flagged: float = Field(..., ge=0, le=1)
    affected_session_count: int = Field(..., ge=0)
    total_sessions_analyzed: int = Field(..., ge=0)
    intent_session_count: int = Field(..., ge=0)


class BenchmarkComparison(_Result):
    your_view_to_cart_rate: str
    industry_benchmark: str
    deviation: str
    category_benchmark: str


class ExampleSession(_Result):
    session_id: str  # anonymized
    products_viewed: int
    same_category_ratio: float
    session_minutes: float
    cart_adds: int
    confidence: Confidence
    confidence_score: float
    key_behavior: str


class JourneyEvent(_Result):
    event_type: str
    event_name: str
    item_name: Optional[str] = None
    item_category: Optional[str] = None
    page_location: Optional[str] = None
    timestamp: Optional[str] = None  # raw value as received
    timestamp_ms: Optional[float] = None


class DataQuality(_Result):
    sample_size: int
    flagged_count: int
    date_range: Optional[str] = None
    coverage: str = Field(default="complete", description="complete or partial")


class DiagnosisOutput(_Result):
    """Aggregated diagnosis for one pattern over one batch."""

    pattern_id: str
    label: str
    category: str
    confidence: Confidence
    confidence_score: float = Field(..., ge=0, le=100)
    severity: Severity
    scope: str = "store"
    scope_target: str = "store-wide"
    summary: str

    primary_drivers: Tuple[str, ...] = ()
    driver_info: Tuple[DriverInfo, ...] = ()
    evidence_metrics: EvidenceMetrics
    benchmark_comparison: BenchmarkComparison
    intervention_recommendations: InterventionRecommendations
    example_sessions: Tuple[ExampleSession, ...] = ()

    journey_timeline: Tuple[JourneyEvent, ...] = ()
    representative_session_id: Optional[str] = None

    financials: RevenueEstimate
    revenue_at_risk: float = Field(..., ge=0)
    aov_is_placeholder: bool
    priority_score: float = Field(..., ge=0)
    data_quality: DataQuality

    def to_record(self) -> Dict[str, Any]:
        """Flattened record in the shape persisted by sinks."""
        recs = self.intervention_recommendations
        return {
            "pattern_id": self.pattern_id,
            "label": self.label,
            "category": self.category,
            "severity": self.severity.value,
            "confidence": self.confidence.value,
            "confidence_score": self.confidence_score,
            "priority_score": self.priority_score,
            "primary_drivers": list(self.primary_drivers),
            "evidence_metrics": self.evidence_metrics.model_dump(),
            "primary_intervention": recs.primary.bucket,
            "secondary_intervention": recs.secondary.bucket,
            "relevant_buckets": list(recs.all_relevant_buckets),
            "example_sessions": [s.model_dump(mode="json") for s in self.example_sessions],
            "revenue_at_risk": self.revenue_at_risk,
            "journey_timeline": [e.model_dump(mode="json") for e in self.journey_timeline],
            "aov_is_placeholder": self.aov_is_placeholder,
        }


# === Report ===

class HealthStatus(_Result):
    score: int = Field(..., ge=0, le=100)
    status: str
    verdict: str
    critical_count: int = 0
    warning_count: int = 0
    total_revenue_at_risk: float = 0.0


class FailedPattern(_Result):
    pattern_id: str
    error_type: str
    message: str


class DiagnosticReport(_Result):
    """Return value of a full diagnosis run."""

    session_group_id: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    diagnoses: Tuple[DiagnosisOutput, ...] = ()
    undetected_patterns: Tuple[str, ...] = ()
    failed_patterns: Tuple[FailedPattern, ...] = ()
    financials: FinancialMetrics
    health: HealthStatus
    session_count: int = 0
    event_count: int = 0
    empty_cohort: bool = False

    def get_diagnosis(self, pattern_id: str) -> Optional[DiagnosisOutput]:
        for diagnosis in self.diagnoses:
            if diagnosis.pattern_id == pattern_id:
                return diagnosis
        return None
