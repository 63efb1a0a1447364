"""
Triage, ranking and store health.

Severity of a single diagnosis, the priority score used to rank diagnoses,
and the overall health score of a batch.
"""

from typing import List, Sequence

from diagnosis.core.models.patterns import Confidence
from diagnosis.core.models.results import DiagnosisOutput, HealthStatus, Severity

CRITICAL_MEDIUM_SCORE = 50

CONFIDENCE_WEIGHT = 0.6
IMPACT_WEIGHT = 0.4

HEALTH_START = 100
CRITICAL_PENALTY = 20
WARNING_PENALTY = 10

HEALTHY_VERDICT = "Your store psychology is robust. Focus on optimization."
FRICTION_VERDICT = "Significant friction detected. Immediate triage recommended."


def determine_severity(confidence: Confidence, confidence_score: float) -> Severity:
    """High confidence is always critical; medium is critical from a score of 50."""
    confidence = Confidence(confidence)
    if confidence == Confidence.HIGH:
        return Severity.CRITICAL
    if confidence == Confidence.MEDIUM and confidence_score >= CRITICAL_MEDIUM_SCORE:
        return Severity.CRITICAL
    return Severity.WARNING


def calculate_priority_score(confidence_score: float, affected_sessions: int, total_sessions: int) -> float:
    """Priority = confidence x 0.6 + impact% x 0.4."""
    impact = (affected_sessions / total_sessions * 100) if total_sessions > 0 else 0.0
    return round(confidence_score * CONFIDENCE_WEIGHT + impact * IMPACT_WEIGHT, 2)


def rank_diagnoses(diagnoses: Sequence[DiagnosisOutput]) -> List[DiagnosisOutput]:
    """Order by priority score, then confidence score, both descending."""
    return sorted(diagnoses, key=lambda d: (d.priority_score, d.confidence_score), reverse=True)


def health_status_label(score: int) -> str:
    if score >= 90:
        return "Ecstatic"
    if score >= 70:
        return "Healthy"
    if score >= 40:
        return "Strained"
    return "Critical"


def calculate_health_score(diagnoses: Sequence[DiagnosisOutput]) -> HealthStatus:
    score = HEALTH_START
    critical = warning = 0
    revenue_at_risk = 0.0

    for diagnosis in diagnoses:
        if diagnosis.severity == Severity.CRITICAL:
            score -= CRITICAL_PENALTY
            critical += 1
        else:
            score -= WARNING_PENALTY
            warning += 1
        revenue_at_risk += diagnosis.revenue_at_risk

    score = max(0, min(HEALTH_START, score))

    return HealthStatus(
        score=score,
        status=health_status_label(score),
        verdict=HEALTHY_VERDICT if score > 80 else FRICTION_VERDICT,
        critical_count=critical,
        warning_count=warning,
        total_revenue_at_risk=round(revenue_at_risk, 2),
    )
