"""
Financial impact estimation.

Derives store-wide AOV and conversion rate from a batch of raw events and
turns detected-session counts into revenue-at-risk figures. When the data
cannot support a figure, the configured fallback is used and flagged.
"""

import math
from typing import Iterable, List, Optional, Sequence

import structlog

from diagnosis.core.models.config import FinancialConfig
from diagnosis.core.models.events import RawEvent
from diagnosis.core.models.features import SessionFeatureVector
from diagnosis.core.models.patterns import BehavioralStage, PatternDefinition
from diagnosis.core.models.results import FinancialMetrics, RevenueEstimate
from diagnosis.core.processors.session_features import PURCHASE, EventInput, coerce_events

logger = structlog.get_logger(__name__)


def _purchase_value(event: RawEvent) -> Optional[float]:
    """Transaction value, falling back to item price; only positive finite amounts count."""
    for amount in (event.value, event.item_price):
        if amount is not None and math.isfinite(amount) and amount > 0:
            return amount
    return None


def calculate_financial_metrics(events: Iterable[EventInput],
                                total_sessions: int,
                                config: Optional[FinancialConfig] = None) -> FinancialMetrics:
    """
    Calculate AOV and conversion rate for a batch.

    Args:
        events: All raw events of the batch
        total_sessions: Number of distinct sessions analyzed
        config: Fallback values (placeholder AOV, default conversion rate)

    Returns:
        FinancialMetrics with placeholder/calculated flags set
    """
    config = config or FinancialConfig()
    purchases = [e for e in coerce_events(events) if e.event_name == PURCHASE]

    values: List[float] = [v for v in (_purchase_value(e) for e in purchases) if v is not None]
    if values:
        aov = round(sum(values) / len(values), 2)
        aov_is_placeholder = False
    else:
        aov = config.placeholder_aov
        aov_is_placeholder = True

    purchasing_sessions = len({e.session_id for e in purchases})
    if total_sessions > 0 and purchasing_sessions > 0:
        conversion_rate = round(min(purchasing_sessions / total_sessions, 1.0), 4)
        conversion_is_calculated = True
    else:
        conversion_rate = config.default_conversion_rate
        conversion_is_calculated = False

    metrics = FinancialMetrics(
        aov=aov,
        aov_is_placeholder=aov_is_placeholder,
        conversion_rate=conversion_rate,
        conversion_is_calculated=conversion_is_calculated,
        total_sessions=max(total_sessions, 0),
        purchasing_sessions=purchasing_sessions,
        valid_purchase_values=len(values),
    )

    logger.debug("Calculated financial metrics",
                 aov=metrics.aov,
                 aov_is_placeholder=aov_is_placeholder,
                 conversion_rate=conversion_rate,
                 conversion_is_calculated=conversion_is_calculated)
    return metrics


def calculate_revenue_at_risk(session_count: int, aov: float, conversion_rate: float) -> float:
    """sessions x AOV x rate, rounded to cents and never negative."""
    revenue = session_count * aov * conversion_rate
    return max(round(revenue, 2), 0.0)


def calculate_max_potential_revenue(session_count: int, aov: float) -> float:
    """Revenue if every session converted."""
    return max(round(session_count * aov, 2), 0.0)


def estimate_pattern_revenue(pattern: PatternDefinition,
                             detected: Sequence[SessionFeatureVector],
                             metrics: FinancialMetrics) -> RevenueEstimate:
    """
    Estimate revenue at risk for a diagnosed pattern.

    Pre-intent patterns count every detected session; post-intent patterns
    count only detected sessions that showed purchase intent. A pattern's
    own expected conversion rate overrides the store-wide rate.
    """
    if pattern.behavioral_stage == BehavioralStage.POST_INTENT:
        eligible = sum(1 for features in detected if features.has_intent == 1)
    else:
        eligible = len(detected)

    if pattern.expected_conversion_rate is not None:
        rate, source = pattern.expected_conversion_rate, "pattern"
    else:
        rate, source = metrics.conversion_rate, "store"

    return RevenueEstimate(
        pattern_id=pattern.pattern_id,
        detected_sessions=len(detected),
        eligible_sessions=eligible,
        conversion_rate=rate,
        conversion_rate_source=source,
        aov=metrics.aov,
        aov_is_placeholder=metrics.aov_is_placeholder,
        revenue_at_risk=calculate_revenue_at_risk(eligible, metrics.aov, rate),
        max_potential_revenue=calculate_max_potential_revenue(eligible, metrics.aov),
    )
