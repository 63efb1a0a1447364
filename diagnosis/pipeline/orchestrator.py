#!/usr/bin/env python3
"""
Behavioral Diagnosis Orchestrator

Runs the diagnosis pipeline over one completed batch of session events:

- Feature extraction per session
- Rule evaluation for every registered pattern
- Driver attribution and intervention selection
- Financial impact estimation
- Ranking, health scoring and persistence through a sink

A failing pattern is logged and reported; the rest of the batch continues.
"""

import logging
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import click
import pandas as pd
import structlog
from prometheus_client import start_http_server

from diagnosis.core.errors import PatternConfigurationError
from diagnosis.core.models.config import DiagnosisConfig, LoggingConfig
from diagnosis.core.models.events import RawEvent
from diagnosis.core.models.features import SessionFeatureVector
from diagnosis.core.models.patterns import Confidence, PatternDefinition
from diagnosis.core.models.results import (
    BenchmarkComparison,
    DataQuality,
    DetectionResult,
    DiagnosisOutput,
    DiagnosticReport,
    EvidenceMetrics,
    ExampleSession,
    FailedPattern,
    FinancialMetrics,
)
from diagnosis.core.processors.drivers import detect_drivers, get_driver_info, union_drivers
from diagnosis.core.processors.financial import calculate_financial_metrics, estimate_pattern_revenue
from diagnosis.core.processors.interventions import select_interventions
from diagnosis.core.processors.journey import extract_journey_timeline, find_representative_session
from diagnosis.core.processors.rules import determine_confidence, evaluate_pattern_across_sessions, get_detected_sessions
from diagnosis.core.processors.session_features import coerce_events, extract_all_session_features
from diagnosis.core.processors.triage import (
    calculate_health_score,
    calculate_priority_score,
    determine_severity,
    rank_diagnoses,
)
from diagnosis.core.registry import PatternRegistry
from diagnosis.core.sinks.diagnosis_sink import DiagnosisSink, InMemoryDiagnosisSink, RedisDiagnosisSink
from diagnosis.core.utils.metrics import (
    CONFIGURATION_ERRORS,
    DIAGNOSES_PRODUCED,
    PATTERN_EVALUATIONS,
    PIPELINE_DURATION,
)
from diagnosis.core.utils.timestamps import to_iso

logger = structlog.get_logger(__name__)

COLUMN_ALIASES = {
    'session': 'session_id',
    'ga_session_id': 'session_id',
    'event': 'event_name',
    'event_type': 'event_name',
    'timestamp': 'event_timestamp',
    'event_time': 'event_timestamp',
    'timestamp_micros': 'event_timestamp',
    'price': 'item_price',
    'category': 'item_category',
    'page': 'page_location',
    'url': 'page_location',
    'user_id': 'user_pseudo_id',
}
REQUIRED_COLUMNS = ('session_id', 'event_name', 'event_timestamp')


def configure_logging(config: Optional[LoggingConfig] = None) -> None:
    """Configure structlog over the standard library logger."""
    config = config or LoggingConfig()
    level = getattr(logging, config.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)
    logging.getLogger().setLevel(level)

    renderer = (structlog.dev.ConsoleRenderer() if config.format == "console"
                else structlog.processors.JSONRenderer())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def load_events_file(path) -> List[Dict[str, Any]]:
    """
    Load raw events from a CSV, JSON or JSON-lines export.

    Column names are normalized (case, whitespace, common aliases) and rows
    missing a session id, event name or timestamp are dropped.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == '.csv':
        df = pd.read_csv(path, dtype=str)
    elif suffix in ('.jsonl', '.ndjson'):
        df = pd.read_json(path, orient='records', lines=True, dtype=False, convert_dates=False)
    elif suffix == '.json':
        df = pd.read_json(path, orient='records', dtype=False, convert_dates=False)
    else:
        raise ValueError(f"Unsupported events file type: {path.suffix}")

    df.columns = [str(c).strip().lower() for c in df.columns]
    df = df.rename(columns={k: v for k, v in COLUMN_ALIASES.items()
                            if k in df.columns and v not in df.columns})

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Events file is missing required columns: {', '.join(missing)}")

    before = len(df)
    df = df.dropna(subset=list(REQUIRED_COLUMNS))
    for column in REQUIRED_COLUMNS:
        df = df[df[column].astype(str).str.strip() != ""]
    dropped = before - len(df)
    if dropped:
        logger.warning("Dropped malformed event rows", path=str(path), dropped=dropped)

    df = df.astype(object).where(pd.notna(df), None)
    records = df.to_dict(orient='records')
    logger.info("Loaded events file", path=str(path), events=len(records))
    return records


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def anonymize_session_id(session_id: str) -> str:
    return f"anon_{session_id[:8]}"


def describe_key_behavior(features: SessionFeatureVector) -> str:
    parts = [f"Viewed {features.products_viewed} products"]
    if features.return_views > 0:
        parts.append(f"revisited {features.return_views}")
    if features.search_count > 0:
        parts.append(f"searched {features.search_count} times")
    if features.add_to_cart_count == 0:
        parts.append("no cart add")
    else:
        parts.append(f"{features.add_to_cart_count} cart adds")
    return ", ".join(parts)


class DiagnosisOrchestrator:
    """Runs every registered pattern over a session batch."""

    def __init__(self, registry: PatternRegistry,
                 config: Optional[DiagnosisConfig] = None,
                 sink: Optional[DiagnosisSink] = None):
        self.registry = registry
        self.config = config or DiagnosisConfig()
        self.sink = sink if sink is not None else InMemoryDiagnosisSink()

        logger.info("Diagnosis orchestrator initialized",
                    patterns=[p.pattern_id for p in registry],
                    sink=self.sink.name,
                    max_workers=self.config.max_workers)

    # === Batch ===

    def run(self, events: Iterable[Any], session_group_id: Optional[str] = None) -> DiagnosticReport:
        """
        Diagnose one batch of raw events.

        Args:
            events: RawEvent instances or dicts coerced into them; records that
                are not valid events are skipped and counted
            session_group_id: Identifier of the batch; generated when omitted

        Returns:
            DiagnosticReport with ranked diagnoses and per-pattern outcomes
        """
        session_group_id = session_group_id or uuid.uuid4().hex
        raw_events: List[RawEvent] = coerce_events(events)

        with PIPELINE_DURATION.labels(stage='features').time():
            vectors = extract_all_session_features(
                raw_events,
                max_workers=self.config.max_workers,
                pogo_window_seconds=self.config.pogo_window_seconds,
            )

        cohort = self._apply_scope(vectors)
        cohort_ids = {v.session_id for v in cohort}
        cohort_events = [e for e in raw_events if e.session_id in cohort_ids]

        financials = calculate_financial_metrics(cohort_events, len(cohort), self.config.financial)

        diagnoses: List[DiagnosisOutput] = []
        undetected: List[str] = []
        failed: List[FailedPattern] = []

        with PIPELINE_DURATION.labels(stage='patterns').time():
            for pattern in self.registry:
                try:
                    diagnosis = self.diagnose_pattern(pattern, cohort, cohort_events, financials)
                except PatternConfigurationError as e:
                    CONFIGURATION_ERRORS.labels(pattern_id=pattern.pattern_id).inc()
                    PATTERN_EVALUATIONS.labels(pattern_id=pattern.pattern_id, outcome='config_error').inc()
                    logger.error("Pattern configuration integrity violation",
                                 session_group_id=session_group_id,
                                 pattern_id=pattern.pattern_id,
                                 error=str(e))
                    failed.append(FailedPattern(pattern_id=pattern.pattern_id,
                                                error_type=type(e).__name__,
                                                message=str(e)))
                    continue
                except Exception as e:
                    PATTERN_EVALUATIONS.labels(pattern_id=pattern.pattern_id, outcome='error').inc()
                    logger.error("Pattern diagnosis failed",
                                 session_group_id=session_group_id,
                                 pattern_id=pattern.pattern_id,
                                 error=str(e),
                                 exc_info=True)
                    failed.append(FailedPattern(pattern_id=pattern.pattern_id,
                                                error_type=type(e).__name__,
                                                message=str(e)))
                    continue

                if diagnosis is None:
                    PATTERN_EVALUATIONS.labels(pattern_id=pattern.pattern_id, outcome='undetected').inc()
                    logger.info("Pattern not detected",
                                session_group_id=session_group_id,
                                pattern_id=pattern.pattern_id,
                                sessions=len(cohort))
                    undetected.append(pattern.pattern_id)
                    continue

                PATTERN_EVALUATIONS.labels(pattern_id=pattern.pattern_id, outcome='detected').inc()
                DIAGNOSES_PRODUCED.labels(pattern_id=pattern.pattern_id,
                                          severity=diagnosis.severity.value).inc()
                diagnoses.append(diagnosis)

        ranked = rank_diagnoses(diagnoses)

        with PIPELINE_DURATION.labels(stage='sink').time():
            for diagnosis in ranked:
                if not self.sink.write_diagnosis(session_group_id, diagnosis):
                    logger.warning("Diagnosis kept in report but not persisted",
                                   session_group_id=session_group_id,
                                   pattern_id=diagnosis.pattern_id)

        report = DiagnosticReport(
            session_group_id=session_group_id,
            diagnoses=tuple(ranked),
            undetected_patterns=tuple(undetected),
            failed_patterns=tuple(failed),
            financials=financials,
            health=calculate_health_score(ranked),
            session_count=len(cohort),
            event_count=len(cohort_events),
            empty_cohort=len(cohort) == 0,
        )

        logger.info("Diagnosis run complete",
                    session_group_id=session_group_id,
                    sessions=report.session_count,
                    diagnoses=len(report.diagnoses),
                    undetected=len(report.undetected_patterns),
                    failed=len(report.failed_patterns),
                    health_score=report.health.score)
        return report

    def _apply_scope(self, vectors: List[SessionFeatureVector]) -> List[SessionFeatureVector]:
        if self.config.scope != "category":
            return vectors
        return [v for v in vectors if v.primary_category == self.config.scope_target]

    # === Pattern ===

    def diagnose_pattern(self, pattern: PatternDefinition,
                         cohort: Sequence[SessionFeatureVector],
                         events: Sequence[RawEvent],
                         financials: FinancialMetrics) -> Optional[DiagnosisOutput]:
        """Build the diagnosis for one pattern, or None when no session reaches a tier."""
        results = evaluate_pattern_across_sessions(pattern, cohort)
        detected_results = get_detected_sessions(results, Confidence.LOW)
        detected = [v for v in cohort if v.session_id in detected_results]
        if not detected:
            return None

        mean_score = _mean([detected_results[v.session_id].confidence_score for v in detected])
        confidence = determine_confidence(mean_score, pattern.detection_rules.confidence_thresholds)
        if confidence == Confidence.NONE:
            confidence = Confidence.LOW
        confidence_score = round(mean_score, 2)

        drivers = union_drivers(pattern, (detect_drivers(pattern, v) for v in detected))
        recommendations = select_interventions(pattern, drivers)

        evidence = self._evidence_metrics(detected, cohort)
        revenue = estimate_pattern_revenue(pattern, detected, financials)

        representative = find_representative_session(detected, detected_results)
        timeline = tuple(extract_journey_timeline(representative, events)) if representative else ()

        return DiagnosisOutput(
            pattern_id=pattern.pattern_id,
            label=pattern.label,
            category=pattern.category,
            confidence=confidence,
            confidence_score=confidence_score,
            severity=determine_severity(confidence, confidence_score),
            scope=self.config.scope,
            scope_target=self.config.scope_target,
            summary=self._summary(pattern, evidence),
            primary_drivers=drivers,
            driver_info=get_driver_info(pattern, drivers),
            evidence_metrics=evidence,
            benchmark_comparison=self._benchmark(evidence),
            intervention_recommendations=recommendations,
            example_sessions=self._example_sessions(detected, detected_results),
            journey_timeline=timeline,
            representative_session_id=representative,
            financials=revenue,
            revenue_at_risk=revenue.revenue_at_risk,
            aov_is_placeholder=revenue.aov_is_placeholder,
            priority_score=calculate_priority_score(confidence_score, len(detected), len(cohort)),
            data_quality=self._data_quality(cohort, len(detected)),
        )

    def _evidence_metrics(self, detected: Sequence[SessionFeatureVector],
                          cohort: Sequence[SessionFeatureVector]) -> EvidenceMetrics:
        def avg(sessions, field):
            return round(_mean([getattr(s, field) for s in sessions]), 4)

        return EvidenceMetrics(
            avg_products_viewed_per_session=avg(detected, 'products_viewed'),
            avg_same_category_ratio=avg(detected, 'same_category_views_ratio'),
            avg_view_to_cart_rate=avg(detected, 'view_to_cart_rate'),
            avg_session_duration_minutes=avg(detected, 'session_duration_minutes'),
            avg_return_views=avg(detected, 'return_views'),
            avg_search_count=avg(detected, 'search_count'),
            avg_price_range_cv=avg(detected, 'price_range_cv'),
            cohort_avg_products_viewed=avg(cohort, 'products_viewed'),
            cohort_avg_view_to_cart_rate=avg(cohort, 'view_to_cart_rate'),
            cohort_avg_session_duration_minutes=avg(cohort, 'session_duration_minutes'),
            pct_sessions_flagged=len(detected) / len(cohort) if cohort else 0.0,
            affected_session_count=len(detected),
            total_sessions_analyzed=len(cohort),
            intent_session_count=sum(1 for s in detected if s.has_intent == 1),
        )

    def _benchmark(self, evidence: EvidenceMetrics) -> BenchmarkComparison:
        financial = self.config.financial
        yours = evidence.avg_view_to_cart_rate
        benchmark = financial.benchmark_view_to_cart_rate
        deviation = (yours - benchmark) / benchmark * 100
        sign = '+' if deviation > 0 else ''
        direction = 'below' if deviation < 0 else 'above'
        return BenchmarkComparison(
            your_view_to_cart_rate=f"{yours * 100:.1f}%",
            industry_benchmark=financial.benchmark_range_label,
            deviation=f"{sign}{deviation:.0f}% {direction} benchmark",
            category_benchmark=f"{benchmark * 100:.1f}%",
        )

    def _example_sessions(self, detected: Sequence[SessionFeatureVector],
                          results: Dict[str, DetectionResult]) -> Tuple[ExampleSession, ...]:
        # sorted() is stable, so equal scores keep batch order
        ranked = sorted(detected, key=lambda v: results[v.session_id].confidence_score, reverse=True)
        examples = []
        for features in ranked[:self.config.example_session_count]:
            result = results[features.session_id]
            examples.append(ExampleSession(
                session_id=anonymize_session_id(features.session_id),
                products_viewed=features.products_viewed,
                same_category_ratio=round(features.same_category_views_ratio, 2),
                session_minutes=round(features.session_duration_minutes, 1),
                cart_adds=features.add_to_cart_count,
                confidence=result.confidence,
                confidence_score=result.confidence_score,
                key_behavior=describe_key_behavior(features),
            ))
        return tuple(examples)

    def _summary(self, pattern: PatternDefinition, evidence: EvidenceMetrics) -> str:
        return (
            f"Shoppers in {self.config.scope_target} view an average of "
            f"{evidence.avg_products_viewed_per_session:.1f} products over "
            f"{evidence.avg_session_duration_minutes:.1f} minutes with a view-to-cart rate of "
            f"{evidence.avg_view_to_cart_rate * 100:.1f}%. "
            f"{evidence.pct_sessions_flagged * 100:.0f}% of sessions show signs of "
            f"{pattern.label.lower()}."
        )

    def _data_quality(self, cohort: Sequence[SessionFeatureVector], flagged: int) -> DataQuality:
        starts = [v.first_event_ms for v in cohort if v.first_event_ms is not None]
        ends = [v.last_event_ms for v in cohort if v.last_event_ms is not None]
        first = to_iso(min(starts)) if starts else None
        last = to_iso(max(ends)) if ends else None
        date_range = f"{first} to {last}" if first and last else None
        partial = any(v.parsed_timestamp_count < v.event_count for v in cohort)
        return DataQuality(
            sample_size=len(cohort),
            flagged_count=flagged,
            date_range=date_range,
            coverage="partial" if partial else "complete",
        )


@click.command()
@click.argument('events_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--patterns-dir', default=None, help='Directory of pattern definition files')
@click.option('--session-group-id', default=None, help='Identifier of this batch')
@click.option('--workers', default=None, type=int, help='Feature extraction workers')
@click.option('--scope', type=click.Choice(['store', 'category']), default=None, help='Analysis scope')
@click.option('--scope-target', default=None, help='Category name when scope is category')
@click.option('--redis/--no-redis', 'use_redis', default=False, help='Persist diagnoses to Redis')
@click.option('--redis-host', default=None, help='Redis host')
@click.option('--redis-port', default=None, type=int, help='Redis port')
@click.option('--output', '-o', default=None, type=click.Path(dir_okay=False), help='Write the report as JSON')
@click.option('--metrics-port', default=None, type=int, help='Expose Prometheus metrics on this port')
@click.option('--log-format', type=click.Choice(['json', 'console']), default=None, help='Log format')
@click.option('--verbose', '-v', is_flag=True, help='Verbose logging')
def main(events_file, patterns_dir, session_group_id, workers, scope, scope_target, use_redis,
         redis_host, redis_port, output, metrics_port, log_format, verbose):
    """Diagnose behavioral friction patterns in a session event export."""

    config = DiagnosisConfig.from_env()
    if patterns_dir:
        config.patterns_dir = patterns_dir
    if workers:
        config.max_workers = max(1, workers)
    if scope:
        config.scope = scope
    if scope_target:
        config.scope_target = scope_target
    if redis_host:
        config.redis.host = redis_host
    if redis_port:
        config.redis.port = redis_port
    if metrics_port:
        config.metrics_port = metrics_port
    if log_format:
        config.logging.format = log_format
    if verbose:
        config.logging.level = "DEBUG"

    configure_logging(config.logging)

    if config.metrics_port:
        start_http_server(config.metrics_port)
        logger.info("Metrics server started", port=config.metrics_port)

    registry = PatternRegistry.from_directory(config.patterns_dir)
    sink = RedisDiagnosisSink(config.redis) if use_redis else InMemoryDiagnosisSink()
    orchestrator = DiagnosisOrchestrator(registry, config, sink)

    try:
        report = orchestrator.run(load_events_file(events_file), session_group_id=session_group_id)
    except Exception as e:
        logger.error("Diagnosis run failed", error=str(e))
        raise
    finally:
        sink.close()

    if output:
        Path(output).write_text(report.model_dump_json(indent=2))
        click.echo(f"Report written to {output}")

    click.echo(f"Health: {report.health.score} ({report.health.status}) - {report.health.verdict}")
    for diagnosis in report.diagnoses:
        click.echo(
            f"  [{diagnosis.severity.value}] {diagnosis.label}: "
            f"confidence {diagnosis.confidence.value} ({diagnosis.confidence_score:.0f}), "
            f"priority {diagnosis.priority_score:.1f}, "
            f"revenue at risk ${diagnosis.revenue_at_risk:,.2f}"
        )
    for failure in report.failed_patterns:
        click.echo(f"  [failed] {failure.pattern_id}: {failure.error_type}: {failure.message}", err=True)
    if report.empty_cohort:
        click.echo("No sessions in scope.")


if __name__ == '__main__':
    main()
