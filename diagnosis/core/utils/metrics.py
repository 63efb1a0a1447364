"""
Shared Prometheus metrics for the diagnosis pipeline.

This module provides centralized metric definitions to avoid
duplicate registrations across processor modules.
"""

from prometheus_client import Counter, Histogram

# Feature extraction metrics
SESSIONS_EXTRACTED = Counter(
    'diagnosis_sessions_extracted_total',
    'Total session feature vectors extracted'
)

DATA_QUALITY_EXCLUSIONS = Counter(
    'diagnosis_data_quality_exclusions_total',
    'Raw values skipped because they could not be used',
    ['reason']
)

# Pattern evaluation metrics
PATTERN_EVALUATIONS = Counter(
    'diagnosis_pattern_evaluations_total',
    'Pattern evaluations across a session batch',
    ['pattern_id', 'outcome']
)

DIAGNOSES_PRODUCED = Counter(
    'diagnosis_diagnoses_produced_total',
    'Diagnoses produced',
    ['pattern_id', 'severity']
)

CONFIGURATION_ERRORS = Counter(
    'diagnosis_configuration_errors_total',
    'Pattern definitions rejected as internally inconsistent',
    ['pattern_id']
)

# Processing metrics
PIPELINE_DURATION = Histogram(
    'diagnosis_pipeline_duration_seconds',
    'Time spent per diagnosis pipeline stage',
    ['stage']
)

# Sink metrics
SINK_WRITES = Counter(
    'diagnosis_sink_writes_total',
    'Diagnosis sink write operations',
    ['sink', 'status']
)
