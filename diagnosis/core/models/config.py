#!/usr/bin/env python3
"""
Diagnosis Pipeline Configuration

Centralized configuration for the behavioral diagnosis pipeline.
Supports environment-based overrides for different deployments.
"""

import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FinancialConfig(BaseModel):
    """Fallbacks and benchmarks used by the financial estimator."""

    model_config = ConfigDict(validate_assignment=True)

    placeholder_aov: float = Field(default=112.0, gt=0, description="AOV used when no purchase values are available")
    default_conversion_rate: float = Field(
        default=0.02, ge=0.0, le=1.0,
        description="Conversion rate used when the batch has no purchases"
    )
    benchmark_view_to_cart_rate: float = Field(
        default=0.085, gt=0.0, le=1.0,
        description="Industry view-to-cart benchmark"
    )
    benchmark_range_label: str = Field(default="6-11%", description="Quoted benchmark range")


class RedisConfig(BaseModel):
    """Redis configuration for the diagnosis sink."""

    model_config = ConfigDict(validate_assignment=True)

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    db: int = Field(default=0, description="Redis database number")
    password: Optional[str] = Field(default=None, description="Redis password")
    key_prefix: str = Field(default="diagnosis", description="Key namespace for diagnosis records")
    result_ttl_hours: int = Field(default=24 * 7, description="TTL for stored diagnoses in hours")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(validate_assignment=True)

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or console")


class DiagnosisConfig(BaseModel):
    """Complete diagnosis pipeline configuration."""

    model_config = ConfigDict(validate_assignment=True)

    financial: FinancialConfig = Field(default_factory=FinancialConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    patterns_dir: str = Field(default="patterns", description="Directory of pattern definition files")
    max_workers: int = Field(default=1, ge=1, description="Feature extraction workers (1 = sequential)")
    example_session_count: int = Field(default=3, ge=0, description="Example sessions per diagnosis")
    pogo_window_seconds: float = Field(default=60.0, gt=0, description="Max gap between pogo-stick views")

    scope: str = Field(default="store", description="Analysis scope: store or category")
    scope_target: str = Field(default="store-wide", description="Human-readable scope target")

    metrics_port: Optional[int] = Field(default=None, description="Prometheus metrics port")

    @classmethod
    def from_env(cls) -> "DiagnosisConfig":
        """
        Load configuration from environment variables.

        Overrides are validated on assignment, so an out-of-range value
        raises a pydantic ValidationError here rather than later in a run.
        """
        config = cls()

        if os.getenv("PATTERNS_DIR"):
            config.patterns_dir = os.getenv("PATTERNS_DIR")
        if os.getenv("DIAGNOSIS_MAX_WORKERS"):
            config.max_workers = max(1, int(os.getenv("DIAGNOSIS_MAX_WORKERS")))

        # Financial configuration
        if os.getenv("PLACEHOLDER_AOV"):
            config.financial.placeholder_aov = float(os.getenv("PLACEHOLDER_AOV"))
        if os.getenv("DEFAULT_CONVERSION_RATE"):
            config.financial.default_conversion_rate = float(os.getenv("DEFAULT_CONVERSION_RATE"))

        # Redis configuration
        if os.getenv("REDIS_HOST"):
            config.redis.host = os.getenv("REDIS_HOST")
        if os.getenv("REDIS_PORT"):
            config.redis.port = int(os.getenv("REDIS_PORT"))

        # Logging configuration
        if os.getenv("LOG_LEVEL"):
            config.logging.level = os.getenv("LOG_LEVEL")
        if os.getenv("LOG_FORMAT"):
            config.logging.format = os.getenv("LOG_FORMAT")

        return config
