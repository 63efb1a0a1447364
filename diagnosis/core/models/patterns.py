"""
Pattern definition models.

A pattern is declarative data: weighted detection rules, confidence tiers,
driver definitions, intervention buckets and an ordered mapping from driver
sets to buckets. The engine evaluates any pattern without knowing its
content, so definitions live in JSON files and are validated here on load.
"""

from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Operator(str, Enum):
    """Comparison operators supported in conditions."""
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="
    EQ = "=="
    NEQ = "!="


class BehavioralStage(str, Enum):
    """Where in the journey a pattern is hypothesized to occur."""
    PRE_INTENT = "pre_intent"
    POST_INTENT = "post_intent"


class Confidence(str, Enum):
    """Confidence tiers, lowest to highest."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


CONFIDENCE_ORDER = [Confidence.NONE, Confidence.LOW, Confidence.MEDIUM, Confidence.HIGH]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", use_enum_values=False)


class Condition(_Frozen):
    """``metric operator value`` against a session feature vector."""
    metric: str = Field(..., min_length=1)
    operator: Operator
    value: float
    unit: Optional[str] = None


class Rule(_Frozen):
    """Conjunction of conditions worth ``weight`` points when all hold."""
    id: str = Field(..., min_length=1)
    name: str = ""
    description: str = ""
    conditions: Tuple[Condition, ...] = Field(..., min_length=1)
    weight: float = Field(..., ge=0)


class ConfidenceThresholds(_Frozen):
    """Cumulative score cutoffs, inclusive."""
    high: float
    medium: float
    low: float

    @model_validator(mode="after")
    def check_order(self):
        if not (self.low <= self.medium <= self.high):
            raise ValueError(
                f"confidence thresholds must satisfy low <= medium <= high "
                f"(got low={self.low}, medium={self.medium}, high={self.high})"
            )
        return self


class BonusCondition(_Frozen):
    """Single condition that adds ``points`` when it holds."""
    description: str = ""
    condition: Condition
    points: float = Field(..., ge=0)


class DetectionRules(_Frozen):
    """Weighted rules, tier thresholds and capped bonus conditions."""
    rules: Tuple[Rule, ...] = Field(..., min_length=1)
    confidence_thresholds: ConfidenceThresholds
    bonus_conditions: Tuple[BonusCondition, ...] = ()
    bonus_cap: float = Field(default=10.0, ge=0)

    @model_validator(mode="after")
    def check_unique_rule_ids(self):
        ids = [rule.id for rule in self.rules]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate rule ids: {', '.join(duplicates)}")
        return self


class DriverDefinition(_Frozen):
    """Qualitative explanatory factor; active when every condition holds."""
    id: str = Field(..., min_length=1)
    label: str
    description: str = ""
    detection_conditions: Tuple[Condition, ...] = Field(..., min_length=1)


class RationaleTemplate(_Frozen):
    """Fixed rationale sentence used when its driver condition matches."""
    drivers_include: Optional[Tuple[str, ...]] = None
    drivers_include_all: Optional[Tuple[str, ...]] = None
    text: str


class InterventionBucket(_Frozen):
    """Named category of remediation."""
    id: str = Field(..., min_length=1)
    name: str
    what_it_does: str = ""
    why_it_works: str = ""
    implementation_examples: Tuple[str, ...] = ()
    rationale_templates: Tuple[RationaleTemplate, ...] = ()
    default_rationale: Optional[str] = None


class MappingCondition(_Frozen):
    drivers_include: Optional[Tuple[str, ...]] = None  # any of these
    drivers_include_all: Optional[Tuple[str, ...]] = None  # all of these


class InterventionMappingRule(_Frozen):
    condition: MappingCondition
    primary: str
    secondary: str


class InterventionMapping(_Frozen):
    """Ordered first-match rules plus unconditional defaults."""
    rules: Tuple[InterventionMappingRule, ...] = ()
    default_primary: str
    default_secondary: str


class PatternDefinition(_Frozen):
    """Complete declarative definition of a behavioral friction pattern."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    pattern_id: str = Field(..., min_length=1, pattern=r"^[a-z0-9_]+$")
    label: str
    category: str = ""
    description: str = ""
    behavioral_stage: BehavioralStage
    expected_conversion_rate: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    detection_rules: DetectionRules
    driver_definitions: Tuple[DriverDefinition, ...] = ()
    intervention_buckets: Tuple[InterventionBucket, ...] = Field(..., min_length=1)
    intervention_mapping: InterventionMapping

    @model_validator(mode="after")
    def check_references(self):
        driver_ids = [d.id for d in self.driver_definitions]
        duplicate_drivers = sorted({i for i in driver_ids if driver_ids.count(i) > 1})
        if duplicate_drivers:
            raise ValueError(f"duplicate driver ids: {', '.join(duplicate_drivers)}")

        bucket_ids = [b.id for b in self.intervention_buckets]
        duplicate_buckets = sorted({i for i in bucket_ids if bucket_ids.count(i) > 1})
        if duplicate_buckets:
            raise ValueError(f"duplicate intervention bucket ids: {', '.join(duplicate_buckets)}")
        return self

    def get_bucket(self, bucket_id: str) -> Optional[InterventionBucket]:
        for bucket in self.intervention_buckets:
            if bucket.id == bucket_id:
                return bucket
        return None

    def get_driver(self, driver_id: str) -> Optional[DriverDefinition]:
        for driver in self.driver_definitions:
            if driver.id == driver_id:
                return driver
        return None

    def unknown_bucket_references(self) -> Tuple[str, ...]:
        """Bucket ids referenced by the mapping but not defined by the pattern."""
        defined = {b.id for b in self.intervention_buckets}
        referenced = [self.intervention_mapping.default_primary,
                      self.intervention_mapping.default_secondary]
        for rule in self.intervention_mapping.rules:
            referenced.extend([rule.primary, rule.secondary])
        missing = []
        for bucket_id in referenced:
            if bucket_id not in defined and bucket_id not in missing:
                missing.append(bucket_id)
        return tuple(missing)
