"""
Intervention selection.

Maps the active drivers of a diagnosis to a primary and secondary
intervention bucket using the pattern's ordered mapping rules. The first
matching rule wins; otherwise the pattern's defaults apply.
"""

from typing import Iterable, Optional, Sequence, Tuple

from diagnosis.core.errors import InterventionBucketNotFoundError
from diagnosis.core.models.patterns import InterventionBucket, PatternDefinition
from diagnosis.core.models.results import InterventionRecommendation, InterventionRecommendations

PRIMARY_QUICK_WINS = 3
FALLBACK_RATIONALE = "Recommended based on behavioral patterns"
SECONDARY_RATIONALE = "Supporting intervention derived from pattern structure."


def matches_drivers(drivers_include: Optional[Sequence[str]],
                    drivers_include_all: Optional[Sequence[str]],
                    active: Iterable[str]) -> bool:
    """
    All of ``drivers_include_all`` must be active and, when given, at least
    one of ``drivers_include``.
    """
    active = set(active)
    if drivers_include_all and not all(d in active for d in drivers_include_all):
        return False
    if drivers_include is not None and not any(d in active for d in drivers_include):
        return False
    return True


def generate_rationale(bucket: InterventionBucket, drivers: Iterable[str]) -> str:
    drivers = set(drivers)
    for template in bucket.rationale_templates:
        if matches_drivers(template.drivers_include, template.drivers_include_all, drivers):
            return template.text
    return bucket.default_rationale or FALLBACK_RATIONALE


def _resolve_buckets(pattern: PatternDefinition, primary_id: str,
                     secondary_id: str) -> Tuple[InterventionBucket, InterventionBucket]:
    primary = pattern.get_bucket(primary_id)
    secondary = pattern.get_bucket(secondary_id)
    missing = [bucket_id for bucket_id, bucket in ((primary_id, primary), (secondary_id, secondary))
               if bucket is None]
    if missing:
        raise InterventionBucketNotFoundError(pattern.pattern_id, missing)
    return primary, secondary


def get_all_relevant_buckets(pattern: PatternDefinition, drivers: Iterable[str]) -> Tuple[str, ...]:
    """Buckets of every matching mapping rule plus both defaults, first-seen order."""
    drivers = set(drivers)
    mapping = pattern.intervention_mapping
    relevant = []
    for rule in mapping.rules:
        if matches_drivers(rule.condition.drivers_include, rule.condition.drivers_include_all, drivers):
            relevant.extend([rule.primary, rule.secondary])
    relevant.extend([mapping.default_primary, mapping.default_secondary])
    return tuple(dict.fromkeys(relevant))


def select_interventions(pattern: PatternDefinition, drivers: Iterable[str]) -> InterventionRecommendations:
    """
    Select primary/secondary interventions for a set of active drivers.

    Raises:
        InterventionBucketNotFoundError: if the resolved bucket ids are not
            defined by the pattern
    """
    drivers = tuple(drivers)
    mapping = pattern.intervention_mapping

    primary_id, secondary_id, matched_rule = mapping.default_primary, mapping.default_secondary, None
    for index, rule in enumerate(mapping.rules):
        if matches_drivers(rule.condition.drivers_include, rule.condition.drivers_include_all, drivers):
            primary_id, secondary_id, matched_rule = rule.primary, rule.secondary, index
            break

    primary, secondary = _resolve_buckets(pattern, primary_id, secondary_id)

    return InterventionRecommendations(
        primary=InterventionRecommendation(
            bucket=primary.id,
            label=primary.name,
            description=primary.what_it_does,
            why_it_works=primary.why_it_works,
            rationale=generate_rationale(primary, drivers),
            quick_wins=primary.implementation_examples[:PRIMARY_QUICK_WINS],
        ),
        secondary=InterventionRecommendation(
            bucket=secondary.id,
            label=secondary.name,
            description=secondary.what_it_does,
            why_it_works=secondary.why_it_works,
            rationale=SECONDARY_RATIONALE,
            quick_wins=secondary.implementation_examples,
        ),
        all_relevant_buckets=get_all_relevant_buckets(pattern, drivers),
        matched_rule=matched_rule,
    )
