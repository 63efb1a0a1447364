"""
Driver attribution.

A driver is a qualitative explanatory factor attached to a pattern. It is
active for a session when all of its detection conditions hold, using the
same fail-closed semantics as rule evaluation.
"""

from typing import Dict, Iterable, List, Tuple

from diagnosis.core.models.features import SessionFeatureVector
from diagnosis.core.models.patterns import PatternDefinition
from diagnosis.core.models.results import DriverInfo
from diagnosis.core.processors.rules import evaluate_conditions


def detect_drivers(pattern: PatternDefinition, features: SessionFeatureVector) -> Tuple[str, ...]:
    """Ids of active drivers, in definition order."""
    return tuple(
        driver.id for driver in pattern.driver_definitions
        if evaluate_conditions(driver.detection_conditions, features)
    )


def detect_drivers_across_sessions(pattern: PatternDefinition,
                                   sessions: Iterable[SessionFeatureVector]) -> Dict[str, Tuple[str, ...]]:
    return {features.session_id: detect_drivers(pattern, features) for features in sessions}


def union_drivers(pattern: PatternDefinition, driver_sets: Iterable[Iterable[str]]) -> Tuple[str, ...]:
    """Union of driver sets, ordered as the pattern defines its drivers."""
    active = set()
    for drivers in driver_sets:
        active.update(drivers)
    return tuple(d.id for d in pattern.driver_definitions if d.id in active)


def get_driver_labels(pattern: PatternDefinition, driver_ids: Iterable[str]) -> List[str]:
    """Human-readable labels; unknown ids fall back to the id itself."""
    labels = []
    for driver_id in driver_ids:
        driver = pattern.get_driver(driver_id)
        labels.append(driver.label if driver else driver_id)
    return labels


def get_driver_info(pattern: PatternDefinition, driver_ids: Iterable[str]) -> Tuple[DriverInfo, ...]:
    info = []
    for driver_id in driver_ids:
        driver = pattern.get_driver(driver_id)
        if driver is None:
            info.append(DriverInfo(id=driver_id, label=driver_id))
        else:
            info.append(DriverInfo(id=driver.id, label=driver.label, description=driver.description))
    return tuple(info)
