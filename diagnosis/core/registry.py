"""
Pattern registry.

Holds the pattern definitions a diagnosis run evaluates. A registry is
built explicitly by the caller, either from definition files on disk or
from in-memory definitions, and passed to the orchestrator.
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

import structlog
from pydantic import ValidationError

from diagnosis.core.errors import PatternConfigurationError
from diagnosis.core.models.patterns import PatternDefinition

logger = structlog.get_logger(__name__)


def load_pattern(data: Union[Dict[str, Any], PatternDefinition]) -> PatternDefinition:
    """Validate a raw definition, raising PatternConfigurationError on failure."""
    if isinstance(data, PatternDefinition):
        return data

    pattern_id = data.get("pattern_id") if isinstance(data, dict) else None
    try:
        return PatternDefinition.model_validate(data)
    except ValidationError as e:
        raise PatternConfigurationError(
            f"Invalid pattern definition: {e.error_count()} validation error(s): {e}",
            pattern_id=pattern_id,
        ) from e


def load_pattern_file(path: Union[str, Path]) -> PatternDefinition:
    """Load and validate one JSON pattern definition file."""
    path = Path(path)
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise PatternConfigurationError(f"Unreadable pattern file {path}: {e}") from e

    if not isinstance(data, dict):
        raise PatternConfigurationError(f"Pattern file {path} must contain a JSON object")
    return load_pattern(data)


class PatternRegistry:
    """Ordered collection of validated pattern definitions."""

    def __init__(self, patterns: Optional[Iterable[Union[Dict[str, Any], PatternDefinition]]] = None):
        self._patterns: Dict[str, PatternDefinition] = {}
        for pattern in patterns or ():
            self.register(pattern)

    @classmethod
    def from_directory(cls, directory: Union[str, Path]) -> "PatternRegistry":
        """Load every ``*.json`` definition in a directory, sorted by file name."""
        directory = Path(directory)
        if not directory.is_dir():
            raise PatternConfigurationError(f"Pattern directory not found: {directory}")

        registry = cls()
        for path in sorted(directory.glob("*.json")):
            registry.register(load_pattern_file(path))

        logger.info("Loaded pattern registry",
                    directory=str(directory),
                    pattern_count=len(registry))
        return registry

    def register(self, pattern: Union[Dict[str, Any], PatternDefinition]) -> PatternDefinition:
        definition = load_pattern(pattern)
        if definition.pattern_id in self._patterns:
            raise PatternConfigurationError(
                "Pattern already registered", pattern_id=definition.pattern_id
            )
        missing = definition.unknown_bucket_references()
        if missing:
            # Surfaces again as a configuration error when the pattern is diagnosed
            logger.warning("Pattern mapping references undefined intervention buckets",
                           pattern_id=definition.pattern_id,
                           bucket_ids=list(missing))
        self._patterns[definition.pattern_id] = definition
        return definition

    def get(self, pattern_id: str) -> Optional[PatternDefinition]:
        return self._patterns.get(pattern_id)

    def all(self) -> List[PatternDefinition]:
        return list(self._patterns.values())

    def by_category(self, category: str) -> List[PatternDefinition]:
        return [p for p in self._patterns.values() if p.category == category]

    def __contains__(self, pattern_id: object) -> bool:
        return pattern_id in self._patterns

    def __iter__(self) -> Iterator[PatternDefinition]:
        return iter(list(self._patterns.values()))

    def __len__(self) -> int:
        return len(self._patterns)
