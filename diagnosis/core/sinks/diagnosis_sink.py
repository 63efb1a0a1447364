"""
Diagnosis sinks.

Hand finished diagnoses to persistence. The Redis sink stores a flattened
hash per diagnosis, the full JSON record under a ``latest`` pointer and a
priority-ranked sorted set per session group.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

import redis
import structlog

from diagnosis.core.models.config import RedisConfig
from diagnosis.core.models.results import DiagnosisOutput
from diagnosis.core.utils.metrics import SINK_WRITES

logger = structlog.get_logger(__name__)


class DiagnosisSink:
    """Interface for diagnosis persistence."""

    name = "base"

    def write_diagnosis(self, session_group_id: str, diagnosis: DiagnosisOutput) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        pass


class InMemoryDiagnosisSink(DiagnosisSink):
    """Keeps records in a dict keyed by (session group, pattern id)."""

    name = "memory"

    def __init__(self):
        self.records: Dict[Tuple[str, str], Dict[str, Any]] = {}

    def write_diagnosis(self, session_group_id: str, diagnosis: DiagnosisOutput) -> bool:
        self.records[(session_group_id, diagnosis.pattern_id)] = diagnosis.to_record()
        SINK_WRITES.labels(sink=self.name, status='success').inc()
        return True

    def get(self, session_group_id: str, pattern_id: str) -> Optional[Dict[str, Any]]:
        return self.records.get((session_group_id, pattern_id))

    def for_group(self, session_group_id: str) -> List[Dict[str, Any]]:
        return [record for (group, _), record in self.records.items() if group == session_group_id]


class RedisDiagnosisSink(DiagnosisSink):
    """Sink diagnoses to Redis for dashboard consumption."""

    name = "redis"

    def __init__(self, config: RedisConfig, redis_client=None):
        self.config = config
        self.redis_client = redis_client or redis.Redis(
            host=config.host,
            port=config.port,
            db=config.db,
            password=config.password,
            decode_responses=True
        )

    def _serialize_for_redis(self, record: Dict[str, Any]) -> Dict[str, str]:
        """Convert record values to Redis-compatible strings."""
        serialized = {}
        for key, value in record.items():
            if value is None:
                serialized[key] = "null"
            elif isinstance(value, bool):
                serialized[key] = "true" if value else "false"
            elif isinstance(value, (int, float, str)):
                serialized[key] = str(value)
            else:
                serialized[key] = json.dumps(value)
        return serialized

    def write_diagnosis(self, session_group_id: str, diagnosis: DiagnosisOutput) -> bool:
        """Write one diagnosis; failures are logged and reported as False."""
        prefix = self.config.key_prefix
        diagnosis_key = f"{prefix}:{session_group_id}:{diagnosis.pattern_id}"
        latest_key = f"{prefix}:latest:{session_group_id}:{diagnosis.pattern_id}"
        ranked_key = f"{prefix}:ranked:{session_group_id}"
        ttl_seconds = self.config.result_ttl_hours * 3600

        try:
            record = diagnosis.to_record()

            self.redis_client.hset(diagnosis_key, mapping=self._serialize_for_redis(record))
            self.redis_client.expire(diagnosis_key, ttl_seconds)

            self.redis_client.set(latest_key, diagnosis.model_dump_json(), ex=ttl_seconds)

            self.redis_client.zadd(ranked_key, {diagnosis.pattern_id: diagnosis.priority_score})
            self.redis_client.expire(ranked_key, ttl_seconds)

            SINK_WRITES.labels(sink=self.name, status='success').inc()
            logger.debug("Wrote diagnosis to Redis",
                         session_group_id=session_group_id,
                         pattern_id=diagnosis.pattern_id,
                         key=diagnosis_key)
            return True

        except redis.RedisError as e:
            SINK_WRITES.labels(sink=self.name, status='error').inc()
            logger.error("Failed to write diagnosis to Redis",
                         session_group_id=session_group_id,
                         pattern_id=diagnosis.pattern_id,
                         error=str(e))
            return False

    def close(self) -> None:
        self.redis_client.close()
