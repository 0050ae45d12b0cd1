"""
Redis result store for the Rollout Service.
"""

import json
import uuid
from typing import TYPE_CHECKING, Optional

import redis

from shared.logging import get_logger
from .base import ResultPublisher

if TYPE_CHECKING:
    from ..experiment.models import ComparisonResult


class RedisResultPublisher(ResultPublisher):
    """Stores each comparison record as JSON under its own key."""

    RESULT_PREFIX = "experiment:result:"

    def __init__(
        self,
        redis_url: str,
        ttl_seconds: int = 604800,
        client: Optional[redis.Redis] = None
    ):
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("rollout.publisher.redis")
        self.redis = client or redis.Redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True
        )

    def publish(self, result: "ComparisonResult") -> None:
        """Store the record; Redis errors are logged and the record dropped."""
        key = f"{self.RESULT_PREFIX}{uuid.uuid4()}"
        try:
            self.redis.setex(key, self.ttl_seconds, json.dumps(result.to_dict(), default=str))
        except redis.RedisError as e:
            self.logger.error(
                "Failed to store experiment result",
                experiment=result.experiment_name,
                error=str(e)
            )
            return

        self.logger.debug("Stored experiment result", experiment=result.experiment_name, key=key)

    def close(self) -> None:
        self.redis.close()
