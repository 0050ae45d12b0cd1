"""
Config providers for the Rollout Service.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

import redis

from shared.logging import get_logger
from shared.errors import RolloutException


class ConfigProvider(ABC):
    """Scalar key-value access to the shared configuration store."""

    @abstractmethod
    def get_string(self, key: str, default: str) -> str:
        """Return the stored value, or ``default`` when missing or empty."""

    @abstractmethod
    def set_string(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""

    def get_int(self, key: str, default: int) -> int:
        """Return the stored value as int, or ``default`` when missing or unparsable."""
        value = self.get_string(key, str(default))
        try:
            return int(value.strip())
        except (TypeError, ValueError):
            return default

    def health_check(self) -> bool:
        return True


class RedisConfigProvider(ConfigProvider):
    """Redis-backed config provider.

    Redis applies every SET atomically, so concurrent readers observe
    either the old or the new value of a key.
    """

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.logger = get_logger("rollout.config.redis")
        self.redis = client or redis.Redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30
        )

    def get_string(self, key: str, default: str) -> str:
        value = self.redis.get(key)
        if value is None or value == "":
            return default
        return value

    def set_string(self, key: str, value: str) -> None:
        try:
            self.redis.set(key, value)
        except redis.RedisError as e:
            self.logger.error("Failed to write config value", key=key, error=str(e))
            raise RolloutException("CONFIG_WRITE_FAILED", str(e), {"key": key})
        self.logger.info("Config value updated", key=key, value=value)

    def health_check(self) -> bool:
        """Check Redis health."""
        try:
            return bool(self.redis.ping())
        except redis.RedisError:
            return False

    def close(self):
        self.redis.close()


class InMemoryConfigProvider(ConfigProvider):
    """Process-local provider for local runs and tests."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get_string(self, key: str, default: str) -> str:
        with self._lock:
            value = self._values.get(key)
        if value is None or value == "":
            return default
        return value

    def set_string(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._values)
