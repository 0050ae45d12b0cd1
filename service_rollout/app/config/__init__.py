"""
Configuration package.

Providers give scalar string/int reads and writes against the shared
key-value store. Stores layer the typed rollout and eligibility
configuration on top of a provider without caching anything between
calls, so a write is visible on the next decision.
"""

from .provider import ConfigProvider, RedisConfigProvider, InMemoryConfigProvider
from .models import RolloutConfig, EligibilityConfig
from .store import RolloutConfigStore, EligibilityConfigStore

__all__ = [
    "ConfigProvider",
    "RedisConfigProvider",
    "InMemoryConfigProvider",
    "RolloutConfig",
    "EligibilityConfig",
    "RolloutConfigStore",
    "EligibilityConfigStore",
]
