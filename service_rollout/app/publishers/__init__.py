"""
Result publishers for the Rollout Service.
"""

from .base import (
    ResultPublisher,
    NullResultPublisher,
    CompositeResultPublisher,
    FireAndForgetPublisher,
)
from .console import ConsoleResultPublisher, LogResultPublisher
from .redis_store import RedisResultPublisher

__all__ = [
    "ResultPublisher",
    "NullResultPublisher",
    "CompositeResultPublisher",
    "FireAndForgetPublisher",
    "ConsoleResultPublisher",
    "LogResultPublisher",
    "RedisResultPublisher",
]
