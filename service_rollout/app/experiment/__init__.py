"""
Experiment execution for the Rollout Service.
"""

from .models import Observation, ComparisonResult, CONTROL, CANDIDATE
from .core import Experiment, default_comparator, default_error_comparator
from .runner import ExperimentRunner
from .conditional import ConditionalRunner
from .funnel import RolloutFunnel
from .registry import ExperimentRegistry, RegisteredExperiment

__all__ = [
    "Observation",
    "ComparisonResult",
    "CONTROL",
    "CANDIDATE",
    "Experiment",
    "default_comparator",
    "default_error_comparator",
    "ExperimentRunner",
    "ConditionalRunner",
    "RolloutFunnel",
    "ExperimentRegistry",
    "RegisteredExperiment",
]
