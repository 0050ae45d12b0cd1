"""
Named experiments that can be executed over HTTP.
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from shared.errors import NotFoundError
from .core import Comparator, Cleaner

# A factory receives the request payload and returns the zero-argument
# callable the runner executes.
ImplementationFactory = Callable[[Mapping[str, Any]], Callable[[], Any]]


@dataclass(frozen=True)
class RegisteredExperiment:
    name: str
    control_factory: ImplementationFactory
    candidate_factory: ImplementationFactory
    description: str = ""
    comparator: Optional[Comparator] = None
    cleaner: Optional[Cleaner] = None


class ExperimentRegistry:
    """Thread-safe map of experiment name to its control/candidate factories."""

    def __init__(self):
        self._experiments: Dict[str, RegisteredExperiment] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        control_factory: ImplementationFactory,
        candidate_factory: ImplementationFactory,
        description: str = "",
        comparator: Optional[Comparator] = None,
        cleaner: Optional[Cleaner] = None
    ) -> RegisteredExperiment:
        experiment = RegisteredExperiment(
            name=name,
            control_factory=control_factory,
            candidate_factory=candidate_factory,
            description=description,
            comparator=comparator,
            cleaner=cleaner
        )
        with self._lock:
            self._experiments[name] = experiment
        return experiment

    def get(self, name: str) -> RegisteredExperiment:
        with self._lock:
            experiment = self._experiments.get(name)
        if experiment is None:
            raise NotFoundError(f"Experiment '{name}' is not registered", details={"experiment": name})
        return experiment

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._experiments)
