"""
Execution, comparison and publication machinery shared by the runners.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..eligibility.bucketing import Sampler
from ..publishers.base import ResultPublisher
from .models import Observation, ComparisonResult, CONTROL, CANDIDATE

Comparator = Callable[[Any, Any], bool]
ErrorComparator = Callable[[BaseException, BaseException], bool]
Cleaner = Callable[[Any], Any]


def default_comparator(control_value: Any, candidate_value: Any) -> bool:
    return control_value == candidate_value


def default_error_comparator(control_error: BaseException, candidate_error: BaseException) -> bool:
    # Both sides failing counts as agreement
    return True


def build_contexts(caller_context: Optional[Mapping[str, Any]], **engine_values: Any) -> Dict[str, Any]:
    """Merge caller context with engine values; engine values win."""
    contexts: Dict[str, Any] = dict(caller_context or {})
    contexts.update(engine_values)
    contexts["timestamp"] = datetime.now(timezone.utc).isoformat()
    return contexts


class Experiment:
    """A single named control/candidate comparison."""

    def __init__(
        self,
        name: str,
        publisher: ResultPublisher,
        metrics: MetricsCollector,
        comparator: Optional[Comparator] = None,
        error_comparator: Optional[ErrorComparator] = None,
        cleaner: Optional[Cleaner] = None
    ):
        self.name = name
        self.publisher = publisher
        self.metrics = metrics
        self.comparator = comparator or default_comparator
        self.error_comparator = error_comparator or default_error_comparator
        self.cleaner = cleaner
        self.logger = get_logger("rollout.experiment")

    def conduct(
        self,
        control: Callable[[], Any],
        candidate: Callable[[], Any],
        contexts: Dict[str, Any],
        sampler: Optional[Sampler] = None
    ) -> Any:
        """Run both paths, publish the comparison and return control's outcome."""
        functions = {CONTROL: control, CANDIDATE: candidate}
        order = sampler.shuffled([CONTROL, CANDIDATE]) if sampler else [CONTROL, CANDIDATE]

        observations = {role: self.observe(role, functions[role]) for role in order}

        self.finish(observations[CONTROL], observations[CANDIDATE], contexts)
        return observations[CONTROL].unwrap()

    async def conduct_async(
        self,
        control: Callable[[], Awaitable[Any]],
        candidate: Callable[[], Awaitable[Any]],
        contexts: Dict[str, Any]
    ) -> Any:
        """Async form of conduct; both paths run concurrently."""
        control_observation, candidate_observation = await asyncio.gather(
            self.observe_async(CONTROL, control),
            self.observe_async(CANDIDATE, candidate)
        )

        self.finish(control_observation, candidate_observation, contexts)
        return control_observation.unwrap()

    def observe(self, role: str, function: Callable[[], Any]) -> Observation:
        start = time.perf_counter_ns()
        try:
            value = function()
            exception = None
        except Exception as e:
            value = None
            exception = e
        return self._observation(role, value, exception, time.perf_counter_ns() - start)

    async def observe_async(self, role: str, function: Callable[[], Awaitable[Any]]) -> Observation:
        start = time.perf_counter_ns()
        try:
            value = await function()
            exception = None
        except Exception as e:
            value = None
            exception = e
        return self._observation(role, value, exception, time.perf_counter_ns() - start)

    def _observation(self, role: str, value: Any, exception: Optional[BaseException], duration_ns: int) -> Observation:
        self.metrics.observe_histogram(
            "observation_duration_seconds",
            duration_ns / 1_000_000_000,
            experiment=self.name,
            role=role
        )
        return Observation(
            name=role,
            value=value,
            duration_ns=max(duration_ns, 0),
            exception=exception
        )

    def finish(self, control: Observation, candidate: Observation, contexts: Dict[str, Any]) -> ComparisonResult:
        """Compare, clean and publish."""
        matched = self.compare(control, candidate)
        self.clean(control)
        self.clean(candidate)

        result = ComparisonResult(
            experiment_name=self.name,
            control=control,
            candidates=(candidate,),
            matched=matched,
            contexts=contexts
        )

        if candidate.raised:
            self.metrics.increment_counter("candidate_errors_total", experiment=self.name)
            self.logger.warning(
                "Candidate raised",
                experiment=self.name,
                error_type=type(candidate.exception).__name__,
                error=str(candidate.exception)
            )
        self.metrics.increment_counter(
            "experiments_total",
            experiment=self.name,
            outcome="matched" if matched else "mismatched"
        )

        publish_result(self.publisher, result, self.metrics)
        return result

    def compare(self, control: Observation, candidate: Observation) -> bool:
        try:
            if not control.raised and not candidate.raised:
                return bool(self.comparator(control.value, candidate.value))
            if control.raised and candidate.raised:
                return bool(self.error_comparator(control.exception, candidate.exception))
            return False
        except Exception as e:
            self.logger.error("Comparator raised", experiment=self.name, error=str(e))
            return False

    def clean(self, observation: Observation) -> None:
        if observation.raised:
            observation.cleaned_value = None
            return
        if self.cleaner is None:
            observation.cleaned_value = observation.value
            return
        try:
            observation.cleaned_value = self.cleaner(observation.value)
        except Exception as e:
            self.logger.error("Cleaner raised", experiment=self.name, role=observation.name, error=str(e))
            observation.cleaned_value = None


def publish_result(publisher: ResultPublisher, result: ComparisonResult, metrics: MetricsCollector) -> None:
    """Hand the record to the publisher; failures stay here."""
    try:
        publisher.publish(result)
    except Exception as e:
        get_logger("rollout.experiment").error(
            "Result publication failed",
            experiment=result.experiment_name,
            publisher=type(publisher).__name__,
            error=str(e)
        )
        metrics.increment_counter("publication_failures_total", publisher=type(publisher).__name__)
