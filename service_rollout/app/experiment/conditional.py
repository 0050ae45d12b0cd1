"""
Condition-driven comparisons.

Unlike ExperimentRunner there is no gate here: both implementations always
run, and the condition only decides which of them is authoritative.
"""

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from shared.logging import get_logger, experiment_context
from shared.metrics import MetricsCollector, get_metrics_collector
from ..config.store import RolloutConfigStore
from ..eligibility.bucketing import Sampler, in_bucket
from ..publishers.base import ResultPublisher, NullResultPublisher
from .core import Experiment, Comparator, ErrorComparator, Cleaner, build_contexts


class ConditionalRunner:
    """Compares two implementations, picking control from a boolean condition."""

    def __init__(
        self,
        publisher: ResultPublisher,
        settings: Optional[RolloutConfigStore] = None,
        sampler: Optional[Sampler] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.publisher = publisher
        self.settings = settings
        self.sampler = sampler or Sampler()
        self.metrics = metrics or get_metrics_collector("rollout")
        self.logger = get_logger("rollout.conditional")

    def run(
        self,
        name: str,
        true_impl: Callable[[], Any],
        false_impl: Callable[[], Any],
        condition: bool,
        experiment_type: str = "A",
        context: Optional[Mapping[str, Any]] = None,
        *,
        comparator: Optional[Comparator] = None,
        error_comparator: Optional[ErrorComparator] = None,
        cleaner: Optional[Cleaner] = None
    ) -> Any:
        """Return the outcome of ``true_impl`` when condition holds, else ``false_impl``."""
        experiment = self._experiment(name, experiment_type, comparator, error_comparator, cleaner)
        contexts = build_contexts(context, condition_value=condition, experiment_type=experiment_type)
        control, candidate = (true_impl, false_impl) if condition else (false_impl, true_impl)
        with experiment_context(experiment.name):
            return experiment.conduct(control, candidate, contexts, sampler=self.sampler)

    async def run_async(
        self,
        name: str,
        true_impl: Callable[[], Awaitable[Any]],
        false_impl: Callable[[], Awaitable[Any]],
        condition: bool,
        experiment_type: str = "A",
        context: Optional[Mapping[str, Any]] = None,
        *,
        comparator: Optional[Comparator] = None,
        error_comparator: Optional[ErrorComparator] = None,
        cleaner: Optional[Cleaner] = None
    ) -> Any:
        experiment = self._experiment(name, experiment_type, comparator, error_comparator, cleaner)
        contexts = build_contexts(context, condition_value=condition, experiment_type=experiment_type)
        control, candidate = (true_impl, false_impl) if condition else (false_impl, true_impl)
        with experiment_context(experiment.name):
            return await experiment.conduct_async(control, candidate, contexts)

    def run_rollout(
        self,
        name: str,
        new_impl: Callable[[], Any],
        old_impl: Callable[[], Any],
        percentage: int,
        subject_id: int,
        experiment_type: str = "A",
        context: Optional[Mapping[str, Any]] = None,
        *,
        comparator: Optional[Comparator] = None,
        error_comparator: Optional[ErrorComparator] = None,
        cleaner: Optional[Cleaner] = None
    ) -> Any:
        """Serve ``new_impl`` to subjects inside the percentage and compare against ``old_impl``."""
        in_group = in_bucket(subject_id, percentage)
        with experiment_context(subject_id=subject_id):
            return self.run(
                name,
                new_impl,
                old_impl,
                in_group,
                experiment_type,
                self._rollout_context(context, percentage, subject_id, in_group),
                comparator=comparator,
                error_comparator=error_comparator,
                cleaner=cleaner
            )

    async def run_rollout_async(
        self,
        name: str,
        new_impl: Callable[[], Awaitable[Any]],
        old_impl: Callable[[], Awaitable[Any]],
        percentage: int,
        subject_id: int,
        experiment_type: str = "A",
        context: Optional[Mapping[str, Any]] = None,
        *,
        comparator: Optional[Comparator] = None,
        error_comparator: Optional[ErrorComparator] = None,
        cleaner: Optional[Cleaner] = None
    ) -> Any:
        in_group = in_bucket(subject_id, percentage)
        with experiment_context(subject_id=subject_id):
            return await self.run_async(
                name,
                new_impl,
                old_impl,
                in_group,
                experiment_type,
                self._rollout_context(context, percentage, subject_id, in_group),
                comparator=comparator,
                error_comparator=error_comparator,
                cleaner=cleaner
            )

    @staticmethod
    def _rollout_context(
        context: Optional[Mapping[str, Any]],
        percentage: int,
        subject_id: int,
        in_group: bool
    ) -> Dict[str, Any]:
        merged: Dict[str, Any] = dict(context or {})
        merged.update(
            rollout_percentage=percentage,
            subject_id=subject_id,
            in_rollout_group=in_group
        )
        return merged

    def _experiment(
        self,
        name: str,
        experiment_type: str,
        comparator: Optional[Comparator],
        error_comparator: Optional[ErrorComparator],
        cleaner: Optional[Cleaner]
    ) -> Experiment:
        return Experiment(
            f"{name}_{experiment_type}",
            self.publisher if self._should_publish() else NullResultPublisher(),
            self.metrics,
            comparator=comparator,
            error_comparator=error_comparator,
            cleaner=cleaner
        )

    def _should_publish(self) -> bool:
        if self.settings is None:
            return True
        try:
            return self.settings.should_publish_results()
        except Exception as e:
            self.logger.error("Failed to read publish setting", error=str(e))
            return False
