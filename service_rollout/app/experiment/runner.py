"""
Gated dual-path execution for the Rollout Service.
"""

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from shared.logging import get_logger, experiment_context
from shared.metrics import MetricsCollector, get_metrics_collector
from ..config.store import RolloutConfigStore
from ..eligibility.bucketing import Sampler, in_bucket
from ..eligibility.models import Verdict
from ..publishers.base import ResultPublisher, NullResultPublisher
from .core import Experiment, Comparator, ErrorComparator, Cleaner, build_contexts


class ExperimentRunner:
    """Runs control alone or control plus candidate, depending on the gate.

    The caller always gets control's outcome: its value, or the exception
    it raised, unchanged. The candidate only ever affects the published
    comparison record.
    """

    def __init__(
        self,
        rollout_store: RolloutConfigStore,
        publisher: ResultPublisher,
        sampler: Optional[Sampler] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.rollout_store = rollout_store
        self.publisher = publisher
        self.sampler = sampler or Sampler()
        self.metrics = metrics or get_metrics_collector("rollout")
        self.logger = get_logger("rollout.runner")

    def run(
        self,
        name: str,
        control: Callable[[], Any],
        candidate: Callable[[], Any],
        context: Optional[Mapping[str, Any]] = None,
        *,
        subject_id: Optional[int] = None,
        verdict: Optional[Verdict] = None,
        comparator: Optional[Comparator] = None,
        error_comparator: Optional[ErrorComparator] = None,
        cleaner: Optional[Cleaner] = None
    ) -> Any:
        """Execute ``control`` and, when the gate admits it, ``candidate``."""
        with experiment_context(name, subject_id):
            admitted, percentage, publish = self._gate(name, subject_id, verdict)
            if not admitted:
                self._skipped(name)
                return control()

            experiment = self._experiment(name, publish, comparator, error_comparator, cleaner)
            contexts = self._contexts(context, percentage, subject_id, verdict)
            return experiment.conduct(control, candidate, contexts, sampler=self.sampler)

    async def run_async(
        self,
        name: str,
        control: Callable[[], Awaitable[Any]],
        candidate: Callable[[], Awaitable[Any]],
        context: Optional[Mapping[str, Any]] = None,
        *,
        subject_id: Optional[int] = None,
        verdict: Optional[Verdict] = None,
        comparator: Optional[Comparator] = None,
        error_comparator: Optional[ErrorComparator] = None,
        cleaner: Optional[Cleaner] = None
    ) -> Any:
        """Async form of run; admitted paths execute concurrently."""
        with experiment_context(name, subject_id):
            admitted, percentage, publish = self._gate(name, subject_id, verdict)
            if not admitted:
                self._skipped(name)
                return await control()

            experiment = self._experiment(name, publish, comparator, error_comparator, cleaner)
            contexts = self._contexts(context, percentage, subject_id, verdict)
            return await experiment.conduct_async(control, candidate, contexts)

    def _gate(
        self,
        name: str,
        subject_id: Optional[int],
        verdict: Optional[Verdict]
    ) -> Tuple[bool, int, bool]:
        """Return (admitted, percentage, publish_results)."""
        if verdict is not None and not verdict.eligible:
            self.logger.debug("Subject not eligible", experiment=name, reason=verdict.reason)
            return False, 0, False

        try:
            if not self.rollout_store.is_enabled():
                return False, 0, False
            percentage = self.rollout_store.get_percentage()
            publish = self.rollout_store.should_publish_results()
        except Exception as e:
            self.logger.error("Failed to read rollout configuration", experiment=name, error=str(e))
            return False, 0, False

        if subject_id is not None:
            admitted = in_bucket(subject_id, percentage)
        else:
            admitted = self.sampler.sample(percentage)
        return admitted, percentage, publish

    def _skipped(self, name: str) -> None:
        self.metrics.increment_counter("experiments_total", experiment=name, outcome="skipped")

    def _experiment(
        self,
        name: str,
        publish: bool,
        comparator: Optional[Comparator],
        error_comparator: Optional[ErrorComparator],
        cleaner: Optional[Cleaner]
    ) -> Experiment:
        return Experiment(
            name,
            self.publisher if publish else NullResultPublisher(),
            self.metrics,
            comparator=comparator,
            error_comparator=error_comparator,
            cleaner=cleaner
        )

    def _contexts(
        self,
        context: Optional[Mapping[str, Any]],
        percentage: int,
        subject_id: Optional[int],
        verdict: Optional[Verdict]
    ) -> Dict[str, Any]:
        values: Dict[str, Any] = {"rollout_percentage": percentage}
        if subject_id is not None:
            values["subject_id"] = subject_id
        if verdict is not None:
            values["eligibility_reason"] = verdict.reason
        return build_contexts(context, **values)
