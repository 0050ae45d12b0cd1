"""
Layered eligibility policy for the Rollout Service.
"""

from typing import List, Optional, Sequence

from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from ..config.models import EligibilityConfig
from ..config.store import RolloutConfigStore, EligibilityConfigStore
from .bucketing import in_bucket
from .criteria import (
    BehavioralPredicate,
    DEFAULT_BEHAVIORAL_PREDICATES,
    check_functional,
    check_behavioral,
    check_contextual,
)
from .external import ExternalEligibilityChecker
from .models import EligibilityCriteria, Verdict


class EligibilityPolicy:
    """Decides whether a subject takes part in the comparison.

    Evaluation order, stopping at the first failure:

    1. rollout switch
    2. percentage gate (the only gate when criteria validation is inactive)
    3. functional criteria
    4. behavioral and contextual criteria, when multiple criteria are enabled

    Any error raised while evaluating yields an ineligible verdict.
    """

    def __init__(
        self,
        rollout_store: RolloutConfigStore,
        eligibility_store: EligibilityConfigStore,
        external_checker: Optional[ExternalEligibilityChecker] = None,
        behavioral_predicates: Optional[Sequence[BehavioralPredicate]] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.rollout_store = rollout_store
        self.eligibility_store = eligibility_store
        self.external_checker = external_checker
        self.behavioral_predicates: List[BehavioralPredicate] = list(
            DEFAULT_BEHAVIORAL_PREDICATES if behavioral_predicates is None else behavioral_predicates
        )
        self.metrics = metrics or get_metrics_collector("rollout")
        self.logger = get_logger("rollout.eligibility")

    def add_behavioral_predicate(self, predicate: BehavioralPredicate) -> None:
        """Append a behavioral predicate; it runs after the existing ones."""
        self.behavioral_predicates.append(predicate)

    def get_config(self) -> EligibilityConfig:
        return self.eligibility_store.load()

    def configure(self, config: EligibilityConfig) -> EligibilityConfig:
        self.eligibility_store.save(config)
        return self.eligibility_store.load()

    def evaluate(self, criteria: EligibilityCriteria) -> Verdict:
        """Evaluate eligibility against the current configuration."""
        with self.metrics.time_operation("eligibility_evaluation_duration_seconds"):
            verdict = self._evaluate(criteria)

        self.metrics.increment_counter(
            "eligibility_decisions_total",
            decision="eligible" if verdict.eligible else "ineligible"
        )
        self.logger.debug(
            "Eligibility evaluated",
            subject_id=criteria.subject_id,
            eligible=verdict.eligible,
            reason=verdict.reason
        )
        return verdict

    def _evaluate(self, criteria: EligibilityCriteria) -> Verdict:
        try:
            if not self.rollout_store.is_enabled():
                return Verdict.deny("rollout disabled")

            percentage = self.rollout_store.get_percentage()
            config = self.eligibility_store.load()
            in_rollout = in_bucket(criteria.subject_id, percentage)

            if not config.criteria_validation_active:
                if in_rollout:
                    return Verdict.allow("eligible by percentage, criteria validation inactive")
                return Verdict.deny(f"outside rollout percentage ({percentage}%)")

            if not in_rollout:
                return Verdict.deny(f"outside rollout percentage ({percentage}%)")

            reason = check_functional(criteria, config, self.external_checker)
            if reason is not None:
                return Verdict.deny(reason)

            if not config.multiple_criteria_enabled:
                return Verdict.allow("eligible: functional criteria satisfied")

            reason = check_behavioral(criteria, self.behavioral_predicates)
            if reason is None:
                reason = check_contextual(criteria, config)
            if reason is not None:
                return Verdict.deny(reason)

            return Verdict.allow("eligible: all criteria satisfied")

        except Exception as e:
            self.logger.error(
                "Error evaluating eligibility",
                subject_id=criteria.subject_id,
                error=str(e)
            )
            return Verdict.deny(f"evaluation error: {e}")
