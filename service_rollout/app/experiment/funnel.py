"""
Eligibility-gated execution: policy evaluation followed by the runner.
"""

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from shared.logging import get_logger
from ..eligibility.models import EligibilityCriteria, Verdict
from ..eligibility.policy import EligibilityPolicy
from .runner import ExperimentRunner


class RolloutFunnel:
    """Evaluates a subject against the policy and runs the comparison."""

    def __init__(self, policy: EligibilityPolicy, runner: ExperimentRunner):
        self.policy = policy
        self.runner = runner
        self.logger = get_logger("rollout.funnel")

    def execute(
        self,
        name: str,
        criteria: EligibilityCriteria,
        control: Callable[[], Any],
        candidate: Callable[[], Any],
        context: Optional[Mapping[str, Any]] = None,
        **options: Any
    ) -> Any:
        verdict = self.policy.evaluate(criteria)
        return self.runner.run(
            name,
            control,
            candidate,
            self._context(criteria, verdict, context),
            subject_id=criteria.subject_id,
            verdict=verdict,
            **options
        )

    async def execute_async(
        self,
        name: str,
        criteria: EligibilityCriteria,
        control: Callable[[], Awaitable[Any]],
        candidate: Callable[[], Awaitable[Any]],
        context: Optional[Mapping[str, Any]] = None,
        **options: Any
    ) -> Any:
        verdict = self.policy.evaluate(criteria)
        return await self.runner.run_async(
            name,
            control,
            candidate,
            self._context(criteria, verdict, context),
            subject_id=criteria.subject_id,
            verdict=verdict,
            **options
        )

    def _context(
        self,
        criteria: EligibilityCriteria,
        verdict: Verdict,
        context: Optional[Mapping[str, Any]]
    ) -> Dict[str, Any]:
        merged: Dict[str, Any] = dict(context or {})
        merged.update(criteria.context_summary())
        merged["eligibility_reason"] = verdict.reason

        self.logger.debug(
            "Funnel decision",
            subject_id=criteria.subject_id,
            eligible=verdict.eligible,
            reason=verdict.reason
        )
        return merged
