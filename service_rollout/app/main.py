"""
Rollout service: eligibility decisions and dual-path execution.
"""

import sys
import os
from typing import Any, Callable, Dict, Mapping, Optional

# Add shared directory to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import ConfigurationError

from .config.models import (
    EligibilityConfigModel,
    PublisherConfigRequest,
    PublisherConfigResponse,
    RolloutConfigResponse,
    RolloutConfigUpdateRequest,
)
from .config.provider import ConfigProvider, RedisConfigProvider
from .config.store import RolloutConfigStore, EligibilityConfigStore
from .eligibility.bucketing import Sampler
from .eligibility.criteria import normalize_identifier
from .eligibility.external import ExternalEligibilityChecker, HttpEligibilityClient
from .eligibility.models import EligibilityCheckRequest, EligibilityCheckResponse, EligibilityCriteria
from .eligibility.policy import EligibilityPolicy
from .experiment.funnel import RolloutFunnel
from .experiment.models import ExperimentExecuteRequest, ExperimentExecuteResponse
from .experiment.registry import ExperimentRegistry
from .experiment.runner import ExperimentRunner
from .publishers import (
    ResultPublisher,
    NullResultPublisher,
    CompositeResultPublisher,
    ConsoleResultPublisher,
    LogResultPublisher,
    RedisResultPublisher,
    FireAndForgetPublisher,
)

SERVICE_NAME = "rollout"
SERVICE_PORT = 8020

PUBLISHER_KINDS = ("console", "log", "redis", "null")


def legacy_normalize_identifier(value: Any) -> str:
    """Digits-only normalizer that the alphanumeric one replaces."""
    return "".join(ch for ch in str(value) if ch.isdigit())


def _normalizer(function: Callable[[Any], str]) -> Callable[[Mapping[str, Any]], Callable[[], str]]:
    def factory(payload: Mapping[str, Any]) -> Callable[[], str]:
        return lambda: function(payload.get("identifier", ""))
    return factory


class RolloutService(BaseService):
    """Rollout service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        provider: Optional[ConfigProvider] = None,
        publisher: Optional[ResultPublisher] = None,
        external_checker: Optional[ExternalEligibilityChecker] = None
    ):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config or get_config(SERVICE_NAME, SERVICE_PORT))

        # Initialize components
        self.provider = provider or RedisConfigProvider(self.config.redis_url)
        self.rollout_store = RolloutConfigStore(self.provider)
        self.eligibility_store = EligibilityConfigStore(self.provider)
        self.external_checker = external_checker or self._build_external_checker()
        self.publisher_setting = None if publisher else self.config.result_publisher
        self.publisher = publisher or self._build_publisher(
            self.config.result_publisher,
            self.config.publish_in_background
        )

        self.policy = EligibilityPolicy(
            self.rollout_store,
            self.eligibility_store,
            external_checker=self.external_checker,
            metrics=self.metrics
        )
        self.runner = ExperimentRunner(
            self.rollout_store,
            self.publisher,
            sampler=Sampler(self.config.sampler_seed),
            metrics=self.metrics
        )
        self.funnel = RolloutFunnel(self.policy, self.runner)

        self.registry = ExperimentRegistry()
        self.registry.register(
            "identifier-normalization",
            _normalizer(legacy_normalize_identifier),
            _normalizer(normalize_identifier),
            description="Digits-only identifier normalization against alphanumeric normalization"
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            self.publisher.close()
            if isinstance(self.external_checker, HttpEligibilityClient):
                self.external_checker.close()
            if isinstance(self.provider, RedisConfigProvider):
                self.provider.close()

        self._setup_rollout_routes()

    def _build_external_checker(self) -> Optional[ExternalEligibilityChecker]:
        if not self.config.eligibility_service_url:
            return None
        return HttpEligibilityClient(
            self.config.eligibility_service_url,
            timeout=self.config.eligibility_timeout_seconds,
            failure_threshold=self.config.eligibility_failure_threshold,
            recovery_timeout=self.config.eligibility_recovery_timeout
        )

    def _build_publisher(self, setting: str, background: bool) -> ResultPublisher:
        """Build the publisher named by ``setting``, e.g. "redis,log".

        Several names fan out through a CompositeResultPublisher. The whole
        setting is validated before anything is constructed.
        """
        kinds = list(dict.fromkeys(kind.strip().lower() for kind in setting.split(",") if kind.strip()))
        if not kinds:
            raise ConfigurationError("Result publisher setting is empty", details={"result_publisher": setting})
        unknown = [kind for kind in kinds if kind not in PUBLISHER_KINDS]
        if unknown:
            raise ConfigurationError(
                f"Unknown result publisher '{unknown[0]}'",
                details={"result_publisher": setting, "supported": list(PUBLISHER_KINDS)}
            )

        sinks = [self._build_sink(kind) for kind in kinds if kind != "null"]
        if not sinks:
            return NullResultPublisher()
        publisher = sinks[0] if len(sinks) == 1 else CompositeResultPublisher(sinks)

        if background:
            return FireAndForgetPublisher(
                publisher,
                max_workers=self.config.publisher_workers,
                max_pending=self.config.publisher_max_pending
            )
        return publisher

    def _build_sink(self, kind: str) -> ResultPublisher:
        if kind == "console":
            return ConsoleResultPublisher()
        if kind == "redis":
            return RedisResultPublisher(self.config.redis_url, ttl_seconds=self.config.result_ttl_seconds)
        return LogResultPublisher()

    def set_publisher(self, setting: str, background: Optional[bool] = None) -> ResultPublisher:
        """Swap the publisher used by the runner; the previous one is closed."""
        if background is None:
            background = self.config.publish_in_background
        publisher = self._build_publisher(setting, background)

        previous, self.publisher = self.publisher, publisher
        self.runner.publisher = publisher
        self.publisher_setting = setting
        previous.close()

        self.logger.info(
            "Result publisher switched",
            publisher=setting,
            implementation=type(publisher).__name__,
            previous=type(previous).__name__
        )
        return publisher

    def _setup_rollout_routes(self):
        """Set up rollout-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Rollout decision and dual-path execution service",
                "version": "1.0.0",
                "capabilities": ["eligibility", "experiments", "result_publication"],
                "experiments": self.registry.names()
            }

        @self.app.get("/rollout/config", response_model=RolloutConfigResponse)
        def get_rollout_config():
            """Get the rollout configuration."""
            config = self.rollout_store.snapshot()
            return RolloutConfigResponse(
                enabled=config.enabled,
                percentage=config.percentage,
                publish_results=config.publish_results
            )

        @self.app.put("/rollout/config", response_model=RolloutConfigResponse)
        def update_rollout_config(request: RolloutConfigUpdateRequest):
            """Partially update the rollout configuration."""
            config = self.rollout_store.update(
                enabled=request.enabled,
                percentage=request.percentage,
                publish_results=request.publish_results
            )
            return RolloutConfigResponse(
                enabled=config.enabled,
                percentage=config.percentage,
                publish_results=config.publish_results
            )

        @self.app.get("/rollout/publisher", response_model=PublisherConfigResponse)
        def get_publisher():
            """Describe the active result publisher."""
            return PublisherConfigResponse(
                publisher=self.publisher_setting,
                implementation=type(self.publisher).__name__
            )

        @self.app.post("/rollout/publisher", response_model=PublisherConfigResponse)
        def set_publisher(request: PublisherConfigRequest):
            """Switch the result publisher without restarting."""
            publisher = self.set_publisher(request.publisher, request.background)
            return PublisherConfigResponse(
                publisher=self.publisher_setting,
                implementation=type(publisher).__name__
            )

        @self.app.get("/rollout/eligibility/config", response_model=EligibilityConfigModel)
        def get_eligibility_config():
            """Get the eligibility configuration."""
            return EligibilityConfigModel.from_config(self.policy.get_config())

        @self.app.put("/rollout/eligibility/config", response_model=EligibilityConfigModel)
        def update_eligibility_config(request: EligibilityConfigModel):
            """Replace the eligibility configuration."""
            return EligibilityConfigModel.from_config(self.policy.configure(request.to_config()))

        @self.app.post("/rollout/eligibility/evaluate", response_model=EligibilityCheckResponse)
        def evaluate_eligibility(request: EligibilityCheckRequest):
            """Evaluate a subject against the eligibility policy."""
            verdict = self.policy.evaluate(request.to_criteria())
            return EligibilityCheckResponse(eligible=verdict.eligible, reason=verdict.reason)

        @self.app.post("/rollout/experiments/{name}/execute", response_model=ExperimentExecuteResponse)
        def execute_experiment(name: str, request: ExperimentExecuteRequest):
            """Run a registered experiment and return the control result."""
            experiment = self.registry.get(name)
            criteria = EligibilityCriteria(
                subject_id=request.subject_id,
                subject_type=request.subject_type,
                behavioral_attributes=request.behavioral_attributes,
                contextual_attributes=request.contextual_attributes
            )
            result = self.funnel.execute(
                name,
                criteria,
                experiment.control_factory(request.payload),
                experiment.candidate_factory(request.payload),
                request.context,
                comparator=experiment.comparator,
                cleaner=experiment.cleaner
            )
            return ExperimentExecuteResponse(experiment=name, result=result)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies."""
        return {"config_store": "ok" if self.provider.health_check() else "error"}


def create_app(**kwargs):
    """Create FastAPI application."""
    service = RolloutService(**kwargs)
    return service.app


if __name__ == "__main__":
    service = RolloutService()
    service.run()
