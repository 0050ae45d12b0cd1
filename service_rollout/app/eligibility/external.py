"""
External eligibility service client.
"""

from abc import ABC, abstractmethod

import httpx

from shared.logging import get_logger
from shared.errors import ExternalServiceError
from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException


class ExternalEligibilityChecker(ABC):
    """Boolean oracle consulted when a request asks for an external check."""

    @abstractmethod
    def is_eligible(self, normalized_identifier: str, subject_id: int) -> bool:
        """Return whether the identified subject may take part."""


class HttpEligibilityClient(ExternalEligibilityChecker):
    """Client for the external eligibility service."""

    SERVICE_NAME = "eligibility_service"

    def __init__(
        self,
        eligibility_service_url: str,
        timeout: float = 2.0,
        failure_threshold: int = 3,
        recovery_timeout: float = 30.0,
        client: httpx.Client = None
    ):
        self.eligibility_service_url = eligibility_service_url.rstrip("/")
        self.logger = get_logger("rollout.eligibility.external")
        self.client = client or httpx.Client(timeout=timeout)
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            name=self.SERVICE_NAME
        )

    def is_eligible(self, normalized_identifier: str, subject_id: int) -> bool:
        """Check eligibility with the external service."""
        def _check() -> bool:
            response = self.client.post(
                f"{self.eligibility_service_url}/eligibility/check",
                json={"identifier": normalized_identifier, "subject_id": subject_id}
            )
            if response.status_code != 200:
                raise ExternalServiceError(
                    self.SERVICE_NAME,
                    f"unexpected status {response.status_code}",
                    details={"status_code": response.status_code}
                )
            return bool(response.json().get("eligible", False))

        try:
            eligible = self.circuit_breaker.call(_check)
        except CircuitBreakerOpenException as e:
            self.logger.warning(
                "Eligibility service circuit open",
                subject_id=subject_id,
                **self.circuit_breaker.get_state()
            )
            raise ExternalServiceError(self.SERVICE_NAME, "circuit open", details={"breaker": str(e)})
        except httpx.HTTPError as e:
            self.logger.error("Eligibility service HTTP error", subject_id=subject_id, error=str(e))
            raise ExternalServiceError(self.SERVICE_NAME, "unavailable", details={"http_error": str(e)})

        self.logger.info("External eligibility checked", subject_id=subject_id, eligible=eligible)
        return eligible

    def close(self):
        self.client.close()
