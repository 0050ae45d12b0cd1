"""
Unit tests for the Rollout main service.
"""

import pytest
from unittest.mock import MagicMock
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.config import get_config
from shared.errors import ConfigurationError
from service_rollout.app.config.provider import InMemoryConfigProvider
from service_rollout.app.eligibility.external import ExternalEligibilityChecker
from service_rollout.app.main import RolloutService, create_app, legacy_normalize_identifier
from service_rollout.app.publishers import (
    ResultPublisher,
    NullResultPublisher,
    CompositeResultPublisher,
    LogResultPublisher,
    RedisResultPublisher,
    FireAndForgetPublisher,
)


class RecordingPublisher(ResultPublisher):
    """Publisher that keeps every record in memory."""

    def __init__(self):
        self.results = []

    def publish(self, result):
        self.results.append(result)


class TestRolloutService:
    """Test cases for RolloutService."""

    @pytest.fixture
    def provider(self):
        """Create in-memory provider."""
        return InMemoryConfigProvider()

    @pytest.fixture
    def publisher(self):
        """Create recording publisher."""
        return RecordingPublisher()

    @pytest.fixture
    def external_checker(self):
        """Mock external eligibility collaborator."""
        checker = MagicMock(spec=ExternalEligibilityChecker)
        checker.is_eligible.return_value = False
        return checker

    @pytest.fixture
    def service(self, provider, publisher, external_checker):
        """Create RolloutService instance."""
        return RolloutService(provider=provider, publisher=publisher, external_checker=external_checker)

    @pytest.fixture
    def client(self, service):
        """Create test client."""
        return TestClient(service.app)

    def test_root_endpoint(self, client):
        """Test root endpoint."""
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "rollout"
        assert "identifier-normalization" in data["experiments"]

    def test_health_endpoint(self, client):
        """Test health endpoint."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["dependencies"] == {"config_store": "ok"}

    def test_health_degraded_when_store_down(self, client, provider):
        """Test that an unhealthy config store reports 503."""
        provider.health_check = MagicMock(return_value=False)

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"
        assert response.json()["dependencies"] == {"config_store": "error"}

    def test_request_id_is_echoed(self, client):
        """Test that the caller's request id comes back on the response."""
        response = client.get("/", headers={"x-request-id": "req-123"})

        assert response.headers["x-request-id"] == "req-123"
        assert client.get("/").headers["x-request-id"]

    def test_metrics_endpoint(self, client):
        """Test metrics endpoint."""
        client.get("/")
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text

    def test_rollout_config_round_trip(self, client):
        """Test reading and partially updating the rollout configuration."""
        assert client.get("/rollout/config").json() == {
            "enabled": True,
            "percentage": 0,
            "publish_results": True
        }

        response = client.put("/rollout/config", json={"percentage": 35})
        assert response.status_code == 200
        assert response.json()["percentage"] == 35

        response = client.put("/rollout/config", json={"enabled": False})
        assert response.json() == {"enabled": False, "percentage": 35, "publish_results": True}

    def test_invalid_percentage_rejected(self, client):
        """Test that an out-of-range percentage is a configuration error."""
        client.put("/rollout/config", json={"percentage": 20})

        response = client.put("/rollout/config", json={"percentage": 101, "enabled": False})

        assert response.status_code == 400
        assert response.json()["code"] == "CONFIGURATION_ERROR"
        assert client.get("/rollout/config").json() == {
            "enabled": True,
            "percentage": 20,
            "publish_results": True
        }

    def test_eligibility_config_round_trip(self, client):
        """Test replacing and reading the eligibility configuration."""
        payload = {
            "criteria_validation_active": True,
            "multiple_criteria_enabled": False,
            "allowed_subject_types": ["Premium"],
            "allowed_groups": ["Beta Testers", "Partners"],
            "allowed_allowlist_ids": [],
            "allowed_regions": ["EU", "US"]
        }

        response = client.put("/rollout/eligibility/config", json=payload)

        assert response.status_code == 200
        assert response.json() == payload
        assert client.get("/rollout/eligibility/config").json() == payload

    def test_evaluate_eligibility(self, client):
        """Test the evaluation endpoint."""
        client.put("/rollout/config", json={"percentage": 100})
        client.put("/rollout/eligibility/config", json={
            "criteria_validation_active": True,
            "allowed_subject_types": ["Premium"]
        })

        allowed = client.post("/rollout/eligibility/evaluate", json={"subject_id": 1, "subject_type": "premium"})
        denied = client.post("/rollout/eligibility/evaluate", json={"subject_id": 1, "subject_type": "Basic"})

        assert allowed.json() == {"eligible": True, "reason": "eligible: functional criteria satisfied"}
        assert denied.json()["eligible"] is False

    def test_evaluate_with_external_denial(self, client, external_checker):
        """Test that the external collaborator is consulted on request."""
        client.put("/rollout/config", json={"percentage": 100})
        client.put("/rollout/eligibility/config", json={"criteria_validation_active": True})

        response = client.post("/rollout/eligibility/evaluate", json={
            "subject_id": 1,
            "contextual_attributes": {"allowlist_id": "AB-12", "check_external": True}
        })

        assert response.json()["eligible"] is False
        external_checker.is_eligible.assert_called_once_with("AB12", 1)

    def test_execute_experiment(self, client, publisher):
        """Test executing the registered demo experiment."""
        client.put("/rollout/config", json={"percentage": 100})

        response = client.post("/rollout/experiments/identifier-normalization/execute", json={
            "subject_id": 4,
            "payload": {"identifier": "AB-12"},
            "context": {"caller": "test"}
        })

        assert response.status_code == 200
        assert response.json() == {"experiment": "identifier-normalization", "result": "12"}
        record = publisher.results[0]
        assert record.matched is False
        assert record.candidate.value == "AB12"
        assert record.contexts["caller"] == "test"
        assert record.contexts["subject_id"] == 4

    def test_execute_experiment_outside_rollout(self, client, publisher):
        """Test that the control result is returned without a record at 0%."""
        response = client.post("/rollout/experiments/identifier-normalization/execute", json={
            "subject_id": 4,
            "payload": {"identifier": "9-8-7"}
        })

        assert response.json()["result"] == "987"
        assert publisher.results == []

    def test_execute_unknown_experiment(self, client):
        """Test that unknown experiments return 404."""
        response = client.post("/rollout/experiments/missing/execute", json={"subject_id": 1})

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_switch_publisher(self, client, service, publisher):
        """Test switching the runner's publisher at runtime."""
        assert client.get("/rollout/publisher").json() == {
            "publisher": None,
            "implementation": "RecordingPublisher"
        }

        response = client.post("/rollout/publisher", json={"publisher": "console,log", "background": False})

        assert response.status_code == 200
        assert response.json() == {"publisher": "console,log", "implementation": "CompositeResultPublisher"}
        assert isinstance(service.runner.publisher, CompositeResultPublisher)
        assert service.runner.publisher is service.publisher

        service.runner.publisher = MagicMock(spec=ResultPublisher)
        client.put("/rollout/config", json={"percentage": 100})
        client.post("/rollout/experiments/identifier-normalization/execute", json={
            "subject_id": 4,
            "payload": {"identifier": "AB-12"}
        })
        service.runner.publisher.publish.assert_called_once()
        assert publisher.results == []

    def test_switch_to_unknown_publisher_rejected(self, client, service, publisher):
        """Test that an unknown publisher leaves the current one in place."""
        response = client.post("/rollout/publisher", json={"publisher": "log,kafka"})

        assert response.status_code == 400
        assert response.json()["code"] == "CONFIGURATION_ERROR"
        assert service.runner.publisher is publisher

    def test_legacy_normalizer(self):
        """Test the digits-only normalizer."""
        assert legacy_normalize_identifier("AB-12 3") == "123"


class TestPublisherSelection:
    """Test cases for publisher construction from settings."""

    def _service(self, **overrides):
        config = get_config("rollout", 8020, **overrides)
        return RolloutService(config=config, provider=InMemoryConfigProvider())

    def test_background_log_publisher(self):
        """Test the default publisher."""
        service = self._service(result_publisher="log", publish_in_background=True)

        assert isinstance(service.publisher, FireAndForgetPublisher)
        assert isinstance(service.publisher.publisher, LogResultPublisher)
        service.publisher.close()

    def test_foreground_publisher(self):
        """Test disabling background publication."""
        service = self._service(result_publisher="log", publish_in_background=False)

        assert isinstance(service.publisher, LogResultPublisher)

    def test_null_publisher(self):
        """Test the null publisher."""
        service = self._service(result_publisher="null")

        assert isinstance(service.publisher, NullResultPublisher)

    def test_unknown_publisher(self):
        """Test that unknown publisher names are rejected."""
        with pytest.raises(ConfigurationError):
            self._service(result_publisher="kafka")

    def test_composite_publisher(self):
        """Test that several names fan out through one publisher."""
        service = self._service(result_publisher="redis, log", publish_in_background=False)

        assert isinstance(service.publisher, CompositeResultPublisher)
        assert [type(p) for p in service.publisher.publishers] == [RedisResultPublisher, LogResultPublisher]
        assert service.runner.publisher is service.publisher

    def test_background_composite_publisher(self):
        """Test that the background pool wraps the whole fan-out."""
        service = self._service(result_publisher="console,log", publish_in_background=True, publisher_max_pending=5)

        assert isinstance(service.publisher, FireAndForgetPublisher)
        assert isinstance(service.publisher.publisher, CompositeResultPublisher)
        assert service.publisher.max_pending == 5
        service.publisher.close()

    def test_empty_publisher_setting(self):
        """Test that an empty setting is rejected."""
        with pytest.raises(ConfigurationError):
            self._service(result_publisher=" , ")

    def test_create_app(self):
        """Test app factory."""
        app = create_app(provider=InMemoryConfigProvider(), publisher=NullResultPublisher())

        assert app.title == "Rollout Service"
