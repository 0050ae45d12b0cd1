"""
Unit tests for ExperimentRunner.
"""

import pytest
from unittest.mock import MagicMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.metrics import get_metrics_collector
from service_rollout.app.config.provider import InMemoryConfigProvider
from service_rollout.app.config.store import RolloutConfigStore
from service_rollout.app.eligibility.bucketing import Sampler, in_bucket
from service_rollout.app.eligibility.models import Verdict
from service_rollout.app.experiment.runner import ExperimentRunner
from service_rollout.app.publishers.base import ResultPublisher


class RecordingPublisher(ResultPublisher):
    """Publisher that keeps every record in memory."""

    def __init__(self):
        self.results = []

    def publish(self, result):
        self.results.append(result)


class CallCounter:
    """Callable that counts invocations."""

    def __init__(self, value=None, error=None):
        self.value = value
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.value


class TestExperimentRunner:
    """Test cases for ExperimentRunner."""

    @pytest.fixture
    def store(self):
        """Create rollout store at 100%."""
        store = RolloutConfigStore(InMemoryConfigProvider())
        store.set_percentage(100)
        return store

    @pytest.fixture
    def publisher(self):
        """Create recording publisher."""
        return RecordingPublisher()

    @pytest.fixture
    def metrics(self):
        """Create isolated metrics collector."""
        return get_metrics_collector("rollout")

    @pytest.fixture
    def runner(self, store, publisher, metrics):
        """Create ExperimentRunner instance."""
        return ExperimentRunner(store, publisher, sampler=Sampler(seed=11), metrics=metrics)

    def test_disabled_rollout_never_runs_candidate(self, runner, store, publisher, metrics):
        """Test that a disabled rollout only runs control."""
        store.set_enabled(False)
        control = CallCounter("control-value")
        candidate = CallCounter("candidate-value")

        result = runner.run("exp", control, candidate, subject_id=1)

        assert result == "control-value"
        assert control.calls == 1
        assert candidate.calls == 0
        assert publisher.results == []
        assert metrics.get_sample_value("experiments_total", experiment="exp", outcome="skipped") == 1.0

    def test_zero_percent_runs_control_only(self, runner, store, publisher):
        """Test that 0% never runs the candidate."""
        store.set_percentage(0)
        candidate = CallCounter("B")

        for subject_id in range(50):
            assert runner.run("exp", lambda: "A", candidate, subject_id=subject_id) == "A"

        assert candidate.calls == 0
        assert publisher.results == []

    def test_hundred_percent_matching_values(self, runner, publisher):
        """Test that matching values publish a matched record."""
        result = runner.run("exp", lambda: "A", lambda: "A", subject_id=3)

        assert result == "A"
        assert len(publisher.results) == 1
        record = publisher.results[0]
        assert record.matched is True
        assert record.experiment_name == "exp"
        assert record.control.value == "A"
        assert record.candidate.value == "A"

    def test_mismatching_values(self, runner, publisher, metrics):
        """Test that differing values publish a mismatch and return control."""
        result = runner.run("exp", lambda: 1, lambda: 2)

        assert result == 1
        assert publisher.results[0].matched is False
        assert metrics.get_sample_value("experiments_total", experiment="exp", outcome="mismatched") == 1.0

    def test_candidate_error_is_contained(self, runner, publisher, metrics):
        """Test that a raising candidate never reaches the caller."""
        result = runner.run("exp", lambda: "A", CallCounter(error=ValueError("boom")))

        assert result == "A"
        record = publisher.results[0]
        assert record.matched is False
        assert record.candidate_raised is True
        assert record.control_raised is False
        assert record.to_dict()["candidates"][0]["error"] == {"type": "ValueError", "message": "boom"}
        assert metrics.get_sample_value("candidate_errors_total", experiment="exp") == 1.0

    def test_control_error_is_reraised_unchanged(self, runner, publisher):
        """Test that control's exception propagates as the same object."""
        error = KeyError("missing")

        with pytest.raises(KeyError) as exc_info:
            runner.run("exp", CallCounter(error=error), lambda: "B")

        assert exc_info.value is error
        assert publisher.results[0].matched is False
        assert publisher.results[0].control_raised is True

    def test_both_errors_match(self, runner, publisher):
        """Test that two failures count as agreement by default."""
        with pytest.raises(RuntimeError):
            runner.run("exp", CallCounter(error=RuntimeError("a")), CallCounter(error=ValueError("b")))

        record = publisher.results[0]
        assert record.matched is True
        assert record.control_raised is True
        assert record.candidate_raised is True

    def test_error_comparator(self, runner, publisher):
        """Test that a custom error comparator decides matching failures."""
        with pytest.raises(RuntimeError):
            runner.run(
                "exp",
                CallCounter(error=RuntimeError("a")),
                CallCounter(error=ValueError("b")),
                error_comparator=lambda c, k: type(c) is type(k)
            )

        assert publisher.results[0].matched is False

    def test_custom_comparator(self, runner, publisher):
        """Test that a custom comparator decides matching values."""
        runner.run("exp", lambda: "abc", lambda: "ABC", comparator=lambda a, b: a.lower() == b.lower())

        assert publisher.results[0].matched is True

    def test_raising_comparator_is_mismatch(self, runner, publisher):
        """Test that a failing comparator yields a mismatch."""
        def comparator(a, b):
            raise TypeError("cannot compare")

        result = runner.run("exp", lambda: 1, lambda: 1, comparator=comparator)

        assert result == 1
        assert publisher.results[0].matched is False

    def test_cleaner_output_reaches_sink(self, runner, publisher):
        """Test that the sink sees cleaned values and the caller the raw value."""
        result = runner.run("exp", lambda: {"id": 1, "secret": "x"}, lambda: {"id": 1, "secret": "y"},
                            cleaner=lambda value: value["id"])

        assert result == {"id": 1, "secret": "x"}
        record = publisher.results[0]
        assert record.control.cleaned_value == 1
        assert record.candidate.cleaned_value == 1
        assert record.to_dict()["control"]["value"] == 1

    def test_failing_cleaner(self, runner, publisher):
        """Test that a failing cleaner yields None without affecting the caller."""
        def cleaner(value):
            raise ValueError("bad")

        assert runner.run("exp", lambda: "A", lambda: "A", cleaner=cleaner) == "A"
        assert publisher.results[0].control.cleaned_value is None

    def test_publish_results_disabled(self, runner, store, publisher):
        """Test that nothing reaches the sink while publication is off."""
        store.set_publish_results(False)
        candidate = CallCounter("A")

        assert runner.run("exp", lambda: "A", candidate) == "A"
        assert candidate.calls == 1
        assert publisher.results == []

        store.set_publish_results(True)
        runner.run("exp", lambda: "A", candidate)
        assert len(publisher.results) == 1

    def test_sink_failure_never_reaches_caller(self, store, metrics):
        """Test that publication errors are logged and counted."""
        failing = MagicMock(spec=ResultPublisher)
        failing.publish.side_effect = IOError("disk full")
        runner = ExperimentRunner(store, failing, metrics=metrics)

        assert runner.run("exp", lambda: "A", lambda: "A") == "A"
        failing.publish.assert_called_once()
        assert metrics.get_sample_value(
            "publication_failures_total",
            publisher=type(failing).__name__
        ) == 1.0

    def test_config_failure_runs_control_only(self, publisher, metrics):
        """Test that a failing config store falls back to control."""
        store = MagicMock()
        store.is_enabled.side_effect = ConnectionError("down")
        runner = ExperimentRunner(store, publisher, metrics=metrics)
        candidate = CallCounter("B")

        assert runner.run("exp", lambda: "A", candidate) == "A"
        assert candidate.calls == 0
        assert publisher.results == []

    def test_ineligible_verdict_runs_control_only(self, runner, publisher):
        """Test that an ineligible verdict skips the candidate."""
        candidate = CallCounter("B")

        result = runner.run("exp", lambda: "A", candidate, subject_id=1, verdict=Verdict.deny("subject type not allowed"))

        assert result == "A"
        assert candidate.calls == 0
        assert publisher.results == []

    def test_subject_bucketing_is_respected(self, runner, store, publisher):
        """Test that only subjects inside the percentage run the candidate."""
        store.set_percentage(50)
        inside = next(s for s in range(1000) if in_bucket(s, 50))
        outside = next(s for s in range(1000) if not in_bucket(s, 50))
        candidate = CallCounter("A")

        runner.run("exp", lambda: "A", candidate, subject_id=outside)
        assert candidate.calls == 0

        runner.run("exp", lambda: "A", candidate, subject_id=inside)
        assert candidate.calls == 1
        assert len(publisher.results) == 1

    def test_contexts(self, runner, publisher):
        """Test that engine values are merged over the caller context."""
        runner.run(
            "exp",
            lambda: "A",
            lambda: "A",
            {"source": "api", "rollout_percentage": "caller"},
            subject_id=9,
            verdict=Verdict.allow("eligible: functional criteria satisfied")
        )

        contexts = publisher.results[0].contexts
        assert contexts["source"] == "api"
        assert contexts["rollout_percentage"] == 100
        assert contexts["subject_id"] == 9
        assert contexts["eligibility_reason"] == "eligible: functional criteria satisfied"
        assert "timestamp" in contexts

    def test_contexts_without_subject(self, runner, publisher):
        """Test that subject keys are omitted when no subject is known."""
        runner.run("exp", lambda: "A", lambda: "A")

        contexts = publisher.results[0].contexts
        assert "subject_id" not in contexts
        assert "eligibility_reason" not in contexts

    def test_observations_are_timed(self, runner, publisher):
        """Test that both observations carry a duration."""
        runner.run("exp", lambda: sum(range(1000)), lambda: sum(range(1000)))

        record = publisher.results[0]
        assert record.control.duration_ns >= 0
        assert record.candidate.duration_ns >= 0
        assert record.control.name == "control"
        assert record.candidate.name == "candidate"
