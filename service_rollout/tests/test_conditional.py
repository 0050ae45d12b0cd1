"""
Unit tests for ConditionalRunner.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.metrics import get_metrics_collector
from service_rollout.app.config.provider import InMemoryConfigProvider
from service_rollout.app.config.store import RolloutConfigStore
from service_rollout.app.eligibility.bucketing import in_bucket
from service_rollout.app.experiment.conditional import ConditionalRunner
from service_rollout.app.publishers.base import ResultPublisher


class RecordingPublisher(ResultPublisher):
    """Publisher that keeps every record in memory."""

    def __init__(self):
        self.results = []

    def publish(self, result):
        self.results.append(result)


class TestConditionalRunner:
    """Test cases for ConditionalRunner."""

    @pytest.fixture
    def publisher(self):
        """Create recording publisher."""
        return RecordingPublisher()

    @pytest.fixture
    def runner(self, publisher):
        """Create ConditionalRunner instance."""
        return ConditionalRunner(publisher, metrics=get_metrics_collector("rollout"))

    def test_condition_true_uses_true_impl(self, runner, publisher):
        """Test that the true implementation is control when the condition holds."""
        result = runner.run("pricing", lambda: "new", lambda: "old", True)

        assert result == "new"
        record = publisher.results[0]
        assert record.experiment_name == "pricing_A"
        assert record.control.value == "new"
        assert record.candidate.value == "old"
        assert record.contexts["condition_value"] is True
        assert record.contexts["experiment_type"] == "A"

    def test_condition_false_swaps_roles(self, runner, publisher):
        """Test that the false implementation is control otherwise."""
        result = runner.run("pricing", lambda: "new", lambda: "old", False, experiment_type="B")

        assert result == "old"
        record = publisher.results[0]
        assert record.experiment_name == "pricing_B"
        assert record.control.value == "old"
        assert record.candidate.value == "new"
        assert record.contexts["condition_value"] is False

    def test_both_paths_always_run(self, runner):
        """Test that the non-authoritative path runs as well."""
        calls = []

        runner.run("exp", lambda: calls.append("true"), lambda: calls.append("false"), True)

        assert sorted(calls) == ["false", "true"]

    def test_options_are_forwarded(self, runner, publisher):
        """Test that comparator and cleaner options apply."""
        runner.run(
            "exp",
            lambda: " A ",
            lambda: "A",
            True,
            comparator=lambda a, b: a.strip() == b.strip(),
            cleaner=lambda value: value.strip()
        )

        record = publisher.results[0]
        assert record.matched is True
        assert record.control.cleaned_value == "A"

    def test_unknown_option_rejected(self, runner, publisher):
        """Test that a misspelled option fails instead of being ignored."""
        calls = []

        with pytest.raises(TypeError):
            runner.run("exp", lambda: calls.append("true"), lambda: calls.append("false"), True, comparer=None)
        with pytest.raises(TypeError):
            runner.run_rollout("exp", lambda: 1, lambda: 1, 50, 7, clean=str)

        assert calls == []
        assert publisher.results == []

    def test_candidate_error_contained(self, runner, publisher):
        """Test that the candidate's error stays in the record."""
        def failing():
            raise ValueError("boom")

        assert runner.run("exp", lambda: 1, failing, True) == 1
        assert publisher.results[0].candidate_raised is True

    def test_run_rollout(self, runner, publisher):
        """Test rollout-driven selection for subjects inside and outside the group."""
        inside = next(s for s in range(1000) if in_bucket(s, 30))
        outside = next(s for s in range(1000) if not in_bucket(s, 30))

        assert runner.run_rollout("search", lambda: "new", lambda: "old", 30, inside) == "new"
        assert runner.run_rollout("search", lambda: "new", lambda: "old", 30, outside) == "old"

        first, second = publisher.results
        assert first.contexts["in_rollout_group"] is True
        assert first.contexts["subject_id"] == inside
        assert first.contexts["rollout_percentage"] == 30
        assert second.contexts["in_rollout_group"] is False

    def test_publish_setting_is_honored(self, publisher):
        """Test that publication follows the store when one is supplied."""
        store = RolloutConfigStore(InMemoryConfigProvider())
        store.set_publish_results(False)
        runner = ConditionalRunner(publisher, settings=store, metrics=get_metrics_collector("rollout"))

        assert runner.run("exp", lambda: 1, lambda: 1, True) == 1
        assert publisher.results == []

    @pytest.mark.asyncio
    async def test_run_async(self, runner, publisher):
        """Test the async form."""
        async def new():
            return "new"

        async def old():
            return "old"

        assert await runner.run_async("exp", new, old, False) == "old"
        assert await runner.run_rollout_async("exp", new, old, 100, 7) == "new"
        assert len(publisher.results) == 2
        assert publisher.results[1].contexts["in_rollout_group"] is True
