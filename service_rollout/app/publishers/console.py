"""
Console and log publishers.
"""

import sys
import threading
from typing import TYPE_CHECKING, Optional, TextIO

from shared.logging import get_logger
from .base import ResultPublisher

if TYPE_CHECKING:
    from ..experiment.models import ComparisonResult


class ConsoleResultPublisher(ResultPublisher):
    """Publisher that writes the results to a text stream."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream
        self._lock = threading.Lock()

    def publish(self, result: "ComparisonResult") -> None:
        lines = [
            f"Experiment: {result.experiment_name}",
            "Result: " + ("SUCCESS - Matching Values" if result.matched else "FAILURE - Different Values"),
            f"Control value: {result.control.cleaned_value}",
            f"Control duration: {result.control.duration_ms}ms",
        ]
        if result.control.raised:
            lines.append(f"Control error: {result.control.exception!r}")

        for observation in result.candidates:
            lines.append(f"Candidate: {observation.name}")
            lines.append(f"Candidate value: {observation.cleaned_value}")
            lines.append(f"Candidate duration: {observation.duration_ms}ms")
            if observation.raised:
                lines.append(f"Candidate error: {observation.exception!r}")

        for key, value in result.contexts.items():
            lines.append(f"Context - {key}: {value}")
        lines.append("-" * 34)

        stream = self.stream or sys.stdout
        with self._lock:
            stream.write("\n".join(lines) + "\n")
            stream.flush()


class LogResultPublisher(ResultPublisher):
    """Publisher that emits one structured log event per result."""

    def __init__(self, logger_name: str = "rollout.publisher.log"):
        self.logger = get_logger(logger_name)

    def publish(self, result: "ComparisonResult") -> None:
        candidate = result.candidate
        self.logger.info(
            "Experiment result",
            experiment=result.experiment_name,
            status="SUCCESS" if result.matched else "FAILURE",
            control=result.control.cleaned_value,
            control_duration_ms=result.control.duration_ms,
            candidate_name=candidate.name,
            candidate=candidate.cleaned_value,
            candidate_duration_ms=candidate.duration_ms,
            candidate_error=repr(candidate.exception) if candidate.raised else None,
            contexts=result.contexts
        )

        if not result.matched:
            self.logger.warning(
                "Mismatch detected",
                experiment=result.experiment_name,
                control=result.control.cleaned_value,
                candidate=candidate.cleaned_value,
                control_raised=result.control_raised,
                candidate_raised=result.candidate_raised
            )
