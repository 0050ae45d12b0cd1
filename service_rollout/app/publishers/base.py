"""
Result publisher interface and structural publishers.
"""

import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Iterable, List

from shared.logging import get_logger

if TYPE_CHECKING:
    from ..experiment.models import ComparisonResult


class ResultPublisher(ABC):
    """Consumes comparison records.

    Implementations own their failures: ``publish`` is expected to log and
    drop errors rather than raise them into the runner.
    """

    @abstractmethod
    def publish(self, result: "ComparisonResult") -> None:
        """Publish one comparison record."""

    def close(self) -> None:
        pass


class NullResultPublisher(ResultPublisher):
    """Publisher that does nothing with the results."""

    def publish(self, result: "ComparisonResult") -> None:
        return None


class CompositeResultPublisher(ResultPublisher):
    """Fans a record out to several publishers, isolating each one."""

    def __init__(self, publishers: Iterable[ResultPublisher]):
        self.publishers: List[ResultPublisher] = list(publishers)
        self.logger = get_logger("rollout.publisher.composite")

    def publish(self, result: "ComparisonResult") -> None:
        for publisher in self.publishers:
            try:
                publisher.publish(result)
            except Exception as e:
                self.logger.error(
                    "Publisher failed",
                    publisher=type(publisher).__name__,
                    experiment=result.experiment_name,
                    error=str(e)
                )

    def close(self) -> None:
        for publisher in self.publishers:
            publisher.close()


class FireAndForgetPublisher(ResultPublisher):
    """Hands records to a worker pool so callers return before delivery.

    At most ``max_pending`` records are queued or in delivery at once.
    Records arriving while the pool is saturated are logged and dropped.
    """

    def __init__(self, publisher: ResultPublisher, max_workers: int = 2, max_pending: int = 1000):
        self.publisher = publisher
        self.max_pending = max(1, max_pending)
        self.logger = get_logger("rollout.publisher.background")
        self._slots = threading.BoundedSemaphore(self.max_pending)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="result-publisher"
        )

    def publish(self, result: "ComparisonResult") -> None:
        if not self._slots.acquire(blocking=False):
            self.logger.warning(
                "Background publisher saturated, dropping result",
                publisher=type(self.publisher).__name__,
                experiment=result.experiment_name,
                max_pending=self.max_pending
            )
            return

        try:
            future = self._executor.submit(self.publisher.publish, result)
        except RuntimeError as e:
            self._slots.release()
            self.logger.error(
                "Background publisher closed, dropping result",
                experiment=result.experiment_name,
                error=str(e)
            )
            return
        future.add_done_callback(lambda f: self._on_done(f, result))

    def _on_done(self, future: Future, result: "ComparisonResult") -> None:
        self._slots.release()
        exception = future.exception()
        if exception is not None:
            self.logger.error(
                "Background publication failed",
                publisher=type(self.publisher).__name__,
                experiment=result.experiment_name,
                error=str(exception)
            )

    def close(self) -> None:
        """Wait for queued records, then release the pool."""
        self._executor.shutdown(wait=True)
        self.publisher.close()
