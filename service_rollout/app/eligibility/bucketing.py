"""
Percentage bucketing.

``in_bucket`` is keyed by subject: the draw comes from a generator seeded
only with the subject id and built per call, so a subject lands on the
same side of the rollout on every request and every replica.

``Sampler`` is the unconditional path for calls with no subject. It owns
one generator seeded once and may answer differently for repeated calls.
"""

import random
import threading
from typing import List, Optional, Sequence, TypeVar

T = TypeVar("T")

BUCKET_COUNT = 100


def subject_draw(subject_id: int) -> int:
    """Return the subject's fixed draw in [0, 100).

    Integer seeds are folded to their absolute value by ``random.Random``,
    so ``subject_id`` and ``-subject_id`` always share a draw. Subject ids
    are expected to be non-negative.
    """
    return random.Random(subject_id).randrange(BUCKET_COUNT)


def in_bucket(subject_id: int, percentage: int) -> bool:
    if percentage <= 0:
        return False
    if percentage >= BUCKET_COUNT:
        return True
    return subject_draw(subject_id) < percentage


class Sampler:
    """Shared random stream for subject-free sampling."""

    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random(seed)
        self._lock = threading.Lock()

    def sample(self, percentage: int) -> bool:
        if percentage <= 0:
            return False
        if percentage >= BUCKET_COUNT:
            return True
        with self._lock:
            draw = self._random.randrange(BUCKET_COUNT)
        return draw < percentage

    def shuffled(self, items: Sequence[T]) -> List[T]:
        ordered = list(items)
        with self._lock:
            self._random.shuffle(ordered)
        return ordered
