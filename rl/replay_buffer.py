"""
Experience Replay - Bounded FIFO store of transitions.

Eviction is strictly oldest-first. Sampling draws uniformly at random,
with replacement by default; without-replacement sampling is available
per buffer or per call.
"""

import threading
from collections import deque
from dataclasses import dataclass
from typing import List, Optional

import numpy as np


@dataclass
class Experience:
    """One (s, a, r, s', done) transition."""
    state: np.ndarray
    action: int
    reward: float
    next_state: np.ndarray
    done: bool = False


class ReplayBuffer:
    """Fixed-capacity transition store. All operations are thread-safe."""

    def __init__(self, capacity: int = 10000, sample_with_replacement: bool = True,
                 rng: Optional[np.random.Generator] = None):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.sample_with_replacement = sample_with_replacement
        self._items: deque = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._rng = rng or np.random.default_rng()

    def store(self, experience: Experience):
        with self._lock:
            self._items.append(experience)

    def sample_batch(self, n: int, replace: Optional[bool] = None) -> List[Experience]:
        """Draw min(n, size) experiences uniformly at random."""
        if replace is None:
            replace = self.sample_with_replacement
        with self._lock:
            size = len(self._items)
            count = min(n, size)
            if count <= 0:
                return []
            indices = self._rng.choice(size, size=count, replace=replace)
            return [self._items[int(i)] for i in indices]

    def items(self) -> List[Experience]:
        """Snapshot, oldest first."""
        with self._lock:
            return list(self._items)

    def clear(self):
        with self._lock:
            self._items.clear()

    @property
    def size(self) -> int:
        return len(self)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
