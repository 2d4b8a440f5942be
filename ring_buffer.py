from typing import Optional

import numpy as np


class RingBuffer:
    """Fixed-capacity float ring backed by a preallocated numpy array.

    Appending to a full ring overwrites (and returns) the oldest value, so the
    real-time path never grows or reallocates storage.
    """
    __slots__ = ('capacity', '_data', '_start', '_size')

    def __init__(self, capacity: int):
        self.capacity = max(1, int(capacity))
        self._data = np.zeros(self.capacity, dtype=np.float64)
        self._start = 0
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def __getitem__(self, index: int) -> float:
        if index < 0:
            index += self._size
        if not 0 <= index < self._size:
            raise IndexError("ring buffer index out of range")
        return float(self._data[(self._start + index) % self.capacity])

    def append(self, value: float) -> Optional[float]:
        """Add a value; returns the evicted oldest value when the ring was full."""
        if self._size < self.capacity:
            idx = (self._start + self._size) % self.capacity
            self._size += 1
            self._data[idx] = value
            return None

        evicted = float(self._data[self._start])
        self._data[self._start] = value
        self._start = (self._start + 1) % self.capacity
        return evicted

    def to_array(self) -> np.ndarray:
        """Contents oldest-first, as a new array."""
        if self._size == 0:
            return np.empty(0, dtype=np.float64)
        idx = (self._start + np.arange(self._size)) % self.capacity
        return self._data[idx]

    def clear(self) -> None:
        self._start = 0
        self._size = 0
