#Filename: buffer_pool.py
"""Reusable fixed-size read buffers shared across relay sessions."""

import threading
from typing import List

from structures import DEFAULT_BUFFER_SIZE, DEFAULT_POOL_MAX_IDLE


class BufferPool:
    """
    Thread-safe free list of bytearrays.
    Reused buffers keep stale bytes; callers slice to the valid length.
    """
    __slots__ = ('buffer_size', 'max_idle', '_free', '_lock')

    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE, max_idle: int = DEFAULT_POOL_MAX_IDLE):
        if buffer_size <= 0:
            raise ValueError(f"buffer_size must be positive, got {buffer_size}")
        self.buffer_size = buffer_size
        self.max_idle = max_idle
        self._free: List[bytearray] = []
        self._lock = threading.Lock()

    def acquire(self) -> bytearray:
        with self._lock:
            if self._free:
                return self._free.pop()
        return bytearray(self.buffer_size)

    def release(self, buffer: bytearray) -> None:
        # Foreign sizes would break the fixed-size guarantee
        if len(buffer) != self.buffer_size:
            return
        with self._lock:
            if len(self._free) < self.max_idle:
                self._free.append(buffer)

    @property
    def idle(self) -> int:
        """Number of buffers currently waiting for reuse."""
        with self._lock:
            return len(self._free)
