#Filename: structures.py
"""
CORE DATA STRUCTURES
Single Source of Truth (SSOT) for relay configuration and results.
Result records carry their terminal error instead of raising it, so byte
counts survive failed sessions.
"""

import time
from typing import Dict, Optional, Any

# -- Constants --

DEFAULT_BUFFER_SIZE: int = 32 * 1024          # Per-read buffer handed out by the pool
DEFAULT_POOL_MAX_IDLE: int = 64               # Idle buffers retained for reuse
DEFAULT_IDLE_TIMEOUT: float = 2 * 60 * 60.0   # 2 hours, applied when unset/zero
SHUTDOWN_GRACE_PERIOD: float = 1.0            # Wait for the slower direction
UPSTREAM_CONNECT_TIMEOUT: float = 10.0        # Forwarder upstream dial timeout

# Shutdown origins recorded on RelayResult
ORIGIN_RELAY: str = "relay"
ORIGIN_IDLE: str = "idle"
ORIGIN_CANCELLED: str = "cancelled"

# -- Types --

class CopyResult:
    """
    Outcome of one copy direction.
    'written' is updated in place while the loop runs so the coordinator can
    read the last known count of a direction it had to abandon.
    """
    __slots__ = ('direction', 'written', 'error', 'finished', 'timestamp_end')

    def __init__(self, direction: str, written: int = 0, error: Optional[BaseException] = None) -> None:
        self.direction = direction
        self.written = written
        self.error = error
        self.finished = False
        self.timestamp_end = 0.0

    def finish(self, error: Optional[BaseException] = None) -> None:
        """Marks the direction terminal with its error (None on clean EOF)."""
        self.error = error
        self.finished = True
        self.timestamp_end = time.time()

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        """Converts the copy result to a dictionary for logging/storage."""
        return {
            'direction': self.direction,
            'written': self.written,
            'error': repr(self.error) if self.error is not None else None,
            'finished': self.finished
        }

    def __repr__(self) -> str:
        state = "done" if self.finished else "running"
        return f"<CopyResult {self.direction} {self.written}b {state} error={self.error!r}>"

class RelayResult:
    """
    Result of a complete relay session.
    Optimized __slots__ - one instance per session on busy forwarders.
    """
    __slots__ = (
        'written_a_to_b', 'written_b_to_a', 'error', 'origin', 'abandoned',
        'timestamp_start', 'timestamp_end'
    )

    def __init__(
        self,
        written_a_to_b: int,
        written_b_to_a: int,
        error: Optional[BaseException] = None,
        origin: str = ORIGIN_RELAY,
        abandoned: bool = False,
        timestamp_start: float = 0.0,
        timestamp_end: float = 0.0
    ) -> None:
        self.written_a_to_b = written_a_to_b
        self.written_b_to_a = written_b_to_a
        self.error = error
        self.origin = origin
        self.abandoned = abandoned
        # Telemetry Logic: If 0.0 is passed, we assume the session starts NOW.
        self.timestamp_start = timestamp_start if timestamp_start > 0 else time.time()
        self.timestamp_end = timestamp_end

    @property
    def written(self) -> int:
        """Total bytes relayed across both directions."""
        return self.written_a_to_b + self.written_b_to_a

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def duration(self) -> float:
        if not self.timestamp_end:
            return 0.0
        return self.timestamp_end - self.timestamp_start

    def raise_for_error(self) -> None:
        """Re-raises the session's primary error, if any."""
        if self.error is not None:
            raise self.error

    def to_dict(self) -> Dict[str, Any]:
        """Converts the relay result to a dictionary for logging/storage."""
        return {
            'written': self.written,
            'written_a_to_b': self.written_a_to_b,
            'written_b_to_a': self.written_b_to_a,
            'error': repr(self.error) if self.error is not None else None,
            'origin': self.origin,
            'abandoned': self.abandoned,
            'duration': self.duration
        }

    def __repr__(self) -> str:
        return f"<RelayResult {self.written}b origin:{self.origin} error={self.error!r}>"
