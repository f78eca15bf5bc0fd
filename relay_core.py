#Filename: relay_core.py
"""
RELAY CORE
Coordinator for one bidirectional relay session.

Spawns the idle watchdog and two copy loops (A->B, B->A) on their own
threads, waits for the first direction to finish, tears the session down
exactly once and reports the bytes moved in both directions.
"""

import logging
import queue
import threading
import time
from typing import Optional

from buffer_pool import BufferPool
from copy_loop import copy_stream
from idle_watchdog import ActivitySignal, IdleWatchdog, WatchdogState
from relay_common import DuplexStream, IdleTimeoutError, RelayCancelledError
from relay_lifecycle import Lifecycle, ShutdownTrigger
from structures import (
    CopyResult, RelayResult, SHUTDOWN_GRACE_PERIOD,
    ORIGIN_RELAY, ORIGIN_IDLE, ORIGIN_CANCELLED
)

logger = logging.getLogger(__name__)


class BidirectionalRelay:
    """
    Pipes bytes between two duplex streams and closes one when the other
    finishes. Sessions time out after two hours of inactivity by default.

    A single instance may run many sessions concurrently; the buffer pool is
    the only state shared between them.
    """
    __slots__ = ('log', 'idle_timeout', 'pool', 'grace_period', 'debug_level')

    def __init__(
        self,
        log: Optional[logging.Logger] = None,
        idle_timeout: Optional[float] = None,
        pool: Optional[BufferPool] = None,
        grace_period: float = SHUTDOWN_GRACE_PERIOD,
        debug_level: int = 0
    ) -> None:
        self.log = log or logger
        self.idle_timeout = idle_timeout
        self.pool = pool or BufferPool()
        self.grace_period = grace_period
        self.debug_level = debug_level

    def set_debug(self, enabled: bool) -> None:
        """Turns diagnostics on (level 1) or off."""
        self.debug_level = 1 if enabled else 0

    def set_debug_level(self, level: int) -> None:
        """0 = silent, 1 = idle timeouts, 2+ = shutdown/loop/watchdog detail."""
        self.debug_level = max(0, level)

    def run(
        self,
        lifecycle: Optional[Lifecycle],
        conn_a: DuplexStream,
        conn_b: DuplexStream
    ) -> RelayResult:
        """
        Relays until end-of-stream, failure, idle timeout or cancellation.
        The returned result carries the primary error instead of raising it.
        """
        started = time.time()
        session = (lifecycle or Lifecycle("relay")).child("relay-session")
        results: "queue.Queue[CopyResult]" = queue.Queue()
        a_to_b = CopyResult("a->b")
        b_to_a = CopyResult("b->a")

        def shutdown() -> None:
            session.cancel("relay shutdown")
            for conn in (conn_a, conn_b):
                try:
                    conn.close()
                except Exception as e: # pylint: disable=broad-exception-caught
                    self._debug(2, "close failed for %r: %s", conn, e)
            # Cancellation must be observable before teardown counts as done
            session.wait()

        trigger = ShutdownTrigger(shutdown)

        def on_watchdog(state: WatchdogState) -> None:
            if state is WatchdogState.FIRED:
                fired = trigger.fire(ORIGIN_IDLE, IdleTimeoutError(watchdog.timeout))
            else:
                fired = trigger.fire(
                    ORIGIN_CANCELLED, RelayCancelledError(f"lifecycle cancelled: {session.reason}")
                )
            if fired:
                self._debug(2, "shutdown triggered by watchdog (%s)", state.value)

        watchdog = IdleWatchdog(
            self.idle_timeout, session, on_watchdog,
            log=self.log, debug_level=self.debug_level
        )
        self._debug(2, "starting relay with idle timeout %gs", watchdog.timeout)
        watchdog.start()

        for src, dst, result in ((conn_a, conn_b, a_to_b), (conn_b, conn_a, b_to_a)):
            threading.Thread(
                target=self._pump,
                args=(src, dst, watchdog.signal(result.direction), session, result, results),
                name=f"relay {result.direction}",
                daemon=True
            ).start()

        first = results.get()
        if trigger.fire(ORIGIN_RELAY):
            self._debug(2, "shutdown triggered by %s finishing", first.direction)
        # A close() that blocks must not hold the caller past the grace period
        if not trigger.wait(self.grace_period):
            self._debug(2, "shutdown still closing streams after %gs", self.grace_period)

        abandoned = False
        try:
            results.get(timeout=self.grace_period)
        except queue.Empty:
            # The slow direction keeps its daemon thread; its last count stands
            abandoned = True
            self._debug(2, "grace period elapsed; abandoning slower direction")
        watchdog.join(self.grace_period)

        error = first.error
        if trigger.origin != ORIGIN_RELAY:
            error = trigger.cause
        return RelayResult(
            a_to_b.written, b_to_a.written, error,
            origin=trigger.origin or ORIGIN_RELAY, abandoned=abandoned,
            timestamp_start=started, timestamp_end=time.time()
        )

    def _pump(
        self,
        source: DuplexStream,
        destination: DuplexStream,
        activity: ActivitySignal,
        session: Lifecycle,
        result: CopyResult,
        results: "queue.Queue[CopyResult]"
    ) -> None:
        """Thread target: one copy direction, always reporting a result."""
        try:
            copy_stream(source, destination, activity, self.pool, session, result)
        except Exception as e: # pylint: disable=broad-exception-caught
            self.log.exception("copy loop %s crashed", result.direction)
            result.finish(e)
        finally:
            self._debug(2, "copy loop %s finished: %d bytes, error=%r",
                        result.direction, result.written, result.error)
            results.put(result)

    def _debug(self, level: int, msg: str, *args: object) -> None:
        if self.debug_level >= level:
            self.log.debug(msg, *args)
