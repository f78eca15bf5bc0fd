#Filename: idle_watchdog.py
"""
IDLE WATCHDOG
Tears a relay session down when neither direction has moved bytes for the
configured timeout, or when the session lifecycle is cancelled.

Activity is tracked as a single "latest activity" timestamp guarded by the
watchdog's condition. Notifiers never block: if the lock is busy the pulse is
dropped, since only the most recent activity matters.
"""

import enum
import logging
import threading
import time
from typing import Callable, Optional

from relay_lifecycle import Lifecycle
from structures import DEFAULT_IDLE_TIMEOUT

logger = logging.getLogger(__name__)


class WatchdogState(enum.Enum):
    WAITING = "waiting"
    FIRED = "fired"
    CANCELLED = "cancelled"


class ActivitySignal:
    """Per-direction handle a copy loop uses to report forward progress."""
    __slots__ = ('name', '_watchdog', 'retired')

    def __init__(self, watchdog: 'IdleWatchdog', name: str) -> None:
        self.name = name
        self._watchdog = watchdog
        self.retired = False

    def notify(self) -> bool:
        """Non-blocking pulse. Returns False when the pulse was dropped."""
        return self._watchdog._pulse(self)

    def retire(self) -> None:
        """Stops the watchdog from considering this direction."""
        self._watchdog._retire(self)

    def __repr__(self) -> str:
        return f"<ActivitySignal {self.name}{' retired' if self.retired else ''}>"


class IdleWatchdog:
    """
    Idle timer for one relay session.
    States: WAITING -> FIRED | CANCELLED. on_trigger is invoked exactly once
    with the terminal state, outside the watchdog's lock.
    """
    __slots__ = (
        'timeout', 'lifecycle', 'on_trigger', 'name', 'state', 'resets',
        'debug_level', 'log', '_cond', '_last_activity', '_thread'
    )

    def __init__(
        self,
        timeout: Optional[float],
        lifecycle: Lifecycle,
        on_trigger: Callable[[WatchdogState], None],
        log: Optional[logging.Logger] = None,
        debug_level: int = 0,
        name: str = "watchdog"
    ) -> None:
        self.timeout = timeout if timeout and timeout > 0 else DEFAULT_IDLE_TIMEOUT
        self.lifecycle = lifecycle
        self.on_trigger = on_trigger
        self.name = name
        self.state = WatchdogState.WAITING
        self.resets = 0
        self.debug_level = debug_level
        self.log = log or logger
        self._cond = threading.Condition(threading.Lock())
        self._last_activity = 0.0
        self._thread: Optional[threading.Thread] = None

    def signal(self, name: str) -> ActivitySignal:
        return ActivitySignal(self, name)

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, name=self.name, daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> WatchdogState:
        """Waits for the terminal transition, then reports it once."""
        self.lifecycle.add_callback(self._wake)
        try:
            with self._cond:
                seen = self._last_activity
                deadline = time.monotonic() + self.timeout
                while True:
                    if self.lifecycle.cancelled:
                        self.state = WatchdogState.CANCELLED
                        break
                    if self._last_activity != seen:
                        seen = self._last_activity
                        deadline = seen + self.timeout
                        self.resets += 1
                        if self.debug_level >= 2:
                            self.log.debug("%s: reset (%d)", self.name, self.resets)
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        self.state = WatchdogState.FIRED
                        break
                    self._cond.wait(remaining)
        finally:
            self.lifecycle.remove_callback(self._wake)

        if self.state is WatchdogState.FIRED:
            if self.debug_level >= 1:
                self.log.debug("%s: idle timeout reached after %gs", self.name, self.timeout)
        elif self.debug_level >= 2:
            self.log.debug("%s: lifecycle cancelled (%s)", self.name, self.lifecycle.reason)
        self.on_trigger(self.state)
        return self.state

    def _pulse(self, signal: ActivitySignal) -> bool:
        if not self._cond.acquire(blocking=False):
            return False
        try:
            if signal.retired or self.state is not WatchdogState.WAITING:
                return False
            self._last_activity = time.monotonic()
            self._cond.notify_all()
            return True
        finally:
            self._cond.release()

    def _retire(self, signal: ActivitySignal) -> None:
        with self._cond:
            signal.retired = True

    def _wake(self) -> None:
        with self._cond:
            self._cond.notify_all()
