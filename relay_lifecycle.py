#Filename: relay_lifecycle.py
"""
CANCELLATION PRIMITIVES
Lifecycle: a cancellable scope with parent -> child propagation.
ShutdownTrigger: a once-only teardown action; first caller wins, everyone
else observes a no-op.
"""

import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class Lifecycle:
    """
    Cancellable scope shared by the threads of one unit of work.
    Cancelling a lifecycle cancels every child derived from it; cancelling a
    child leaves the parent untouched.
    """
    __slots__ = ('name', 'reason', '_event', '_lock', '_callbacks', '_children', '_parent')

    def __init__(self, name: str = "root", parent: Optional['Lifecycle'] = None) -> None:
        self.name = name
        self.reason: Optional[str] = None
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self._children: List['Lifecycle'] = []
        self._parent = parent

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def child(self, name: str = "") -> 'Lifecycle':
        """Derives a child scope, already cancelled if this one is."""
        scope = Lifecycle(name or f"{self.name}/child", parent=self)
        with self._lock:
            if not self._event.is_set():
                self._children.append(scope)
                return scope
        scope.cancel(self.reason or "parent cancelled")
        return scope

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancels this scope and its children. Returns False if already cancelled."""
        with self._lock:
            if self._event.is_set():
                return False
            self.reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
            children, self._children = self._children, []

        if self._parent is not None:
            self._parent._discard(self)
        for scope in children:
            scope.cancel(reason)
        for callback in callbacks:
            try:
                callback()
            except Exception: # pylint: disable=broad-exception-caught
                logger.exception("Cancellation callback failed for %s", self.name)
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until cancelled or timeout; returns the cancelled state."""
        return self._event.wait(timeout)

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Runs callback on cancellation (immediately if already cancelled)."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def _discard(self, scope: 'Lifecycle') -> None:
        with self._lock:
            try:
                self._children.remove(scope)
            except ValueError:
                pass

    def __repr__(self) -> str:
        state = f"cancelled ({self.reason})" if self.cancelled else "active"
        return f"<Lifecycle {self.name} {state}>"


class ShutdownTrigger:
    """
    Guards a teardown action so it runs at most once.
    The winning call records its origin and cause; later calls return False
    without touching the action.
    """
    __slots__ = ('_action', '_lock', '_fired', '_done', 'origin', 'cause')

    def __init__(self, action: Callable[[], None]) -> None:
        self._action = action
        self._lock = threading.Lock()
        self._fired = False
        self._done = threading.Event()
        self.origin: Optional[str] = None
        self.cause: Optional[BaseException] = None

    @property
    def fired(self) -> bool:
        with self._lock:
            return self._fired

    def fire(self, origin: str, cause: Optional[BaseException] = None) -> bool:
        with self._lock:
            if self._fired:
                return False
            self._fired = True
            self.origin = origin
            self.cause = cause
        try:
            self._action()
        finally:
            self._done.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the winning action has completed."""
        return self._done.wait(timeout)
