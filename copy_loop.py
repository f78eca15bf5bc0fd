#Filename: copy_loop.py
"""
UNIDIRECTIONAL COPY LOOP
Moves bytes from one duplex stream to another through a pooled buffer,
validating every write and pulsing the idle watchdog on progress.
"""

from typing import Optional

from buffer_pool import BufferPool
from idle_watchdog import ActivitySignal
from relay_common import (
    DuplexStream, InvalidReadError, InvalidWriteError, RelayCancelledError, ShortWriteError
)
from relay_lifecycle import Lifecycle
from structures import CopyResult


def copy_stream(
    source: DuplexStream,
    destination: DuplexStream,
    activity: ActivitySignal,
    pool: BufferPool,
    lifecycle: Optional[Lifecycle] = None,
    result: Optional[CopyResult] = None,
    direction: str = ""
) -> CopyResult:
    """
    Copies source -> destination until end-of-stream or the first failure.

    End-of-stream (a zero-byte read) finishes cleanly with error None. A read
    reporting anything but a count within the buffer yields InvalidReadError. An
    exception from readinto()/write() becomes the terminal error verbatim.
    A write reporting an impossible count yields InvalidWriteError; one
    reporting fewer bytes than requested yields ShortWriteError.

    When 'result' is supplied its byte counter is updated after every write,
    so a caller that stops waiting can still read the last known total.
    """
    if result is None:
        result = CopyResult(direction or activity.name)
    error: Optional[BaseException] = None
    buffer = pool.acquire()
    view = memoryview(buffer)
    try:
        while True:
            nr = source.readinto(buffer)
            if nr == 0:
                break
            if not isinstance(nr, int) or nr < 0 or nr > len(buffer):
                error = InvalidReadError(len(buffer), nr)
                break
            # No writes once the session has begun tearing down
            if lifecycle is not None and lifecycle.cancelled:
                error = RelayCancelledError(f"{result.direction}: session shut down")
                break
            nw = destination.write(view[:nr])
            if not isinstance(nw, int) or nw < 0 or nw > nr:
                error = InvalidWriteError(nr, nw)
                break
            result.written += nw
            if nw != nr:
                error = ShortWriteError(nr, nw)
                break
            activity.notify()
    except Exception as e: # pylint: disable=broad-exception-caught
        error = e
    finally:
        activity.retire()
        pool.release(buffer)
    result.finish(error)
    return result
