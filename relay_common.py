#Filename: relay_common.py
"""
RELAY COMMON DEFINITIONS
Error taxonomy, the duplex stream contract and the socket adapter shared by
the relay core and the forwarder.
"""

import socket
import threading
from typing import Protocol, Union

# Anything the copy loop may hand to DuplexStream.write
Buffer = Union[bytes, bytearray, memoryview]

# -- Errors --

class RelayError(Exception):
    """Base exception for relay operations."""

class ShortWriteError(RelayError):
    """A write accepted fewer bytes than requested without raising."""

    def __init__(self, requested: int, written: int) -> None:
        super().__init__(f"short write: {written} of {requested} bytes accepted")
        self.requested = requested
        self.written = written

class InvalidWriteError(RelayError):
    """A write reported an impossible byte count."""

    def __init__(self, requested: int, reported: object) -> None:
        super().__init__(f"invalid write result: reported {reported!r} for {requested} bytes")
        self.requested = requested
        self.reported = reported

class InvalidReadError(RelayError):
    """A read reported an impossible byte count (None from a non-blocking stream included)."""

    def __init__(self, capacity: int, reported: object) -> None:
        super().__init__(f"invalid read result: reported {reported!r} for a {capacity} byte buffer")
        self.capacity = capacity
        self.reported = reported

class IdleTimeoutError(RelayError):
    """No bytes moved in either direction for the configured idle timeout."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"relay idle for {timeout:g}s")
        self.timeout = timeout

class RelayCancelledError(RelayError):
    """The owning lifecycle was cancelled before the relay finished."""

# -- Stream Contract --

class DuplexStream(Protocol):
    """
    Minimal duplex byte stream consumed by the relay.
    readinto() returns 0 at end-of-stream; write() returns the accepted count;
    close() must terminate both directions and wake blocked callers.
    """

    def readinto(self, buffer: bytearray) -> int: ...

    def write(self, data: Buffer) -> int: ...

    def close(self) -> None: ...

class SocketStream:
    """
    Adapts a connected socket to the DuplexStream contract.
    close() shuts the socket down before closing it, so a recv() blocked in
    another thread returns instead of hanging on the released descriptor.
    """
    __slots__ = ('sock', 'name', '_lock', '_closed')

    def __init__(self, sock: socket.socket, name: str = "") -> None:
        self.sock = sock
        self.name = name or _describe_peer(sock)
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def readinto(self, buffer: bytearray) -> int:
        return self.sock.recv_into(buffer)

    def write(self, data: Buffer) -> int:
        self.sock.sendall(data)
        return len(data)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Peer already gone or never connected
            pass
        self.sock.close()

    def __repr__(self) -> str:
        return f"<SocketStream {self.name}{' closed' if self._closed else ''}>"

def _describe_peer(sock: socket.socket) -> str:
    """Best-effort 'host:port' label for log lines."""
    try:
        peer = sock.getpeername()
    except OSError:
        return "unconnected"
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return str(peer) or "local"
