# conftest.py
import sys
import os
import socket
import threading
import pytest

sys.path.append(os.getcwd())
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from relay_common import SocketStream


class FakeStream:
    """
    Scripted DuplexStream.
    'reads' items are bytes (delivered) or exceptions (raised). Once the script
    is exhausted the stream reports EOF, or blocks until close() when
    block_at_end is set (a silent peer). A blocked read woken by close()
    raises OSError like a real socket would.
    """

    def __init__(self, reads=(), block_at_end=False, write_result=None, name="fake"):
        self.name = name
        self.reads = list(reads)
        self.block_at_end = block_at_end
        self.write_result = write_result
        self.written = bytearray()
        self.write_calls = 0
        self.close_calls = 0
        self.closed = threading.Event()
        self._lock = threading.Lock()

    def readinto(self, buffer):
        with self._lock:
            item = self.reads.pop(0) if self.reads else None
        if item is None:
            if not self.block_at_end:
                return 0
            self.closed.wait()
            raise OSError(9, "Bad file descriptor")
        if isinstance(item, BaseException):
            raise item
        if self.closed.is_set():
            raise OSError(9, "Bad file descriptor")
        buffer[:len(item)] = item
        return len(item)

    def write(self, data):
        self.write_calls += 1
        if self.closed.is_set():
            raise OSError(32, "Broken pipe")
        if self.write_result is not None:
            return self.write_result(bytes(data))
        self.written.extend(data)
        return len(data)

    def close(self):
        with self._lock:
            self.close_calls += 1
        self.closed.set()

    def __repr__(self):
        return f"<FakeStream {self.name}>"


@pytest.fixture
def fake_stream():
    return FakeStream


@pytest.fixture
def socket_pairs():
    """
    Two connected pairs wired as: client <-> relay_a | relay_b <-> server.
    The relay runs between relay_a and relay_b.
    """
    client, relay_a = socket.socketpair()
    relay_b, server = socket.socketpair()
    for s in (client, server):
        s.settimeout(5.0)
    pairs = {
        "client": client,
        "server": server,
        "a": SocketStream(relay_a, "relay_a"),
        "b": SocketStream(relay_b, "relay_b"),
    }
    yield pairs
    for s in (client, server):
        s.close()
    for stream in (pairs["a"], pairs["b"]):
        stream.close()


def recv_all(sock, limit=1 << 20):
    """Reads until EOF (or reset) and returns everything received."""
    chunks = []
    total = 0
    while total < limit:
        try:
            data = sock.recv(65536)
        except ConnectionResetError:
            break
        if not data:
            break
        chunks.append(data)
        total += len(data)
    return b"".join(chunks)


@pytest.fixture
def drain():
    return recv_all
