# tests/test_copy_loop.py
"""
Tests for the unidirectional copy loop: EOF, I/O errors, write validation,
activity pulses and buffer hygiene.
"""
from unittest.mock import MagicMock
import pytest
from buffer_pool import BufferPool
from copy_loop import copy_stream
from relay_common import (
    InvalidReadError, InvalidWriteError, RelayCancelledError, ShortWriteError
)
from relay_lifecycle import Lifecycle
from structures import CopyResult


@pytest.fixture
def pool():
    return BufferPool(buffer_size=64)


@pytest.fixture
def activity():
    signal = MagicMock()
    signal.name = "a->b"
    return signal


class TestCopyStream:

    def test_copies_until_eof(self, fake_stream, pool, activity):
        src = fake_stream(reads=[b"hello ", b"world"])
        dst = fake_stream()
        result = copy_stream(src, dst, activity, pool)

        assert bytes(dst.written) == b"hello world"
        assert result.written == 11
        assert result.error is None
        assert result.finished
        assert result.direction == "a->b"
        assert activity.notify.call_count == 2
        activity.retire.assert_called_once()

    def test_read_error_is_terminal(self, fake_stream, pool, activity):
        boom = ConnectionResetError(104, "Connection reset by peer")
        src = fake_stream(reads=[b"abc", boom, b"never"])
        dst = fake_stream()
        result = copy_stream(src, dst, activity, pool)

        assert result.error is boom
        assert result.written == 3
        assert bytes(dst.written) == b"abc"
        activity.retire.assert_called_once()

    def test_write_error_is_terminal(self, fake_stream, pool, activity):
        err = BrokenPipeError(32, "Broken pipe")

        def fail(_data):
            raise err

        src = fake_stream(reads=[b"abc"])
        dst = fake_stream(write_result=fail)
        result = copy_stream(src, dst, activity, pool)

        assert result.error is err
        assert result.written == 0
        activity.notify.assert_not_called()

    def test_short_write(self, fake_stream, pool, activity):
        src = fake_stream(reads=[b"0123456789", b"more"])
        dst = fake_stream(write_result=lambda data: len(data) - 4)
        result = copy_stream(src, dst, activity, pool)

        assert isinstance(result.error, ShortWriteError)
        assert result.error.requested == 10
        assert result.error.written == 6
        assert result.written == 6
        # Halted after the short write; the second chunk was never offered
        assert dst.write_calls == 1
        activity.notify.assert_not_called()

    @pytest.mark.parametrize("reported", [11, -1, None, "10"])
    def test_invalid_write_result(self, fake_stream, pool, activity, reported):
        src = fake_stream(reads=[b"0123456789"])
        dst = fake_stream(write_result=lambda data: reported)
        result = copy_stream(src, dst, activity, pool)

        assert isinstance(result.error, InvalidWriteError)
        assert result.error.reported == reported
        # Impossible counts never corrupt the byte total
        assert result.written == 0

    def test_writes_exact_slice_of_reused_buffer(self, fake_stream, pool, activity):
        """Stale bytes from a longer previous read must not leak into writes."""
        stale = pool.acquire()
        stale[:] = b"X" * len(stale)
        pool.release(stale)

        src = fake_stream(reads=[b"ab"])
        dst = fake_stream()
        copy_stream(src, dst, activity, pool)
        assert bytes(dst.written) == b"ab"

    def test_buffer_returned_to_pool(self, fake_stream, pool, activity):
        src = fake_stream(reads=[RuntimeError("boom")])
        copy_stream(src, fake_stream(), activity, pool)
        assert pool.idle == 1

    def test_no_write_after_cancellation(self, fake_stream, pool, activity):
        scope = Lifecycle()
        scope.cancel("shutdown")
        src = fake_stream(reads=[b"late data"])
        dst = fake_stream()
        result = copy_stream(src, dst, activity, pool, lifecycle=scope)

        assert dst.write_calls == 0
        assert isinstance(result.error, RelayCancelledError)
        assert result.written == 0

    def test_updates_supplied_result(self, fake_stream, pool, activity):
        shared = CopyResult("b->a")
        src = fake_stream(reads=[b"12345"])
        returned = copy_stream(src, fake_stream(), activity, pool, result=shared)
        assert returned is shared
        assert shared.written == 5
        assert shared.direction == "b->a"

    def test_large_transfer_through_small_buffer(self, fake_stream, activity):
        small = BufferPool(buffer_size=8)
        payload = bytes(range(256)) * 4
        chunks = [payload[i:i + 8] for i in range(0, len(payload), 8)]
        src = fake_stream(reads=chunks)
        dst = fake_stream()
        result = copy_stream(src, dst, activity, small)

        assert bytes(dst.written) == payload
        assert result.written == len(payload)

    @pytest.mark.parametrize("reported", [None, -1, 65, "3"])
    def test_invalid_read_result(self, pool, activity, reported):
        """A stream reporting no data (None) is not mistaken for end-of-stream."""
        src = MagicMock()
        src.readinto.return_value = reported
        dst = MagicMock()
        result = copy_stream(src, dst, activity, pool)

        assert isinstance(result.error, InvalidReadError)
        assert result.error.reported == reported
        assert result.error.capacity == 64
        dst.write.assert_not_called()
        assert pool.idle == 1
