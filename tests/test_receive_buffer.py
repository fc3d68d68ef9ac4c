"""Tests for the tick-bounded receive buffer."""

import pytest

from caterina_flasher.protocol import ReceiveBuffer, ResponseTimeout

from conftest import FakeClock


def test_read_returns_exact_size_and_keeps_rest(clock):
    buffer = ReceiveBuffer(clock)
    buffer.push(b"\x0D\x41\x42")

    assert buffer.read(1, timeout_ticks=5) == b"\x0D"
    assert len(buffer) == 2
    assert buffer.read(2, timeout_ticks=5) == b"AB"
    assert clock.ticks == 0


def test_timeout_leaves_partial_bytes_in_place(clock):
    """A short buffer times out without consuming anything."""
    buffer = ReceiveBuffer(clock)
    buffer.push(b"\x01\x02")

    with pytest.raises(ResponseTimeout) as exc_info:
        buffer.read(3, timeout_ticks=5)

    assert exc_info.value.expected == 3
    assert exc_info.value.available == 2
    assert exc_info.value.timeout_ticks == 5
    assert clock.ticks == 5
    assert len(buffer) == 2


def test_zero_budget_checks_once_without_sleeping(clock):
    buffer = ReceiveBuffer(clock)

    with pytest.raises(ResponseTimeout):
        buffer.read(1, timeout_ticks=0)
    assert clock.ticks == 0

    buffer.push(b"\x0D")
    assert buffer.read(1, timeout_ticks=0) == b"\x0D"


def test_bytes_arriving_during_wait_are_returned():
    holder = {}

    def deliver(tick):
        if tick == 3:
            holder["buffer"].push(b"CATERIN")

    clock = FakeClock(on_tick=deliver)
    buffer = ReceiveBuffer(clock)
    holder["buffer"] = buffer

    assert buffer.read(7, timeout_ticks=10) == b"CATERIN"
    assert clock.ticks == 3


def test_clear_returns_stale_bytes(clock):
    buffer = ReceiveBuffer(clock)
    buffer.push(b"\x55\xAA")
    buffer.push(b"")

    assert buffer.clear() == b"\x55\xAA"
    assert len(buffer) == 0
    assert buffer.clear() == b""
