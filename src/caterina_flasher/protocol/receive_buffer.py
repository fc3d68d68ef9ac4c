"""
Receive buffer for bootloader responses.

Inbound bytes are pushed by the transport's receive callback (possibly from a
reader thread) and drained in order by the protocol driver with size- and
tick-bounded reads.
"""

import logging
import threading
import time
from typing import Optional

from .errors import ResponseTimeout

logger = logging.getLogger(__name__)

DEFAULT_TICK_SECONDS = 0.001


class TickClock:
    """
    Logical clock used by timed reads.

    One tick is the polling interval of ReceiveBuffer.read(). Tests replace
    this with a clock that does not sleep.
    """

    def __init__(self, tick_seconds: float = DEFAULT_TICK_SECONDS):
        self.tick_seconds = tick_seconds

    def sleep(self) -> None:
        """Block for one tick."""
        time.sleep(self.tick_seconds)


class ReceiveBuffer:
    """
    FIFO of pending inbound bytes.

    Example:
        buffer = ReceiveBuffer()
        transport.set_receive_callback(buffer.push)
        ack = buffer.read(1, timeout_ticks=1000)
    """

    def __init__(self, clock: Optional[TickClock] = None):
        self.clock = clock or TickClock()
        self._data = bytearray()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def push(self, data: bytes) -> None:
        """Append an inbound chunk (transport side)."""
        if not data:
            return
        with self._lock:
            self._data.extend(data)

    def clear(self) -> bytes:
        """
        Discard all pending bytes.

        Returns:
            Bytes that were discarded (for logging)
        """
        with self._lock:
            stale = bytes(self._data)
            self._data.clear()
        if stale:
            logger.debug(f"Discarded {len(stale)} stale bytes: {stale.hex().upper()}")
        return stale

    def _take(self, size: int) -> Optional[bytes]:
        with self._lock:
            if len(self._data) < size:
                return None
            chunk = bytes(self._data[:size])
            del self._data[:size]
            return chunk

    def read(self, size: int, timeout_ticks: int) -> bytes:
        """
        Remove and return the next `size` bytes.

        Polls once per clock tick until enough bytes have accumulated.

        Args:
            size: Number of bytes to read
            timeout_ticks: Tick budget before giving up

        Returns:
            Exactly `size` bytes

        Raises:
            ResponseTimeout: If fewer than `size` bytes arrived in time.
                Buffered bytes are left in place.
        """
        ticks = 0
        while True:
            chunk = self._take(size)
            if chunk is not None:
                return chunk
            if ticks >= timeout_ticks:
                raise ResponseTimeout(size, len(self), timeout_ticks)
            self.clock.sleep()
            ticks += 1
