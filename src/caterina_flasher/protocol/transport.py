"""
Byte Transport Layer

Handles the full-duplex byte stream between the host and the bootloader.

This module provides:
- ByteTransport: the narrow contract the protocol driver depends on
- SerialTransport: pyserial backend with a background reader thread
- touch_reset: 1200-baud touch that drops an ATmega32U4 into its bootloader
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

try:
    import serial
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

from .errors import TransportError

logger = logging.getLogger(__name__)

ReceiveCallback = Callable[[bytes], None]

DEFAULT_BAUDRATE = 57600
RESET_BAUDRATE = 1200
RESET_SETTLE_SECONDS = 2.0


class ByteTransport(ABC):
    """
    Contract consumed by the protocol driver.

    Inbound bytes are delivered through the registered callback, in arrival
    order and without gaps. close() must be safe to call once per session
    even if open() failed.
    """

    @abstractmethod
    def open(self) -> None:
        """Open the underlying channel."""

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Send raw bytes."""

    @abstractmethod
    def set_receive_callback(self, callback: Optional[ReceiveCallback]) -> None:
        """Register the sink for inbound chunks."""

    @abstractmethod
    def close(self) -> None:
        """Release the underlying channel."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while the channel is usable."""


class SerialTransport(ByteTransport):
    """
    pyserial-backed transport.

    A daemon reader thread polls the port and hands every received chunk to
    the registered callback.

    Example:
        transport = SerialTransport(port="/dev/ttyACM0")
        transport.set_receive_callback(buffer.push)
        transport.open()
        transport.write(b"S")
        transport.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        poll_interval: float = 0.0005,
        read_chunk: int = 256,
    ):
        """
        Initialize transport layer.

        Args:
            port: Serial port (e.g., "/dev/ttyACM0", "COM5")
            baudrate: Serial baud rate (ignored by USB CDC, default 57600)
            poll_interval: Reader thread idle sleep in seconds
            read_chunk: Maximum bytes pulled from the port per read
        """
        self.port = port
        self.baudrate = baudrate
        self.poll_interval = poll_interval
        self.read_chunk = read_chunk
        self.ser: Optional[serial.Serial] = None
        self._callback: Optional[ReceiveCallback] = None
        self._reader: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def is_open(self) -> bool:
        return self.ser is not None and self.ser.is_open

    def set_receive_callback(self, callback: Optional[ReceiveCallback]) -> None:
        self._callback = callback

    def open(self) -> None:
        """
        Open serial port and start the reader thread.

        Raises:
            TransportError: If port cannot be opened
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=8,
                parity='N',
                stopbits=1,
                timeout=0,
                write_timeout=1.0,
            )
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()
        except (OSError, serial.SerialException) as e:
            self.ser = None
            raise TransportError(f"Cannot open port {self.port}: {e}") from e

        self._stop_event.clear()
        self._reader = threading.Thread(
            target=self._rx_worker,
            name=f"SerialTransport-RX-{self.port}",
            daemon=True,
        )
        self._reader.start()
        logger.debug(f"Opened {self.port} at {self.baudrate} bps")

    def close(self) -> None:
        """Stop the reader thread and close the serial port."""
        self._stop_event.set()
        if self._reader and self._reader.is_alive():
            self._reader.join(timeout=1.0)
        self._reader = None

        if self.ser is None:
            return
        try:
            if self.ser.is_open:
                self.ser.close()
                logger.debug(f"Closed {self.port}")
        except serial.SerialException as e:
            raise TransportError(f"Error closing port {self.port}: {e}") from e
        finally:
            self.ser = None

    def write(self, data: bytes) -> None:
        """
        Send raw bytes to the bootloader.

        Raises:
            TransportError: If the port is closed or the write fails
        """
        if not self.is_open:
            raise TransportError("Serial port not open")

        try:
            written = self.ser.write(data)
            self.ser.flush()
        except serial.SerialException as e:
            raise TransportError(f"Write error: {e}") from e
        if written != len(data):
            raise TransportError(
                f"Incomplete write: sent {written}/{len(data)} bytes"
            )

    def _rx_worker(self) -> None:
        """Reader thread: forward inbound chunks to the callback."""
        while not self._stop_event.is_set():
            ser = self.ser
            if ser is None or not ser.is_open:
                break
            try:
                waiting = ser.in_waiting
                if waiting:
                    chunk = ser.read(min(waiting, self.read_chunk))
                    if chunk and self._callback is not None:
                        self._callback(chunk)
                else:
                    time.sleep(self.poll_interval)
            except (OSError, serial.SerialException) as e:
                if not self._stop_event.is_set():
                    logger.error(f"Read error on {self.port}: {e}")
                break


def touch_reset(port: str, settle: float = RESET_SETTLE_SECONDS) -> None:
    """
    Ask a running sketch to jump into the Caterina bootloader.

    Opening and closing the CDC port at 1200 baud triggers the reset. The
    bootloader re-enumerates, possibly under a different port name, so the
    caller waits `settle` seconds before reconnecting.

    Raises:
        TransportError: If the port cannot be opened
    """
    try:
        serial.Serial(port=port, baudrate=RESET_BAUDRATE).close()
    except (OSError, serial.SerialException) as e:
        raise TransportError(f"Failed to trigger reset on {port}: {e}") from e
    logger.info(f"Triggered 1200-baud reset on {port}, waiting {settle:.1f}s")
    time.sleep(settle)
