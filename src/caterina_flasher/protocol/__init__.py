"""Bootloader protocol layer - transport, receive buffer and Caterina driver."""

from .errors import (
    CaterinaError,
    TransportError,
    ResponseTimeout,
    BootloaderNotFound,
    BufferAccessUnsupported,
    CommandRejected,
    UnsupportedDevice,
    ImageTooLarge,
    VerifyMismatch,
)
from .receive_buffer import ReceiveBuffer, TickClock
from .transport import ByteTransport, SerialTransport, touch_reset
from .caterina_protocol import (
    CaterinaProtocol,
    BootloaderInfo,
    Memory,
    ProtocolTimeouts,
    ProgressSink,
    no_progress,
    ACK,
    EEPROM_BLOCK_SIZE,
)
from .simulator import SimulatedCaterina, SimulatedTransport

__all__ = [
    # Errors
    "CaterinaError",
    "TransportError",
    "ResponseTimeout",
    "BootloaderNotFound",
    "BufferAccessUnsupported",
    "CommandRejected",
    "UnsupportedDevice",
    "ImageTooLarge",
    "VerifyMismatch",
    # Transport
    "ByteTransport",
    "SerialTransport",
    "touch_reset",
    "ReceiveBuffer",
    "TickClock",
    # Driver
    "CaterinaProtocol",
    "BootloaderInfo",
    "Memory",
    "ProtocolTimeouts",
    "ProgressSink",
    "no_progress",
    "ACK",
    "EEPROM_BLOCK_SIZE",
    # Simulation
    "SimulatedCaterina",
    "SimulatedTransport",
]
