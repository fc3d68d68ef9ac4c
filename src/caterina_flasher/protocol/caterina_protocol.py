"""
Caterina Bootloader Protocol Layer

Command/response driver for the Caterina (AVR109 subset) bootloader found on
ATmega32U4 boards such as the Arduino Leonardo and Pro Micro.

This module provides:
- Bootloader detection and buffer-size negotiation
- Device identification against the MCU registry
- Block-level flash/EEPROM read and write
- Programming-mode transitions, chip erase and bootloader exit
- Byte-for-byte verification

Wire format:
    Commands are single ASCII letters, optionally followed by a payload.
    Sizes and addresses are 2 bytes, big-endian. Commands that change
    device state are acknowledged with a carriage return (0x0D).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from caterina_flasher.models import McuDescriptor, find_mcu_by_signature

from .errors import (
    CaterinaError,
    BootloaderNotFound,
    BufferAccessUnsupported,
    CommandRejected,
    UnsupportedDevice,
    VerifyMismatch,
)
from .receive_buffer import ReceiveBuffer, TickClock
from .transport import ByteTransport

logger = logging.getLogger(__name__)

ACK = 0x0D
DEVICE_TYPE_TERMINATOR = 0x00
BOOTLOADER_ID = "CATERIN"
UNKNOWN_HW_VERSION = ord("?")
YES = ord("Y")

# EEPROM access on Caterina is unbuffered: one byte per block command
EEPROM_BLOCK_SIZE = 1

ProgressSink = Callable[[str], None]


def no_progress(message: str) -> None:
    """Default progress sink; discards every message."""


class Memory(Enum):
    """Memory type selector appended to block commands."""
    FLASH = "F"
    EEPROM = "E"

    @property
    def selector(self) -> bytes:
        return self.value.encode("ascii")

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass
class ProtocolTimeouts:
    """
    Tick budgets for response reads.

    Attributes:
        default_ticks: Budget for every ordinary exchange (~1 s)
        erase_ticks: Budget for the chip-erase acknowledgment
    """
    default_ticks: int = 1000
    erase_ticks: int = 6000


@dataclass
class BootloaderInfo:
    """Metadata collected during the handshake."""
    identifier: str = ""
    software_version: Tuple[int, int] = (0, 0)
    hardware_version: Optional[Tuple[int, int]] = None
    programmer_type: str = ""
    auto_increment: bool = False
    buffer_access: bool = False
    buffer_size: int = 0
    device_type: int = 0
    fuses: Dict[str, int] = field(default_factory=dict)
    signature: Optional[int] = None

    @property
    def software_version_str(self) -> str:
        return f"{self.software_version[0]}.{self.software_version[1]}"

    @property
    def hardware_version_str(self) -> str:
        if self.hardware_version is None:
            return "unknown"
        return f"{self.hardware_version[0]}.{self.hardware_version[1]}"

    def to_dict(self) -> Dict:
        """Convert to JSON-serializable dict."""
        return {
            "identifier": self.identifier,
            "software_version": self.software_version_str,
            "hardware_version": self.hardware_version_str,
            "programmer_type": self.programmer_type,
            "auto_increment": self.auto_increment,
            "buffer_access": self.buffer_access,
            "buffer_size": self.buffer_size,
            "device_type": f"0x{self.device_type:02X}",
            "fuses": {k: f"0x{v:02X}" for k, v in self.fuses.items()},
            "signature": (
                f"0x{self.signature:06X}" if self.signature is not None else None
            ),
        }


class CaterinaProtocol:
    """
    Caterina bootloader driver.

    Owns the session state for one operation: the receive buffer, the
    negotiated block size and the identified MCU. Commands are strictly
    request-then-response; nothing is pipelined and nothing is retried.

    Example:
        protocol = CaterinaProtocol(transport)
        transport.open()
        mcu = protocol.identify()
        firmware = protocol.read_memory(mcu.flash_size)
        protocol.exit_bootloader()
    """

    def __init__(
        self,
        transport: ByteTransport,
        clock: Optional[TickClock] = None,
        timeouts: Optional[ProtocolTimeouts] = None,
        progress: Optional[ProgressSink] = None,
    ):
        """
        Initialize protocol handler.

        Args:
            transport: Byte transport (opened by the caller)
            clock: Tick clock for timed reads (default: 1 ms ticks)
            timeouts: Tick budgets (default: ProtocolTimeouts())
            progress: Sink for status strings and block tick markers
        """
        self.transport = transport
        self.timeouts = timeouts or ProtocolTimeouts()
        self.progress = progress or no_progress
        self.buffer = ReceiveBuffer(clock)
        self.transport.set_receive_callback(self.buffer.push)
        self._info: Optional[BootloaderInfo] = None
        self._detected = False
        self._mcu: Optional[McuDescriptor] = None

    @property
    def detected(self) -> bool:
        """True once the device answered with the Caterina identifier."""
        return self._detected

    @property
    def info(self) -> Optional[BootloaderInfo]:
        """Handshake results, once detect() succeeded."""
        return self._info

    @property
    def mcu(self) -> Optional[McuDescriptor]:
        """Identified MCU, once identify() succeeded."""
        return self._mcu

    @property
    def buffer_size(self) -> int:
        """Negotiated flash block size in bytes."""
        if self._info is None or not self._info.buffer_size:
            raise CaterinaError("Block size unknown: bootloader not detected")
        return self._info.buffer_size

    # ------------------------------------------------------------------
    # Low-level exchange
    # ------------------------------------------------------------------

    def _send(self, data: bytes) -> None:
        logger.debug(f">>> {data.hex().upper()}")
        self.transport.write(data)

    def _send_command(self, command: str, payload: bytes = b"") -> None:
        self._send(command.encode("ascii") + payload)

    def _recv(self, size: int, timeout_ticks: Optional[int] = None) -> bytes:
        if timeout_ticks is None:
            timeout_ticks = self.timeouts.default_ticks
        data = self.buffer.read(size, timeout_ticks)
        logger.debug(f"<<< {data.hex().upper()}")
        return data

    def _recv_byte(self, timeout_ticks: Optional[int] = None) -> int:
        return self._recv(1, timeout_ticks)[0]

    def _expect_ack(self, command: str, timeout_ticks: Optional[int] = None) -> None:
        response = self._recv_byte(timeout_ticks)
        if response != ACK:
            raise CommandRejected(command, response)

    def _acked_command(
        self,
        command: str,
        payload: bytes = b"",
        timeout_ticks: Optional[int] = None,
    ) -> None:
        self._send_command(command, payload)
        self._expect_ack(command, timeout_ticks)

    def _query_byte(self, command: str) -> int:
        self._send_command(command)
        return self._recv_byte()

    # ------------------------------------------------------------------
    # Handshake & identification
    # ------------------------------------------------------------------

    def detect(self) -> BootloaderInfo:
        """
        Run the Caterina handshake.

        Sequence: S (identifier), V (software version), v (hardware version),
        p (programmer type), a (auto increment), b (buffer size),
        t/T (device type), Q/F/N/r (fuses and lock bits).

        Returns:
            BootloaderInfo with the negotiated buffer size

        Raises:
            BootloaderNotFound: If 'S' does not return "CATERIN"
            BufferAccessUnsupported: If the device declines buffered access
            CommandRejected: If the device type is not accepted
            ResponseTimeout: If any response is late
        """
        info = BootloaderInfo()

        self._send_command("S")
        raw_id = self._recv(7)
        info.identifier = raw_id.decode("ascii", errors="replace")
        logger.info(f"Bootloader: {info.identifier}")
        if info.identifier != BOOTLOADER_ID:
            raise BootloaderNotFound(raw_id)
        self._detected = True

        self._send_command("V")
        sw_ver = self._recv(2)
        info.software_version = (sw_ver[0] - ord("0"), sw_ver[1] - ord("0"))
        logger.info(f"Software version: {info.software_version_str}")

        self._send_command("v")
        hw_major = self._recv_byte()
        if hw_major != UNKNOWN_HW_VERSION:
            hw_minor = self._recv_byte()
            info.hardware_version = (hw_major - ord("0"), hw_minor - ord("0"))
            logger.info(f"Hardware version: {info.hardware_version_str}")
        else:
            logger.info("Unknown hardware version")

        info.programmer_type = chr(self._query_byte("p"))
        logger.info(f"Programmer type: {info.programmer_type}")

        info.auto_increment = self._query_byte("a") == YES
        logger.info(f"Auto address increment support: {info.auto_increment}")

        self._send_command("b")
        buffer_flag = self._recv_byte()
        info.buffer_access = buffer_flag == YES
        if not info.buffer_access:
            raise BufferAccessUnsupported(buffer_flag)
        size_bytes = self._recv(2)
        info.buffer_size = int.from_bytes(size_bytes, "big")
        logger.info(f"Buffer size: {info.buffer_size}")

        info.device_type = self._query_byte("t")
        logger.info(f"Device type: 0x{info.device_type:02X}")
        # Drain the rest of the null-terminated device list
        while self._recv_byte() != DEVICE_TYPE_TERMINATOR:
            pass

        self._acked_command("T", bytes([info.device_type]))

        info.fuses = {
            "extended": self.read_extended_fuse(),
            "low": self.read_low_fuse(),
            "high": self.read_high_fuse(),
            "lock": self.read_lock_bits(),
        }
        logger.info(
            "Fuse: Lock:%02X E:%02X H:%02X L:%02X",
            info.fuses["lock"], info.fuses["extended"],
            info.fuses["high"], info.fuses["low"],
        )

        logger.info("Valid caterina bootloader is found")
        self._info = info
        return info

    def read_signature(self) -> int:
        """
        Read the 24-bit device signature.

        The device sends the three signature bytes least significant first;
        they are reassembled as (b2 << 16) | (b1 << 8) | b0.
        """
        self._send_command("s")
        sig = self._recv(3)
        signature = (sig[2] << 16) | (sig[1] << 8) | sig[0]
        logger.info(f"Signature: 0x{signature:06X}")
        if self._info is not None:
            self._info.signature = signature
        return signature

    def identify(self) -> McuDescriptor:
        """
        Detect the bootloader and resolve the MCU descriptor.

        Raises:
            UnsupportedDevice: If the signature is not in the registry
        """
        if self._info is None:
            self.detect()
        signature = self.read_signature()
        mcu = find_mcu_by_signature(signature)
        if mcu is None:
            raise UnsupportedDevice(signature)
        self._mcu = mcu
        return mcu

    def read_extended_fuse(self) -> int:
        return self._query_byte("Q")

    def read_low_fuse(self) -> int:
        return self._query_byte("F")

    def read_high_fuse(self) -> int:
        return self._query_byte("N")

    def read_lock_bits(self) -> int:
        return self._query_byte("r")

    # ------------------------------------------------------------------
    # Mode transitions
    # ------------------------------------------------------------------

    def enter_programming_mode(self) -> None:
        self._acked_command("P")

    def leave_programming_mode(self) -> None:
        self._acked_command("L")

    def erase_all(self) -> None:
        """Erase the application section (slow; uses the erase tick budget)."""
        self._acked_command("e", timeout_ticks=self.timeouts.erase_ticks)

    def exit_bootloader(self) -> None:
        """Leave the bootloader and start the application."""
        self._acked_command("E")

    # ------------------------------------------------------------------
    # Block I/O
    # ------------------------------------------------------------------

    def set_address(self, address: int) -> None:
        """
        Set the (word) address for the following block transfers.

        The device auto-increments, so transfers must be issued
        address-ascending and contiguous after this call.
        """
        self._acked_command("A", address.to_bytes(2, "big"))

    def _block_size(self, memory: Memory) -> int:
        if memory is Memory.EEPROM:
            return EEPROM_BLOCK_SIZE
        return self.buffer_size

    def read_memory(self, length: int, memory: Memory = Memory.FLASH) -> bytes:
        """
        Read `length` bytes starting at address 0.

        Full blocks are always requested; bytes beyond `length` in the last
        block are dropped.

        Raises:
            ResponseTimeout: If a block does not arrive in time
        """
        block_size = self._block_size(memory)
        request = b"g" + block_size.to_bytes(2, "big") + memory.selector

        self.set_address(0)

        result = bytearray()
        addr = 0
        while addr < length:
            self._send(request)
            result += self._recv(block_size)
            addr += block_size
            self.progress(".")

        logger.debug(f"Read {length} bytes of {memory.label}")
        return bytes(result[:length])

    def write_memory(self, data: bytes, memory: Memory = Memory.FLASH) -> None:
        """
        Write `data` starting at address 0.

        Every block must be acknowledged; the final block is truncated to
        the remaining length.

        Raises:
            CommandRejected: If a block is not acknowledged
        """
        buffer_size = self._block_size(memory)

        self.set_address(0)
        self.buffer.clear()

        addr = 0
        while addr < len(data):
            block_size = min(buffer_size, len(data) - addr)
            self._send(b"B" + block_size.to_bytes(2, "big") + memory.selector)
            self._send(bytes(data[addr:addr + block_size]))
            self._expect_ack("B")
            addr += block_size
            self.progress(".")

        logger.debug(f"Wrote {len(data)} bytes of {memory.label}")

    def verify_memory(self, image: bytes, memory: Memory = Memory.FLASH) -> None:
        """
        Read back len(image) bytes and compare them with `image`.

        Raises:
            VerifyMismatch: At the first differing offset
        """
        self.progress(f"Verify {len(image)} bytes...")
        readback = self.read_memory(len(image), memory)
        for idx, expected in enumerate(image):
            if readback[idx] != expected:
                self.progress(f"Verify failed at address 0x{idx:x}")
                raise VerifyMismatch(idx, expected, readback[idx], memory.label)
        self.progress("Verify OK")
