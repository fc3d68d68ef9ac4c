"""
In-memory Caterina device.

SimulatedCaterina answers the bootloader command set from byte arrays
instead of real flash, and SimulatedTransport plugs it behind the
ByteTransport contract. Used by the CLI --simulate mode and by the tests.
"""

import logging
from typing import Dict, Iterable, List, Optional

from caterina_flasher.models import ATMEGA32U4, McuDescriptor

from .errors import TransportError
from .transport import ByteTransport, ReceiveCallback

logger = logging.getLogger(__name__)

CR = b"\r"
UNKNOWN = b"?"

# Extra bytes a command carries after its letter (B also carries its payload)
_ARG_LENGTHS = {"A": 2, "T": 1, "g": 3, "B": 3}

DEFAULT_FUSES = {"Q": 0xCB, "F": 0xFF, "N": 0xD8, "r": 0xEC}


class SimulatedCaterina:
    """
    Caterina bootloader state machine over in-memory flash and EEPROM.

    Attributes:
        flash: Flash contents (erased to 0xFF)
        eeprom: EEPROM contents (erased to 0xFF)
        commands: Every command letter received, in order
        reject: Command letter -> byte sent instead of the normal answer
        silent: Command letters that are never answered
        write_faults: Flash offset -> byte stored instead of the written one
    """

    def __init__(
        self,
        mcu: McuDescriptor = ATMEGA32U4,
        buffer_size: int = 128,
        identifier: bytes = b"CATERIN",
        buffer_access: bool = True,
        software_version: bytes = b"10",
        hardware_version: bytes = b"?",
        programmer_type: bytes = b"S",
        device_types: bytes = b"\x44",
        signature: Optional[int] = None,
        fuses: Optional[Dict[str, int]] = None,
        reject: Optional[Dict[str, int]] = None,
        silent: Iterable[str] = (),
        write_faults: Optional[Dict[int, int]] = None,
    ):
        self.mcu = mcu
        self.buffer_size = buffer_size
        self.identifier = identifier
        self.buffer_access = buffer_access
        self.software_version = software_version
        self.hardware_version = hardware_version
        self.programmer_type = programmer_type
        self.device_types = device_types
        self.signature = mcu.signature if signature is None else signature
        self.fuses = dict(DEFAULT_FUSES, **(fuses or {}))
        self.reject = dict(reject or {})
        self.silent = set(silent)
        self.write_faults = dict(write_faults or {})

        self.flash = bytearray(b"\xFF" * mcu.flash_size)
        self.eeprom = bytearray(b"\xFF" * mcu.eeprom_size)
        self.commands: List[str] = []
        self.address = 0
        self.programming = False
        self.exited = False
        self._pending = bytearray()

    def count(self, command: str) -> int:
        """Number of times `command` was received."""
        return self.commands.count(command)

    def feed(self, data: bytes) -> bytes:
        """
        Consume host bytes and return the device's answer.

        Partial commands are kept until the rest of their bytes arrive.
        """
        self._pending += data
        out = bytearray()
        while self._pending:
            command = chr(self._pending[0])
            needed = 1 + _ARG_LENGTHS.get(command, 0)
            if len(self._pending) < needed:
                break
            if command == "B":
                needed += int.from_bytes(self._pending[1:3], "big")
                if len(self._pending) < needed:
                    break
            frame = bytes(self._pending[:needed])
            del self._pending[:needed]

            self.commands.append(command)
            answer = self._handle(command, frame[1:])
            if command in self.silent:
                continue
            if command in self.reject:
                answer = bytes([self.reject[command]])
            out += answer
        return bytes(out)

    def _offset(self, memory: str) -> int:
        return self.address * 2 if memory == "F" else self.address

    def _handle(self, command: str, args: bytes) -> bytes:
        if command == "S":
            return self.identifier
        if command == "V":
            return self.software_version
        if command == "v":
            return self.hardware_version
        if command == "p":
            return self.programmer_type
        if command == "a":
            return b"Y"
        if command == "b":
            if not self.buffer_access:
                return b"N"
            return b"Y" + self.buffer_size.to_bytes(2, "big")
        if command == "t":
            return self.device_types + b"\x00"
        if command == "T":
            return CR
        if command in self.fuses:
            return bytes([self.fuses[command]])
        if command == "s":
            return self.signature.to_bytes(3, "little")
        if command == "A":
            self.address = int.from_bytes(args, "big")
            return CR
        if command == "g":
            return self._read_block(int.from_bytes(args[:2], "big"), chr(args[2]))
        if command == "B":
            return self._write_block(chr(args[2]), args[3:])
        if command == "P":
            self.programming = True
            return CR
        if command == "L":
            self.programming = False
            return CR
        if command == "e":
            self.flash[:self.mcu.boot_section_addr] = b"\xFF" * self.mcu.boot_section_addr
            return CR
        if command == "E":
            self.exited = True
            return CR
        return UNKNOWN

    def _read_block(self, size: int, memory: str) -> bytes:
        store = self.flash if memory == "F" else self.eeprom
        start = self._offset(memory)
        block = bytes(store[start:start + size])
        block += b"\xFF" * (size - len(block))
        if memory == "F":
            self.address += (size + 1) // 2
        else:
            self.address += size
        return block

    def _write_block(self, memory: str, payload: bytes) -> bytes:
        store = self.flash if memory == "F" else self.eeprom
        start = self._offset(memory)
        store[start:start + len(payload)] = payload
        if memory == "F":
            for offset, value in self.write_faults.items():
                if start <= offset < start + len(payload):
                    store[offset] = value
            self.address += (len(payload) + 1) // 2
        else:
            self.address += len(payload)
        return CR


class SimulatedTransport(ByteTransport):
    """
    ByteTransport wired to a SimulatedCaterina.

    Answers are delivered synchronously from write(), so timed reads never
    have to wait for them.
    """

    def __init__(self, device: Optional[SimulatedCaterina] = None, fail_open: bool = False):
        self.device = device or SimulatedCaterina()
        self.fail_open = fail_open
        self.open_count = 0
        self.close_count = 0
        self._open = False
        self._callback: Optional[ReceiveCallback] = None

    @property
    def is_open(self) -> bool:
        return self._open

    def set_receive_callback(self, callback: Optional[ReceiveCallback]) -> None:
        self._callback = callback

    def open(self) -> None:
        self.open_count += 1
        if self.fail_open:
            raise TransportError("Cannot open port SIMULATED: device unavailable")
        self._open = True
        logger.debug("Opened simulated Caterina device")

    def close(self) -> None:
        self.close_count += 1
        self._open = False

    def write(self, data: bytes) -> None:
        if not self._open:
            raise TransportError("Serial port not open")
        answer = self.device.feed(data)
        if answer and self._callback is not None:
            self._callback(answer)
