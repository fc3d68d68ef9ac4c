"""
Orchestrated bootloader operations.

Each public function runs one complete session against a fresh transport:
open, detect/identify, act, exit, close. The transport is closed exactly
once on every path, and the first error is reported to the progress sink
before it propagates.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

from caterina_flasher.models import McuDescriptor
from caterina_flasher.protocol import (
    BootloaderInfo,
    ByteTransport,
    CaterinaError,
    CaterinaProtocol,
    ImageTooLarge,
    Memory,
    ProgressSink,
    ProtocolTimeouts,
    TickClock,
    TransportError,
    no_progress,
)

logger = logging.getLogger(__name__)


@contextmanager
def _session(
    transport: ByteTransport,
    progress: ProgressSink,
    clock: Optional[TickClock] = None,
    timeouts: Optional[ProtocolTimeouts] = None,
) -> Iterator[CaterinaProtocol]:
    """
    Open the transport and yield an identified protocol session.

    On the way out the bootloader is always told to exit once it has been
    detected, and the transport is always closed.
    """
    protocol = CaterinaProtocol(transport, clock=clock, timeouts=timeouts, progress=progress)
    exit_sent = False
    failed = False
    try:
        transport.open()
        mcu = protocol.identify()
        progress(f"{mcu.name} found.")
        yield protocol
        exit_sent = True
        protocol.exit_bootloader()
    except CaterinaError as e:
        failed = True
        progress(str(e))
        raise
    except BaseException:
        failed = True
        raise
    finally:
        try:
            if not exit_sent and protocol.detected:
                try:
                    protocol.exit_bootloader()
                except CaterinaError as exit_error:
                    logger.warning(f"Bootloader exit after failure also failed: {exit_error}")
        finally:
            try:
                transport.close()
            except TransportError as close_error:
                # The error that ended the session wins
                if not failed:
                    raise
                logger.warning(f"Closing the port after failure also failed: {close_error}")


def _check_flash_image(mcu: McuDescriptor, image: bytes) -> None:
    if len(image) > mcu.boot_section_addr:
        raise ImageTooLarge(len(image), mcu.boot_section_addr, "flash")


def _check_eeprom_image(mcu: McuDescriptor, image: bytes) -> None:
    if len(image) > mcu.eeprom_size:
        raise ImageTooLarge(len(image), mcu.eeprom_size, "eeprom")


def identify_device(
    transport: ByteTransport,
    progress: Optional[ProgressSink] = None,
    clock: Optional[TickClock] = None,
    timeouts: Optional[ProtocolTimeouts] = None,
) -> Tuple[BootloaderInfo, McuDescriptor]:
    """
    Detect the bootloader and identify the MCU without touching memory.

    Returns:
        (BootloaderInfo, McuDescriptor)
    """
    progress = progress or no_progress
    with _session(transport, progress, clock, timeouts) as protocol:
        return protocol.info, protocol.mcu


def read_firmware(
    transport: ByteTransport,
    size: int = 0,
    progress: Optional[ProgressSink] = None,
    clock: Optional[TickClock] = None,
    timeouts: Optional[ProtocolTimeouts] = None,
) -> bytes:
    """
    Read flash contents.

    Args:
        transport: Unopened byte transport
        size: Bytes to read; 0 reads the whole flash. Clamped to flash size.
        progress: Sink for status strings and block tick markers

    Returns:
        Flash bytes starting at address 0
    """
    progress = progress or no_progress
    with _session(transport, progress, clock, timeouts) as protocol:
        flash_size = protocol.mcu.flash_size
        if size <= 0:
            size = flash_size
        size = min(size, flash_size)

        progress(f"Reading {size} bytes...")
        firmware = protocol.read_memory(size, Memory.FLASH)
        progress("Read complete")
    return firmware


def read_eeprom(
    transport: ByteTransport,
    size: int = 0,
    progress: Optional[ProgressSink] = None,
    clock: Optional[TickClock] = None,
    timeouts: Optional[ProtocolTimeouts] = None,
) -> bytes:
    """
    Read EEPROM contents (one byte per block command).

    Args:
        size: Bytes to read; 0 reads the whole EEPROM. Clamped to EEPROM size.
    """
    progress = progress or no_progress
    with _session(transport, progress, clock, timeouts) as protocol:
        eeprom_size = protocol.mcu.eeprom_size
        if size <= 0:
            size = eeprom_size
        size = min(size, eeprom_size)

        progress(f"Reading {size} EEPROM bytes...")
        data = protocol.read_memory(size, Memory.EEPROM)
        progress("Read complete")
    return data


def write_firmware(
    transport: ByteTransport,
    flash_image: bytes,
    eeprom_image: Optional[bytes] = None,
    progress: Optional[ProgressSink] = None,
    clock: Optional[TickClock] = None,
    timeouts: Optional[ProtocolTimeouts] = None,
) -> None:
    """
    Erase, program and verify flash, then optionally EEPROM.

    Both size limits are checked before the first destructive command.

    Raises:
        ImageTooLarge: If the flash image overlaps the boot section or the
            EEPROM image exceeds the EEPROM
        VerifyMismatch: If read-back differs from an image
    """
    progress = progress or no_progress
    with _session(transport, progress, clock, timeouts) as protocol:
        mcu = protocol.mcu
        _check_flash_image(mcu, flash_image)
        if eeprom_image is not None:
            _check_eeprom_image(mcu, eeprom_image)

        protocol.enter_programming_mode()

        progress("Erase all...")
        protocol.erase_all()
        progress("Erase complete...")

        progress(f"Flash {len(flash_image)} bytes...")
        protocol.write_memory(flash_image, Memory.FLASH)
        progress("Flash complete...")
        protocol.verify_memory(flash_image, Memory.FLASH)

        if eeprom_image is not None:
            progress(f"EEPROM {len(eeprom_image)} bytes...")
            protocol.write_memory(eeprom_image, Memory.EEPROM)
            progress("EEPROM complete...")
            protocol.verify_memory(eeprom_image, Memory.EEPROM)

        protocol.leave_programming_mode()


def verify_firmware(
    transport: ByteTransport,
    flash_image: bytes,
    progress: Optional[ProgressSink] = None,
    clock: Optional[TickClock] = None,
    timeouts: Optional[ProtocolTimeouts] = None,
) -> None:
    """
    Compare flash contents with `flash_image`.

    Raises:
        ImageTooLarge: If the image overlaps the boot section
        VerifyMismatch: At the first differing offset
    """
    progress = progress or no_progress
    with _session(transport, progress, clock, timeouts) as protocol:
        _check_flash_image(protocol.mcu, flash_image)
        protocol.verify_memory(flash_image, Memory.FLASH)
