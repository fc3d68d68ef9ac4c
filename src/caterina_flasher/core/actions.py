"""
Core workflow actions for caterina-flasher.

Port-level wrappers around core.operations that the CLI (or any other front
end) can call. Each action builds its transport, runs one bootloader
session, and folds the outcome into an OperationResult instead of raising.
"""

import hashlib
import logging
from contextlib import contextmanager
from typing import Callable, Optional

from caterina_flasher.protocol import (
    ByteTransport,
    CaterinaError,
    ProgressSink,
    ProtocolTimeouts,
    SerialTransport,
    SimulatedTransport,
    TickClock,
    touch_reset,
)
from caterina_flasher.protocol.transport import DEFAULT_BAUDRATE

from . import operations
from .results import OperationResult

logger = logging.getLogger(__name__)

SIMULATED_PORT = "SIMULATED"

# Diagnostic attributes copied from protocol errors into result metadata
_ERROR_DETAILS = ("offset", "command", "response", "signature", "length", "limit", "region")


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "caterina_flasher"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def build_transport(
    port: str,
    baud: int = DEFAULT_BAUDRATE,
    simulate: bool = False,
    reset: bool = False,
) -> ByteTransport:
    """
    Create an unopened transport for `port`.

    Args:
        port: Serial port path (ignored when simulating)
        baud: Baud rate
        simulate: Use an in-memory Caterina device instead of hardware
        reset: Send a 1200-baud touch first so the board enters its bootloader
    """
    if simulate:
        return SimulatedTransport()
    if reset:
        touch_reset(port)
    return SerialTransport(port, baudrate=baud)


def _run(
    operation: str,
    port: str,
    action: Callable[[ByteTransport], OperationResult],
    transport: Optional[ByteTransport],
    baud: int,
    simulate: bool,
    reset: bool,
) -> OperationResult:
    with _capture_logs() as logs:
        try:
            if transport is None:
                transport = build_transport(port, baud=baud, simulate=simulate, reset=reset)
            result = action(transport)
        except (CaterinaError, OSError, ValueError) as e:
            logger.error(f"{operation} failed: {e}")
            result = OperationResult.failure(operation=operation, error=e)
            for attr in _ERROR_DETAILS:
                if hasattr(e, attr):
                    result.metadata[attr] = getattr(e, attr)
        result.port = SIMULATED_PORT if simulate else port
        if simulate:
            result.add_warning("Simulation mode - no board was touched")
        result.logs = logs
        return result


def identify_board(
    port: str,
    baud: int = DEFAULT_BAUDRATE,
    simulate: bool = False,
    reset: bool = False,
    timeouts: Optional[ProtocolTimeouts] = None,
    clock: Optional[TickClock] = None,
    progress: Optional[ProgressSink] = None,
    transport: Optional[ByteTransport] = None,
) -> OperationResult:
    """
    Detect the bootloader and identify the board.

    Returns:
        OperationResult with:
            - mcu: identified part name
            - metadata["bootloader"]: BootloaderInfo.to_dict()
            - metadata["mcu"]: McuDescriptor.to_dict()
    """
    def action(t: ByteTransport) -> OperationResult:
        info, mcu = operations.identify_device(
            t, progress=progress, clock=clock, timeouts=timeouts
        )
        result = OperationResult.success(operation="identify", mcu=mcu.name)
        result.metadata["bootloader"] = info.to_dict()
        result.metadata["mcu"] = mcu.to_dict()
        return result

    return _run("identify", port, action, transport, baud, simulate, reset)


def read_board(
    port: str,
    size: int = 0,
    eeprom: bool = False,
    baud: int = DEFAULT_BAUDRATE,
    simulate: bool = False,
    reset: bool = False,
    timeouts: Optional[ProtocolTimeouts] = None,
    clock: Optional[TickClock] = None,
    progress: Optional[ProgressSink] = None,
    transport: Optional[ByteTransport] = None,
) -> OperationResult:
    """
    Read flash (or EEPROM) contents from the board.

    Returns:
        OperationResult with:
            - metadata["data"]: bytes read
            - metadata["memory"]: "flash" or "eeprom"
            - bytes_len, hashes["sha256"]
    """
    memory = "eeprom" if eeprom else "flash"
    read = operations.read_eeprom if eeprom else operations.read_firmware

    def action(t: ByteTransport) -> OperationResult:
        data = read(t, size=size, progress=progress, clock=clock, timeouts=timeouts)
        result = OperationResult.success(operation=f"read_{memory}", bytes_len=len(data))
        result.hashes["sha256"] = hashlib.sha256(data).hexdigest()
        result.metadata["data"] = data
        result.metadata["memory"] = memory
        return result

    return _run(f"read_{memory}", port, action, transport, baud, simulate, reset)


def flash_board(
    port: str,
    flash_image: bytes,
    eeprom_image: Optional[bytes] = None,
    baud: int = DEFAULT_BAUDRATE,
    simulate: bool = False,
    reset: bool = False,
    timeouts: Optional[ProtocolTimeouts] = None,
    clock: Optional[TickClock] = None,
    progress: Optional[ProgressSink] = None,
    transport: Optional[ByteTransport] = None,
) -> OperationResult:
    """
    Erase, program and verify the board.

    Write gating (core.safety) is the caller's job and must happen before
    this is called.
    """
    def action(t: ByteTransport) -> OperationResult:
        operations.write_firmware(
            t, flash_image, eeprom_image,
            progress=progress, clock=clock, timeouts=timeouts,
        )
        result = OperationResult.success(operation="write_firmware", bytes_len=len(flash_image))
        result.hashes["flash_sha256"] = hashlib.sha256(flash_image).hexdigest()
        if eeprom_image is not None:
            result.hashes["eeprom_sha256"] = hashlib.sha256(eeprom_image).hexdigest()
            result.metadata["eeprom_bytes"] = len(eeprom_image)
        return result

    return _run("write_firmware", port, action, transport, baud, simulate, reset)


def verify_board(
    port: str,
    flash_image: bytes,
    baud: int = DEFAULT_BAUDRATE,
    simulate: bool = False,
    reset: bool = False,
    timeouts: Optional[ProtocolTimeouts] = None,
    clock: Optional[TickClock] = None,
    progress: Optional[ProgressSink] = None,
    transport: Optional[ByteTransport] = None,
) -> OperationResult:
    """Compare the board's flash with `flash_image`."""
    def action(t: ByteTransport) -> OperationResult:
        operations.verify_firmware(
            t, flash_image, progress=progress, clock=clock, timeouts=timeouts
        )
        result = OperationResult.success(operation="verify_firmware", bytes_len=len(flash_image))
        result.hashes["sha256"] = hashlib.sha256(flash_image).hexdigest()
        return result

    return _run("verify_firmware", port, action, transport, baud, simulate, reset)
