"""
Standardized warning and message system for caterina-flasher.

Provides structured warning items with stable codes and remediation hints,
keyed on the error classes raised by the protocol layer.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class MessageLevel(Enum):
    """Severity level for messages."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class WarningCode(Enum):
    """Stable warning codes for known conditions."""
    # Device warnings
    W_BOOTLOADER_NOT_FOUND = "W_BOOTLOADER_NOT_FOUND"
    W_BUFFER_ACCESS = "W_BUFFER_ACCESS"
    W_UNSUPPORTED_DEVICE = "W_UNSUPPORTED_DEVICE"
    W_COMMAND_REJECTED = "W_COMMAND_REJECTED"

    # Image warnings
    W_IMAGE_TOO_LARGE = "W_IMAGE_TOO_LARGE"
    W_VERIFY_MISMATCH = "W_VERIFY_MISMATCH"
    W_IMAGE_UNREADABLE = "W_IMAGE_UNREADABLE"

    # Connection warnings
    W_SERIAL_TIMEOUT = "W_SERIAL_TIMEOUT"
    W_SERIAL_ERROR = "W_SERIAL_ERROR"

    # Safety warnings
    W_WRITE_DISABLED = "W_WRITE_DISABLED"
    W_SIMULATED = "W_SIMULATED"

    # Generic
    W_UNKNOWN = "W_UNKNOWN"


WARNING_REMEDIATIONS: Dict[WarningCode, str] = {
    WarningCode.W_BOOTLOADER_NOT_FOUND:
        "Double-tap reset (or use --reset) and pick the port that appears for the bootloader.",
    WarningCode.W_BUFFER_ACCESS:
        "This bootloader build does not support block transfers and cannot be used.",
    WarningCode.W_UNSUPPORTED_DEVICE:
        "Check supported parts with the 'list-mcus' command.",
    WarningCode.W_COMMAND_REJECTED:
        "Reset the board into the bootloader again and retry the whole operation.",
    WarningCode.W_IMAGE_TOO_LARGE:
        "The image overlaps the bootloader or exceeds EEPROM. Rebuild for the right board.",
    WarningCode.W_VERIFY_MISMATCH:
        "Data read back does not match the image. Re-flash from an erased state.",
    WarningCode.W_IMAGE_UNREADABLE:
        "Check the file path and that it is raw binary or Intel HEX.",
    WarningCode.W_SERIAL_TIMEOUT:
        "The bootloader stays active for ~8 s after reset. Start the command sooner.",
    WarningCode.W_SERIAL_ERROR:
        "Close other serial apps (Arduino IDE, serial monitors). Check the USB cable.",
    WarningCode.W_WRITE_DISABLED:
        "Add --write flag and confirm with WRITE to perform actual writes.",
    WarningCode.W_SIMULATED:
        "No board was touched. Remove --simulate to talk to real hardware.",
    WarningCode.W_UNKNOWN:
        "Check logs for more details (--verbose).",
}

# Error class name -> warning code
ERROR_CODES: Dict[str, WarningCode] = {
    "BootloaderNotFound": WarningCode.W_BOOTLOADER_NOT_FOUND,
    "BufferAccessUnsupported": WarningCode.W_BUFFER_ACCESS,
    "UnsupportedDevice": WarningCode.W_UNSUPPORTED_DEVICE,
    "CommandRejected": WarningCode.W_COMMAND_REJECTED,
    "ImageTooLarge": WarningCode.W_IMAGE_TOO_LARGE,
    "VerifyMismatch": WarningCode.W_VERIFY_MISMATCH,
    "ResponseTimeout": WarningCode.W_SERIAL_TIMEOUT,
    "TransportError": WarningCode.W_SERIAL_ERROR,
    "WritePermissionError": WarningCode.W_WRITE_DISABLED,
    "FileNotFoundError": WarningCode.W_IMAGE_UNREADABLE,
    "ValueError": WarningCode.W_IMAGE_UNREADABLE,
}


@dataclass
class WarningItem:
    """
    Structured warning message with stable code.

    Attributes:
        level: Severity (INFO, WARN, ERROR)
        code: Stable warning code for programmatic handling
        title: Short, user-facing title
        detail: Longer explanation of the issue
        remediation: Suggested action to resolve the issue
    """
    level: MessageLevel
    code: WarningCode
    title: str
    detail: str = ""
    remediation: str = ""

    def __post_init__(self):
        if not self.remediation and self.code in WARNING_REMEDIATIONS:
            self.remediation = WARNING_REMEDIATIONS[self.code]

    @classmethod
    def info(cls, code: WarningCode, title: str, detail: str = "") -> "WarningItem":
        return cls(MessageLevel.INFO, code, title, detail)

    @classmethod
    def warn(cls, code: WarningCode, title: str, detail: str = "") -> "WarningItem":
        return cls(MessageLevel.WARN, code, title, detail)

    @classmethod
    def error(cls, code: WarningCode, title: str, detail: str = "") -> "WarningItem":
        return cls(MessageLevel.ERROR, code, title, detail)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON/display."""
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "detail": self.detail,
            "remediation": self.remediation,
        }


def code_for_error(error_type: Optional[str]) -> WarningCode:
    """Map an error class name to its warning code."""
    if not error_type:
        return WarningCode.W_UNKNOWN
    return ERROR_CODES.get(error_type, WarningCode.W_UNKNOWN)


def result_to_warnings(result: "OperationResult") -> List[WarningItem]:
    """
    Convert an OperationResult's warnings and errors to WarningItem list.

    Errors are coded from result.error_type. A missing bootloader is
    reported as a warning, not an error: the board is simply not in
    bootloader mode.
    """
    items = []

    for msg in result.warnings:
        if "simulat" in msg.lower():
            code = WarningCode.W_SIMULATED
            items.append(WarningItem.info(code, msg))
        else:
            items.append(WarningItem.warn(WarningCode.W_UNKNOWN, msg))

    code = code_for_error(result.error_type)
    for err in result.errors:
        if code is WarningCode.W_BOOTLOADER_NOT_FOUND:
            items.append(WarningItem.warn(code, err))
        else:
            items.append(WarningItem.error(code, err))

    return items


COMMON_WARNINGS = {
    "simulation_mode": WarningItem.info(
        WarningCode.W_SIMULATED,
        "Simulation mode - no board was touched",
        "The operation ran against an in-memory Caterina device.",
    ),
    "write_disabled": WarningItem.warn(
        WarningCode.W_WRITE_DISABLED,
        "Write mode is disabled",
        "Flashing erases the application section of the board.",
    ),
}
