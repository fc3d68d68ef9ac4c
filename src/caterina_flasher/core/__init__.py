"""
Core module for caterina-flasher.

This module provides the single source of truth for:
- Orchestrated bootloader sessions (operations.py)
- Write gating / confirmation (safety.py)
- Size and address parsing (parsing.py)
- Result objects (results.py)
- Port-level read/write/verify workflows (actions.py)
- Standardized warnings/messages (messages.py)

Front ends should call into this module rather than driving the protocol
layer themselves.
"""

from .safety import SafetyContext, require_write_permission, WritePermissionError
from .parsing import parse_int, parse_size
from .results import OperationResult
from .messages import (
    MessageLevel,
    WarningCode,
    WarningItem,
    code_for_error,
    result_to_warnings,
    COMMON_WARNINGS,
)
from .operations import (
    identify_device,
    read_firmware,
    read_eeprom,
    write_firmware,
    verify_firmware,
)
from .actions import (
    build_transport,
    identify_board,
    read_board,
    flash_board,
    verify_board,
)

__all__ = [
    # Safety
    "SafetyContext",
    "require_write_permission",
    "WritePermissionError",
    # Parsing
    "parse_int",
    "parse_size",
    # Results
    "OperationResult",
    # Messages
    "MessageLevel",
    "WarningCode",
    "WarningItem",
    "code_for_error",
    "result_to_warnings",
    "COMMON_WARNINGS",
    # Operations
    "identify_device",
    "read_firmware",
    "read_eeprom",
    "write_firmware",
    "verify_firmware",
    # Actions
    "build_transport",
    "identify_board",
    "read_board",
    "flash_board",
    "verify_board",
]
