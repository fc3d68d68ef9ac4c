"""
MCU registry for Caterina-bootloader boards.

Provides the static descriptor table used to validate a device before any
write-capable command is issued.
"""

from .registry import (
    McuDescriptor,
    ATMEGA32U4,
    list_mcus,
    get_mcu,
    find_mcu_by_signature,
)

__all__ = [
    "McuDescriptor",
    "ATMEGA32U4",
    "list_mcus",
    "get_mcu",
    "find_mcu_by_signature",
]
