"""
caterina-flasher - Read, write and verify ATmega32U4 boards through the
Caterina bootloader

Speaks the bootloader's serial command set directly; no avrdude needed.
"""

__version__ = "0.1.0"

from caterina_flasher.protocol import CaterinaProtocol, SerialTransport
from caterina_flasher.core.operations import (
    read_firmware,
    write_firmware,
    verify_firmware,
)

__all__ = [
    "CaterinaProtocol",
    "SerialTransport",
    "read_firmware",
    "write_firmware",
    "verify_firmware",
    "__version__",
]
