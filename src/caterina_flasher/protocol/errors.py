"""
Error hierarchy for the Caterina bootloader driver.

Every failure surfaced by the driver or the orchestrated operations is a
CaterinaError subclass. None of them is retried internally; each one aborts
the current operation.
"""

from typing import Optional


class CaterinaError(Exception):
    """Base exception for all bootloader errors"""
    pass


class TransportError(CaterinaError):
    """The underlying byte transport failed (open, write or close)"""
    pass


class ResponseTimeout(CaterinaError):
    """
    Not enough response bytes arrived within the tick budget.

    Attributes:
        expected: Number of bytes the reader waited for
        available: Number of bytes buffered when the deadline elapsed
        timeout_ticks: Tick budget that elapsed
    """
    def __init__(self, expected: int, available: int, timeout_ticks: int):
        self.expected = expected
        self.available = available
        self.timeout_ticks = timeout_ticks
        super().__init__(
            f"Serial receive timeout: expected {expected} bytes, "
            f"got {available} within {timeout_ticks} ticks"
        )


class BootloaderNotFound(CaterinaError):
    """
    The device did not answer the 'S' command with the Caterina identifier.

    Attributes:
        identifier: Bytes actually received
    """
    def __init__(self, identifier: bytes):
        self.identifier = identifier
        super().__init__(
            f"Caterina bootloader is not found (identifier {identifier!r})"
        )


class BufferAccessUnsupported(CaterinaError):
    """The bootloader declined buffered memory access ('b' command)"""

    def __init__(self, response: Optional[int] = None):
        self.response = response
        detail = f" (response 0x{response:02X})" if response is not None else ""
        super().__init__(f"Bootloader does not support buffered access{detail}")


class CommandRejected(CaterinaError):
    """
    A command was not acknowledged with carriage return.

    Attributes:
        command: Command letter that was sent
        response: Byte received instead of 0x0D
    """
    def __init__(self, command: str, response: int):
        self.command = command
        self.response = response
        super().__init__(
            f"Command '{command}' failed. res:0x{response:02X}"
        )


class UnsupportedDevice(CaterinaError):
    """
    The device signature is not in the descriptor table.

    Attributes:
        signature: 24-bit signature read from the device
    """
    def __init__(self, signature: int):
        self.signature = signature
        super().__init__(f"No flash config for this mcu (signature 0x{signature:06X})")


class ImageTooLarge(CaterinaError):
    """
    An image does not fit in its target region.

    Attributes:
        length: Image length in bytes
        limit: Largest allowed length
        region: "flash" or "eeprom"
    """
    def __init__(self, length: int, limit: int, region: str = "flash"):
        self.length = length
        self.limit = limit
        self.region = region
        super().__init__(
            f"{region.capitalize()} image size exceeds limit {length}>{limit}"
        )


class VerifyMismatch(CaterinaError):
    """
    Read-back data differs from the supplied image.

    Attributes:
        offset: First differing byte offset
        expected: Byte from the image
        actual: Byte read from the device
        region: "flash" or "eeprom"
    """
    def __init__(self, offset: int, expected: int, actual: int, region: str = "flash"):
        self.offset = offset
        self.expected = expected
        self.actual = actual
        self.region = region
        super().__init__(
            f"Verify failed at address 0x{offset:x} "
            f"(expected 0x{expected:02X}, read 0x{actual:02X})"
        )
