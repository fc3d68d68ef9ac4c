"""
MCU descriptor registry for Caterina-bootloader boards.

Provides a single source of truth for:
- Device signatures (as reported by the bootloader 's' command)
- Flash and EEPROM geometry
- Boot section address (upper limit for application images)

Usage:
    from caterina_flasher.models import (
        list_mcus, get_mcu, find_mcu_by_signature
    )

    # List all known MCUs
    names = list_mcus()

    # Get descriptor by name
    mcu = get_mcu("atmega32u4")

    # Resolve a signature read from the device
    mcu = find_mcu_by_signature(0x1E9587)
"""

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class McuDescriptor:
    """
    Static geometry of a supported microcontroller.

    Attributes:
        name: Part name (lowercase, avrdude style)
        signature: 24-bit device signature, most significant byte first
        flash_size: Total flash size in bytes
        eeprom_size: EEPROM size in bytes
        boot_section_addr: Byte address where the bootloader starts
    """
    name: str
    signature: int
    flash_size: int
    eeprom_size: int
    boot_section_addr: int

    @property
    def application_size(self) -> int:
        """Largest flash image that does not overlap the bootloader."""
        return self.boot_section_addr

    @property
    def signature_bytes(self) -> bytes:
        """Signature in the order the bootloader sends it (least significant first)."""
        return self.signature.to_bytes(3, "little")

    def to_dict(self) -> Dict:
        """Convert to JSON-serializable dict."""
        return {
            "name": self.name,
            "signature": f"0x{self.signature:06X}",
            "flash_size": self.flash_size,
            "eeprom_size": self.eeprom_size,
            "boot_section_addr": f"0x{self.boot_section_addr:04X}",
        }


# ============================================================================
# MCU REGISTRY - All known parts
# ============================================================================

_MCU_REGISTRY: Dict[str, McuDescriptor] = {}


def _register_mcu(descriptor: McuDescriptor) -> None:
    """Register an MCU descriptor."""
    _MCU_REGISTRY[descriptor.name] = descriptor


def _init_registry() -> None:
    """Initialize the registry with known parts."""

    # ATmega32U4 (Arduino Leonardo, Pro Micro, Micro)
    # 4 KiB Caterina bootloader at the top of flash
    _register_mcu(McuDescriptor(
        name="atmega32u4",
        signature=0x1E9587,
        flash_size=32768,
        eeprom_size=1024,
        boot_section_addr=0x7000,
    ))


_init_registry()

ATMEGA32U4 = _MCU_REGISTRY["atmega32u4"]


# ============================================================================
# PUBLIC API
# ============================================================================

def list_mcus() -> List[str]:
    """
    List all registered MCU names.

    Returns:
        Sorted list of part names.
    """
    return sorted(_MCU_REGISTRY.keys())


def get_mcu(name: str) -> McuDescriptor:
    """
    Get the descriptor for a part by name.

    Args:
        name: Part name (case-insensitive)

    Raises:
        KeyError: If the part is not registered.
    """
    try:
        return _MCU_REGISTRY[name.strip().lower()]
    except KeyError:
        raise KeyError(
            f"Unknown MCU '{name}'. Known parts: {', '.join(list_mcus())}"
        ) from None


def find_mcu_by_signature(signature: int) -> Optional[McuDescriptor]:
    """
    Look up a part by the 24-bit signature read from the device.

    Returns:
        Matching McuDescriptor, or None if the signature is unknown.
    """
    for descriptor in _MCU_REGISTRY.values():
        if descriptor.signature == signature:
            return descriptor
    return None
