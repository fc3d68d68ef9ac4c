"""
Centralized parsing helpers for CLI values.

The CLI must import these helpers rather than re-implement them.
"""

from typing import Optional

_SIZE_SUFFIXES = {"k": 1024, "kb": 1024, "kib": 1024}


def parse_int(value: Optional[str]) -> Optional[int]:
    """
    Parse an integer from string, supporting multiple formats.

    Accepts:
        - Decimal: "4096"
        - Hex with 0x prefix: "0x1000" or "0X1000"
        - Hex with h suffix: "1000h" or "1000H"
        - None or empty for "not given"

    Raises:
        ValueError: If value cannot be parsed.
    """
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    try:
        if value.lower().startswith("0x"):
            return int(value, 16)
        if value.lower().endswith("h"):
            return int(value[:-1], 16)
        return int(value)
    except ValueError:
        raise ValueError(
            f"Invalid number '{value}'. Use decimal (4096), hex (0x1000), or suffix (1000h)."
        )


def parse_size(value: Optional[str]) -> int:
    """
    Parse a byte count for read operations.

    Accepts everything parse_int() does plus a KiB suffix ("32k", "1KiB").
    None, empty and "0" mean "whole memory" and return 0.

    Raises:
        ValueError: If value cannot be parsed or is negative.
    """
    if value is None or not value.strip():
        return 0

    text = value.strip().lower()
    for suffix, factor in sorted(_SIZE_SUFFIXES.items(), key=lambda kv: -len(kv[0])):
        if text.endswith(suffix) and text[:-len(suffix)].strip().isdigit():
            return int(text[:-len(suffix)]) * factor

    try:
        size = parse_int(text)
    except ValueError:
        raise ValueError(
            f"Invalid size '{value}'. Use bytes (4096), hex (0x1000), or KiB (4k)."
        )
    if size < 0:
        raise ValueError(f"Invalid size '{value}'. Size cannot be negative.")
    return size
