"""
Firmware image loading and saving.

Images are flat byte sequences starting at address 0. Intel HEX files are
flattened with gaps filled by 0xFF (erased flash); anything else is treated
as raw binary.
"""

import logging
from pathlib import Path
from typing import Dict, Union

logger = logging.getLogger(__name__)

HEX_SUFFIXES = {".hex", ".ihx", ".eep"}
HEX_RECORD_SIZE = 16
FILL_BYTE = 0xFF

REC_DATA = 0x00
REC_EOF = 0x01
REC_EXT_SEGMENT = 0x02
REC_EXT_LINEAR = 0x04

PathLike = Union[str, Path]


def is_hex_path(path: PathLike) -> bool:
    return Path(path).suffix.lower() in HEX_SUFFIXES


def parse_intel_hex(text: str) -> Dict[int, int]:
    """
    Parse Intel HEX text into a memory map (address -> byte).

    Supports data, EOF, extended segment and extended linear address
    records; other record types are ignored.

    Raises:
        ValueError: On malformed lines or checksum errors
    """
    memory: Dict[int, int] = {}
    upper = 0

    for line_num, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        if not line.startswith(":"):
            raise ValueError(f"Invalid HEX line {line_num}: missing ':'")

        try:
            raw = bytes.fromhex(line[1:])
        except ValueError:
            raise ValueError(f"Invalid HEX line {line_num}: non-hex characters")
        if len(raw) < 5:
            raise ValueError(f"Invalid HEX line {line_num}: too short")

        byte_count = raw[0]
        addr = (raw[1] << 8) | raw[2]
        record_type = raw[3]
        if len(raw) != byte_count + 5:
            raise ValueError(
                f"Invalid HEX line {line_num}: length does not match byte count {byte_count}"
            )
        if sum(raw) & 0xFF:
            raise ValueError(f"HEX checksum error on line {line_num}")

        data = raw[4:4 + byte_count]
        if record_type == REC_DATA:
            base = upper + addr
            for i, value in enumerate(data):
                memory[base + i] = value
        elif record_type == REC_EOF:
            break
        elif record_type in (REC_EXT_SEGMENT, REC_EXT_LINEAR):
            if byte_count != 2:
                raise ValueError(f"Invalid extended address record at line {line_num}")
            shift = 4 if record_type == REC_EXT_SEGMENT else 16
            upper = int.from_bytes(data, "big") << shift

    return memory


def flatten(memory: Dict[int, int]) -> bytes:
    """Flatten a memory map into bytes starting at address 0."""
    if not memory:
        return b""
    image = bytearray([FILL_BYTE]) * (max(memory) + 1)
    for addr, value in memory.items():
        image[addr] = value
    return bytes(image)


def to_intel_hex(data: bytes) -> str:
    """Encode bytes (from address 0) as Intel HEX text."""
    lines = []
    upper = 0
    for offset in range(0, len(data), HEX_RECORD_SIZE):
        if offset >> 16 != upper:
            upper = offset >> 16
            lines.append(_record(0, REC_EXT_LINEAR, upper.to_bytes(2, "big")))
        chunk = data[offset:offset + HEX_RECORD_SIZE]
        lines.append(_record(offset & 0xFFFF, REC_DATA, chunk))
    lines.append(_record(0, REC_EOF, b""))
    return "\n".join(lines) + "\n"


def _record(addr: int, record_type: int, data: bytes) -> str:
    body = bytes([len(data), addr >> 8, addr & 0xFF, record_type]) + data
    checksum = (-sum(body)) & 0xFF
    return ":" + (body + bytes([checksum])).hex().upper()


def load_image(path: PathLike) -> bytes:
    """
    Load a firmware or EEPROM image.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If an Intel HEX file is malformed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")

    if is_hex_path(path):
        image = flatten(parse_intel_hex(path.read_text(encoding="ascii", errors="replace")))
    else:
        image = path.read_bytes()
    logger.debug(f"Loaded {len(image)} bytes from {path}")
    return image


def save_image(path: PathLike, data: bytes) -> Path:
    """Save an image as Intel HEX (by suffix) or raw binary."""
    path = Path(path)
    if is_hex_path(path):
        path.write_text(to_intel_hex(data), encoding="ascii")
    else:
        path.write_bytes(data)
    logger.debug(f"Saved {len(data)} bytes to {path}")
    return path
