"""
Result objects for core operations.

Provides a unified result structure that the CLI (and any other front end)
can use to display operation outcomes consistently.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class OperationResult:
    """
    Unified result object for all core operations.

    Attributes:
        ok: Whether the operation completed successfully
        operation: Name of the operation (e.g., "read_firmware")
        mcu: Identified MCU name
        port: Serial port used
        bytes_len: Number of bytes processed
        hashes: Dict of hash values (sha256 of images)
        warnings: Non-blocking issues encountered
        errors: Blocking errors that caused failure
        error_type: Class name of the error that ended the operation
        metadata: Additional operation-specific data
        logs: Captured log lines from the operation
    """
    ok: bool
    operation: str
    mcu: str = ""
    port: str = ""
    bytes_len: int = 0
    hashes: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    error_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        self.ok = False

    def to_summary(self) -> str:
        """Generate a human-readable summary string."""
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.mcu:
            lines.append(f"  MCU: {self.mcu}")
        if self.port:
            lines.append(f"  Port: {self.port}")
        if self.bytes_len:
            lines.append(f"  Bytes: {self.bytes_len:,}")

        for name, value in self.hashes.items():
            lines.append(f"  {name}: {value[:16]}...")

        if self.warnings:
            lines.append("  Warnings:")
            for warn in self.warnings:
                lines.append(f"    - {warn}")

        if self.errors:
            lines.append("  Errors:")
            for err in self.errors:
                lines.append(f"    - {err}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization (binary data excluded)."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "mcu": self.mcu,
            "port": self.port,
            "bytes_len": self.bytes_len,
            "hashes": self.hashes,
            "warnings": self.warnings,
            "errors": self.errors,
            "error_type": self.error_type,
            "metadata": {
                k: v for k, v in self.metadata.items() if not isinstance(v, (bytes, bytearray))
            },
            "logs": self.logs,
        }

    @classmethod
    def success(
        cls,
        operation: str,
        mcu: str = "",
        bytes_len: int = 0,
        **kwargs,
    ) -> "OperationResult":
        """Create a successful result."""
        return cls(ok=True, operation=operation, mcu=mcu, bytes_len=bytes_len, **kwargs)

    @classmethod
    def failure(
        cls,
        operation: str,
        error: BaseException,
        **kwargs,
    ) -> "OperationResult":
        """Create a failed result from the exception that ended the operation."""
        result = cls(ok=False, operation=operation, error_type=type(error).__name__, **kwargs)
        result.errors.append(str(error))
        return result
