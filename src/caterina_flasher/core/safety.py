"""
Safety context and write gating for flash operations.

Erasing and reprogramming a board is destructive, so the CLI asks for an
explicit --write flag plus a typed confirmation before a write session is
opened.
"""

import sys
from dataclasses import dataclass, field
from typing import Callable, List, Optional

# Confirmation token required for non-interactive writes
CONFIRMATION_TOKEN = "WRITE"


class WritePermissionError(Exception):
    """
    Raised when a write operation is not permitted.

    Attributes:
        reason: Human-readable explanation of why write was denied
        details: Additional context (port, image sizes)
    """
    def __init__(self, reason: str, details: Optional[dict] = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)


@dataclass
class SafetyContext:
    """
    Safety context for write operations.

    Attributes:
        write_enabled: Whether the --write flag was provided
        confirmation_token: For non-interactive mode, must match CONFIRMATION_TOKEN
        interactive: Whether the UI can prompt for confirmation
        port: Target serial port
        simulate: Whether the target is the simulated device
        warnings: Warning messages accumulated during gating
    """
    write_enabled: bool = False
    confirmation_token: Optional[str] = None
    interactive: bool = True
    port: str = ""
    simulate: bool = False
    warnings: List[str] = field(default_factory=list)

    # CLI sets these to prompt functions
    prompt_confirmation: Optional[Callable[[str], str]] = None
    show_details: Optional[Callable[[dict], None]] = None

    def add_warning(self, message: str) -> None:
        """Add a warning to the context."""
        self.warnings.append(message)

    def to_details_dict(self, flash_bytes: int = 0, eeprom_bytes: Optional[int] = None) -> dict:
        """Create a details dictionary for display."""
        details = {
            "port": self.port or "Unknown",
            "flash_bytes": flash_bytes,
        }
        if eeprom_bytes is not None:
            details["eeprom_bytes"] = eeprom_bytes
        if self.warnings:
            details["warnings"] = self.warnings
        return details


def require_write_permission(
    ctx: SafetyContext,
    flash_bytes: int = 0,
    eeprom_bytes: Optional[int] = None,
) -> None:
    """
    Enforce write permission rules.

    Rules enforced:
    1. If simulate mode: always allowed (no real board)
    2. If write not enabled: raise with instructions
    3. If confirmation token present: must match exactly
    4. If interactive: prompt user for confirmation

    Raises:
        WritePermissionError: If write is not permitted
    """
    details = ctx.to_details_dict(flash_bytes, eeprom_bytes)

    if ctx.simulate:
        return

    if not ctx.write_enabled:
        raise WritePermissionError(
            "Write operation requires explicit permission. Use --write flag.",
            details=details,
        )

    if ctx.confirmation_token is not None:
        if ctx.confirmation_token.strip().upper() != CONFIRMATION_TOKEN:
            raise WritePermissionError(
                f"Confirmation token mismatch. Expected '{CONFIRMATION_TOKEN}'.",
                details=details,
            )
        return

    if not ctx.interactive:
        raise WritePermissionError(
            "Non-interactive mode requires confirmation_token.",
            details=details,
        )

    if ctx.show_details:
        ctx.show_details(details)

    if ctx.prompt_confirmation is None:
        raise WritePermissionError(
            "Interactive confirmation required but no prompt handler set. "
            "Provide confirmation_token for non-interactive mode.",
            details=details,
        )

    user_input = ctx.prompt_confirmation(
        f"Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort"
    )
    if user_input.strip().upper() != CONFIRMATION_TOKEN:
        raise WritePermissionError(
            "Confirmation failed. Write aborted by user.",
            details=details,
        )


def create_cli_safety_context(
    write_flag: bool,
    port: str = "",
    simulate: bool = False,
    confirmation_token: Optional[str] = None,
) -> SafetyContext:
    """
    Create a SafetyContext configured for CLI usage.

    Interactive prompting is only enabled on a TTY without a token.
    """
    return SafetyContext(
        write_enabled=write_flag,
        confirmation_token=confirmation_token,
        interactive=sys.stdin.isatty() and confirmation_token is None,
        port=port,
        simulate=simulate,
    )
