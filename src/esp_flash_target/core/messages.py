"""
Structured warnings with stable codes.

Workflow actions record plain strings on OperationResult; the CLI turns
them into WarningItem objects with a remediation hint.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List


class MessageLevel(Enum):
    """Severity level for messages."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class WarningCode(Enum):
    """Stable warning codes for known conditions."""
    # Device / connection
    W_DEVICE_NOT_FOUND = "W_DEVICE_NOT_FOUND"
    W_SERIAL_TIMEOUT = "W_SERIAL_TIMEOUT"
    W_SERIAL_ERROR = "W_SERIAL_ERROR"
    W_SYNC_FAILED = "W_SYNC_FAILED"
    W_COMMAND_FAILED = "W_COMMAND_FAILED"

    # Layout
    W_UNALIGNED_ADDRESS = "W_UNALIGNED_ADDRESS"
    W_SEGMENT_OVERLAP = "W_SEGMENT_OVERLAP"
    W_BEYOND_FLASH_SIZE = "W_BEYOND_FLASH_SIZE"

    # Transfer
    W_COMPRESSION_DISABLED = "W_COMPRESSION_DISABLED"
    W_NO_RESET = "W_NO_RESET"

    W_UNKNOWN = "W_UNKNOWN"


WARNING_REMEDIATIONS: Dict[WarningCode, str] = {
    WarningCode.W_DEVICE_NOT_FOUND:
        "Check USB connection, try 'ports' command to list available ports.",
    WarningCode.W_SERIAL_TIMEOUT:
        "Check cable connection. Try a lower baud rate.",
    WarningCode.W_SERIAL_ERROR:
        "Close other serial apps (monitors, IDEs). Check USB driver.",
    WarningCode.W_SYNC_FAILED:
        "Hold BOOT (IO0) while pressing RESET to enter the bootloader manually.",
    WarningCode.W_COMMAND_FAILED:
        "Reconnect and restart the whole transfer.",
    WarningCode.W_UNALIGNED_ADDRESS:
        "Flash is erased in 4 KiB sectors; neighbouring data in the first sector is lost.",
    WarningCode.W_SEGMENT_OVERLAP:
        "Later segments overwrite earlier ones. Check the address list.",
    WarningCode.W_BEYOND_FLASH_SIZE:
        "Pass the correct --flash-size or move the segment.",
    WarningCode.W_COMPRESSION_DISABLED:
        "Encrypted writes are always sent uncompressed.",
    WarningCode.W_NO_RESET:
        "Reset the board manually to run the new firmware.",
    WarningCode.W_UNKNOWN:
        "Check logs for more details.",
}


# Expected outcomes of the chosen options, not problems
_INFO_CODES = {WarningCode.W_COMPRESSION_DISABLED, WarningCode.W_NO_RESET}


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
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "detail": self.detail,
            "remediation": self.remediation,
        }

    def to_cli_string(self, verbose: bool = False) -> str:
        """Format for CLI output."""
        icons = {
            MessageLevel.INFO: "ℹ️ ",
            MessageLevel.WARN: "⚠️ ",
            MessageLevel.ERROR: "❌",
        }
        icon = icons.get(self.level, "")

        if not verbose:
            return f"{icon} {self.title}"
        lines = [f"{icon} [{self.code.value}] {self.title}"]
        if self.detail:
            lines.append(f"   {self.detail}")
        if self.remediation:
            lines.append(f"   → {self.remediation}")
        return "\n".join(lines)


def classify_message(message: str) -> WarningCode:
    """Map a plain warning or error string to its stable code."""
    msg = message.lower()
    if "failed to connect" in msg:
        return WarningCode.W_SYNC_FAILED
    if "timed out" in msg or "timeout" in msg:
        return WarningCode.W_SERIAL_TIMEOUT
    if "cannot open port" in msg or "could not open port" in msg:
        return WarningCode.W_DEVICE_NOT_FOUND
    if "read error" in msg or "write error" in msg:
        return WarningCode.W_SERIAL_ERROR
    if "status=" in msg:
        return WarningCode.W_COMMAND_FAILED
    if "sector-aligned" in msg:
        return WarningCode.W_UNALIGNED_ADDRESS
    if "overlap" in msg:
        return WarningCode.W_SEGMENT_OVERLAP
    if "beyond" in msg:
        return WarningCode.W_BEYOND_FLASH_SIZE
    if "uncompressed" in msg:
        return WarningCode.W_COMPRESSION_DISABLED
    if "reset" in msg:
        return WarningCode.W_NO_RESET
    return WarningCode.W_UNKNOWN


def result_to_warnings(result: "OperationResult") -> List[WarningItem]:
    """Convert a result's warnings and errors to WarningItem list."""
    items = []
    for w in result.warnings:
        code = classify_message(w)
        if code in _INFO_CODES:
            items.append(WarningItem.info(code, w))
        else:
            items.append(WarningItem.warn(code, w))
    items.extend(WarningItem.error(classify_message(e), e) for e in result.errors)
    return items
