"""
Core workflow layer shared by the CLI and library callers.

- Argument parsing (parsing.py)
- Result objects (results.py)
- Flashing workflows (actions.py)
- Standardized warnings/messages (messages.py)
"""

from .parsing import parse_chip, parse_flash_size, parse_offset, parse_segment_arg
from .results import OperationResult
from .messages import (
    MessageLevel,
    WarningCode,
    WarningItem,
    classify_message,
    result_to_warnings,
)
from .actions import check_layout, flash_files, flash_segments

__all__ = [
    # Parsing
    "parse_chip",
    "parse_flash_size",
    "parse_offset",
    "parse_segment_arg",
    # Results
    "OperationResult",
    # Messages
    "MessageLevel",
    "WarningCode",
    "WarningItem",
    "classify_message",
    "result_to_warnings",
    # Actions
    "check_layout",
    "flash_files",
    "flash_segments",
]
