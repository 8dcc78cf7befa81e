"""
Parsing helpers for CLI arguments.
"""

from pathlib import Path
from typing import Optional, Tuple

from esp_flash_target.targets.chips import Chip, get_chip, list_chips
from esp_flash_target.targets.params import FlashSize


def parse_offset(value: Optional[str]) -> Optional[int]:
    """
    Parse offset value from string, supporting multiple formats.

    Accepts:
        - Decimal: "4096"
        - Hex with 0x prefix: "0x1000" or "0X1000"
        - Hex with h suffix: "1000h" or "1000H"

    Returns:
        Parsed integer offset, or None if value is None or empty.

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
            f"Invalid offset '{value}'. Use decimal (4096), hex (0x1000), or suffix (1000h)."
        )


def parse_segment_arg(value: str) -> Tuple[int, Path]:
    """
    Split an "ADDRESS=FILE" argument.

    Example:
        parse_segment_arg("0x10000=app.bin") -> (0x10000, Path("app.bin"))

    Raises:
        ValueError: If the separator, address or path is missing.
    """
    if "=" not in value:
        raise ValueError(f"Invalid segment '{value}'. Use ADDRESS=FILE, e.g. 0x10000=app.bin")
    address_text, _, path_text = value.partition("=")
    address = parse_offset(address_text)
    if address is None:
        raise ValueError(f"Missing address in segment '{value}'")
    if address < 0:
        raise ValueError(f"Negative address in segment '{value}'")
    path_text = path_text.strip()
    if not path_text:
        raise ValueError(f"Missing file in segment '{value}'")
    return address, Path(path_text)


def parse_flash_size(value: str) -> FlashSize:
    """Parse "4MB" / "256KB" style labels (case-insensitive)."""
    return FlashSize.from_label(value)


def parse_chip(value: str) -> Chip:
    chip = get_chip(value)
    if chip is None:
        valid = ", ".join(c.value for c in list_chips())
        raise ValueError(f"Unknown chip '{value}'. Valid chips: {valid}")
    return chip
