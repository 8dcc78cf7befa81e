"""
Flash targets and the chip data they depend on.
"""

from .params import FlashSize, SpiAttachParams
from .chips import (
    Chip,
    ChipSpec,
    RegisterWrite,
    WATCHDOG_QUIRKS,
    get_chip,
    get_chip_spec,
    list_chips,
    watchdog_disable_sequence,
)
from .planner import BlockPlan, block_count, erase_size
from .esp32 import Esp32Target, TargetState, TransferMode

__all__ = [
    "FlashSize",
    "SpiAttachParams",
    "Chip",
    "ChipSpec",
    "RegisterWrite",
    "WATCHDOG_QUIRKS",
    "get_chip",
    "get_chip_spec",
    "list_chips",
    "watchdog_disable_sequence",
    "BlockPlan",
    "block_count",
    "erase_size",
    "Esp32Target",
    "TargetState",
    "TransferMode",
]
