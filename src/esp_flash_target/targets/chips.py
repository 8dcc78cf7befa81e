"""
Chip registry for ESP32-family targets.

Provides a single source of truth for:
- Supported chip variants and their flash write block sizes
- How each variant frames encrypted writes
- Watchdog quirk register sequences applied over USB-Serial-JTAG

Usage:
    from esp_flash_target.targets import get_chip, get_chip_spec

    chip = get_chip("esp32c3")
    spec = get_chip_spec(chip)
    writes = watchdog_disable_sequence(chip)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

# ROM loader accepts blocks of this size; the stub accepts much larger ones
ROM_FLASH_WRITE_SIZE = 0x400
STUB_FLASH_WRITE_SIZE = 0x4000

# Magic value that unlocks the RTC watchdog registers for writing
RTC_WDT_WRITE_KEY = 0x50D83AA1


class Chip(Enum):
    """Supported chip variants."""
    ESP32 = "esp32"
    ESP32C2 = "esp32c2"
    ESP32C3 = "esp32c3"
    ESP32C6 = "esp32c6"
    ESP32H2 = "esp32h2"
    ESP32S2 = "esp32s2"
    ESP32S3 = "esp32s3"

    @property
    def is_baseline(self) -> bool:
        return self is Chip.ESP32


@dataclass(frozen=True)
class RegisterWrite:
    """Single register write issued through the WriteReg command."""
    address: int
    value: int
    mask: Optional[int] = None


# Unlock write protection, disable the RTC watchdog, relock.
# The stub does not cover these chips, so the sequence is sent even when a
# stub is running.
WATCHDOG_QUIRKS: Dict[Chip, Tuple[RegisterWrite, ...]] = {
    Chip.ESP32C3: (
        RegisterWrite(0x600080A8, RTC_WDT_WRITE_KEY),
        RegisterWrite(0x60008090, 0x0),
        RegisterWrite(0x600080A8, 0x0),
    ),
    Chip.ESP32S3: (
        RegisterWrite(0x600080B0, RTC_WDT_WRITE_KEY),
        RegisterWrite(0x60008098, 0x0),
        RegisterWrite(0x600080B0, 0x0),
    ),
    Chip.ESP32C6: (
        RegisterWrite(0x600B1C18, RTC_WDT_WRITE_KEY),
        RegisterWrite(0x600B1C00, 0x0),
        RegisterWrite(0x600B1C18, 0x0),
    ),
}


@dataclass(frozen=True)
class ChipSpec:
    """
    Static capabilities of a chip variant.

    Attributes:
        chip: Chip variant
        description: Human-readable name
        rom_encrypted_begin: ROM loader accepts an encrypt flag in the begin
            command and encrypts plain data blocks itself. When False, the
            dedicated encrypted-data command is required.
        rom_flash_write_size: Block size accepted by the ROM loader
        stub_flash_write_size: Block size accepted by the flasher stub
        supports_compression: Loader understands the deflate commands
        notes: Free-form notes shown by the CLI
    """
    chip: Chip
    description: str
    rom_encrypted_begin: bool = True
    rom_flash_write_size: int = ROM_FLASH_WRITE_SIZE
    stub_flash_write_size: int = STUB_FLASH_WRITE_SIZE
    supports_compression: bool = True
    notes: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def watchdog_quirk(self) -> Tuple[RegisterWrite, ...]:
        return watchdog_disable_sequence(self.chip)

    def flash_write_size(self, use_stub: bool) -> int:
        """Per-block payload size for the ROM loader or the flasher stub."""
        if use_stub:
            return self.stub_flash_write_size
        return self.rom_flash_write_size


# ============================================================================
# CHIP REGISTRY
# ============================================================================

_CHIP_REGISTRY: Dict[Chip, ChipSpec] = {}


def _register_chip(spec: ChipSpec) -> None:
    _CHIP_REGISTRY[spec.chip] = spec


def _init_registry() -> None:
    _register_chip(ChipSpec(
        chip=Chip.ESP32,
        description="ESP32",
        rom_encrypted_begin=False,
        notes=(
            "Baseline variant",
            "Encrypted writes use the dedicated encrypted-data command",
        ),
    ))
    _register_chip(ChipSpec(chip=Chip.ESP32C2, description="ESP32-C2"))
    _register_chip(ChipSpec(
        chip=Chip.ESP32C3,
        description="ESP32-C3",
        notes=("RTC watchdog disabled before flashing over USB-Serial-JTAG",),
    ))
    _register_chip(ChipSpec(
        chip=Chip.ESP32C6,
        description="ESP32-C6",
        notes=("LP watchdog disabled before flashing over USB-Serial-JTAG",),
    ))
    _register_chip(ChipSpec(chip=Chip.ESP32H2, description="ESP32-H2"))
    _register_chip(ChipSpec(chip=Chip.ESP32S2, description="ESP32-S2"))
    _register_chip(ChipSpec(
        chip=Chip.ESP32S3,
        description="ESP32-S3",
        notes=(
            "RTC watchdog disabled before flashing over USB-Serial-JTAG",
            "Stub does not disable this watchdog",
        ),
    ))


_init_registry()


# ============================================================================
# PUBLIC API
# ============================================================================

def list_chips() -> List[Chip]:
    """List all registered chips, sorted by name."""
    return sorted(_CHIP_REGISTRY, key=lambda c: c.value)


def get_chip(name: str) -> Optional[Chip]:
    """
    Look up a chip by name.

    Accepts "esp32c3", "ESP32-C3" and "esp32_c3" spellings.

    Returns:
        Chip or None if not found.
    """
    normalized = name.strip().lower().replace("-", "").replace("_", "")
    for chip in _CHIP_REGISTRY:
        if chip.value == normalized:
            return chip
    return None


def get_chip_spec(chip: Chip) -> ChipSpec:
    return _CHIP_REGISTRY[chip]


def watchdog_disable_sequence(chip: Chip) -> Tuple[RegisterWrite, ...]:
    """Ordered register writes for `chip`, or an empty tuple if it has no quirk."""
    return WATCHDOG_QUIRKS.get(chip, ())
