"""Flash geometry and SPI attach parameters."""

import struct
from dataclasses import dataclass
from enum import Enum

FLASH_SECTOR_SIZE = 0x1000
FLASH_BLOCK_SIZE = 0x10000
FLASH_PAGE_SIZE = 0x100
FLASH_STATUS_MASK = 0xFFFF
FLASH_PAD_BYTE = 0xFF

# Erase regions are rounded up to these boundaries
ENCRYPTED_ERASE_ALIGN = 32
PLAIN_ERASE_ALIGN = 4


class FlashSize(Enum):
    """Supported SPI flash sizes (value is the size in bytes)."""
    FLASH_256KB = 0x40000
    FLASH_512KB = 0x80000
    FLASH_1MB = 0x100000
    FLASH_2MB = 0x200000
    FLASH_4MB = 0x400000
    FLASH_8MB = 0x800000
    FLASH_16MB = 0x1000000
    FLASH_32MB = 0x2000000
    FLASH_64MB = 0x4000000
    FLASH_128MB = 0x8000000

    def size(self) -> int:
        return self.value

    @property
    def label(self) -> str:
        return self.name[len("FLASH_"):]

    @classmethod
    def from_label(cls, label: str) -> "FlashSize":
        """
        Parse a user-facing size such as "4MB", "4mb" or "512KB".

        Raises:
            ValueError: If the size is not supported.
        """
        wanted = label.strip().upper()
        for member in cls:
            if member.label == wanted:
                return member
        valid = ", ".join(m.label for m in cls)
        raise ValueError(f"Unsupported flash size '{label}'. Supported sizes: {valid}")


@dataclass(frozen=True)
class SpiAttachParams:
    """
    SPI flash pin assignment passed to the attach command.

    All zeros selects the default SPI flash pins.
    """
    clk: int = 0
    q: int = 0
    d: int = 0
    hd: int = 0
    cs: int = 0

    def packed(self) -> int:
        return (self.hd << 24) | (self.cs << 18) | (self.d << 12) | (self.q << 6) | self.clk

    def encode(self, stub: bool) -> bytes:
        encoded = struct.pack("<I", self.packed())
        if not stub:
            # ROM loader takes an extra "is legacy" byte plus three reserved bytes
            encoded += bytes(4)
        return encoded
