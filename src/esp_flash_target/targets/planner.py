"""
Block planning, erase sizing and compression helpers for flash transfers.
"""

import zlib
from typing import Iterator

from esp_flash_target.errors import CodecError
from esp_flash_target.targets.params import (
    ENCRYPTED_ERASE_ALIGN,
    FLASH_SECTOR_SIZE,
    PLAIN_ERASE_ALIGN,
)

COMPRESSION_LEVEL = 9


def block_count(length: int, block_size: int) -> int:
    """Number of blocks needed to carry `length` bytes (ceil division)."""
    if block_size <= 0:
        raise ValueError(f"block_size must be positive, got {block_size}")
    return (length + block_size - 1) // block_size


def _align_up(value: int, alignment: int) -> int:
    return (value + alignment - 1) & ~(alignment - 1)


def erase_size(data_len: int, encrypt: bool) -> int:
    """
    Size of the flash region to erase before writing `data_len` bytes.

    Rounded up to whole sectors, then to 32 bytes when writing encrypted
    data or 4 bytes otherwise.
    """
    erase_count = block_count(data_len, FLASH_SECTOR_SIZE)
    size = erase_count * FLASH_SECTOR_SIZE
    return _align_up(size, ENCRYPTED_ERASE_ALIGN if encrypt else PLAIN_ERASE_ALIGN)


class BlockPlan:
    """
    Fixed-size split of a buffer.

    Iterating yields the blocks in order; the last one may be short. The
    plan can be iterated any number of times.

    Example:
        plan = BlockPlan(data, 0x400)
        len(plan)      # number of blocks
        for seq, block in enumerate(plan): ...
    """

    def __init__(self, data: bytes, block_size: int):
        if block_size <= 0:
            raise ValueError(f"block_size must be positive, got {block_size}")
        self.data = data
        self.block_size = block_size

    def __len__(self) -> int:
        return block_count(len(self.data), self.block_size)

    def __iter__(self) -> Iterator[bytes]:
        for offset in range(0, len(self.data), self.block_size):
            yield self.data[offset:offset + self.block_size]


def compress(data: bytes) -> bytes:
    """zlib-compress a whole segment at maximum compression."""
    try:
        return zlib.compress(data, COMPRESSION_LEVEL)
    except zlib.error as e:
        raise CodecError(f"Compression failed: {e}") from e


class DecodedSizeTracker:
    """
    Stream compressed blocks through a decoder to learn how many bytes each
    block expands to on the device.
    """

    def __init__(self) -> None:
        self._decoder = zlib.decompressobj()
        self.total = 0

    def feed(self, block: bytes) -> int:
        """Decode `block` and return the number of bytes it produced."""
        try:
            decoded = self._decoder.decompress(block)
        except zlib.error as e:
            raise CodecError(f"Decompression failed after {self.total} bytes: {e}") from e
        self.total += len(decoded)
        return len(decoded)
