"""
ESP serial bootloader commands and timeout policy.

Request packet (before SLIP framing):
    [ 0x00 | opcode | payload_len (u16 LE) | checksum (u32 LE) | payload ]

Response packet:
    [ 0x01 | opcode | data_len (u16 LE) | value (u32 LE) | data... status ]

Payload fields are little-endian u32 words. Only data-carrying commands
use the checksum field (XOR of the data bytes, seeded with 0xEF).
"""

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, ClassVar, Optional

if TYPE_CHECKING:
    from esp_flash_target.targets.params import SpiAttachParams

# Timeouts in seconds
DEFAULT_TIMEOUT = 3.0
SYNC_TIMEOUT = 0.1
FLASH_DEFLATE_END_TIMEOUT = 10.0
MAX_TIMEOUT = 240.0
ERASE_REGION_TIMEOUT_PER_MB = 30.0
ERASE_WRITE_TIMEOUT_PER_MB = 40.0

CHECKSUM_MAGIC = 0xEF
REQUEST_DIRECTION = 0x00
RESPONSE_DIRECTION = 0x01
HEADER_FORMAT = "<BBHI"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)

SYNC_PAYLOAD = b"\x07\x07\x12\x20" + b"\x55" * 32


def timeout_per_mb(seconds_per_mb: float, size_bytes: int) -> float:
    """Scale a per-megabyte budget to `size_bytes`, never below DEFAULT_TIMEOUT."""
    return max(DEFAULT_TIMEOUT, seconds_per_mb * (size_bytes / 1e6))


class CommandType(IntEnum):
    """Bootloader opcodes."""
    FLASH_BEGIN = 0x02
    FLASH_DATA = 0x03
    FLASH_END = 0x04
    SYNC = 0x08
    WRITE_REG = 0x09
    SPI_SET_PARAMS = 0x0B
    SPI_ATTACH = 0x0D
    FLASH_DEFLATE_BEGIN = 0x10
    FLASH_DEFLATE_DATA = 0x11
    FLASH_DEFLATE_END = 0x12
    FLASH_ENCRYPT_DATA = 0xD4

    @property
    def description(self) -> str:
        return self.name.lower().replace("_", " ")

    def timeout(self) -> float:
        """Fixed timeout for this command kind."""
        if self is CommandType.SYNC:
            return SYNC_TIMEOUT
        if self is CommandType.FLASH_DEFLATE_END:
            return FLASH_DEFLATE_END_TIMEOUT
        return DEFAULT_TIMEOUT

    def timeout_for_size(self, size: int) -> float:
        """
        Timeout scaled by the number of bytes the device has to process.

        Begin commands erase `size` bytes up front; data commands erase and
        write `size` bytes. Other kinds fall back to timeout().
        """
        if self in (CommandType.FLASH_BEGIN, CommandType.FLASH_DEFLATE_BEGIN):
            return timeout_per_mb(ERASE_REGION_TIMEOUT_PER_MB, size)
        if self in (
            CommandType.FLASH_DATA,
            CommandType.FLASH_DEFLATE_DATA,
            CommandType.FLASH_ENCRYPT_DATA,
        ):
            return timeout_per_mb(ERASE_WRITE_TIMEOUT_PER_MB, size)
        return self.timeout()


def checksum(data: bytes, state: int = CHECKSUM_MAGIC) -> int:
    """XOR checksum of a data block as computed by the ROM."""
    for b in data:
        state ^= b
    return state


class Command:
    """Base class for all request types."""

    TYPE: ClassVar[CommandType]

    def payload(self) -> bytes:
        raise NotImplementedError

    def checksum(self) -> int:
        return 0

    def to_bytes(self) -> bytes:
        """Serialize header + payload (SLIP framing is applied by the connection)."""
        body = self.payload()
        header = struct.pack(
            HEADER_FORMAT, REQUEST_DIRECTION, int(self.TYPE), len(body), self.checksum()
        )
        return header + body


@dataclass(frozen=True)
class Sync(Command):
    TYPE: ClassVar[CommandType] = CommandType.SYNC

    def payload(self) -> bytes:
        return SYNC_PAYLOAD


@dataclass(frozen=True)
class SpiSetParams(Command):
    """Describe the attached SPI flash chip to the ROM ("flashchip" struct)."""
    TYPE: ClassVar[CommandType] = CommandType.SPI_SET_PARAMS

    flash_id: int
    size: int
    block_size: int
    sector_size: int
    page_size: int
    status_mask: int

    def payload(self) -> bytes:
        return struct.pack(
            "<IIIIII",
            self.flash_id,
            self.size,
            self.block_size,
            self.sector_size,
            self.page_size,
            self.status_mask,
        )


@dataclass(frozen=True)
class SpiAttach(Command):
    """Attach SPI flash (ROM loader form, with 4 reserved trailing bytes)."""
    TYPE: ClassVar[CommandType] = CommandType.SPI_ATTACH

    spi_params: "SpiAttachParams"

    def payload(self) -> bytes:
        return self.spi_params.encode(stub=False)


@dataclass(frozen=True)
class SpiAttachStub(Command):
    """Attach SPI flash (stub form, pin word only)."""
    TYPE: ClassVar[CommandType] = CommandType.SPI_ATTACH

    spi_params: "SpiAttachParams"

    def payload(self) -> bytes:
        return self.spi_params.encode(stub=True)


@dataclass(frozen=True)
class WriteReg(Command):
    TYPE: ClassVar[CommandType] = CommandType.WRITE_REG

    address: int
    value: int
    mask: Optional[int] = None

    def payload(self) -> bytes:
        mask = 0xFFFFFFFF if self.mask is None else self.mask
        return struct.pack("<IIII", self.address, self.value, mask, 0)


@dataclass(frozen=True)
class FlashBegin(Command):
    TYPE: ClassVar[CommandType] = CommandType.FLASH_BEGIN

    size: int
    blocks: int
    block_size: int
    offset: int
    supports_encryption: bool
    encrypt: bool

    def payload(self) -> bytes:
        body = struct.pack("<IIII", self.size, self.blocks, self.block_size, self.offset)
        if self.supports_encryption:
            body += struct.pack("<I", int(self.encrypt))
        return body


@dataclass(frozen=True)
class FlashDeflateBegin(Command):
    TYPE: ClassVar[CommandType] = CommandType.FLASH_DEFLATE_BEGIN

    size: int
    blocks: int
    block_size: int
    offset: int
    supports_encryption: bool

    def payload(self) -> bytes:
        body = struct.pack("<IIII", self.size, self.blocks, self.block_size, self.offset)
        if self.supports_encryption:
            # ROM encrypted-write flag; never set for compressed transfers
            body += struct.pack("<I", 0)
        return body


@dataclass(frozen=True)
class DataCommand(Command):
    """
    Shared layout for block-carrying commands.

    The block is right-padded with `pad_byte` up to `pad_to` bytes
    (no padding when pad_to <= len(data)).
    """

    sequence: int
    pad_to: int
    pad_byte: int
    data: bytes

    def padded_data(self) -> bytes:
        pad_length = max(0, self.pad_to - len(self.data))
        return bytes(self.data) + bytes([self.pad_byte]) * pad_length

    def payload(self) -> bytes:
        block = self.padded_data()
        return struct.pack("<IIII", len(block), self.sequence, 0, 0) + block

    def checksum(self) -> int:
        return checksum(self.padded_data())


@dataclass(frozen=True)
class FlashData(DataCommand):
    TYPE: ClassVar[CommandType] = CommandType.FLASH_DATA


@dataclass(frozen=True)
class FlashEncryptData(DataCommand):
    TYPE: ClassVar[CommandType] = CommandType.FLASH_ENCRYPT_DATA


@dataclass(frozen=True)
class FlashDeflateData(DataCommand):
    TYPE: ClassVar[CommandType] = CommandType.FLASH_DEFLATE_DATA


@dataclass(frozen=True)
class FlashEnd(Command):
    TYPE: ClassVar[CommandType] = CommandType.FLASH_END

    reboot: bool = False

    def payload(self) -> bytes:
        # The ROM expects "stay in loader" (1) rather than "reboot"
        return struct.pack("<I", int(not self.reboot))


@dataclass(frozen=True)
class FlashDeflateEnd(Command):
    TYPE: ClassVar[CommandType] = CommandType.FLASH_DEFLATE_END

    reboot: bool = False

    def payload(self) -> bytes:
        return struct.pack("<I", int(not self.reboot))
