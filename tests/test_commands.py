"""Tests for command encoding and the timeout policy."""

import struct

import pytest

from esp_flash_target.protocol.commands import (
    DEFAULT_TIMEOUT,
    FLASH_DEFLATE_END_TIMEOUT,
    HEADER_SIZE,
    SYNC_TIMEOUT,
    CommandType,
    FlashBegin,
    FlashData,
    FlashDeflateBegin,
    FlashDeflateData,
    FlashDeflateEnd,
    FlashEncryptData,
    FlashEnd,
    SpiAttach,
    SpiAttachStub,
    SpiSetParams,
    Sync,
    WriteReg,
    checksum,
    timeout_per_mb,
)
from esp_flash_target.targets.params import SpiAttachParams


class TestTimeoutPolicy:
    def test_fixed_timeouts(self):
        assert CommandType.SYNC.timeout() == SYNC_TIMEOUT
        assert CommandType.FLASH_DEFLATE_END.timeout() == FLASH_DEFLATE_END_TIMEOUT
        assert CommandType.FLASH_END.timeout() == DEFAULT_TIMEOUT
        assert CommandType.SPI_ATTACH.timeout() == DEFAULT_TIMEOUT

    def test_small_sizes_use_default(self):
        assert CommandType.FLASH_BEGIN.timeout_for_size(4096) == DEFAULT_TIMEOUT
        assert CommandType.FLASH_DATA.timeout_for_size(0x400) == DEFAULT_TIMEOUT

    def test_begin_scales_at_30s_per_mb(self):
        assert CommandType.FLASH_BEGIN.timeout_for_size(4_000_000) == pytest.approx(120.0)
        assert CommandType.FLASH_DEFLATE_BEGIN.timeout_for_size(1_000_000) == pytest.approx(30.0)

    def test_data_scales_at_40s_per_mb(self):
        for kind in (
            CommandType.FLASH_DATA,
            CommandType.FLASH_DEFLATE_DATA,
            CommandType.FLASH_ENCRYPT_DATA,
        ):
            assert kind.timeout_for_size(2_000_000) == pytest.approx(80.0)

    def test_other_kinds_ignore_size(self):
        assert CommandType.WRITE_REG.timeout_for_size(10_000_000) == DEFAULT_TIMEOUT

    def test_timeout_per_mb_floor(self):
        assert timeout_per_mb(40.0, 0) == DEFAULT_TIMEOUT


class TestChecksum:
    def test_seed(self):
        assert checksum(b"") == 0xEF

    def test_xor(self):
        assert checksum(b"\x01\x02") == 0xEF ^ 0x01 ^ 0x02


class TestEncoding:
    def test_header_layout(self):
        packet = Sync().to_bytes()
        direction, op, length, chk = struct.unpack("<BBHI", packet[:HEADER_SIZE])
        assert (direction, op, length, chk) == (0x00, 0x08, 36, 0)
        assert packet[HEADER_SIZE:HEADER_SIZE + 4] == b"\x07\x07\x12\x20"

    def test_spi_set_params(self):
        cmd = SpiSetParams(0, 0x400000, 0x10000, 0x1000, 0x100, 0xFFFF)
        assert cmd.payload() == struct.pack("<IIIIII", 0, 0x400000, 0x10000, 0x1000, 0x100, 0xFFFF)

    def test_spi_attach_rom_and_stub_forms(self):
        params = SpiAttachParams()
        assert len(SpiAttach(params).payload()) == 8
        assert len(SpiAttachStub(params).payload()) == 4
        assert SpiAttach(params).TYPE == SpiAttachStub(params).TYPE == CommandType.SPI_ATTACH

    def test_spi_attach_pin_packing(self):
        params = SpiAttachParams(clk=6, q=17, d=8, hd=11, cs=16)
        word = struct.unpack("<I", SpiAttachStub(params).payload())[0]
        assert word == (11 << 24) | (16 << 18) | (8 << 12) | (17 << 6) | 6

    def test_write_reg_default_mask(self):
        payload = WriteReg(0x600080A8, 0x50D83AA1).payload()
        assert payload == struct.pack("<IIII", 0x600080A8, 0x50D83AA1, 0xFFFFFFFF, 0)

    def test_flash_begin_encryption_word(self):
        plain = FlashBegin(4096, 4, 0x400, 0x1000, supports_encryption=False, encrypt=False)
        assert len(plain.payload()) == 16
        flagged = FlashBegin(4096, 4, 0x400, 0x1000, supports_encryption=True, encrypt=True)
        assert flagged.payload()[16:] == struct.pack("<I", 1)

    def test_flash_deflate_begin_encryption_word_is_zero(self):
        cmd = FlashDeflateBegin(10000, 2, 0x400, 0x0, supports_encryption=True)
        assert cmd.payload() == struct.pack("<IIIII", 10000, 2, 0x400, 0, 0)

    def test_data_command_pads_and_checksums(self):
        cmd = FlashData(sequence=2, pad_to=8, pad_byte=0xFF, data=b"\x01\x02")
        assert cmd.payload() == struct.pack("<IIII", 8, 2, 0, 0) + b"\x01\x02" + b"\xFF" * 6
        # Six pad bytes cancel out
        assert cmd.checksum() == 0xEF ^ 0x01 ^ 0x02
        _, op, length, chk = struct.unpack("<BBHI", cmd.to_bytes()[:HEADER_SIZE])
        assert (op, length, chk) == (0x03, 24, cmd.checksum())

    def test_deflate_data_is_not_padded(self):
        cmd = FlashDeflateData(sequence=0, pad_to=0, pad_byte=0xFF, data=b"\x78\x9c")
        assert cmd.padded_data() == b"\x78\x9c"

    def test_encrypt_data_opcode(self):
        cmd = FlashEncryptData(sequence=0, pad_to=4, pad_byte=0xFF, data=b"\xAA")
        assert cmd.to_bytes()[1] == 0xD4

    def test_end_commands_stay_in_loader(self):
        assert FlashEnd(reboot=False).payload() == struct.pack("<I", 1)
        assert FlashEnd(reboot=True).payload() == struct.pack("<I", 0)
        assert FlashDeflateEnd().payload() == struct.pack("<I", 1)
