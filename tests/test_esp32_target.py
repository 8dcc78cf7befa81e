"""Tests for the begin / write_segment / finish state machine."""

import dataclasses
import zlib

import pytest

from esp_flash_target.errors import CommandTimeoutError, InvalidStateError
from esp_flash_target.image import Segment
from esp_flash_target.protocol.commands import (
    DEFAULT_TIMEOUT,
    FLASH_DEFLATE_END_TIMEOUT,
    DataCommand,
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
    WriteReg,
)
from esp_flash_target.protocol.connection import USB_SERIAL_JTAG_PID
from esp_flash_target.targets.chips import RTC_WDT_WRITE_KEY, Chip
from esp_flash_target.targets.esp32 import Esp32Target, TargetState, TransferMode
from esp_flash_target.targets.params import FlashSize
from esp_flash_target.targets.planner import BlockPlan, compress, erase_size


def _pattern(length: int) -> bytes:
    return bytes((i * 31 + 7) & 0xFF for i in range(length))


def _data_commands(connection):
    return [cmd for cmd in connection.commands if isinstance(cmd, DataCommand)]


class TestPlainTransfer:
    """Baseline chip, ROM loader, no compression, no encryption."""

    def test_three_block_segment(self, connection, progress):
        """10000 bytes in 4096-byte blocks: FlashBegin + 3 padded FlashData."""
        target = Esp32Target(Chip.ESP32)
        target.spec = dataclasses.replace(target.spec, rom_flash_write_size=4096)
        data = _pattern(10000)

        target.begin(connection)
        assert connection.command_types() == ["SpiSetParams", "SpiAttach"]

        target.write_segment(connection, Segment(0x1000, data), progress)

        begin = connection.commands[2]
        assert begin == FlashBegin(
            size=erase_size(10000, False),
            blocks=3,
            block_size=4096,
            offset=0x1000,
            supports_encryption=False,
            encrypt=False,
        )
        blocks = connection.commands[3:]
        assert [type(b) for b in blocks] == [FlashData] * 3
        assert [b.sequence for b in blocks] == [0, 1, 2]
        assert all(b.pad_to == 4096 and b.pad_byte == 0xFF for b in blocks)
        last = blocks[-1].padded_data()
        assert len(last) == 4096
        assert last[:1808] == data[8192:]
        assert last[1808:] == b"\xFF" * (4096 - 1808)

        assert progress.events == [
            ("init", 0x1000, 3),
            ("update", 1),
            ("update", 2),
            ("update", 3),
            ("finish",),
        ]

    def test_spi_set_params_fields(self, connection):
        target = Esp32Target(Chip.ESP32, flash_size=FlashSize.FLASH_16MB)
        target.begin(connection)
        assert connection.commands[0] == SpiSetParams(
            flash_id=0,
            size=16 * 1024 * 1024,
            block_size=0x10000,
            sector_size=0x1000,
            page_size=0x100,
            status_mask=0xFFFF,
        )

    def test_begin_timeout_scales_with_erase_size(self, connection):
        target = Esp32Target(Chip.ESP32)
        target.begin(connection)
        target.write_segment(connection, Segment(0x10000, _pattern(200000)))
        assert connection.timeouts[:2] == [DEFAULT_TIMEOUT, DEFAULT_TIMEOUT]
        assert connection.timeouts[2] == pytest.approx(30.0 * erase_size(200000, False) / 1e6)

    def test_finish_sends_flash_end_and_resets(self, connection):
        target = Esp32Target(Chip.ESP32)
        target.begin(connection)
        target.write_segment(connection, Segment(0x0, b"\x01\x02"))
        target.finish(connection, reboot=True)
        assert connection.commands[-1] == FlashEnd(reboot=False)
        assert connection.resets == 1
        assert target.state is TargetState.FINISHED

    def test_finish_without_reboot_leaves_chip_alone(self, connection):
        target = Esp32Target(Chip.ESP32)
        target.begin(connection)
        target.finish(connection)
        assert connection.resets == 0

    def test_block_size_follows_target_loader(self, make_connection):
        """The target's stub flag picks both the attach command and the block size."""
        connection = make_connection(use_stub=False)
        target = Esp32Target(Chip.ESP32C3, use_stub=True)
        target.begin(connection)
        target.write_segment(connection, Segment(0x10000, _pattern(20000)))

        assert isinstance(connection.commands[1], SpiAttachStub)
        begin = connection.commands[2]
        assert begin.block_size == 0x4000
        assert begin.blocks == 2
        assert all(b.pad_to == 0x4000 for b in _data_commands(connection))


class TestWatchdogQuirk:
    def test_jtag_port_disables_watchdog(self, make_connection):
        """Quirked chip over USB-Serial-JTAG gets unlock / clear / relock."""
        connection = make_connection(usb_pid=USB_SERIAL_JTAG_PID)
        Esp32Target(Chip.ESP32C3).begin(connection)
        assert connection.commands[2:] == [
            WriteReg(0x600080A8, RTC_WDT_WRITE_KEY),
            WriteReg(0x60008090, 0),
            WriteReg(0x600080A8, 0),
        ]

    def test_applied_with_stub_too(self, make_connection):
        connection = make_connection(use_stub=True, usb_pid=USB_SERIAL_JTAG_PID)
        Esp32Target(Chip.ESP32S3, use_stub=True).begin(connection)
        assert isinstance(connection.commands[1], SpiAttachStub)
        writes = [cmd for cmd in connection.commands if isinstance(cmd, WriteReg)]
        assert [w.address for w in writes] == [0x600080B0, 0x60008098, 0x600080B0]

    def test_uart_bridge_skips_quirk(self, make_connection):
        connection = make_connection(usb_pid=0xEA60)
        Esp32Target(Chip.ESP32C6).begin(connection)
        assert connection.command_types() == ["SpiSetParams", "SpiAttach"]

    def test_chip_without_quirk_skips_it(self, make_connection):
        connection = make_connection(usb_pid=USB_SERIAL_JTAG_PID)
        Esp32Target(Chip.ESP32H2).begin(connection)
        assert not any(isinstance(cmd, WriteReg) for cmd in connection.commands)


class TestCompressedTransfer:
    def test_deflate_commands(self, make_connection, progress):
        connection = make_connection(compression=True)
        target = Esp32Target(Chip.ESP32C3)
        data = _pattern(5000) + b"\xFF" * 40000
        compressed = compress(data)
        expected_blocks = len(BlockPlan(compressed, 0x400))

        target.begin(connection)
        target.write_segment(connection, Segment(0x10000, data), progress)

        begin = connection.commands[2]
        assert begin == FlashDeflateBegin(
            size=len(data),
            blocks=expected_blocks,
            block_size=0x400,
            offset=0x10000,
            supports_encryption=True,
        )
        blocks = _data_commands(connection)
        assert all(isinstance(b, FlashDeflateData) and b.pad_to == 0 for b in blocks)
        assert b"".join(b.data for b in blocks) == compressed
        assert zlib.decompress(b"".join(b.data for b in blocks)) == data
        assert progress.events[0] == ("init", 0x10000, expected_blocks)
        assert progress.events[-1] == ("finish",)

        target.finish(connection)
        assert connection.commands[-1] == FlashDeflateEnd(reboot=False)
        assert connection.timeouts[-1] == FLASH_DEFLATE_END_TIMEOUT

    def test_data_timeout_uses_decoded_size(self, make_connection):
        """A tiny compressed block that expands to 1 MB gets a 40 s budget."""
        connection = make_connection(use_stub=True, compression=True)
        target = Esp32Target(Chip.ESP32, use_stub=True)
        data = b"\x00" * 1_000_000

        target.begin(connection)
        target.write_segment(connection, Segment(0x0, data))

        assert len(_data_commands(connection)) == 1
        assert connection.timeouts[2] == pytest.approx(30.0 * erase_size(len(data), False) / 1e6)
        assert connection.timeouts[3] == pytest.approx(40.0)


class TestEncryptedTransfer:
    def test_rom_loader_uses_begin_flag(self, make_connection):
        """Non-baseline ROM: encrypt flag in FlashBegin, plain data blocks."""
        connection = make_connection(compression=True)
        target = Esp32Target(Chip.ESP32C3, encrypt_flash=True)
        assert target.select_mode(connection) is TransferMode.ENCRYPTED_BEGIN

        target.begin(connection)
        target.write_segment(connection, Segment(0x20000, _pattern(3000)))
        target.finish(connection)

        begin = connection.commands[2]
        assert isinstance(begin, FlashBegin)
        assert begin.supports_encryption and begin.encrypt
        assert begin.size % 32 == 0
        assert all(type(b) is FlashData for b in _data_commands(connection))
        assert connection.commands[-1] == FlashEnd(reboot=False)

    def test_baseline_uses_encrypt_data_command(self, connection):
        target = Esp32Target(Chip.ESP32, encrypt_flash=True)
        assert target.select_mode(connection) is TransferMode.ENCRYPTED_DATA

        target.begin(connection)
        target.write_segment(connection, Segment(0x20000, _pattern(3000)))

        begin = connection.commands[2]
        assert not begin.supports_encryption
        assert len(begin.payload()) == 16
        assert all(type(b) is FlashEncryptData for b in _data_commands(connection))

    def test_stub_uses_encrypt_data_command(self, make_connection):
        connection = make_connection(use_stub=True)
        target = Esp32Target(Chip.ESP32S3, use_stub=True, encrypt_flash=True)
        assert not target.supports_encryption
        assert target.select_mode(connection) is TransferMode.ENCRYPTED_DATA

        target.begin(connection)
        target.write_segment(connection, Segment(0x0, _pattern(40000)))
        blocks = _data_commands(connection)
        assert all(type(b) is FlashEncryptData and b.pad_to == 0x4000 for b in blocks)
        assert len(blocks) == 3


@pytest.mark.parametrize(
    "chip,use_stub,compression,encrypt,mode",
    [
        (Chip.ESP32, False, False, False, TransferMode.PLAIN),
        (Chip.ESP32C3, False, True, False, TransferMode.DEFLATE),
        (Chip.ESP32C3, False, False, True, TransferMode.ENCRYPTED_BEGIN),
        (Chip.ESP32, True, False, True, TransferMode.ENCRYPTED_DATA),
    ],
)
def test_sequence_numbers_are_contiguous(make_connection, progress, chip, use_stub, compression, encrypt, mode):
    """Every mode numbers its blocks 0..n-1 and reports n updates."""
    connection = make_connection(use_stub=use_stub, compression=compression)
    target = Esp32Target(chip, use_stub=use_stub, encrypt_flash=encrypt)
    assert target.select_mode(connection) is mode

    target.begin(connection)
    target.write_segment(connection, Segment(0x8000, _pattern(70000)), progress)

    blocks = _data_commands(connection)
    assert [b.sequence for b in blocks] == list(range(len(blocks)))
    updates = [e[1] for e in progress.events if e[0] == "update"]
    assert updates == list(range(1, len(blocks) + 1))
    assert progress.events.count(("finish",)) == 1


class TestFailure:
    def test_error_on_second_block_aborts(self, make_connection, progress):
        """Failure on block 2 of 3: no finish callback, no further commands."""
        # SpiSetParams, SpiAttach, FlashBegin, block 0, block 1 (fails)
        connection = make_connection(fail_at=5, failure=CommandTimeoutError("flash data", 3.0))
        target = Esp32Target(Chip.ESP32)
        target.begin(connection)

        with pytest.raises(CommandTimeoutError):
            target.write_segment(connection, Segment(0x1000, _pattern(2500)), progress)

        assert len(connection.commands) == 5
        assert progress.events == [("init", 0x1000, 3), ("update", 1)]
        assert target.state is TargetState.FAILED

    def test_failed_target_rejects_finish_but_can_restart(self, make_connection):
        connection = make_connection(fail_at=1)
        target = Esp32Target(Chip.ESP32)
        with pytest.raises(Exception):
            target.begin(connection)
        assert target.state is TargetState.FAILED

        with pytest.raises(InvalidStateError):
            target.finish(connection)

        retry = make_connection()
        target.begin(retry)
        assert target.state is TargetState.ATTACHED


class TestStateErrors:
    def test_write_before_begin(self, connection):
        with pytest.raises(InvalidStateError):
            Esp32Target(Chip.ESP32).write_segment(connection, Segment(0, b"\x00"))
        assert connection.commands == []

    def test_finish_before_begin(self, connection):
        with pytest.raises(InvalidStateError):
            Esp32Target(Chip.ESP32).finish(connection)

    def test_begin_twice(self, connection):
        target = Esp32Target(Chip.ESP32)
        target.begin(connection)
        with pytest.raises(InvalidStateError):
            target.begin(connection)

    def test_write_after_finish(self, connection):
        target = Esp32Target(Chip.ESP32)
        target.begin(connection)
        target.finish(connection)
        with pytest.raises(InvalidStateError):
            target.write_segment(connection, Segment(0, b"\x00"))
