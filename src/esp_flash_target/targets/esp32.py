"""
Flash target for applications running from an ESP32 (or variant) flash.

Protocol sequence:
1. begin():         SpiSetParams -> SpiAttach[Stub] -> [WriteReg x3 watchdog quirk]
2. write_segment(): FlashBegin | FlashDeflateBegin -> data block per sequence number
3. finish():        FlashEnd | FlashDeflateEnd -> [hard reset]

Every command is sent with its own timeout; the first error aborts the
whole transfer. There is no resume: the caller reconnects and starts again
from begin().
"""

import logging
from enum import Enum
from typing import Dict, Optional, Type

from esp_flash_target.errors import InvalidStateError
from esp_flash_target.progress import NullProgress, ProgressCallbacks
from esp_flash_target.protocol.commands import (
    Command,
    CommandType,
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
from esp_flash_target.image import Segment
from esp_flash_target.targets.chips import Chip, get_chip_spec, watchdog_disable_sequence
from esp_flash_target.targets.params import (
    FLASH_BLOCK_SIZE,
    FLASH_PAD_BYTE,
    FLASH_PAGE_SIZE,
    FLASH_SECTOR_SIZE,
    FLASH_STATUS_MASK,
    FlashSize,
    SpiAttachParams,
)
from esp_flash_target.targets.planner import (
    BlockPlan,
    DecodedSizeTracker,
    compress,
    erase_size,
)

logger = logging.getLogger(__name__)


class TransferMode(Enum):
    """How segment data travels to the device."""
    PLAIN = "plain"
    ENCRYPTED_BEGIN = "encrypted-begin"  # encrypt flag in FlashBegin, plain data blocks
    ENCRYPTED_DATA = "encrypted-data"    # dedicated encrypted data command
    DEFLATE = "deflate"

    @property
    def compressed(self) -> bool:
        return self is TransferMode.DEFLATE

    @property
    def encrypted(self) -> bool:
        return self in (TransferMode.ENCRYPTED_BEGIN, TransferMode.ENCRYPTED_DATA)


_DATA_COMMANDS: Dict[TransferMode, Type[DataCommand]] = {
    TransferMode.PLAIN: FlashData,
    TransferMode.ENCRYPTED_BEGIN: FlashData,
    TransferMode.ENCRYPTED_DATA: FlashEncryptData,
    TransferMode.DEFLATE: FlashDeflateData,
}


class TargetState(Enum):
    IDLE = "idle"
    ATTACHED = "attached"
    FINISHED = "finished"
    FAILED = "failed"


class Esp32Target:
    """
    Begin/write/finish state machine for one flashing session.

    Example:
        target = Esp32Target(Chip.ESP32C3, flash_size=FlashSize.FLASH_4MB)
        target.begin(connection)
        for segment in segments:
            target.write_segment(connection, segment, progress)
        target.finish(connection, reboot=True)
    """

    def __init__(
        self,
        chip: Chip,
        spi_attach_params: Optional[SpiAttachParams] = None,
        flash_size: FlashSize = FlashSize.FLASH_4MB,
        use_stub: bool = False,
        encrypt_flash: bool = False,
    ):
        """
        Args:
            chip: Chip variant being flashed
            spi_attach_params: SPI pin assignment (default pins if None)
            flash_size: Configured flash size reported to the loader
            use_stub: True when the RAM flasher stub is running
            encrypt_flash: Write data through flash encryption
        """
        self.chip = chip
        self.spec = get_chip_spec(chip)
        self.spi_attach_params = spi_attach_params or SpiAttachParams()
        self.flash_size = flash_size
        self.use_stub = use_stub
        self.encrypt_flash = encrypt_flash
        self.state = TargetState.IDLE

    @property
    def supports_encryption(self) -> bool:
        """
        Whether begin commands carry the ROM encrypted-write flag.

        Only non-baseline ROM loaders take it; the baseline chip and the stub
        encrypt through the dedicated data command instead.
        """
        return self.spec.rom_encrypted_begin and not self.use_stub

    @property
    def flash_write_size(self) -> int:
        return self.spec.flash_write_size(self.use_stub)

    def select_mode(self, connection) -> TransferMode:
        """Pick the transfer mode from session flags and negotiated compression."""
        if self.encrypt_flash:
            if self.supports_encryption:
                return TransferMode.ENCRYPTED_BEGIN
            return TransferMode.ENCRYPTED_DATA
        if connection.should_use_compression():
            return TransferMode.DEFLATE
        return TransferMode.PLAIN

    def _require_state(self, operation: str, *allowed: TargetState) -> None:
        if self.state not in allowed:
            raise InvalidStateError(
                f"{operation}() not allowed in state '{self.state.value}'"
            )

    @staticmethod
    def _command(connection, command: Command, timeout: float):
        return connection.with_timeout(timeout, lambda conn: conn.command(command))

    def begin(self, connection) -> None:
        """Configure and attach SPI flash, then apply the watchdog quirk if needed."""
        self._require_state("begin", TargetState.IDLE, TargetState.FAILED)
        try:
            self._begin(connection)
        except Exception:
            self.state = TargetState.FAILED
            raise
        self.state = TargetState.ATTACHED

    def _begin(self, connection) -> None:
        logger.info(
            f"Attaching {self.spec.description} flash "
            f"({self.flash_size.label}, stub={self.use_stub})"
        )
        self._command(
            connection,
            SpiSetParams(
                flash_id=0,
                size=self.flash_size.size(),
                block_size=FLASH_BLOCK_SIZE,
                sector_size=FLASH_SECTOR_SIZE,
                page_size=FLASH_PAGE_SIZE,
                status_mask=FLASH_STATUS_MASK,
            ),
            CommandType.SPI_SET_PARAMS.timeout(),
        )

        if self.use_stub:
            attach = SpiAttachStub(spi_params=self.spi_attach_params)
        else:
            attach = SpiAttach(spi_params=self.spi_attach_params)
        self._command(connection, attach, CommandType.SPI_ATTACH.timeout())

        quirk = watchdog_disable_sequence(self.chip)
        if connection.get_usb_pid() == USB_SERIAL_JTAG_PID and quirk:
            logger.info(f"Disabling RTC watchdog on {self.spec.description} (USB-Serial-JTAG)")
            for write in quirk:
                self._command(
                    connection,
                    WriteReg(address=write.address, value=write.value, mask=write.mask),
                    CommandType.WRITE_REG.timeout(),
                )

    def write_segment(
        self,
        connection,
        segment: Segment,
        progress: Optional[ProgressCallbacks] = None,
    ) -> None:
        """
        Erase and write one segment.

        Args:
            connection: Open bootloader connection
            segment: Address + data to write
            progress: Optional observer (init/update per block/finish)

        Raises:
            FlashError: On the first failed command; progress.finish() is
                not called in that case.
        """
        self._require_state("write_segment", TargetState.ATTACHED)
        try:
            self._write_segment(connection, segment, progress or NullProgress())
        except Exception:
            self.state = TargetState.FAILED
            raise

    def _write_segment(self, connection, segment: Segment, progress: ProgressCallbacks) -> None:
        addr = segment.address
        data = segment.data
        flash_write_size = self.flash_write_size
        erase = erase_size(len(data), self.encrypt_flash)
        mode = self.select_mode(connection)

        if mode.compressed:
            payload = compress(data)
            plan = BlockPlan(payload, flash_write_size)
            logger.info(f"Compressed {len(data)} bytes to {len(payload)}")
            begin = FlashDeflateBegin(
                size=len(data),
                blocks=len(plan),
                block_size=flash_write_size,
                offset=addr,
                supports_encryption=self.supports_encryption,
            )
        else:
            plan = BlockPlan(data, flash_write_size)
            begin = FlashBegin(
                size=erase,
                blocks=len(plan),
                block_size=flash_write_size,
                offset=addr,
                supports_encryption=self.supports_encryption,
                encrypt=self.encrypt_flash,
            )

        logger.info(
            f"Writing {len(data)} bytes at 0x{addr:08X} "
            f"({len(plan)} x {flash_write_size}-byte blocks, mode={mode.value}, erase={erase})"
        )
        self._command(connection, begin, begin.TYPE.timeout_for_size(erase))

        progress.init(addr, len(plan))

        data_command = _DATA_COMMANDS[mode]
        tracker = DecodedSizeTracker() if mode.compressed else None
        for sequence, block in enumerate(plan):
            if tracker is not None:
                # Device-side work scales with decoded bytes, not wire bytes
                work_size = tracker.feed(block)
                pad_to = 0
            else:
                work_size = len(block)
                pad_to = flash_write_size

            command = data_command(
                sequence=sequence,
                pad_to=pad_to,
                pad_byte=FLASH_PAD_BYTE,
                data=block,
            )
            self._command(connection, command, command.TYPE.timeout_for_size(work_size))
            logger.debug(f"Block {sequence + 1}/{len(plan)} acknowledged")
            progress.update(sequence + 1)

        progress.finish()

    def _uses_compression(self, connection) -> bool:
        return not self.encrypt_flash and connection.should_use_compression()

    def finish(self, connection, reboot: bool = False) -> None:
        """
        Leave flash mode, then hard-reset the chip if `reboot` is set.

        The end command always asks the loader to stay resident; the reset
        is a separate transport action.
        """
        self._require_state("finish", TargetState.ATTACHED)
        try:
            if self._uses_compression(connection):
                end = FlashDeflateEnd(reboot=False)
            else:
                end = FlashEnd(reboot=False)
            self._command(connection, end, end.TYPE.timeout())

            if reboot:
                logger.info("Hard resetting via RTS pin...")
                connection.reset()
        except Exception:
            self.state = TargetState.FAILED
            raise
        self.state = TargetState.FINISHED
