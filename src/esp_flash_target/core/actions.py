"""
Workflow actions for flashing.

These functions never raise for device or file errors: failures are logged
and returned as a failed OperationResult so the CLI (or any other caller)
can render them uniformly.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from esp_flash_target.image import Segment, load_segment
from esp_flash_target.progress import NullProgress, ProgressCallbacks
from esp_flash_target.protocol.connection import DEFAULT_BAUDRATE, Connection
from esp_flash_target.targets.chips import Chip, get_chip_spec
from esp_flash_target.targets.esp32 import Esp32Target
from esp_flash_target.targets.params import FLASH_SECTOR_SIZE, FlashSize, SpiAttachParams

from .results import OperationResult

logger = logging.getLogger(__name__)

ProgressFactory = Callable[[], ProgressCallbacks]


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "esp_flash_target"):
    """Capture logs for workflow actions into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def check_layout(segments: Sequence[Segment], flash_size: FlashSize) -> List[str]:
    """
    Return warnings for a segment list: unaligned starts, overlaps and
    segments running past the end of flash.
    """
    warnings = []
    limit = flash_size.size()
    for segment in segments:
        if segment.address % FLASH_SECTOR_SIZE:
            warnings.append(
                f"Segment at 0x{segment.address:08X} is not sector-aligned "
                f"(erase starts at 0x{segment.address - segment.address % FLASH_SECTOR_SIZE:08X})"
            )
        if segment.end_address > limit:
            warnings.append(
                f"Segment {segment.region} extends beyond {flash_size.label} flash"
            )

    ordered = sorted(segments, key=lambda s: s.address)
    for previous, current in zip(ordered, ordered[1:]):
        if current.address < previous.end_address:
            warnings.append(f"Segments {previous.region} and {current.region} overlap")
    return warnings


def flash_segments(
    connection,
    target: Esp32Target,
    segments: Iterable[Segment],
    reboot: bool = True,
    progress_factory: Optional[ProgressFactory] = None,
) -> OperationResult:
    """
    Write every segment through one begin/finish session.

    Args:
        connection: Connected bootloader connection
        target: Fresh (or previously failed) target
        segments: Segments to write, in order
        reboot: Hard-reset the chip after the transfer
        progress_factory: Called once per segment for a progress observer

    Returns:
        OperationResult with:
            - regions: written regions in order
            - hashes[region]: sha256 of the data written there
            - bytes_len: total data bytes
            - metadata["mode"]: transfer mode of the last segment
    """
    segments = list(segments)
    factory = progress_factory or NullProgress
    chip_name = target.chip.value

    with _capture_logs() as logs:
        result = OperationResult.success(operation="flash_segments", chip=chip_name)
        for warning in check_layout(segments, target.flash_size):
            logger.warning(warning)
            result.add_warning(warning)
        if target.encrypt_flash and connection.should_use_compression():
            result.add_warning("Encrypted segments are sent uncompressed")

        progress: Optional[ProgressCallbacks] = None
        try:
            target.begin(connection)
            for index, segment in enumerate(segments, start=1):
                logger.info(f"Segment {index}/{len(segments)}: {segment.region}")
                result.metadata["mode"] = target.select_mode(connection).value
                progress = factory()
                target.write_segment(connection, segment, progress)
                result.add_region(segment.region, segment.sha256(), len(segment.data))
            target.finish(connection, reboot=reboot)
        except Exception as e:
            if progress is not None:
                progress.close()
            logger.exception("flash_segments failed")
            result.add_error(str(e))
            result.metadata["state"] = target.state.value
            result.logs = logs
            return result

        if not reboot:
            result.add_warning("Chip left in bootloader; reset it to run the new firmware")
        result.metadata["state"] = target.state.value
        result.logs = logs
        return result


def flash_files(
    port: str,
    files: Sequence[Tuple[int, Union[str, Path]]],
    chip: Chip,
    baud: int = DEFAULT_BAUDRATE,
    flash_size: FlashSize = FlashSize.FLASH_4MB,
    use_stub: bool = False,
    encrypt: bool = False,
    compress: bool = True,
    reboot: bool = True,
    spi_attach_params: Optional[SpiAttachParams] = None,
    progress_factory: Optional[ProgressFactory] = None,
) -> OperationResult:
    """
    Load binary files, connect to the bootloader on `port` and flash them.

    Args:
        port: Serial port path
        files: (address, path) pairs
        chip: Chip variant on the board
        baud: Baud rate
        flash_size: Flash size reported to the loader
        use_stub: Whether the RAM flasher stub is already running
        encrypt: Write through flash encryption
        compress: Allow compressed transfers
        reboot: Hard-reset after flashing
        spi_attach_params: SPI pin assignment (default pins if None)
        progress_factory: Progress observer factory, one per segment

    Returns:
        OperationResult from flash_segments, or a failure if the files could
        not be loaded or the port could not be opened.
    """
    try:
        segments = [load_segment(address, path) for address, path in files]
    except (OSError, ValueError) as e:
        return OperationResult.failure(operation="flash_files", error=str(e), chip=chip.value)

    with _capture_logs() as logs:
        try:
            connection = Connection(
                port, baudrate=baud, use_stub=use_stub, compression=compress
            )
            connection.open()
            try:
                connection.connect()
                connection.negotiate_compression(get_chip_spec(chip))
                target = Esp32Target(
                    chip,
                    spi_attach_params=spi_attach_params,
                    flash_size=flash_size,
                    use_stub=use_stub,
                    encrypt_flash=encrypt,
                )
                result = flash_segments(
                    connection,
                    target,
                    segments,
                    reboot=reboot,
                    progress_factory=progress_factory,
                )
            finally:
                connection.close()
        except Exception as e:
            logger.exception("flash_files failed")
            result = OperationResult.failure(
                operation="flash_files", error=str(e), chip=chip.value
            )
            result.logs = logs
            return result

        result.operation = "flash_files"
        result.metadata["port"] = port
        result.logs = logs
        return result
